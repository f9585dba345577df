"""Command line installer: ``yomitan-bridge-install --browser firefox``."""

from __future__ import annotations

import argparse
import logging
import sys
from typing import List, Optional

from yomitan_bridge import __version__
from yomitan_bridge.installer.browsers import Browser
from yomitan_bridge.installer.manager import InstallError, install

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    choices = [browser.value for browser in Browser.available()]
    parser = argparse.ArgumentParser(
        prog="yomitan-bridge-install",
        description=f"Register the Yomitan API bridge {__version__} with a browser.",
    )
    parser.add_argument("--browser", choices=choices, help="Browser to register with")
    parser.add_argument(
        "--extension-id",
        action="append",
        default=[],
        dest="extension_ids",
        help="Additional extension ID or origin allowed to connect (repeatable)",
    )
    parser.add_argument("--list", action="store_true", help="List supported browsers and exit")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(message)s")
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.list:
        for browser in Browser.available():
            print(f"{browser.value}\t{browser.install_dir()}")
        return 0

    if not args.browser:
        parser.error("--browser is required")

    try:
        report = install(Browser(args.browser), args.extension_ids)
    except InstallError as e:
        logger.error(f"Installation failed: {e}")
        return 1

    print(f"Installed for {report.browser.value}")
    print(f"  launcher: {report.launcher_path}")
    print(f"  manifest: {report.manifest_path}")
    if report.registry_key:
        print(f"  registry: HKCU\\{report.registry_key}")
    return 0


def run() -> None:
    sys.exit(main())


if __name__ == "__main__":
    run()

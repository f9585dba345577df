"""Yomitan API bridge entry point.

The browser launches this process as a native messaging host. Standard
input and output carry the native messaging channel, so everything else,
including logging, goes to stderr.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import List, Optional

import uvicorn
from dotenv import load_dotenv

from yomitan_bridge import __version__
from yomitan_bridge.bridge import Bridge
from yomitan_bridge.channel import NativeChannel
from yomitan_bridge.config import BridgeConfig
from yomitan_bridge.diagnostics import Diagnostics
from yomitan_bridge.http_api import create_app

logger = logging.getLogger("yomitan_bridge")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="yomitan-bridge",
        allow_abbrev=False,
        description="Serve the Yomitan API over HTTP using native messaging.",
    )
    parser.add_argument("--host", type=str, default=None, help="Address to bind to")
    parser.add_argument("--port", type=int, default=None, help="Port to listen on")
    parser.add_argument("--log-file", type=str, default=None, help="Diagnostics log file ('' disables)")
    parser.add_argument("--timeout", type=float, default=None, help="Seconds to wait for each reply")
    return parser


def load_config(argv: Optional[List[str]] = None) -> BridgeConfig:
    """Build the configuration from the environment and command line.

    Browsers pass extra arguments to native hosts (the caller's origin, the
    manifest path, the extension ID); those are ignored.
    """
    args, _ = build_parser().parse_known_args(argv)
    return BridgeConfig.from_env().with_overrides(
        host=args.host,
        port=args.port,
        log_file=args.log_file,
        exchange_timeout=args.timeout,
    )


async def run_bridge(config: BridgeConfig, bridge: Bridge) -> None:
    """Serve HTTP until the server is stopped."""
    app = create_app(bridge)
    server = uvicorn.Server(
        uvicorn.Config(
            app,
            host=config.host,
            port=config.port,
            # uvicorn's default logging config writes to stdout.
            log_config=None,
            access_log=False,
        )
    )
    logger.info(f"Listening on http://{config.host}:{config.port}")
    await server.serve()


def main(argv: Optional[List[str]] = None) -> None:
    """Entry point for the bridge."""
    load_dotenv()
    config = load_config(argv)

    logging.basicConfig(
        level=config.log_level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stderr,
    )

    channel = NativeChannel.from_stdio(timeout=config.exchange_timeout)
    # Nothing but frames may reach the real stdout.
    sys.stdout = sys.stderr

    diagnostics = Diagnostics(config.log_file)
    diagnostics.record(f"yomitan-bridge {__version__} - starting up")
    bridge = Bridge(channel, diagnostics)

    try:
        asyncio.run(run_bridge(config, bridge))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        sys.exit(0)
    except Exception as e:
        logger.exception(f"Fatal error: {e}")
        diagnostics.record_failure("bridge", e)
        sys.exit(1)
    finally:
        diagnostics.close()

    logger.info("Yomitan bridge shutting down")


if __name__ == "__main__":
    main()

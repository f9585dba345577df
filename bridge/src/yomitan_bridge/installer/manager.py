"""
Native messaging host installation.

Writes a launcher script and the host manifest for one browser and, on
Windows, registers the manifest in the registry.
"""

from __future__ import annotations

import json
import logging
import os
import shlex
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

from yomitan_bridge.diagnostics import LOG_FILE_NAME
from yomitan_bridge.installer.browsers import HOST_NAME, Browser

logger = logging.getLogger(__name__)

HOST_DESCRIPTION = "Yomitan API bridge"
LAUNCHER_NAME = "yomitan-api-bridge"


class InstallError(Exception):
    """Raised when the bridge cannot be installed for a browser."""

    pass


@dataclass
class InstallReport:
    """Where an installation put things."""

    browser: Browser
    install_dir: Path
    launcher_path: Path
    manifest_path: Path
    registry_key: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "browser": self.browser.value,
            "installDir": str(self.install_dir),
            "launcherPath": str(self.launcher_path),
            "manifestPath": str(self.manifest_path),
            "registryKey": self.registry_key,
        }


def collect_extension_ids(browser: Browser, extra_ids: Iterable[str] = ()) -> List[str]:
    """Extra IDs in order, followed by the browser's default ID, without duplicates."""
    ids: List[str] = []
    for ext_id in [*extra_ids, browser.default_extension_id]:
        ext_id = ext_id.strip()
        if ext_id and ext_id not in ids:
            ids.append(ext_id)
    return ids


def build_manifest(browser: Browser, launcher_path: Path, extension_ids: List[str]) -> Dict[str, Any]:
    """Build the host manifest a browser reads to launch the bridge."""
    return {
        "name": HOST_NAME,
        "description": HOST_DESCRIPTION,
        "type": "stdio",
        "path": str(launcher_path),
        browser.manifest_key: list(extension_ids),
    }


def render_launcher(python_exe: str, log_file: Path, platform: str) -> str:
    """Script that starts the bridge with the given interpreter."""
    if platform == "win32":
        return "\n".join(
            [
                "@echo off",
                "setlocal",
                f'set "YOMITAN_API_LOG_FILE={log_file}"',
                f'"{python_exe}" -m yomitan_bridge %*',
                "",
            ]
        )
    return "\n".join(
        [
            "#!/bin/sh",
            f"YOMITAN_API_LOG_FILE={shlex.quote(str(log_file))}",
            "export YOMITAN_API_LOG_FILE",
            f'exec {shlex.quote(python_exe)} -m yomitan_bridge "$@"',
            "",
        ]
    )


def write_launcher(install_dir: Path, python_exe: str, platform: str) -> Path:
    """Write the launcher script into install_dir and make it executable."""
    name = f"{LAUNCHER_NAME}.bat" if platform == "win32" else LAUNCHER_NAME
    path = install_dir / name
    path.write_text(render_launcher(python_exe, install_dir / LOG_FILE_NAME, platform), encoding="utf-8")
    if platform != "win32":
        path.chmod(0o755)
    return path


def write_manifest(path: Path, manifest: Dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(manifest, indent=2) + "\n", encoding="utf-8")
    if os.name != "nt":
        path.chmod(0o644)


def register_manifest(registry_key: str, manifest_path: Path) -> None:
    """Point HKEY_CURRENT_USER\\registry_key at the manifest (Windows only)."""
    import winreg

    with winreg.CreateKey(winreg.HKEY_CURRENT_USER, registry_key) as key:
        winreg.SetValueEx(key, "", 0, winreg.REG_SZ, str(manifest_path))


def install(
    browser: Browser,
    extension_ids: Iterable[str] = (),
    *,
    platform: Optional[str] = None,
    home: Optional[Path] = None,
    env: Optional[Mapping[str, str]] = None,
    python_exe: Optional[str] = None,
    register: Callable[[str, Path], None] = register_manifest,
) -> InstallReport:
    """Install the bridge as a native messaging host for a browser.

    Args:
        browser: The browser to register with.
        extension_ids: Additional extension IDs (or origins) allowed to connect,
            e.g. for development builds. The released extension is always allowed.
        platform: Target platform, defaults to sys.platform.
        home: Home directory, defaults to Path.home().
        env: Environment used to locate LOCALAPPDATA on Windows.
        python_exe: Interpreter the launcher runs, defaults to sys.executable.
        register: Writes the registry entry on Windows.

    Raises:
        InstallError: If the browser is unsupported or a file cannot be written.
    """
    platform = platform or sys.platform
    python_exe = python_exe or sys.executable

    try:
        install_dir = browser.install_dir(platform=platform, home=home, env=env)
        registry_key = browser.registry_key(platform=platform)
    except ValueError as e:
        raise InstallError(str(e)) from e

    ids = collect_extension_ids(browser, extension_ids)
    manifest_path = install_dir / f"{HOST_NAME}.json"
    try:
        install_dir.mkdir(parents=True, exist_ok=True)
        launcher_path = write_launcher(install_dir, python_exe, platform)
        write_manifest(manifest_path, build_manifest(browser, launcher_path, ids))
        if registry_key is not None:
            register(registry_key, manifest_path)
    except OSError as e:
        raise InstallError(f"Failed to install for {browser.value}: {e}") from e

    logger.info(f"Installed {HOST_NAME} for {browser.value} at {manifest_path}")
    return InstallReport(
        browser=browser,
        install_dir=install_dir,
        launcher_path=launcher_path,
        manifest_path=manifest_path,
        registry_key=registry_key,
    )

"""Browsers the bridge can be registered with.

Each browser looks for native messaging host manifests in its own place and
names the list of permitted extensions differently.
"""

from __future__ import annotations

import os
import sys
from enum import Enum
from pathlib import Path
from typing import List, Mapping, Optional

HOST_NAME = "yomitan_api"

FIREFOX_EXTENSION_ID = "{6b733b82-9261-47ee-a595-2dda294a4d08}"
CHROMIUM_EXTENSION_ORIGIN = "chrome-extension://likgccmbimhjbgkjambclfkhldnlhbnn/"

# Per-user manifest directories, relative to the home directory.
_LINUX_DIRS = {
    "firefox": ".mozilla/native-messaging-hosts",
    "chrome": ".config/google-chrome/NativeMessagingHosts",
    "chromium": ".config/chromium/NativeMessagingHosts",
    "brave": ".config/BraveSoftware/Brave-Browser/NativeMessagingHosts",
}

_MACOS_DIRS = {
    "firefox": "Library/Application Support/Mozilla/NativeMessagingHosts",
    "chrome": "Library/Application Support/Google/Chrome/NativeMessagingHosts",
    "chromium": "Library/Application Support/Chromium/NativeMessagingHosts",
    "brave": "Library/Application Support/BraveSoftware/Brave-Browser/NativeMessagingHosts",
}

# HKEY_CURRENT_USER subkeys that point at the manifest on Windows.
_WINDOWS_REGISTRY_KEYS = {
    "firefox": f"SOFTWARE\\Mozilla\\NativeMessagingHosts\\{HOST_NAME}",
    "chrome": f"SOFTWARE\\Google\\Chrome\\NativeMessagingHosts\\{HOST_NAME}",
    "brave": f"SOFTWARE\\BraveSoftware\\Brave-Browser\\NativeMessagingHosts\\{HOST_NAME}",
    "edge": f"SOFTWARE\\Microsoft\\Edge\\NativeMessagingHosts\\{HOST_NAME}",
}

WINDOWS_INSTALL_DIR_NAME = "yomitan-api-bridge"


class UnsupportedBrowserError(ValueError):
    """Raised when a browser is not supported on the current platform."""

    pass


def _is_windows(platform: str) -> bool:
    return platform == "win32"


class Browser(str, Enum):
    """Supported browsers."""

    FIREFOX = "firefox"
    CHROME = "chrome"
    CHROMIUM = "chromium"
    BRAVE = "brave"
    EDGE = "edge"

    @classmethod
    def available(cls, platform: Optional[str] = None) -> List["Browser"]:
        """Browsers that can be registered on a platform."""
        platform = platform or sys.platform
        if _is_windows(platform):
            return [cls.FIREFOX, cls.CHROME, cls.BRAVE, cls.EDGE]
        return [cls.FIREFOX, cls.CHROME, cls.CHROMIUM, cls.BRAVE]

    @property
    def manifest_key(self) -> str:
        """Manifest field listing the extensions allowed to connect."""
        if self is Browser.FIREFOX:
            return "allowed_extensions"
        return "allowed_origins"

    @property
    def default_extension_id(self) -> str:
        """Identifier of the released Yomitan extension in this browser."""
        if self is Browser.FIREFOX:
            return FIREFOX_EXTENSION_ID
        return CHROMIUM_EXTENSION_ORIGIN

    def check_platform(self, platform: Optional[str] = None) -> None:
        platform = platform or sys.platform
        if self not in Browser.available(platform):
            raise UnsupportedBrowserError(f"{self.value} is not supported on {platform}")

    def install_dir(
        self,
        platform: Optional[str] = None,
        home: Optional[Path] = None,
        env: Optional[Mapping[str, str]] = None,
    ) -> Path:
        """Directory receiving the launcher and the host manifest."""
        platform = platform or sys.platform
        home = home or Path.home()
        env = os.environ if env is None else env
        self.check_platform(platform)

        if _is_windows(platform):
            local = env.get("LOCALAPPDATA")
            base = Path(local) if local else home / "AppData" / "Local"
            # One directory per browser: manifests differ in their allow-list key.
            return base / WINDOWS_INSTALL_DIR_NAME / self.value
        if platform == "darwin":
            return home / _MACOS_DIRS[self.value]
        if platform.startswith("linux"):
            return home / _LINUX_DIRS[self.value]
        raise UnsupportedBrowserError(f"Unsupported platform: {platform}")

    def registry_key(self, platform: Optional[str] = None) -> Optional[str]:
        """HKEY_CURRENT_USER subkey to register, or None off Windows."""
        platform = platform or sys.platform
        if not _is_windows(platform):
            return None
        self.check_platform(platform)
        return _WINDOWS_REGISTRY_KEYS[self.value]

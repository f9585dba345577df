"""
Registration of the bridge as a browser native messaging host.

This module provides:
- The supported browsers and where each looks for host manifests
- Launcher and manifest installation, plus registry entries on Windows
"""

from .browsers import HOST_NAME, Browser, UnsupportedBrowserError
from .manager import InstallError, InstallReport, build_manifest, install

__all__ = [
    # Browsers
    "HOST_NAME",
    "Browser",
    "UnsupportedBrowserError",
    # Manager
    "InstallError",
    "InstallReport",
    "build_manifest",
    "install",
]

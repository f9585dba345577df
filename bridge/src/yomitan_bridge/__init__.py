"""Yomitan API bridge.

Exposes a local HTTP interface and forwards each request over the browser
native messaging channel to the Yomitan extension.
"""

__version__ = "0.1.0"

"""Forwarding of HTTP requests over the native messaging channel.

The Bridge is the only component that talks to the channel. It turns one
HTTP request into one outbound message, waits for the single reply and maps
it back to an HTTP status and JSON body. Channel failures end here: they are
recorded to diagnostics and answered with an empty 500.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional
from urllib.parse import unquote_to_bytes

from yomitan_bridge.channel import NativeChannel
from yomitan_bridge.diagnostics import Diagnostics
from yomitan_bridge.messages import OutboundMessage
from yomitan_bridge.native_messaging import NativeMessagingError

logger = logging.getLogger(__name__)

# Statuses without a response body.
_BODYLESS_STATUSES = {204, 304}


class ExchangeState(str, Enum):
    """Final state of a single forwarded request."""

    COMPLETED = "completed"
    CHANNEL_FAILED = "channel_failed"


@dataclass
class BridgeResponse:
    """What the HTTP layer should answer."""

    status_code: int
    data: Any = None
    has_body: bool = False
    state: ExchangeState = ExchangeState.COMPLETED

    @classmethod
    def json(cls, status_code: int, data: Any) -> "BridgeResponse":
        return cls(status_code=status_code, data=data, has_body=True)

    @classmethod
    def empty(cls, status_code: int, state: ExchangeState = ExchangeState.COMPLETED) -> "BridgeResponse":
        return cls(status_code=status_code, state=state)


def _percent_decode(value: str) -> str:
    # Raw non-ASCII bytes arrive as surrogate escapes and are restored verbatim.
    raw = value.encode("utf-8", errors="surrogateescape")
    try:
        return unquote_to_bytes(raw).decode("utf-8")
    except UnicodeDecodeError:
        return ""


def parse_query_string(query: str) -> Dict[str, List[str]]:
    """Parse a raw query string into a mapping of key to ordered values.

    ``+`` is kept literally. A key or value that does not percent-decode to
    valid UTF-8 becomes an empty string instead of failing the request.
    """
    params: Dict[str, List[str]] = {}
    if not query:
        return params
    for pair in query.split("&"):
        if not pair:
            continue
        key, _, value = pair.partition("=")
        params.setdefault(_percent_decode(key), []).append(_percent_decode(value))
    return params


class Bridge:
    """Sequences HTTP requests onto the native messaging channel."""

    def __init__(self, channel: NativeChannel, diagnostics: Diagnostics) -> None:
        self.channel = channel
        self.diagnostics = diagnostics

    async def handle(
        self,
        action: str,
        params: Optional[Dict[str, List[str]]] = None,
        body: bytes = b"",
    ) -> BridgeResponse:
        """Forward one action to the extension and map its reply."""
        message = OutboundMessage(
            action=action,
            params=params or {},
            body=body.decode("utf-8", errors="replace"),
        )

        logger.debug(f"Forwarding action={action!r} params={len(message.params)} body={len(body)}B")
        try:
            reply = await self.channel.send_then_receive(message)
        except (NativeMessagingError, OSError) as e:
            self.diagnostics.record_failure(f"native exchange for action {action!r}", e)
            return BridgeResponse.empty(500, ExchangeState.CHANNEL_FAILED)

        status = reply.response_status_code
        if status < 200 or status > 599:
            self.diagnostics.record(
                f"extension returned unusable status {status} for action {action!r}"
            )
            return BridgeResponse.empty(500, ExchangeState.CHANNEL_FAILED)

        logger.debug(f"Completed action={action!r} status={status}")
        if status in _BODYLESS_STATUSES:
            return BridgeResponse.empty(status)
        return BridgeResponse.json(status, reply.data)

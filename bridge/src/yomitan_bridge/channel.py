"""The shared native messaging channel.

The bridge owns exactly one channel: frames for the extension are written to
stdout and its replies are read from stdin. There are no request IDs on this
channel, so replies are matched to requests purely by ordering and only one
exchange may be in flight at a time.
"""

from __future__ import annotations

import asyncio
import logging
import sys
import threading
from typing import BinaryIO, Optional

from yomitan_bridge.messages import InboundMessage, OutboundMessage
from yomitan_bridge.native_messaging import (
    FramingError,
    encode_message,
    parse_message,
    read_frame,
    write_frame,
)

logger = logging.getLogger(__name__)


class ChannelClosedError(FramingError):
    """Raised when the channel already failed and can no longer be used."""

    pass


class ChannelTimeoutError(FramingError):
    """Raised when the extension did not reply within the exchange timeout."""

    pass


def _consume_result(task: "asyncio.Future[Optional[bytes]]") -> None:
    """Retrieve the outcome of an exchange nobody waits for any more."""
    if not task.cancelled() and task.exception() is not None:
        logger.warning(f"Abandoned exchange failed: {task.exception()}")


class _Exchange:
    """One write-then-read pair handed to a worker thread."""

    def __init__(self, frame: bytes) -> None:
        self.frame = frame
        self.abandoned = threading.Event()


class NativeChannel:
    """Serialized request/reply access to the native messaging streams."""

    def __init__(
        self,
        reader: BinaryIO,
        writer: BinaryIO,
        timeout: Optional[float] = None,
    ) -> None:
        self.reader = reader
        self.writer = writer
        self.timeout = timeout
        # Queues coroutines in arrival order.
        self._lock = asyncio.Lock()
        # Held by the worker thread for a whole write+read pair, so an
        # abandoned exchange still consumes its reply before the next write.
        self._io_lock = threading.Lock()
        self._closed_reason: Optional[str] = None
        # Exchange that timed out and is still waiting for its reply.
        self._stalled: Optional["asyncio.Future[Optional[bytes]]"] = None

    @classmethod
    def from_stdio(cls, timeout: Optional[float] = None) -> "NativeChannel":
        """Create a channel over this process's standard streams."""
        return cls(reader=sys.stdin.buffer, writer=sys.stdout.buffer, timeout=timeout)

    @property
    def closed(self) -> bool:
        """Whether a fatal error has made the channel unusable."""
        return self._closed_reason is not None

    def _mark_closed(self, reason: str) -> None:
        if self._closed_reason is None:
            logger.error(f"Native messaging channel closed: {reason}")
            self._closed_reason = reason

    def _exchange_sync(self, exchange: _Exchange) -> Optional[bytes]:
        """Write one frame and read one reply frame. Runs in a worker thread.

        Returns:
            The reply payload, or None if the exchange was abandoned before
            it started.
        """
        with self._io_lock:
            if exchange.abandoned.is_set():
                return None
            if self._closed_reason is not None:
                raise ChannelClosedError(f"Channel is closed: {self._closed_reason}")
            try:
                write_frame(self.writer, exchange.frame)
                return read_frame(self.reader)
            except FramingError as e:
                self._mark_closed(str(e))
                raise
            except (OSError, ValueError) as e:
                # ValueError covers I/O on a stream that was closed underneath us.
                self._mark_closed(str(e))
                raise FramingError(f"Channel I/O failed: {e}") from e

    async def _wait_for_stalled(self, action: str) -> None:
        """Give a timed-out exchange one more timeout to receive its reply.

        While it is still stuck, no further work is handed to a thread, so a
        hung extension cannot pile up blocked workers.
        """
        if self._stalled is None:
            return
        _, pending = await asyncio.wait({self._stalled}, timeout=self.timeout)
        if pending:
            raise ChannelTimeoutError(
                f"Not sending action {action!r}: an earlier exchange is still waiting for its reply"
            )
        self._stalled = None

    async def send_then_receive(self, message: OutboundMessage) -> InboundMessage:
        """Send one message and wait for exactly one reply.

        Raises:
            EncodingError: If the message cannot be framed. Nothing is written.
            FramingError: If the channel is closed, fails or times out.
            DecodingError: If the reply is not a valid InboundMessage.
        """
        frame = encode_message(message)

        async with self._lock:
            await self._wait_for_stalled(message.action)
            if self._closed_reason is not None:
                raise ChannelClosedError(f"Channel is closed: {self._closed_reason}")

            exchange = _Exchange(frame)
            task = asyncio.ensure_future(asyncio.to_thread(self._exchange_sync, exchange))
            try:
                if self.timeout is None:
                    payload = await asyncio.shield(task)
                else:
                    payload = await asyncio.wait_for(asyncio.shield(task), self.timeout)
            except asyncio.TimeoutError as e:
                exchange.abandoned.set()
                task.add_done_callback(_consume_result)
                self._stalled = task
                raise ChannelTimeoutError(
                    f"No reply for action {message.action!r} within {self.timeout}s"
                ) from e
            except asyncio.CancelledError:
                exchange.abandoned.set()
                task.add_done_callback(_consume_result)
                raise

        if payload is None:
            raise ChannelClosedError("Exchange abandoned before it started")
        return parse_message(payload, InboundMessage)

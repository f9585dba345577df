"""Pytest configuration for yomitan_bridge tests."""

from __future__ import annotations

import json
import struct
import threading
import time
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

import pytest

from yomitan_bridge.bridge import Bridge
from yomitan_bridge.channel import NativeChannel
from yomitan_bridge.diagnostics import Diagnostics
from yomitan_bridge.native_messaging import LENGTH_PREFIX_FORMAT, encode_message

# A scripted reply: a message dict, raw bytes written as-is, or None to close
# the stream instead of replying.
Reply = Union[Dict[str, Any], bytes, None]


class ScriptedExtension:
    """In-memory extension side of the native messaging channel.

    Used as both the reader and the writer of a NativeChannel. Each complete
    frame the bridge writes is recorded and answered with the next reply from
    the script (or from the responder callable).
    """

    def __init__(
        self,
        replies: Iterable[Reply] = (),
        responder: Optional[Callable[[Dict[str, Any]], Reply]] = None,
        read_delay: float = 0.0,
    ) -> None:
        self.replies: List[Reply] = list(replies)
        self.responder = responder
        self.read_delay = read_delay
        self.received: List[Dict[str, Any]] = []
        self.events: List[str] = []
        self.write_calls = 0
        self._inbox = bytearray()
        self._outbox = bytearray()
        self._eof = False
        self._lock = threading.Lock()

    def _next_reply(self, message: Dict[str, Any]) -> Reply:
        if self.responder is not None:
            return self.responder(message)
        if not self.replies:
            return None
        return self.replies.pop(0)

    def write(self, data: bytes) -> int:
        with self._lock:
            self.write_calls += 1
            self._inbox.extend(data)
            prefix = struct.calcsize(LENGTH_PREFIX_FORMAT)
            while len(self._inbox) >= prefix:
                (length,) = struct.unpack(LENGTH_PREFIX_FORMAT, bytes(self._inbox[:prefix]))
                if len(self._inbox) < prefix + length:
                    break
                payload = bytes(self._inbox[prefix : prefix + length])
                del self._inbox[: prefix + length]
                message = json.loads(payload.decode("utf-8"))
                self.received.append(message)
                self.events.append("write")
                reply = self._next_reply(message)
                if reply is None:
                    self._eof = True
                elif isinstance(reply, bytes):
                    self._outbox.extend(reply)
                else:
                    self._outbox.extend(encode_message(reply))
        return len(data)

    def flush(self) -> None:
        pass

    def read(self, size: int = -1) -> bytes:
        if self.read_delay:
            time.sleep(self.read_delay)
        with self._lock:
            if size < 0:
                size = len(self._outbox)
            chunk = bytes(self._outbox[:size])
            del self._outbox[:size]
            if chunk and not self._outbox:
                self.events.append("read")
            return chunk


def reply(status: int, data: Any) -> Dict[str, Any]:
    """Build an extension reply message."""
    return {"responseStatusCode": status, "data": data}


@pytest.fixture
def extension() -> ScriptedExtension:
    """An extension that answers every action with an echo of it."""
    return ScriptedExtension(
        responder=lambda message: reply(200, {"echo": message["action"]}),
    )


@pytest.fixture
def make_channel() -> Callable[[ScriptedExtension], NativeChannel]:
    def _make(ext: ScriptedExtension, timeout: Optional[float] = None) -> NativeChannel:
        return NativeChannel(reader=ext, writer=ext, timeout=timeout)  # type: ignore[arg-type]

    return _make


@pytest.fixture
def log_file(tmp_path: Path) -> Path:
    return tmp_path / "logs" / "yomitan-api.log"


@pytest.fixture
def diagnostics(log_file: Path) -> Diagnostics:
    diag = Diagnostics(log_file)
    yield diag
    diag.close()


@pytest.fixture
def make_bridge(make_channel, diagnostics) -> Callable[[ScriptedExtension], Bridge]:
    def _make(ext: ScriptedExtension, timeout: Optional[float] = None) -> Bridge:
        return Bridge(make_channel(ext, timeout), diagnostics)

    return _make

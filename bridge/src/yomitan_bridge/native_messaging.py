"""Native messaging framing protocol.

Every message on the channel, in both directions, is framed as:
- a 4-byte unsigned length in the platform's native byte order
- followed by exactly that many bytes of UTF-8 encoded JSON
"""

from __future__ import annotations

import json
import struct
from typing import Any, BinaryIO, Dict, Mapping, Tuple, Type, TypeVar, Union

from pydantic import BaseModel, ValidationError

from yomitan_bridge.messages import InboundMessage


# Browsers require native byte order with a standard 4-byte size.
LENGTH_PREFIX_FORMAT = "=I"
LENGTH_PREFIX_SIZE = struct.calcsize(LENGTH_PREFIX_FORMAT)

# Maximum size of a frame sent to the browser (1 MB). Larger frames make the
# browser drop the channel.
MAX_MESSAGE_SIZE = 1024 * 1024

ModelT = TypeVar("ModelT", bound=BaseModel)


class NativeMessagingError(Exception):
    """Base exception for native messaging errors."""

    pass


class FramingError(NativeMessagingError):
    """Raised when the stream ends or is truncated in the middle of a frame."""

    pass


class DecodingError(NativeMessagingError):
    """Raised when a payload is not valid JSON or lacks required fields."""

    pass


class EncodingError(NativeMessagingError):
    """Raised when an outbound message cannot be serialized."""

    pass


class MessageTooLargeError(EncodingError):
    """Raised when an encoded message exceeds the maximum size."""

    pass


def encode_message(message: Union[BaseModel, Mapping[str, Any]]) -> bytes:
    """Encode a message for native messaging.

    Args:
        message: A pydantic model or a JSON-serializable mapping.

    Returns:
        Bytes with the 4-byte native-order length prefix followed by the JSON payload.

    Raises:
        EncodingError: If the message cannot be serialized.
        MessageTooLargeError: If the encoded message exceeds MAX_MESSAGE_SIZE.
    """
    if isinstance(message, BaseModel):
        message = message.model_dump(by_alias=True)
    try:
        payload = json.dumps(message, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
    except (TypeError, ValueError, UnicodeEncodeError) as e:
        raise EncodingError(f"Failed to encode message: {e}") from e

    if len(payload) > MAX_MESSAGE_SIZE:
        raise MessageTooLargeError(
            f"Message size {len(payload)} exceeds maximum {MAX_MESSAGE_SIZE}"
        )
    length_prefix = struct.pack(LENGTH_PREFIX_FORMAT, len(payload))
    return length_prefix + payload


def decode_length_prefix(data: bytes) -> int:
    """Decode the 4-byte length prefix.

    Raises:
        FramingError: If data is not exactly 4 bytes.
    """
    if len(data) != LENGTH_PREFIX_SIZE:
        raise FramingError(
            f"Expected {LENGTH_PREFIX_SIZE} bytes for length prefix, got {len(data)}"
        )
    result: Tuple[int, ...] = struct.unpack(LENGTH_PREFIX_FORMAT, data)
    return result[0]


def decode_payload(data: bytes) -> Dict[str, Any]:
    """Decode a JSON payload.

    Args:
        data: UTF-8 encoded JSON bytes.

    Returns:
        The decoded dictionary.

    Raises:
        DecodingError: If the payload is not valid JSON or not an object.
    """
    try:
        message = json.loads(data.decode("utf-8"))
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise DecodingError(f"Failed to decode JSON payload: {e}") from e

    if not isinstance(message, dict):
        raise DecodingError(f"Expected JSON object, got {type(message).__name__}")

    return message


def _read_exactly(stream: BinaryIO, size: int) -> bytes:
    """Read exactly size bytes, retrying short reads until the stream ends."""
    chunks = []
    remaining = size
    while remaining > 0:
        chunk = stream.read(remaining)
        if not chunk:
            break
        chunks.append(chunk)
        remaining -= len(chunk)
    return b"".join(chunks)


def read_frame(stream: BinaryIO) -> bytes:
    """Read one frame from a binary stream, blocking until it is complete.

    Returns:
        The payload bytes, without the length prefix.

    Raises:
        FramingError: If the stream ends before the frame is complete.
    """
    length_bytes = _read_exactly(stream, LENGTH_PREFIX_SIZE)
    if len(length_bytes) < LENGTH_PREFIX_SIZE:
        raise FramingError(
            f"Channel closed while reading length prefix ({len(length_bytes)} of "
            f"{LENGTH_PREFIX_SIZE} bytes)"
        )

    length = decode_length_prefix(length_bytes)
    payload = _read_exactly(stream, length)
    if len(payload) < length:
        raise FramingError(f"Channel closed mid-frame: expected {length} bytes, got {len(payload)}")
    return payload


def parse_message(payload: bytes, model: Type[ModelT]) -> ModelT:
    """Validate a frame payload against a message model.

    Raises:
        DecodingError: If the payload is invalid or misses required fields.
    """
    data = decode_payload(payload)
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise DecodingError(f"Invalid {model.__name__}: {e}") from e


def decode_message(stream: BinaryIO, model: Type[ModelT] = InboundMessage) -> ModelT:  # type: ignore[assignment]
    """Read one frame from the stream and decode it into model."""
    return parse_message(read_frame(stream), model)


def write_frame(stream: BinaryIO, frame: bytes) -> None:
    """Write an encoded frame and flush it."""
    stream.write(frame)
    stream.flush()

"""Tests for the shared native messaging channel."""

from __future__ import annotations

import asyncio
import io
import os

import pytest

from conftest import ScriptedExtension, reply
from yomitan_bridge.channel import ChannelClosedError, ChannelTimeoutError, NativeChannel
from yomitan_bridge.messages import OutboundMessage
from yomitan_bridge.native_messaging import (
    DecodingError,
    FramingError,
    MAX_MESSAGE_SIZE,
    MessageTooLargeError,
    encode_message,
)


class TestSendThenReceive:
    """Tests for a single exchange."""

    @pytest.mark.asyncio
    async def test_exchange(self, make_channel):
        """Test that one message yields the matching reply."""
        ext = ScriptedExtension(replies=[reply(200, {"reading": "いぬ"})])
        channel = make_channel(ext)

        result = await channel.send_then_receive(
            OutboundMessage(action="lookupWord", params={"text": ["犬"]})
        )

        assert result.response_status_code == 200
        assert result.data == {"reading": "いぬ"}
        assert ext.received == [{"action": "lookupWord", "params": {"text": ["犬"]}, "body": ""}]
        assert ext.events == ["write", "read"]

    @pytest.mark.asyncio
    async def test_frame_written_in_one_call(self, make_channel):
        """Test that the whole frame is written before anything is read."""
        ext = ScriptedExtension(replies=[reply(200, None)])
        await make_channel(ext).send_then_receive(OutboundMessage(action="ping"))
        assert ext.write_calls == 1

    @pytest.mark.asyncio
    async def test_sequential_exchanges(self, extension, make_channel):
        channel = make_channel(extension)

        for action in ["a", "b", "c"]:
            result = await channel.send_then_receive(OutboundMessage(action=action))
            assert result.data == {"echo": action}

        assert extension.events == ["write", "read"] * 3


class TestChannelFailures:
    """Tests for channel error handling."""

    @pytest.mark.asyncio
    async def test_eof_raises_framing_error(self, make_channel):
        """Test that the extension closing its side raises FramingError."""
        ext = ScriptedExtension(replies=[None])
        channel = make_channel(ext)

        with pytest.raises(FramingError):
            await channel.send_then_receive(OutboundMessage(action="lookupWord"))
        assert channel.closed

    @pytest.mark.asyncio
    async def test_closed_channel_does_not_write(self, make_channel):
        """Test that after a fatal error nothing more is written."""
        ext = ScriptedExtension(replies=[None, reply(200, {})])
        channel = make_channel(ext)

        with pytest.raises(FramingError):
            await channel.send_then_receive(OutboundMessage(action="first"))
        with pytest.raises(ChannelClosedError):
            await channel.send_then_receive(OutboundMessage(action="second"))

        assert [m["action"] for m in ext.received] == ["first"]

    @pytest.mark.asyncio
    async def test_truncated_reply(self, make_channel):
        frame = encode_message(reply(200, {"reading": "いぬ"}))
        ext = ScriptedExtension(replies=[frame[:-3], None])
        channel = make_channel(ext)

        with pytest.raises(FramingError):
            await channel.send_then_receive(OutboundMessage(action="lookupWord"))
        assert channel.closed

    @pytest.mark.asyncio
    async def test_malformed_reply_keeps_channel_open(self, make_channel):
        """Test that an invalid but complete frame only fails that exchange."""
        ext = ScriptedExtension(replies=[{"unexpected": True}, reply(200, "ok")])
        channel = make_channel(ext)

        with pytest.raises(DecodingError):
            await channel.send_then_receive(OutboundMessage(action="first"))
        assert not channel.closed

        result = await channel.send_then_receive(OutboundMessage(action="second"))
        assert result.data == "ok"

    @pytest.mark.asyncio
    async def test_oversized_message_not_written(self, make_channel):
        ext = ScriptedExtension(replies=[reply(200, {})])
        channel = make_channel(ext)

        with pytest.raises(MessageTooLargeError):
            await channel.send_then_receive(
                OutboundMessage(action="big", body="x" * MAX_MESSAGE_SIZE)
            )
        assert ext.write_calls == 0
        assert not channel.closed

    @pytest.mark.asyncio
    async def test_write_failure_closes_channel(self):
        """Test that an OSError on write is reported as a framing failure."""

        class BrokenPipe(io.RawIOBase):
            def writable(self) -> bool:
                return True

            def write(self, data) -> int:
                raise BrokenPipeError("extension went away")

        channel = NativeChannel(reader=io.BytesIO(), writer=BrokenPipe())

        with pytest.raises(FramingError):
            await channel.send_then_receive(OutboundMessage(action="lookupWord"))
        assert channel.closed


class TestSerialization:
    """Tests that concurrent callers never interleave on the channel."""

    @pytest.mark.asyncio
    async def test_concurrent_exchanges_alternate(self, make_channel):
        """Test that concurrent exchanges produce strict write/read pairs."""
        ext = ScriptedExtension(
            responder=lambda message: reply(200, {"echo": message["action"]}),
            read_delay=0.005,
        )
        channel = make_channel(ext)
        actions = [f"action{i}" for i in range(10)]

        results = await asyncio.gather(
            *(channel.send_then_receive(OutboundMessage(action=action)) for action in actions)
        )

        assert [r.data["echo"] for r in results] == actions
        assert ext.events == ["write", "read"] * len(actions)

    @pytest.mark.asyncio
    async def test_requests_served_in_arrival_order(self, extension, make_channel):
        channel = make_channel(extension)
        actions = ["first", "second", "third"]

        await asyncio.gather(
            *(channel.send_then_receive(OutboundMessage(action=action)) for action in actions)
        )

        assert [m["action"] for m in extension.received] == actions


class TestTimeout:
    """Tests for the optional exchange timeout."""

    @pytest.mark.asyncio
    async def test_timeout_keeps_framing_aligned(self):
        """Test that a late reply is consumed by the abandoned exchange."""
        read_fd, write_fd = os.pipe()
        reader = os.fdopen(read_fd, "rb", buffering=0)
        extension_out = os.fdopen(write_fd, "wb", buffering=0)
        written = io.BytesIO()
        channel = NativeChannel(reader=reader, writer=written, timeout=0.1)

        try:
            with pytest.raises(ChannelTimeoutError):
                await channel.send_then_receive(OutboundMessage(action="slow"))
            assert not channel.closed

            extension_out.write(encode_message(reply(200, "late")))
            extension_out.write(encode_message(reply(200, "fresh")))

            result = await channel.send_then_receive(OutboundMessage(action="next"))
            assert result.data == "fresh"
        finally:
            extension_out.close()
            reader.close()

    @pytest.mark.asyncio
    async def test_hung_extension_is_not_sent_more_work(self):
        """Test that requests behind a stuck exchange fail without writing."""
        read_fd, write_fd = os.pipe()
        reader = os.fdopen(read_fd, "rb", buffering=0)
        extension_out = os.fdopen(write_fd, "wb", buffering=0)
        written = io.BytesIO()
        channel = NativeChannel(reader=reader, writer=written, timeout=0.05)
        first = OutboundMessage(action="slow")

        try:
            with pytest.raises(ChannelTimeoutError):
                await channel.send_then_receive(first)
            for action in ("second", "third"):
                with pytest.raises(ChannelTimeoutError, match="still waiting"):
                    await channel.send_then_receive(OutboundMessage(action=action))

            assert written.getvalue() == encode_message(first)
            assert not channel.closed
        finally:
            extension_out.close()
            reader.close()

    @pytest.mark.asyncio
    async def test_no_timeout_by_default(self, extension, make_channel):
        assert make_channel(extension).timeout is None

"""Tests for the per-connection command dispatcher."""

from __future__ import annotations

import hashlib
from pathlib import Path
from unittest.mock import MagicMock

import pytest
from conftest import TOKEN, FakeWriter, HungUpWriter, header

from android_app_bridge.agent.auth import Authenticator, FailureCounter
from android_app_bridge.agent.dispatcher import CloseReason, CommandDispatcher, ConnectionState
from android_app_bridge.agent.host import DirectoryResourceFiles, LoggingSurfaceProvider
from android_app_bridge.protocol.codec import (
    encode_block,
    encode_bool,
    encode_int,
    encode_long,
    encode_utf,
)
from android_app_bridge.protocol.constants import PRIVILEGED_COMMANDS, CommandCode

VERSION_REPLY = encode_int(4)


def _command(code: int) -> bytes:
    return encode_int(code)


EOF = _command(CommandCode.EOF)
PING = _command(CommandCode.PING)


@pytest.fixture
def counter() -> FailureCounter:
    return FailureCounter()


@pytest.fixture
def dispatcher(counter: FailureCounter, surfaces: LoggingSurfaceProvider) -> CommandDispatcher:
    return CommandDispatcher(Authenticator(TOKEN, counter), surfaces, protocol_version=4)


class TestHandshakeOutcomes:
    """Tests for how a connection ends before the command loop."""

    @pytest.mark.asyncio
    async def test_eof_right_after_handshake(self, dispatcher, stream_reader) -> None:
        sink = FakeWriter()
        conn = await dispatcher.serve(stream_reader(header() + EOF), sink)

        assert conn.close_reason is CloseReason.EOF
        assert conn.state is ConnectionState.CLOSED
        assert conn.negotiated_version == 4
        assert bytes(sink.data) == VERSION_REPLY
        assert sink.closed

    @pytest.mark.asyncio
    async def test_bad_magic_closes_silently(self, dispatcher, stream_reader) -> None:
        sink = FakeWriter()
        data = encode_long(0x1234) + encode_int(4) + PING
        conn = await dispatcher.serve(stream_reader(data), sink)

        assert conn.close_reason is CloseReason.BAD_MAGIC
        assert sink.data == b""
        assert sink.closed

    @pytest.mark.asyncio
    async def test_version_mismatch_replies_then_closes(self, dispatcher, stream_reader) -> None:
        sink = FakeWriter()
        conn = await dispatcher.serve(stream_reader(header(3) + PING + EOF), sink)

        assert conn.close_reason is CloseReason.VERSION_MISMATCH
        assert conn.commands == []
        assert bytes(sink.data) == VERSION_REPLY

    @pytest.mark.asyncio
    async def test_stream_ending_without_eof(self, dispatcher, stream_reader) -> None:
        sink = FakeWriter()
        conn = await dispatcher.serve(stream_reader(header() + PING), sink)

        assert conn.close_reason is CloseReason.STREAM_ERROR
        assert conn.commands == [CommandCode.PING]
        assert sink.closed


class TestPing:
    """Tests for PING."""

    @pytest.mark.asyncio
    async def test_foreground(self, dispatcher, stream_reader) -> None:
        sink = FakeWriter()
        await dispatcher.serve(stream_reader(header() + PING + EOF), sink)
        assert bytes(sink.data) == VERSION_REPLY + encode_bool(True)

    @pytest.mark.asyncio
    async def test_background(self, counter, stream_reader) -> None:
        dispatcher = CommandDispatcher(
            Authenticator(TOKEN, counter), LoggingSurfaceProvider(foreground=False)
        )
        sink = FakeWriter()
        await dispatcher.serve(stream_reader(header() + PING + EOF), sink)
        assert bytes(sink.data) == VERSION_REPLY + encode_bool(False)

    @pytest.mark.asyncio
    async def test_several_commands_on_one_connection(self, dispatcher, stream_reader) -> None:
        sink = FakeWriter()
        conn = await dispatcher.serve(stream_reader(header() + PING + PING + EOF), sink)

        assert conn.commands == [CommandCode.PING, CommandCode.PING]
        assert bytes(sink.data) == VERSION_REPLY + encode_bool(True) * 2


class TestUnknownCommand:
    """Tests for unrecognized command codes."""

    @pytest.mark.asyncio
    async def test_closes_without_serving_later_commands(
        self, dispatcher, stream_reader
    ) -> None:
        sink = FakeWriter()
        conn = await dispatcher.serve(stream_reader(header() + _command(99) + PING + EOF), sink)

        assert conn.close_reason is CloseReason.UNKNOWN_COMMAND
        assert bytes(sink.data) == VERSION_REPLY

    @pytest.mark.asyncio
    async def test_code_one_is_unknown(self, dispatcher, stream_reader) -> None:
        conn = await dispatcher.serve(stream_reader(header() + _command(1)), FakeWriter())
        assert conn.close_reason is CloseReason.UNKNOWN_COMMAND


class TestRestartActivity:
    """Tests for RESTART_ACTIVITY."""

    @pytest.mark.asyncio
    async def test_valid_token_restarts_once(
        self, dispatcher, counter, surfaces, stream_reader
    ) -> None:
        sink = FakeWriter()
        data = header() + _command(CommandCode.RESTART_ACTIVITY) + encode_long(TOKEN) + EOF
        conn = await dispatcher.serve(stream_reader(data), sink)

        assert conn.close_reason is CloseReason.EOF
        assert conn.authenticated is True
        assert surfaces.restarts == 1
        assert counter.count == 0
        # No response to a restart
        assert bytes(sink.data) == VERSION_REPLY

    @pytest.mark.asyncio
    async def test_wrong_token_closes_and_counts(
        self, dispatcher, counter, surfaces, stream_reader
    ) -> None:
        sink = FakeWriter()
        data = header() + _command(CommandCode.RESTART_ACTIVITY) + encode_long(TOKEN - 1) + PING
        conn = await dispatcher.serve(stream_reader(data), sink)

        assert conn.close_reason is CloseReason.AUTH_FAILED
        assert conn.authenticated is False
        assert surfaces.restarts == 0
        assert counter.count == 1
        assert bytes(sink.data) == VERSION_REPLY

    @pytest.mark.asyncio
    async def test_no_foreground_surface_still_consumes_token(
        self, counter, stream_reader
    ) -> None:
        surfaces = LoggingSurfaceProvider(foreground=False)
        dispatcher = CommandDispatcher(Authenticator(TOKEN, counter), surfaces)
        sink = FakeWriter()
        data = (
            header() + _command(CommandCode.RESTART_ACTIVITY) + encode_long(TOKEN) + PING + EOF
        )
        conn = await dispatcher.serve(stream_reader(data), sink)

        assert conn.close_reason is CloseReason.EOF
        assert surfaces.restarts == 0
        assert bytes(sink.data) == VERSION_REPLY + encode_bool(False)

    @pytest.mark.asyncio
    async def test_privileged_commands_share_the_token_check(
        self, dispatcher, counter, surfaces, stream_reader, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        assert CommandCode.RESTART_ACTIVITY in PRIVILEGED_COMMANDS
        monkeypatch.setattr(
            "android_app_bridge.agent.dispatcher.PRIVILEGED_COMMANDS",
            frozenset({CommandCode.SHOW_TOAST}),
        )
        data = (
            header() + _command(CommandCode.SHOW_TOAST) + encode_long(TOKEN - 1)
            + encode_utf("hello") + EOF
        )
        conn = await dispatcher.serve(stream_reader(data), FakeWriter())

        assert conn.close_reason is CloseReason.AUTH_FAILED
        assert surfaces.messages == []
        assert counter.count == 1


class TestShowToast:
    """Tests for SHOW_TOAST."""

    @pytest.mark.asyncio
    async def test_shows_message(self, dispatcher, surfaces, stream_reader) -> None:
        data = header() + _command(CommandCode.SHOW_TOAST) + encode_utf("Build 42 ✓") + EOF
        sink = FakeWriter()
        await dispatcher.serve(stream_reader(data), sink)

        assert surfaces.messages == ["Build 42 ✓"]
        assert bytes(sink.data) == VERSION_REPLY

    @pytest.mark.asyncio
    async def test_dropped_without_surface(self, counter, stream_reader) -> None:
        surfaces = LoggingSurfaceProvider(foreground=False)
        dispatcher = CommandDispatcher(Authenticator(TOKEN, counter), surfaces)
        data = header() + _command(CommandCode.SHOW_TOAST) + encode_utf("hello") + PING + EOF
        sink = FakeWriter()
        conn = await dispatcher.serve(stream_reader(data), sink)

        assert surfaces.messages == []
        assert conn.close_reason is CloseReason.EOF
        assert bytes(sink.data) == VERSION_REPLY + encode_bool(False)

    @pytest.mark.asyncio
    async def test_truncated_message(self, dispatcher, surfaces, stream_reader) -> None:
        data = header() + _command(CommandCode.SHOW_TOAST) + b"\x00\x05ab"
        conn = await dispatcher.serve(stream_reader(data), FakeWriter())

        assert conn.close_reason is CloseReason.STREAM_ERROR
        assert surfaces.messages == []


class TestPathCommands:
    """Tests for PATH_EXISTS and PATH_CHECKSUM."""

    @pytest.fixture
    def resource_root(self, tmp_path: Path) -> Path:
        root = tmp_path / "resources"
        (root / "res").mkdir(parents=True)
        (root / "res" / "a.txt").write_bytes(b"abc")
        (tmp_path / "secret.txt").write_bytes(b"outside")
        return root

    @pytest.fixture
    def resource_dispatcher(
        self, counter: FailureCounter, surfaces: LoggingSurfaceProvider, resource_root: Path
    ) -> CommandDispatcher:
        return CommandDispatcher(
            Authenticator(TOKEN, counter), surfaces, DirectoryResourceFiles(resource_root)
        )

    @pytest.mark.asyncio
    async def test_disabled_closes_connection(self, dispatcher, stream_reader) -> None:
        sink = FakeWriter()
        data = header() + _command(CommandCode.PATH_EXISTS) + encode_utf("res/a.txt") + PING
        conn = await dispatcher.serve(stream_reader(data), sink)

        assert conn.close_reason is CloseReason.UNEXPECTED_COMMAND
        assert bytes(sink.data) == VERSION_REPLY

    @pytest.mark.asyncio
    async def test_checksum_disabled_closes_connection(self, dispatcher, stream_reader) -> None:
        data = header() + _command(CommandCode.PATH_CHECKSUM) + encode_utf("res/a.txt")
        conn = await dispatcher.serve(stream_reader(data), FakeWriter())
        assert conn.close_reason is CloseReason.UNEXPECTED_COMMAND

    @pytest.mark.asyncio
    async def test_path_exists_reports_size(self, resource_dispatcher, stream_reader) -> None:
        sink = FakeWriter()
        data = (
            header()
            + _command(CommandCode.PATH_EXISTS)
            + encode_utf("res/a.txt")
            + _command(CommandCode.PATH_EXISTS)
            + encode_utf("res/missing.txt")
            + EOF
        )
        await resource_dispatcher.serve(stream_reader(data), sink)

        assert bytes(sink.data) == VERSION_REPLY + encode_long(3) + encode_long(-1)

    @pytest.mark.asyncio
    async def test_path_outside_root_is_absent(self, resource_dispatcher, stream_reader) -> None:
        sink = FakeWriter()
        data = header() + _command(CommandCode.PATH_EXISTS) + encode_utf("../secret.txt") + EOF
        await resource_dispatcher.serve(stream_reader(data), sink)

        assert bytes(sink.data) == VERSION_REPLY + encode_long(-1)

    @pytest.mark.asyncio
    async def test_checksum_present_and_absent(self, resource_dispatcher, stream_reader) -> None:
        sink = FakeWriter()
        data = (
            header()
            + _command(CommandCode.PATH_CHECKSUM)
            + encode_utf("/res/a.txt")
            + _command(CommandCode.PATH_CHECKSUM)
            + encode_utf("res/missing.txt")
            + EOF
        )
        await resource_dispatcher.serve(stream_reader(data), sink)

        expected = encode_block(hashlib.md5(b"abc").digest()) + encode_block(b"")
        assert bytes(sink.data) == VERSION_REPLY + expected


class TestHostErrors:
    """Tests for failures raised by the hosting process."""

    @pytest.mark.asyncio
    async def test_surface_error_ends_connection(self, counter, stream_reader) -> None:
        surfaces = MagicMock()
        surfaces.current_foreground_surface.side_effect = RuntimeError("boom")
        dispatcher = CommandDispatcher(Authenticator(TOKEN, counter), surfaces)
        sink = FakeWriter()

        conn = await dispatcher.serve(stream_reader(header() + PING + EOF), sink)

        assert conn.close_reason is CloseReason.HOST_ERROR
        assert sink.closed

    @pytest.mark.asyncio
    async def test_dispatcher_survives_host_error(self, counter, stream_reader) -> None:
        surfaces = MagicMock()
        surfaces.current_foreground_surface.side_effect = [RuntimeError("boom"), "main"]
        dispatcher = CommandDispatcher(Authenticator(TOKEN, counter), surfaces)

        await dispatcher.serve(stream_reader(header() + PING), FakeWriter())
        sink = FakeWriter()
        conn = await dispatcher.serve(stream_reader(header() + PING + EOF), sink)

        assert conn.close_reason is CloseReason.EOF
        assert bytes(sink.data) == VERSION_REPLY + encode_bool(True)

    @pytest.mark.asyncio
    async def test_client_hang_up_is_a_stream_error(self, dispatcher, stream_reader) -> None:
        sink = HungUpWriter(drains_allowed=1)

        conn = await dispatcher.serve(stream_reader(header() + PING + EOF), sink)

        assert conn.close_reason is CloseReason.STREAM_ERROR
        assert conn.commands == [CommandCode.PING]
        assert sink.closed

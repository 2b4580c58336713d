"""Command dispatcher - per-connection handshake and command loop."""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol

import structlog

from android_app_bridge.agent.auth import Authenticator
from android_app_bridge.agent.host import DisabledResourceFiles, HostSurfaceProvider, ResourceFiles
from android_app_bridge.errors import BridgeError, auth_failed_error, unknown_command_error
from android_app_bridge.protocol.codec import StreamSink, WireReader, WireWriter
from android_app_bridge.protocol.constants import (
    PRIVILEGED_COMMANDS,
    PROTOCOL_VERSION,
    CommandCode,
    UnknownCommand,
    parse_command,
)
from android_app_bridge.protocol.handshake import agent_handshake

logger = structlog.get_logger()


class ConnectionState(Enum):
    """Lifecycle of one accepted connection."""

    AWAITING_HEADER = "awaiting_header"
    HANDSHAKING = "handshaking"
    COMMAND_LOOP = "command_loop"
    CLOSED = "closed"


class CloseReason(Enum):
    """Why a connection reached ``CLOSED``."""

    EOF = "eof"
    BAD_MAGIC = "bad_magic"
    VERSION_MISMATCH = "version_mismatch"
    AUTH_FAILED = "auth_failed"
    UNKNOWN_COMMAND = "unknown_command"
    UNEXPECTED_COMMAND = "unexpected_command"
    STREAM_ERROR = "stream_error"
    HOST_ERROR = "host_error"


class ClosableSink(StreamSink, Protocol):
    def close(self) -> None: ...

    async def wait_closed(self) -> None: ...


@dataclass
class Connection:
    """An accepted connection and what is known about it so far."""

    reader: WireReader
    writer: WireWriter
    state: ConnectionState = ConnectionState.AWAITING_HEADER
    negotiated_version: int | None = None
    authenticated: bool | None = None
    close_reason: CloseReason | None = None
    commands: list[CommandCode] = field(default_factory=list)


# Handlers return False to end the loop
Handler = Callable[[Connection], Awaitable[bool]]

_CLOSE_REASONS = {
    "ERR_BAD_MAGIC": CloseReason.BAD_MAGIC,
    "ERR_AUTH_FAILED": CloseReason.AUTH_FAILED,
    "ERR_UNKNOWN_COMMAND": CloseReason.UNKNOWN_COMMAND,
}


class CommandDispatcher:
    """Serves one connection at a time; safe to share across connections."""

    def __init__(
        self,
        authenticator: Authenticator,
        surfaces: HostSurfaceProvider,
        resources: ResourceFiles | None = None,
        protocol_version: int = PROTOCOL_VERSION,
    ) -> None:
        self.authenticator = authenticator
        self.surfaces = surfaces
        self.resources: ResourceFiles = resources or DisabledResourceFiles()
        self.protocol_version = protocol_version
        self._handlers: dict[CommandCode, Handler] = {
            CommandCode.PING: self._handle_ping,
            CommandCode.PATH_EXISTS: self._handle_path_exists,
            CommandCode.PATH_CHECKSUM: self._handle_path_checksum,
            CommandCode.RESTART_ACTIVITY: self._handle_restart_activity,
            CommandCode.SHOW_TOAST: self._handle_show_toast,
        }

    async def serve(
        self, reader: asyncio.StreamReader, writer: ClosableSink
    ) -> Connection:
        """Run handshake and command loop; the writer is closed on every path."""
        conn = Connection(reader=WireReader(reader), writer=WireWriter(writer))
        try:
            conn.close_reason = await self._run(conn)
        except BridgeError as exc:
            logger.warning(
                "connection_aborted",
                code=exc.code,
                message=exc.message,
                state=conn.state.value,
            )
            conn.close_reason = _CLOSE_REASONS.get(exc.code, CloseReason.STREAM_ERROR)
        except Exception:
            logger.exception("connection_host_error", state=conn.state.value)
            conn.close_reason = CloseReason.HOST_ERROR
        finally:
            conn.state = ConnectionState.CLOSED
            writer.close()
            with contextlib.suppress(Exception):
                await writer.wait_closed()
        logger.debug("connection_closed", reason=conn.close_reason.value)
        return conn

    async def _run(self, conn: Connection) -> CloseReason:
        conn.state = ConnectionState.HANDSHAKING
        result = await agent_handshake(conn.reader, conn.writer, self.protocol_version)
        if not result.compatible:
            return CloseReason.VERSION_MISMATCH
        conn.negotiated_version = result.local_version

        conn.state = ConnectionState.COMMAND_LOOP
        while True:
            command = parse_command(await conn.reader.read_int())
            if isinstance(command, UnknownCommand):
                # The payload length of an unknown command is unknowable
                raise unknown_command_error(command.code)
            if command is CommandCode.EOF:
                logger.debug("received_eof")
                return CloseReason.EOF

            conn.commands.append(command)
            if command in PRIVILEGED_COMMANDS:
                conn.authenticated = await self.authenticator.authenticate(conn.reader)
                if not conn.authenticated:
                    raise auth_failed_error(self.authenticator.counter.count)
            if not await self._handlers[command](conn):
                return conn.close_reason or CloseReason.STREAM_ERROR

    async def _handle_ping(self, conn: Connection) -> bool:
        surface = await asyncio.to_thread(self.surfaces.current_foreground_surface)
        active = surface is not None
        conn.writer.write_bool(active)
        await conn.writer.drain()
        logger.debug("ping_received", foreground=active)
        return True

    def _extracted_resources_enabled(self, conn: Connection, command: CommandCode) -> bool:
        if self.resources.extracted_resources:
            return True
        logger.error("unexpected_command", command=command.name, reason="extracted_resources_off")
        conn.close_reason = CloseReason.UNEXPECTED_COMMAND
        return False

    async def _handle_path_exists(self, conn: Connection) -> bool:
        if not self._extracted_resources_enabled(conn, CommandCode.PATH_EXISTS):
            return False
        path = await conn.reader.read_utf()
        size = await asyncio.to_thread(self.resources.file_size, path)
        conn.writer.write_long(size)
        await conn.writer.drain()
        logger.debug("path_exists_received", path=path, size=size)
        return True

    async def _handle_path_checksum(self, conn: Connection) -> bool:
        if not self._extracted_resources_enabled(conn, CommandCode.PATH_CHECKSUM):
            return False
        loop = asyncio.get_running_loop()
        begin = loop.time()
        path = await conn.reader.read_utf()
        checksum = await asyncio.to_thread(self.resources.checksum, path)
        conn.writer.write_block(checksum or b"")
        await conn.writer.drain()
        logger.debug(
            "path_checksum_received",
            path=path,
            checksum=checksum.hex() if checksum else None,
            elapsed_ms=round((loop.time() - begin) * 1000, 1),
        )
        return True

    async def _handle_restart_activity(self, conn: Connection) -> bool:
        surface = await asyncio.to_thread(self.surfaces.current_foreground_surface)
        if surface is not None:
            logger.info("restarting_activity")
            await asyncio.to_thread(self.surfaces.restart, surface)
        else:
            logger.debug("restart_skipped", reason="no_foreground_surface")
        return True

    async def _handle_show_toast(self, conn: Connection) -> bool:
        text = await conn.reader.read_utf()
        surface = await asyncio.to_thread(self.surfaces.current_foreground_surface)
        if surface is not None:
            await asyncio.to_thread(self.surfaces.show_message, surface, text)
        else:
            logger.debug("toast_dropped", reason="no_foreground_surface", text=text)
        return True

"""Request invoker - one connection, one command, one response."""

from __future__ import annotations

import contextlib
from collections.abc import Awaitable, Callable
from typing import TypeVar

import structlog

from android_app_bridge.desktop.transport import DeviceTransport
from android_app_bridge.errors import BridgeError
from android_app_bridge.paths import socket_name
from android_app_bridge.protocol.codec import WireReader, WireWriter
from android_app_bridge.protocol.constants import PROTOCOL_VERSION, CommandCode
from android_app_bridge.protocol.handshake import client_handshake
from android_app_bridge.validation import validate_package

logger = structlog.get_logger()

T = TypeVar("T")

# Writes exactly one command's request and reads exactly one response
Communicator = Callable[[WireReader, WireWriter], Awaitable[T]]


class RequestInvoker:
    """Opens a fresh connection per request to the agent of one package.

    Holds no per-call state. Transport failures propagate unchanged; retry
    policy belongs to the caller.
    """

    def __init__(
        self,
        package: str,
        protocol_version: int = PROTOCOL_VERSION,
        strict_version: bool = True,
    ) -> None:
        validate_package(package)
        self.package = package
        self.protocol_version = protocol_version
        self.strict_version = strict_version

    async def invoke(self, transport: DeviceTransport, communicator: Communicator[T]) -> T:
        """Connect, handshake, run ``communicator``, send EOF, and close."""
        reader, writer = await transport.open_channel(socket_name(self.package))
        wire_reader = WireReader(reader)
        wire_writer = WireWriter(writer)
        try:
            await client_handshake(
                wire_reader,
                wire_writer,
                self.protocol_version,
                strict=self.strict_version,
            )
            result = await communicator(wire_reader, wire_writer)
            try:
                wire_writer.write_int(CommandCode.EOF)
                await wire_writer.drain()
            except BridgeError as exc:
                # The agent may already have closed after a command without a response
                if exc.code != "ERR_STREAM_CLOSED":
                    raise
            return result
        finally:
            writer.close()
            with contextlib.suppress(Exception):
                await writer.wait_closed()
            logger.debug("channel_closed", serial=transport.serial, package=self.package)

"""App client - high-level operations against an app's embedded agent."""

from __future__ import annotations

from enum import Enum

import structlog

from android_app_bridge.desktop.invoker import RequestInvoker
from android_app_bridge.desktop.transport import DeviceTransport
from android_app_bridge.protocol.codec import WireReader, WireWriter
from android_app_bridge.protocol.constants import PROTOCOL_VERSION, CommandCode
from android_app_bridge.validation import validate_token

logger = structlog.get_logger()


class AppState(Enum):
    """Whether the app's agent answered and had a foreground surface."""

    FOREGROUND = "foreground"
    BACKGROUND = "background"


class AppClient:
    """Desktop-side client for one app, one connection per operation."""

    def __init__(
        self,
        package: str,
        token: int = 0,
        protocol_version: int = PROTOCOL_VERSION,
        strict_version: bool = True,
    ) -> None:
        validate_token(token)
        self.package = package
        self._token = token
        self.invoker = RequestInvoker(
            package,
            protocol_version=protocol_version,
            strict_version=strict_version,
        )

    async def get_app_state(self, transport: DeviceTransport) -> AppState:
        """Ping the agent; raises if it cannot be reached."""

        async def _ping(reader: WireReader, writer: WireWriter) -> AppState:
            writer.write_int(CommandCode.PING)
            await writer.drain()
            foreground = await reader.read_bool()
            logger.info(
                "ping_replied",
                serial=transport.serial,
                package=self.package,
                foreground=foreground,
            )
            return AppState.FOREGROUND if foreground else AppState.BACKGROUND

        return await self.invoker.invoke(transport, _ping)

    async def show_toast(self, transport: DeviceTransport, message: str) -> None:
        """Show a message on the app's foreground surface, if any."""

        async def _toast(reader: WireReader, writer: WireWriter) -> None:
            writer.write_int(CommandCode.SHOW_TOAST)
            writer.write_utf(message)
            await writer.drain()

        await self.invoker.invoke(transport, _toast)

    async def restart_activity(self, transport: DeviceTransport) -> AppState:
        """Restart the foreground activity if the app is running.

        Pings first, so nothing privileged is sent when the agent cannot be
        reached; that failure propagates. Returns the state seen by the ping.
        """
        state = await self.get_app_state(transport)

        async def _restart(reader: WireReader, writer: WireWriter) -> None:
            writer.write_int(CommandCode.RESTART_ACTIVITY)
            writer.write_long(self._token)
            await writer.drain()

        await self.invoker.invoke(transport, _restart)
        logger.info(
            "restart_requested", serial=transport.serial, package=self.package, state=state.value
        )
        return state

    async def path_size(self, transport: DeviceTransport, path: str) -> int:
        """Size of an on-device resource file as reported by the agent."""

        async def _exists(reader: WireReader, writer: WireWriter) -> int:
            writer.write_int(CommandCode.PATH_EXISTS)
            writer.write_utf(path)
            await writer.drain()
            return await reader.read_long()

        return await self.invoker.invoke(transport, _exists)

    async def path_checksum(self, transport: DeviceTransport, path: str) -> bytes | None:
        """Checksum of an on-device resource file, or None if absent."""

        async def _checksum(reader: WireReader, writer: WireWriter) -> bytes | None:
            writer.write_int(CommandCode.PATH_CHECKSUM)
            writer.write_utf(path)
            await writer.drain()
            checksum = await reader.read_block()
            return checksum or None

        return await self.invoker.invoke(transport, _checksum)

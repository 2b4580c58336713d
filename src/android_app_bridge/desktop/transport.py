"""Device transports - open the agent's socket and move small files."""

from __future__ import annotations

import asyncio
import functools
import socket
from collections.abc import Callable
from pathlib import Path
from typing import TYPE_CHECKING, Protocol, TypeVar

import structlog

from android_app_bridge.errors import (
    BridgeError,
    adb_command_error,
    device_offline_error,
    sync_error,
    timeout_error,
)
from android_app_bridge.paths import local_socket_address

if TYPE_CHECKING:
    from adbutils import AdbDevice

logger = structlog.get_logger()

T = TypeVar("T")

StreamPair = tuple[asyncio.StreamReader, asyncio.StreamWriter]


class DeviceTransport(Protocol):
    """What the desktop side needs from the link to a device."""

    @property
    def serial(self) -> str: ...

    async def open_channel(self, name: str) -> StreamPair: ...

    async def push_text(self, remote_path: str, text: str) -> None: ...

    async def pull_text(self, remote_path: str) -> str | None: ...


def _late_result(
    operation: str, discard: Callable[[T], object] | None, task: asyncio.Future[T]
) -> None:
    if task.cancelled() or task.exception() is not None:
        return
    logger.debug("late_result_discarded", operation=operation)
    if discard is not None:
        discard(task.result())


class AdbTransport:
    """Transport over adb using adbutils.

    The agent socket is reached through adb's ``localabstract:`` forwarding;
    files move over the adb sync protocol.
    """

    def __init__(self, serial: str, timeout: float | None = 30.0) -> None:
        self._serial = serial
        self.timeout = timeout
        self._device: AdbDevice | None = None

    @property
    def serial(self) -> str:
        return self._serial

    async def open_channel(self, name: str) -> StreamPair:
        from adbutils import Network

        def _connect() -> socket.socket:
            device = self._get_device()
            return device.create_connection(Network.LOCAL_ABSTRACT, name)

        sock = await self._call(f"localabstract:{name}", _connect, discard=lambda s: s.close())
        try:
            reader, writer = await asyncio.open_connection(sock=sock)
        except OSError as exc:
            sock.close()
            raise adb_command_error(f"localabstract:{name}", str(exc)) from exc
        logger.debug("channel_opened", serial=self._serial, socket=name)
        return reader, writer

    async def push_text(self, remote_path: str, text: str) -> None:
        def _push() -> None:
            device = self._get_device()
            device.sync.push(text.encode("utf-8"), remote_path)

        await self._call(f"push {remote_path}", _push, path=remote_path)
        logger.info("file_pushed", serial=self._serial, remote=remote_path)

    async def pull_text(self, remote_path: str) -> str | None:
        def _pull() -> str | None:
            device = self._get_device()
            info = device.sync.stat(remote_path)
            if info.mode == 0:
                return None
            return str(device.sync.read_text(remote_path))

        text = await self._call(f"pull {remote_path}", _pull, path=remote_path)
        logger.info(
            "file_pulled", serial=self._serial, remote=remote_path, found=text is not None
        )
        return text

    def _get_device(self) -> AdbDevice:
        from adbutils import adb

        if self._device is None:
            device = adb.device(serial=self._serial)
            state = device.get_state()
            if state != "device":
                raise device_offline_error(self._serial)
            self._device = device
        return self._device

    async def _call(
        self,
        operation: str,
        func: Callable[[], T],
        path: str | None = None,
        discard: Callable[[T], object] | None = None,
    ) -> T:
        """Run a blocking adb call on a worker thread, mapping its failures.

        The thread cannot be cancelled, so a result that lands after the
        timeout is handed to ``discard`` instead of being dropped.
        """
        from adbutils import AdbError, AdbTimeout

        task = asyncio.ensure_future(asyncio.to_thread(func))
        try:
            if self.timeout is None:
                return await task
            try:
                return await asyncio.wait_for(asyncio.shield(task), timeout=self.timeout)
            except (TimeoutError, asyncio.CancelledError):
                task.add_done_callback(functools.partial(_late_result, operation, discard))
                raise
        except BridgeError:
            raise
        except (TimeoutError, AdbTimeout) as exc:
            raise timeout_error(operation, self.timeout) from exc
        except AdbError as exc:
            reason = str(exc)
            if "not found" in reason or "offline" in reason:
                self._device = None
                raise device_offline_error(self._serial) from exc
            if path is not None:
                raise sync_error(path, reason) from exc
            raise adb_command_error(operation, reason) from exc
        except OSError as exc:
            self._device = None
            raise adb_command_error(operation, str(exc)) from exc


class LocalTransport:
    """Transport to an agent running on this machine.

    Channels connect to ``local_socket_address``; remote file paths are
    mapped under ``files_root``.
    """

    def __init__(
        self,
        socket_dir: Path | None = None,
        files_root: Path | None = None,
        serial: str = "local",
    ) -> None:
        self.socket_dir = socket_dir
        self.files_root = files_root or Path.home() / ".android-app-bridge" / "device"
        self._serial = serial

    @property
    def serial(self) -> str:
        return self._serial

    async def open_channel(self, name: str) -> StreamPair:
        address = local_socket_address(name, self.socket_dir)
        try:
            return await asyncio.open_unix_connection(address)
        except OSError as exc:
            raise adb_command_error(f"connect {name}", str(exc)) from exc

    def _local_path(self, remote_path: str) -> Path:
        return self.files_root / remote_path.lstrip("/")

    async def push_text(self, remote_path: str, text: str) -> None:
        local = self._local_path(remote_path)
        try:
            local.parent.mkdir(parents=True, exist_ok=True)
            local.write_text(text, encoding="utf-8")
        except OSError as exc:
            raise sync_error(remote_path, str(exc)) from exc

    async def pull_text(self, remote_path: str) -> str | None:
        local = self._local_path(remote_path)
        try:
            return local.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise sync_error(remote_path, str(exc)) from exc

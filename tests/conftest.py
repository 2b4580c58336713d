"""Pytest configuration and fixtures."""

from __future__ import annotations

import asyncio
import os
import shutil
import tempfile
from collections.abc import Callable, Generator
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
import structlog

from android_app_bridge.agent.host import LoggingSurfaceProvider
from android_app_bridge.agent.server import AgentServer
from android_app_bridge.config import ENV_PREFIX, AgentConfig
from android_app_bridge.protocol.codec import encode_int, encode_long
from android_app_bridge.protocol.constants import PROTOCOL_IDENTIFIER, PROTOCOL_VERSION

PACKAGE = "com.example.app"
TOKEN = 0x1234_5678_9ABC_DEF0


class FakeWriter:
    """Collects written bytes in place of an ``asyncio.StreamWriter``."""

    def __init__(self) -> None:
        self.data = bytearray()
        self.closed = False
        self.drains = 0

    def write(self, data: bytes) -> None:
        self.data.extend(data)

    async def drain(self) -> None:
        self.drains += 1

    def close(self) -> None:
        self.closed = True

    async def wait_closed(self) -> None:
        return None


class HungUpWriter(FakeWriter):
    """A ``FakeWriter`` whose peer disconnects after ``drains_allowed`` flushes."""

    def __init__(self, drains_allowed: int = 0) -> None:
        super().__init__()
        self.drains_allowed = drains_allowed

    async def drain(self) -> None:
        if self.drains >= self.drains_allowed:
            raise ConnectionResetError("Connection lost")
        self.drains += 1


def header(version: int = PROTOCOL_VERSION) -> bytes:
    """Bytes a client sends to open a session."""
    return encode_long(PROTOCOL_IDENTIFIER) + encode_int(version)


@pytest.fixture(autouse=True)
def _clean_environment(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    """Isolate tests from ANDROID_APP_BRIDGE_* settings and logging config."""
    for name in list(os.environ):
        if name.startswith(ENV_PREFIX):
            monkeypatch.delenv(name)
    yield
    structlog.reset_defaults()


@pytest.fixture
def stream_reader() -> Callable[[bytes], asyncio.StreamReader]:
    """Build a reader preloaded with bytes; call from inside a running loop."""

    def _make(data: bytes, eof: bool = True) -> asyncio.StreamReader:
        reader = asyncio.StreamReader()
        reader.feed_data(data)
        if eof:
            reader.feed_eof()
        return reader

    return _make


@pytest.fixture
def socket_dir() -> Generator[Path, None, None]:
    """Short directory for unix sockets (paths are limited to ~108 bytes)."""
    path = Path(tempfile.mkdtemp(prefix="aab-"))
    yield path
    shutil.rmtree(path, ignore_errors=True)


@pytest.fixture
def surfaces() -> LoggingSurfaceProvider:
    """Host surfaces with a foreground activity."""
    return LoggingSurfaceProvider()


@pytest.fixture
def agent_server(
    socket_dir: Path, surfaces: LoggingSurfaceProvider
) -> Callable[..., AgentServer]:
    """Factory for agent servers listening in ``socket_dir``."""

    def _make(**overrides: object) -> AgentServer:
        resources = overrides.pop("resources", None)
        config = AgentConfig(
            package=PACKAGE,
            token=TOKEN,
            socket_dir=socket_dir,
            **overrides,  # type: ignore[arg-type]
        )
        return AgentServer(config, surfaces, resources)  # type: ignore[arg-type]

    return _make


@pytest.fixture
def mock_adb() -> Generator[MagicMock, None, None]:
    """Mock adbutils for unit tests."""
    with patch("adbutils.adb") as mock:
        mock_device = MagicMock()
        mock_device.serial = "emulator-5554"
        mock_device.get_state.return_value = "device"
        mock.device.return_value = mock_device
        yield mock

"""Agent server - accepts connections on the app's local socket."""

from __future__ import annotations

import asyncio
import contextlib
import threading
from pathlib import Path

import structlog

from android_app_bridge.agent.auth import Authenticator, FailureCounter
from android_app_bridge.agent.dispatcher import ClosableSink, CommandDispatcher
from android_app_bridge.agent.host import HostSurfaceProvider, ResourceFiles
from android_app_bridge.config import AgentConfig
from android_app_bridge.paths import local_socket_address, socket_name

logger = structlog.get_logger()


def _printable(address: str) -> str:
    return "@" + address[1:] if address.startswith("\0") else address


class AgentServer:
    """Serves the control protocol for the lifetime of the hosting process.

    Each accepted connection runs as its own task. Once more than
    ``max_auth_failures`` tokens have been rejected the server stops listening
    for good.
    """

    def __init__(
        self,
        config: AgentConfig,
        surfaces: HostSurfaceProvider,
        resources: ResourceFiles | None = None,
    ) -> None:
        self.config = config
        self.counter = FailureCounter(config.max_auth_failures)
        self.dispatcher = CommandDispatcher(
            Authenticator(config.token, self.counter),
            surfaces,
            resources,
            protocol_version=config.protocol_version,
        )
        self.address = local_socket_address(socket_name(config.package), config.socket_dir)
        self.connections_accepted = 0
        self.connections_rejected = 0
        self._server: asyncio.AbstractServer | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._closed: asyncio.Event | None = None
        self._stopped = False
        self._lock = threading.Lock()

    @property
    def is_accepting(self) -> bool:
        """Whether the listening socket is open."""
        return self._server is not None and self._server.is_serving()

    async def start(self) -> None:
        """Bind the local socket and begin accepting connections."""
        if self._server is not None:
            return
        if self.config.socket_dir is not None:
            Path(self.address).parent.mkdir(parents=True, exist_ok=True)
            Path(self.address).unlink(missing_ok=True)

        self._loop = asyncio.get_running_loop()
        self._closed = asyncio.Event()
        self._server = await asyncio.start_unix_server(self._on_connection, path=self.address)
        logger.info(
            "agent_server_started",
            package=self.config.package,
            address=_printable(self.address),
            protocol_version=self.config.protocol_version,
        )

    async def serve(self) -> None:
        """Start if needed and run until stopped or the circuit breaker trips."""
        await self.start()
        assert self._closed is not None
        await self._closed.wait()

    def stop(self) -> None:
        """Stop accepting connections. Idempotent; call from the server's loop."""
        with self._lock:
            if self._stopped:
                return
            self._stopped = True
        if self._server is not None:
            self._server.close()
        if self.config.socket_dir is not None:
            Path(self.address).unlink(missing_ok=True)
        if self._closed is not None:
            self._closed.set()
        logger.info(
            "agent_server_stopped",
            package=self.config.package,
            accepted=self.connections_accepted,
            rejected=self.connections_rejected,
            auth_failures=self.counter.count,
        )

    def shutdown(self) -> None:
        """Thread-safe ``stop`` for callers outside the server's loop."""
        loop = self._loop
        if loop is None or loop.is_closed():
            self.stop()
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is loop:
            self.stop()
        else:
            loop.call_soon_threadsafe(self.stop)

    def start_background(self, timeout: float = 5.0) -> threading.Thread:
        """Run the server on its own event loop in a daemon thread.

        Returns once the socket is bound; startup errors are re-raised here.
        """
        started = threading.Event()
        errors: list[BaseException] = []

        async def _main() -> None:
            try:
                await self.start()
            except BaseException as exc:
                errors.append(exc)
                raise
            finally:
                started.set()
            await self.serve()

        def _run() -> None:
            try:
                asyncio.run(_main())
            except Exception:
                if not errors:
                    logger.exception("agent_server_crashed", package=self.config.package)

        thread = threading.Thread(
            target=_run, name=f"agent-server-{self.config.package}", daemon=True
        )
        thread.start()
        if not started.wait(timeout):
            raise TimeoutError(f"Agent server did not start within {timeout}s")
        if errors:
            raise errors[0]
        return thread

    async def _on_connection(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        if self._stopped or self.counter.tripped:
            # Accepted while shutting down; serve nothing
            self.connections_rejected += 1
            logger.debug("connection_rejected", count=self.connections_rejected)
            writer.close()
            with contextlib.suppress(Exception):
                await writer.wait_closed()
            if self.counter.tripped:
                self.stop()
            return

        self.connections_accepted += 1
        logger.debug("connection_accepted", count=self.connections_accepted)
        sink: ClosableSink = writer
        try:
            await self.dispatcher.serve(reader, sink)
        finally:
            if self.counter.tripped:
                logger.warning(
                    "agent_server_circuit_open",
                    package=self.config.package,
                    failures=self.counter.count,
                    threshold=self.counter.threshold,
                )
                self.stop()

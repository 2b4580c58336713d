"""Shared CLI helpers."""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any, NoReturn, TypeVar

import structlog
import typer
from pydantic import ValidationError

from android_app_bridge.config import ClientConfig
from android_app_bridge.desktop.transport import AdbTransport, DeviceTransport, LocalTransport
from android_app_bridge.errors import BridgeError

T = TypeVar("T")


def format_json(data: Any) -> str:
    return json.dumps(data, indent=2, ensure_ascii=True)


def configure_logging(verbose: bool = False, level: int = logging.WARNING) -> None:
    """Send structured logs to stderr so command output stays parseable."""
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="%Y-%m-%d %H:%M:%S"),
            structlog.dev.ConsoleRenderer(colors=False),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.DEBUG if verbose else level
        ),
        logger_factory=structlog.PrintLoggerFactory(sys.stderr),
        cache_logger_on_first_use=False,
    )


def render_error(error: BridgeError, json_output: bool = False) -> NoReturn:
    if json_output:
        typer.echo(format_json({"error": error.to_dict()}))
    else:
        typer.echo(f"{error.code}: {error.message}")
        if error.remediation:
            typer.echo(f"Hint: {error.remediation}")
    raise typer.Exit(code=1)


def run_command(
    operation: Callable[[], Awaitable[T]], json_output: bool = False
) -> T:
    """Run an async operation, rendering bridge errors and exiting non-zero."""

    async def _main() -> T:
        return await operation()

    try:
        return asyncio.run(_main())
    except BridgeError as exc:
        render_error(exc, json_output=json_output)


def load_client_config(
    package: str,
    device: str | None,
    socket_dir: Path | None,
    token: int | None = None,
    strict: bool | None = None,
) -> ClientConfig:
    """Merge CLI options over ``ANDROID_APP_BRIDGE_*`` settings."""
    try:
        return ClientConfig.from_env(
            package=package,
            serial=device,
            socket_dir=socket_dir,
            token=token,
            strict_version=strict,
        )
    except ValidationError as exc:
        for err in exc.errors():
            field = ".".join(str(part) for part in err["loc"])
            typer.echo(f"Invalid {field}: {err['msg']}")
        raise typer.Exit(code=1) from exc


def make_transport(config: ClientConfig, files_root: Path | None = None) -> DeviceTransport:
    """Local socket when ``socket_dir`` is set, otherwise adb to ``serial``."""
    if config.socket_dir is not None:
        return LocalTransport(socket_dir=config.socket_dir, files_root=files_root)
    if config.serial is None:
        typer.echo("No target: pass --device (or --socket-dir for a local agent)")
        raise typer.Exit(code=1)
    return AdbTransport(config.serial)

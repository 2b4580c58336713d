"""Agent CLI commands for running an agent outside an app."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

import typer
from pydantic import ValidationError

from android_app_bridge.agent.auth import generate_token
from android_app_bridge.agent.host import DirectoryResourceFiles, LoggingSurfaceProvider
from android_app_bridge.agent.server import AgentServer
from android_app_bridge.cli.utils import configure_logging
from android_app_bridge.config import AgentConfig

app = typer.Typer(help="Run a local agent")


@app.command("serve")
def agent_serve(
    package: str = typer.Argument(..., help="Package name the agent serves"),
    token: int | None = typer.Option(None, "--token", "-t", help="Token for privileged commands"),
    socket_dir: Path | None = typer.Option(
        None, "--socket-dir", help="Listen on <dir>/<package>.sock instead of @<package>"
    ),
    resources_dir: Path | None = typer.Option(
        None, "--resources-dir", help="Answer path queries from this directory"
    ),
    max_auth_failures: int | None = typer.Option(
        None, "--max-auth-failures", help="Rejected tokens tolerated before closing"
    ),
    background: bool = typer.Option(
        False, "--background", help="Report no foreground surface"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log every command"),
) -> None:
    """Serve the control protocol until interrupted."""
    configure_logging(verbose=verbose, level=logging.INFO)
    try:
        config = AgentConfig.from_env(
            package=package,
            token=token,
            socket_dir=socket_dir,
            max_auth_failures=max_auth_failures,
            extracted_resources=True if resources_dir is not None else None,
        )
    except ValidationError as exc:
        for err in exc.errors():
            field = ".".join(str(part) for part in err["loc"])
            typer.echo(f"Invalid {field}: {err['msg']}")
        raise typer.Exit(code=1) from exc

    resources = (
        DirectoryResourceFiles(resources_dir, extracted_resources=config.extracted_resources)
        if resources_dir is not None
        else None
    )
    server = AgentServer(config, LoggingSurfaceProvider(foreground=not background), resources)
    typer.echo(f"Serving {config.package} (protocol v{config.protocol_version})")
    try:
        asyncio.run(server.serve())
    except KeyboardInterrupt:
        typer.echo("\nAgent stopped.")


@app.command("token")
def agent_token() -> None:
    """Print a fresh random token."""
    typer.echo(str(generate_token()))

"""Build identifier CLI commands."""

from __future__ import annotations

from pathlib import Path

import typer

from android_app_bridge.cli.utils import (
    format_json,
    load_client_config,
    make_transport,
    run_command,
)
from android_app_bridge.desktop.build_id import get_device_build_id, transfer_build_id_to_device

app = typer.Typer(help="Record and read the last deployed build id")

_FILES_ROOT = typer.Option(
    None, "--files-root", help="Local directory standing in for device storage"
)


@app.command("push")
def build_id_push(
    package: str = typer.Argument(..., help="Package name"),
    build_id: str = typer.Argument(..., help="Build identifier"),
    device: str | None = typer.Option(None, "--device", "-d", help="Device serial"),
    socket_dir: Path | None = typer.Option(None, "--socket-dir", help="Use the local transport"),
    files_root: Path | None = _FILES_ROOT,
    json_output: bool = typer.Option(False, "--json", help="Output JSON"),
) -> None:
    """Write the build id file for a package on the device."""
    config = load_client_config(package, device, socket_dir)
    transport = make_transport(config, files_root=files_root)
    remote = run_command(
        lambda: transfer_build_id_to_device(transport, config.package, build_id),
        json_output=json_output,
    )
    if json_output:
        typer.echo(format_json({"status": "done", "path": remote}))
        return
    typer.echo(f"✓ Done -> {remote}")


@app.command("get")
def build_id_get(
    package: str = typer.Argument(..., help="Package name"),
    device: str | None = typer.Option(None, "--device", "-d", help="Device serial"),
    socket_dir: Path | None = typer.Option(None, "--socket-dir", help="Use the local transport"),
    files_root: Path | None = _FILES_ROOT,
    json_output: bool = typer.Option(False, "--json", help="Output JSON"),
) -> None:
    """Print the last build id recorded on the device."""
    config = load_client_config(package, device, socket_dir)
    transport = make_transport(config, files_root=files_root)
    build_id = run_command(
        lambda: get_device_build_id(transport, config.package), json_output=json_output
    )
    if json_output:
        typer.echo(format_json({"package": config.package, "build_id": build_id}))
        return
    if build_id is None:
        typer.echo("No build id recorded")
        raise typer.Exit(code=1)
    typer.echo(build_id)

"""Commands against a running app's agent."""

from __future__ import annotations

from pathlib import Path

import typer

from android_app_bridge.cli.utils import (
    format_json,
    load_client_config,
    make_transport,
    run_command,
)
from android_app_bridge.desktop.client import AppClient
from android_app_bridge.desktop.transport import DeviceTransport

app = typer.Typer(help="Talk to the agent embedded in an app")

_DEVICE = typer.Option(None, "--device", "-d", help="Device serial")
_SOCKET_DIR = typer.Option(None, "--socket-dir", help="Connect to a local agent in this directory")
_JSON = typer.Option(False, "--json", help="Output JSON")
_STRICT = typer.Option(
    None, "--strict/--no-strict", help="Fail on protocol version mismatch (default: strict)"
)


def _client(
    package: str,
    device: str | None,
    socket_dir: Path | None,
    token: int | None = None,
    strict: bool | None = None,
) -> tuple[AppClient, DeviceTransport]:
    config = load_client_config(package, device, socket_dir, token=token, strict=strict)
    client = AppClient(
        config.package,
        token=config.token,
        protocol_version=config.protocol_version,
        strict_version=config.strict_version,
    )
    return client, make_transport(config)


@app.command("ping")
def app_ping(
    package: str = typer.Argument(..., help="Package name"),
    device: str | None = _DEVICE,
    socket_dir: Path | None = _SOCKET_DIR,
    strict: bool | None = _STRICT,
    json_output: bool = _JSON,
) -> None:
    """Report whether the app is running in the foreground."""
    client, transport = _client(package, device, socket_dir, strict=strict)
    state = run_command(lambda: client.get_app_state(transport), json_output=json_output)
    if json_output:
        typer.echo(format_json({"package": package, "state": state.value}))
        return
    typer.echo(f"{package}: {state.value}")


@app.command("toast")
def app_toast(
    package: str = typer.Argument(..., help="Package name"),
    message: str = typer.Argument(..., help="Message to show"),
    device: str | None = _DEVICE,
    socket_dir: Path | None = _SOCKET_DIR,
    strict: bool | None = _STRICT,
    json_output: bool = _JSON,
) -> None:
    """Show a message in the app's foreground activity."""
    client, transport = _client(package, device, socket_dir, strict=strict)
    run_command(lambda: client.show_toast(transport, message), json_output=json_output)
    if json_output:
        typer.echo(format_json({"status": "done"}))
        return
    typer.echo("✓ Done")


@app.command("restart")
def app_restart(
    package: str = typer.Argument(..., help="Package name"),
    token: int | None = typer.Option(None, "--token", "-t", help="Agent token"),
    device: str | None = _DEVICE,
    socket_dir: Path | None = _SOCKET_DIR,
    strict: bool | None = _STRICT,
    json_output: bool = _JSON,
) -> None:
    """Restart the app's foreground activity (requires the agent token)."""
    client, transport = _client(package, device, socket_dir, token=token, strict=strict)
    state = run_command(lambda: client.restart_activity(transport), json_output=json_output)
    if json_output:
        typer.echo(format_json({"status": "done", "state": state.value}))
        return
    typer.echo(f"✓ Restart requested ({state.value})")


@app.command("path-size")
def app_path_size(
    package: str = typer.Argument(..., help="Package name"),
    path: str = typer.Argument(..., help="Resource path on the device"),
    device: str | None = _DEVICE,
    socket_dir: Path | None = _SOCKET_DIR,
    strict: bool | None = _STRICT,
    json_output: bool = _JSON,
) -> None:
    """Print the size of an extracted resource file (-1 if absent)."""
    client, transport = _client(package, device, socket_dir, strict=strict)
    size = run_command(lambda: client.path_size(transport, path), json_output=json_output)
    if json_output:
        typer.echo(format_json({"path": path, "size": size}))
        return
    typer.echo(str(size))


@app.command("checksum")
def app_checksum(
    package: str = typer.Argument(..., help="Package name"),
    path: str = typer.Argument(..., help="Resource path on the device"),
    device: str | None = _DEVICE,
    socket_dir: Path | None = _SOCKET_DIR,
    strict: bool | None = _STRICT,
    json_output: bool = _JSON,
) -> None:
    """Print the checksum of an extracted resource file."""
    client, transport = _client(package, device, socket_dir, strict=strict)
    checksum = run_command(lambda: client.path_checksum(transport, path), json_output=json_output)
    hex_digest = checksum.hex() if checksum is not None else None
    if json_output:
        typer.echo(format_json({"path": path, "checksum": hex_digest}))
        return
    typer.echo(hex_digest or "absent")

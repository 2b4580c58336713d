"""CLI entry point using Typer."""

from __future__ import annotations

import typer

from android_app_bridge.cli.commands import agent, app_cmd, build_id
from android_app_bridge.cli.utils import configure_logging

app = typer.Typer(
    name="android-app-bridge",
    help="Control channel between a desktop tool and apps on an Android device",
    no_args_is_help=True,
)


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log protocol activity"),
) -> None:
    configure_logging(verbose=verbose)


@app.command()
def version() -> None:
    """Show version information."""
    from android_app_bridge import __version__
    from android_app_bridge.protocol.constants import PROTOCOL_VERSION

    typer.echo(f"android-app-bridge v{__version__} (protocol {PROTOCOL_VERSION})")


app.add_typer(app_cmd.app, name="app")
app.add_typer(build_id.app, name="build-id")
app.add_typer(agent.app, name="agent")


if __name__ == "__main__":
    app()

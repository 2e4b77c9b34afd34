"""Unified CLI entry point for pagestitch.

Config precedence: settings.default.toml -> settings.{env}.toml -> settings.local.toml -> env vars (PAGESTITCH_* with double underscores) -> CLI flags.
"""

from __future__ import annotations

import logging
import sys

import typer

from pagestitch.cli.capture_cmd import capture_app
from pagestitch.cli.settings_cmd import settings_app

try:
    from importlib.metadata import version

    VERSION = version("pagestitch")
except Exception:
    VERSION = "unknown"

APP_HELP = (
    "pagestitch — full-page web capture. "
    "Tiles pages taller than the viewport into overlapping snapshots and stitches them into one image. "
    "Config precedence: settings.default.toml -> settings.local.toml -> env vars (PAGESTITCH_* with __) -> CLI flags."
)

app = typer.Typer(add_completion=True, help=APP_HELP)

app.add_typer(capture_app, name="capture")
app.add_typer(settings_app, name="settings")


def configure_logging(verbose: bool = False) -> None:
    """Configure root logging on stderr."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        stream=sys.stderr,
    )
    # Quieten noisy libraries
    logging.getLogger("asyncio").setLevel(logging.WARNING)
    logging.getLogger("PIL").setLevel(logging.WARNING)


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    version: bool = typer.Option(False, "--version", help="Show version and exit."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    """Show help when no subcommand is provided."""
    if version:
        typer.echo(f"pagestitch {VERSION}")
        raise typer.Exit()
    configure_logging(verbose)
    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())
        raise typer.Exit()


if __name__ == "__main__":
    app()

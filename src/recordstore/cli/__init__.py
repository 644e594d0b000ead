"""recordstore CLI: operator console for inspecting and editing record collections."""

from __future__ import annotations

import logging
from typing import Optional

import typer

from recordstore.cli import info, records

app = typer.Typer(
    name="recordstore",
    help="recordstore CLI: inspect and edit record collections.",
    no_args_is_help=True,
)

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class _State:
    """Global CLI state shared across subcommands."""

    storage_uri: str = "sqlite:///records.db"
    config: str | None = None
    json_output: bool = False


state = _State()


def _version_callback(value: bool) -> None:
    if value:
        from recordstore import __version__

        print(f"recordstore {__version__}")
        raise typer.Exit()


@app.callback(invoke_without_command=True)
def main_callback(
    ctx: typer.Context,
    storage_uri: str = typer.Option(
        "sqlite:///records.db",
        "--storage-uri",
        envvar="RECORDSTORE_STORAGE_URI",
        help="Backend storage URI (sqlite:///records.db, s3://bucket/prefix or memory://)",
    ),
    config: Optional[str] = typer.Option(
        None,
        "--config",
        "-c",
        envvar="RECORDSTORE_CONFIG",
        help="YAML config file path",
    ),
    json_output: bool = typer.Option(False, "--json", help="JSON output when supported"),
    log_level: str = typer.Option(
        "WARNING", "--log-level", envvar="RECORDSTORE_LOG_LEVEL", help="Logging level"
    ),
    version: bool = typer.Option(
        False, "--version", help="Show version", is_eager=True, callback=_version_callback
    ),
) -> None:
    """Global options for all recordstore commands."""
    from recordstore.datastore import parse_storage_target
    from recordstore.errors import StorageBackendError

    level = log_level.upper()
    if level not in _LOG_LEVELS:
        raise typer.BadParameter(
            f"must be one of {', '.join(_LOG_LEVELS)}", param_hint="--log-level"
        )
    logging.basicConfig(
        level=getattr(logging, level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        parse_storage_target(storage_uri)
    except StorageBackendError as e:
        raise typer.BadParameter(e.detail, param_hint="--storage-uri")

    state.storage_uri = storage_uri
    state.config = config
    state.json_output = json_output
    if ctx.invoked_subcommand is None and not version:
        print(ctx.get_help())
        raise typer.Exit()


app.add_typer(records.app, name="records", help="Create, read, update, delete and query records")

app.command(name="info")(info.info_cmd)


def main() -> None:
    """Entry point for the recordstore CLI."""
    app()

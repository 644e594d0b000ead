"""Shared fixtures for CLI tests."""

from __future__ import annotations

from typing import TYPE_CHECKING, Callable

import pytest
from typer.testing import CliRunner

from recordstore.cli import app

if TYPE_CHECKING:
    from click.testing import Result


@pytest.fixture
def runner():
    """Create a CLI test runner."""
    return CliRunner()


@pytest.fixture
def cli_db(tmp_path):
    return str(tmp_path / "cli_test.db")


@pytest.fixture
def invoke(runner, cli_db) -> Callable[..., "Result"]:
    """Invoke the CLI against the temp database."""

    def _invoke(args: list[str], db_path: str | None = cli_db) -> "Result":
        if db_path:
            args = ["--storage-uri", f"sqlite:///{db_path}"] + args
        return runner.invoke(app, args, catch_exceptions=False)

    return _invoke


@pytest.fixture
def seeded_db(invoke, cli_db):
    """Create a DB with a few people records."""
    for name, age in [("alice", 30), ("bob", 25), ("carol", 41)]:
        result = invoke(
            ["records", "--id-option", "manual_reject_id_conflicts", "create-with-id",
             "people", name, f'{{"name": "{name}", "age": {age}}}']
        )
        assert result.exit_code == 0, result.output
    return cli_db

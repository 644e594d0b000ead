"""recordstore records: CRUD and range queries against one collection."""

from __future__ import annotations

import json
from contextlib import contextmanager
from typing import Any, Iterator, Optional

import typer

from recordstore.cli import _exitcodes as ec
from recordstore.cli._output import print_error, print_object, print_records
from recordstore.cli._storage import load_cli_config, open_cli_client, open_collection
from recordstore.datastore import DataStore
from recordstore.errors import RecordStoreError

app = typer.Typer(no_args_is_help=True)


class _CollectionFlags:
    """Per-invocation collection option overrides from the group callback."""

    values: dict[str, Any] = {}


flags = _CollectionFlags()


@app.callback()
def records_callback(
    id_option: Optional[str] = typer.Option(
        None,
        "--id-option",
        help="auto_generated_id, manual_reject_id_conflicts or manual_allow_id_conflicts",
    ),
    require_transaction: Optional[bool] = typer.Option(
        None, "--require-transaction/--no-require-transaction", help="Require transactional updates"
    ),
    create_if_not_exists: Optional[bool] = typer.Option(
        None, "--create-if-not-exists/--no-create-if-not-exists", help="Upsert on update"
    ),
    read_only_fields: Optional[str] = typer.Option(
        None, "--read-only-fields", help="Comma-separated immutable field names"
    ),
    allow_null: Optional[bool] = typer.Option(
        None, "--allow-null/--no-allow-null", help="Accept null values"
    ),
    shape: Optional[str] = typer.Option(
        None, "--shape", help="Value shape: object, array, string, number, boolean or date"
    ),
) -> None:
    """Collection options; flags override the collection's entry in --config."""
    flags.values = {
        "create_id_option": id_option,
        "require_transaction": require_transaction,
        "create_if_not_exists": create_if_not_exists,
        "read_only_fields": read_only_fields,
        "allow_null_or_undefined": allow_null,
        "value_shape": shape,
    }


def _parse_json(raw: str, what: str) -> Any:
    try:
        return json.loads(raw)
    except json.JSONDecodeError as e:
        print_error(f"Invalid JSON for {what}: {e}")
        raise typer.Exit(ec.USAGE_ERROR)


@contextmanager
def _collection(collection: str) -> Iterator[DataStore]:
    """Open the collection and map recordstore errors onto exit codes."""
    client = None
    try:
        config = load_cli_config()
        client = open_cli_client(config)
        yield open_collection(client, config, collection, flags.values)
    except RecordStoreError as e:
        print_error(f"[{e.code}] {e.message}")
        raise typer.Exit(ec.for_error(e))
    except ValueError as e:
        # pydantic rejected the option flags
        print_error(str(e))
        raise typer.Exit(ec.USAGE_ERROR)
    finally:
        if client is not None:
            client.close()


@app.command(name="create")
def create_cmd(
    collection: str = typer.Argument(..., help="Collection path"),
    value: str = typer.Argument(..., help="Record value as JSON"),
) -> None:
    """Create a record under a generated id."""
    from recordstore.cli import state

    data = _parse_json(value, "value")
    with _collection(collection) as store:
        record = store.create(data)
    print_object(record, json_mode=state.json_output)


@app.command(name="create-with-id")
def create_with_id_cmd(
    collection: str = typer.Argument(..., help="Collection path"),
    record_id: str = typer.Argument(..., help="Requested record id"),
    value: str = typer.Argument(..., help="Record value as JSON"),
) -> None:
    """Create a record under a caller-chosen id."""
    from recordstore.cli import state

    data = _parse_json(value, "value")
    with _collection(collection) as store:
        record = store.create_with_id(record_id, data)
    print_object(record, json_mode=state.json_output)


@app.command(name="read")
def read_cmd(
    collection: str = typer.Argument(..., help="Collection path"),
    record_id: str = typer.Argument(..., help="Record id"),
) -> None:
    """Read one record."""
    from recordstore.cli import state

    with _collection(collection) as store:
        record = store.read(record_id)
    print_object(record, json_mode=state.json_output)


@app.command(name="update")
def update_cmd(
    collection: str = typer.Argument(..., help="Collection path"),
    record_id: str = typer.Argument(..., help="Record id"),
    value: str = typer.Argument(..., help="Fields to merge, as JSON"),
) -> None:
    """Merge fields into a record and print its previous state."""
    from recordstore.cli import state

    data = _parse_json(value, "value")
    with _collection(collection) as store:
        if store.options.require_transaction:
            previous = store.transactional_update(record_id, data)
        else:
            previous = store.update(record_id, data)
    print_object(previous, json_mode=state.json_output)


@app.command(name="delete")
def delete_cmd(
    collection: str = typer.Argument(..., help="Collection path"),
    record_id: str = typer.Argument(..., help="Record id"),
) -> None:
    """Delete a record and print it."""
    from recordstore.cli import state

    with _collection(collection) as store:
        previous = store.delete(record_id)
    print_object(previous, json_mode=state.json_output)


@app.command(name="query")
def query_cmd(
    collection: str = typer.Argument(..., help="Collection path"),
    filter_json: Optional[str] = typer.Option(
        None, "--filter", help='Filter JSON, e.g. {"age_gte": 18}'
    ),
    sort_json: Optional[str] = typer.Option(
        None, "--sort", help='Sort JSON, e.g. {"field": "age", "direction": "DESC"}'
    ),
    range_json: Optional[str] = typer.Option(None, "--range", help="Inclusive range, e.g. [0, 9]"),
    page_info_json: Optional[str] = typer.Option(
        None, "--page-info", help="Cursors from a previous page"
    ),
) -> None:
    """Run a filtered, sorted range query."""
    from recordstore.cli import state

    with _collection(collection) as store:
        result = store.query(filter_json, sort_json, range_json, page_info_json)

    if state.json_output:
        print_object(result.as_dict(), json_mode=True)
        return
    if not result.data:
        print(f"No records in range (total: {result.total_count})")
        return
    print_records(result.data)
    print(f"Records {result.range_start}-{result.range_end} of {result.total_count}")

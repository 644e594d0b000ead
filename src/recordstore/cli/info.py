"""recordstore info: show backend status and collection counts."""

from __future__ import annotations

import os
from typing import Any

import typer

from recordstore.cli import _exitcodes as ec
from recordstore.cli._output import print_error, print_object
from recordstore.cli._storage import load_cli_config, open_cli_client
from recordstore.datastore import parse_storage_target
from recordstore.errors import RecordStoreError


def info_cmd() -> None:
    """Show backend status and high-level metadata."""
    from recordstore.cli import state

    json_mode = state.json_output
    target = parse_storage_target(state.storage_uri)
    if (
        target.backend == "sqlite"
        and target.db_path != ":memory:"
        and not os.path.exists(str(target.db_path))
    ):
        print_error(f"Database not found: {target.db_path}")
        raise typer.Exit(ec.DATABASE_ERROR)

    try:
        config = load_cli_config()
        client = open_cli_client(config)
    except RecordStoreError as e:
        print_error(f"Cannot open storage backend: {e.message}")
        raise typer.Exit(ec.DATABASE_ERROR)

    try:
        storage = client.storage_info()
        data: dict[str, Any] = {"storage_uri": target.uri, **storage}
        if target.backend == "sqlite" and target.db_path and os.path.exists(target.db_path):
            data["file_size_bytes"] = os.path.getsize(target.db_path)
        data["configured_collections"] = sorted(config.collections)
        data["lock_root"] = config.lock_root
    except RecordStoreError as e:
        print_error(f"Cannot read storage info: {e.message}")
        raise typer.Exit(ec.DATABASE_ERROR)
    finally:
        client.close()

    if json_mode:
        print_object(data, json_mode=True)
        return

    backend = str(data.get("backend", "unknown"))
    print(f"Backend: {backend}")
    if backend == "sqlite":
        print(f"Database: {data.get('db_path')}")
        if "file_size_bytes" in data:
            print(f"File size: {int(data['file_size_bytes']):,} bytes")
        print("Collections:")
        for name, count in data.get("collections", {}).items():
            print(f"  {name}: {count}")
    elif backend == "s3":
        print(f"Storage URI: {data.get('storage_uri')}")
        print(f"Bucket: {data.get('bucket')}")
        print(f"Prefix: {data.get('prefix')}")
    print(f"Lock root: {data['lock_root']}")
    if data["configured_collections"]:
        print(f"Configured collections: {', '.join(data['configured_collections'])}")

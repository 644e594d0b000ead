"""CLI helpers for config-aware client and datastore construction."""

from __future__ import annotations

from typing import Any

from recordstore.config import RecordStoreConfig, load_config
from recordstore.datastore import DataStore, open_client, open_datastore
from recordstore.options import DataStoreOptions


def load_cli_config() -> RecordStoreConfig:
    """Environment defaults overlaid with the ``--config`` file, if any."""
    from recordstore.cli import state

    cfg = RecordStoreConfig.from_env()
    if state.config:
        cfg = load_config(state.config, base=cfg)
    return cfg


def open_cli_client(config: RecordStoreConfig | None = None) -> Any:
    """Open the backend client selected by ``--storage-uri``."""
    from recordstore.cli import state

    return open_client(state.storage_uri, config or load_cli_config())


def resolve_options(
    config: RecordStoreConfig,
    collection: str,
    overrides: dict[str, Any],
) -> DataStoreOptions:
    """Collection options from config, with explicit CLI flags taking precedence."""
    base = config.options_for(collection).model_dump()
    base.update({k: v for k, v in overrides.items() if v is not None})
    return DataStoreOptions.model_validate(base)


def open_collection(
    client: Any,
    config: RecordStoreConfig,
    collection: str,
    overrides: dict[str, Any],
) -> DataStore:
    options = resolve_options(config, collection, overrides)
    return open_datastore(client, collection, options, config=config)

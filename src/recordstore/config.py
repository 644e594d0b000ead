"""Configuration for recordstore clients, stores and locks."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from recordstore.errors import InvalidParametersError
from recordstore.options import DataStoreOptions


@dataclass
class RecordStoreConfig:
    """Configuration for backend clients and the distributed lock."""

    s3_region: str | None = None
    s3_endpoint_url: str | None = None
    s3_request_timeout_s: float = 10.0
    s3_max_attempts: int = 5
    sqlite_busy_timeout_s: float = 5.0
    sqlite_begin_retries: int = 5
    tree_transaction_max_retries: int = 25
    max_id_attempts: int = 100
    lock_root: str = "global/locks"
    lock_duration_ms: int = 60000
    lock_check_interval_ms: int = 500
    lock_lease_ms: int = 60000
    collections: dict[str, DataStoreOptions] = field(default_factory=dict)

    @classmethod
    def from_env(cls) -> RecordStoreConfig:
        """Build config from ``RECORDSTORE_*`` environment variables."""
        cfg = cls()
        cfg.s3_region = os.getenv("RECORDSTORE_S3_REGION") or cfg.s3_region
        cfg.s3_endpoint_url = os.getenv("RECORDSTORE_S3_ENDPOINT_URL") or cfg.s3_endpoint_url
        timeout = os.getenv("RECORDSTORE_S3_REQUEST_TIMEOUT_S")
        if timeout:
            cfg.s3_request_timeout_s = float(timeout)
        lock_root = os.getenv("RECORDSTORE_LOCK_ROOT")
        if lock_root:
            cfg.lock_root = lock_root
        return cfg

    def options_for(self, collection: str) -> DataStoreOptions:
        """Return declared options for a collection name, or defaults."""
        return self.collections.get(collection, DataStoreOptions())


_SCALAR_KEYS = {
    "s3_region": str,
    "s3_endpoint_url": str,
    "s3_request_timeout_s": float,
    "s3_max_attempts": int,
    "sqlite_busy_timeout_s": float,
    "sqlite_begin_retries": int,
    "tree_transaction_max_retries": int,
    "max_id_attempts": int,
    "lock_root": str,
    "lock_duration_ms": int,
    "lock_check_interval_ms": int,
    "lock_lease_ms": int,
}


def config_from_mapping(data: dict[str, Any], *, base: RecordStoreConfig | None = None) -> RecordStoreConfig:
    """Overlay a parsed mapping (e.g. from YAML) onto ``base``."""
    cfg = base or RecordStoreConfig()
    unknown = set(data) - set(_SCALAR_KEYS) - {"collections"}
    if unknown:
        raise InvalidParametersError(f"Unknown config keys: {sorted(unknown)}")

    for key, caster in _SCALAR_KEYS.items():
        if key in data and data[key] is not None:
            try:
                setattr(cfg, key, caster(data[key]))
            except (TypeError, ValueError) as e:
                raise InvalidParametersError(f"Invalid value for config key '{key}': {e}") from e

    collections = data.get("collections") or {}
    if not isinstance(collections, dict):
        raise InvalidParametersError("'collections' must be a mapping of name -> options")
    for name, raw in collections.items():
        try:
            cfg.collections[str(name)] = DataStoreOptions.model_validate(raw or {})
        except ValidationError as e:
            raise InvalidParametersError(f"Invalid options for collection '{name}': {e}") from e
    return cfg


def load_config(path: str | Path, *, base: RecordStoreConfig | None = None) -> RecordStoreConfig:
    """Load a YAML config file."""
    text = Path(path).read_text(encoding="utf-8")
    data = yaml.safe_load(text) or {}
    if not isinstance(data, dict):
        raise InvalidParametersError(f"Config file '{path}' must contain a mapping")
    return config_from_mapping(data, base=base)

"""S3-backed tree client: one JSON object per node, ETag compare-and-swap."""

from __future__ import annotations

import json
import logging
from typing import Any, Callable

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import ClientError, ParamValidationError

from recordstore.config import RecordStoreConfig
from recordstore.errors import DatabaseConsistencyError, StorageBackendError
from recordstore.ids import generate_push_id
from recordstore.tree import (
    PreconditionFailed,
    TransactionResult,
    merge_children,
    normalize_path,
    run_transaction,
)
from recordstore.validation import encode_json

logger = logging.getLogger(__name__)

_NODE_SUFFIX = ".json"


class S3TreeClient:
    """Tree client storing node ``a/b/c`` at ``{prefix}/a/b/c.json``."""

    def __init__(
        self,
        *,
        bucket: str,
        prefix: str = "",
        config: RecordStoreConfig | None = None,
        s3_client: Any = None,
    ) -> None:
        config = config or RecordStoreConfig()
        self.bucket = bucket
        self.prefix = prefix.strip("/")
        self.max_retries = config.tree_transaction_max_retries

        if s3_client is not None:
            self._s3 = s3_client
        else:
            session = boto3.Session(region_name=config.s3_region)
            self._s3 = session.client(
                "s3",
                region_name=config.s3_region,
                endpoint_url=config.s3_endpoint_url,
                config=BotoConfig(
                    connect_timeout=config.s3_request_timeout_s,
                    read_timeout=config.s3_request_timeout_s,
                    retries={"max_attempts": config.s3_max_attempts, "mode": "standard"},
                ),
            )

    # --- Key/object helpers ---

    def _k(self, rel_path: str) -> str:
        return f"{self.prefix}/{rel_path}" if self.prefix else rel_path

    def _node_key(self, path: str) -> str:
        return self._k(normalize_path(path) + _NODE_SUFFIX)

    def _is_not_found(self, err: Exception) -> bool:
        if isinstance(err, ClientError):
            code = err.response.get("Error", {}).get("Code", "")
            return code in {"NoSuchKey", "404", "NotFound"}
        return False

    def _is_precondition_failed(self, err: Exception) -> bool:
        if isinstance(err, ClientError):
            code = err.response.get("Error", {}).get("Code", "")
            return code in {"PreconditionFailed", "412", "ConditionalRequestConflict", "409"}
        return False

    def _decode(self, key: str, body: bytes) -> Any:
        try:
            return json.loads(body.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise DatabaseConsistencyError(f"Object '{key}' does not hold valid JSON: {e}") from e

    def _get_json(self, key: str) -> tuple[Any, str | None]:
        try:
            resp = self._s3.get_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            if self._is_not_found(e):
                return None, None
            raise StorageBackendError("get", str(e)) from e
        body = resp["Body"].read()
        etag = resp.get("ETag")
        return self._decode(key, body), etag if isinstance(etag, str) else None

    def _put_json(
        self,
        *,
        key: str,
        value: Any,
        if_none_match: str | None = None,
        if_match: str | None = None,
    ) -> str:
        kwargs: dict[str, Any] = {
            "Bucket": self.bucket,
            "Key": key,
            "Body": encode_json(value).encode("utf-8"),
            "ContentType": "application/json",
        }
        if if_none_match is not None:
            kwargs["IfNoneMatch"] = if_none_match
        if if_match is not None:
            kwargs["IfMatch"] = if_match

        try:
            resp = self._s3.put_object(**kwargs)
        except ParamValidationError as e:
            raise StorageBackendError(
                "conditional_write",
                "S3 endpoint does not support conditional write preconditions",
            ) from e
        except ClientError as e:
            if self._is_precondition_failed(e):
                raise PreconditionFailed(key) from e
            raise StorageBackendError("put", str(e)) from e
        etag = resp.get("ETag")
        return etag if isinstance(etag, str) else ""

    # --- TreeClient ---

    def get(self, path: str) -> tuple[Any, str | None]:
        return self._get_json(self._node_key(path))

    def set(self, path: str, value: Any) -> None:
        if value is None:
            self.delete(path)
            return
        self._put_json(key=self._node_key(path), value=value)

    def update(self, path: str, mapping: dict[str, Any]) -> None:
        self.transaction(path, lambda current: merge_children(current, mapping))

    def put_if(
        self, path: str, value: Any, *, version: str | None = None, absent: bool = False
    ) -> str:
        return self._put_json(
            key=self._node_key(path),
            value=value,
            if_none_match="*" if absent else None,
            if_match=version,
        )

    def delete(self, path: str, *, version: str | None = None) -> None:
        key = self._node_key(path)
        kwargs: dict[str, Any] = {"Bucket": self.bucket, "Key": key}
        if version is not None:
            kwargs["IfMatch"] = version
        try:
            self._s3.delete_object(**kwargs)
        except ParamValidationError as e:
            raise StorageBackendError(
                "conditional_delete",
                "S3 endpoint does not support conditional delete preconditions",
            ) from e
        except ClientError as e:
            if version is not None and (self._is_precondition_failed(e) or self._is_not_found(e)):
                raise PreconditionFailed(key) from e
            if self._is_not_found(e):
                return
            raise StorageBackendError("delete", str(e)) from e

    def _list_child_keys(self, path: str) -> list[str]:
        list_prefix = self._k(normalize_path(path)) + "/"
        keys: list[str] = []
        try:
            paginator = self._s3.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=self.bucket, Prefix=list_prefix, Delimiter="/"):
                for obj in page.get("Contents", []):
                    name = obj["Key"][len(list_prefix) :]
                    if name.endswith(_NODE_SUFFIX) and "/" not in name:
                        keys.append(name[: -len(_NODE_SUFFIX)])
        except ClientError as e:
            raise StorageBackendError("list", str(e)) from e
        return sorted(keys)

    def list_children(self, path: str) -> dict[str, Any]:
        parent = normalize_path(path)
        children: dict[str, Any] = {}
        for key in self._list_child_keys(parent):
            value, _etag = self.get(f"{parent}/{key}")
            # Deleted between list and get.
            if value is not None:
                children[key] = value
        logger.debug("Listed %d children under '%s'", len(children), parent)
        return children

    def transaction(self, path: str, update_fn: Callable[[Any], Any]) -> TransactionResult:
        return run_transaction(self, normalize_path(path), update_fn, self.max_retries)

    def push_key(self) -> str:
        return generate_push_id()

    def close(self) -> None:
        close = getattr(self._s3, "close", None)
        if callable(close):
            close()

    def storage_info(self) -> dict[str, Any]:
        return {"backend": "s3", "bucket": self.bucket, "prefix": self.prefix}

"""Shared fixtures for recordstore tests."""

from __future__ import annotations

import io
import threading
from typing import Any

import pytest
from botocore.exceptions import ClientError

from recordstore.storage_s3 import S3TreeClient
from recordstore.storage_sqlite import SQLiteDocumentClient
from recordstore.tree import MemoryTreeClient


def _client_error(code: str, operation: str) -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


class _ListPaginator:
    def __init__(self, fake: FakeS3Client) -> None:
        self._fake = fake

    def paginate(self, *, Bucket: str, Prefix: str = "", Delimiter: str | None = None):
        with self._fake.lock:
            keys = sorted(k for k in self._fake.objects if k.startswith(Prefix))
        contents = []
        prefixes = set()
        for key in keys:
            rest = key[len(Prefix) :]
            if Delimiter and Delimiter in rest:
                prefixes.add(Prefix + rest.split(Delimiter, 1)[0] + Delimiter)
            else:
                contents.append({"Key": key})
        yield {
            "Contents": contents,
            "CommonPrefixes": [{"Prefix": p} for p in sorted(prefixes)],
        }


class FakeS3Client:
    """In-memory stand-in for the boto3 S3 client with conditional writes."""

    def __init__(self) -> None:
        self.objects: dict[str, tuple[bytes, str]] = {}
        self.lock = threading.Lock()
        self._etag_counter = 0
        self.put_calls = 0

    def _etag(self) -> str:
        self._etag_counter += 1
        return f'"etag-{self._etag_counter}"'

    def get_object(self, *, Bucket: str, Key: str) -> dict[str, Any]:
        with self.lock:
            if Key not in self.objects:
                raise _client_error("NoSuchKey", "GetObject")
            body, etag = self.objects[Key]
        return {"Body": io.BytesIO(body), "ETag": etag}

    def put_object(
        self,
        *,
        Bucket: str,
        Key: str,
        Body: bytes,
        ContentType: str | None = None,
        IfNoneMatch: str | None = None,
        IfMatch: str | None = None,
    ) -> dict[str, Any]:
        with self.lock:
            self.put_calls += 1
            existing = self.objects.get(Key)
            if IfNoneMatch == "*" and existing is not None:
                raise _client_error("PreconditionFailed", "PutObject")
            if IfMatch is not None and (existing is None or existing[1] != IfMatch):
                raise _client_error("PreconditionFailed", "PutObject")
            etag = self._etag()
            self.objects[Key] = (bytes(Body), etag)
        return {"ETag": etag}

    def delete_object(self, *, Bucket: str, Key: str, IfMatch: str | None = None) -> dict:
        with self.lock:
            existing = self.objects.get(Key)
            if IfMatch is not None:
                if existing is None:
                    raise _client_error("NoSuchKey", "DeleteObject")
                if existing[1] != IfMatch:
                    raise _client_error("PreconditionFailed", "DeleteObject")
            self.objects.pop(Key, None)
        return {}

    def get_paginator(self, name: str) -> _ListPaginator:
        assert name == "list_objects_v2"
        return _ListPaginator(self)


@pytest.fixture
def tmp_db(tmp_path):
    """Return a temporary database path."""
    return str(tmp_path / "test.db")


@pytest.fixture
def doc_client(tmp_db):
    """Create a SQLite document client, closing it after the test."""
    client = SQLiteDocumentClient(tmp_db)
    yield client
    client.close()


@pytest.fixture
def memory_tree():
    return MemoryTreeClient()


@pytest.fixture
def fake_s3():
    return FakeS3Client()


@pytest.fixture
def s3_tree(fake_s3):
    return S3TreeClient(bucket="records", prefix="app", s3_client=fake_s3)


@pytest.fixture(params=["memory", "s3"])
def tree_client(request):
    """Each tree client implementation in turn."""
    if request.param == "memory":
        return MemoryTreeClient()
    return S3TreeClient(bucket="records", prefix="app", s3_client=FakeS3Client())

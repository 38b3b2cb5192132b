"""Shared test fixtures: an in-memory S3 client and indexer factories."""

from __future__ import annotations

import hashlib
import io
import threading
from typing import Any

import pytest
from botocore.exceptions import ClientError

from nocfl_index import Bucket, IndexConfig, Indexer

BUCKET = "repository"


def _client_error(code: str, operation: str, message: str = "") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": message or code}}, operation)


class FakeS3Client:
    """Thread-safe stand-in for the boto3 S3 client calls the package makes.

    Honours ``IfNoneMatch='*'`` and ``IfMatch`` like S3 conditional writes,
    paginates ``list_objects_v2`` and can inject failures per key.
    """

    def __init__(self, page_size: int = 1000) -> None:
        self.objects: dict[str, tuple[bytes, str]] = {}
        self.page_size = page_size
        self.get_failures: dict[str, Exception] = {}
        self.put_failures: dict[str, Exception] = {}
        self.calls: list[tuple[str, str]] = []
        self._lock = threading.Lock()

    def _check(self, bucket: str, operation: str) -> None:
        if bucket != BUCKET:
            raise _client_error("NoSuchBucket", operation)

    def head_object(self, *, Bucket: str, Key: str) -> dict[str, Any]:
        self._check(Bucket, "HeadObject")
        with self._lock:
            self.calls.append(("head_object", Key))
            if Key not in self.objects:
                raise _client_error("404", "HeadObject", "Not Found")
            return {"ETag": self.objects[Key][1]}

    def get_object(self, *, Bucket: str, Key: str) -> dict[str, Any]:
        self._check(Bucket, "GetObject")
        with self._lock:
            self.calls.append(("get_object", Key))
            if Key in self.get_failures:
                raise self.get_failures[Key]
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
        self._check(Bucket, "PutObject")
        with self._lock:
            self.calls.append(("put_object", Key))
            if Key in self.put_failures:
                raise self.put_failures[Key]
            current = self.objects.get(Key)
            if IfNoneMatch == "*" and current is not None:
                raise _client_error("PreconditionFailed", "PutObject")
            if IfMatch is not None and (current is None or current[1] != IfMatch):
                raise _client_error("PreconditionFailed", "PutObject")
            etag = f'"{hashlib.md5(Body).hexdigest()}"'
            self.objects[Key] = (Body, etag)
            return {"ETag": etag}

    def list_objects_v2(
        self,
        *,
        Bucket: str,
        Prefix: str = "",
        MaxKeys: int = 1000,
        ContinuationToken: str | None = None,
    ) -> dict[str, Any]:
        self._check(Bucket, "ListObjectsV2")
        with self._lock:
            self.calls.append(("list_objects_v2", Prefix))
            keys = sorted(k for k in self.objects if k.startswith(Prefix))
        if ContinuationToken:
            keys = [k for k in keys if k > ContinuationToken]
        limit = min(MaxKeys, self.page_size)
        page, rest = keys[:limit], keys[limit:]
        resp: dict[str, Any] = {"IsTruncated": bool(rest), "KeyCount": len(page)}
        if page:
            resp["Contents"] = [{"Key": k} for k in page]
        if rest:
            resp["NextContinuationToken"] = page[-1]
        return resp

    def delete_object(self, *, Bucket: str, Key: str, IfMatch: str | None = None) -> dict:
        self._check(Bucket, "DeleteObject")
        with self._lock:
            self.calls.append(("delete_object", Key))
            current = self.objects.get(Key)
            if IfMatch is not None and current is not None and current[1] != IfMatch:
                raise _client_error("PreconditionFailed", "DeleteObject")
            self.objects.pop(Key, None)
            return {}

    def delete_objects(self, *, Bucket: str, Delete: dict[str, Any]) -> dict[str, Any]:
        self._check(Bucket, "DeleteObjects")
        with self._lock:
            self.calls.append(("delete_objects", str(len(Delete["Objects"]))))
            for item in Delete["Objects"]:
                self.objects.pop(item["Key"], None)
        return {}

    # --- Test helpers ---

    def put_raw(self, key: str, body: bytes) -> None:
        with self._lock:
            self.objects[key] = (body, f'"{hashlib.md5(body).hexdigest()}"')

    def keys(self, prefix: str = "") -> list[str]:
        with self._lock:
            return sorted(k for k in self.objects if k.startswith(prefix))

    def count(self, operation: str) -> int:
        return sum(1 for op, _ in self.calls if op == operation)


def fast_config(**overrides: Any) -> IndexConfig:
    values: dict[str, Any] = {
        "patch_splay_max_ms": 5,
        "lock_max_attempts": 50,
        "lock_retry_min_ms": 1,
        "lock_retry_max_ms": 5,
        "runtime_id": "test",
    }
    values.update(overrides)
    return IndexConfig(**values)


@pytest.fixture
def s3_client() -> FakeS3Client:
    return FakeS3Client()


@pytest.fixture
def config() -> IndexConfig:
    return fast_config()


@pytest.fixture
def bucket(s3_client, config) -> Bucket:
    return Bucket(BUCKET, config=config, client=s3_client)


@pytest.fixture
def indexer(bucket, config) -> Indexer:
    return Indexer(bucket, config)


@pytest.fixture
def make_indexer(s3_client):
    """Build independent indexers that only share the fake bucket."""

    def _make(**overrides: Any) -> Indexer:
        cfg = fast_config(**overrides)
        return Indexer(Bucket(BUCKET, config=cfg, client=s3_client), cfg)

    return _make

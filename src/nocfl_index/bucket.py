"""S3 bucket adapter used by every index component."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Iterator

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError, ParamValidationError

from nocfl_index.config import IndexConfig
from nocfl_index.errors import NotFoundError, StorageBackendError

DELETE_BATCH_SIZE = 1000


class PreconditionFailed(Exception):
    """A conditional write or delete lost against a concurrent writer."""


@dataclass
class ListPage:
    keys: list[str] = field(default_factory=list)
    next_token: str | None = None


def _error_code(err: Exception) -> str:
    if isinstance(err, ClientError):
        return str(err.response.get("Error", {}).get("Code", ""))
    return ""


def is_not_found(err: Exception) -> bool:
    return _error_code(err) in {"NoSuchKey", "404", "NotFound"}


def is_precondition_failed(err: Exception) -> bool:
    return _error_code(err) in {"PreconditionFailed", "412", "ConditionalRequestConflict", "409"}


def dump_json(obj: Any) -> bytes:
    return json.dumps(obj, sort_keys=True, separators=(",", ":")).encode("utf-8")


def make_client(config: IndexConfig) -> Any:
    """Create a boto3 S3 client honouring timeouts and endpoint overrides."""
    session = boto3.Session(region_name=config.s3_region)
    s3_options = {"addressing_style": "path"} if config.s3_force_path_style else None
    return session.client(
        "s3",
        region_name=config.s3_region,
        endpoint_url=config.s3_endpoint_url,
        config=BotoConfig(
            connect_timeout=config.request_timeout_s,
            read_timeout=config.request_timeout_s,
            retries={"max_attempts": config.max_retries, "mode": "standard"},
            s3=s3_options,
        ),
    )


class Bucket:
    """Thin wrapper over one S3 bucket.

    Missing objects surface as :class:`NotFoundError`, lost preconditions as
    :class:`PreconditionFailed`, and every other failure as
    :class:`StorageBackendError`.
    """

    def __init__(self, name: str, *, config: IndexConfig | None = None, client: Any = None):
        if not name:
            raise ValueError("Missing required property: 'bucket'")
        self.name = name
        self._config = config or IndexConfig()
        self._s3 = client if client is not None else make_client(self._config)

    def _wrap(self, operation: str, err: Exception) -> StorageBackendError:
        return StorageBackendError(operation, f"{self.name}: {err}")

    # --- Reads ---

    def exists(self, key: str) -> bool:
        return self.head_etag(key) is not None

    def head_etag(self, key: str) -> str | None:
        try:
            resp = self._s3.head_object(Bucket=self.name, Key=key)
        except (ClientError, BotoCoreError) as e:
            if is_not_found(e):
                return None
            raise self._wrap("head_object", e) from e
        etag = resp.get("ETag")
        return etag if isinstance(etag, str) else ""

    def get_bytes(self, key: str) -> tuple[bytes, str | None]:
        try:
            resp = self._s3.get_object(Bucket=self.name, Key=key)
            body = resp["Body"].read()
        except (ClientError, BotoCoreError) as e:
            if is_not_found(e):
                raise NotFoundError(key) from e
            raise self._wrap("get_object", e) from e
        etag = resp.get("ETag")
        return body, etag if isinstance(etag, str) else None

    def get_json(self, key: str) -> tuple[Any, str | None]:
        """Read and decode a JSON object. Decoding errors propagate as ``ValueError``."""
        body, etag = self.get_bytes(key)
        return json.loads(body.decode("utf-8")), etag

    def list_objects(
        self, prefix: str, continuation_token: str | None = None, max_keys: int = 1000
    ) -> ListPage:
        kwargs: dict[str, Any] = {"Bucket": self.name, "Prefix": prefix, "MaxKeys": max_keys}
        if continuation_token:
            kwargs["ContinuationToken"] = continuation_token
        try:
            resp = self._s3.list_objects_v2(**kwargs)
        except (ClientError, BotoCoreError) as e:
            raise self._wrap("list_objects", e) from e
        keys = [str(item["Key"]) for item in resp.get("Contents", []) or []]
        token = resp.get("NextContinuationToken") if resp.get("IsTruncated") else None
        return ListPage(keys=keys, next_token=token)

    def iter_keys(self, prefix: str = "") -> Iterator[str]:
        """Yield every key under ``prefix``, following continuation tokens."""
        token: str | None = None
        while True:
            page = self.list_objects(prefix, continuation_token=token)
            yield from page.keys
            if not page.next_token:
                return
            token = page.next_token

    # --- Writes ---

    def put_bytes(
        self,
        key: str,
        body: bytes,
        *,
        if_none_match: str | None = None,
        if_match: str | None = None,
        content_type: str | None = None,
    ) -> str:
        kwargs: dict[str, Any] = {"Bucket": self.name, "Key": key, "Body": body}
        if content_type is not None:
            kwargs["ContentType"] = content_type
        if if_none_match is not None:
            kwargs["IfNoneMatch"] = if_none_match
        if if_match is not None:
            kwargs["IfMatch"] = if_match

        try:
            resp = self._s3.put_object(**kwargs)
        except ParamValidationError as e:
            if if_none_match is not None or if_match is not None:
                raise StorageBackendError(
                    "conditional_write",
                    "S3 client does not support conditional write preconditions",
                ) from e
            raise self._wrap("put_object", e) from e
        except (ClientError, BotoCoreError) as e:
            if is_precondition_failed(e):
                raise PreconditionFailed(key) from e
            raise self._wrap("put_object", e) from e
        etag = resp.get("ETag")
        return etag if isinstance(etag, str) else ""

    def put_json(
        self,
        key: str,
        obj: Any,
        *,
        if_none_match: str | None = None,
        if_match: str | None = None,
    ) -> str:
        return self.put_bytes(
            key,
            dump_json(obj),
            if_none_match=if_none_match,
            if_match=if_match,
            content_type="application/json",
        )

    def delete_object(self, key: str, *, if_match: str | None = None) -> None:
        kwargs: dict[str, Any] = {"Bucket": self.name, "Key": key}
        if if_match is not None:
            kwargs["IfMatch"] = if_match
        try:
            self._s3.delete_object(**kwargs)
        except ParamValidationError as e:
            raise StorageBackendError(
                "conditional_delete",
                "S3 client does not support conditional delete preconditions",
            ) from e
        except (ClientError, BotoCoreError) as e:
            if is_not_found(e):
                return
            if is_precondition_failed(e):
                raise PreconditionFailed(key) from e
            raise self._wrap("delete_object", e) from e

    def delete_objects(self, keys: list[str]) -> None:
        """Delete keys in batches; absent keys are not an error."""
        for start in range(0, len(keys), DELETE_BATCH_SIZE):
            batch = keys[start : start + DELETE_BATCH_SIZE]
            try:
                resp = self._s3.delete_objects(
                    Bucket=self.name,
                    Delete={"Objects": [{"Key": k} for k in batch], "Quiet": True},
                )
            except (ClientError, BotoCoreError) as e:
                raise self._wrap("delete_objects", e) from e
            errors = [
                err for err in resp.get("Errors", []) or [] if err.get("Code") != "NoSuchKey"
            ]
            if errors:
                failed = ", ".join(f"{err.get('Key')} ({err.get('Code')})" for err in errors)
                raise StorageBackendError("delete_objects", f"{self.name}: {failed}")

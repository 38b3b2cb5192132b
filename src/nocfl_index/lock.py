"""Advisory per-namespace lock built on a sentinel object.

The sentinel is created with ``If-None-Match: *`` so only one caller can
create it. It carries a lease; once ``expires_at`` has passed, any caller may
take it over with an ``If-Match`` overwrite. After ``lock_max_attempts`` the
configured exhaustion policy decides what happens:

- ``skip``     give up; pending patches wait for the next merge
- ``proceed``  merge without holding the lock
- ``raise``    raise :class:`LockTimeoutError`
"""

from __future__ import annotations

import random
import threading
import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Iterator

from loguru import logger

from nocfl_index import router
from nocfl_index.bucket import Bucket, PreconditionFailed
from nocfl_index.config import IndexConfig
from nocfl_index.errors import (
    LeaseExpiredError,
    LockTimeoutError,
    NotFoundError,
    StorageBackendError,
)


def _parse_iso(value: str) -> datetime:
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass
class LockHandle:
    key: str
    owner_id: str
    etag: str | None
    expires_at: datetime | None
    lease_ttl_ms: int
    held: bool = True
    unsafe: bool = False


class LockCoordinator:
    """Acquire, renew and release the ``.update`` sentinel of a namespace."""

    def __init__(
        self,
        bucket: Bucket,
        config: IndexConfig | None = None,
        *,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.bucket = bucket
        self._config = config or IndexConfig()
        self._sleep = sleep

    def _owner_id(self) -> str:
        return f"{self._config.runtime_id or 'indexer'}-{uuid.uuid4().hex[:8]}"

    def _payload(self, owner_id: str) -> tuple[dict[str, Any], datetime]:
        now = datetime.now(timezone.utc)
        expires = now + timedelta(milliseconds=self._config.lock_lease_ttl_ms)
        return (
            {
                "date": now.isoformat(),
                "owner_id": owner_id,
                "expires_at": expires.isoformat(),
                "lease_ttl_ms": self._config.lock_lease_ttl_ms,
            },
            expires,
        )

    def is_stale(self, sentinel: Any) -> bool:
        """True when the sentinel's lease has run out or it cannot be interpreted."""
        if not isinstance(sentinel, dict):
            return True
        try:
            if sentinel.get("expires_at"):
                expires_at = _parse_iso(str(sentinel["expires_at"]))
            else:
                # Sentinels holding only {date} fall back to the configured TTL.
                acquired = _parse_iso(str(sentinel["date"]))
                ttl = int(sentinel.get("lease_ttl_ms") or self._config.lock_lease_ttl_ms)
                expires_at = acquired + timedelta(milliseconds=ttl)
        except (KeyError, TypeError, ValueError):
            return True
        return datetime.now(timezone.utc) >= expires_at

    def _read_sentinel(self, key: str) -> tuple[Any, str | None] | None:
        try:
            return self.bucket.get_json(key)
        except NotFoundError:
            return None
        except ValueError:
            etag = self.bucket.head_etag(key)
            return (None, etag) if etag is not None else None

    def _try_acquire(self, key: str, owner_id: str) -> LockHandle | None:
        payload, expires = self._payload(owner_id)
        handle = LockHandle(
            key=key,
            owner_id=owner_id,
            etag=None,
            expires_at=expires,
            lease_ttl_ms=self._config.lock_lease_ttl_ms,
        )

        if not self._config.conditional_writes:
            current = self._read_sentinel(key)
            if current is not None and not self.is_stale(current[0]):
                return None
            handle.etag = self.bucket.put_json(key, payload)
            return handle

        try:
            handle.etag = self.bucket.put_json(key, payload, if_none_match="*")
            return handle
        except PreconditionFailed:
            pass

        current = self._read_sentinel(key)
        if current is None:
            return None
        sentinel, etag = current
        if etag is None or not self.is_stale(sentinel):
            return None
        try:
            handle.etag = self.bucket.put_json(key, payload, if_match=etag)
        except PreconditionFailed:
            return None
        logger.warning(f"Reclaimed stale lock {key} held by {_describe_owner(sentinel)}")
        return handle

    def acquire(self, prefix: str, type_name: str) -> LockHandle | None:
        """Try to take the namespace lock, retrying with randomized backoff.

        Returns ``None`` when the lock stays busy under the ``skip`` policy and a
        handle with ``held=False`` under ``proceed``.
        """
        key = router.lock_key(prefix, type_name)
        owner_id = self._owner_id()
        attempts = self._config.lock_max_attempts

        for attempt in range(1, attempts + 1):
            logger.debug(f"Lock attempt {attempt}/{attempts} on {key}")
            handle = self._try_acquire(key, owner_id)
            if handle is not None:
                logger.debug(f"Acquired {key} as {owner_id}")
                return handle
            if attempt < attempts:
                self._sleep(
                    random.uniform(
                        self._config.lock_retry_min_ms / 1000.0,
                        self._config.lock_retry_max_ms / 1000.0,
                    )
                )

        policy = self._config.lock_exhausted_policy
        logger.warning(f"Lock {key} still busy after {attempts} attempt(s); policy={policy}")
        if policy == "raise":
            raise LockTimeoutError(key, attempts)
        if policy == "proceed":
            return LockHandle(
                key=key,
                owner_id=owner_id,
                etag=None,
                expires_at=None,
                lease_ttl_ms=self._config.lock_lease_ttl_ms,
                held=False,
            )
        return None

    def renew(self, handle: LockHandle) -> bool:
        if not handle.held:
            return True
        current = self._read_sentinel(handle.key)
        if current is None:
            handle.unsafe = True
            return False
        sentinel, etag = current
        if not isinstance(sentinel, dict) or sentinel.get("owner_id") != handle.owner_id:
            handle.unsafe = True
            return False

        expires = datetime.now(timezone.utc) + timedelta(milliseconds=handle.lease_ttl_ms)
        sentinel["expires_at"] = expires.isoformat()
        sentinel["lease_ttl_ms"] = handle.lease_ttl_ms
        try:
            if self._config.conditional_writes and etag is not None:
                new_etag = self.bucket.put_json(handle.key, sentinel, if_match=etag)
            else:
                new_etag = self.bucket.put_json(handle.key, sentinel)
        except (PreconditionFailed, StorageBackendError):
            handle.unsafe = True
            return False

        handle.etag = new_etag
        handle.expires_at = expires
        handle.unsafe = False
        return True

    def ensure_lease_safe(self, handle: LockHandle) -> None:
        """Raise :class:`LeaseExpiredError` unless we still own a live lease."""
        if not handle.held:
            return
        if handle.unsafe:
            raise LeaseExpiredError(handle.key)
        current = self._read_sentinel(handle.key)
        sentinel = current[0] if current is not None else None
        if not isinstance(sentinel, dict) or sentinel.get("owner_id") != handle.owner_id:
            handle.unsafe = True
            raise LeaseExpiredError(handle.key)
        if handle.expires_at is None:
            return
        margin = timedelta(milliseconds=max(1, handle.lease_ttl_ms // 3))
        if datetime.now(timezone.utc) + margin >= handle.expires_at:
            handle.unsafe = True
            raise LeaseExpiredError(handle.key)

    def release(self, handle: LockHandle) -> None:
        if not handle.held:
            return
        handle.held = False
        try:
            if self._config.conditional_writes and handle.etag:
                try:
                    self.bucket.delete_object(handle.key, if_match=handle.etag)
                    return
                except PreconditionFailed:
                    logger.warning(f"Lock {handle.key} was taken over before release")
                    return
                except StorageBackendError as e:
                    # Endpoints without conditional deletes fall back to an owner check.
                    logger.debug(f"Conditional release of {handle.key} refused: {e}")
            current = self._read_sentinel(handle.key)
            if current is None:
                return
            sentinel = current[0]
            if isinstance(sentinel, dict) and sentinel.get("owner_id") == handle.owner_id:
                self.bucket.delete_object(handle.key)
        except StorageBackendError as e:
            # The lease runs out on its own, so a failed release only delays the next merge.
            logger.warning(f"Could not release {handle.key}: {e}")

    @contextmanager
    def hold(self, prefix: str, type_name: str) -> Iterator[LockHandle | None]:
        handle = self.acquire(prefix, type_name)
        try:
            yield handle
        finally:
            if handle is not None:
                self.release(handle)

    @contextmanager
    def keepalive(self, handle: LockHandle) -> Iterator[None]:
        """Renew the lease periodically while a long merge is running."""
        if not handle.held:
            yield
            return
        interval_s = max(0.1, handle.lease_ttl_ms / 3000.0)
        stop_event = threading.Event()
        unsafe_event = threading.Event()

        def _heartbeat() -> None:
            while not stop_event.wait(interval_s):
                if not self.renew(handle):
                    unsafe_event.set()
                    return

        thread = threading.Thread(target=_heartbeat, daemon=True)
        thread.start()
        try:
            yield
            if unsafe_event.is_set():
                raise LeaseExpiredError(handle.key)
        finally:
            stop_event.set()
            thread.join(timeout=interval_s + 0.2)


def _describe_owner(sentinel: Any) -> str:
    if isinstance(sentinel, dict):
        return str(sentinel.get("owner_id") or sentinel.get("date") or "unknown")
    return "unknown"

"""Tests for the sentinel lock coordinator."""

from __future__ import annotations

import json
import time
from datetime import datetime, timedelta, timezone

import pytest

from nocfl_index.errors import LeaseExpiredError, LockTimeoutError
from nocfl_index.lock import LockCoordinator

LOCK = "p/indices/t/.update"


def _coordinator(s3_client, make_indexer, **overrides) -> LockCoordinator:
    indexer = make_indexer(**overrides)
    sleeps: list[float] = []
    coordinator = LockCoordinator(indexer.bucket, indexer.config, sleep=sleeps.append)
    coordinator.sleeps = sleeps  # type: ignore[attr-defined]
    return coordinator


def _sentinel(s3_client) -> dict:
    return json.loads(s3_client.objects[LOCK][0])


def test_acquire_creates_sentinel_and_release_removes_it(s3_client, make_indexer) -> None:
    coordinator = _coordinator(s3_client, make_indexer)
    handle = coordinator.acquire("p", "t")

    assert handle is not None and handle.held
    sentinel = _sentinel(s3_client)
    assert sentinel["owner_id"] == handle.owner_id
    assert {"date", "expires_at", "lease_ttl_ms"} <= set(sentinel)

    coordinator.release(handle)
    assert LOCK not in s3_client.objects


def test_second_caller_is_refused_while_lock_is_held(s3_client, make_indexer) -> None:
    first = _coordinator(s3_client, make_indexer)
    second = _coordinator(s3_client, make_indexer, lock_max_attempts=3)

    held = first.acquire("p", "t")
    assert held is not None
    assert second.acquire("p", "t") is None
    assert len(second.sleeps) == 2  # type: ignore[attr-defined]
    assert all(0.001 <= s <= 0.005 for s in second.sleeps)  # type: ignore[attr-defined]


def test_exhausted_policy_raise(s3_client, make_indexer) -> None:
    _coordinator(s3_client, make_indexer).acquire("p", "t")
    strict = _coordinator(
        s3_client, make_indexer, lock_max_attempts=2, lock_exhausted_policy="raise"
    )
    with pytest.raises(LockTimeoutError) as exc:
        strict.acquire("p", "t")
    assert exc.value.attempts == 2


def test_exhausted_policy_proceed_returns_unheld_handle(s3_client, make_indexer) -> None:
    holder = _coordinator(s3_client, make_indexer)
    held = holder.acquire("p", "t")
    eager = _coordinator(
        s3_client, make_indexer, lock_max_attempts=1, lock_exhausted_policy="proceed"
    )

    handle = eager.acquire("p", "t")
    assert handle is not None and not handle.held
    eager.ensure_lease_safe(handle)
    eager.release(handle)
    assert _sentinel(s3_client)["owner_id"] == held.owner_id


def test_stale_sentinel_is_reclaimed(s3_client, make_indexer) -> None:
    past = datetime.now(timezone.utc) - timedelta(minutes=5)
    s3_client.put_raw(
        LOCK,
        json.dumps(
            {"owner_id": "crashed", "date": past.isoformat(), "expires_at": past.isoformat()}
        ).encode(),
    )
    coordinator = _coordinator(s3_client, make_indexer, lock_max_attempts=1)

    handle = coordinator.acquire("p", "t")
    assert handle is not None
    assert _sentinel(s3_client)["owner_id"] == handle.owner_id


def test_legacy_date_only_sentinel_expires_after_ttl(s3_client, make_indexer) -> None:
    coordinator = _coordinator(s3_client, make_indexer, lock_lease_ttl_ms=1000)
    recent = {"date": datetime.now(timezone.utc).isoformat()}
    old = {"date": (datetime.now(timezone.utc) - timedelta(seconds=5)).isoformat()}
    assert coordinator.is_stale(recent) is False
    assert coordinator.is_stale(old) is True


@pytest.mark.parametrize("sentinel", [None, [], {}, {"date": "yesterday"}])
def test_uninterpretable_sentinel_is_stale(s3_client, make_indexer, sentinel) -> None:
    assert _coordinator(s3_client, make_indexer).is_stale(sentinel) is True


def test_corrupt_sentinel_is_reclaimed(s3_client, make_indexer) -> None:
    s3_client.put_raw(LOCK, b"not json")
    handle = _coordinator(s3_client, make_indexer, lock_max_attempts=1).acquire("p", "t")
    assert handle is not None


def test_release_does_not_remove_a_taken_over_lock(s3_client, make_indexer) -> None:
    coordinator = _coordinator(s3_client, make_indexer)
    handle = coordinator.acquire("p", "t")
    s3_client.put_raw(LOCK, json.dumps({"owner_id": "other"}).encode())

    coordinator.release(handle)
    assert _sentinel(s3_client)["owner_id"] == "other"


def test_ensure_lease_safe_detects_takeover(s3_client, make_indexer) -> None:
    coordinator = _coordinator(s3_client, make_indexer)
    handle = coordinator.acquire("p", "t")
    coordinator.ensure_lease_safe(handle)

    s3_client.put_raw(LOCK, json.dumps({"owner_id": "other"}).encode())
    with pytest.raises(LeaseExpiredError):
        coordinator.ensure_lease_safe(handle)


def test_ensure_lease_safe_detects_lease_near_expiry(s3_client, make_indexer) -> None:
    coordinator = _coordinator(s3_client, make_indexer)
    handle = coordinator.acquire("p", "t")
    handle.expires_at = datetime.now(timezone.utc) + timedelta(milliseconds=10)
    with pytest.raises(LeaseExpiredError):
        coordinator.ensure_lease_safe(handle)


def test_renew_extends_the_lease(s3_client, make_indexer) -> None:
    coordinator = _coordinator(s3_client, make_indexer)
    handle = coordinator.acquire("p", "t")
    before = handle.expires_at

    assert coordinator.renew(handle) is True
    assert handle.expires_at >= before
    assert s3_client.objects[LOCK][1] == handle.etag


def test_hold_releases_on_error(s3_client, make_indexer) -> None:
    coordinator = _coordinator(s3_client, make_indexer)
    with pytest.raises(RuntimeError):
        with coordinator.hold("p", "t") as handle:
            assert handle is not None
            raise RuntimeError("merge blew up")
    assert LOCK not in s3_client.objects


def test_without_conditional_writes_existing_sentinel_blocks(s3_client, make_indexer) -> None:
    coordinator = _coordinator(
        s3_client, make_indexer, conditional_writes=False, lock_max_attempts=2
    )
    handle = coordinator.acquire("p", "t")
    assert handle is not None
    assert coordinator.acquire("p", "t") is None
    coordinator.release(handle)
    assert LOCK not in s3_client.objects


def test_keepalive_renews_in_background(s3_client, make_indexer) -> None:
    coordinator = _coordinator(s3_client, make_indexer, lock_lease_ttl_ms=300)
    handle = coordinator.acquire("p", "t")
    first_etag = handle.etag

    with coordinator.keepalive(handle):
        time.sleep(0.35)
    assert handle.etag != first_etag
    assert not handle.unsafe


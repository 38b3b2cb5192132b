"""Configuration for the index coordination runtime."""

from __future__ import annotations

import os
from dataclasses import dataclass

LOCK_POLICIES = ("skip", "proceed", "raise")


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be an integer, got '{raw}'") from e


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be a number, got '{raw}'") from e


@dataclass
class IndexConfig:
    """Configuration for the Indexer and its collaborators."""

    s3_region: str | None = None
    s3_endpoint_url: str | None = None
    s3_force_path_style: bool = False
    request_timeout_s: float = 10.0
    max_retries: int = 5
    conditional_writes: bool = True
    patch_splay_max_ms: int = 300
    lock_max_attempts: int = 3
    lock_retry_min_ms: int = 1000
    lock_retry_max_ms: int = 2000
    lock_lease_ttl_ms: int = 30000
    lock_exhausted_policy: str = "skip"
    merge_max_passes: int = 5
    merge_deadline_s: float = 60.0
    runtime_id: str | None = None

    def __post_init__(self) -> None:
        if self.lock_exhausted_policy not in LOCK_POLICIES:
            raise ValueError(
                f"lock_exhausted_policy must be one of {LOCK_POLICIES}, "
                f"got '{self.lock_exhausted_policy}'"
            )
        if self.lock_max_attempts < 1:
            raise ValueError("lock_max_attempts must be at least 1")
        if self.lock_retry_max_ms < self.lock_retry_min_ms:
            raise ValueError("lock_retry_max_ms must not be smaller than lock_retry_min_ms")

    @classmethod
    def from_env(cls) -> IndexConfig:
        """Build config from NOCFL_* environment variables."""
        defaults = cls()
        endpoint = os.getenv("NOCFL_S3_ENDPOINT_URL") or os.getenv("NOCFL_S3_ENDPOINT")
        return cls(
            s3_region=os.getenv("NOCFL_S3_REGION"),
            s3_endpoint_url=endpoint,
            s3_force_path_style=_env_flag("NOCFL_S3_FORCE_PATH_STYLE", False),
            request_timeout_s=_env_float("NOCFL_REQUEST_TIMEOUT_S", defaults.request_timeout_s),
            max_retries=_env_int("NOCFL_MAX_RETRIES", defaults.max_retries),
            conditional_writes=_env_flag("NOCFL_CONDITIONAL_WRITES", True),
            patch_splay_max_ms=_env_int("NOCFL_PATCH_SPLAY_MAX_MS", defaults.patch_splay_max_ms),
            lock_max_attempts=_env_int("NOCFL_LOCK_MAX_ATTEMPTS", defaults.lock_max_attempts),
            lock_retry_min_ms=_env_int("NOCFL_LOCK_RETRY_MIN_MS", defaults.lock_retry_min_ms),
            lock_retry_max_ms=_env_int("NOCFL_LOCK_RETRY_MAX_MS", defaults.lock_retry_max_ms),
            lock_lease_ttl_ms=_env_int("NOCFL_LOCK_LEASE_TTL_MS", defaults.lock_lease_ttl_ms),
            lock_exhausted_policy=os.getenv("NOCFL_LOCK_POLICY") or "skip",
            merge_max_passes=_env_int("NOCFL_MERGE_MAX_PASSES", defaults.merge_max_passes),
            merge_deadline_s=_env_float("NOCFL_MERGE_DEADLINE_S", defaults.merge_deadline_s),
            runtime_id=os.getenv("NOCFL_RUNTIME_ID"),
        )

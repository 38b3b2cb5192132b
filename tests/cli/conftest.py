"""Shared fixtures for CLI tests."""

from __future__ import annotations

import pytest
from typer.testing import CliRunner


@pytest.fixture
def runner():
    """Create a CLI test runner."""
    return CliRunner()


@pytest.fixture
def fake_bucket(monkeypatch, s3_client):
    """Route every Bucket the CLI opens to the in-memory client."""
    monkeypatch.setattr("nocfl_index.bucket.make_client", lambda _config: s3_client)
    monkeypatch.setenv("NOCFL_BUCKET", "repository")
    return s3_client

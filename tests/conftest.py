"""Shared fixtures for tradeledger tests.

Builders and the in-memory repository are in tests/helpers.py.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from tests.helpers import InMemoryRepository


@pytest.fixture()
def db_path(tmp_path: Path) -> Path:
    """Temporary database path; each test gets an isolated SQLite file."""
    return tmp_path / "test.db"


@pytest.fixture()
def repo() -> InMemoryRepository:
    return InMemoryRepository()


@pytest.fixture(autouse=True)
def _no_retry_sleep(monkeypatch):
    """Retries back off with time.sleep; tests don't wait."""
    monkeypatch.setattr("tradeledger.store.retry.settings.persistence_retry_backoff_sec", 0.0)

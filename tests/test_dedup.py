"""Tests for duplicate-fill detection."""

from __future__ import annotations

from datetime import datetime, timezone

from tradeledger.ledger.dedup import (
    DedupKey,
    dedup_key,
    effective_external_id,
    fingerprint,
    is_duplicate,
)
from tradeledger.store.models import ExecutionSide, ParsedExecution


def _parsed(external_id: str = "", **overrides) -> ParsedExecution:
    defaults = {
        "external_id": external_id,
        "account": "DEMO1",
        "symbol": "MESZ5",
        "side": ExecutionSide.BUY,
        "quantity": 2.0,
        "price": 6850.25,
        "executed_at": datetime(2025, 12, 4, 14, 30, 5, 120000, tzinfo=timezone.utc),
    }
    defaults.update(overrides)
    return ParsedExecution(**defaults)


def test_broker_id_is_used_when_present():
    assert effective_external_id(_parsed(" 101 "), "tradovate", "acc") == "101"
    assert dedup_key(_parsed("101"), "tradovate", "acc") == DedupKey("tradovate", "acc", "101")


def test_fingerprint_when_id_missing():
    ext = effective_external_id(_parsed(""), "tradovate", "acc")
    assert ext.startswith("fp:")
    assert len(ext) == 3 + 40


def test_fingerprint_is_stable_to_the_second():
    a = _parsed("", executed_at=datetime(2025, 12, 4, 14, 30, 5, 1, tzinfo=timezone.utc))
    b = _parsed("", executed_at=datetime(2025, 12, 4, 14, 30, 5, 999999, tzinfo=timezone.utc))
    assert effective_external_id(a, "b", "acc") == effective_external_id(b, "b", "acc")


def test_fingerprint_distinguishes_fields():
    base = fingerprint("b", "acc", "MES", "BUY", 1, 100.0, datetime(2025, 1, 1, tzinfo=timezone.utc))
    assert base != fingerprint("b", "acc", "MES", "SELL", 1, 100.0, datetime(2025, 1, 1, tzinfo=timezone.utc))
    assert base != fingerprint("b", "acc2", "MES", "BUY", 1, 100.0, datetime(2025, 1, 1, tzinfo=timezone.utc))
    assert base != fingerprint("b", "acc", "MES", "BUY", 1, 100.25, datetime(2025, 1, 1, tzinfo=timezone.utc))
    # int / float の数量は同一視
    assert base == fingerprint("b", "acc", "MES", ExecutionSide.BUY, 1.0, 100, datetime(2025, 1, 1, tzinfo=timezone.utc))


def test_is_duplicate():
    keys = {DedupKey("tradovate", "acc", "101")}
    assert is_duplicate(_parsed("101"), "tradovate", "acc", keys)
    assert not is_duplicate(_parsed("101"), "tradovate", "other", keys)
    assert not is_duplicate(_parsed("101"), "ibkr", "acc", keys)
    assert not is_duplicate(_parsed("102"), "tradovate", "acc", keys)

"""Duplicate-fill detection against previously imported executions.

The key set is loaded once per batch, so every check here is a pure set
lookup with no storage round-trip.

Brokers that omit a stable fill id fall back to a fingerprint of
(broker, account, symbol, side, quantity, price, executed_at to the second).
Two genuine fills with identical fingerprints in the same second cannot be
told apart and collapse into one.
"""

from __future__ import annotations

import hashlib
from datetime import datetime
from typing import NamedTuple

from tradeledger.store.models import ExecutionSide, ParsedExecution

FINGERPRINT_PREFIX = "fp:"


class DedupKey(NamedTuple):
    broker: str
    account_id: str
    external_id: str


def fingerprint(
    broker: str,
    account_id: str,
    symbol: str,
    side: ExecutionSide | str,
    quantity: float,
    price: float,
    executed_at: datetime,
) -> str:
    """Composite id for fills without a broker-assigned id."""
    parts = [
        broker,
        account_id,
        symbol,
        str(side),
        repr(float(quantity)),
        repr(float(price)),
        executed_at.replace(microsecond=0).isoformat(),
    ]
    digest = hashlib.sha1("|".join(parts).encode("utf-8")).hexdigest()
    return f"{FINGERPRINT_PREFIX}{digest}"


def effective_external_id(parsed: ParsedExecution, broker: str, account_id: str) -> str:
    """Broker fill id, or the fingerprint when the broker did not supply one."""
    external_id = parsed.external_id.strip()
    if external_id:
        return external_id
    return fingerprint(
        broker,
        account_id,
        parsed.symbol,
        parsed.side,
        parsed.quantity,
        parsed.price,
        parsed.executed_at,
    )


def dedup_key(parsed: ParsedExecution, broker: str, account_id: str) -> DedupKey:
    return DedupKey(broker, account_id, effective_external_id(parsed, broker, account_id))


def is_duplicate(
    parsed: ParsedExecution,
    broker: str,
    account_id: str,
    existing_keys: set[DedupKey] | frozenset[DedupKey],
) -> bool:
    return dedup_key(parsed, broker, account_id) in existing_keys

"""Error taxonomy for execution ingestion.

Row-level errors (ParseError, MatchError) skip a single row. PersistenceError
is retried and then reported per group. ConfigurationError aborts the batch
before any work starts.
"""

from __future__ import annotations


class LedgerError(Exception):
    """Base class for all ledger errors."""


class ParseError(LedgerError):
    """A raw row could not be normalized into a ParsedExecution."""

    def __init__(self, row_number: int, reason: str) -> None:
        self.row_number = row_number
        self.reason = reason
        super().__init__(f"Row {row_number}: {reason}")


class MatchError(LedgerError):
    """A reducing fill arrived for an instrument with no open position."""

    def __init__(self, symbol: str, external_id: str, reason: str) -> None:
        self.symbol = symbol
        self.external_id = external_id
        self.reason = reason
        super().__init__(f"{symbol} fill {external_id}: {reason}")


class PersistenceError(LedgerError):
    """Storage I/O failure. Only transient failures are retried."""

    def __init__(self, message: str, *, transient: bool = False) -> None:
        self.transient = transient
        super().__init__(message)


class ConfigurationError(LedgerError):
    """Storage or format configuration is missing or invalid."""

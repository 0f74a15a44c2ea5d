"""Broker format registry and batch row parsing.

Each supported broker export is one BrokerFormat member mapped to exactly one
parser instance. Callers select a parser by enum, never by inspecting the row.
"""

from __future__ import annotations

import csv
import io
import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Protocol
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from tradeledger.config import settings
from tradeledger.errors import ConfigurationError, ParseError
from tradeledger.importers.generic import GenericFillParser
from tradeledger.importers.tradovate import TradovateOrdersParser
from tradeledger.store.models import ParsedExecution

logger = logging.getLogger(__name__)


class BrokerFormat(StrEnum):
    TRADOVATE = "tradovate"
    TRADINGVIEW = "tradingview"
    GENERIC = "generic"


class RowParser(Protocol):
    first_data_row: int

    def parse(
        self,
        row: Mapping | str,
        row_number: int,
        tz: ZoneInfo,
        default_currency: str = "USD",
    ) -> ParsedExecution | None: ...


_TRADOVATE = TradovateOrdersParser()

PARSERS: dict[BrokerFormat, RowParser] = {
    BrokerFormat.TRADOVATE: _TRADOVATE,
    # TradingView の Orders エクスポートは Tradovate と同じカラム構成
    BrokerFormat.TRADINGVIEW: _TRADOVATE,
    BrokerFormat.GENERIC: GenericFillParser(),
}


@dataclass
class ParseBatch:
    """Parsed executions plus the rows that did not make it."""

    executions: list[ParsedExecution] = field(default_factory=list)
    errors: list[ParseError] = field(default_factory=list)
    ignored: int = 0  # 未約定などエラーではないスキップ

    @property
    def skipped(self) -> int:
        return self.ignored + len(self.errors)


def resolve_format(value: BrokerFormat | str) -> BrokerFormat:
    try:
        return BrokerFormat(str(value).strip().lower())
    except ValueError as e:
        raise ConfigurationError(f"Unsupported format: {value}") from e


def resolve_timezone(name: str | None = None) -> ZoneInfo:
    tz_name = name or settings.default_timezone
    try:
        return ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ConfigurationError(f"Unknown timezone: {tz_name}") from e


def parse_row(
    raw_row: Mapping | str,
    broker_format: BrokerFormat | str,
    row_index: int,
    tz: ZoneInfo | None = None,
) -> ParsedExecution | None:
    """Parse one raw row. Returns None for rows the format ignores.

    Raises ParseError for malformed rows. row_index is the 0-based position in
    the batch; reported row numbers follow the source file's line numbering.
    """
    parser = PARSERS[resolve_format(broker_format)]
    return parser.parse(
        raw_row,
        row_index + parser.first_data_row,
        tz or resolve_timezone(),
        settings.default_currency,
    )


def parse_rows(
    raw_rows: Iterable[Mapping | str],
    broker_format: BrokerFormat | str,
    timezone: str | None = None,
) -> ParseBatch:
    """Parse a whole batch, collecting errors and continuing past bad rows."""
    fmt = resolve_format(broker_format)
    tz = resolve_timezone(timezone)
    batch = ParseBatch()
    for i, raw in enumerate(raw_rows):
        try:
            parsed = parse_row(raw, fmt, i, tz)
        except ParseError as e:
            batch.errors.append(e)
            continue
        if parsed is None:
            batch.ignored += 1
        else:
            batch.executions.append(parsed)
    logger.info(
        "Parsed %d executions (%s): %d ignored, %d errors",
        len(batch.executions),
        fmt,
        batch.ignored,
        len(batch.errors),
    )
    return batch


def read_csv_rows(text: str) -> list[dict[str, str]]:
    """Split CSV text into header-keyed rows, handling quoted commas."""
    reader = csv.DictReader(io.StringIO(text.lstrip("\ufeff")))
    rows = []
    for record in reader:
        if not any((v or "").strip() for k, v in record.items() if k is not None):
            continue
        rows.append(
            {
                (k or "").strip(): (v or "").strip()
                for k, v in record.items()
                if k is not None and not isinstance(v, list)
            }
        )
    return rows


def read_json_lines(text: str) -> list[str]:
    """Non-blank lines of a JSON-lines document."""
    return [line for line in text.splitlines() if line.strip()]

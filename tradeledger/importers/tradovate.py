"""Tradovate / TradingView Orders CSV parser.

Columns used:
    Order ID | orderId, Account, B/S, Contract, Product, Product Description,
    Avg Fill Price | avgPrice, Filled Qty | filledQty, Fill Time, Status,
    Currency (optional), Fees / Commission (optional),
    Position Effect | Open/Close (optional)

Only filled orders are imported; other statuses are ignored without an error.
"""

from __future__ import annotations

from collections.abc import Mapping
from zoneinfo import ZoneInfo

from tradeledger.errors import ParseError
from tradeledger.importers.common import (
    normalize_currency,
    normalize_effect,
    normalize_side,
    parse_number,
    parse_timestamp,
)
from tradeledger.store.models import InstrumentType, ParsedExecution


def _first(row: Mapping[str, str], *names: str) -> str:
    for name in names:
        value = row.get(name)
        if value is not None and str(value).strip():
            return str(value).strip()
    return ""


def _first_number(row: Mapping[str, str], *names: str) -> float | None:
    for name in names:
        num = parse_number(row.get(name))
        if num is not None:
            return num
    return None


class TradovateOrdersParser:
    first_data_row = 2  # 1 行目はヘッダー

    def parse(
        self,
        row: Mapping[str, str],
        row_number: int,
        tz: ZoneInfo,
        default_currency: str = "USD",
    ) -> ParsedExecution | None:
        if not isinstance(row, Mapping):
            raise ParseError(row_number, "Expected a CSV row with named columns")

        status = _first(row, "Status")
        if "filled" not in status.lower():
            return None

        side = normalize_side(row.get("B/S"))
        if side is None:
            raise ParseError(row_number, f'Invalid side "{row.get("B/S", "")}"')

        quantity = _first_number(row, "Filled Qty", "filledQty")
        if quantity is None or quantity <= 0:
            raise ParseError(row_number, "Invalid quantity")

        price = _first_number(row, "Avg Fill Price", "avgPrice")
        if price is None or price <= 0:
            raise ParseError(row_number, "Invalid price")

        fill_time = _first(row, "Fill Time")
        executed_at = parse_timestamp(fill_time, tz)
        if executed_at is None:
            raise ParseError(row_number, f'Invalid fill time "{fill_time}"')

        symbol = _first(row, "Contract")
        if not symbol:
            raise ParseError(row_number, "Missing symbol/contract")

        currency = normalize_currency(row.get("Currency"), default_currency)
        if currency is None:
            raise ParseError(row_number, f'Invalid currency "{row.get("Currency")}"')

        # 手数料はエクスポートによって負値で出るため絶対値で扱う
        fees = abs(_first_number(row, "Fees", "Fee") or 0.0)
        commissions = abs(_first_number(row, "Commission", "Commissions", "Comm") or 0.0)

        return ParsedExecution(
            external_id=_first(row, "Order ID", "orderId"),
            account=_first(row, "Account"),
            symbol=symbol,
            side=side,
            quantity=abs(quantity),
            price=price,
            executed_at=executed_at,
            currency=currency,
            product=_first(row, "Product"),
            description=_first(row, "Product Description"),
            fees=fees,
            commissions=commissions,
            instrument_type=InstrumentType.FUTURE,
            position_effect=normalize_effect(_first(row, "Position Effect", "Open/Close") or None),
            row_number=row_number,
        )

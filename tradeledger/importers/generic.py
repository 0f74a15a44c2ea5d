"""Canonical fill layout, one JSON object per line (or one CSV row).

Keys (snake_case or camelCase): external_id, account, symbol, side, quantity,
price, executed_at, currency, fees, commission, position_effect, product,
description, instrument_type. A negative quantity without a side means SELL.
"""

from __future__ import annotations

import json
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
from tradeledger.store.models import ExecutionSide, InstrumentType, ParsedExecution

_FIELD_ALIASES = {
    "external_id": ("external_id", "externalId", "fill_id", "fillId", "id"),
    "account": ("account", "account_id", "accountId"),
    "symbol": ("symbol", "contract", "ticker"),
    "side": ("side", "action"),
    "quantity": ("quantity", "qty"),
    "price": ("price", "fill_price", "fillPrice"),
    "executed_at": ("executed_at", "executedAt", "time", "timestamp"),
    "currency": ("currency",),
    "fees": ("fees", "fee"),
    "commissions": ("commissions", "commission"),
    "position_effect": ("position_effect", "positionEffect", "effect"),
    "product": ("product",),
    "description": ("description",),
    "instrument_type": ("instrument_type", "instrumentType", "asset_class"),
}


def _get(record: Mapping, field: str):
    for key in _FIELD_ALIASES[field]:
        value = record.get(key)
        if value is not None and value != "":
            return value
    return None


class GenericFillParser:
    first_data_row = 1

    def parse(
        self,
        row: Mapping | str,
        row_number: int,
        tz: ZoneInfo,
        default_currency: str = "USD",
    ) -> ParsedExecution | None:
        if isinstance(row, str):
            if not row.strip():
                return None
            try:
                row = json.loads(row)
            except json.JSONDecodeError as e:
                raise ParseError(row_number, f"Invalid JSON: {e.msg}") from e
        if not isinstance(row, Mapping):
            raise ParseError(row_number, "Expected a JSON object")

        symbol = str(_get(row, "symbol") or "").strip()
        if not symbol:
            raise ParseError(row_number, "Missing symbol")

        raw_qty = _get(row, "quantity")
        quantity = parse_number(raw_qty)
        if quantity is None:
            raise ParseError(row_number, f'Invalid quantity "{raw_qty}"')

        raw_side = _get(row, "side")
        if raw_side is None:
            # 符号付き数量: 負なら SELL
            side = ExecutionSide.SELL if quantity < 0 else ExecutionSide.BUY
        else:
            side = normalize_side(raw_side)
            if side is None:
                raise ParseError(row_number, f'Invalid side "{raw_side}"')
        quantity = abs(quantity)
        if quantity <= 0:
            raise ParseError(row_number, "Quantity must be positive")

        raw_price = _get(row, "price")
        price = parse_number(raw_price)
        if price is None or price <= 0:
            raise ParseError(row_number, f'Invalid price "{raw_price}"')

        raw_time = _get(row, "executed_at")
        executed_at = parse_timestamp(raw_time, tz)
        if executed_at is None:
            raise ParseError(row_number, f'Invalid execution time "{raw_time}"')

        currency = normalize_currency(_get(row, "currency"), default_currency)
        if currency is None:
            raise ParseError(row_number, f'Invalid currency "{_get(row, "currency")}"')

        raw_instrument = _get(row, "instrument_type")
        try:
            instrument_type = (
                InstrumentType(str(raw_instrument).strip().lower())
                if raw_instrument
                else InstrumentType.STOCK
            )
        except ValueError as e:
            raise ParseError(row_number, f'Unknown instrument type "{raw_instrument}"') from e

        raw_effect = _get(row, "position_effect")
        effect = normalize_effect(raw_effect)
        if raw_effect is not None and effect is None:
            raise ParseError(row_number, f'Invalid position effect "{raw_effect}"')

        return ParsedExecution(
            external_id=str(_get(row, "external_id") or "").strip(),
            account=str(_get(row, "account") or "").strip(),
            symbol=symbol,
            side=side,
            quantity=quantity,
            price=price,
            executed_at=executed_at,
            currency=currency,
            product=str(_get(row, "product") or ""),
            description=str(_get(row, "description") or ""),
            fees=abs(parse_number(_get(row, "fees")) or 0.0),
            commissions=abs(parse_number(_get(row, "commissions")) or 0.0),
            instrument_type=instrument_type,
            position_effect=effect,
            row_number=row_number,
        )

"""Field normalizers shared by the broker row parsers."""

from __future__ import annotations

import math
import re
from datetime import datetime, timezone
from zoneinfo import ZoneInfo

from tradeledger.store.models import ExecutionSide, PositionEffect

_SIDE_ALIASES = {
    "buy": ExecutionSide.BUY,
    "b": ExecutionSide.BUY,
    "bot": ExecutionSide.BUY,
    "bought": ExecutionSide.BUY,
    "long": ExecutionSide.BUY,
    "sell": ExecutionSide.SELL,
    "s": ExecutionSide.SELL,
    "sld": ExecutionSide.SELL,
    "sold": ExecutionSide.SELL,
    "short": ExecutionSide.SELL,
}

_EFFECT_ALIASES = {
    "open": PositionEffect.OPEN,
    "o": PositionEffect.OPEN,
    "opening": PositionEffect.OPEN,
    "close": PositionEffect.CLOSE,
    "c": PositionEffect.CLOSE,
    "closing": PositionEffect.CLOSE,
}

_CURRENCY_SYMBOLS = {"$": "USD", "€": "EUR", "£": "GBP", "¥": "JPY"}

# "12/04/2025 07:52:59" (Tradovate / TradingView export)
_US_DATETIME_RE = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})\s+(\d{1,2}):(\d{2}):(\d{2})")


def parse_number(value) -> float | None:
    """Parse a numeric cell, stripping thousands separators and quotes."""
    if value is None:
        return None
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        num = float(value)
    else:
        cleaned = str(value).replace(",", "").replace('"', "").strip()
        if not cleaned:
            return None
        try:
            num = float(cleaned)
        except ValueError:
            return None
    return num if math.isfinite(num) else None


def normalize_side(value) -> ExecutionSide | None:
    """Map broker side spellings (leading spaces, BOT/SLD, B/S) onto BUY/SELL."""
    if value is None:
        return None
    return _SIDE_ALIASES.get(str(value).strip().lower())


def normalize_effect(value) -> PositionEffect | None:
    if value is None:
        return None
    return _EFFECT_ALIASES.get(str(value).strip().lower())


def normalize_currency(value, default: str) -> str | None:
    """Upper-cased ISO-4217 code, or None when the value is not one."""
    raw = str(value).strip() if value is not None else ""
    if not raw:
        return default
    raw = _CURRENCY_SYMBOLS.get(raw, raw).upper()
    if len(raw) == 3 and raw.isalpha():
        return raw
    return None


def parse_timestamp(value, tz: ZoneInfo) -> datetime | None:
    """Parse a fill time into an aware UTC datetime.

    Naive times are interpreted in tz (the broker export's local time).
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        text = str(value).strip()
        if not text:
            return None
        m = _US_DATETIME_RE.match(text)
        if m:
            month, day, year, hour, minute, second = (int(g) for g in m.groups())
            try:
                dt = datetime(year, month, day, hour, minute, second)
            except ValueError:
                return None
        else:
            try:
                dt = datetime.fromisoformat(text.replace("Z", "+00:00"))
            except ValueError:
                return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=tz)
    return dt.astimezone(timezone.utc)

from __future__ import annotations

import re
from datetime import datetime, timedelta
from typing import Any, Iterable

LEADING_SEPARATOR_RE = re.compile(r"^(-?)([.,])(?=\d)")
THOUSANDS_DOT_RE = re.compile(r"^-?[1-9]\d{0,2}(\.\d{3})+(,\d+)?$")
THOUSANDS_COMMA_RE = re.compile(r"^-?[1-9]\d{0,2}(,\d{3})+$")
DECIMAL_COMMA_RE = re.compile(r"^-?\d+,\d+$")
BARE_LEADING_SEPARATOR_RE = re.compile(r"^[.,]\d+$")
NUMERAL_RE = re.compile(r"^[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?$")

EXCEL_EPOCH = datetime(1899, 12, 30)
# Serials below this are amounts, not dates.
SERIAL_DATE_MIN = 40_000
SERIAL_DATE_MAX = 60_000
MINUTES_PER_DAY = 24 * 60


def fix_numeric_value(value: Any) -> tuple[Any, bool]:
    """
    Normalise a European/US formatted numeral string to a plain decimal string.

    Rules, first match wins after the leading-zero fix:
      ',5' / '.5'      -> '0.5' / '0.5'   (omitted leading zero)
      '1.234,56'       -> '1234.56'       (thousands dots, decimal comma)
      '200,000'        -> '200000'        (thousands commas, no decimal part)
      '0,500'          -> '0.500'         (a zero group is never a thousands group)
      '123,45'         -> '123.45'        (single decimal comma)
    Numbers, blanks and anything else come back untouched, so the function
    is idempotent.
    """
    if value is None or value == "" or not isinstance(value, str):
        return value, False

    original = value.strip()
    text = LEADING_SEPARATOR_RE.sub(r"\g<1>0\g<2>", original)

    if THOUSANDS_DOT_RE.match(text):
        text = text.replace(".", "").replace(",", ".", 1)
    elif THOUSANDS_COMMA_RE.match(text):
        text = text.replace(",", "")
    elif DECIMAL_COMMA_RE.match(text):
        text = text.replace(",", ".", 1)

    if text != original:
        return text, True
    return value, False


def fix_leading_separator(value: Any) -> tuple[Any, bool]:
    """Only repair a bare '.5' / ',5' into '0.5'; everything else is left alone."""
    if not isinstance(value, str):
        return value, False
    trimmed = value.strip()
    if BARE_LEADING_SEPARATOR_RE.match(trimmed):
        return "0" + trimmed.replace(",", "."), True
    return value, False


def coerce_numeric(value: Any) -> tuple[Any, bool]:
    if not isinstance(value, str):
        return value, False
    text = value.strip()
    if not text or not NUMERAL_RE.match(text):
        return value, False
    if "." in text or "e" in text.lower():
        return float(text), True
    return int(text), True


def coerce_numeric_columns(row: list, columns: Iterable[int]) -> tuple[list, list[tuple[int, Any, Any]]]:
    """Return (row copy, [(column, before, after)]) with known-numeric text cells converted."""
    coerced = list(row)
    changes: list[tuple[int, Any, Any]] = []
    for col in columns:
        if col >= len(coerced):
            continue
        before = coerced[col]
        after, changed = coerce_numeric(before)
        if changed:
            coerced[col] = after
            changes.append((col, before, after))
    return coerced, changes



def _serial(value: Any) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


def excel_serial_to_date(value: Any) -> tuple[Any, bool]:
    """45950 -> '20.10.2025'.  Only numbers in the plausible date range convert."""
    serial = _serial(value)
    if serial is None or not SERIAL_DATE_MIN <= serial < SERIAL_DATE_MAX:
        return value, False
    return (EXCEL_EPOCH + timedelta(days=int(serial))).strftime("%d.%m.%Y"), True


def excel_serial_to_datetime(value: Any) -> tuple[Any, bool]:
    """45950.658333 -> '20.10.2025 15:48', rounded to the minute."""
    serial = _serial(value)
    if serial is None or not SERIAL_DATE_MIN <= serial < SERIAL_DATE_MAX:
        return value, False
    moment = EXCEL_EPOCH + timedelta(minutes=round(serial * MINUTES_PER_DAY))
    return moment.strftime("%d.%m.%Y %H:%M"), True


def excel_fraction_to_time(value: Any) -> tuple[Any, bool]:
    """0.658333 -> '15:48'.  Fractions that round up to midnight stay at 23:59."""
    serial = _serial(value)
    if serial is None or not 0 <= serial < 1:
        return value, False
    minutes = min(round(serial * MINUTES_PER_DAY), MINUTES_PER_DAY - 1)
    return f"{minutes // 60:02d}:{minutes % 60:02d}", True

"""Locale-tolerant amount and date normalization.

Both helpers are total: they never raise on bad input. ``parse_amount_cents``
returns ``0`` for anything it cannot read (a real transaction is never zero,
so callers reject the row), and ``parse_date`` returns ``""``.
"""

from __future__ import annotations

import re
from datetime import UTC, date, datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

# Offset in days between the 1900-based spreadsheet epoch and 1970-01-01.
SPREADSHEET_EPOCH_OFFSET_DAYS = 25569
# Serials outside this open interval are not treated as dates (~1982..2064).
SERIAL_MIN = 30000
SERIAL_MAX = 60000

_CURRENCY_RE = re.compile(r"(EUR|USD|GBP|CHF|[€$£])", re.IGNORECASE)
_WHITESPACE_RE = re.compile(r"\s+")
_ISO_RE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})$")
_DOT_RE = re.compile(r"^(\d{1,2})\.(\d{1,2})\.(\d{4}|\d{2})$")
_SLASH_RE = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})$")
_SERIAL_RE = re.compile(r"^\d+(\.\d+)?$")

_CENT = Decimal("0.01")
_UNIX_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


# ---------------------------------------------------------------------------
# Amounts
# ---------------------------------------------------------------------------


def _normalize_separators(s: str) -> str:
    """Rewrite ``s`` so that ``.`` is the only (optional) decimal separator."""

    has_comma = "," in s
    has_dot = "." in s
    if has_comma and has_dot:
        # Whichever separator comes last is the decimal one.
        if s.rfind(",") > s.rfind("."):
            return s.replace(".", "").replace(",", ".")
        return s.replace(",", "")
    if has_comma:
        if s.count(",") > 1:
            return s.replace(",", "")
        return s.replace(",", ".")
    if s.count(".") > 1:
        return s.replace(".", "")
    return s


def _text_to_decimal(raw: str) -> Decimal | None:
    s = _WHITESPACE_RE.sub("", _CURRENCY_RE.sub("", raw))
    if not s:
        return None

    negative = False
    if s.startswith("(") and s.endswith(")") and len(s) >= 2:
        negative = True
        s = s[1:-1]
    if s.endswith("-"):
        # "12,50-" as emitted by some German exports
        negative = not negative
        s = s[:-1]
    if s.startswith("-"):
        negative = not negative
        s = s[1:]
    elif s.startswith("+"):
        s = s[1:]

    s = _normalize_separators(s)
    if not s or not re.fullmatch(r"\d*\.?\d*", s) or s == ".":
        return None
    try:
        d = Decimal(s)
    except InvalidOperation:
        return None
    return -d if negative else d


def to_cents(amount: Decimal) -> int:
    """Round a major-unit decimal to integer cents, half away from zero.

    Returns ``0`` when the value has more digits than the decimal context holds.
    """

    try:
        return int((amount.quantize(_CENT, rounding=ROUND_HALF_UP) * 100).to_integral_value())
    except InvalidOperation:
        return 0


def parse_amount_cents(value: Any) -> int:
    """Parse a numeric or textual amount into signed integer cents.

    Text may carry currency symbols and whitespace. When both ``,`` and ``.``
    occur, the rightmost one is the decimal separator and the other is
    grouping (``1.234,56`` and ``1,234.56`` are both 123456). A lone ``,`` is
    the decimal separator (``1234,5`` → 123450). Returns ``0`` when the value
    cannot be parsed.
    """

    if value is None or isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return value * 100
    if isinstance(value, float):
        if value != value or value in (float("inf"), float("-inf")):
            return 0
        return to_cents(Decimal(str(value)))
    if isinstance(value, Decimal):
        if not value.is_finite():
            return 0
        return to_cents(value)

    d = _text_to_decimal(str(value))
    if d is None:
        return 0
    return to_cents(d)


# ---------------------------------------------------------------------------
# Dates
# ---------------------------------------------------------------------------


def _iso(year: int, month: int, day: int) -> str:
    try:
        return date(year, month, day).isoformat()
    except ValueError:
        return ""


def serial_to_iso(serial: float) -> str:
    """Convert a spreadsheet serial day number to ``YYYY-MM-DD`` (UTC)."""

    days = int(serial // 1) - SPREADSHEET_EPOCH_OFFSET_DAYS
    return (_UNIX_EPOCH + timedelta(days=days)).date().isoformat()


def _is_plausible_serial(num: float) -> bool:
    return SERIAL_MIN < num < SERIAL_MAX


def parse_date(value: Any) -> str:
    """Normalize a date token to ``YYYY-MM-DD``; ``""`` when unrecognized.

    Accepted, in order: ISO ``YYYY-MM-DD`` (unchanged), ``D.M.YYYY`` /
    ``D.M.YY`` (two-digit years become 20YY), ``M/D/YYYY``, and spreadsheet
    serial numbers strictly between 30000 and 60000. ``date``/``datetime``
    objects (as produced by workbook readers for date cells) are accepted too.
    """

    if value is None or isinstance(value, bool):
        return ""
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, int | float | Decimal):
        num = float(value)
        return serial_to_iso(num) if _is_plausible_serial(num) else ""

    s = str(value).strip()
    if not s:
        return ""

    m = _ISO_RE.match(s)
    if m:
        return s if _iso(int(m[1]), int(m[2]), int(m[3])) else ""

    m = _DOT_RE.match(s)
    if m:
        day, month, year = m[1], m[2], m[3]
        if len(year) == 2:
            year = f"20{year}"
        return _iso(int(year), int(month), int(day))

    m = _SLASH_RE.match(s)
    if m:
        return _iso(int(m[3]), int(m[1]), int(m[2]))

    if _SERIAL_RE.match(s):
        num = float(s)
        if _is_plausible_serial(num):
            return serial_to_iso(num)
    return ""


__all__ = [
    "SERIAL_MAX",
    "SERIAL_MIN",
    "SPREADSHEET_EPOCH_OFFSET_DAYS",
    "parse_amount_cents",
    "parse_date",
    "serial_to_iso",
    "to_cents",
]

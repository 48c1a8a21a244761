"""Spreadsheet rows → canonical transaction candidates.

Input is what a spreadsheet reader produces for one sheet: an ordered list of
row dictionaries keyed by the raw header string, with raw (not
locale-formatted) cell values. The header mapping is derived once from the
first row's keys.

Rows whose booking date or amount cannot be normalized are dropped without
raising; a footer or summary line must not abort an otherwise valid import.
The caller sees how many rows were rejected, not why each one was.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from .candidate import TransactionCandidate, clean_text
from .headers import HeaderMapping, map_headers
from .logging_setup import get_logger
from .values import parse_amount_cents, parse_date

_logger = get_logger("bank_import.normalizers")


@dataclass(frozen=True, slots=True)
class StatementParseResult:
    """Outcome of normalizing one sheet.

    ``candidates`` is an immutable tuple in input row order, so it can be
    iterated any number of times. ``len(candidates) == total_rows -
    rejected_rows`` always holds.
    """

    candidates: tuple[TransactionCandidate, ...]
    total_rows: int
    rejected_rows: int
    headers: HeaderMapping = field(default_factory=lambda: HeaderMapping(columns={}))

    def __iter__(self) -> Iterator[TransactionCandidate]:
        return iter(self.candidates)

    def __len__(self) -> int:
        return len(self.candidates)


def _is_absent(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value.strip() == "")


def _project(row: Mapping[str, Any], headers: HeaderMapping) -> dict[str, Any]:
    # First non-empty column wins when several map to the same field; a later
    # duplicate column never overwrites an earlier one, even when both are filled.
    mapped: dict[str, Any] = {}
    for raw_key, target in headers.columns.items():
        if target in mapped:
            continue
        v = row.get(raw_key)
        if not _is_absent(v):
            mapped[target] = v
    return mapped


def _to_candidate(mapped: Mapping[str, Any]) -> TransactionCandidate | None:
    booking_date = parse_date(mapped.get("booking_date"))
    if not booking_date:
        return None
    amount_cents = parse_amount_cents(mapped.get("amount"))
    if amount_cents == 0:
        return None
    return TransactionCandidate(
        booking_date=booking_date,
        value_date=parse_date(mapped.get("value_date")) or booking_date,
        amount_cents=amount_cents,
        counterpart_name=clean_text(mapped.get("counterpart_name")),
        counterpart_iban=clean_text(mapped.get("counterpart_iban")),
        purpose=clean_text(mapped.get("purpose")),
        booking_text=clean_text(mapped.get("booking_text")),
    )


def normalize_rows(rows: Sequence[Mapping[str, Any]]) -> StatementParseResult:
    """Normalize one sheet's rows into canonical candidates.

    Steps: map headers from the first row, project mapped columns (empty and
    ``None`` cells are absent), require a parseable booking date and a
    non-zero amount, default ``value_date`` to ``booking_date``.
    """

    rows = list(rows)
    if not rows:
        return StatementParseResult(candidates=(), total_rows=0, rejected_rows=0)

    headers = map_headers(rows[0].keys())
    out: list[TransactionCandidate] = []
    rejected = 0
    for pos, row in enumerate(rows):
        candidate = _to_candidate(_project(row, headers))
        if candidate is None:
            rejected += 1
            _logger.debug("normalizers:row_rejected row=%d", pos)
            continue
        out.append(candidate)

    return StatementParseResult(
        candidates=tuple(out),
        total_rows=len(rows),
        rejected_rows=rejected,
        headers=headers,
    )


__all__ = ["StatementParseResult", "normalize_rows"]

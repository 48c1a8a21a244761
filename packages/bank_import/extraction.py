"""Document-extraction JSON → canonical transaction candidates.

The extraction service reads a PDF bank statement and answers with loosely
structured JSON whose shape varies from call to call. Accepted shapes:

- a top-level array of transaction-like objects;
- an object with a ``transactions`` array;
- either of the above wrapped in a ``{"result": ...}`` envelope.

Each entry's fields are resolved from German and English key aliases. The
adapter never raises: an unrecognized payload yields an empty result with
``shape_recognized=False``, which callers report as "zero transactions
found" rather than as a failure.

Amount units
------------
The service is asked to state its unit (``amount_unit``: ``cents`` or
``major``), either per entry or once at the top level, and an ``amount_cents``
key implies cents. Only when no unit is stated does the magnitude heuristic
apply to numeric amounts: ``|x| > 1000`` is taken as cents, anything else as
major units. Each heuristic use is logged, since small amounts near the
threshold can be misread.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from .candidate import TransactionCandidate, clean_text
from .logging_setup import get_logger
from .values import parse_amount_cents, parse_date, to_cents

_logger = get_logger("bank_import.extraction")

HEURISTIC_CENTS_THRESHOLD = 1000

DATE_KEYS: tuple[str, ...] = ("datum", "date", "booking_date", "buchungstag", "buchungsdatum")
AMOUNT_KEYS: tuple[str, ...] = ("betrag", "amount", "amount_cents", "umsatz")
VALUE_DATE_KEYS: tuple[str, ...] = ("wertstellung", "value_date", "valuta", "valutadatum")
COUNTERPART_NAME_KEYS: tuple[str, ...] = (
    "auftraggeber",
    "empfänger",
    "empfaenger",
    "begünstigter",
    "counterpart_name",
    "counterpart",
    "name",
)
COUNTERPART_IBAN_KEYS: tuple[str, ...] = ("iban", "counterpart_iban")
PURPOSE_KEYS: tuple[str, ...] = (
    "verwendungszweck",
    "purpose",
    "betreff",
    "beschreibung",
    "description",
)
BOOKING_TEXT_KEYS: tuple[str, ...] = ("buchungstext", "booking_text", "buchungsart")
DIRECTION_KEYS: tuple[str, ...] = ("soll_haben", "debit_credit", "direction", "sh", "type")
UNIT_KEYS: tuple[str, ...] = ("amount_unit", "unit")

_DEBIT_MARKERS = frozenset({"s", "soll", "debit", "d", "dr", "belastung", "lastschrift"})
_CREDIT_MARKERS = frozenset({"h", "haben", "credit", "c", "cr", "gutschrift"})
_CENTS_UNITS = frozenset({"cents", "cent", "minor", "minor_units", "ct"})
_MAJOR_UNITS = frozenset({"major", "major_units", "eur", "euro", "units"})


@dataclass(frozen=True, slots=True)
class ExtractionResult:
    """Candidates recovered from one extraction payload."""

    candidates: tuple[TransactionCandidate, ...]
    total_entries: int = 0
    rejected_entries: int = 0
    shape_recognized: bool = True
    heuristic_amounts: int = 0

    def __iter__(self):
        return iter(self.candidates)

    def __len__(self) -> int:
        return len(self.candidates)


_EMPTY_UNRECOGNIZED = ExtractionResult(candidates=(), shape_recognized=False)


def _first_present(entry: Mapping[str, Any], keys: Sequence[str]) -> tuple[str | None, Any]:
    for key in keys:
        v = entry.get(key)
        if v is None or v is False or v == "" or v == 0:
            continue
        return key, v
    return None, None


def _resolve_unit(entry: Mapping[str, Any], amount_key: str | None, default: str | None) -> str | None:
    if amount_key == "amount_cents":
        return "cents"
    _, raw = _first_present(entry, UNIT_KEYS)
    for candidate in (raw, default):
        if candidate is None:
            continue
        unit = str(candidate).strip().lower()
        if unit in _CENTS_UNITS:
            return "cents"
        if unit in _MAJOR_UNITS:
            return "major"
    return None


def _round_cents(value: Decimal) -> int:
    try:
        return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    except InvalidOperation:
        return 0


class _AmountResolver:
    def __init__(self, default_unit: str | None) -> None:
        self.default_unit = default_unit
        self.heuristic_uses = 0

    def resolve(self, entry: Mapping[str, Any]) -> int:
        key, raw = _first_present(entry, AMOUNT_KEYS)
        if raw is None or isinstance(raw, bool):
            return 0
        unit = _resolve_unit(entry, key, self.default_unit)

        if isinstance(raw, int | float):
            try:
                dec = Decimal(str(raw))
            except InvalidOperation:
                return 0
            if not dec.is_finite():
                return 0
            if unit == "cents":
                return _round_cents(dec)
            if unit == "major":
                return to_cents(dec)
            self.heuristic_uses += 1
            if abs(dec) > HEURISTIC_CENTS_THRESHOLD:
                cents = _round_cents(dec)
            else:
                cents = to_cents(dec)
            _logger.warning(
                "extraction:amount_unit_guessed value=%s assumed=%s cents=%d",
                raw,
                "cents" if abs(dec) > HEURISTIC_CENTS_THRESHOLD else "major",
                cents,
            )
            return cents

        # Text amounts carry their own decimal separator; read them as major units.
        cents = parse_amount_cents(raw)
        if unit == "cents":
            return _round_cents(Decimal(cents) / 100)
        return cents


def _apply_direction(entry: Mapping[str, Any], amount_cents: int) -> int:
    _, raw = _first_present(entry, DIRECTION_KEYS)
    if raw is None:
        return amount_cents
    marker = str(raw).strip().lower()
    if marker in _DEBIT_MARKERS:
        return -abs(amount_cents)
    if marker in _CREDIT_MARKERS:
        return abs(amount_cents)
    return amount_cents


def _text(entry: Mapping[str, Any], keys: Sequence[str]) -> str | None:
    _, raw = _first_present(entry, keys)
    return clean_text(raw)


def _entry_to_candidate(
    entry: Mapping[str, Any], amounts: _AmountResolver
) -> TransactionCandidate | None:
    _, raw_date = _first_present(entry, DATE_KEYS)
    booking_date = parse_date(raw_date)
    if not booking_date:
        return None
    amount_cents = _apply_direction(entry, amounts.resolve(entry))
    if amount_cents == 0:
        return None
    _, raw_value_date = _first_present(entry, VALUE_DATE_KEYS)
    return TransactionCandidate(
        booking_date=booking_date,
        value_date=parse_date(raw_value_date) or booking_date,
        amount_cents=amount_cents,
        counterpart_name=_text(entry, COUNTERPART_NAME_KEYS),
        counterpart_iban=_text(entry, COUNTERPART_IBAN_KEYS),
        purpose=_text(entry, PURPOSE_KEYS),
        booking_text=_text(entry, BOOKING_TEXT_KEYS),
    )


def _locate_entries(data: Any) -> tuple[list[Any], str | None] | None:
    payload = data
    _, outer_unit = (
        _first_present(payload, UNIT_KEYS) if isinstance(payload, Mapping) else (None, None)
    )
    if isinstance(payload, Mapping) and "result" in payload and payload.get("result"):
        payload = payload["result"]
    if isinstance(payload, list):
        return payload, (str(outer_unit) if outer_unit is not None else None)
    if isinstance(payload, Mapping):
        txs = payload.get("transactions")
        if isinstance(txs, list):
            # The unit next to the entries wins over one on the envelope.
            _, unit = _first_present(payload, UNIT_KEYS)
            if unit is None:
                unit = outer_unit
            return txs, (str(unit) if unit is not None else None)
    return None


def _safe_candidate(entry: Any, amounts: _AmountResolver) -> TransactionCandidate | None:
    if not isinstance(entry, Mapping):
        return None
    try:
        return _entry_to_candidate(entry, amounts)
    except Exception as e:  # noqa: BLE001 - one malformed entry must not sink the payload
        _logger.warning("extraction:entry_rejected error=%s", e.__class__.__name__)
        return None


def candidates_from_extraction(data: Any) -> ExtractionResult:
    """Normalize an extraction payload; never raises.

    Entries that fail to normalize are counted in ``rejected_entries``; the
    rest of the payload is still used.
    """

    try:
        located = _locate_entries(data)
        if located is None:
            _logger.info("extraction:shape_unrecognized type=%s", type(data).__name__)
            return _EMPTY_UNRECOGNIZED
        entries, default_unit = located

        amounts = _AmountResolver(default_unit)
        out: list[TransactionCandidate] = []
        rejected = 0
        for entry in entries:
            candidate = _safe_candidate(entry, amounts)
            if candidate is None:
                rejected += 1
                continue
            out.append(candidate)
        return ExtractionResult(
            candidates=tuple(out),
            total_entries=len(entries),
            rejected_entries=rejected,
            heuristic_amounts=amounts.heuristic_uses,
        )
    except Exception as e:  # noqa: BLE001 - extraction mismatches are soft failures
        _logger.warning("extraction:adapter_failed error=%s", e.__class__.__name__)
        return _EMPTY_UNRECOGNIZED


__all__ = [
    "ExtractionResult",
    "HEURISTIC_CENTS_THRESHOLD",
    "candidates_from_extraction",
]

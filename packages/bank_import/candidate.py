"""Canonical transaction candidate produced by every ingestion path.

Field order (exact):
    - booking_date: ``YYYY-MM-DD``; always present
    - value_date: ``YYYY-MM-DD``; defaults to ``booking_date``
    - amount_cents: signed integer minor units; never zero
    - counterpart_name, counterpart_iban, purpose, booking_text: text or
      ``None`` (absent rather than empty)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

CANDIDATE_TEXT_FIELDS: tuple[str, ...] = (
    "counterpart_name",
    "counterpart_iban",
    "purpose",
    "booking_text",
)


@dataclass(frozen=True, slots=True)
class TransactionCandidate:
    """A single normalized transaction, independent of the source format."""

    booking_date: str
    value_date: str
    amount_cents: int
    counterpart_name: str | None = None
    counterpart_iban: str | None = None
    purpose: str | None = None
    booking_text: str | None = None

    def __post_init__(self) -> None:
        if not self.booking_date:
            raise ValueError("booking_date is required")
        if self.amount_cents == 0:
            raise ValueError("amount_cents must be non-zero")

    def as_dict(self) -> dict[str, Any]:
        """Return a JSON-friendly mapping, omitting absent optional fields."""

        out: dict[str, Any] = {
            "booking_date": self.booking_date,
            "value_date": self.value_date,
            "amount_cents": self.amount_cents,
        }
        for key in CANDIDATE_TEXT_FIELDS:
            val = getattr(self, key)
            if val is not None:
                out[key] = val
        return out


def clean_text(value: Any) -> str | None:
    """Trim a raw cell/JSON value into text; empty or missing becomes ``None``."""

    if value is None:
        return None
    s = str(value).strip()
    return s if s else None


__all__ = ["CANDIDATE_TEXT_FIELDS", "TransactionCandidate", "clean_text"]

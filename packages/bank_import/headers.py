"""Bank export column headers → canonical transaction fields.

Lookup is case-insensitive on the trimmed header. Every spelling known from
the supported export dialects (Sparkasse, ING, DKB old/new, N26, Volksbank,
Comdirect, Commerzbank, Postbank, generic English exports) is listed
explicitly; there is no fuzzy matching. Columns that are known but carry no
transaction data (currency, balance, status, mandate reference, ordering
account metadata) map to :data:`IGNORE` so they are recognized rather than
reported as unknown.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from .logging_setup import get_logger

IGNORE = "_ignore"

CANONICAL_FIELDS: frozenset[str] = frozenset(
    {
        "booking_date",
        "value_date",
        "amount",
        "counterpart_name",
        "counterpart_iban",
        "purpose",
        "booking_text",
    }
)

HEADER_MAP: dict[str, str] = {
    # -- booking date
    "buchungstag": "booking_date",
    "buchungsdatum": "booking_date",  # DKB new, Postbank
    "datum": "booking_date",
    "date": "booking_date",  # N26 legacy
    "booking date": "booking_date",  # N26
    "buchung": "booking_date",  # ING
    "buchung / valuta": "booking_date",  # ING alt
    # -- value date
    "valuta": "value_date",  # ING
    "valutadatum": "value_date",  # Volksbank, Sparkasse
    "wertstellungstag": "value_date",
    "wertstellung": "value_date",  # DKB, Commerzbank, Postbank
    "wertstellung (valuta)": "value_date",  # Comdirect
    "wert": "value_date",
    "value date": "value_date",  # N26
    # -- amount
    "betrag": "amount",
    "betrag (eur)": "amount",  # DKB old
    "betrag (€)": "amount",  # DKB new, Postbank
    "betrag in €": "amount",
    "betrag in eur": "amount",
    "amount": "amount",
    "amount (eur)": "amount",  # N26
    "umsatz": "amount",
    "umsatz in eur": "amount",  # Comdirect
    "umsatz in €": "amount",
    # -- counterpart name
    "auftraggeber / begünstigter": "counterpart_name",  # DKB old
    "auftraggeber/begünstigter": "counterpart_name",
    "auftraggeber / empfänger": "counterpart_name",
    "auftraggeber/empfänger": "counterpart_name",  # ING
    "auftraggeber": "counterpart_name",  # Postbank
    "begünstigter": "counterpart_name",
    "empfänger": "counterpart_name",
    "empfaenger": "counterpart_name",
    "name": "counterpart_name",
    "payee": "counterpart_name",  # N26 legacy
    "partner name": "counterpart_name",  # N26
    "beguenstigter/zahlungspflichtiger": "counterpart_name",  # Sparkasse CAMT
    "zahlungspflichtige*r": "counterpart_name",  # DKB new
    "zahlungsempfänger*in": "counterpart_name",  # DKB new
    "zahlungsempfaenger*in": "counterpart_name",
    "name zahlungsbeteiligter": "counterpart_name",  # Volksbank
    "counterpart": "counterpart_name",
    "name des partners": "counterpart_name",
    "transaktionspartner": "counterpart_name",
    # -- counterpart IBAN
    "kontonummer/iban": "counterpart_iban",  # Sparkasse CAMT
    "kontonummer": "counterpart_iban",  # DKB old
    "iban": "counterpart_iban",  # DKB new
    "partner iban": "counterpart_iban",  # N26
    "account number": "counterpart_iban",  # N26 legacy
    "iban des auftraggebers": "counterpart_iban",
    "iban des zahlungsbeteiligten": "counterpart_iban",
    "iban zahlungsbeteiligter": "counterpart_iban",  # Volksbank
    "kontonr./iban": "counterpart_iban",
    "konto-nr. des auftraggebers": "counterpart_iban",
    # -- purpose
    "verwendungszweck": "purpose",
    "verwendungszweck/kundenreferenz": "purpose",
    "betreff": "purpose",
    "purpose": "purpose",
    "payment reference": "purpose",  # N26
    "info": "purpose",
    "beschreibung": "purpose",
    "kundenreferenz (end-to-end)": "purpose",
    "kundenreferenz": "purpose",
    # -- booking text / transaction type
    "buchungstext": "booking_text",
    "buchungsart": "booking_text",
    "typ": "booking_text",
    "type": "booking_text",  # N26
    "transaction type": "booking_text",  # N26 legacy
    "umsatzart": "booking_text",  # Commerzbank, Postbank
    "umsatztyp": "booking_text",  # DKB new
    "vorgang": "booking_text",  # Comdirect
    "transaktionstyp": "booking_text",
    "buchungsdetails": "booking_text",  # Postbank
    # -- recognized, carries nothing we keep
    "account name": IGNORE,
    "original amount": IGNORE,
    "original currency": IGNORE,
    "exchange rate": IGNORE,
    "währung": IGNORE,
    "waehrung": IGNORE,
    "currency": IGNORE,
    "saldo": IGNORE,
    "saldo in eur": IGNORE,
    "saldo (€)": IGNORE,
    "saldo nach buchung": IGNORE,
    "status": IGNORE,
    "mandatsreferenz": IGNORE,
    "gläubiger-id": IGNORE,
    "glaeubiger id": IGNORE,
    "sammlerreferenz": IGNORE,
    "lastschrift ursprungsbetrag": IGNORE,
    "auslagenersatz ruecklastschrift": IGNORE,
    "auftragskonto": IGNORE,
    "bezeichnung auftragskonto": IGNORE,
    "iban auftragskonto": IGNORE,
    "bic auftragskonto": IGNORE,
    "bankname auftragskonto": IGNORE,
    "bic (swift-code)": IGNORE,
    "bic (swift-code) zahlungsbeteiligter": IGNORE,
    "blz": IGNORE,
}

_logger = get_logger("bank_import.headers")


def normalize_header(raw: object) -> str | None:
    """Return the canonical field (or :data:`IGNORE`) for ``raw``; ``None`` if unknown."""

    if raw is None:
        return None
    return HEADER_MAP.get(str(raw).strip().lower())


@dataclass(frozen=True, slots=True)
class HeaderMapping:
    """Result of mapping one sheet's header row.

    ``columns`` maps each raw header (as it appears in the rows) to its
    canonical field, in header order. ``ignored`` lists headers recognized as
    irrelevant; ``dropped`` lists headers nothing is known about. Neither
    contributes to candidates, but ``dropped`` is what an operator should see.
    """

    columns: dict[str, str]
    ignored: tuple[str, ...] = ()
    dropped: tuple[str, ...] = ()

    @property
    def fields(self) -> frozenset[str]:
        return frozenset(self.columns.values())


def map_headers(headers: Iterable[object]) -> HeaderMapping:
    """Map a header row, keeping track of ignored and dropped columns."""

    columns: dict[str, str] = {}
    ignored: list[str] = []
    dropped: list[str] = []
    for raw in headers:
        key = "" if raw is None else str(raw)
        target = normalize_header(raw)
        if target is None:
            dropped.append(key)
        elif target == IGNORE:
            ignored.append(key)
        else:
            columns[key] = target

    if dropped:
        _logger.info(
            "headers:dropped count=%d headers=%s", len(dropped), ", ".join(repr(h) for h in dropped)
        )
    return HeaderMapping(columns=columns, ignored=tuple(ignored), dropped=tuple(dropped))


__all__ = [
    "CANONICAL_FIELDS",
    "HEADER_MAP",
    "IGNORE",
    "HeaderMapping",
    "map_headers",
    "normalize_header",
]

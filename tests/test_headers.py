from __future__ import annotations

import pytest

from bank_import.headers import (
    CANONICAL_FIELDS,
    HEADER_MAP,
    IGNORE,
    map_headers,
    normalize_header,
)

# Header rows as they appear in real exports, per bank dialect.
DIALECTS: dict[str, dict[str, str]] = {
    "sparkasse_camt": {
        "Auftragskonto": IGNORE,
        "Buchungstag": "booking_date",
        "Valutadatum": "value_date",
        "Buchungstext": "booking_text",
        "Verwendungszweck": "purpose",
        "Glaeubiger ID": IGNORE,
        "Mandatsreferenz": IGNORE,
        "Beguenstigter/Zahlungspflichtiger": "counterpart_name",
        "Kontonummer/IBAN": "counterpart_iban",
        "BIC (SWIFT-Code)": IGNORE,
        "Betrag": "amount",
        "Waehrung": IGNORE,
    },
    "ing": {
        "Buchung": "booking_date",
        "Valuta": "value_date",
        "Auftraggeber/Empfänger": "counterpart_name",
        "Buchungstext": "booking_text",
        "Verwendungszweck": "purpose",
        "Saldo": IGNORE,
        "Währung": IGNORE,
        "Betrag": "amount",
    },
    "dkb_old": {
        "Buchungstag": "booking_date",
        "Wertstellung": "value_date",
        "Buchungstext": "booking_text",
        "Auftraggeber / Begünstigter": "counterpart_name",
        "Verwendungszweck": "purpose",
        "Kontonummer": "counterpart_iban",
        "BLZ": IGNORE,
        "Betrag (EUR)": "amount",
        "Gläubiger-ID": IGNORE,
        "Mandatsreferenz": IGNORE,
        "Kundenreferenz": "purpose",
    },
    "dkb_new": {
        "Buchungsdatum": "booking_date",
        "Wertstellung": "value_date",
        "Status": IGNORE,
        "Zahlungspflichtige*r": "counterpart_name",
        "Zahlungsempfänger*in": "counterpart_name",
        "Verwendungszweck": "purpose",
        "Umsatztyp": "booking_text",
        "IBAN": "counterpart_iban",
        "Betrag (€)": "amount",
        "Gläubiger-ID": IGNORE,
        "Mandatsreferenz": IGNORE,
        "Kundenreferenz": "purpose",
    },
    "n26": {
        "Booking Date": "booking_date",
        "Value Date": "value_date",
        "Partner Name": "counterpart_name",
        "Partner Iban": "counterpart_iban",
        "Type": "booking_text",
        "Payment Reference": "purpose",
        "Account Name": IGNORE,
        "Amount (EUR)": "amount",
        "Original Amount": IGNORE,
        "Original Currency": IGNORE,
        "Exchange Rate": IGNORE,
    },
    "n26_legacy": {
        "Date": "booking_date",
        "Payee": "counterpart_name",
        "Account number": "counterpart_iban",
        "Transaction type": "booking_text",
        "Payment reference": "purpose",
        "Amount (EUR)": "amount",
    },
    "volksbank": {
        "Bezeichnung Auftragskonto": IGNORE,
        "IBAN Auftragskonto": IGNORE,
        "BIC Auftragskonto": IGNORE,
        "Bankname Auftragskonto": IGNORE,
        "Buchungstag": "booking_date",
        "Valutadatum": "value_date",
        "Name Zahlungsbeteiligter": "counterpart_name",
        "IBAN Zahlungsbeteiligter": "counterpart_iban",
        "BIC (SWIFT-Code) Zahlungsbeteiligter": IGNORE,
        "Buchungstext": "booking_text",
        "Verwendungszweck": "purpose",
        "Betrag": "amount",
        "Waehrung": IGNORE,
        "Saldo nach Buchung": IGNORE,
    },
    "comdirect": {
        "Buchungstag": "booking_date",
        "Wertstellung (Valuta)": "value_date",
        "Vorgang": "booking_text",
        "Buchungstext": "booking_text",
        "Umsatz in EUR": "amount",
    },
    "commerzbank": {
        "Buchungstag": "booking_date",
        "Wertstellung": "value_date",
        "Umsatzart": "booking_text",
        "Buchungstext": "booking_text",
        "Betrag": "amount",
        "Währung": IGNORE,
        "IBAN Auftragskonto": IGNORE,
    },
    "postbank": {
        "Buchungsdatum": "booking_date",
        "Wertstellung": "value_date",
        "Umsatzart": "booking_text",
        "Buchungsdetails": "booking_text",
        "Auftraggeber": "counterpart_name",
        "Empfänger": "counterpart_name",
        "Betrag (€)": "amount",
        "Saldo (€)": IGNORE,
    },
}

_DIALECT_CASES = [
    pytest.param(header, expected, id=f"{bank}:{header}")
    for bank, headers in DIALECTS.items()
    for header, expected in headers.items()
]


@pytest.mark.parametrize(("header", "expected"), _DIALECT_CASES)
def test_dialect_headers_map_to_documented_field(header: str, expected: str) -> None:
    assert normalize_header(header) == expected


@pytest.mark.parametrize(("spelling", "expected"), sorted(HEADER_MAP.items()))
def test_every_table_entry_round_trips_with_case_and_padding(spelling: str, expected: str) -> None:
    assert normalize_header(spelling) == expected
    assert normalize_header(f"  {spelling.upper()} ") == expected


def test_table_targets_are_canonical_or_ignore() -> None:
    assert set(HEADER_MAP.values()) <= CANONICAL_FIELDS | {IGNORE}
    # amount/booking_date have at least one spelling per dialect
    assert "amount" in HEADER_MAP.values()
    assert "booking_date" in HEADER_MAP.values()


@pytest.mark.parametrize("raw", ["Kategorie", "Notiz", "", None, "Buchungstag2"])
def test_unknown_headers_are_unmapped(raw: object) -> None:
    assert normalize_header(raw) is None


def test_map_headers_reports_ignored_and_dropped() -> None:
    mapping = map_headers(["Buchungstag", "Betrag", "Währung", "Kategorie", "Notiz"])

    assert mapping.columns == {"Buchungstag": "booking_date", "Betrag": "amount"}
    assert mapping.ignored == ("Währung",)
    assert mapping.dropped == ("Kategorie", "Notiz")
    assert mapping.fields == frozenset({"booking_date", "amount"})


def test_map_headers_keeps_raw_keys_for_row_lookup() -> None:
    mapping = map_headers([" Buchungstag ", "BETRAG"])
    assert mapping.columns == {" Buchungstag ": "booking_date", "BETRAG": "amount"}
    assert mapping.dropped == ()

from __future__ import annotations

from datetime import date
from pathlib import Path

from openpyxl import Workbook

from bank_import.cli import cmd_apply_rule, cmd_classify, cmd_import
from bank_import.persistence import load_transactions, save_classifications, save_rule
from bank_import.rules import RuleCondition, manual_match, rule_from_manual_match
from db.client import session_scope
from tests.helpers.db import bootstrap_sqlite_db, fetch_rule, fetch_transactions

SPARKASSE_CSV = (
    '"Auftragskonto";"Buchungstag";"Valutadatum";"Buchungstext";"Verwendungszweck";'
    '"Beguenstigter/Zahlungspflichtiger";"Kontonummer/IBAN";"BIC (SWIFT-Code)";"Betrag";"Waehrung";"Info"\n'
    '"DE11";"01.03.24";"01.03.24";"GUTSCHR. UEBERWEISUNG";"Miete Whg 3 Maerz";"Petra Schulz";'
    '"DE89370400440532013000";"COBADEFFXXX";"850,00";"EUR";"Umsatz gebucht"\n'
    '"DE11";"03.03.24";"03.03.24";"FOLGELASTSCHRIFT";"Abschlag 03/24";"Stadtwerke Musterstadt";'
    '"DE02120300000000202051";"BYLADEM1001";"-80,00";"EUR";"Umsatz gebucht"\n'
)


def _dkb_workbook(path: Path) -> Path:
    wb = Workbook()
    ws = wb.active
    ws.append(["Girokonto", "DE11"])
    ws.append([])
    ws.append(["Buchungsdatum", "Wertstellung", "Zahlungspflichtige*r", "IBAN", "Verwendungszweck", "Betrag (€)"])
    ws.append([date(2024, 4, 1), date(2024, 4, 1), "Petra Schulz", "DE89370400440532013000", "Miete Whg 3 April", 850])
    ws.append([date(2024, 3, 1), date(2024, 3, 1), "Petra Schulz", "DE89 3704 0044 0532 0130 00", "Miete Whg 3 Maerz", 850])
    wb.save(path)
    return path


def test_import_manual_match_backfill_and_forward_classification(tmp_path: Path) -> None:
    db_url = bootstrap_sqlite_db(tmp_path / "e2e.sqlite3")
    march = tmp_path / "sparkasse_maerz.csv"
    march.write_text(SPARKASSE_CSV, encoding="cp1252")

    # 1) First import: nothing is classified yet.
    assert cmd_import([march], persist=True, database_url=db_url, account_id="DE11") == 0
    assert [r.classification for r in fetch_transactions(db_url)] == ["unclassified"] * 2

    # 2) The user assigns the rent payment by hand and saves a rule from it.
    with session_scope(database_url=db_url) as s:
        txs = load_transactions(s, account_id="DE11")
        rent = [t for t in txs if t.counterpart_name == "Petra Schulz"]
        n = manual_match(rent, tenant_id="tenant-schulz", lease_id="lease-3")
        save_classifications(s, rent)
        rule = rule_from_manual_match(
            [RuleCondition(field="counterpart_iban", operator="equals", value="DE89370400440532013000")],
            rule_id="schulz-rent",
            tenant_id="tenant-schulz",
            lease_id="lease-3",
            matched=n,
        )
        save_rule(s, rule)

    # 3) Backfilling the new rule leaves the manual decision alone.
    assert cmd_apply_rule("schulz-rent", database_url=db_url) == 0
    (manual,) = [r for r in fetch_transactions(db_url) if r.matched_tenant_id]
    assert manual.classification == "manual"
    assert float(manual.match_confidence) == 1.0

    # 4) The next month arrives as a workbook export with a preamble; the
    #    March row is a re-export and must not be stored twice.
    april = _dkb_workbook(tmp_path / "dkb_april.xlsx")
    assert cmd_import([april], persist=True, database_url=db_url, account_id="DE11") == 0

    rows = fetch_transactions(db_url)
    assert len(rows) == 3
    (new,) = [r for r in rows if r.booking_date == date(2024, 4, 1)]
    assert new.classification == "rule:schulz-rent"
    assert new.matched_tenant_id == "tenant-schulz"
    assert new.matched_lease_id == "lease-3"
    assert new.transaction_type == "rent"
    assert new.match_status == "auto"

    stored_rule = fetch_rule(db_url, "schulz-rent")
    assert stored_rule is not None
    assert stored_rule.name == "Regel: DE89370400440532013000"
    assert stored_rule.match_count == 2

    # 5) A later classify pass has nothing left to do for this tenant.
    assert cmd_classify(account_id="DE11", database_url=db_url) == 0
    assert fetch_rule(db_url, "schulz-rent").match_count == 2

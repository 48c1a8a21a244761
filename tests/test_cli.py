from __future__ import annotations

import json
import os
from pathlib import Path

import pytest
from typer.testing import CliRunner

import bank_import.cli as cli
from bank_import.cli import app, cmd_apply_rule, cmd_classify, cmd_import
from tests.helpers.db import bootstrap_sqlite_db, fetch_rule, fetch_transactions, seed_rule

MARCH_CSV = (
    "Buchungstag;Betrag;Empfänger;Verwendungszweck\n"
    "01.03.2024;-45,00;Hans Müller;Miete März\n"
    "02.03.2024;-80,00;Stadtwerke;Abschlag Strom\n"
)

MUELLER = [{"field": "counterpart_name", "operator": "contains", "value": "müller"}]


@pytest.fixture()
def march_csv(tmp_path: Path) -> Path:
    p = tmp_path / "march.csv"
    p.write_text(MARCH_CSV, encoding="utf-8")
    return p


@pytest.fixture()
def db_url(tmp_path: Path) -> str:
    return bootstrap_sqlite_db(tmp_path / "bank.sqlite3")


# ---- import ------------------------------------------------------------------


def test_import_prints_tsv_and_summary(march_csv: Path, capsys: pytest.CaptureFixture[str]) -> None:
    code = cmd_import([march_csv])

    out, err = capsys.readouterr()
    assert code == 0
    assert out.splitlines() == [
        "2024-03-01\t-4500\tHans Müller\tMiete März",
        "2024-03-02\t-8000\tStadtwerke\tAbschlag Strom",
    ]
    assert "2 candidates produced, 0 rows rejected" in err


def test_import_json_lines(march_csv: Path, capsys: pytest.CaptureFixture[str]) -> None:
    cmd_import([march_csv], as_json=True)

    first = json.loads(capsys.readouterr().out.splitlines()[0])
    assert first == {
        "booking_date": "2024-03-01",
        "value_date": "2024-03-01",
        "amount_cents": -4500,
        "counterpart_name": "Hans Müller",
        "purpose": "Miete März",
    }


def test_import_reports_unimportable_files_and_keeps_going(
    tmp_path: Path, march_csv: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    notes = tmp_path / "notes.txt"
    notes.write_text("hello", encoding="utf-8")
    pdf = tmp_path / "auszug.pdf"
    pdf.write_bytes(b"%PDF-1.4")

    code = cmd_import([notes, march_csv, pdf])

    out, err = capsys.readouterr()
    assert code == 1
    assert len(out.splitlines()) == 2
    assert "notes.txt: unsupported" in err
    assert "OPENAI_API_KEY is not set" in err
    assert "auszug.pdf: failed: no document extractor configured" in err
    assert "2 files not imported" in err


def test_import_reports_unmapped_columns(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    p = tmp_path / "x.csv"
    p.write_text("Buchungstag;Betrag;Kategorie\n01.03.2024;5,00;Haushalt\n", encoding="utf-8")

    cmd_import([p])

    assert "unmapped columns: Kategorie" in capsys.readouterr().err


def test_import_persist_dedups_and_classifies(
    db_url: str, march_csv: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    seed_rule(
        db_url,
        rule_id="r1",
        conditions=MUELLER,
        action_type="assign_tenant",
        action_config={"tenant_id": "T123"},
    )

    first = cmd_import([march_csv], persist=True, database_url=db_url, account_id="giro")
    first_err = capsys.readouterr().err
    second = cmd_import([march_csv], persist=True, database_url=db_url, account_id="giro")
    second_err = capsys.readouterr().err

    assert (first, second) == (0, 0)
    assert "Persisted 2 new transactions (0 duplicates skipped), 1 classified by rules" in first_err
    assert "Persisted 0 new transactions (2 duplicates skipped), 0 classified by rules" in second_err

    rows = {r.counterpart_name: r for r in fetch_transactions(db_url)}
    assert rows["Hans Müller"].matched_tenant_id == "T123"
    assert rows["Hans Müller"].classification == "rule:r1"
    assert rows["Hans Müller"].account_id == "giro"
    assert rows["Stadtwerke"].classification == "unclassified"
    rule = fetch_rule(db_url, "r1")
    assert rule is not None and rule.match_count == 1


def test_import_persist_without_database_fails_cleanly(
    march_csv: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    code = cmd_import([march_csv], persist=True)

    assert code == 1
    assert "Error: persistence failed: DATABASE_URL is not set" in capsys.readouterr().err


# ---- apply-rule / classify ---------------------------------------------------


def _import_march(db_url: str, march_csv: Path) -> None:
    assert cmd_import([march_csv], persist=True, database_url=db_url) == 0


def test_apply_rule_dry_run_then_apply(
    db_url: str, march_csv: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    _import_march(db_url, march_csv)
    seed_rule(
        db_url,
        rule_id="strom",
        conditions=[{"field": "purpose", "operator": "contains", "value": "strom"}],
        action_type="book_as",
        action_config={"type": "utility"},
    )
    capsys.readouterr()

    assert cmd_apply_rule("strom", dry_run=True, database_url=db_url) == 0
    out, err = capsys.readouterr()
    assert len(out.splitlines()) == 1 and out.startswith("import_")
    assert "1 transactions would match rule strom" in err
    assert all(r.classification == "unclassified" for r in fetch_transactions(db_url))

    assert cmd_apply_rule("strom", database_url=db_url) == 0
    assert "Applied rule strom to 1 transactions (0 already classified, skipped)" in (
        capsys.readouterr().err
    )
    booked = [r for r in fetch_transactions(db_url) if r.transaction_type == "utility"]
    assert [r.counterpart_name for r in booked] == ["Stadtwerke"]
    rule = fetch_rule(db_url, "strom")
    assert rule is not None and rule.match_count == 1

    assert cmd_apply_rule("strom", database_url=db_url) == 0
    assert "to 0 transactions (1 already classified, skipped)" in capsys.readouterr().err


def test_apply_rule_unknown_id(db_url: str, capsys: pytest.CaptureFixture[str]) -> None:
    assert cmd_apply_rule("missing", database_url=db_url) == 1
    assert "Error: rule not found: missing" in capsys.readouterr().err


def test_classify_runs_rules_added_after_import(
    db_url: str, march_csv: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    _import_march(db_url, march_csv)
    seed_rule(
        db_url,
        rule_id="r1",
        conditions=MUELLER,
        action_type="assign_tenant",
        action_config={"tenant_id": "T123"},
    )
    capsys.readouterr()

    assert cmd_classify(database_url=db_url) == 0
    assert "Classified 1 of 2 unclassified transactions" in capsys.readouterr().err
    assert cmd_classify(database_url=db_url) == 0
    assert "Classified 0 of 1 unclassified transactions" in capsys.readouterr().err


# ---- Typer wiring ------------------------------------------------------------


@pytest.fixture()
def runner(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> CliRunner:
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(cli, "configure_logging", lambda *a, **k: None)
    return CliRunner()


def test_cli_import_command(runner: CliRunner, march_csv: Path) -> None:
    result = runner.invoke(app, ["import", str(march_csv), "--json"])

    assert result.exit_code == 0
    assert '"amount_cents": -4500' in result.output


def test_cli_import_exit_code_on_unsupported(runner: CliRunner, tmp_path: Path) -> None:
    p = tmp_path / "statement.ods"
    p.write_bytes(b"x")

    result = runner.invoke(app, ["import", str(p)])

    assert result.exit_code == 1


def test_cli_reads_database_url_from_dotenv(
    runner: CliRunner, tmp_path: Path, db_url: str, march_csv: Path
) -> None:
    (tmp_path / ".env").write_text(f"DATABASE_URL={db_url}\n", encoding="utf-8")

    try:
        imported = runner.invoke(app, ["import", str(march_csv), "--persist"])
        classified = runner.invoke(app, ["classify", "--account-id", "default"])
        missing = runner.invoke(app, ["apply-rule", "nope", "--dry-run"])
    finally:
        os.environ.pop("DATABASE_URL", None)

    assert imported.exit_code == 0
    assert classified.exit_code == 0
    assert missing.exit_code == 1
    assert len(fetch_transactions(db_url)) == 2

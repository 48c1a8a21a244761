from __future__ import annotations

import re
from datetime import UTC, date, datetime, timedelta
from pathlib import Path

import pytest

from bank_import.candidate import TransactionCandidate
from bank_import.persistence import (
    compute_fingerprint,
    insert_candidates,
    load_active_rules,
    load_rule,
    load_transactions,
    record_rule_matches,
    save_classifications,
    save_rule,
)
from bank_import.rules import ClassificationRule, RuleAction, RuleCondition, RuleEngine
from db.client import session_scope
from db.models.banking import BankTransaction
from tests.helpers.db import bootstrap_sqlite_db, fetch_rule, fetch_transactions, seed_rule

NOW = datetime(2024, 3, 10, 12, 0, tzinfo=UTC)


def _c(**overrides) -> TransactionCandidate:
    fields = {
        "booking_date": "2024-03-01",
        "value_date": "2024-03-01",
        "amount_cents": -4500,
        "counterpart_name": "Hans Müller",
        "counterpart_iban": "DE02 1203 0000 0000 2020 51",
        "purpose": "Miete März",
    }
    fields.update(overrides)
    return TransactionCandidate(**fields)


@pytest.fixture()
def db_url(tmp_path: Path) -> str:
    return bootstrap_sqlite_db(tmp_path / "bank.sqlite3")


# ---- Fingerprints ------------------------------------------------------------


def test_fingerprint_ignores_formatting_noise() -> None:
    base = compute_fingerprint("acc", _c())

    assert re.fullmatch(r"[0-9a-f]{64}", base)
    assert compute_fingerprint("acc", _c(counterpart_name="  HANS   müller ")) == base
    assert compute_fingerprint("acc", _c(counterpart_iban="de021203000000002020 51")) == base
    assert compute_fingerprint("acc", _c(value_date="2024-03-04", booking_text="SEPA")) == base


@pytest.mark.parametrize(
    "change",
    [
        {"amount_cents": -4501},
        {"booking_date": "2024-03-02", "value_date": "2024-03-02"},
        {"purpose": "Miete April"},
        {"counterpart_name": None},
    ],
)
def test_fingerprint_changes_with_identity_fields(change: dict) -> None:
    assert compute_fingerprint("acc", _c(**change)) != compute_fingerprint("acc", _c())


def test_fingerprint_is_scoped_to_account() -> None:
    assert compute_fingerprint("a", _c()) != compute_fingerprint("b", _c())


# ---- Inserts -----------------------------------------------------------------


def test_reimport_skips_known_transactions(db_url: str) -> None:
    batch = [_c(), _c(amount_cents=1000, purpose="Gutschrift")]

    with session_scope(database_url=db_url) as s:
        first = insert_candidates(s, "acc", batch, source_file="march.csv")
    with session_scope(database_url=db_url) as s:
        second = insert_candidates(s, "acc", batch + [_c(amount_cents=-1)])

    assert (first.inserted, first.duplicates) == (2, 0)
    assert (second.inserted, second.duplicates) == (1, 2)
    assert all(re.fullmatch(r"import_[0-9a-f]{24}", i) for i in first.ids)

    rows = fetch_transactions(db_url)
    assert len(rows) == 3
    stored = next(r for r in rows if r.id == first.ids[0])
    assert stored.source_file == "march.csv"
    assert stored.classification == "unclassified"
    assert stored.match_status == "unmatched"
    assert stored.currency_code == "EUR"


def test_duplicates_within_one_batch_collapse(db_url: str) -> None:
    with session_scope(database_url=db_url) as s:
        outcome = insert_candidates(s, "acc", [_c(), _c(booking_text="restated")])

    assert (outcome.inserted, outcome.duplicates) == (1, 1)
    assert len(fetch_transactions(db_url)) == 1


def test_row_stored_concurrently_counts_as_duplicate(
    db_url: str, monkeypatch: pytest.MonkeyPatch
) -> None:
    from bank_import import persistence

    rent, refund = _c(), _c(amount_cents=1000, purpose="Gutschrift")
    real_insert_for = persistence._insert_for

    def insert_after_other_writer(session):
        # Another import stores `rent` after the pre-select ran.
        session.add(
            BankTransaction(
                id="other-writer",
                account_id="acc",
                fingerprint_sha256=compute_fingerprint("acc", rent),
                booking_date=date(2024, 3, 1),
                amount_cents=-4500,
            )
        )
        session.flush()
        return real_insert_for(session)

    monkeypatch.setattr(persistence, "_insert_for", insert_after_other_writer)

    with session_scope(database_url=db_url) as s:
        outcome = insert_candidates(s, "acc", [rent, refund])

    assert (outcome.inserted, outcome.duplicates) == (1, 1)
    stored_ids = {r.id for r in fetch_transactions(db_url)}
    assert stored_ids == {"other-writer", *outcome.ids}
    assert outcome.ids == [persistence.transaction_id_for(compute_fingerprint("acc", refund))]


def test_same_booking_on_two_accounts_is_kept_twice(db_url: str) -> None:
    with session_scope(database_url=db_url) as s:
        insert_candidates(s, "a", [_c()])
        insert_candidates(s, "b", [_c()])

    assert len(fetch_transactions(db_url)) == 2


# ---- Rules -------------------------------------------------------------------


def test_load_active_rules_orders_and_filters(db_url: str) -> None:
    t0 = datetime(2024, 1, 1, tzinfo=UTC)
    cond = [{"field": "purpose", "operator": "contains", "value": "miete"}]
    seed_rule(db_url, rule_id="late", conditions=cond, action_type="ignore", created_at=t0 + timedelta(days=2))
    seed_rule(db_url, rule_id="early", conditions=cond, action_type="ignore", created_at=t0)
    seed_rule(db_url, rule_id="top", conditions=cond, action_type="ignore", priority=10, created_at=t0 + timedelta(days=5))
    seed_rule(db_url, rule_id="off", conditions=cond, action_type="ignore", is_active=False, created_at=t0)

    with session_scope(database_url=db_url) as s:
        rules = load_active_rules(s)

    assert [r.id for r in rules] == ["top", "early", "late"]
    assert rules[0].conditions == [RuleCondition(field="purpose", operator="contains", value="miete")]


def test_save_and_load_rule_round_trip(db_url: str) -> None:
    rule = ClassificationRule(
        id="r1",
        name="Miete Müller",
        conditions=[RuleCondition(field="counterpart_name", operator="contains", value="Müller")],
        action=RuleAction(kind="assign_tenant", tenant_id="T123", lease_id="L1"),
        priority=3,
    )

    with session_scope(database_url=db_url) as s:
        save_rule(s, rule, description="created from manual match")
    with session_scope(database_url=db_url) as s:
        loaded = load_rule(s, "r1")
        missing = load_rule(s, "nope")

    assert missing is None
    assert loaded is not None
    assert loaded.action == rule.action
    assert loaded.conditions == rule.conditions
    assert loaded.priority == 3
    stored = fetch_rule(db_url, "r1")
    assert stored is not None
    assert stored.action_config == {"tenant_id": "T123", "lease_id": "L1"}
    assert stored.description == "created from manual match"


def test_record_rule_matches_increments_in_sql(db_url: str) -> None:
    seed_rule(
        db_url,
        rule_id="r1",
        conditions=[{"field": "purpose", "operator": "contains", "value": "x"}],
        action_type="book_as",
        action_config={"type": "utility"},
    )

    with session_scope(database_url=db_url) as s:
        record_rule_matches(s, "r1", 2, NOW)
    with session_scope(database_url=db_url) as s:
        record_rule_matches(s, "r1", 3, NOW)
        record_rule_matches(s, "r1", 0, NOW)

    stored = fetch_rule(db_url, "r1")
    assert stored is not None
    assert stored.match_count == 5
    assert stored.last_match_at is not None


def test_malformed_stored_rule_raises(db_url: str) -> None:
    from pydantic import ValidationError

    seed_rule(
        db_url,
        rule_id="bad",
        conditions=[{"field": "amount", "operator": "equals", "value": "1"}],
        action_type="ignore",
    )

    with session_scope(database_url=db_url) as s, pytest.raises(ValidationError):
        load_active_rules(s)


# ---- Classification write-back -----------------------------------------------


def test_classification_round_trip(db_url: str) -> None:
    with session_scope(database_url=db_url) as s:
        ids = insert_candidates(
            s,
            "acc",
            [_c(), _c(booking_date="2024-03-05", value_date="2024-03-05", purpose="Strom")],
        ).ids

    rule = ClassificationRule(
        id="r1",
        name="Müller",
        conditions=[RuleCondition(field="purpose", operator="contains", value="miete")],
        action=RuleAction(kind="assign_tenant", tenant_id="T123"),
    )
    with session_scope(database_url=db_url) as s:
        txs = load_transactions(s, account_id="acc", only_unclassified=True)
        assert [t.booking_date for t in txs] == ["2024-03-05", "2024-03-01"]
        report = RuleEngine([rule], clock=lambda: NOW).classify(txs)
        touched = save_classifications(s, [t for t in txs if not t.is_unclassified])

    assert report.matches == [(ids[0], "r1")]
    assert touched == 1

    with session_scope(database_url=db_url) as s:
        (matched,) = load_transactions(s, ids=[ids[0]])
        remaining = load_transactions(s, only_unclassified=True)

    assert matched.classification == "rule:r1"
    assert matched.match_status == "auto"
    assert matched.tenant_id == "T123"
    assert matched.transaction_type == "rent"
    assert matched.match_confidence == pytest.approx(0.95)
    assert [t.id for t in remaining] == [ids[1]]

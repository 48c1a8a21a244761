# ruff: noqa: I001
"""Persistence integration for bank_import.

Functions here read and write the shared database owned by ``libs/db``
through the ORM models in ``db.models.banking``. Callers own the session
(see :func:`db.client.session_scope`); nothing here commits.

Scope:
- Insert imported candidates into ``bank_transactions`` with content-derived
  dedup (``fingerprint_sha256``).
- Read the active rule set and stored transactions for the rule engine.
- Write classification results and rule audit counters back.
"""

from __future__ import annotations

import hashlib
import json
from collections.abc import Collection, Iterable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from db.models.banking import BankTransaction, TransactionRule
from .candidate import TransactionCandidate
from .logging_setup import get_logger
from .rules import BookedTransaction, ClassificationRule, RuleAction, RuleCondition

_logger = get_logger("bank_import.persistence")

ID_PREFIX = "import_"
ID_FINGERPRINT_CHARS = 24
# Rows per INSERT statement; keeps bound parameters under SQLite's limit.
INSERT_CHUNK = 500


def _norm_text(v: str | None) -> str | None:
    if v is None:
        return None
    s = " ".join(v.split()).casefold()
    return s or None


def compute_fingerprint(account_id: str, candidate: TransactionCandidate) -> str:
    """Stable SHA-256 over the fields that identify a booking.

    Fields used: account (trimmed), booking_date, amount_cents, and
    counterpart name/IBAN and purpose (whitespace-collapsed, case-folded).
    Value date and booking text are excluded; banks restate them between
    exports of the same booking.
    """

    iban = candidate.counterpart_iban.replace(" ", "").upper() if candidate.counterpart_iban else None
    payload = {
        "account": (account_id or "").strip(),
        "booking_date": candidate.booking_date,
        "amount_cents": candidate.amount_cents,
        "counterpart_name": _norm_text(candidate.counterpart_name),
        "counterpart_iban": iban or None,
        "purpose": _norm_text(candidate.purpose),
    }
    data = json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(data.encode("utf-8")).hexdigest()


def transaction_id_for(fingerprint: str) -> str:
    return f"{ID_PREFIX}{fingerprint[:ID_FINGERPRINT_CHARS]}"


@dataclass(slots=True)
class InsertOutcome:
    ids: list[str] = field(default_factory=list)
    duplicates: int = 0

    @property
    def inserted(self) -> int:
        return len(self.ids)


def _insert_for(session: Session):
    bind = session.get_bind()
    if bind.dialect.name == "postgresql":
        return pg_insert
    if bind.dialect.name == "sqlite":
        return sqlite_insert
    raise RuntimeError(f"unsupported database dialect: {bind.dialect.name}")


def insert_candidates(
    session: Session,
    account_id: str,
    candidates: Iterable[TransactionCandidate],
    *,
    source_file: str | None = None,
) -> InsertOutcome:
    """Insert candidates, skipping any whose fingerprint is already stored.

    Duplicates inside the batch collapse onto the first occurrence. Returns
    the ids of newly inserted rows (input order) and the duplicate count.
    """

    outcome = InsertOutcome()
    payloads: dict[str, dict[str, Any]] = {}
    for c in candidates:
        fp = compute_fingerprint(account_id, c)
        if fp in payloads:
            outcome.duplicates += 1
            continue
        payloads[fp] = {
            "id": transaction_id_for(fp),
            "account_id": account_id,
            "fingerprint_sha256": fp,
            "booking_date": date.fromisoformat(c.booking_date),
            "value_date": date.fromisoformat(c.value_date),
            "amount_cents": c.amount_cents,
            "counterpart_name": c.counterpart_name,
            "counterpart_iban": c.counterpart_iban,
            "purpose": c.purpose,
            "booking_text": c.booking_text,
            "source_file": source_file,
            "classification": "unclassified",
            "match_status": "unmatched",
        }
    if not payloads:
        return outcome

    existing = set(
        session.scalars(
            select(BankTransaction.fingerprint_sha256).where(
                BankTransaction.fingerprint_sha256.in_(list(payloads))
            )
        )
    )
    fresh = [p for fp, p in payloads.items() if fp not in existing]
    outcome.duplicates += len(existing)
    insert = _insert_for(session)
    for start in range(0, len(fresh), INSERT_CHUNK):
        chunk = fresh[start : start + INSERT_CHUNK]
        stmt = insert(BankTransaction).values(chunk)
        stmt = stmt.on_conflict_do_nothing(index_elements=[BankTransaction.fingerprint_sha256])
        # Rows stored by a concurrent import since the pre-select are not returned.
        stored = set(session.scalars(stmt.returning(BankTransaction.id)))
        outcome.ids.extend(p["id"] for p in chunk if p["id"] in stored)
        outcome.duplicates += len(chunk) - len(stored)

    _logger.info(
        "persistence:insert_done account=%s inserted=%d duplicates=%d",
        account_id,
        outcome.inserted,
        outcome.duplicates,
    )
    return outcome


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------


def _rule_from_row(row: TransactionRule) -> ClassificationRule:
    return ClassificationRule(
        id=row.id,
        name=row.name,
        conditions=[RuleCondition.model_validate(c) for c in row.conditions or []],
        action=RuleAction.from_storage(row.action_type, row.action_config),
        is_active=row.is_active,
        priority=row.priority,
        created_at=row.created_at,
        match_count=row.match_count,
        last_match_at=row.last_match_at,
    )


def load_active_rules(session: Session) -> list[ClassificationRule]:
    """Active rules in evaluation order: priority desc, then oldest first.

    A stored rule with malformed conditions or action raises
    ``pydantic.ValidationError``.
    """

    rows = session.scalars(
        select(TransactionRule)
        .where(TransactionRule.is_active.is_(True))
        .order_by(TransactionRule.priority.desc(), TransactionRule.created_at.asc())
    )
    return [_rule_from_row(r) for r in rows]


def load_rule(session: Session, rule_id: str) -> ClassificationRule | None:
    row = session.get(TransactionRule, rule_id)
    return _rule_from_row(row) if row is not None else None


def save_rule(session: Session, rule: ClassificationRule, *, description: str | None = None) -> None:
    """Insert or replace a rule definition (counters included)."""

    action_type, action_config = rule.action.to_storage()
    now = datetime.now(UTC)
    session.merge(
        TransactionRule(
            id=rule.id,
            name=rule.name,
            description=description,
            conditions=[c.model_dump() for c in rule.conditions],
            action_type=action_type,
            action_config=action_config,
            is_active=rule.is_active,
            priority=rule.priority,
            match_count=rule.match_count,
            last_match_at=rule.last_match_at,
            created_at=rule.created_at or now,
            updated_at=now,
        )
    )
    session.flush()


def record_rule_matches(session: Session, rule_id: str, count: int, at: datetime) -> None:
    """Add ``count`` to a rule's ``match_count`` in one UPDATE.

    The increment happens in SQL, so two passes that both read the old value
    still add up correctly.
    """

    if count <= 0:
        return
    session.execute(
        update(TransactionRule)
        .where(TransactionRule.id == rule_id)
        .values(
            match_count=TransactionRule.match_count + count,
            last_match_at=at,
            updated_at=at,
        )
    )


# ---------------------------------------------------------------------------
# Transactions
# ---------------------------------------------------------------------------


def _booked_from_row(row: BankTransaction) -> BookedTransaction:
    return BookedTransaction(
        id=row.id,
        booking_date=row.booking_date.isoformat(),
        value_date=row.value_date.isoformat() if row.value_date else None,
        amount_cents=row.amount_cents,
        counterpart_name=row.counterpart_name,
        counterpart_iban=row.counterpart_iban,
        purpose=row.purpose,
        booking_text=row.booking_text,
        classification=row.classification,
        match_status=row.match_status,  # type: ignore[arg-type]
        tenant_id=row.matched_tenant_id,
        lease_id=row.matched_lease_id,
        transaction_type=row.transaction_type,
        match_confidence=float(row.match_confidence) if row.match_confidence is not None else None,
        matched_at=row.matched_at,
    )


def load_transactions(
    session: Session,
    *,
    account_id: str | None = None,
    only_unclassified: bool = False,
    ids: Collection[str] | None = None,
) -> list[BookedTransaction]:
    """Stored transactions, newest booking first."""

    stmt = select(BankTransaction)
    if account_id is not None:
        stmt = stmt.where(BankTransaction.account_id == account_id)
    if only_unclassified:
        stmt = stmt.where(BankTransaction.classification == "unclassified")
    if ids is not None:
        stmt = stmt.where(BankTransaction.id.in_(list(ids)))
    stmt = stmt.order_by(BankTransaction.booking_date.desc(), BankTransaction.id)
    return [_booked_from_row(r) for r in session.scalars(stmt)]


def save_classifications(session: Session, transactions: Sequence[BookedTransaction]) -> int:
    """Write classification fields for each transaction; returns rows touched."""

    n = 0
    for tx in transactions:
        confidence = (
            Decimal(str(tx.match_confidence)) if tx.match_confidence is not None else None
        )
        result = session.execute(
            update(BankTransaction)
            .where(BankTransaction.id == tx.id)
            .values(
                classification=tx.classification,
                match_status=tx.match_status,
                matched_tenant_id=tx.tenant_id,
                matched_lease_id=tx.lease_id,
                transaction_type=tx.transaction_type,
                match_confidence=confidence,
                matched_at=tx.matched_at,
            )
        )
        n += result.rowcount or 0
    return n


__all__ = [
    "InsertOutcome",
    "compute_fingerprint",
    "insert_candidates",
    "load_active_rules",
    "load_rule",
    "load_transactions",
    "record_rule_matches",
    "save_classifications",
    "save_rule",
    "transaction_id_for",
]

"""Classification rules and the first-match-wins rule engine.

A rule is an AND of conditions over canonical transaction fields plus one
action (assign a tenant, book as a category, or ignore). Active rules are
evaluated in a fixed order: ``priority`` descending, then ``created_at``
ascending, then the order they were given in. The first rule whose
conditions all hold is applied; later rules are not consulted.

Every transaction carries a provenance tag in ``classification``:
``unclassified``, ``rule:<id>`` or ``manual``. Forward classification and
backfill only touch ``unclassified`` transactions unless ``force=True``, so
re-running a pass never overwrites a manual or different-rule decision by
accident. ``match_count``/``last_match_at`` on a rule are audit counters and
never influence selection.
"""

from __future__ import annotations

from collections.abc import Callable, Collection, Iterable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, field_validator, model_validator

from .candidate import TransactionCandidate
from .logging_setup import get_logger

_logger = get_logger("bank_import.rules")

RULE_CONFIDENCE = 0.95
MANUAL_CONFIDENCE = 1.0
UNCLASSIFIED = "unclassified"
MANUAL = "manual"
DEFAULT_TENANT_TYPE = "rent"
DEFAULT_BOOKING_TYPE = "other"

type RuleField = Literal[
    "booking_date",
    "value_date",
    "amount_cents",
    "counterpart_name",
    "counterpart_iban",
    "purpose",
    "booking_text",
]
type Operator = Literal["equals", "contains", "starts_with"]
type ActionKind = Literal["assign_tenant", "book_as", "ignore"]
type MatchStatus = Literal["unmatched", "auto", "manual", "ignored"]


def _utcnow() -> datetime:
    return datetime.now(UTC)


def rule_provenance(rule_id: str) -> str:
    return f"rule:{rule_id}"


# ---------------------------------------------------------------------------
# Rule configuration
# ---------------------------------------------------------------------------


class RuleCondition(BaseModel):
    """One ``{field, operator, value}`` test against a transaction."""

    model_config = ConfigDict(extra="forbid", frozen=True, str_strip_whitespace=True)

    field: RuleField
    operator: Operator
    value: str | int

    @field_validator("value")
    @classmethod
    def _non_empty(cls, v: str | int) -> str | int:
        if isinstance(v, str) and not v:
            raise ValueError("condition value must be non-empty")
        return v

    def matches(self, tx: BookedTransaction) -> bool:
        actual = getattr(tx, self.field, None)
        if actual is None or actual == "":
            return False

        if self.field == "amount_cents" and self.operator == "equals":
            try:
                return int(self.value) == int(actual)
            except (TypeError, ValueError):
                return False

        have = str(actual).casefold()
        want = str(self.value).casefold()
        if self.operator == "equals":
            return have == want
        if self.operator == "contains":
            return want in have
        return have.startswith(want)


class RuleAction(BaseModel):
    """The single effect of a matching rule.

    ``category`` is the transaction type to book; for ``assign_tenant`` it
    defaults to ``rent`` and for ``book_as`` to ``other``.
    """

    model_config = ConfigDict(extra="forbid", frozen=True, str_strip_whitespace=True)

    kind: ActionKind
    tenant_id: str | None = None
    lease_id: str | None = None
    category: str | None = None

    @model_validator(mode="after")
    def _tenant_required(self) -> RuleAction:
        if self.kind == "assign_tenant" and not self.tenant_id:
            raise ValueError("assign_tenant requires a tenant_id")
        return self

    @property
    def transaction_type(self) -> str | None:
        if self.kind == "assign_tenant":
            return self.category or DEFAULT_TENANT_TYPE
        if self.kind == "book_as":
            return self.category or DEFAULT_BOOKING_TYPE
        return None

    @classmethod
    def from_storage(cls, action_type: str, action_config: dict[str, Any] | None) -> RuleAction:
        """Build from the persisted ``action_type`` + ``action_config`` JSON."""

        config = action_config or {}
        return cls(
            kind=action_type,  # type: ignore[arg-type]
            tenant_id=config.get("tenant_id") or None,
            lease_id=config.get("lease_id") or None,
            category=config.get("type") or config.get("category") or None,
        )

    def to_storage(self) -> tuple[str, dict[str, Any]]:
        config: dict[str, Any] = {}
        if self.tenant_id:
            config["tenant_id"] = self.tenant_id
        if self.lease_id:
            config["lease_id"] = self.lease_id
        if self.category:
            config["type"] = self.category
        return self.kind, config


class ClassificationRule(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str
    name: str
    conditions: list[RuleCondition]
    action: RuleAction
    is_active: bool = True
    priority: int = 0
    created_at: datetime | None = None
    match_count: int = 0
    last_match_at: datetime | None = None

    @field_validator("conditions")
    @classmethod
    def _at_least_one(cls, v: list[RuleCondition]) -> list[RuleCondition]:
        if not v:
            raise ValueError("a rule needs at least one condition")
        return v

    def matches(self, tx: BookedTransaction) -> bool:
        return all(c.matches(tx) for c in self.conditions)


# ---------------------------------------------------------------------------
# Transactions as seen by the engine
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class BookedTransaction:
    """A stored transaction plus its classification state (mutated in place)."""

    id: str
    booking_date: str
    amount_cents: int
    value_date: str | None = None
    counterpart_name: str | None = None
    counterpart_iban: str | None = None
    purpose: str | None = None
    booking_text: str | None = None
    classification: str = UNCLASSIFIED
    match_status: MatchStatus = "unmatched"
    tenant_id: str | None = None
    lease_id: str | None = None
    transaction_type: str | None = None
    match_confidence: float | None = None
    matched_at: datetime | None = None

    @classmethod
    def from_candidate(cls, tx_id: str, candidate: TransactionCandidate) -> BookedTransaction:
        return cls(
            id=tx_id,
            booking_date=candidate.booking_date,
            value_date=candidate.value_date,
            amount_cents=candidate.amount_cents,
            counterpart_name=candidate.counterpart_name,
            counterpart_iban=candidate.counterpart_iban,
            purpose=candidate.purpose,
            booking_text=candidate.booking_text,
        )

    @property
    def is_unclassified(self) -> bool:
        return self.classification == UNCLASSIFIED


@dataclass(frozen=True, slots=True)
class RuleMatch:
    rule: ClassificationRule

    @property
    def action(self) -> RuleAction:
        return self.rule.action


@dataclass(slots=True)
class ClassificationReport:
    evaluated: int = 0
    skipped: int = 0
    matches: list[tuple[str, str]] = field(default_factory=list)
    """``(transaction_id, rule_id)`` pairs, in input order."""

    def per_rule(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for _, rule_id in self.matches:
            counts[rule_id] = counts.get(rule_id, 0) + 1
        return counts


@dataclass(slots=True)
class BackfillReport:
    rule_id: str
    dry_run: bool = False
    evaluated: int = 0
    skipped: int = 0
    matched_ids: list[str] = field(default_factory=list)

    @property
    def applied(self) -> int:
        return 0 if self.dry_run else len(self.matched_ids)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


def _order_key(indexed: tuple[int, ClassificationRule]) -> tuple[int, int, float, int]:
    pos, rule = indexed
    created = rule.created_at
    # Rules without a creation time sort after timestamped ones of equal priority.
    return (
        -rule.priority,
        1 if created is None else 0,
        created.timestamp() if created is not None else 0.0,
        pos,
    )


class RuleEngine:
    """Evaluate and apply an ordered set of rules.

    The engine holds no state beyond the rule list; it mutates only the rule
    and transaction objects handed to it.
    """

    def __init__(
        self,
        rules: Iterable[ClassificationRule],
        *,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        active = [(i, r) for i, r in enumerate(rules) if r.is_active]
        self._rules: list[ClassificationRule] = [r for _, r in sorted(active, key=_order_key)]
        self._clock = clock

    @property
    def rules(self) -> Sequence[ClassificationRule]:
        return tuple(self._rules)

    def evaluate(self, tx: BookedTransaction) -> RuleMatch | None:
        for rule in self._rules:
            if rule.matches(tx):
                return RuleMatch(rule=rule)
        return None

    def apply(self, tx: BookedTransaction, match: RuleMatch) -> None:
        now = self._clock()
        action = match.action
        if action.kind == "assign_tenant":
            tx.tenant_id = action.tenant_id
            tx.lease_id = action.lease_id
            tx.transaction_type = action.transaction_type
            tx.match_status = "auto"
        elif action.kind == "book_as":
            tx.transaction_type = action.transaction_type
            tx.match_status = "auto"
        else:
            tx.match_status = "ignored"
        tx.classification = rule_provenance(match.rule.id)
        tx.match_confidence = RULE_CONFIDENCE
        tx.matched_at = now

        match.rule.match_count += 1
        match.rule.last_match_at = now

    def classify(
        self, transactions: Iterable[BookedTransaction], *, force: bool = False
    ) -> ClassificationReport:
        """Forward pass: classify transactions that are still unclassified."""

        report = ClassificationReport()
        for tx in transactions:
            if not force and not tx.is_unclassified:
                report.skipped += 1
                continue
            report.evaluated += 1
            match = self.evaluate(tx)
            if match is None:
                continue
            self.apply(tx, match)
            report.matches.append((tx.id, match.rule.id))
        _logger.info(
            "rules:classify_done evaluated=%d matched=%d skipped=%d",
            report.evaluated,
            len(report.matches),
            report.skipped,
        )
        return report

    def backfill(
        self,
        rule: ClassificationRule,
        transactions: Iterable[BookedTransaction],
        *,
        force: bool = False,
        only_ids: Collection[str] | None = None,
        dry_run: bool = False,
    ) -> BackfillReport:
        """Apply one rule retroactively.

        Transactions classified by anything other than ``unclassified`` are
        skipped unless ``force`` is set; a transaction already carrying this
        rule's provenance is always skipped, so repeating a backfill is a
        no-op. ``dry_run`` reports the matches without touching anything.
        """

        report = BackfillReport(rule_id=rule.id, dry_run=dry_run)
        if not rule.is_active:
            _logger.info("rules:backfill_inactive rule_id=%s", rule.id)
            return report

        own = rule_provenance(rule.id)
        match = RuleMatch(rule=rule)
        for tx in transactions:
            if only_ids is not None and tx.id not in only_ids:
                continue
            if tx.classification == own or (not force and not tx.is_unclassified):
                report.skipped += 1
                continue
            report.evaluated += 1
            if not rule.matches(tx):
                continue
            report.matched_ids.append(tx.id)
            if not dry_run:
                self.apply(tx, match)

        _logger.info(
            "rules:backfill_done rule_id=%s matched=%d skipped=%d dry_run=%s",
            rule.id,
            len(report.matched_ids),
            report.skipped,
            dry_run,
        )
        return report


# ---------------------------------------------------------------------------
# Manual matching
# ---------------------------------------------------------------------------


def manual_match(
    transactions: Iterable[BookedTransaction],
    *,
    tenant_id: str | None = None,
    lease_id: str | None = None,
    transaction_type: str | None = None,
    now: datetime | None = None,
) -> int:
    """Record a user's assignment on each transaction; returns how many changed."""

    at = now or _utcnow()
    n = 0
    for tx in transactions:
        tx.classification = MANUAL
        tx.match_status = "manual"
        tx.match_confidence = MANUAL_CONFIDENCE
        tx.matched_at = at
        if tenant_id:
            tx.tenant_id = tenant_id
            tx.lease_id = lease_id
        if transaction_type:
            tx.transaction_type = transaction_type
        n += 1
    return n


def rule_from_manual_match(
    conditions: Sequence[RuleCondition],
    *,
    rule_id: str,
    tenant_id: str | None = None,
    lease_id: str | None = None,
    transaction_type: str | None = None,
    matched: int = 0,
    now: datetime | None = None,
) -> ClassificationRule:
    """Turn a manual assignment into a reusable rule.

    The rule is named after its condition values (``"Regel: A + B"``) and
    starts with ``match_count`` equal to the number of transactions the
    manual match covered.
    """

    if tenant_id:
        action = RuleAction(
            kind="assign_tenant", tenant_id=tenant_id, lease_id=lease_id, category=transaction_type
        )
    elif transaction_type:
        action = RuleAction(kind="book_as", category=transaction_type)
    else:
        raise ValueError("manual match needs a tenant_id or a transaction_type to become a rule")

    at = now or _utcnow()
    return ClassificationRule(
        id=rule_id,
        name="Regel: " + " + ".join(str(c.value) for c in conditions),
        conditions=list(conditions),
        action=action,
        created_at=at,
        match_count=matched,
        last_match_at=at if matched else None,
    )


__all__ = [
    "BackfillReport",
    "BookedTransaction",
    "ClassificationReport",
    "ClassificationRule",
    "MANUAL",
    "RULE_CONFIDENCE",
    "RuleAction",
    "RuleCondition",
    "RuleEngine",
    "RuleMatch",
    "UNCLASSIFIED",
    "manual_match",
    "rule_from_manual_match",
    "rule_provenance",
]

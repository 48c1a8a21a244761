from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    CHAR,
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


# ---------------------------
# Core: bank_transactions
# ---------------------------


class BankTransaction(Base):
    __tablename__ = "bank_transactions"

    # Synthesized as ``import_<fingerprint prefix>`` by the importer.
    id: Mapped[str] = mapped_column(String, primary_key=True)
    account_id: Mapped[str] = mapped_column(String, nullable=False)
    fingerprint_sha256: Mapped[str] = mapped_column(CHAR(64), nullable=False)
    booking_date: Mapped[date] = mapped_column(Date, nullable=False)
    value_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    amount_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)
    currency_code: Mapped[str] = mapped_column(
        CHAR(3), nullable=False, server_default=text("'EUR'")
    )
    counterpart_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    counterpart_iban: Mapped[str | None] = mapped_column(String, nullable=True)
    purpose: Mapped[str | None] = mapped_column(Text, nullable=True)
    booking_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    source_file: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Provenance of the current classification: 'unclassified', 'rule:<id>' or 'manual'.
    classification: Mapped[str] = mapped_column(
        String, nullable=False, server_default=text("'unclassified'")
    )
    match_status: Mapped[str] = mapped_column(
        String, nullable=False, server_default=text("'unmatched'")
    )
    matched_tenant_id: Mapped[str | None] = mapped_column(String, nullable=True)
    matched_lease_id: Mapped[str | None] = mapped_column(String, nullable=True)
    transaction_type: Mapped[str | None] = mapped_column(String, nullable=True)
    match_confidence: Mapped[Decimal | None] = mapped_column(Numeric(3, 2), nullable=True)
    matched_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint("fingerprint_sha256", name="uq_bank_tx_fingerprint"),
        CheckConstraint(
            "match_status in ('unmatched','auto','manual','ignored')",
            name="ck_bank_tx_match_status",
        ),
        CheckConstraint(
            "match_confidence IS NULL OR (match_confidence >= 0 AND match_confidence <= 1)",
            name="ck_bank_tx_match_confidence",
        ),
        CheckConstraint("amount_cents <> 0", name="ck_bank_tx_amount_nonzero"),
        Index("ix_bank_tx_account_classification", "account_id", "classification"),
    )


# ---------------------------
# Config: transaction_rules
# ---------------------------


class TransactionRule(Base):
    __tablename__ = "transaction_rules"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    # List of {"field", "operator", "value"} objects, AND-combined.
    conditions: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False)
    action_type: Mapped[str] = mapped_column(String, nullable=False)
    action_config: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default=text("true"))
    priority: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("0"))
    match_count: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("0"))
    last_match_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (
        CheckConstraint(
            "action_type in ('assign_tenant','book_as','ignore')",
            name="ck_tx_rules_action_type",
        ),
        Index("ix_tx_rules_active_priority", "is_active", "priority"),
    )


__all__ = [
    "Base",
    "BankTransaction",
    "TransactionRule",
]

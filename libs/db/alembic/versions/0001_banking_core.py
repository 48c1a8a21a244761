# ruff: noqa: I001
"""Bank transactions and classification rules.

Revision ID: 0001_banking_core
Revises: None
Create Date: 2024-03-01
"""

from __future__ import annotations  # ruff: noqa: I001

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op


# revision identifiers, used by Alembic.
revision: str = "0001_banking_core"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # bank_transactions
    op.create_table(
        "bank_transactions",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("account_id", sa.String(), nullable=False),
        sa.Column("fingerprint_sha256", sa.CHAR(64), nullable=False),
        sa.Column("booking_date", sa.Date(), nullable=False),
        sa.Column("value_date", sa.Date(), nullable=True),
        sa.Column("amount_cents", sa.BigInteger(), nullable=False),
        sa.Column(
            "currency_code",
            sa.CHAR(3),
            nullable=False,
            server_default=sa.text("'EUR'"),
        ),
        sa.Column("counterpart_name", sa.Text(), nullable=True),
        sa.Column("counterpart_iban", sa.String(), nullable=True),
        sa.Column("purpose", sa.Text(), nullable=True),
        sa.Column("booking_text", sa.Text(), nullable=True),
        sa.Column("source_file", sa.Text(), nullable=True),
        sa.Column(
            "classification",
            sa.String(),
            nullable=False,
            server_default=sa.text("'unclassified'"),
        ),
        sa.Column(
            "match_status",
            sa.String(),
            nullable=False,
            server_default=sa.text("'unmatched'"),
        ),
        sa.Column("matched_tenant_id", sa.String(), nullable=True),
        sa.Column("matched_lease_id", sa.String(), nullable=True),
        sa.Column("transaction_type", sa.String(), nullable=True),
        sa.Column("match_confidence", sa.Numeric(3, 2), nullable=True),
        sa.Column("matched_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.UniqueConstraint("fingerprint_sha256", name="uq_bank_tx_fingerprint"),
        sa.CheckConstraint(
            "match_status in ('unmatched','auto','manual','ignored')",
            name="ck_bank_tx_match_status",
        ),
        sa.CheckConstraint(
            "match_confidence IS NULL OR (match_confidence >= 0 AND match_confidence <= 1)",
            name="ck_bank_tx_match_confidence",
        ),
        sa.CheckConstraint("amount_cents <> 0", name="ck_bank_tx_amount_nonzero"),
    )
    op.create_index(
        "ix_bank_tx_account_classification",
        "bank_transactions",
        ["account_id", "classification"],
        unique=False,
    )

    # transaction_rules
    op.create_table(
        "transaction_rules",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("conditions", sa.JSON(), nullable=False),
        sa.Column("action_type", sa.String(), nullable=False),
        sa.Column("action_config", sa.JSON(), nullable=False),
        sa.Column(
            "is_active",
            sa.Boolean(),
            nullable=False,
            server_default=sa.text("true"),
        ),
        sa.Column("priority", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("match_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("last_match_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.CheckConstraint(
            "action_type in ('assign_tenant','book_as','ignore')",
            name="ck_tx_rules_action_type",
        ),
    )
    op.create_index(
        "ix_tx_rules_active_priority",
        "transaction_rules",
        ["is_active", "priority"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("ix_tx_rules_active_priority", table_name="transaction_rules")
    op.drop_table("transaction_rules")
    op.drop_index("ix_bank_tx_account_classification", table_name="bank_transactions")
    op.drop_table("bank_transactions")

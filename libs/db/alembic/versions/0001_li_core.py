# ruff: noqa: I001
"""Ledger core tables: accounts, categories, transactions, patterns, suggestions.

Revision ID: 0001_li_core
Revises: None
Create Date: 2026-10-18
"""

from __future__ import annotations  # ruff: noqa: I001

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op


# revision identifiers, used by Alembic.
revision: str = "0001_li_core"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

_TX_TYPES = "('income','expense','transfer','investment','redemption')"


def _created_at() -> sa.Column:
    return sa.Column(
        "created_at",
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=sa.text("now()"),
    )


def _updated_at() -> sa.Column:
    return sa.Column(
        "updated_at",
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=sa.text("now()"),
    )


def upgrade() -> None:
    # li_accounts
    op.create_table(
        "li_accounts",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("organization_id", sa.Text(), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("status", sa.Text(), nullable=False, server_default=sa.text("'active'")),
        sa.Column("is_default", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        _created_at(),
        sa.CheckConstraint("status in ('active','inactive')", name="ck_li_accounts_status"),
    )
    op.create_index("ix_li_accounts_organization_id", "li_accounts", ["organization_id"])

    # li_account_links
    op.create_table(
        "li_account_links",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("organization_id", sa.Text(), nullable=False),
        sa.Column("external_ref", sa.Text(), nullable=False),
        sa.Column("provider", sa.Text(), nullable=True),
        sa.Column(
            "local_account_id",
            sa.BigInteger(),
            sa.ForeignKey("li_accounts.id", ondelete="CASCADE"),
            nullable=False,
        ),
        _created_at(),
        sa.UniqueConstraint(
            "organization_id", "external_ref", name="uq_li_account_links_org_ref"
        ),
    )

    # li_categories / li_cost_centers
    op.create_table(
        "li_categories",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("organization_id", sa.Text(), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("type", sa.Text(), nullable=False),
        _created_at(),
        sa.UniqueConstraint(
            "organization_id", "name", "type", name="uq_li_categories_org_name"
        ),
        sa.CheckConstraint(f"type in {_TX_TYPES}", name="ck_li_categories_type"),
    )
    op.create_index("ix_li_categories_organization_id", "li_categories", ["organization_id"])

    op.create_table(
        "li_cost_centers",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("organization_id", sa.Text(), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        _created_at(),
        sa.UniqueConstraint("organization_id", "name", name="uq_li_cost_centers_org_name"),
    )
    op.create_index(
        "ix_li_cost_centers_organization_id", "li_cost_centers", ["organization_id"]
    )

    # li_import_batches
    op.create_table(
        "li_import_batches",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("organization_id", sa.Text(), nullable=False),
        sa.Column("account_id", sa.BigInteger(), sa.ForeignKey("li_accounts.id"), nullable=False),
        sa.Column("file_type", sa.Text(), nullable=False),
        sa.Column("status", sa.Text(), nullable=False, server_default=sa.text("'processing'")),
        sa.Column("total_transactions", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("imported_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("duplicate_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("error_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("classified_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("period_start", sa.Date(), nullable=True),
        sa.Column("period_end", sa.Date(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        _created_at(),
        sa.CheckConstraint("file_type in ('ofx','csv')", name="ck_li_import_batches_file_type"),
        sa.CheckConstraint(
            "status in ('processing','awaiting_validation','failed')",
            name="ck_li_import_batches_status",
        ),
    )
    op.create_index(
        "ix_li_import_batches_organization_id", "li_import_batches", ["organization_id"]
    )

    # li_transactions
    op.create_table(
        "li_transactions",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("organization_id", sa.Text(), nullable=False),
        sa.Column("account_id", sa.BigInteger(), sa.ForeignKey("li_accounts.id"), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("normalized_description", sa.Text(), nullable=False),
        sa.Column("amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("type", sa.Text(), nullable=False),
        sa.Column("external_id", sa.Text(), nullable=True),
        sa.Column("transaction_hash", sa.CHAR(64), nullable=False),
        sa.Column(
            "category_id",
            sa.BigInteger(),
            sa.ForeignKey("li_categories.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column(
            "cost_center_id",
            sa.BigInteger(),
            sa.ForeignKey("li_cost_centers.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column(
            "classification_source",
            sa.Text(),
            nullable=False,
            server_default=sa.text("'none'"),
        ),
        sa.Column(
            "validation_status",
            sa.Text(),
            nullable=False,
            server_default=sa.text("'pending_validation'"),
        ),
        sa.Column("validated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "source", sa.Text(), nullable=False, server_default=sa.text("'open_finance'")
        ),
        sa.Column(
            "import_batch_id",
            sa.BigInteger(),
            sa.ForeignKey("li_import_batches.id", ondelete="SET NULL"),
            nullable=True,
        ),
        _created_at(),
        _updated_at(),
        sa.UniqueConstraint("organization_id", "transaction_hash", name="uq_li_tx_org_hash"),
        sa.CheckConstraint("amount >= 0", name="ck_li_tx_amount_magnitude"),
        sa.CheckConstraint(f"type in {_TX_TYPES}", name="ck_li_tx_type"),
        sa.CheckConstraint(
            "classification_source in ('none','pattern','ai','manual','open_finance')",
            name="ck_li_tx_classification_source",
        ),
        sa.CheckConstraint(
            "validation_status in ('pending_validation','validated')",
            name="ck_li_tx_validation_status",
        ),
        sa.CheckConstraint(
            "source in ('open_finance','webhook','file_import','manual')",
            name="ck_li_tx_source",
        ),
    )
    op.create_index(
        "uq_li_tx_org_external_id",
        "li_transactions",
        ["organization_id", "external_id"],
        unique=True,
        postgresql_where=sa.text("external_id IS NOT NULL"),
    )
    op.create_index(
        "ix_li_tx_org_description", "li_transactions", ["organization_id", "description"]
    )
    op.create_index(
        "ix_li_tx_org_validation", "li_transactions", ["organization_id", "validation_status"]
    )

    # li_patterns
    op.create_table(
        "li_patterns",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("organization_id", sa.Text(), nullable=False),
        sa.Column("normalized_description", sa.Text(), nullable=False),
        sa.Column(
            "category_id",
            sa.BigInteger(),
            sa.ForeignKey("li_categories.id", ondelete="CASCADE"),
            nullable=True,
        ),
        sa.Column(
            "cost_center_id",
            sa.BigInteger(),
            sa.ForeignKey("li_cost_centers.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("transaction_type", sa.Text(), nullable=False),
        sa.Column("confidence", sa.Numeric(3, 2), nullable=False),
        sa.Column("occurrences", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("avg_amount", sa.Numeric(18, 2), nullable=True),
        sa.Column("last_used_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        _updated_at(),
        sa.UniqueConstraint(
            "organization_id",
            "normalized_description",
            "category_id",
            "transaction_type",
            name="uq_li_patterns_org_desc_cat_type",
        ),
        sa.CheckConstraint(
            "confidence >= 0 AND confidence <= 1", name="ck_li_patterns_confidence"
        ),
        sa.CheckConstraint(f"transaction_type in {_TX_TYPES}", name="ck_li_patterns_type"),
    )
    op.create_index(
        "ix_li_patterns_org_type_conf",
        "li_patterns",
        ["organization_id", "transaction_type", "confidence"],
    )

    # li_suggestions
    op.create_table(
        "li_suggestions",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("organization_id", sa.Text(), nullable=False),
        sa.Column(
            "transaction_id",
            sa.BigInteger(),
            sa.ForeignKey("li_transactions.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "suggested_category_id",
            sa.BigInteger(),
            sa.ForeignKey("li_categories.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column(
            "suggested_cost_center_id",
            sa.BigInteger(),
            sa.ForeignKey("li_cost_centers.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("suggested_type", sa.Text(), nullable=True),
        sa.Column("confidence_score", sa.Numeric(3, 2), nullable=False),
        sa.Column("reasoning", sa.Text(), nullable=False),
        sa.Column("model_version", sa.Text(), nullable=False),
        sa.Column("was_accepted", sa.Boolean(), nullable=True),
        sa.Column("accepted_by", sa.Text(), nullable=True),
        sa.Column("accepted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("superseded_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        sa.CheckConstraint(
            "confidence_score >= 0 AND confidence_score <= 1",
            name="ck_li_suggestions_confidence",
        ),
    )
    op.create_index("ix_li_suggestions_transaction", "li_suggestions", ["transaction_id"])


def downgrade() -> None:
    op.drop_index("ix_li_suggestions_transaction", table_name="li_suggestions")
    op.drop_table("li_suggestions")
    op.drop_index("ix_li_patterns_org_type_conf", table_name="li_patterns")
    op.drop_table("li_patterns")
    op.drop_index("ix_li_tx_org_validation", table_name="li_transactions")
    op.drop_index("ix_li_tx_org_description", table_name="li_transactions")
    op.drop_index("uq_li_tx_org_external_id", table_name="li_transactions")
    op.drop_table("li_transactions")
    op.drop_index("ix_li_import_batches_organization_id", table_name="li_import_batches")
    op.drop_table("li_import_batches")
    op.drop_index("ix_li_cost_centers_organization_id", table_name="li_cost_centers")
    op.drop_table("li_cost_centers")
    op.drop_index("ix_li_categories_organization_id", table_name="li_categories")
    op.drop_table("li_categories")
    op.drop_table("li_account_links")
    op.drop_index("ix_li_accounts_organization_id", table_name="li_accounts")
    op.drop_table("li_accounts")

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import (
    CHAR,
    BigInteger,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
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

# BIGINT surrogate keys on Postgres; SQLite only autoincrements INTEGER PRIMARY KEY.
_PK = BigInteger().with_variant(Integer, "sqlite")

TRANSACTION_TYPES: tuple[str, ...] = ("income", "expense", "transfer", "investment", "redemption")
CLASSIFICATION_SOURCES: tuple[str, ...] = ("none", "pattern", "ai", "manual", "open_finance")
VALIDATION_STATUSES: tuple[str, ...] = ("pending_validation", "validated")
TRANSACTION_SOURCES: tuple[str, ...] = ("open_finance", "webhook", "file_import", "manual")
IMPORT_BATCH_STATUSES: tuple[str, ...] = ("processing", "awaiting_validation", "failed")


def _in_list(column: str, values: tuple[str, ...]) -> str:
    quoted = ",".join(f"'{v}'" for v in values)
    return f"{column} in ({quoted})"


class Base(DeclarativeBase):
    pass


# ---------------------------
# Reference: accounts and external mappings
# ---------------------------


class LiAccount(Base):
    __tablename__ = "li_accounts"

    id: Mapped[int] = mapped_column(_PK, primary_key=True, autoincrement=True)
    organization_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    status: Mapped[str] = mapped_column(
        String, nullable=False, default="active", server_default=text("'active'")
    )
    # Fallback target for unmapped external references. The resolver prefers this
    # flag and otherwise picks the oldest active account.
    is_default: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=text("false")
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (
        CheckConstraint("status in ('active','inactive')", name="ck_li_accounts_status"),
    )


class LiAccountLink(Base):
    __tablename__ = "li_account_links"

    id: Mapped[int] = mapped_column(_PK, primary_key=True, autoincrement=True)
    organization_id: Mapped[str] = mapped_column(String, nullable=False)
    # Account reference as supplied by the upstream (bank-sync item/account id,
    # webhook payload account id, ...). Opaque to the engine.
    external_ref: Mapped[str] = mapped_column(String, nullable=False)
    provider: Mapped[str | None] = mapped_column(String, nullable=True)
    local_account_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("li_accounts.id", ondelete="CASCADE"), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint("organization_id", "external_ref", name="uq_li_account_links_org_ref"),
    )


# ---------------------------
# Reference: categories and cost centers
# ---------------------------


class LiCategory(Base):
    __tablename__ = "li_categories"

    id: Mapped[int] = mapped_column(_PK, primary_key=True, autoincrement=True)
    organization_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    type: Mapped[str] = mapped_column(String, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint("organization_id", "name", "type", name="uq_li_categories_org_name"),
        CheckConstraint(_in_list("type", TRANSACTION_TYPES), name="ck_li_categories_type"),
    )


class LiCostCenter(Base):
    __tablename__ = "li_cost_centers"

    id: Mapped[int] = mapped_column(_PK, primary_key=True, autoincrement=True)
    organization_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint("organization_id", "name", name="uq_li_cost_centers_org_name"),
    )


# ---------------------------
# File import bookkeeping
# ---------------------------


class LiImportBatch(Base):
    __tablename__ = "li_import_batches"

    id: Mapped[int] = mapped_column(_PK, primary_key=True, autoincrement=True)
    organization_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    account_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("li_accounts.id"), nullable=False
    )
    file_type: Mapped[str] = mapped_column(String, nullable=False)
    status: Mapped[str] = mapped_column(
        String, nullable=False, default="processing", server_default=text("'processing'")
    )
    total_transactions: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    imported_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    duplicate_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    classified_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    period_start: Mapped[date | None] = mapped_column(Date, nullable=True)
    period_end: Mapped[date | None] = mapped_column(Date, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (
        CheckConstraint("file_type in ('ofx','csv')", name="ck_li_import_batches_file_type"),
        CheckConstraint(
            _in_list("status", IMPORT_BATCH_STATUSES), name="ck_li_import_batches_status"
        ),
    )


# ---------------------------
# Core: li_transactions
# ---------------------------


class LiTransaction(Base):
    __tablename__ = "li_transactions"

    id: Mapped[int] = mapped_column(_PK, primary_key=True, autoincrement=True)
    organization_id: Mapped[str] = mapped_column(String, nullable=False)
    account_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("li_accounts.id"), nullable=False
    )
    date: Mapped[date] = mapped_column(Date, nullable=False)
    # Raw description exactly as received; exact-history matching depends on it.
    description: Mapped[str] = mapped_column(Text, nullable=False)
    # Canonical form produced by ``ledger_ingest.canonical.normalize_description``;
    # part of the hash input and the token source for similarity scoring.
    normalized_description: Mapped[str] = mapped_column(Text, nullable=False)
    # Always a magnitude; direction lives in ``type``.
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    type: Mapped[str] = mapped_column(String, nullable=False)
    external_id: Mapped[str | None] = mapped_column(String, nullable=True)
    transaction_hash: Mapped[str] = mapped_column(CHAR(64), nullable=False)
    category_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("li_categories.id", ondelete="SET NULL"), nullable=True
    )
    cost_center_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("li_cost_centers.id", ondelete="SET NULL"), nullable=True
    )
    classification_source: Mapped[str] = mapped_column(
        String, nullable=False, default="none", server_default=text("'none'")
    )
    validation_status: Mapped[str] = mapped_column(
        String,
        nullable=False,
        default="pending_validation",
        server_default=text("'pending_validation'"),
    )
    validated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    source: Mapped[str] = mapped_column(
        String, nullable=False, default="open_finance", server_default=text("'open_finance'")
    )
    import_batch_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("li_import_batches.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (
        # The two dedup keys. Either one rejecting an insert means "already stored".
        UniqueConstraint("organization_id", "transaction_hash", name="uq_li_tx_org_hash"),
        Index(
            "uq_li_tx_org_external_id",
            "organization_id",
            "external_id",
            unique=True,
            postgresql_where=text("external_id IS NOT NULL"),
            sqlite_where=text("external_id IS NOT NULL"),
        ),
        Index("ix_li_tx_org_description", "organization_id", "description"),
        Index("ix_li_tx_org_validation", "organization_id", "validation_status"),
        CheckConstraint("amount >= 0", name="ck_li_tx_amount_magnitude"),
        CheckConstraint(_in_list("type", TRANSACTION_TYPES), name="ck_li_tx_type"),
        CheckConstraint(
            _in_list("classification_source", CLASSIFICATION_SOURCES),
            name="ck_li_tx_classification_source",
        ),
        CheckConstraint(
            _in_list("validation_status", VALIDATION_STATUSES),
            name="ck_li_tx_validation_status",
        ),
        CheckConstraint(_in_list("source", TRANSACTION_SOURCES), name="ck_li_tx_source"),
    )


# ---------------------------
# Rules and suggestions
# ---------------------------


class LiPattern(Base):
    __tablename__ = "li_patterns"

    id: Mapped[int] = mapped_column(_PK, primary_key=True, autoincrement=True)
    organization_id: Mapped[str] = mapped_column(String, nullable=False)
    normalized_description: Mapped[str] = mapped_column(Text, nullable=False)
    category_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("li_categories.id", ondelete="CASCADE"), nullable=True
    )
    cost_center_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("li_cost_centers.id", ondelete="SET NULL"), nullable=True
    )
    transaction_type: Mapped[str] = mapped_column(String, nullable=False)
    confidence: Mapped[Decimal] = mapped_column(Numeric(3, 2), nullable=False)
    occurrences: Mapped[int] = mapped_column(
        Integer, nullable=False, default=1, server_default=text("1")
    )
    avg_amount: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    last_used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint(
            "organization_id",
            "normalized_description",
            "category_id",
            "transaction_type",
            name="uq_li_patterns_org_desc_cat_type",
        ),
        Index("ix_li_patterns_org_type_conf", "organization_id", "transaction_type", "confidence"),
        CheckConstraint("confidence >= 0 AND confidence <= 1", name="ck_li_patterns_confidence"),
        CheckConstraint(
            _in_list("transaction_type", TRANSACTION_TYPES), name="ck_li_patterns_type"
        ),
    )


class LiSuggestion(Base):
    __tablename__ = "li_suggestions"

    id: Mapped[int] = mapped_column(_PK, primary_key=True, autoincrement=True)
    organization_id: Mapped[str] = mapped_column(String, nullable=False)
    transaction_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("li_transactions.id", ondelete="CASCADE"), nullable=False
    )
    suggested_category_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("li_categories.id", ondelete="SET NULL"), nullable=True
    )
    suggested_cost_center_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("li_cost_centers.id", ondelete="SET NULL"), nullable=True
    )
    suggested_type: Mapped[str | None] = mapped_column(String, nullable=True)
    confidence_score: Mapped[Decimal] = mapped_column(Numeric(3, 2), nullable=False)
    reasoning: Mapped[str] = mapped_column(Text, nullable=False)
    model_version: Mapped[str] = mapped_column(String, nullable=False)
    # NULL = undecided; True/False = accepted/rejected by the review workflow.
    was_accepted: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    accepted_by: Mapped[str | None] = mapped_column(String, nullable=True)
    accepted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    superseded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (
        Index("ix_li_suggestions_transaction", "transaction_id"),
        CheckConstraint(
            "confidence_score >= 0 AND confidence_score <= 1",
            name="ck_li_suggestions_confidence",
        ),
    )


__all__ = [
    "Base",
    "LiAccount",
    "LiAccountLink",
    "LiCategory",
    "LiCostCenter",
    "LiImportBatch",
    "LiPattern",
    "LiSuggestion",
    "LiTransaction",
    "CLASSIFICATION_SOURCES",
    "IMPORT_BATCH_STATUSES",
    "TRANSACTION_SOURCES",
    "TRANSACTION_TYPES",
    "VALIDATION_STATUSES",
]

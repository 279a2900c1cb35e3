"""Ledger writer: the only code that inserts transactions and suggestions.

Transaction inserts run inside a SAVEPOINT. A unique-constraint violation
there is the expected outcome of a concurrent identical delivery: the savepoint
is rolled back, both dedup keys are re-queried, and a hit becomes
:class:`DuplicateTransaction`. Any other storage failure is wrapped in
:class:`PersistenceError`. Commit is owned by the caller.
"""

from __future__ import annotations

from datetime import UTC, date, datetime
from decimal import ROUND_HALF_UP, Decimal

from db.models.ledger import LiSuggestion, LiTransaction
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from . import dedup
from .classifiers import Classification
from .errors import DuplicateTransaction, PersistenceError
from .logging_setup import get_logger

_CONFIDENCE_STEP = Decimal("0.01")

_logger = get_logger("ledger_ingest.ledger")


def insert_transaction(
    session: Session,
    *,
    organization_id: str,
    account_id: int,
    txn_date: date,
    description: str,
    normalized_description: str,
    amount: Decimal,
    txn_type: str,
    transaction_hash: str,
    external_id: str | None = None,
    category_id: int | None = None,
    cost_center_id: int | None = None,
    classification_source: str = "none",
    source: str = "open_finance",
    import_batch_id: int | None = None,
) -> LiTransaction:
    """Insert one transaction or raise :class:`DuplicateTransaction`."""

    row = LiTransaction(
        organization_id=organization_id,
        account_id=account_id,
        date=txn_date,
        description=description,
        normalized_description=normalized_description,
        amount=abs(amount),
        type=txn_type,
        external_id=external_id,
        transaction_hash=transaction_hash,
        category_id=category_id,
        cost_center_id=cost_center_id,
        classification_source=classification_source,
        validation_status="pending_validation",
        source=source,
        import_batch_id=import_batch_id,
    )
    try:
        with session.begin_nested():
            session.add(row)
            session.flush()
    except IntegrityError as exc:
        decision = dedup.find_stored(
            session,
            organization_id=organization_id,
            external_id=external_id,
            transaction_hash=transaction_hash,
        )
        if decision.is_duplicate:
            _logger.info(
                "ledger:insert_collision outcome=%s org=%s transaction_id=%s",
                decision.outcome.value,
                organization_id,
                decision.transaction_id,
            )
            raise DuplicateTransaction(decision.outcome.value, decision.transaction_id) from exc
        raise PersistenceError(f"transaction insert failed: {exc.orig}") from exc
    except SQLAlchemyError as exc:
        raise PersistenceError(f"transaction insert failed: {exc}") from exc
    return row


def _clamp_confidence(value: float) -> Decimal:
    bounded = min(1.0, max(0.0, float(value)))
    return Decimal(str(bounded)).quantize(_CONFIDENCE_STEP, rounding=ROUND_HALF_UP)


def insert_suggestion(
    session: Session,
    *,
    organization_id: str,
    transaction_id: int,
    classification: Classification,
) -> LiSuggestion:
    """Store a suggestion and supersede earlier undecided ones for the transaction."""

    now = datetime.now(UTC)
    try:
        session.execute(
            update(LiSuggestion)
            .where(
                LiSuggestion.organization_id == organization_id,
                LiSuggestion.transaction_id == transaction_id,
                LiSuggestion.was_accepted.is_(None),
                LiSuggestion.superseded_at.is_(None),
            )
            .values(superseded_at=now)
        )
        suggestion = LiSuggestion(
            organization_id=organization_id,
            transaction_id=transaction_id,
            suggested_category_id=classification.category_id,
            suggested_cost_center_id=classification.cost_center_id,
            suggested_type=classification.suggested_type,
            confidence_score=_clamp_confidence(classification.confidence),
            reasoning=classification.reasoning,
            model_version=classification.model_version,
        )
        session.add(suggestion)
        session.flush()
    except SQLAlchemyError as exc:
        raise PersistenceError(f"suggestion insert failed: {exc}") from exc
    return suggestion


__all__ = ["insert_suggestion", "insert_transaction"]

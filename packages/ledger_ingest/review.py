"""Suggestion acceptance, rejection and pattern learning.

Accepting a suggestion applies it to its transaction (category, cost center,
type, provenance, validation) and marks it accepted in one savepoint. Each
acceptance also feeds :func:`learn_from_validation`, which maintains the
``li_patterns`` rows the inline classifier reads.
"""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import ROUND_HALF_UP, Decimal

from db.models.ledger import LiPattern, LiSuggestion, LiTransaction
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .logging_setup import get_logger

_LLM_VERSION_PREFIX = "llm-"
_MIN_LEARNABLE_LENGTH = 3
_NEW_PATTERN_CONFIDENCE = Decimal("0.60")
_LEARNED_BASE = Decimal("0.50")
_LEARNED_STEP = Decimal("0.05")
_LEARNED_CAP = Decimal("0.99")
_CENTS = Decimal("0.01")

_logger = get_logger("ledger_ingest.review")


def _open_suggestion(session: Session, suggestion_id: int) -> LiSuggestion:
    suggestion = session.get(LiSuggestion, suggestion_id)
    if suggestion is None:
        raise ValueError(f"suggestion {suggestion_id} not found")
    if suggestion.was_accepted is not None:
        raise ValueError(f"suggestion {suggestion_id} was already decided")
    if suggestion.superseded_at is not None:
        raise ValueError(f"suggestion {suggestion_id} was superseded by a newer run")
    return suggestion


def accept_suggestion(
    session: Session,
    suggestion_id: int,
    *,
    accepted_by: str | None = None,
) -> LiTransaction:
    """Apply a suggestion to its transaction and mark it accepted."""

    suggestion = _open_suggestion(session, suggestion_id)
    if suggestion.suggested_category_id is None:
        raise ValueError(f"suggestion {suggestion_id} has no category to apply")

    now = datetime.now(UTC)
    with session.begin_nested():
        tx = session.get(LiTransaction, suggestion.transaction_id)
        if tx is None:
            raise ValueError(f"transaction {suggestion.transaction_id} not found")
        tx.category_id = suggestion.suggested_category_id
        tx.cost_center_id = suggestion.suggested_cost_center_id
        if suggestion.suggested_type:
            tx.type = suggestion.suggested_type
        tx.classification_source = (
            "ai" if suggestion.model_version.startswith(_LLM_VERSION_PREFIX) else "pattern"
        )
        tx.validation_status = "validated"
        tx.validated_at = now
        tx.updated_at = now

        suggestion.was_accepted = True
        suggestion.accepted_by = accepted_by
        suggestion.accepted_at = now
        session.flush()

        learn_from_validation(session, tx)

    _logger.info(
        "review:accepted suggestion_id=%s transaction_id=%s category_id=%s",
        suggestion.id,
        tx.id,
        tx.category_id,
    )
    return tx


def reject_suggestion(
    session: Session,
    suggestion_id: int,
    *,
    rejected_by: str | None = None,
) -> LiSuggestion:
    """Mark a suggestion rejected; the transaction stays pending validation."""

    suggestion = _open_suggestion(session, suggestion_id)
    suggestion.was_accepted = False
    suggestion.accepted_by = rejected_by
    suggestion.accepted_at = datetime.now(UTC)
    session.flush()
    _logger.info(
        "review:rejected suggestion_id=%s transaction_id=%s",
        suggestion.id,
        suggestion.transaction_id,
    )
    return suggestion


def _learned_confidence(occurrences: int) -> Decimal:
    return min(_LEARNED_CAP, _LEARNED_BASE + _LEARNED_STEP * occurrences)


def learn_from_validation(session: Session, transaction: LiTransaction) -> LiPattern | None:
    """Upsert the pattern keyed by (org, canonical description, category, type).

    Returns None for uncategorized transactions and for canonical descriptions
    shorter than three characters.
    """

    normalized = (transaction.normalized_description or "").strip()
    if transaction.category_id is None or len(normalized) < _MIN_LEARNABLE_LENGTH:
        return None

    key = (
        LiPattern.organization_id == transaction.organization_id,
        LiPattern.normalized_description == normalized,
        LiPattern.category_id == transaction.category_id,
        LiPattern.transaction_type == transaction.type,
    )
    now = datetime.now(UTC)
    amount = Decimal(transaction.amount)
    pattern = session.execute(select(LiPattern).where(*key)).scalar_one_or_none()

    if pattern is not None:
        previous = pattern.occurrences
        occurrences = previous + 1
        if pattern.avg_amount is None:
            avg = amount
        else:
            avg = (Decimal(pattern.avg_amount) * previous + amount) / occurrences
        pattern.occurrences = occurrences
        pattern.avg_amount = avg.quantize(_CENTS, rounding=ROUND_HALF_UP)
        pattern.confidence = _learned_confidence(occurrences)
        if transaction.cost_center_id is not None:
            pattern.cost_center_id = transaction.cost_center_id
        pattern.last_used_at = now
        pattern.updated_at = now
        session.flush()
        return pattern

    pattern = LiPattern(
        organization_id=transaction.organization_id,
        normalized_description=normalized,
        category_id=transaction.category_id,
        cost_center_id=transaction.cost_center_id,
        transaction_type=transaction.type,
        confidence=_NEW_PATTERN_CONFIDENCE,
        occurrences=1,
        avg_amount=amount.quantize(_CENTS, rounding=ROUND_HALF_UP),
        last_used_at=now,
    )
    try:
        with session.begin_nested():
            session.add(pattern)
            session.flush()
    except IntegrityError:
        # A concurrent validation learned the same key first.
        _logger.debug("review:pattern_exists org=%s", transaction.organization_id)
        return session.execute(select(LiPattern).where(*key)).scalar_one_or_none()
    _logger.debug(
        "review:pattern_learned org=%s pattern_id=%s", transaction.organization_id, pattern.id
    )
    return pattern


__all__ = ["accept_suggestion", "learn_from_validation", "reject_suggestion"]

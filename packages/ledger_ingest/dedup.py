"""Deduplication gate.

Two keys identify a stored transaction within an organization: the optional
source-supplied ``external_id`` and the always-present canonical hash. The
pre-check here is an optimization only; the unique constraints on both keys
are the source of truth, and :mod:`ledger_ingest.ledger` calls
:func:`find_stored` to classify an insert-time collision.
"""

from __future__ import annotations

from enum import StrEnum
from typing import NamedTuple

from db.models.ledger import LiTransaction
from sqlalchemy import select
from sqlalchemy.orm import Session

from .logging_setup import get_logger

_logger = get_logger("ledger_ingest.dedup")


class DedupOutcome(StrEnum):
    NEW = "new"
    DUPLICATE_ID = "duplicate_id"
    DUPLICATE_HASH = "duplicate_hash"


class DedupDecision(NamedTuple):
    outcome: DedupOutcome
    transaction_id: int | None = None

    @property
    def is_duplicate(self) -> bool:
        return self.outcome is not DedupOutcome.NEW


def find_stored(
    session: Session,
    *,
    organization_id: str,
    external_id: str | None,
    transaction_hash: str,
) -> DedupDecision:
    """Look up a stored transaction by external id first, then by hash."""

    if external_id:
        by_id = session.execute(
            select(LiTransaction.id).where(
                LiTransaction.organization_id == organization_id,
                LiTransaction.external_id == external_id,
            )
        ).scalar_one_or_none()
        if by_id is not None:
            return DedupDecision(DedupOutcome.DUPLICATE_ID, by_id)

    by_hash = session.execute(
        select(LiTransaction.id).where(
            LiTransaction.organization_id == organization_id,
            LiTransaction.transaction_hash == transaction_hash,
        )
    ).scalar_one_or_none()
    if by_hash is not None:
        return DedupDecision(DedupOutcome.DUPLICATE_HASH, by_hash)

    return DedupDecision(DedupOutcome.NEW)


def check_duplicate(
    session: Session,
    *,
    organization_id: str,
    external_id: str | None,
    transaction_hash: str,
) -> DedupDecision:
    """Pre-insert gate for an incoming event (best effort, see module docs)."""

    decision = find_stored(
        session,
        organization_id=organization_id,
        external_id=external_id,
        transaction_hash=transaction_hash,
    )
    if decision.is_duplicate:
        _logger.debug(
            "dedup:hit outcome=%s org=%s transaction_id=%s",
            decision.outcome.value,
            organization_id,
            decision.transaction_id,
        )
    return decision


__all__ = ["DedupDecision", "DedupOutcome", "check_duplicate", "find_stored"]

"""Ingest operation: one upstream event in, one structured result out.

Pipeline: canonicalize -> resolve account -> dedup gate -> infer type ->
inline classification -> ledger writer. Duplicates come back as
``status="skipped"`` and an unresolvable account as ``status="error",
reason="no_account_found"``; both are normal results. Malformed payloads are
rejected before any read or write. Only :class:`PersistenceError` escapes, for
the caller to retry.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from db.client import session_scope
from pydantic import ValidationError
from sqlalchemy.orm import Session

from . import dedup, ledger
from .accounts import require_account, resolve_account
from .canonical import canonical_amount, compute_transaction_hash, normalize_description
from .classifiers import ClassificationProvider, ClassificationTarget, InlinePatternProvider
from .direction import infer_type
from .errors import AccountResolutionFailure, DuplicateTransaction
from .logging_setup import get_logger
from .models import IngestEvent, IngestResult, format_validation_error
from .settings import EngineSettings

_NO_ACCOUNT = "no_account_found"

_logger = get_logger("ledger_ingest.engine")


def ingest_transaction(
    session: Session,
    event: IngestEvent,
    *,
    settings: EngineSettings | None = None,
    provider: ClassificationProvider | None = None,
) -> IngestResult:
    """Store ``event`` exactly once for its organization (caller commits)."""

    org = event.organization_id
    normalized = normalize_description(event.description)

    try:
        if event.account_id is not None:
            account_id = require_account(session, org, event.account_id)
        else:
            account_id = resolve_account(session, org, event.account_ref)
    except AccountResolutionFailure:
        _logger.warning(
            "ingest:error reason=%s org=%s account_ref=%s",
            _NO_ACCOUNT,
            org,
            event.account_ref or event.account_id,
        )
        return IngestResult(status="error", reason=_NO_ACCOUNT)

    magnitude = canonical_amount(event.amount)
    txn_hash = compute_transaction_hash(event.date, magnitude, normalized, account_id)

    decision = dedup.check_duplicate(
        session,
        organization_id=org,
        external_id=event.external_id,
        transaction_hash=txn_hash,
    )
    if decision.is_duplicate:
        _logger.info(
            "ingest:skipped reason=%s org=%s transaction_id=%s",
            decision.outcome.value,
            org,
            decision.transaction_id,
        )
        return IngestResult(
            status="skipped",
            transaction_id=str(decision.transaction_id),
            reason=decision.outcome.value,
        )

    txn_type = infer_type(event.credit_debit_indicator, event.amount, event.description)

    inline = provider or InlinePatternProvider(session, org, settings)
    match = inline.classify(
        ClassificationTarget(
            organization_id=org,
            description=event.description,
            normalized_description=normalized,
            amount=magnitude,
            type=txn_type,
        )
    )

    try:
        row = ledger.insert_transaction(
            session,
            organization_id=org,
            account_id=account_id,
            txn_date=event.date,
            description=event.description,
            normalized_description=normalized,
            amount=magnitude,
            txn_type=txn_type,
            transaction_hash=txn_hash,
            external_id=event.external_id,
            category_id=match.category_id if match else None,
            cost_center_id=match.cost_center_id if match else None,
            classification_source=match.source if match else "none",
            source=event.source,
            import_batch_id=event.import_batch_id,
        )
    except DuplicateTransaction as dup:
        _logger.info(
            "ingest:skipped reason=%s org=%s transaction_id=%s race=true",
            dup.reason,
            org,
            dup.transaction_id,
        )
        return IngestResult(
            status="skipped",
            transaction_id=str(dup.transaction_id) if dup.transaction_id is not None else None,
            reason=dup.reason,
        )

    _logger.info(
        "ingest:stored org=%s transaction_id=%s type=%s classification=%s",
        org,
        row.id,
        txn_type,
        row.classification_source,
    )
    return IngestResult(status="success", transaction_id=str(row.id))


def process_event(
    payload: Mapping[str, Any],
    *,
    database_url: str | None = None,
    settings: EngineSettings | None = None,
) -> dict[str, Any]:
    """Wire-level ingest: validate ``payload`` and run it in its own transaction.

    Returns the camelCase result mapping. Raises :class:`PersistenceError` on
    infrastructure failures.
    """

    try:
        event = IngestEvent.model_validate(payload)
    except ValidationError as e:
        reason = format_validation_error(e)
        _logger.warning("ingest:malformed reason=%s", reason)
        return IngestResult(status="error", reason=reason).to_wire()

    with session_scope(database_url=database_url) as session:
        result = ingest_transaction(
            session, event, settings=settings or EngineSettings.from_env()
        )
    return result.to_wire()


__all__ = ["ingest_transaction", "process_event"]

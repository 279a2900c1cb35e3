"""Exception taxonomy for ingestion and classification.

Duplicates and account-resolution failures are normal branches of ingestion and
are turned into structured results by :mod:`ledger_ingest.engine`. Only
``PersistenceError`` is meant to reach callers as a failure they may retry.
"""

from __future__ import annotations


class LedgerIngestError(Exception):
    """Base class for all engine errors."""


class MalformedInput(LedgerIngestError, ValueError):
    """The payload could not be validated; nothing was written."""


class AccountResolutionFailure(LedgerIngestError):
    """No active local account exists for the organization.

    Terminal: re-sending the same event cannot succeed until an operator
    creates or links an account.
    """

    def __init__(self, organization_id: str, account_ref: str | None = None) -> None:
        self.organization_id = organization_id
        self.account_ref = account_ref
        detail = f" (account_ref={account_ref!r})" if account_ref else ""
        super().__init__(f"no active account for organization {organization_id!r}{detail}")


class DuplicateTransaction(LedgerIngestError):
    """The event is already stored under one of the two dedup keys."""

    def __init__(self, reason: str, transaction_id: int | None = None) -> None:
        self.reason = reason
        self.transaction_id = transaction_id
        super().__init__(reason)


class PersistenceError(LedgerIngestError):
    """Unexpected storage failure; safe for the caller to retry."""


__all__ = [
    "AccountResolutionFailure",
    "DuplicateTransaction",
    "LedgerIngestError",
    "MalformedInput",
    "PersistenceError",
]

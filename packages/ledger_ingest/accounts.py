"""External to local account resolution.

Lookup order for an upstream account reference:

1. an active account linked to the reference in ``li_account_links``;
2. the organization's active ``is_default`` account;
3. the organization's oldest active account.

When the organization has no active account at all the resolver raises
:class:`AccountResolutionFailure`; that needs operator setup and is not retryable.
"""

from __future__ import annotations

from db.models.ledger import LiAccount, LiAccountLink
from sqlalchemy import select
from sqlalchemy.orm import Session

from .errors import AccountResolutionFailure
from .logging_setup import get_logger

_ACTIVE = "active"

_logger = get_logger("ledger_ingest.accounts")


def _fallback_account_id(session: Session, organization_id: str) -> int | None:
    stmt = (
        select(LiAccount.id)
        .where(LiAccount.organization_id == organization_id, LiAccount.status == _ACTIVE)
        .order_by(LiAccount.is_default.desc(), LiAccount.id.asc())
        .limit(1)
    )
    return session.execute(stmt).scalar_one_or_none()


def resolve_account(session: Session, organization_id: str, account_ref: str | None) -> int:
    """Return the local account id for ``account_ref`` within the organization."""

    if account_ref:
        stmt = (
            select(LiAccount.id)
            .join(LiAccountLink, LiAccountLink.local_account_id == LiAccount.id)
            .where(
                LiAccountLink.organization_id == organization_id,
                LiAccountLink.external_ref == account_ref,
                LiAccount.organization_id == organization_id,
                LiAccount.status == _ACTIVE,
            )
            .limit(1)
        )
        linked = session.execute(stmt).scalar_one_or_none()
        if linked is not None:
            return linked

    fallback = _fallback_account_id(session, organization_id)
    if fallback is None:
        _logger.warning(
            "accounts:unresolved org=%s account_ref=%s", organization_id, account_ref
        )
        raise AccountResolutionFailure(organization_id, account_ref)
    if account_ref:
        _logger.debug(
            "accounts:fallback org=%s account_ref=%s account_id=%s",
            organization_id,
            account_ref,
            fallback,
        )
    return fallback


def require_account(session: Session, organization_id: str, account_id: int) -> int:
    """Verify that ``account_id`` is an active account of the organization."""

    stmt = select(LiAccount.id).where(
        LiAccount.id == account_id,
        LiAccount.organization_id == organization_id,
        LiAccount.status == _ACTIVE,
    )
    found = session.execute(stmt).scalar_one_or_none()
    if found is None:
        raise AccountResolutionFailure(organization_id, str(account_id))
    return found


def link_account(
    session: Session,
    *,
    organization_id: str,
    external_ref: str,
    local_account_id: int,
    provider: str | None = None,
) -> LiAccountLink:
    """Create or repoint the mapping for ``(organization_id, external_ref)``.

    The target must be an account of the same organization. Calling again with
    the same reference repoints the existing link instead of adding a row.
    """

    ref = external_ref.strip()
    if not ref:
        raise ValueError("external_ref must be non-empty")
    account = session.get(LiAccount, local_account_id)
    if account is None or account.organization_id != organization_id:
        raise AccountResolutionFailure(organization_id, ref)

    existing = session.execute(
        select(LiAccountLink).where(
            LiAccountLink.organization_id == organization_id,
            LiAccountLink.external_ref == ref,
        )
    ).scalar_one_or_none()
    if existing is not None:
        existing.local_account_id = local_account_id
        if provider is not None:
            existing.provider = provider
        session.flush()
        return existing

    link = LiAccountLink(
        organization_id=organization_id,
        external_ref=ref,
        provider=provider,
        local_account_id=local_account_id,
    )
    session.add(link)
    session.flush()
    _logger.info(
        "accounts:linked org=%s external_ref=%s account_id=%s",
        organization_id,
        ref,
        local_account_id,
    )
    return link


__all__ = ["link_account", "require_account", "resolve_account"]

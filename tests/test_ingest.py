from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Any

import pytest
from db.client import session_scope
from db.models.ledger import LiTransaction
from sqlalchemy import func, select
from sqlalchemy.orm import Session

import ledger_ingest.dedup as dedup_mod
from ledger_ingest.accounts import link_account
from ledger_ingest.dedup import DedupDecision, DedupOutcome
from ledger_ingest.engine import ingest_transaction, process_event
from ledger_ingest.models import IngestEvent

from tests.helpers.db import add_account, add_category, add_pattern, add_transaction

ORG = "org-1"
OTHER_ORG = "org-2"


def _payload(**overrides: Any) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "organizationId": ORG,
        "externalId": "ext-1",
        "accountRef": "itau-123",
        "amount": "-12.50",
        "description": "PIX PADARIA SAO JOAO",
        "date": "2025-03-01T10:00:00Z",
    }
    payload.update(overrides)
    return payload


def _event(**overrides: Any) -> IngestEvent:
    return IngestEvent.model_validate(_payload(**overrides))


def _count(database_url: str, organization_id: str = ORG) -> int:
    with session_scope(database_url=database_url) as s:
        return s.execute(
            select(func.count())
            .select_from(LiTransaction)
            .where(LiTransaction.organization_id == organization_id)
        ).scalar_one()


@pytest.fixture()
def default_account(db_url: str) -> int:
    with session_scope(database_url=db_url) as s:
        return add_account(s, ORG, is_default=True).id


# ---- Wire-level ingest --------------------------------------------------------


def test_first_delivery_is_stored_with_canonical_fields(db_url: str, default_account: int) -> None:
    result = process_event(_payload(), database_url=db_url)

    assert result == {"status": "success", "transactionId": result["transactionId"]}
    with session_scope(database_url=db_url) as s:
        row = s.get(LiTransaction, int(result["transactionId"]))
        assert row is not None
        assert row.account_id == default_account
        assert row.date == date(2025, 3, 1)
        assert row.amount == Decimal("12.50")
        assert row.type == "expense"
        assert row.normalized_description == "padaria sao joao"
        assert row.description == "PIX PADARIA SAO JOAO"
        assert row.validation_status == "pending_validation"
        assert row.classification_source == "none"
        assert row.source == "open_finance"
        assert len(row.transaction_hash) == 64


def test_redelivery_is_skipped_by_external_id(db_url: str, default_account: int) -> None:
    first = process_event(_payload(), database_url=db_url)
    second = process_event(_payload(), database_url=db_url)

    assert second == {
        "status": "skipped",
        "transactionId": first["transactionId"],
        "reason": "duplicate_id",
    }
    assert _count(db_url) == 1


def test_same_content_under_new_external_id_is_a_hash_duplicate(
    db_url: str, default_account: int
) -> None:
    first = process_event(_payload(), database_url=db_url)
    second = process_event(_payload(externalId="ext-2"), database_url=db_url)

    assert second["status"] == "skipped"
    assert second["reason"] == "duplicate_hash"
    assert second["transactionId"] == first["transactionId"]
    assert _count(db_url) == 1


def test_reconnected_account_reference_still_dedupes(db_url: str, default_account: int) -> None:
    process_event(_payload(), database_url=db_url)
    # A new upstream reference that falls back to the same local account.
    again = process_event(
        _payload(externalId="ext-9", accountRef="itau-reconnected", amount="12.50"),
        database_url=db_url,
    )
    assert again["reason"] == "duplicate_hash"


def test_organizations_are_isolated(db_url: str, default_account: int) -> None:
    with session_scope(database_url=db_url) as s:
        add_account(s, OTHER_ORG, is_default=True)

    a = process_event(_payload(), database_url=db_url)
    b = process_event(_payload(organizationId=OTHER_ORG), database_url=db_url)

    assert a["status"] == b["status"] == "success"
    assert a["transactionId"] != b["transactionId"]
    assert _count(db_url, ORG) == _count(db_url, OTHER_ORG) == 1


def test_invoice_settlement_is_stored_as_transfer(db_url: str, default_account: int) -> None:
    result = process_event(
        _payload(externalId="ext-fat", description="pagamento fatura cartao", amount="500.00"),
        database_url=db_url,
    )
    with session_scope(database_url=db_url) as s:
        row = s.get(LiTransaction, int(result["transactionId"]))
        assert row is not None
        assert row.type == "transfer"
        assert row.amount == Decimal("500.00")


def test_indicator_sets_direction(db_url: str, default_account: int) -> None:
    result = process_event(
        _payload(externalId="ext-c", amount="-80.00", creditDebitIndicator="credit"),
        database_url=db_url,
    )
    with session_scope(database_url=db_url) as s:
        assert s.get(LiTransaction, int(result["transactionId"])).type == "income"


def test_organization_without_accounts_gets_no_account_found(db_url: str) -> None:
    result = process_event(_payload(), database_url=db_url)
    assert result == {"status": "error", "reason": "no_account_found"}
    assert _count(db_url) == 0


def test_inactive_accounts_do_not_resolve(db_url: str) -> None:
    with session_scope(database_url=db_url) as s:
        add_account(s, ORG, is_default=True, status="inactive")
    assert process_event(_payload(), database_url=db_url)["reason"] == "no_account_found"


@pytest.mark.parametrize(
    ("overrides", "fragment"),
    [
        ({"amount": "abc"}, "amount"),
        ({"date": "yesterday"}, "date"),
        ({"accountRef": None}, "accountRef is required"),
        ({"description": "   "}, "description"),
        ({"creditDebitIndicator": "SIDEWAYS"}, "creditDebitIndicator"),
    ],
)
def test_malformed_payload_is_rejected_without_writes(
    db_url: str, default_account: int, overrides: dict[str, Any], fragment: str
) -> None:
    result = process_event(_payload(**overrides), database_url=db_url)
    assert result["status"] == "error"
    assert fragment in result["reason"]
    assert _count(db_url) == 0


# ---- Session-level ingest -----------------------------------------------------


def test_insert_race_resolves_to_skipped(session: Session, monkeypatch: pytest.MonkeyPatch) -> None:
    add_account(session, ORG, is_default=True)
    first = ingest_transaction(session, _event())

    # Simulate a concurrent writer that passed the pre-check before ours committed.
    monkeypatch.setattr(
        dedup_mod, "check_duplicate", lambda *a, **k: DedupDecision(DedupOutcome.NEW)
    )
    by_hash = ingest_transaction(session, _event(externalId="ext-2"))
    by_id = ingest_transaction(session, _event())

    assert (by_hash.status, by_hash.reason) == ("skipped", "duplicate_hash")
    assert by_hash.transaction_id == first.transaction_id
    assert (by_id.status, by_id.reason) == ("skipped", "duplicate_id")
    assert session.execute(select(func.count()).select_from(LiTransaction)).scalar_one() == 1


def test_linked_reference_wins_over_default(session: Session) -> None:
    default = add_account(session, ORG, "Default", is_default=True)
    linked = add_account(session, ORG, "Itau")
    link_account(session, organization_id=ORG, external_ref="itau-123", local_account_id=linked.id)

    via_link = ingest_transaction(session, _event())
    via_default = ingest_transaction(session, _event(externalId="ext-2", accountRef="nubank-1"))

    assert session.get(LiTransaction, int(via_link.transaction_id)).account_id == linked.id
    assert session.get(LiTransaction, int(via_default.transaction_id)).account_id == default.id


def test_local_account_id_bypasses_resolution(session: Session) -> None:
    add_account(session, ORG, is_default=True)
    other = add_account(session, ORG, "Cartao")
    result = ingest_transaction(
        session, _event(accountRef=None, accountId=other.id, source="manual")
    )
    row = session.get(LiTransaction, int(result.transaction_id))
    assert row.account_id == other.id
    assert row.source == "manual"


def test_exact_history_match_classifies_inline(session: Session) -> None:
    account = add_account(session, ORG, is_default=True)
    bakery = add_category(session, ORG, "Padaria")
    add_transaction(
        session,
        ORG,
        account_id=account.id,
        description="PIX PADARIA SAO JOAO",
        amount="9.00",
        category_id=bakery.id,
        validated=True,
    )

    result = ingest_transaction(session, _event())
    row = session.get(LiTransaction, int(result.transaction_id))

    assert row.category_id == bakery.id
    assert row.classification_source == "pattern"
    # Inline classification never validates.
    assert row.validation_status == "pending_validation"


def test_rule_similarity_match_classifies_inline(session: Session) -> None:
    add_account(session, ORG, is_default=True)
    fuel = add_category(session, ORG, "Combustivel")
    add_pattern(session, ORG, "POSTO IPIRANGA", category_id=fuel.id, confidence="0.80")

    result = ingest_transaction(session, _event(description="POSTO IPIRANGA 0341"))
    row = session.get(LiTransaction, int(result.transaction_id))

    assert row.category_id == fuel.id
    assert row.classification_source == "pattern"


@pytest.mark.parametrize(
    ("rule", "kind", "confidence"),
    [
        ("POSTO IPIRANGA", "expense", "0.65"),  # below the confidence floor
        ("POSTO IPIRANGA", "income", "0.90"),  # other direction
        ("POSTO IPIRANGA CENTRO", "expense", "0.90"),  # similarity 2/3
    ],
)
def test_rules_that_do_not_apply(session: Session, rule: str, kind: str, confidence: str) -> None:
    add_account(session, ORG, is_default=True)
    fuel = add_category(session, ORG, "Combustivel", kind)
    add_pattern(session, ORG, rule, category_id=fuel.id, kind=kind, confidence=confidence)

    result = ingest_transaction(session, _event(description="POSTO IPIRANGA"))
    row = session.get(LiTransaction, int(result.transaction_id))

    assert row.category_id is None
    assert row.classification_source == "none"

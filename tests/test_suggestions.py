from __future__ import annotations

from datetime import date, timedelta
from decimal import Decimal

import pytest
from db.client import session_scope
from db.models.ledger import LiSuggestion, LiTransaction
from sqlalchemy import select
from sqlalchemy.orm import Session

from ledger_ingest.classifiers import Classification, ClassificationTarget
from ledger_ingest.engine import ingest_transaction
from ledger_ingest.models import IngestEvent
from ledger_ingest.review import accept_suggestion
from ledger_ingest.settings import EngineSettings
from ledger_ingest.suggestions import (
    KeywordFrequencyProvider,
    KeywordStats,
    build_keyword_model,
    classify_transactions,
    process_classify,
)

from tests.helpers.db import add_account, add_category, add_cost_center, add_transaction

ORG = "org-1"


def _target(description: str, kind: str = "expense") -> ClassificationTarget:
    return ClassificationTarget(
        organization_id=ORG,
        description=description,
        normalized_description=description.lower(),
        amount=Decimal("10.00"),
        type=kind,
    )


def _history(session: Session, account_id: int, description: str, n: int, **kw) -> None:
    start = date(2025, 1, 1)
    for i in range(n):
        add_transaction(
            session,
            ORG,
            account_id=account_id,
            description=description,
            txn_date=start + timedelta(days=i),
            validated=True,
            **kw,
        )


# ---- Keyword model (pure) ----------------------------------------------------


def test_build_keyword_model_counts_and_keeps_newest_association() -> None:
    model = build_keyword_model(
        [
            ("ifood restaurante", 2, None),  # newest
            ("ifood mercado", 1, 5),
            ("ab ifood", 1, None),
        ]
    )
    assert list(model) == ["ifood", "restaurante", "mercado"]
    assert model["ifood"] == KeywordStats(3, 2, None)
    assert model["mercado"] == KeywordStats(1, 1, 5)
    assert "ab" not in model


@pytest.mark.parametrize(
    ("count", "expected"),
    [(1, 0.51), (10, 0.6), (40, 0.9), (45, 0.95), (500, 0.95)],
)
def test_confidence_grows_with_occurrences_and_is_capped(count: int, expected: float) -> None:
    provider = KeywordFrequencyProvider({"ubereats": KeywordStats(count, 7, None)})
    result = provider.classify(_target("UBEREATS *PEDIDO"))
    assert result.category_id == 7
    assert result.confidence == expected


def test_no_keyword_match_returns_low_confidence_placeholder() -> None:
    provider = KeywordFrequencyProvider({"ubereats": KeywordStats(10, 7, None)})
    result = provider.classify(_target("FARMACIA PAGUE MENOS", "expense"))
    assert result.category_id is None
    assert result.cost_center_id is None
    assert result.suggested_type == "expense"
    assert result.confidence == 0.3
    assert result.reasoning.startswith("No historical pattern found")
    assert result.model_version == "keyword-frequency-v1"


def test_early_keyword_gets_positional_bonus() -> None:
    model = {
        "mercado": KeywordStats(6, 1, None),
        "farmacia": KeywordStats(4, 2, None),
    }
    provider = KeywordFrequencyProvider(model)
    # "farmacia" starts at 0 (score 8); "mercado" starts past the cutoff (score 6).
    assert provider.classify(_target("FARMACIA DO MERCADO CENTRAL")).category_id == 2
    # Both early: "mercado" wins on count.
    assert provider.classify(_target("MERCADO FARMACIA")).category_id == 1


def test_corroborating_keywords_raise_confidence() -> None:
    model = {
        "posto": KeywordStats(2, 3, None),
        "ipiranga": KeywordStats(2, 3, None),
    }
    provider = KeywordFrequencyProvider(model, category_names={3: "Combustivel"})
    result = provider.classify(_target("POSTO IPIRANGA 123"))
    assert result.confidence == 0.62
    assert result.reasoning == (
        'Based on 2 similar transactions containing "posto". Category "Combustivel". '
        "Corroborated by 2 matching keywords."
    )


def test_settings_override_confidence_curve() -> None:
    settings = EngineSettings(base_confidence=0.4, occurrence_scale=50, confidence_cap=0.8)
    provider = KeywordFrequencyProvider(
        {"aluguel": KeywordStats(30, 1, None)}, settings=settings
    )
    assert provider.classify(_target("ALUGUEL MARCO")).confidence == 0.8


# ---- Batch classification ----------------------------------------------------


def test_ten_validated_ubereats_give_sixty_percent(session: Session) -> None:
    account = add_account(session, ORG, is_default=True)
    dining = add_category(session, ORG, "Dining")
    _history(session, account.id, "UBEREATS", 10, category_id=dining.id, amount="35.00")
    target = add_transaction(
        session, ORG, account_id=account.id, description="UBEREATS *PEDIDO", amount="42.00"
    )

    result = classify_transactions(session, organization_id=ORG, transaction_ids=[target.id])

    assert result.success is True
    assert (result.suggestions_created, result.failed) == (1, 0)
    s = result.suggestions[0]
    assert s.transaction_id == str(target.id)
    assert s.suggested_category_id == str(dining.id)
    assert s.confidence_score == 0.6
    assert "10 similar transactions" in s.reasoning
    assert '"Dining"' in s.reasoning
    # Suggestions never touch the transaction itself.
    assert session.get(LiTransaction, target.id).category_id is None


def test_cost_center_is_named_in_reasoning(session: Session) -> None:
    account = add_account(session, ORG, is_default=True)
    fuel = add_category(session, ORG, "Combustivel")
    company = add_cost_center(session, ORG, "Empresa")
    _history(
        session, account.id, "SHELL BOX", 3, category_id=fuel.id, cost_center_id=company.id
    )
    target = add_transaction(
        session, ORG, account_id=account.id, description="SHELL BOX 22", txn_date=date(2025, 2, 1)
    )

    result = classify_transactions(session, organization_id=ORG, transaction_ids=[str(target.id)])

    s = result.suggestions[0]
    assert s.suggested_cost_center_id == str(company.id)
    assert 'cost center "Empresa"' in s.reasoning


def test_accented_descriptions_match_folded_keywords(session: Session) -> None:
    account = add_account(session, ORG, is_default=True)
    health = add_category(session, ORG, "Saude")
    _history(session, account.id, "Farmácia", 10, category_id=health.id)
    target = add_transaction(
        session, ORG, account_id=account.id, description="Farmácia", txn_date=date(2025, 2, 1)
    )

    result = classify_transactions(session, organization_id=ORG, transaction_ids=[target.id])

    s = result.suggestions[0]
    assert s.suggested_category_id == str(health.id)
    assert s.confidence_score == 0.6
    assert '"farmacia"' in s.reasoning


def test_accepting_a_suggestion_keeps_a_card_bill_settlement_a_transfer(
    session: Session,
) -> None:
    account = add_account(session, ORG, is_default=True)
    shopping = add_category(session, ORG, "Compras")
    _history(session, account.id, "LOJA CARTAO NUBANK", 5, category_id=shopping.id)
    ingested = ingest_transaction(
        session,
        IngestEvent(
            organization_id=ORG,
            account_ref="A",
            amount=Decimal("500.00"),
            description="pagamento fatura cartao",
            date=date(2024, 3, 5),
        ),
    )
    tx_id = int(ingested.transaction_id)
    assert session.get(LiTransaction, tx_id).type == "transfer"

    result = classify_transactions(session, organization_id=ORG, transaction_ids=[tx_id])
    s = result.suggestions[0]
    assert s.suggested_category_id == str(shopping.id)
    assert s.suggested_type == "transfer"

    accepted = accept_suggestion(session, int(s.id))
    assert accepted.type == "transfer"
    assert accepted.category_id == shopping.id


def test_unvalidated_and_other_org_history_is_ignored(session: Session) -> None:
    account = add_account(session, ORG, is_default=True)
    other_account = add_account(session, "org-2", is_default=True)
    dining = add_category(session, ORG, "Dining")
    other_dining = add_category(session, "org-2", "Dining")
    add_transaction(
        session, ORG, account_id=account.id, description="UBEREATS", category_id=dining.id
    )
    add_transaction(
        session,
        "org-2",
        account_id=other_account.id,
        description="UBEREATS",
        category_id=other_dining.id,
        validated=True,
    )
    target = add_transaction(
        session, ORG, account_id=account.id, description="UBEREATS X", amount="1.00"
    )

    result = classify_transactions(session, organization_id=ORG, transaction_ids=[target.id])
    assert result.suggestions[0].suggested_category_id is None
    assert result.suggestions[0].confidence_score == 0.3


def test_missing_and_invalid_ids_are_counted(session: Session) -> None:
    account = add_account(session, ORG, is_default=True)
    target = add_transaction(session, ORG, account_id=account.id, description="LOJA X")

    result = classify_transactions(
        session, organization_id=ORG, transaction_ids=[str(target.id), "999999", "not-an-id"]
    )
    assert result.success is True
    assert result.suggestions_created == 1
    assert result.failed == 2


def test_no_existing_targets_is_unsuccessful(session: Session) -> None:
    add_account(session, ORG, is_default=True)
    result = classify_transactions(session, organization_id=ORG, transaction_ids=["41", "42"])
    assert result.success is False
    assert result.to_wire() == {
        "success": False,
        "suggestionsCreated": 0,
        "failed": 2,
        "suggestions": [],
    }


def test_other_organizations_transactions_are_not_targets(session: Session) -> None:
    other = add_account(session, "org-2", is_default=True)
    foreign = add_transaction(session, "org-2", account_id=other.id, description="LOJA")
    result = classify_transactions(session, organization_id=ORG, transaction_ids=[foreign.id])
    assert result.success is False
    assert session.execute(select(LiSuggestion)).first() is None


class _FlakyProvider:
    version = "flaky-v1"

    def classify(self, target: ClassificationTarget) -> Classification | None:
        if "BOOM" in target.description:
            raise RuntimeError("provider exploded")
        if "SKIP" in target.description:
            return None
        return Classification(
            category_id=None,
            cost_center_id=None,
            suggested_type=target.type,
            confidence=1.7,
            reasoning="always sure",
            model_version=self.version,
        )


def test_row_failures_do_not_abort_the_batch(session: Session) -> None:
    account = add_account(session, ORG, is_default=True)
    ok = add_transaction(session, ORG, account_id=account.id, description="LOJA OK")
    boom = add_transaction(session, ORG, account_id=account.id, description="LOJA BOOM")
    skip = add_transaction(session, ORG, account_id=account.id, description="LOJA SKIP")

    result = classify_transactions(
        session,
        organization_id=ORG,
        transaction_ids=[ok.id, boom.id, skip.id],
        provider=_FlakyProvider(),
    )

    assert result.success is True
    assert (result.suggestions_created, result.failed) == (2, 1)
    by_tx = {s.transaction_id: s for s in result.suggestions}
    # Out-of-range confidence is clamped on write.
    assert by_tx[str(ok.id)].confidence_score == 1.0
    # A provider with no answer still yields the placeholder suggestion.
    assert by_tx[str(skip.id)].confidence_score == 0.3
    assert by_tx[str(skip.id)].model_version == "flaky-v1"


def test_rerun_supersedes_undecided_suggestions(session: Session) -> None:
    account = add_account(session, ORG, is_default=True)
    target = add_transaction(session, ORG, account_id=account.id, description="LOJA X")

    first = classify_transactions(session, organization_id=ORG, transaction_ids=[target.id])
    second = classify_transactions(session, organization_id=ORG, transaction_ids=[target.id])
    session.expire_all()

    old = session.get(LiSuggestion, int(first.suggestions[0].id))
    new = session.get(LiSuggestion, int(second.suggestions[0].id))
    assert old.superseded_at is not None
    assert new.superseded_at is None


def test_process_classify_wire_shape(db_url: str) -> None:
    with session_scope(database_url=db_url) as s:
        account = add_account(s, ORG, is_default=True)
        tx_id = add_transaction(s, ORG, account_id=account.id, description="LOJA X").id

    out = process_classify({"organizationId": ORG, "transactionIds": [tx_id]}, database_url=db_url)

    assert out["success"] is True
    assert out["suggestionsCreated"] == 1
    assert out["failed"] == 0
    assert set(out["suggestions"][0]) >= {
        "id",
        "transactionId",
        "confidenceScore",
        "reasoning",
        "modelVersion",
    }


def test_process_classify_rejects_malformed_request(db_url: str) -> None:
    out = process_classify({"organizationId": ORG, "transactionIds": []}, database_url=db_url)
    assert out == {"success": False, "suggestionsCreated": 0, "failed": 0, "suggestions": []}

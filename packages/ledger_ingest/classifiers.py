"""Classification providers and the inline (ingest-time) pattern classifier.

Every strategy implements :class:`ClassificationProvider`: it receives a
:class:`ClassificationTarget` and returns a :class:`Classification` or ``None``.
Dedup and persistence never depend on which provider produced a result.

The inline provider runs before a new transaction is stored:

- exact history: the newest categorized transaction of the organization with the
  same raw description lends its category and cost center;
- rule similarity: ``li_patterns`` rows for the inferred type with standing
  confidence at or above the floor, best first and capped to a short list; the
  first whose token overlap reaches the threshold wins.
"""

from __future__ import annotations

from collections.abc import Set
from dataclasses import dataclass
from decimal import Decimal
from typing import Literal, Protocol

from db.models.ledger import LiPattern, LiTransaction
from sqlalchemy import select
from sqlalchemy.orm import Session

from .canonical import description_tokens
from .logging_setup import get_logger
from .settings import EngineSettings

_EXACT_VERSION = "inline-exact-v1"
_RULE_VERSION = "inline-rule-v1"

_logger = get_logger("ledger_ingest.classifiers")


@dataclass(frozen=True, slots=True)
class ClassificationTarget:
    """The fields a provider may look at; ``transaction_id`` is None before insert."""

    organization_id: str
    description: str
    normalized_description: str
    amount: Decimal
    type: str
    transaction_id: int | None = None


@dataclass(frozen=True, slots=True)
class Classification:
    category_id: int | None
    cost_center_id: int | None
    suggested_type: str | None
    confidence: float
    reasoning: str
    model_version: str
    source: Literal["pattern", "ai"] = "pattern"


class ClassificationProvider(Protocol):
    version: str

    def classify(self, target: ClassificationTarget) -> Classification | None: ...


def token_similarity(a: Set[str], b: Set[str]) -> float:
    """Overlap ``|a & b| / max(|a|, |b|)``; 0.0 when either side is empty."""

    if not a or not b:
        return 0.0
    return len(a & b) / max(len(a), len(b))


class InlinePatternProvider:
    """Exact-history then rule-similarity matching for one organization."""

    version = _RULE_VERSION

    def __init__(
        self,
        session: Session,
        organization_id: str,
        settings: EngineSettings | None = None,
    ) -> None:
        self._session = session
        self._organization_id = organization_id
        self._settings = settings or EngineSettings()

    def classify(self, target: ClassificationTarget) -> Classification | None:
        return self._exact_history(target) or self._rule_similarity(target)

    def _exact_history(self, target: ClassificationTarget) -> Classification | None:
        stmt = (
            select(LiTransaction)
            .where(
                LiTransaction.organization_id == self._organization_id,
                LiTransaction.description == target.description,
                LiTransaction.category_id.is_not(None),
            )
            .order_by(LiTransaction.id.desc())
            .limit(1)
        )
        if target.transaction_id is not None:
            stmt = stmt.where(LiTransaction.id != target.transaction_id)
        prior = self._session.execute(stmt).scalar_one_or_none()
        if prior is None:
            return None
        _logger.debug(
            "classify:exact_match org=%s prior_id=%s category_id=%s",
            self._organization_id,
            prior.id,
            prior.category_id,
        )
        return Classification(
            category_id=prior.category_id,
            cost_center_id=prior.cost_center_id,
            suggested_type=target.type,
            confidence=1.0,
            reasoning=f"Same description as transaction {prior.id}.",
            model_version=_EXACT_VERSION,
        )

    def _rule_similarity(self, target: ClassificationTarget) -> Classification | None:
        s = self._settings
        stmt = (
            select(LiPattern)
            .where(
                LiPattern.organization_id == self._organization_id,
                LiPattern.transaction_type == target.type,
                LiPattern.confidence >= s.rule_confidence_floor,
            )
            .order_by(LiPattern.confidence.desc(), LiPattern.id.asc())
            .limit(s.rule_candidate_limit)
        )
        candidates = self._session.execute(stmt).scalars().all()
        if not candidates:
            return None

        tokens = description_tokens(target.normalized_description)
        for rule in candidates:
            sim = token_similarity(tokens, description_tokens(rule.normalized_description))
            if sim >= s.similarity_threshold:
                _logger.debug(
                    "classify:rule_match org=%s pattern_id=%s similarity=%.2f",
                    self._organization_id,
                    rule.id,
                    sim,
                )
                return Classification(
                    category_id=rule.category_id,
                    cost_center_id=rule.cost_center_id,
                    suggested_type=rule.transaction_type,
                    confidence=float(rule.confidence),
                    reasoning=(
                        f'Matched rule "{rule.normalized_description}" '
                        f"(similarity {sim:.2f})."
                    ),
                    model_version=_RULE_VERSION,
                )
        return None


__all__ = [
    "Classification",
    "ClassificationProvider",
    "ClassificationTarget",
    "InlinePatternProvider",
    "token_similarity",
]

"""Retrospective suggestion generation.

``KeywordFrequencyProvider.from_history`` builds a keyword model from the
organization's most recent validated, categorized transactions (bounded by
``history_window``). Each keyword of at least ``min_keyword_length`` characters
taken from the stored canonical description counts one occurrence and remembers
the category and cost center of the newest transaction that used it. A
suggestion always keeps the target's own type; direction is never learned.

A target is scored against every keyword found in its accent-folded,
lower-cased raw description: ``occurrences x bonus``, where the bonus applies
when the keyword starts within the first ``positional_bonus_cutoff``
characters. The best keyword sets the suggestion and a confidence of
``min(cap, base + occurrences / scale)``, raised by ``corroboration_bonus``
(still capped) when another matching keyword agrees on the category.

The model is rebuilt on every call so suggestions always reflect the latest
validated history. ``classify_transactions`` writes exactly one suggestion per
existing target, each in its own savepoint; per-row failures are logged and
counted without aborting the batch.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from db.client import session_scope
from db.models.ledger import LiCategory, LiCostCenter, LiSuggestion, LiTransaction
from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.orm import Session

from . import ledger
from .canonical import fold_accents
from .classifiers import Classification, ClassificationProvider, ClassificationTarget
from .logging_setup import get_logger
from .models import (
    ClassifyRequest,
    ClassifyResult,
    SuggestionOut,
    format_validation_error,
)
from .settings import EngineSettings

_MODEL_VERSION = "keyword-frequency-v1"
_NO_MATCH_REASONING = (
    "No historical pattern found; classify manually or validate more transactions "
    "to train the model."
)

_logger = get_logger("ledger_ingest.suggestions")


@dataclass(slots=True)
class KeywordStats:
    count: int
    category_id: int
    cost_center_id: int | None


def _round_confidence(value: float) -> float:
    return float(Decimal(str(value)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def build_keyword_model(
    history: Iterable[tuple[str | None, int, int | None]],
    *,
    min_keyword_length: int = 3,
) -> dict[str, KeywordStats]:
    """Accumulate keyword statistics from ``(normalized, category, cost_center)``.

    ``history`` must be ordered newest first; the first association seen for a
    keyword is the one remembered. Insertion order of the returned dict is the
    order in which keywords were first seen.
    """

    model: dict[str, KeywordStats] = {}
    for normalized, category_id, cost_center_id in history:
        for word in (normalized or "").split():
            if len(word) < min_keyword_length:
                continue
            stats = model.get(word)
            if stats is None:
                model[word] = KeywordStats(1, category_id, cost_center_id)
            else:
                stats.count += 1
    return model


class KeywordFrequencyProvider:
    """Frequency-weighted keyword matching over validated history."""

    version = _MODEL_VERSION

    def __init__(
        self,
        model: Mapping[str, KeywordStats],
        *,
        settings: EngineSettings | None = None,
        category_names: Mapping[int, str] | None = None,
        cost_center_names: Mapping[int, str] | None = None,
    ) -> None:
        self._model = model
        self._settings = settings or EngineSettings()
        self._category_names = dict(category_names or {})
        self._cost_center_names = dict(cost_center_names or {})

    @classmethod
    def from_history(
        cls,
        session: Session,
        organization_id: str,
        *,
        settings: EngineSettings | None = None,
    ) -> KeywordFrequencyProvider:
        s = settings or EngineSettings()
        rows = session.execute(
            select(
                LiTransaction.normalized_description,
                LiTransaction.category_id,
                LiTransaction.cost_center_id,
            )
            .where(
                LiTransaction.organization_id == organization_id,
                LiTransaction.validation_status == "validated",
                LiTransaction.category_id.is_not(None),
            )
            .order_by(LiTransaction.id.desc())
            .limit(s.history_window)
        ).all()
        model = build_keyword_model(
            (tuple(r) for r in rows), min_keyword_length=s.min_keyword_length
        )

        category_names = dict(
            session.execute(
                select(LiCategory.id, LiCategory.name).where(
                    LiCategory.organization_id == organization_id
                )
            ).all()
        )
        cost_center_names = dict(
            session.execute(
                select(LiCostCenter.id, LiCostCenter.name).where(
                    LiCostCenter.organization_id == organization_id
                )
            ).all()
        )
        _logger.debug(
            "classify:model_built org=%s history=%d keywords=%d",
            organization_id,
            len(rows),
            len(model),
        )
        return cls(
            model,
            settings=s,
            category_names=category_names,
            cost_center_names=cost_center_names,
        )

    def classify(self, target: ClassificationTarget) -> Classification:
        s = self._settings
        haystack = fold_accents(target.description or "")

        best_kw: str | None = None
        best_score = -1
        matches: list[KeywordStats] = []
        for kw, stats in self._model.items():
            pos = haystack.find(kw)
            if pos < 0:
                continue
            matches.append(stats)
            bonus = s.positional_bonus if pos < s.positional_bonus_cutoff else 1
            score = stats.count * bonus
            if best_kw is None or score > best_score or (
                score == best_score and stats.count > self._model[best_kw].count
            ):
                best_kw, best_score = kw, score

        if best_kw is None:
            return Classification(
                category_id=None,
                cost_center_id=None,
                suggested_type=target.type,
                confidence=s.no_match_confidence,
                reasoning=_NO_MATCH_REASONING,
                model_version=self.version,
            )

        best = self._model[best_kw]
        confidence = min(s.confidence_cap, s.base_confidence + best.count / s.occurrence_scale)
        agreeing = sum(1 for m in matches if m.category_id == best.category_id)
        if agreeing > 1:
            confidence = min(s.confidence_cap, confidence + s.corroboration_bonus)

        return Classification(
            category_id=best.category_id,
            cost_center_id=best.cost_center_id,
            suggested_type=target.type,
            confidence=_round_confidence(confidence),
            reasoning=self._reasoning(best_kw, best, agreeing),
            model_version=self.version,
        )

    def _reasoning(self, keyword: str, stats: KeywordStats, agreeing: int) -> str:
        category = self._category_names.get(stats.category_id, f"#{stats.category_id}")
        text = (
            f'Based on {stats.count} similar transactions containing "{keyword}". '
            f'Category "{category}"'
        )
        if stats.cost_center_id is not None:
            cost_center = self._cost_center_names.get(
                stats.cost_center_id, f"#{stats.cost_center_id}"
            )
            text += f', cost center "{cost_center}"'
        text += "."
        if agreeing > 1:
            text += f" Corroborated by {agreeing} matching keywords."
        return text


def _to_int_ids(transaction_ids: Sequence[int | str]) -> tuple[list[int], int]:
    ids: list[int] = []
    invalid = 0
    for raw in transaction_ids:
        try:
            ids.append(int(str(raw).strip()))
        except ValueError:
            invalid += 1
    # Preserve request order, drop repeats.
    return list(dict.fromkeys(ids)), invalid


def _target_of(row: LiTransaction) -> ClassificationTarget:
    return ClassificationTarget(
        organization_id=row.organization_id,
        description=row.description,
        normalized_description=row.normalized_description,
        amount=row.amount,
        type=row.type,
        transaction_id=row.id,
    )


def _suggestion_out(row: LiSuggestion) -> SuggestionOut:
    return SuggestionOut(
        id=str(row.id),
        transaction_id=str(row.transaction_id),
        suggested_category_id=(
            str(row.suggested_category_id) if row.suggested_category_id is not None else None
        ),
        suggested_cost_center_id=(
            str(row.suggested_cost_center_id)
            if row.suggested_cost_center_id is not None
            else None
        ),
        suggested_type=row.suggested_type,
        confidence_score=float(row.confidence_score),
        reasoning=row.reasoning,
        model_version=row.model_version,
    )


def classify_transactions(
    session: Session,
    *,
    organization_id: str,
    transaction_ids: Sequence[int | str],
    provider: ClassificationProvider | None = None,
    settings: EngineSettings | None = None,
) -> ClassifyResult:
    """Create one suggestion per existing target transaction.

    ``success`` is False only when none of the ids belong to the organization.
    Ids that are malformed, missing, or whose processing fails are counted in
    ``failed``. Transactions themselves are never modified.
    """

    s = settings or EngineSettings()
    ids, invalid = _to_int_ids(transaction_ids)
    rows = (
        session.execute(
            select(LiTransaction).where(
                LiTransaction.organization_id == organization_id,
                LiTransaction.id.in_(ids),
            )
        )
        .scalars()
        .all()
        if ids
        else []
    )
    by_id = {r.id: r for r in rows}
    missing = len(ids) - len(by_id)
    if not by_id:
        _logger.warning(
            "classify:no_targets org=%s requested=%d", organization_id, len(transaction_ids)
        )
        return ClassifyResult(success=False, failed=invalid + missing)

    active: ClassificationProvider = provider or KeywordFrequencyProvider.from_history(
        session, organization_id, settings=s
    )

    created: list[SuggestionOut] = []
    failed = invalid + missing
    for tx_id in ids:
        row = by_id.get(tx_id)
        if row is None:
            continue
        try:
            with session.begin_nested():
                result = active.classify(_target_of(row))
                if result is None:
                    result = Classification(
                        category_id=None,
                        cost_center_id=None,
                        suggested_type=row.type,
                        confidence=s.no_match_confidence,
                        reasoning=_NO_MATCH_REASONING,
                        model_version=active.version,
                    )
                suggestion = ledger.insert_suggestion(
                    session,
                    organization_id=organization_id,
                    transaction_id=row.id,
                    classification=result,
                )
            created.append(_suggestion_out(suggestion))
        except Exception:
            _logger.exception("classify:row_failed org=%s transaction_id=%s", organization_id, tx_id)
            failed += 1

    _logger.info(
        "classify:done org=%s created=%d failed=%d provider=%s",
        organization_id,
        len(created),
        failed,
        active.version,
    )
    return ClassifyResult(
        success=True,
        suggestions_created=len(created),
        failed=failed,
        suggestions=created,
    )


def process_classify(
    payload: Mapping[str, Any],
    *,
    database_url: str | None = None,
    settings: EngineSettings | None = None,
) -> dict[str, Any]:
    """Wire-level batch classify: validate, run in one session, return camelCase."""

    try:
        request = ClassifyRequest.model_validate(payload)
    except ValidationError as e:
        _logger.warning("classify:malformed reason=%s", format_validation_error(e))
        return ClassifyResult(success=False).to_wire()

    with session_scope(database_url=database_url) as session:
        result = classify_transactions(
            session,
            organization_id=request.organization_id,
            transaction_ids=request.transaction_ids,
            settings=settings or EngineSettings.from_env(),
        )
    return result.to_wire()


__all__ = [
    "KeywordFrequencyProvider",
    "KeywordStats",
    "build_keyword_model",
    "classify_transactions",
    "process_classify",
]

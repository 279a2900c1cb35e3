"""Model-based classification provider (OpenAI Responses API).

Implements the same provider interface as the keyword and inline strategies, so
batch classification can use it without other changes. Returned ids are checked
against the organization's allow-list: an unknown category is dropped and the
confidence lowered, an unknown cost center is dropped. Confidence is capped at
``llm_confidence_cap`` so model output never looks as sure as strong history.
Suggestions are tagged ``llm-<model>`` and only become ledger changes through
acceptance.

No side effects at import time; the client is created lazily. No retries: the
caller owns retry policy, and batch classification counts a failed call as a
failed row.
"""

from __future__ import annotations

import json
from collections.abc import Mapping, Sequence
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from db.models.ledger import LiCategory, LiCostCenter
from openai import OpenAI
from sqlalchemy import select
from sqlalchemy.orm import Session

from . import prompting
from .classifiers import Classification, ClassificationTarget
from .logging_setup import get_logger
from .settings import EngineSettings

_INVALID_ID_PENALTY = 0.3

_logger = get_logger("ledger_ingest.llm")


def _extract_response_json_mapping(resp: Any) -> Mapping[str, Any]:
    """Decode the JSON mapping from a Responses API result.

    Prefer ``resp.output_text``; fall back to ``resp.output[0].content[0].text``.
    Raises ``ValueError`` if no text is found or it is not valid JSON.
    """

    text: str | None = getattr(resp, "output_text", None)
    if not text:
        output = getattr(resp, "output", None) or []
        content = getattr(output[0], "content", None) if output else None
        if content:
            txt_obj = getattr(content[0], "text", None)
            if isinstance(txt_obj, str):
                text = txt_obj
            else:
                maybe_val = getattr(txt_obj, "value", None)
                if isinstance(maybe_val, str):
                    text = maybe_val
    if not text or not isinstance(text, str):
        raise ValueError("Unexpected Responses API shape; unable to locate text output")

    try:
        decoded = json.loads(text)
    except json.JSONDecodeError as e:
        raise ValueError("Model output was not valid JSON per the requested schema") from e
    if not isinstance(decoded, Mapping):
        raise ValueError("Model output must be a JSON object")
    return decoded


def _as_int(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


class OpenAISuggestionProvider:
    """Classify one transaction per Responses API call."""

    def __init__(
        self,
        *,
        categories: Sequence[Mapping[str, Any]],
        cost_centers: Sequence[Mapping[str, Any]] = (),
        client: Any | None = None,
        settings: EngineSettings | None = None,
    ) -> None:
        self._categories = list(categories)
        self._cost_centers = list(cost_centers)
        self._category_ids = {int(c["id"]) for c in self._categories}
        self._cost_center_ids = {int(c["id"]) for c in self._cost_centers}
        self._client = client
        self._settings = settings or EngineSettings()
        self.version = f"llm-{self._settings.llm_model}"

    @classmethod
    def for_organization(
        cls,
        session: Session,
        organization_id: str,
        *,
        client: Any | None = None,
        settings: EngineSettings | None = None,
    ) -> OpenAISuggestionProvider:
        categories = [
            {"id": r.id, "name": r.name, "type": r.type}
            for r in session.execute(
                select(LiCategory.id, LiCategory.name, LiCategory.type).where(
                    LiCategory.organization_id == organization_id
                )
            )
        ]
        cost_centers = [
            {"id": r.id, "name": r.name}
            for r in session.execute(
                select(LiCostCenter.id, LiCostCenter.name).where(
                    LiCostCenter.organization_id == organization_id
                )
            )
        ]
        return cls(
            categories=categories, cost_centers=cost_centers, client=client, settings=settings
        )

    def _get_client(self) -> Any:
        if self._client is None:
            self._client = OpenAI()
        return self._client

    def classify(self, target: ClassificationTarget) -> Classification:
        s = self._settings
        tx_json = prompting.serialize_transaction(
            {
                "description": target.description,
                "amount": f"{target.amount:.2f}",
                "type": target.type,
            }
        )
        resp = self._get_client().responses.create(
            model=s.llm_model,
            instructions=prompting.build_system_instructions(),
            input=prompting.build_user_content(
                tx_json, categories=self._categories, cost_centers=self._cost_centers
            ),
            text={
                "format": prompting.build_response_format(
                    sorted(self._category_ids), sorted(self._cost_center_ids)
                )
            },
        )
        data = _extract_response_json_mapping(resp)

        try:
            confidence = float(data.get("confidence", 0.0))
        except (TypeError, ValueError):
            confidence = 0.0
        category_id = _as_int(data.get("category_id"))
        if category_id is not None and category_id not in self._category_ids:
            _logger.warning(
                "llm:invalid_category transaction_id=%s category_id=%s",
                target.transaction_id,
                category_id,
            )
            category_id = None
            confidence -= _INVALID_ID_PENALTY
        cost_center_id = _as_int(data.get("cost_center_id"))
        if cost_center_id is not None and cost_center_id not in self._cost_center_ids:
            cost_center_id = None

        suggested_type = data.get("type")
        if suggested_type not in prompting.SUGGESTED_TYPES:
            suggested_type = target.type

        bounded = max(0.0, min(s.llm_confidence_cap, confidence))
        reasoning = str(data.get("reasoning") or "").strip() or "Model suggestion."
        return Classification(
            category_id=category_id,
            cost_center_id=cost_center_id,
            suggested_type=suggested_type,
            confidence=float(Decimal(str(bounded)).quantize(Decimal("0.01"), ROUND_HALF_UP)),
            reasoning=reasoning,
            model_version=self.version,
            source="ai",
        )


__all__ = ["OpenAISuggestionProvider"]

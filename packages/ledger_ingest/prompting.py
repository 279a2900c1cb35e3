"""Prompt construction for the model-based classification provider.

This module builds:
- a deterministic JSON view of one transaction with a fixed field order;
- the system instructions and user content for the Responses API call;
- the strict ``text.format`` JSON Schema restricted to the organization's
  category and cost-center ids.
"""

from __future__ import annotations

import json
from collections.abc import Mapping, Sequence
from typing import Any

from openai.types.responses.response_format_text_json_schema_config_param import (
    ResponseFormatTextJSONSchemaConfigParam,
)

BEGIN = "BEGIN_TRANSACTION_JSON"
END = "END_TRANSACTION_JSON"

TRANSACTION_FIELD_ORDER: tuple[str, ...] = ("description", "amount", "type")
SUGGESTED_TYPES: tuple[str, ...] = ("income", "expense", "transfer", "investment", "redemption")


def serialize_transaction(item: Mapping[str, Any]) -> str:
    """Serialize one transaction with the fixed field order ``description, amount, type``."""

    out = {key: item.get(key) for key in TRANSACTION_FIELD_ORDER}
    return json.dumps(out, ensure_ascii=False)


def build_system_instructions() -> str:
    return (
        "You classify bank transactions for a small-business and personal finance "
        "ledger. Descriptions are often Portuguese, abbreviated and noisy. Pick at most "
        "one category and one cost center from the provided lists, by id. Use null when "
        "nothing fits. Never invent ids. Output JSON only that conforms to the schema."
    )


def _render_options(title: str, options: Sequence[Mapping[str, Any]]) -> list[str]:
    lines = [f"\n{title}:"]
    if not options:
        lines.append("  (none)")
    for opt in sorted(options, key=lambda o: (str(o.get("name") or ""), int(o["id"]))):
        kind = opt.get("type")
        suffix = f" [{kind}]" if kind else ""
        lines.append(f"  - {opt['id']}: {opt.get('name')}{suffix}")
    return lines


def build_user_content(
    transaction_json: str,
    *,
    categories: Sequence[Mapping[str, Any]],
    cost_centers: Sequence[Mapping[str, Any]],
) -> str:
    """Embed the option lists and the transaction between BEGIN_/END_ markers."""

    lines: list[str] = ["Classify the transaction below."]
    lines += _render_options("Categories (id: name [type])", categories)
    lines += _render_options("Cost centers (id: name)", cost_centers)
    lines += [
        "",
        "Report a confidence in [0,1] and a one-sentence reasoning.",
        BEGIN,
        transaction_json,
        END,
    ]
    return "\n".join(lines)


def build_response_format(
    category_ids: Sequence[int],
    cost_center_ids: Sequence[int],
) -> ResponseFormatTextJSONSchemaConfigParam:
    """Return the strict JSON Schema ``text.format`` object.

    ``category_id``/``cost_center_id`` are enums of the allowed ids plus null.
    """

    result: ResponseFormatTextJSONSchemaConfigParam = {
        "type": "json_schema",
        "name": "transaction_classification",
        "schema": {
            "type": "object",
            "properties": {
                "category_id": {
                    "type": ["integer", "null"],
                    "enum": [*category_ids, None],
                },
                "cost_center_id": {
                    "type": ["integer", "null"],
                    "enum": [*cost_center_ids, None],
                },
                "type": {"type": "string", "enum": list(SUGGESTED_TYPES)},
                "confidence": {"type": "number", "minimum": 0, "maximum": 1},
                "reasoning": {"type": "string"},
            },
            "required": ["category_id", "cost_center_id", "type", "confidence", "reasoning"],
            "additionalProperties": False,
        },
        "strict": True,
    }
    return result


__all__ = [
    "BEGIN",
    "END",
    "build_response_format",
    "build_system_instructions",
    "build_user_content",
    "serialize_transaction",
]

"""Wire-level DTOs for the ingest and batch-classify operations.

Payloads accept the camelCase names used by upstream callers (``externalId``,
``accountRef``, ``creditDebitIndicator``, ``organizationId``,
``transactionIds``) as well as the snake_case Python names. Results serialize
back to camelCase via :meth:`to_wire`.
"""

from __future__ import annotations

import datetime as dt
from decimal import Decimal
from typing import Any, Literal

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from .canonical import canonical_date, parse_amount
from .errors import MalformedInput

type IngestStatus = Literal["success", "skipped", "error"]
type TransactionSource = Literal["open_finance", "webhook", "file_import", "manual"]


class _WireModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
        extra="ignore",
    )

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class IngestEvent(_WireModel):
    """A single transaction event from an upstream source.

    Exactly one of ``account_ref`` (upstream reference, resolved through the
    account directory) or ``account_id`` (an already-local account, used by
    file imports) must be present.
    """

    organization_id: str = Field(min_length=1)
    amount: Decimal
    description: str = Field(min_length=1)
    date: dt.date
    account_ref: str | None = None
    account_id: int | None = None
    external_id: str | None = None
    credit_debit_indicator: Literal["CREDIT", "DEBIT"] | None = None
    source: TransactionSource = "open_finance"
    import_batch_id: int | None = None

    @field_validator("amount", mode="before")
    @classmethod
    def _parse_amount(cls, v: Any) -> Decimal:
        try:
            return parse_amount(v)
        except MalformedInput as e:
            raise ValueError(str(e)) from e

    @field_validator("date", mode="before")
    @classmethod
    def _parse_date(cls, v: Any) -> dt.date:
        try:
            return canonical_date(v)
        except MalformedInput as e:
            raise ValueError(str(e)) from e

    @field_validator("credit_debit_indicator", mode="before")
    @classmethod
    def _upper_indicator(cls, v: Any) -> Any:
        if isinstance(v, str):
            v = v.strip().upper()
            return v or None
        return v

    @field_validator("external_id", "account_ref", mode="after")
    @classmethod
    def _blank_to_none(cls, v: str | None) -> str | None:
        return v if v else None

    @model_validator(mode="after")
    def _one_account_reference(self) -> IngestEvent:
        if self.account_ref is None and self.account_id is None:
            raise ValueError("accountRef is required")
        return self


class IngestResult(_WireModel):
    status: IngestStatus
    transaction_id: str | None = None
    reason: str | None = None


class ClassifyRequest(_WireModel):
    organization_id: str = Field(min_length=1)
    transaction_ids: list[str] = Field(min_length=1)

    @field_validator("transaction_ids", mode="before")
    @classmethod
    def _ids_as_strings(cls, v: Any) -> Any:
        if isinstance(v, list | tuple):
            return [str(item) for item in v]
        return v


class SuggestionOut(_WireModel):
    id: str
    transaction_id: str
    suggested_category_id: str | None = None
    suggested_cost_center_id: str | None = None
    suggested_type: str | None = None
    confidence_score: float
    reasoning: str
    model_version: str


class ClassifyResult(_WireModel):
    success: bool
    suggestions_created: int = 0
    failed: int = 0
    suggestions: list[SuggestionOut] = Field(default_factory=list)

    def to_wire(self) -> dict[str, Any]:
        # Keep empty lists and zero counts on the wire.
        return self.model_dump(mode="json", by_alias=True)


def format_validation_error(exc: ValidationError) -> str:
    """Condense a pydantic ``ValidationError`` into a single reason string."""

    parts: list[str] = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()) if p != "__root__")
        msg = str(err.get("msg", "invalid"))
        parts.append(f"{loc}: {msg}" if loc else msg)
    return "; ".join(parts) or "invalid payload"


__all__ = [
    "ClassifyRequest",
    "ClassifyResult",
    "IngestEvent",
    "IngestResult",
    "IngestStatus",
    "SuggestionOut",
    "TransactionSource",
    "format_validation_error",
]

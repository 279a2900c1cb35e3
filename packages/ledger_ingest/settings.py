"""Tunables and data tables for the engine.

``EngineSettings`` carries every heuristic constant used by the classifiers.
The defaults reproduce the behaviour of the production system; none of them
were fitted on labelled data, so change them deliberately and per deployment
through ``LEDGER_INGEST_<FIELD>`` environment variables.

Phrase and keyword tables (invoice-payment phrases, canonicalization stopwords,
CSV header aliases) live in ``data/phrases.json`` next to this module.
``LEDGER_INGEST_PHRASES_FILE`` points at a replacement file.
"""

from __future__ import annotations

import json
import os
from collections.abc import Mapping
from functools import lru_cache
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

_ENV_PREFIX = "LEDGER_INGEST_"
_PHRASES_ENV = "LEDGER_INGEST_PHRASES_FILE"
_DEFAULT_PHRASES_FILE = Path(__file__).resolve().parent / "data" / "phrases.json"


class EngineSettings(BaseModel):
    """Heuristic constants for inline and retrospective classification."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    # Inline rule matching
    similarity_threshold: float = Field(0.80, ge=0, le=1)
    rule_confidence_floor: float = Field(0.70, ge=0, le=1)
    rule_candidate_limit: int = Field(20, gt=0)

    # Retrospective keyword model
    history_window: int = Field(1000, gt=0)
    min_keyword_length: int = Field(3, gt=0)
    positional_bonus_cutoff: int = Field(10, ge=0)
    positional_bonus: int = Field(2, ge=1)
    base_confidence: float = Field(0.5, ge=0, le=1)
    occurrence_scale: float = Field(100, gt=0)
    corroboration_bonus: float = Field(0.10, ge=0, le=1)
    confidence_cap: float = Field(0.95, ge=0, le=1)
    no_match_confidence: float = Field(0.3, ge=0, le=1)

    # Model-based provider
    llm_confidence_cap: float = Field(0.75, ge=0, le=1)
    llm_model: str = "gpt-5"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> EngineSettings:
        """Build settings from defaults overlaid with ``LEDGER_INGEST_*`` variables."""

        env = os.environ if environ is None else environ
        overrides: dict[str, Any] = {}
        for name in cls.model_fields:
            raw = env.get(_ENV_PREFIX + name.upper())
            if raw is not None and raw.strip():
                overrides[name] = raw.strip()
        # Values arrive as strings; pydantic's lax mode coerces them.
        return cls.model_validate(overrides)


class CsvFieldAliases(BaseModel):
    model_config = ConfigDict(extra="forbid")

    date: tuple[str, ...]
    description: tuple[str, ...]
    amount: tuple[str, ...]


class PhraseTables(BaseModel):
    """Externally configurable keyword data used by the canonicalizer and parsers."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    invoice_payment_phrases: tuple[str, ...]
    canonical_stopwords: tuple[str, ...]
    csv_field_aliases: CsvFieldAliases

    @field_validator("invoice_payment_phrases", "canonical_stopwords")
    @classmethod
    def _lower_non_empty(cls, v: tuple[str, ...]) -> tuple[str, ...]:
        items = tuple(s.strip().lower() for s in v if s and s.strip())
        if not items:
            raise ValueError("phrase table must contain at least one entry")
        return items


@lru_cache(maxsize=8)
def _load_phrase_file(path: Path) -> PhraseTables:
    with path.open("r", encoding="utf-8") as f:
        data = json.load(f)
    return PhraseTables.model_validate(data)


def load_phrase_tables(path: str | os.PathLike[str] | None = None) -> PhraseTables:
    """Return the phrase tables from ``path``, the env override, or the bundled file."""

    if path is None:
        env_path = os.getenv(_PHRASES_ENV)
        path = env_path if env_path else _DEFAULT_PHRASES_FILE
    return _load_phrase_file(Path(path).resolve())


__all__ = [
    "CsvFieldAliases",
    "EngineSettings",
    "PhraseTables",
    "load_phrase_tables",
]

from __future__ import annotations

import json
from pathlib import Path

import pytest
from pydantic import ValidationError

from ledger_ingest.canonical import normalize_description
from ledger_ingest.settings import EngineSettings, load_phrase_tables


def test_defaults() -> None:
    s = EngineSettings()
    assert s.similarity_threshold == 0.80
    assert s.rule_confidence_floor == 0.70
    assert s.rule_candidate_limit == 20
    assert s.history_window == 1000
    assert s.confidence_cap == 0.95
    assert s.no_match_confidence == 0.3
    assert s.llm_confidence_cap == 0.75


def test_from_env_overlays_prefixed_variables() -> None:
    s = EngineSettings.from_env(
        {
            "LEDGER_INGEST_SIMILARITY_THRESHOLD": "0.9",
            "LEDGER_INGEST_HISTORY_WINDOW": " 50 ",
            "LEDGER_INGEST_LLM_MODEL": "gpt-5-mini",
            "LEDGER_INGEST_CONFIDENCE_CAP": "",
            "UNRELATED": "1",
        }
    )
    assert s.similarity_threshold == 0.9
    assert s.history_window == 50
    assert s.llm_model == "gpt-5-mini"
    assert s.confidence_cap == 0.95


def test_from_env_reads_process_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("LEDGER_INGEST_POSITIONAL_BONUS", "3")
    assert EngineSettings.from_env().positional_bonus == 3


@pytest.mark.parametrize(
    "env",
    [
        {"LEDGER_INGEST_SIMILARITY_THRESHOLD": "1.5"},
        {"LEDGER_INGEST_HISTORY_WINDOW": "many"},
    ],
)
def test_from_env_rejects_invalid_values(env: dict[str, str]) -> None:
    with pytest.raises(ValidationError):
        EngineSettings.from_env(env)


def test_settings_are_frozen() -> None:
    s = EngineSettings()
    with pytest.raises(ValidationError):
        s.similarity_threshold = 0.1  # type: ignore[misc]


def test_bundled_phrase_tables() -> None:
    tables = load_phrase_tables()
    assert "pagamento fatura" in tables.invoice_payment_phrases
    assert "pix" in tables.canonical_stopwords
    assert "valor" in tables.csv_field_aliases.amount


def test_phrase_file_override(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    path = tmp_path / "phrases.json"
    path.write_text(
        json.dumps(
            {
                "invoice_payment_phrases": ["Quitacao Cartao"],
                "canonical_stopwords": ["compra"],
                "csv_field_aliases": {
                    "date": ["data"],
                    "description": ["descri"],
                    "amount": ["valor"],
                },
            }
        ),
        encoding="utf-8",
    )
    monkeypatch.setenv("LEDGER_INGEST_PHRASES_FILE", str(path))

    tables = load_phrase_tables()
    assert tables.invoice_payment_phrases == ("quitacao cartao",)
    assert normalize_description("COMPRA PIX LOJA") == "pix loja"


def test_empty_phrase_table_is_rejected(tmp_path: Path) -> None:
    path = tmp_path / "bad.json"
    path.write_text(
        json.dumps(
            {
                "invoice_payment_phrases": [" "],
                "canonical_stopwords": ["pix"],
                "csv_field_aliases": {"date": [], "description": [], "amount": []},
            }
        ),
        encoding="utf-8",
    )
    with pytest.raises(ValidationError):
        load_phrase_tables(path)

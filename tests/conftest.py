"""Pytest configuration: import paths and per-test SQLite databases.

Every test that touches storage gets its own file-backed SQLite database under
``tmp_path``; the cached engine for that URL is disposed at teardown so
databases never leak between tests.
"""

# ruff: noqa: E402, I001
from __future__ import annotations

import os
import sys
from collections.abc import Iterator
from pathlib import Path

import pytest

# Make sure the workspace `packages/` and `libs/db/src` dirs are on sys.path so
# `ledger_ingest`, `db` and `tests.helpers` are importable without installation.
_ROOT = Path(__file__).resolve().parents[1]
sys.path[:0] = [
    p
    for p in [str(_ROOT / "packages"), str(_ROOT / "libs" / "db" / "src"), str(_ROOT)]
    if p not in sys.path
]

from db.client import dispose_engine, get_session  # noqa: E402
from sqlalchemy.orm import Session  # noqa: E402

from tests.helpers.db import bootstrap_sqlite_db  # noqa: E402


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep host ``LEDGER_INGEST_*`` and ``DATABASE_URL`` settings out of tests."""

    for name in list(os.environ):
        if name.startswith("LEDGER_INGEST_") or name == "DATABASE_URL":
            monkeypatch.delenv(name, raising=False)


@pytest.fixture()
def db_url(tmp_path: Path) -> Iterator[str]:
    url = bootstrap_sqlite_db(tmp_path / "ledger.sqlite3")
    yield url
    dispose_engine(database_url=url)


@pytest.fixture()
def session(db_url: str) -> Iterator[Session]:
    s = get_session(database_url=db_url)
    try:
        yield s
    finally:
        s.rollback()
        s.close()

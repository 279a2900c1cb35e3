# ruff: noqa: I001
"""CLI for the ``ledger_ingest`` package.

A Typer console interface over the engine's operations. The root callback
loads a local ``.env`` (``DATABASE_URL``, ``OPENAI_API_KEY``, ``LEDGER_INGEST_*``)
with ``python-dotenv`` and configures package logging before any command runs.
Business logic lives in the engine modules; commands only parse arguments,
open a session, and render results with ``rich``.
"""

from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Annotated, Any

import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.table import Table
from typer.models import OptionInfo

from .logging_setup import configure_logging

console = Console()
err_console = Console(stderr=True)


# ---- Small module-level helpers ---------------------------------------------


def _read_events(source: str) -> list[dict[str, Any]]:
    """Read one JSON event object, or a list of them, from a path or ``-`` (stdin)."""

    raw = sys.stdin.read() if source == "-" else Path(source).read_text(encoding="utf-8")
    data = json.loads(raw)
    if isinstance(data, dict):
        return [data]
    if isinstance(data, list) and all(isinstance(d, dict) for d in data):
        return data
    raise ValueError("expected a JSON object or a list of JSON objects")


def _fail(message: str) -> typer.Exit:
    err_console.print(f"[red]Error:[/red] {message}")
    return typer.Exit(1)


# ---- Typer-based console interface -------------------------------------------


app = typer.Typer(
    no_args_is_help=True,
    add_completion=False,
    help=(
        "Ingest, deduplicate and classify ledger transactions. "
        "Loads DATABASE_URL and OPENAI_API_KEY from a local .env before running."
    ),
)

# Module-level option object to satisfy ruff B008 (no calls in parameter defaults).
ORGANIZATION_OPTION: OptionInfo = typer.Option(
    ..., "--organization-id", "-o", help="Trusted organization id."
)


@app.command("init-db")
def init_db_cmd(
    database_url: str | None = typer.Option(
        None, help="Override DATABASE_URL (falls back to env var)."
    ),
) -> None:
    """Create all ledger tables from the ORM metadata (development databases)."""

    from db import Base
    from db.client import get_engine

    Base.metadata.create_all(bind=get_engine(database_url=database_url))
    console.print("[green]Ledger tables are ready.[/green]")


@app.command("ingest")
def ingest_cmd(
    source: str = typer.Argument(
        "-", help="Path to a JSON event (or list of events); '-' reads stdin."
    ),
    database_url: str | None = typer.Option(
        None, help="Override DATABASE_URL (falls back to env var)."
    ),
) -> None:
    """Run events through the ingest operation, one transaction per event."""

    from .engine import process_event
    from .errors import PersistenceError

    try:
        events = _read_events(source)
    except (OSError, ValueError) as e:
        raise _fail(f"cannot read events from {source!r}: {e}") from e

    table = Table("#", "status", "transactionId", "reason")
    failed = False
    for i, payload in enumerate(events):
        try:
            result = process_event(payload, database_url=database_url)
        except PersistenceError as e:
            failed = True
            table.add_row(str(i), "[red]failed[/red]", "", str(e))
            continue
        table.add_row(
            str(i),
            result["status"],
            result.get("transactionId", ""),
            result.get("reason", ""),
        )
    console.print(table)
    if failed:
        raise typer.Exit(1)


@app.command("import-file")
def import_file_cmd(
    path: Path = typer.Argument(..., help="OFX/QFX or CSV statement file.", dir_okay=False),
    *,
    organization_id: Annotated[str, ORGANIZATION_OPTION],
    account_id: int = typer.Option(..., "--account-id", help="Local ledger account id."),
    file_type: str | None = typer.Option(
        None, "--file-type", help="Force 'ofx' or 'csv' instead of using the extension."
    ),
    database_url: str | None = typer.Option(
        None, help="Override DATABASE_URL (falls back to env var)."
    ),
) -> None:
    """Import a statement file and queue its rows for classification."""

    from .errors import AccountResolutionFailure, MalformedInput
    from .imports import import_file

    if file_type is not None and file_type not in ("ofx", "csv"):
        raise _fail("--file-type must be 'ofx' or 'csv'")
    try:
        summary = import_file(
            path,
            organization_id=organization_id,
            account_id=account_id,
            database_url=database_url,
            file_type=file_type,  # type: ignore[arg-type]
        )
    except FileNotFoundError as e:
        raise _fail(f"file not found: {path}") from e
    except (AccountResolutionFailure, MalformedInput) as e:
        raise _fail(str(e)) from e

    table = Table("batch", "status", "total", "imported", "duplicates", "errors", "classified")
    table.add_row(
        str(summary.batch_id),
        summary.status,
        str(summary.total),
        str(summary.imported),
        str(summary.duplicates),
        str(summary.errors),
        str(summary.classified),
    )
    console.print(table)
    if summary.status == "failed":
        raise _fail(summary.error_message or "import failed")


@app.command("classify")
def classify_cmd(
    transaction_ids: list[str] = typer.Argument(..., help="Transaction ids to classify."),
    *,
    organization_id: Annotated[str, ORGANIZATION_OPTION],
    use_llm: bool = typer.Option(
        False, "--use-llm", help="Use the OpenAI provider instead of keyword history."
    ),
    database_url: str | None = typer.Option(
        None, help="Override DATABASE_URL (falls back to env var)."
    ),
) -> None:
    """Generate suggestions for pending transactions."""

    from db.client import session_scope

    from .settings import EngineSettings
    from .suggestions import classify_transactions

    settings = EngineSettings.from_env()
    with session_scope(database_url=database_url) as session:
        provider = None
        if use_llm:
            from .llm import OpenAISuggestionProvider

            provider = OpenAISuggestionProvider.for_organization(
                session, organization_id, settings=settings
            )
        result = classify_transactions(
            session,
            organization_id=organization_id,
            transaction_ids=transaction_ids,
            provider=provider,
            settings=settings,
        )

    table = Table("suggestion", "transaction", "category", "confidence", "reasoning")
    for s in result.suggestions:
        table.add_row(
            s.id,
            s.transaction_id,
            s.suggested_category_id or "-",
            f"{s.confidence_score:.2f}",
            s.reasoning,
        )
    console.print(table)
    console.print(f"created={result.suggestions_created} failed={result.failed}")
    if not result.success:
        raise _fail("none of the transaction ids exist in this organization")


@app.command("accept")
def accept_cmd(
    suggestion_id: int = typer.Argument(..., help="Suggestion id to accept."),
    accepted_by: str | None = typer.Option(None, "--by", help="Reviewer identifier."),
    database_url: str | None = typer.Option(
        None, help="Override DATABASE_URL (falls back to env var)."
    ),
) -> None:
    """Apply a suggestion to its transaction and mark it validated."""

    from db.client import session_scope

    from .review import accept_suggestion

    try:
        with session_scope(database_url=database_url) as session:
            tx = accept_suggestion(session, suggestion_id, accepted_by=accepted_by)
            tx_id, category_id = tx.id, tx.category_id
    except ValueError as e:
        raise _fail(str(e)) from e
    console.print(f"transaction {tx_id} validated with category {category_id}")


@app.command("reject")
def reject_cmd(
    suggestion_id: int = typer.Argument(..., help="Suggestion id to reject."),
    rejected_by: str | None = typer.Option(None, "--by", help="Reviewer identifier."),
    database_url: str | None = typer.Option(
        None, help="Override DATABASE_URL (falls back to env var)."
    ),
) -> None:
    """Reject a suggestion; the transaction stays pending validation."""

    from db.client import session_scope

    from .review import reject_suggestion

    try:
        with session_scope(database_url=database_url) as session:
            reject_suggestion(session, suggestion_id, rejected_by=rejected_by)
    except ValueError as e:
        raise _fail(str(e)) from e
    console.print(f"suggestion {suggestion_id} rejected")


@app.command("link-account")
def link_account_cmd(
    external_ref: str = typer.Argument(..., help="Upstream account reference."),
    *,
    organization_id: Annotated[str, ORGANIZATION_OPTION],
    account_id: int = typer.Option(..., "--account-id", help="Local ledger account id."),
    provider: str | None = typer.Option(None, "--provider", help="Upstream provider name."),
    database_url: str | None = typer.Option(
        None, help="Override DATABASE_URL (falls back to env var)."
    ),
) -> None:
    """Map an upstream account reference to a local account."""

    from db.client import session_scope

    from .accounts import link_account
    from .errors import AccountResolutionFailure

    try:
        with session_scope(database_url=database_url) as session:
            link_account(
                session,
                organization_id=organization_id,
                external_ref=external_ref,
                local_account_id=account_id,
                provider=provider,
            )
    except (AccountResolutionFailure, ValueError) as e:
        raise _fail(str(e)) from e
    console.print(f"{external_ref} -> account {account_id}")


@app.callback()
def _root() -> None:
    """Load ``.env`` from the working directory and configure logging."""

    load_dotenv(dotenv_path=Path.cwd() / ".env", override=False)
    configure_logging()


if __name__ == "__main__":  # pragma: no cover - exercised via console script
    app()

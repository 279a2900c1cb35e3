"""Statement file imports (OFX and CSV).

Rows from a statement go through :func:`ledger_ingest.engine.ingest_transaction`
exactly like live events (``source="file_import"``, explicit local account, no
external id), so a file import and a bank sync of the same period dedupe
against each other. The ``li_import_batches`` row records the totals, the
statement period and the outcome. Imported transactions are passed to the
suggestion generator right away; a failure there never fails the import.
"""

from __future__ import annotations

import csv
import io
import re
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from os import PathLike
from pathlib import Path
from typing import Literal, NamedTuple

from db.client import session_scope
from db.models.ledger import LiImportBatch
from ofxparse import OfxParser
from ofxparse.ofxparse import OfxParserException
from sqlalchemy.orm import Session

from .accounts import require_account
from .canonical import canonical_date, fold_accents, parse_amount
from .engine import ingest_transaction
from .errors import MalformedInput, PersistenceError
from .logging_setup import get_logger
from .models import IngestEvent
from .settings import CsvFieldAliases, EngineSettings, load_phrase_tables
from .suggestions import classify_transactions

type FileType = Literal["ofx", "csv"]

_MAX_DESCRIPTION = 255
_DEFAULT_DESCRIPTION = "Sem descricao"
_NOT_AMOUNT_RE = re.compile(r"[^\d,.\-]")
# Strip DOCTYPE declarations before handing OFX/XML to the parser (XXE).
_DOCTYPE_RE = re.compile(rb"<!DOCTYPE\s+[^>]*>", re.IGNORECASE | re.DOTALL)
_EXTENSIONS: dict[str, FileType] = {".ofx": "ofx", ".qfx": "ofx", ".csv": "csv"}

_logger = get_logger("ledger_ingest.imports")


class StatementParseError(MalformedInput):
    """The statement file could not be parsed at all."""


@dataclass(frozen=True, slots=True)
class StatementRow:
    date: date
    description: str
    amount: Decimal


class ParsedStatement(NamedTuple):
    rows: list[StatementRow]
    malformed: int


@dataclass(frozen=True, slots=True)
class ImportSummary:
    batch_id: int
    status: str
    total: int
    imported: int
    duplicates: int
    errors: int
    classified: int
    period_start: date | None
    period_end: date | None
    error_message: str | None = None


def parse_statement_amount(raw: str) -> Decimal:
    """Parse ``-45.00``, ``1.234,56``, ``1,234.56`` or ``R$ 45,00`` into a signed Decimal."""

    s = _NOT_AMOUNT_RE.sub("", raw or "")
    if "," in s and "." in s:
        if s.rfind(",") > s.rfind("."):
            s = s.replace(".", "").replace(",", ".")
        else:
            s = s.replace(",", "")
    elif "," in s:
        s = s.replace(",", ".")
    if not s or s in {"-", "."}:
        raise MalformedInput(f"amount is not numeric: {raw!r}")
    return parse_amount(s)


def _find_column(columns: Sequence[str], aliases: Sequence[str]) -> int:
    for i, col in enumerate(columns):
        if any(alias in col for alias in aliases):
            return i
    return -1


def parse_csv(text: str, *, aliases: CsvFieldAliases | None = None) -> ParsedStatement:
    """Parse a bank CSV export, sniffing separator and columns from the header.

    The separator is ``;`` when the header contains one, else ``,``. Rows that
    cannot be parsed are counted in ``malformed``; zero-amount rows are dropped.
    """

    table = aliases or load_phrase_tables().csv_field_aliases
    lines = [line for line in text.splitlines() if line.strip()]
    if len(lines) < 2:
        raise StatementParseError("CSV has no data rows")

    separator = ";" if ";" in lines[0] else ","
    reader = csv.reader(lines, delimiter=separator)
    header = [fold_accents(c.strip().strip('"')) for c in next(reader)]
    date_idx = _find_column(header, table.date)
    desc_idx = _find_column(header, table.description)
    amount_idx = _find_column(header, table.amount)
    if date_idx < 0 or amount_idx < 0:
        raise StatementParseError(f"CSV header has no date/amount column: {header!r}")

    rows: list[StatementRow] = []
    malformed = 0
    for lineno, values in enumerate(reader, start=2):
        cells = [v.strip() for v in values]
        try:
            if max(date_idx, amount_idx) >= len(cells):
                raise MalformedInput("row is shorter than the header")
            txn_date = canonical_date(cells[date_idx])
            amount = parse_statement_amount(cells[amount_idx])
        except MalformedInput as e:
            _logger.warning("import:csv_row_skipped line=%d reason=%s", lineno, e)
            malformed += 1
            continue
        if amount == 0:
            continue
        description = cells[desc_idx] if 0 <= desc_idx < len(cells) else ""
        rows.append(
            StatementRow(
                date=txn_date,
                description=(description or _DEFAULT_DESCRIPTION)[:_MAX_DESCRIPTION],
                amount=amount,
            )
        )
    return ParsedStatement(rows, malformed)


def parse_ofx(data: bytes) -> ParsedStatement:
    """Parse an OFX/QFX statement with ``ofxparse``; description is memo, else payee."""

    sanitized = _DOCTYPE_RE.sub(b"", data)
    try:
        ofx = OfxParser.parse(io.BytesIO(sanitized))
    except OfxParserException as e:
        raise StatementParseError(f"invalid OFX file: {e}") from e
    except (ValueError, TypeError, AttributeError) as e:
        raise StatementParseError(f"failed to parse OFX file: {e}") from e

    accounts = list(getattr(ofx, "accounts", None) or [])
    if not accounts and getattr(ofx, "account", None) is not None:
        accounts = [ofx.account]

    rows: list[StatementRow] = []
    malformed = 0
    for account in accounts:
        statement = getattr(account, "statement", None)
        for txn in getattr(statement, "transactions", None) or []:
            try:
                txn_date = canonical_date(txn.date)
                amount = parse_amount(txn.amount)
            except MalformedInput as e:
                _logger.warning("import:ofx_row_skipped id=%s reason=%s", getattr(txn, "id", None), e)
                malformed += 1
                continue
            if amount == 0:
                continue
            description = (txn.memo or "").strip() or (txn.payee or "").strip()
            rows.append(
                StatementRow(
                    date=txn_date,
                    description=(description or _DEFAULT_DESCRIPTION)[:_MAX_DESCRIPTION],
                    amount=amount,
                )
            )
    return ParsedStatement(rows, malformed)


def _decode(content: bytes) -> str:
    try:
        return content.decode("utf-8-sig")
    except UnicodeDecodeError:
        # Brazilian bank exports are frequently Latin-1.
        return content.decode("latin-1")


def parse_statement(content: bytes, file_type: FileType) -> ParsedStatement:
    if file_type == "ofx":
        return parse_ofx(content)
    if file_type == "csv":
        return parse_csv(_decode(content))
    raise StatementParseError(f"unsupported file type: {file_type!r}")


def _fail_batch(batch: LiImportBatch, message: str) -> None:
    batch.status = "failed"
    batch.error_message = message


def _summary(batch: LiImportBatch) -> ImportSummary:
    return ImportSummary(
        batch_id=batch.id,
        status=batch.status,
        total=batch.total_transactions,
        imported=batch.imported_count,
        duplicates=batch.duplicate_count,
        errors=batch.error_count,
        classified=batch.classified_count,
        period_start=batch.period_start,
        period_end=batch.period_end,
        error_message=batch.error_message,
    )


def import_statement(
    session: Session,
    *,
    organization_id: str,
    account_id: int,
    content: bytes,
    file_type: FileType,
    settings: EngineSettings | None = None,
    classify: bool = True,
) -> ImportSummary:
    """Import a statement into ``account_id`` and return the batch summary.

    Raises :class:`AccountResolutionFailure` before creating a batch when the
    account is not an active account of the organization.
    """

    if file_type not in ("ofx", "csv"):
        raise StatementParseError(f"unsupported file type: {file_type!r}")
    s = settings or EngineSettings()
    require_account(session, organization_id, account_id)

    batch = LiImportBatch(
        organization_id=organization_id,
        account_id=account_id,
        file_type=file_type,
        status="processing",
        total_transactions=0,
        imported_count=0,
        duplicate_count=0,
        error_count=0,
        classified_count=0,
    )
    session.add(batch)
    session.flush()
    _logger.info(
        "import:started batch_id=%s org=%s file_type=%s", batch.id, organization_id, file_type
    )

    try:
        parsed = parse_statement(content, file_type)
    except StatementParseError as e:
        _fail_batch(batch, str(e))
        session.flush()
        _logger.warning("import:failed batch_id=%s reason=%s", batch.id, e)
        return _summary(batch)

    if not parsed.rows:
        _fail_batch(batch, "no transactions found in file")
        batch.error_count = parsed.malformed
        session.flush()
        _logger.warning("import:failed batch_id=%s reason=empty", batch.id)
        return _summary(batch)

    imported_ids: list[int] = []
    duplicates = 0
    errors = parsed.malformed
    for row in parsed.rows:
        event = IngestEvent(
            organization_id=organization_id,
            account_id=account_id,
            amount=row.amount,
            description=row.description,
            date=row.date,
            source="file_import",
            import_batch_id=batch.id,
        )
        try:
            result = ingest_transaction(session, event, settings=s)
        except PersistenceError:
            _logger.exception("import:row_failed batch_id=%s date=%s", batch.id, row.date)
            errors += 1
            continue
        if result.status == "success" and result.transaction_id is not None:
            imported_ids.append(int(result.transaction_id))
        elif result.status == "skipped":
            duplicates += 1
        else:
            errors += 1

    dates = [r.date for r in parsed.rows]
    batch.status = "awaiting_validation"
    batch.total_transactions = len(parsed.rows)
    batch.imported_count = len(imported_ids)
    batch.duplicate_count = duplicates
    batch.error_count = errors
    batch.period_start = min(dates)
    batch.period_end = max(dates)
    session.flush()

    if classify and imported_ids:
        try:
            with session.begin_nested():
                outcome = classify_transactions(
                    session,
                    organization_id=organization_id,
                    transaction_ids=imported_ids,
                    settings=s,
                )
            batch.classified_count = outcome.suggestions_created
            session.flush()
        except Exception:
            _logger.exception("import:classify_failed batch_id=%s", batch.id)

    _logger.info(
        "import:done batch_id=%s total=%d imported=%d duplicates=%d errors=%d classified=%d",
        batch.id,
        batch.total_transactions,
        batch.imported_count,
        batch.duplicate_count,
        batch.error_count,
        batch.classified_count,
    )
    return _summary(batch)


def file_type_for(path: str | PathLike[str]) -> FileType:
    suffix = Path(path).suffix.lower()
    try:
        return _EXTENSIONS[suffix]
    except KeyError:
        raise StatementParseError(f"unsupported statement extension: {suffix or '<none>'}") from None


def import_file(
    path: str | PathLike[str],
    *,
    organization_id: str,
    account_id: int,
    database_url: str | None = None,
    file_type: FileType | None = None,
) -> ImportSummary:
    """Read ``path`` and import it in its own transaction."""

    kind = file_type or file_type_for(path)
    content = Path(path).read_bytes()
    with session_scope(database_url=database_url) as session:
        return import_statement(
            session,
            organization_id=organization_id,
            account_id=account_id,
            content=content,
            file_type=kind,
            settings=EngineSettings.from_env(),
        )


__all__ = [
    "ImportSummary",
    "ParsedStatement",
    "StatementParseError",
    "StatementRow",
    "file_type_for",
    "import_file",
    "import_statement",
    "parse_csv",
    "parse_ofx",
    "parse_statement",
    "parse_statement_amount",
]

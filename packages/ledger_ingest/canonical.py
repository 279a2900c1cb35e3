"""Canonical forms of description, date and amount.

Everything here is pure: identical inputs always produce identical outputs,
because both the dedup hash and similarity scoring are built on these values.

Description rules, in order: lower-case, strip diacritics, drop standalone 1-4
digit numbers, drop payment-rail jargon (stoplist from the phrase tables), drop
anything that is not ``[a-z0-9]`` or whitespace, then collapse whitespace.
"""

from __future__ import annotations

import hashlib
import re
import unicodedata
from collections.abc import Iterable
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from .errors import MalformedInput
from .settings import load_phrase_tables

_SHORT_NUMBER_RE = re.compile(r"\b\d{1,4}\b")
_NON_ALNUM_RE = re.compile(r"[^a-z0-9\s]")
_WS_RE = re.compile(r"\s+")
_CENTS = Decimal("0.01")

# ISO date prefix (time-of-day and offsets are ignored), DD/MM/YYYY, YYYY/MM/DD,
# and the compact YYYYMMDD[HHMMSS...] form used by OFX.
_ISO_RE = re.compile(r"^(\d{4})-(\d{1,2})-(\d{1,2})(?:[T\s].*)?$")
_SLASH_DMY_RE = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})$")
_SLASH_YMD_RE = re.compile(r"^(\d{4})/(\d{1,2})/(\d{1,2})$")
_COMPACT_RE = re.compile(r"^(\d{4})(\d{2})(\d{2})(?:\d{0,6}(?:\.\d+)?)?(?:\[.*\])?$")


def fold_accents(text: str) -> str:
    """Lower-case ``text`` and remove combining diacritics (NFD decomposition)."""

    decomposed = unicodedata.normalize("NFD", text.lower())
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def _stopword_re(stopwords: Iterable[str]) -> re.Pattern[str]:
    alternation = "|".join(re.escape(w) for w in sorted(set(stopwords), key=len, reverse=True))
    return re.compile(rf"\b(?:{alternation})\b")


def normalize_description(text: str | None, *, stopwords: Iterable[str] | None = None) -> str:
    """Return the canonical form of a free-text description.

    >>> normalize_description("PIX Padaria São João 123")
    'padaria sao joao'
    """

    if not text:
        return ""
    words = stopwords if stopwords is not None else load_phrase_tables().canonical_stopwords
    s = fold_accents(text)
    s = _SHORT_NUMBER_RE.sub("", s)
    s = _stopword_re(words).sub("", s)
    s = _NON_ALNUM_RE.sub("", s)
    return _WS_RE.sub(" ", s).strip()


def description_tokens(text: str | None, *, stopwords: Iterable[str] | None = None) -> frozenset[str]:
    """Token set of the canonical description, used for overlap similarity."""

    return frozenset(normalize_description(text, stopwords=stopwords).split())


def canonical_date(raw: Any) -> date:
    """Truncate ``raw`` to a calendar day.

    Accepts ``date``/``datetime`` objects and the string forms ``YYYY-MM-DD``
    (optionally followed by a time), ``DD/MM/YYYY``, ``YYYY/MM/DD`` and
    ``YYYYMMDD[HHMMSS]``. Raises :class:`MalformedInput` otherwise.
    """

    if isinstance(raw, datetime):
        return raw.date()
    if isinstance(raw, date):
        return raw
    if not isinstance(raw, str) or not raw.strip():
        raise MalformedInput(f"date must be a non-empty string, got {raw!r}")

    s = raw.strip()
    parts: tuple[str, str, str] | None = None
    if m := _ISO_RE.match(s):
        parts = (m.group(1), m.group(2), m.group(3))
    elif m := _SLASH_DMY_RE.match(s):
        parts = (m.group(3), m.group(2), m.group(1))
    elif m := _SLASH_YMD_RE.match(s):
        parts = (m.group(1), m.group(2), m.group(3))
    elif m := _COMPACT_RE.match(s):
        parts = (m.group(1), m.group(2), m.group(3))
    if parts is None:
        raise MalformedInput(f"unrecognized date format: {raw!r}")
    try:
        return date(int(parts[0]), int(parts[1]), int(parts[2]))
    except ValueError as e:
        raise MalformedInput(f"invalid calendar date: {raw!r}") from e


def parse_amount(raw: Any) -> Decimal:
    """Parse a signed amount into a 2dp ``Decimal`` (ROUND_HALF_UP)."""

    if isinstance(raw, bool) or raw is None:
        raise MalformedInput(f"amount must be numeric, got {raw!r}")
    try:
        d = Decimal(str(raw).strip())
    except (InvalidOperation, ValueError) as e:
        raise MalformedInput(f"amount must be numeric, got {raw!r}") from e
    if not d.is_finite():
        raise MalformedInput(f"amount must be finite, got {raw!r}")
    return d.quantize(_CENTS, rounding=ROUND_HALF_UP)


def canonical_amount(raw: Any) -> Decimal:
    """Magnitude of ``raw`` rounded to cents; the sign is discarded."""

    return abs(parse_amount(raw))


def compute_transaction_hash(
    txn_date: date,
    amount: Decimal,
    normalized_description: str,
    account_id: int,
) -> str:
    """SHA-256 over ``date|magnitude|canonical description|local account id``.

    ``account_id`` must be the resolved local id, never the upstream reference,
    so a reconnected bank account still hashes identically.
    """

    magnitude = abs(amount).quantize(_CENTS, rounding=ROUND_HALF_UP)
    payload = f"{txn_date.isoformat()}|{magnitude:.2f}|{normalized_description}|{account_id}"
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


__all__ = [
    "canonical_amount",
    "canonical_date",
    "compute_transaction_hash",
    "description_tokens",
    "fold_accents",
    "normalize_description",
    "parse_amount",
]

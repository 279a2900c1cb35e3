"""Transaction direction (type) inference.

Precedence: an explicit CREDIT/DEBIT indicator, else the sign of the raw amount.
A credit-card bill settlement phrase overrides both and yields ``transfer`` so
debt repayments are not counted twice in income/expense aggregates.
"""

from __future__ import annotations

from collections.abc import Iterable
from decimal import Decimal
from typing import Literal

from .canonical import fold_accents, normalize_description, parse_amount
from .settings import load_phrase_tables

type TransactionType = Literal["income", "expense", "transfer", "investment", "redemption"]


def is_invoice_payment(description: str | None, *, phrases: Iterable[str] | None = None) -> bool:
    """Return True when ``description`` reads like a card statement settlement.

    Both the accent-folded text and its canonical form are scanned, so phrases
    that contain stoplisted abbreviations ("pag fatura") still match.
    """

    if not description:
        return False
    table = tuple(phrases) if phrases is not None else load_phrase_tables().invoice_payment_phrases
    folded = fold_accents(description)
    canonical = normalize_description(description)
    return any(p in folded or p in canonical for p in table)


def infer_type(
    indicator: str | None,
    raw_amount: Decimal | float | int | str,
    description: str | None,
    *,
    phrases: Iterable[str] | None = None,
) -> TransactionType:
    """Infer ``income``/``expense``/``transfer`` for an incoming event."""

    if is_invoice_payment(description, phrases=phrases):
        return "transfer"

    flag = (indicator or "").strip().upper()
    if flag == "CREDIT":
        return "income"
    if flag == "DEBIT":
        return "expense"

    amount = raw_amount if isinstance(raw_amount, Decimal) else parse_amount(raw_amount)
    return "income" if amount > 0 else "expense"


__all__ = ["TransactionType", "infer_type", "is_invoice_payment"]

from __future__ import annotations

from decimal import Decimal

import pytest

from ledger_ingest.direction import infer_type, is_invoice_payment


@pytest.mark.parametrize(
    ("indicator", "amount", "expected"),
    [
        ("CREDIT", Decimal("-5.00"), "income"),
        ("debit", "5", "expense"),
        (None, "-5", "expense"),
        (None, "5", "income"),
        (None, 0, "expense"),
        ("", "12.30", "income"),
    ],
)
def test_indicator_then_sign(indicator: str | None, amount: object, expected: str) -> None:
    assert infer_type(indicator, amount, "MERCADO BOM PRECO") == expected


def test_invoice_payment_overrides_indicator_and_sign() -> None:
    assert infer_type(None, "500.00", "pagamento fatura cartao") == "transfer"
    assert infer_type("CREDIT", "500.00", "PAGAMENTO FATURA CARTAO") == "transfer"
    assert infer_type("DEBIT", "-500.00", "Pag Fatura 1234") == "transfer"


def test_invoice_phrase_matches_canonical_form() -> None:
    # Punctuation only disappears in the canonical form.
    assert is_invoice_payment("PGTO. FATURA VISA")
    assert not is_invoice_payment("FATURAMENTO LOJA")
    assert not is_invoice_payment(None)


def test_custom_phrase_table() -> None:
    assert is_invoice_payment("quitacao cartao", phrases=["quitacao cartao"])
    assert infer_type(None, "10", "quitacao cartao", phrases=["quitacao cartao"]) == "transfer"

from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest

from finformats.config import Settings
from finformats.models import (
    Balance,
    BalanceKind,
    CreditDebit,
    Mt940Document,
    Reference,
    StatementBuilder,
    Transaction,
)
from finformats.registry import CamtParserRegistry

IBAN_DE = "DE89370400440532013000"
IBAN_OWN = "DE02120300000000202051"
BIC_DE = "COBADEFFXXX"


def _tx(
    amount: str,
    cd: str = "C",
    day: date = date(2024, 1, 15),
    currency: str = "EUR",
    **fields,
) -> Transaction:
    return Transaction(
        booking_date=day,
        value_date=fields.pop("value_date", day),
        amount=Decimal(amount),
        currency=currency,
        credit_debit=CreditDebit(cd),
        **fields,
    )


def _balance(
    amount: str,
    cd: str = "C",
    as_of: date = date(2024, 1, 1),
    currency: str = "EUR",
    kind: BalanceKind = BalanceKind.OPENING,
) -> Balance:
    return Balance(credit_debit=CreditDebit(cd), as_of=as_of, currency=currency, amount=Decimal(amount), kind=kind)


@pytest.fixture
def make_tx():
    return _tx


@pytest.fixture
def make_balance():
    return _balance


@pytest.fixture
def settings() -> Settings:
    """Settings explícitos: los tests no dependen de FINFORMATS_* del entorno."""
    return Settings()


@pytest.fixture
def registry() -> CamtParserRegistry:
    return CamtParserRegistry(allow_reset=True)


@pytest.fixture
def rich_transaction() -> Transaction:
    """Movimiento con todas las referencias SEPA y contraparte completas."""
    return _tx(
        "250.00",
        "D",
        day=date(2024, 1, 20),
        value_date=date(2024, 1, 21),
        reference=Reference(
            end_to_end_id="E2E-2024-0001",
            mandate_id="MANDAT-77",
            creditor_id="DE98ZZZ09999999999",
            instruction_id="KREF-1",
        ),
        counterparty_name="Stadtwerke Musterstadt GmbH",
        counterparty_iban=IBAN_DE,
        counterparty_bic=BIC_DE,
        purpose_lines=("Abschlag Strom Januar 2024 Kundennummer 4711",),
        transaction_code="NDDT",
    )


@pytest.fixture
def mt940_document(rich_transaction) -> Mt940Document:
    """Extracto de enero: apertura 1000,00 C, +500,00 / -300,00 / -250,00 -> cierre 950,00 C."""
    return (
        StatementBuilder()
        .with_id("STMT-2024-01")
        .with_account(IBAN_OWN, BIC_DE)
        .with_currency("EUR")
        .with_sequence_number("00001")
        .with_opening_balance(_balance("1000.00"))
        .with_closing_balance(_balance("950.00", as_of=date(2024, 1, 31), kind=BalanceKind.CLOSING))
        .add_transaction(
            _tx(
                "500.00",
                "C",
                day=date(2024, 1, 10),
                counterparty_name="Max Mustermann",
                counterparty_iban=IBAN_DE,
                purpose_lines=("Rechnung 2024-001",),
                reference=Reference(end_to_end_id="INV-2024-001"),
            )
        )
        .add_transaction(_tx("300.00", "D", day=date(2024, 1, 12), purpose_lines=("Miete Januar",)))
        .add_transaction(rich_transaction)
        .build(Mt940Document)
    )

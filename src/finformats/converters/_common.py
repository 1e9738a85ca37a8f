from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Callable, Iterable, List, Optional, Sequence, Tuple, Type, TypeVar, Union

from ..config import Settings, get_settings
from ..errors import EmptySourceDocument, MissingBalance, UnsupportedCurrencyMixture
from ..logging_setup import get_logger
from ..models import Balance, BalanceKind, CamtType, CreditDebit, Statement, StatementBuilder, Transaction
from ..normalize import parse_amount
from ..reconcile import reconcile

log = get_logger(__name__)

SeedBalance = Union[Balance, Decimal, str, None]
T = TypeVar("T")
S = TypeVar("S", bound=Statement)


def resolve_settings(settings: Optional[Settings]) -> Settings:
    return settings if settings is not None else get_settings()


def seed_balance(
    seed: SeedBalance,
    credit_debit: Optional[CreditDebit],
    currency: str,
    transactions: Sequence[Transaction],
) -> Optional[Balance]:
    """
    Normaliza el balance semilla: Balance tal cual, o un importe (Decimal/str).
    Con importe negativo y sin indicador se toma como Debit.
    """
    if seed is None:
        return None
    if credit_debit is not None:
        credit_debit = CreditDebit(credit_debit)
    if isinstance(seed, Balance):
        if credit_debit is not None and credit_debit is not seed.credit_debit:
            seed = seed.model_copy(update={"credit_debit": credit_debit})
        return seed.as_kind(BalanceKind.OPENING)

    amount = parse_amount(seed) if isinstance(seed, str) else seed
    if credit_debit is None:
        credit_debit = CreditDebit.for_signed(amount)
    as_of = min(t.booking_date for t in transactions)
    return Balance(
        credit_debit=credit_debit,
        as_of=as_of,
        currency=currency,
        amount=abs(amount),
        kind=BalanceKind.OPENING,
    )


def prepare_balances(
    transactions: Sequence[Transaction],
    currency: str,
    source_opening: Optional[Balance],
    source_closing: Optional[Balance],
    seed: SeedBalance,
    seed_credit_debit: Optional[CreditDebit],
    settings: Settings,
    *,
    requires_balance: bool,
    single_currency: bool,
) -> Tuple[Optional[Balance], Optional[Balance]]:
    """
    Paso común de todos los convertidores:
    - sin transacciones -> EmptySourceDocument
    - destino de moneda única con varias monedas -> UnsupportedCurrencyMixture
    - la semilla manda sobre la apertura del origen; el cierre del origen se valida
    - sin ningún balance: MissingBalance si el destino lleva balances, si no (None, None)
    """
    if not transactions:
        raise EmptySourceDocument()

    currencies = {t.currency for t in transactions} | {currency}
    if single_currency and settings.enforce_single_currency and len(currencies) > 1:
        raise UnsupportedCurrencyMixture(currencies)

    opening = seed_balance(seed, seed_credit_debit, currency, transactions) or source_opening
    closing = source_closing
    if opening is None and closing is None:
        if requires_balance:
            raise MissingBalance()
        return None, None

    counted = [t for t in transactions if t.currency == currency]
    if len(counted) != len(transactions):
        log.warning(
            "%d transacciones en otra moneda quedan fuera de la reconciliación en %s",
            len(transactions) - len(counted),
            currency,
        )
    return reconcile(counted, opening, closing)


def chain(
    convert_one: Callable[..., Tuple[T, Optional[Balance]]],
    documents: Iterable[object],
    opening_balance: SeedBalance = None,
    credit_debit: Optional[CreditDebit] = None,
    **kwargs: object,
) -> List[T]:
    """El cierre de cada documento es la apertura del siguiente (extractos mensuales)."""
    results: List[T] = []
    seed: SeedBalance = opening_balance
    seed_cd = credit_debit
    for index, document in enumerate(documents):
        target, closing = convert_one(document, seed, seed_cd, **kwargs)
        results.append(target)
        if closing is not None:
            seed, seed_cd = closing, None
        log.debug("Documento %d convertido; cierre=%s", index + 1, closing.signed_amount if closing else None)
    return results


def restate(
    document: Statement,
    opening: Optional[Balance],
    closing: Optional[Balance],
    document_class: Type[S],
    **extra: object,
) -> S:
    """Copia cuenta, id y transacciones a otro tipo de extracto con los balances ya resueltos."""
    return (
        StatementBuilder()
        .with_id(document.id)
        .with_created_at(document.created_at)
        .with_account(document.account_id, document.bank_id)
        .with_currency(document.currency)
        .with_sequence_number(document.sequence_number)
        .with_opening_balance(opening)
        .with_closing_balance(closing)
        .add_transactions(document.transactions)
        .with_extra(**extra)
        .build(document_class)
    )


def latest_booking(transactions: Sequence[Transaction], closing: Optional[Balance]) -> date:
    if closing is not None:
        return closing.as_of
    return max(t.booking_date for t in transactions)


def camt_target(camt_type: Union[CamtType, str]) -> CamtType:
    camt_type = CamtType(camt_type)
    if not camt_type.is_statement:
        raise ValueError(f"Tipo CAMT de destino no soportado: {camt_type.value}")
    return camt_type

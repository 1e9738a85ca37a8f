from __future__ import annotations

from decimal import Decimal
from typing import Iterable, Optional, Sequence, Tuple

from .errors import InconsistentBalances, MissingBalance, UnsupportedCurrencyMixture
from .logging_setup import get_logger
from .models import Balance, BalanceKind, Transaction

log = get_logger(__name__)

_ZERO = Decimal("0.00")


def transaction_total(transactions: Iterable[Transaction]) -> Decimal:
    return sum((t.signed_amount for t in transactions), _ZERO)


def _single_currency(transactions: Sequence[Transaction], *balances: Optional[Balance]) -> str:
    found = {t.currency for t in transactions}
    found.update(b.currency for b in balances if b is not None)
    if len(found) > 1:
        raise UnsupportedCurrencyMixture(found)
    return found.pop()


def reconcile(
    transactions: Iterable[Transaction],
    opening: Optional[Balance] = None,
    closing: Optional[Balance] = None,
) -> Tuple[Balance, Balance]:
    """
    Deriva el balance que falta o valida ambos:
    - sin balances -> MissingBalance
    - solo apertura -> cierre = apertura + Σ transacciones
    - solo cierre -> apertura = cierre - Σ transacciones
    - ambos -> deben coincidir al centavo, si no InconsistentBalances

    Debit solo cuando el resultado es negativo. Función pura.
    """
    txs = tuple(transactions)
    if opening is None and closing is None:
        raise MissingBalance()

    currency = _single_currency(txs, opening, closing)
    total = transaction_total(txs)
    booking_dates = [t.booking_date for t in txs]

    if opening is not None and closing is not None:
        expected = opening.signed_amount + total
        if expected != closing.signed_amount:
            raise InconsistentBalances(expected=expected, actual=closing.signed_amount, currency=currency)
        return opening.as_kind(BalanceKind.OPENING), closing.as_kind(BalanceKind.CLOSING)

    if opening is not None:
        closing_signed = opening.signed_amount + total
        as_of = max(booking_dates + [opening.as_of])
        derived = Balance.from_signed(closing_signed, as_of, currency, BalanceKind.CLOSING)
        log.debug("Cierre derivado %s %s (apertura %s, Σ %s)", derived.signed_amount, currency, opening.signed_amount, total)
        return opening.as_kind(BalanceKind.OPENING), derived

    assert closing is not None
    opening_signed = closing.signed_amount - total
    as_of = min(booking_dates + [closing.as_of])
    derived = Balance.from_signed(opening_signed, as_of, currency, BalanceKind.OPENING)
    log.debug("Apertura derivada %s %s (cierre %s, Σ %s)", derived.signed_amount, currency, closing.signed_amount, total)
    return derived, closing.as_kind(BalanceKind.CLOSING)

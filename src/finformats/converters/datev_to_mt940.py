"""
DATEV -> MT940.

DATEV no trae balances: hace falta el balance de apertura (semilla) y el
cierre se deriva de los movimientos.
"""
from __future__ import annotations

from typing import Iterable, List, Optional, Tuple

from ..config import Settings
from ..datev import datev_statement
from ..logging_setup import get_logger
from ..models import Balance, CreditDebit, DatevDocument, Mt940Document
from ._common import SeedBalance, chain, prepare_balances, resolve_settings, restate

log = get_logger(__name__)


def _convert(
    document: DatevDocument,
    opening_balance: SeedBalance,
    credit_debit: Optional[CreditDebit],
    settings: Optional[Settings] = None,
) -> Tuple[Mt940Document, Optional[Balance]]:
    settings = resolve_settings(settings)
    statement = datev_statement(document, settings.default_currency)
    opening, closing = prepare_balances(
        statement.transactions,
        statement.currency,
        None,
        None,
        opening_balance,
        credit_debit,
        settings,
        requires_balance=True,
        single_currency=True,
    )
    target = restate(statement, opening, closing, Mt940Document)
    log.debug("DATEV %s -> MT940: %d movimientos", target.id, len(target.transactions))
    return target, closing


def convert(
    document: DatevDocument,
    opening_balance: SeedBalance = None,
    credit_debit: Optional[CreditDebit] = None,
    *,
    settings: Optional[Settings] = None,
) -> Mt940Document:
    return _convert(document, opening_balance, credit_debit, settings)[0]


def convert_multiple(
    documents: Iterable[DatevDocument],
    opening_balance: SeedBalance = None,
    credit_debit: Optional[CreditDebit] = None,
    *,
    settings: Optional[Settings] = None,
) -> List[Mt940Document]:
    return chain(_convert, documents, opening_balance, credit_debit, settings=settings)

"""DATEV -> CAMT.052/053/054 (053 por defecto)."""
from __future__ import annotations

from typing import Iterable, List, Optional, Tuple

from ..config import Settings
from ..datev import datev_statement
from ..logging_setup import get_logger
from ..models import Balance, CamtDocument, CamtType, CreditDebit, DatevDocument
from ._common import SeedBalance, camt_target, chain, prepare_balances, resolve_settings, restate

log = get_logger(__name__)


def _convert(
    document: DatevDocument,
    opening_balance: SeedBalance,
    credit_debit: Optional[CreditDebit],
    camt_type: CamtType = CamtType.CAMT053,
    settings: Optional[Settings] = None,
) -> Tuple[CamtDocument, Optional[Balance]]:
    settings = resolve_settings(settings)
    camt_type = camt_target(camt_type)
    with_balances = camt_type is not CamtType.CAMT054

    statement = datev_statement(document, settings.default_currency)
    opening, closing = prepare_balances(
        statement.transactions,
        statement.currency,
        None,
        None,
        opening_balance,
        credit_debit,
        settings,
        requires_balance=with_balances,
        single_currency=True,
    )
    target = restate(
        statement,
        opening if with_balances else None,
        closing if with_balances else None,
        CamtDocument,
        camt_type=camt_type,
        message_id=statement.id,
    )
    log.debug("DATEV %s -> %s: %d movimientos", target.id, camt_type.value, len(target.transactions))
    return target, closing


def convert(
    document: DatevDocument,
    opening_balance: SeedBalance = None,
    credit_debit: Optional[CreditDebit] = None,
    *,
    camt_type: CamtType = CamtType.CAMT053,
    settings: Optional[Settings] = None,
) -> CamtDocument:
    return _convert(document, opening_balance, credit_debit, camt_type, settings)[0]


def convert_multiple(
    documents: Iterable[DatevDocument],
    opening_balance: SeedBalance = None,
    credit_debit: Optional[CreditDebit] = None,
    *,
    camt_type: CamtType = CamtType.CAMT053,
    settings: Optional[Settings] = None,
) -> List[CamtDocument]:
    return chain(_convert, documents, opening_balance, credit_debit, camt_type=camt_type, settings=settings)

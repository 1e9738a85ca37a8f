"""
MT940 -> CAMT (053 por defecto, también 052 y 054).

CAMT.054 no lleva balances: si hay alguno se valida, pero el documento sale sin ellos.
"""
from __future__ import annotations

from typing import Iterable, List, Optional, Tuple

from ..config import Settings
from ..logging_setup import get_logger
from ..models import Balance, CamtDocument, CamtType, CreditDebit, Mt940Document
from ._common import SeedBalance, camt_target, chain, prepare_balances, resolve_settings, restate

log = get_logger(__name__)


def _convert(
    document: Mt940Document,
    opening_balance: SeedBalance,
    credit_debit: Optional[CreditDebit],
    camt_type: CamtType = CamtType.CAMT053,
    settings: Optional[Settings] = None,
) -> Tuple[CamtDocument, Optional[Balance]]:
    settings = resolve_settings(settings)
    camt_type = camt_target(camt_type)
    with_balances = camt_type is not CamtType.CAMT054

    opening, closing = prepare_balances(
        document.transactions,
        document.currency,
        document.opening_balance,
        document.closing_balance,
        opening_balance,
        credit_debit,
        settings,
        requires_balance=with_balances,
        single_currency=True,
    )
    target = restate(
        document,
        opening if with_balances else None,
        closing if with_balances else None,
        CamtDocument,
        camt_type=camt_type,
        message_id=document.related_reference or document.id,
    )
    log.debug("MT940 %s -> %s: %d movimientos", document.id, camt_type.value, len(target.transactions))
    return target, closing


def convert(
    document: Mt940Document,
    opening_balance: SeedBalance = None,
    credit_debit: Optional[CreditDebit] = None,
    *,
    camt_type: CamtType = CamtType.CAMT053,
    settings: Optional[Settings] = None,
) -> CamtDocument:
    return _convert(document, opening_balance, credit_debit, camt_type, settings)[0]


def convert_multiple(
    documents: Iterable[Mt940Document],
    opening_balance: SeedBalance = None,
    credit_debit: Optional[CreditDebit] = None,
    *,
    camt_type: CamtType = CamtType.CAMT053,
    settings: Optional[Settings] = None,
) -> List[CamtDocument]:
    return chain(_convert, documents, opening_balance, credit_debit, camt_type=camt_type, settings=settings)

"""
CAMT.052/053/054 -> MT940.

MT940 no tiene subcampos para referencias ni contraparte: se pliegan como
tags SEPA en el :86: al serializar (ver finformats.mt940).
"""
from __future__ import annotations

from typing import Iterable, List, Optional, Tuple

from ..config import Settings
from ..logging_setup import get_logger
from ..models import Balance, CamtDocument, CreditDebit, Mt940Document
from ._common import SeedBalance, chain, prepare_balances, resolve_settings, restate

log = get_logger(__name__)


def _convert(
    document: CamtDocument,
    opening_balance: SeedBalance,
    credit_debit: Optional[CreditDebit],
    settings: Optional[Settings] = None,
) -> Tuple[Mt940Document, Optional[Balance]]:
    settings = resolve_settings(settings)
    opening, closing = prepare_balances(
        document.transactions,
        document.currency,
        document.opening_balance,
        document.closing_balance,
        opening_balance,
        credit_debit,
        settings,
        requires_balance=True,
        single_currency=True,
    )
    related = document.message_id if document.message_id != document.id else None
    target = restate(document, opening, closing, Mt940Document, related_reference=related)
    log.debug("%s %s -> MT940: %d movimientos", document.camt_type.value, document.id, len(target.transactions))
    return target, closing


def convert(
    document: CamtDocument,
    opening_balance: SeedBalance = None,
    credit_debit: Optional[CreditDebit] = None,
    *,
    settings: Optional[Settings] = None,
) -> Mt940Document:
    return _convert(document, opening_balance, credit_debit, settings)[0]


def convert_multiple(
    documents: Iterable[CamtDocument],
    opening_balance: SeedBalance = None,
    credit_debit: Optional[CreditDebit] = None,
    *,
    settings: Optional[Settings] = None,
) -> List[Mt940Document]:
    return chain(_convert, documents, opening_balance, credit_debit, settings=settings)

"""CAMT.052/053/054 -> DATEV."""
from __future__ import annotations

from typing import Iterable, List, Optional, Tuple

from ..config import Settings
from ..datev import build_datev_document
from ..logging_setup import get_logger
from ..models import Balance, CamtDocument, CreditDebit, DatevDocument
from ._common import SeedBalance, chain, latest_booking, prepare_balances, resolve_settings

log = get_logger(__name__)


def _convert(
    document: CamtDocument,
    opening_balance: SeedBalance,
    credit_debit: Optional[CreditDebit],
    settings: Optional[Settings] = None,
) -> Tuple[DatevDocument, Optional[Balance]]:
    settings = resolve_settings(settings)
    _, closing = prepare_balances(
        document.transactions,
        document.currency,
        document.opening_balance,
        document.closing_balance,
        opening_balance,
        credit_debit,
        settings,
        requires_balance=False,
        single_currency=False,
    )
    target = build_datev_document(
        document.transactions,
        document.account_id,
        document.bank_id,
        document.sequence_number,
        latest_booking(document.transactions, closing),
    )
    log.debug("%s %s -> DATEV: %d filas", document.camt_type.value, document.id, len(target.rows))
    return target, closing


def convert(
    document: CamtDocument,
    opening_balance: SeedBalance = None,
    credit_debit: Optional[CreditDebit] = None,
    *,
    settings: Optional[Settings] = None,
) -> DatevDocument:
    return _convert(document, opening_balance, credit_debit, settings)[0]


def convert_multiple(
    documents: Iterable[CamtDocument],
    opening_balance: SeedBalance = None,
    credit_debit: Optional[CreditDebit] = None,
    *,
    settings: Optional[Settings] = None,
) -> List[DatevDocument]:
    return chain(_convert, documents, opening_balance, credit_debit, settings=settings)

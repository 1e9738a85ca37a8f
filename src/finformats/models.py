from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Annotated, Iterable, Optional, Set, Tuple, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import MalformedDocument


class CreditDebit(str, Enum):
    CREDIT = "C"
    DEBIT = "D"

    @classmethod
    def for_signed(cls, value: Decimal) -> "CreditDebit":
        """Debit solo si el valor es negativo; cero cuenta como Credit."""
        return cls.DEBIT if value < 0 else cls.CREDIT

    def apply(self, amount: Decimal) -> Decimal:
        return amount if self is CreditDebit.CREDIT else -amount


class BalanceKind(str, Enum):
    OPENING = "opening"
    CLOSING = "closing"
    INTRADAY = "intraday"


class CamtType(str, Enum):
    CAMT026 = "camt.026"
    CAMT027 = "camt.027"
    CAMT028 = "camt.028"
    CAMT029 = "camt.029"
    CAMT030 = "camt.030"
    CAMT031 = "camt.031"
    CAMT033 = "camt.033"
    CAMT034 = "camt.034"
    CAMT035 = "camt.035"
    CAMT036 = "camt.036"
    CAMT037 = "camt.037"
    CAMT038 = "camt.038"
    CAMT039 = "camt.039"
    CAMT052 = "camt.052"
    CAMT053 = "camt.053"
    CAMT054 = "camt.054"
    CAMT055 = "camt.055"
    CAMT056 = "camt.056"
    CAMT057 = "camt.057"
    CAMT058 = "camt.058"
    CAMT059 = "camt.059"
    CAMT087 = "camt.087"

    @property
    def is_statement(self) -> bool:
        return self in (CamtType.CAMT052, CamtType.CAMT053, CamtType.CAMT054)


Amount = Annotated[Decimal, Field(ge=0, decimal_places=2, description="Magnitud sin signo; el signo vive en credit_debit")]
CurrencyCode = Annotated[str, Field(pattern=r"^[A-Z]{3}$")]


class Balance(BaseModel):
    model_config = ConfigDict(frozen=True)

    credit_debit: CreditDebit
    as_of: date
    currency: CurrencyCode
    amount: Amount
    kind: BalanceKind = BalanceKind.CLOSING

    @property
    def signed_amount(self) -> Decimal:
        return self.credit_debit.apply(self.amount)

    @classmethod
    def from_signed(cls, value: Decimal, as_of: date, currency: str, kind: BalanceKind) -> "Balance":
        return cls(
            credit_debit=CreditDebit.for_signed(value),
            as_of=as_of,
            currency=currency,
            amount=abs(value),
            kind=kind,
        )

    def as_kind(self, kind: BalanceKind) -> "Balance":
        return self if self.kind is kind else self.model_copy(update={"kind": kind})


class Reference(BaseModel):
    model_config = ConfigDict(frozen=True)

    end_to_end_id: Optional[str] = None
    mandate_id: Optional[str] = None
    creditor_id: Optional[str] = None
    instruction_id: Optional[str] = None


class Transaction(BaseModel):
    model_config = ConfigDict(frozen=True)

    booking_date: date
    value_date: date
    amount: Amount
    currency: CurrencyCode
    credit_debit: CreditDebit
    reference: Reference = Field(default_factory=Reference)
    entry_reference: Optional[str] = None
    bank_reference: Optional[str] = None
    counterparty_name: Optional[str] = None
    counterparty_iban: Optional[str] = None
    counterparty_bic: Optional[str] = None
    purpose_lines: Tuple[str, ...] = ()
    transaction_code: Optional[str] = Field(None, description="Código ISO 20022 (NTRF, NCHG, ...) o GVC de 3 dígitos")
    booking_text: Optional[str] = None
    reversal: bool = False

    @property
    def signed_amount(self) -> Decimal:
        return self.credit_debit.apply(self.amount)

    @property
    def purpose(self) -> str:
        return " ".join(line.strip() for line in self.purpose_lines if line.strip())


class Statement(BaseModel):
    """
    Documento neutral de extracto: cuenta, balances y transacciones en orden.
    Inmutable; cada modificación devuelve una instancia nueva.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    created_at: Optional[datetime] = None
    account_id: str = Field(..., min_length=1)
    bank_id: Optional[str] = None
    currency: CurrencyCode
    sequence_number: Optional[str] = None
    opening_balance: Optional[Balance] = None
    closing_balance: Optional[Balance] = None
    transactions: Tuple[Transaction, ...] = ()

    def with_transactions(self, transactions: Iterable[Transaction]):
        return self.model_copy(update={"transactions": tuple(transactions)})

    def with_balances(self, opening: Optional[Balance], closing: Optional[Balance]):
        return self.model_copy(update={"opening_balance": opening, "closing_balance": closing})

    @property
    def currencies(self) -> Set[str]:
        found = {t.currency for t in self.transactions}
        for b in (self.opening_balance, self.closing_balance):
            if b is not None:
                found.add(b.currency)
        return found


class Mt940Document(Statement):
    related_reference: Optional[str] = None
    available_balance: Optional[Balance] = None


class CamtDocument(Statement):
    camt_type: CamtType = CamtType.CAMT053
    message_id: Optional[str] = None
    account_owner: Optional[str] = None


class DatevDocument(BaseModel):
    """Filas DATEV tal cual: cada fila es la secuencia posicional de campos (strings)."""

    model_config = ConfigDict(frozen=True)

    rows: Tuple[Tuple[str, ...], ...] = ()


S = TypeVar("S", bound=Statement)

_REQUIRED = ("id", "account_id", "currency")


@dataclass(frozen=True)
class StatementBuilder:
    """
    Builder por valor: cada with_*/add_* devuelve un builder nuevo.
    build() valida los campos obligatorios y entrega el documento inmutable.
    """

    id: Optional[str] = None
    created_at: Optional[datetime] = None
    account_id: Optional[str] = None
    bank_id: Optional[str] = None
    currency: Optional[str] = None
    sequence_number: Optional[str] = None
    opening_balance: Optional[Balance] = None
    closing_balance: Optional[Balance] = None
    transactions: Tuple[Transaction, ...] = ()
    extra: Tuple[Tuple[str, object], ...] = ()

    def with_id(self, value: str) -> "StatementBuilder":
        return replace(self, id=value)

    def with_created_at(self, value: Optional[datetime]) -> "StatementBuilder":
        return replace(self, created_at=value)

    def with_account(self, account_id: str, bank_id: Optional[str] = None) -> "StatementBuilder":
        return replace(self, account_id=account_id, bank_id=bank_id)

    def with_currency(self, value: str) -> "StatementBuilder":
        return replace(self, currency=value)

    def with_sequence_number(self, value: Optional[str]) -> "StatementBuilder":
        return replace(self, sequence_number=value)

    def with_opening_balance(self, value: Optional[Balance]) -> "StatementBuilder":
        return replace(self, opening_balance=value.as_kind(BalanceKind.OPENING) if value else None)

    def with_closing_balance(self, value: Optional[Balance]) -> "StatementBuilder":
        return replace(self, closing_balance=value.as_kind(BalanceKind.CLOSING) if value else None)

    def with_extra(self, **fields: object) -> "StatementBuilder":
        merged = dict(self.extra)
        merged.update(fields)
        return replace(self, extra=tuple(merged.items()))

    def add_transaction(self, transaction: Transaction) -> "StatementBuilder":
        return replace(self, transactions=self.transactions + (transaction,))

    def add_transactions(self, transactions: Iterable[Transaction]) -> "StatementBuilder":
        return replace(self, transactions=self.transactions + tuple(transactions))

    def _resolved_currency(self) -> Optional[str]:
        if self.currency:
            return self.currency
        for b in (self.opening_balance, self.closing_balance):
            if b is not None:
                return b.currency
        if self.transactions:
            return self.transactions[0].currency
        return None

    def build(self, document_class: Type[S] = Statement) -> S:  # type: ignore[assignment]
        values = {
            "id": self.id,
            "created_at": self.created_at,
            "account_id": self.account_id,
            "bank_id": self.bank_id,
            "currency": self._resolved_currency(),
            "sequence_number": self.sequence_number,
            "opening_balance": self.opening_balance,
            "closing_balance": self.closing_balance,
            "transactions": self.transactions,
        }
        missing = [name for name in _REQUIRED if not values[name]]
        if missing:
            raise MalformedDocument(f"Faltan campos obligatorios: {', '.join(missing)}")
        values.update(dict(self.extra))
        try:
            return document_class(**values)
        except ValidationError as exc:
            raise MalformedDocument(f"Documento inválido: {exc}") from exc

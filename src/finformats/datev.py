from __future__ import annotations

import csv
import io
import re
from datetime import date, datetime, time
from enum import Enum
from typing import Iterable, List, Optional, Sequence, Tuple

from .errors import ConversionError, EmptySourceDocument, MalformedDocument
from .iban import blz_from_iban, german_iban, is_bic, is_blz, is_iban, normalize_iban
from .logging_setup import get_logger
from .models import CreditDebit, DatevDocument, Reference, Statement, StatementBuilder, Transaction
from .normalize import (
    chunk,
    collapse_whitespace,
    format_date_de,
    format_signed_amount,
    parse_amount,
    parse_date,
    parse_optional_date,
)
from .sepa import SepaFields, decode_tags, encode_tags

log = get_logger(__name__)

PURPOSE_WIDTH = 27
DEFAULT_STATEMENT_NUMBER = "00001"


class DatevField(Enum):
    """Formato ASCII DATEV de movimientos bancarios: (posición, largo máximo, entre comillas)."""

    BLZ_BIC_KONTOINHABER = (0, 11, True)
    KONTONUMMER_IBAN_KONTOINHABER = (1, 34, True)
    AUSZUGSNUMMER = (2, 4, False)
    AUSZUGSDATUM = (3, 10, False)
    VALUTA = (4, 10, False)
    BUCHUNGSDATUM = (5, 10, False)
    UMSATZ = (6, 15, False)
    AUFTRAGGEBERNAME_1 = (7, 27, True)
    AUFTRAGGEBERNAME_2 = (8, 27, True)
    BLZ_BIC_AUFTRAGGEBER = (9, 11, True)
    KONTONUMMER_IBAN_AUFTRAGGEBER = (10, 34, True)
    VERWENDUNGSZWECK_1 = (11, 27, True)
    VERWENDUNGSZWECK_2 = (12, 27, True)
    VERWENDUNGSZWECK_3 = (13, 27, True)
    VERWENDUNGSZWECK_4 = (14, 27, True)
    GESCHAEFTSVORGANGSCODE = (15, 3, True)
    WAEHRUNG = (16, 3, True)
    BUCHUNGSTEXT = (17, 27, True)
    VERWENDUNGSZWECK_5 = (18, 27, True)
    VERWENDUNGSZWECK_6 = (19, 27, True)
    VERWENDUNGSZWECK_7 = (20, 27, True)
    VERWENDUNGSZWECK_8 = (21, 27, True)
    VERWENDUNGSZWECK_9 = (22, 27, True)
    VERWENDUNGSZWECK_10 = (23, 27, True)
    URSPRUNGSBETRAG = (24, 15, False)
    WAEHRUNG_URSPRUNGSBETRAG = (25, 3, True)
    AEQUIVALENZBETRAG = (26, 15, False)
    WAEHRUNG_AEQUIVALENZBETRAG = (27, 3, True)
    GEBUEHR = (28, 15, False)
    WAEHRUNG_GEBUEHR = (29, 3, True)
    VERWENDUNGSZWECK_11 = (30, 27, True)
    VERWENDUNGSZWECK_12 = (31, 27, True)
    VERWENDUNGSZWECK_13 = (32, 27, True)
    VERWENDUNGSZWECK_14 = (33, 27, True)

    def __init__(self, index: int, max_length: int, quoted: bool) -> None:
        self.index = index
        self.max_length = max_length
        self.quoted = quoted


FIELD_COUNT = len(DatevField)
FIELDS_BY_INDEX = sorted(DatevField, key=lambda f: f.index)
PURPOSE_FIELDS = tuple(
    f for f in FIELDS_BY_INDEX if f.name.startswith("VERWENDUNGSZWECK_")
)
NAME_FIELDS = (DatevField.AUFTRAGGEBERNAME_1, DatevField.AUFTRAGGEBERNAME_2)


# ---------------------------------------------------------------- CSV

def parse_datev(text: str) -> DatevDocument:
    """Lee filas `;`-delimitadas (comillas dobles opcionales) y las completa a 34 campos."""
    rows: List[Tuple[str, ...]] = []
    for lineno, row in enumerate(csv.reader(io.StringIO(text), delimiter=";", quotechar='"'), start=1):
        if not row or all(not v.strip() for v in row):
            continue
        if len(row) > FIELD_COUNT:
            extra = row[FIELD_COUNT:]
            if any(v.strip() for v in extra):
                raise MalformedDocument(f"Fila {lineno}: {len(row)} campos, máximo {FIELD_COUNT}")
            row = row[:FIELD_COUNT]
        rows.append(tuple(row) + ("",) * (FIELD_COUNT - len(row)))
    return DatevDocument(rows=tuple(rows))


def _render_value(field: DatevField, value: str) -> str:
    if not field.quoted:
        return value
    return '"' + value.replace('"', '""') + '"'


def render_datev(document: DatevDocument) -> str:
    lines = []
    for row in document.rows:
        padded = tuple(row) + ("",) * (FIELD_COUNT - len(row))
        lines.append(";".join(_render_value(f, padded[f.index]) for f in FIELDS_BY_INDEX))
    return "".join(line + "\r\n" for line in lines)


# ---------------------------------------------------------------- fila -> Transaction

def _field(row: Sequence[str], field: DatevField) -> str:
    return row[field.index] if field.index < len(row) else ""


def row_to_transaction(row: Sequence[str], default_currency: str = "EUR") -> Transaction:
    """
    Mapea una fila DATEV a Transaction.
    El propósito se recompone concatenando los 14 campos tal cual (trozos exactos
    de 27) y luego se decodifican los tags SEPA.
    """
    try:
        booking = parse_date(_field(row, DatevField.BUCHUNGSDATUM))
        value_date = parse_optional_date(_field(row, DatevField.VALUTA)) or booking
        signed = parse_amount(_field(row, DatevField.UMSATZ))
    except ValueError as exc:
        raise MalformedDocument(f"Fila DATEV inválida: {exc}") from exc

    purpose_raw = "".join(_field(row, f) for f in PURPOSE_FIELDS)
    tags = decode_tags(purpose_raw)

    name = "".join(_field(row, f) for f in NAME_FIELDS).strip() or tags.name
    bank_code = _field(row, DatevField.BLZ_BIC_AUFTRAGGEBER).strip()
    account = _field(row, DatevField.KONTONUMMER_IBAN_AUFTRAGGEBER).strip()

    iban = normalize_iban(account) if is_iban(account) else None
    if iban is None and is_blz(bank_code) and account.isdigit() and len(account.lstrip("0")) <= 10:
        iban = german_iban(bank_code, account)
    iban = iban or tags.iban
    bic = bank_code.upper() if is_bic(bank_code) else tags.bic

    gvc = _field(row, DatevField.GESCHAEFTSVORGANGSCODE).strip()
    return Transaction(
        booking_date=booking,
        value_date=value_date,
        amount=abs(signed),
        currency=_field(row, DatevField.WAEHRUNG).strip().upper() or default_currency,
        credit_debit=CreditDebit.for_signed(signed),
        reference=Reference(
            end_to_end_id=tags.end_to_end_id,
            mandate_id=tags.mandate_id,
            creditor_id=tags.creditor_id,
            instruction_id=tags.customer_reference,
        ),
        counterparty_name=name or None,
        counterparty_iban=iban,
        counterparty_bic=bic,
        purpose_lines=(tags.purpose,) if tags.purpose else (),
        transaction_code=gvc or None,
        booking_text=_field(row, DatevField.BUCHUNGSTEXT).strip() or None,
    )


def datev_transactions(document: DatevDocument, default_currency: str = "EUR") -> List[Transaction]:
    return [row_to_transaction(row, default_currency) for row in document.rows]


def datev_account(document: DatevDocument) -> Tuple[Optional[str], str, str, Optional[date]]:
    """(banco, cuenta, número de extracto, fecha de extracto) de la primera fila."""
    if not document.rows:
        return None, "", DEFAULT_STATEMENT_NUMBER, None
    row = document.rows[0]
    bank = _field(row, DatevField.BLZ_BIC_KONTOINHABER).strip() or None
    account = _field(row, DatevField.KONTONUMMER_IBAN_KONTOINHABER).strip()
    number = _field(row, DatevField.AUSZUGSNUMMER).strip() or DEFAULT_STATEMENT_NUMBER
    try:
        statement_date = parse_optional_date(_field(row, DatevField.AUSZUGSDATUM))
    except ValueError:
        statement_date = None
    return bank, account, number, statement_date


def datev_reference_id(statement_number: str, statement_date: Optional[date]) -> str:
    """Id de referencia: "DATEV" + alfanuméricos de número y fecha, máximo 16."""
    stamp = statement_date.strftime("%Y%m%d") if statement_date else ""
    return ("DATEV" + re.sub(r"[^A-Za-z0-9]", "", statement_number + stamp))[:16]


# ---------------------------------------------------------------- Transaction -> fila

def _fit(field: DatevField, value: Optional[str]) -> str:
    value = collapse_whitespace(value)
    if len(value) > field.max_length:
        log.warning("Campo %s recortado a %d caracteres: %r", field.name, field.max_length, value)
        value = value[: field.max_length]
    return value


def _statement_number(sequence_number: Optional[str]) -> str:
    m = re.match(r"\s*(\d+)", sequence_number or "")
    if not m:
        return "1".zfill(4)
    return str(int(m.group(1))).zfill(4)[-4:]


def transaction_to_row(
    tx: Transaction,
    account_id: str,
    bank_id: Optional[str] = None,
    statement_number: Optional[str] = None,
    statement_date: Optional[date] = None,
) -> Tuple[str, ...]:
    """
    Transaction -> 34 campos DATEV.
    - sin BIC y con IBAN alemán: se usa la BLZ del IBAN (caracteres 5-12)
    - las referencias van como tags SEPA en el propósito, en trozos exactos de 27
    - nombre en dos campos de 27
    """
    row = [""] * FIELD_COUNT

    def put(field: DatevField, value: Optional[str]) -> None:
        row[field.index] = _fit(field, value)

    put(DatevField.BLZ_BIC_KONTOINHABER, bank_id or blz_from_iban(account_id))
    put(DatevField.KONTONUMMER_IBAN_KONTOINHABER, account_id)
    put(DatevField.AUSZUGSNUMMER, _statement_number(statement_number))
    put(DatevField.AUSZUGSDATUM, format_date_de(statement_date or tx.booking_date))
    put(DatevField.VALUTA, format_date_de(tx.value_date))
    put(DatevField.BUCHUNGSDATUM, format_date_de(tx.booking_date))

    amount = format_signed_amount(tx.signed_amount)
    if len(amount) > DatevField.UMSATZ.max_length:
        raise ConversionError(f"Importe {amount} excede {DatevField.UMSATZ.max_length} caracteres")
    row[DatevField.UMSATZ.index] = amount

    name_parts = chunk(collapse_whitespace(tx.counterparty_name), PURPOSE_WIDTH)
    if len(name_parts) > len(NAME_FIELDS):
        log.warning("Nombre de contraparte recortado a %d caracteres: %r", PURPOSE_WIDTH * 2, tx.counterparty_name)
    for field, part in zip(NAME_FIELDS, name_parts):
        row[field.index] = part

    counterparty_iban = normalize_iban(tx.counterparty_iban) or None
    put(DatevField.BLZ_BIC_AUFTRAGGEBER, tx.counterparty_bic or blz_from_iban(counterparty_iban))
    put(DatevField.KONTONUMMER_IBAN_AUFTRAGGEBER, counterparty_iban)

    encoded = encode_tags(
        SepaFields(
            end_to_end_id=tx.reference.end_to_end_id,
            mandate_id=tx.reference.mandate_id,
            creditor_id=tx.reference.creditor_id,
            customer_reference=tx.reference.instruction_id,
            purpose=tx.purpose,
        )
    )
    pieces = chunk(encoded, PURPOSE_WIDTH)
    if len(pieces) > len(PURPOSE_FIELDS):
        log.warning(
            "Propósito de %d caracteres no cabe en %d campos DATEV; se pierde: %r",
            len(encoded),
            len(PURPOSE_FIELDS),
            "".join(pieces[len(PURPOSE_FIELDS):]),
        )
    for field, piece in zip(PURPOSE_FIELDS, pieces):
        row[field.index] = piece

    code = (tx.transaction_code or "").strip()
    if re.fullmatch(r"\d{3}", code):
        row[DatevField.GESCHAEFTSVORGANGSCODE.index] = code
    put(DatevField.WAEHRUNG, tx.currency)
    put(DatevField.BUCHUNGSTEXT, tx.booking_text)
    return tuple(row)


def build_datev_document(
    transactions: Iterable[Transaction],
    account_id: str,
    bank_id: Optional[str] = None,
    statement_number: Optional[str] = None,
    statement_date: Optional[date] = None,
) -> DatevDocument:
    rows = tuple(
        transaction_to_row(tx, account_id, bank_id, statement_number, statement_date)
        for tx in transactions
    )
    return DatevDocument(rows=rows)


def datev_statement(document: DatevDocument, default_currency: str = "EUR") -> Statement:
    """Filas DATEV -> extracto neutral, sin balances (DATEV no los lleva)."""
    if not document.rows:
        raise EmptySourceDocument()
    transactions = datev_transactions(document, default_currency)
    bank, account, number, statement_date = datev_account(document)
    statement_date = statement_date or max(t.booking_date for t in transactions)
    return (
        StatementBuilder()
        .with_id(datev_reference_id(number, statement_date))
        .with_created_at(datetime.combine(statement_date, time()))
        .with_account(account, bank)
        .with_currency(transactions[0].currency)
        .with_sequence_number(number)
        .add_transactions(transactions)
        .build()
    )

from __future__ import annotations

import re
from datetime import date
from typing import Dict, Iterable, List, Optional, Union

from .errors import MalformedDocument
from .iban import german_iban, is_bic, is_blz, is_iban, normalize_iban, split_account_id
from .logging_setup import get_logger
from .models import (
    Balance,
    BalanceKind,
    CreditDebit,
    Mt940Document,
    Reference,
    Statement,
    StatementBuilder,
    Transaction,
)
from .normalize import chunk, collapse_whitespace, format_amount_comma, full_year, parse_amount
from .segment import StatementSection, segment_statements
from .sepa import (
    NOT_PROVIDED,
    SepaFields,
    decode_tags,
    encode_tags,
    iso_to_mt940_code,
    mt940_to_iso_code,
    starts_with_tag,
)

log = get_logger(__name__)

NONREF = "NONREF"
REFERENCE_MAX = 16
SUBFIELD_WIDTH = 27
UNSTRUCTURED_GVC = "999"

_CONTINUATION_FORBIDDEN = ":-{"

_BALANCE_RE = re.compile(r"^(?P<cd>[CD])(?P<date>\d{6})(?P<currency>[A-Z]{3})(?P<amount>\d[\d,]*)$")
_LINE61_RE = re.compile(
    r"^(?P<value>\d{6})(?P<entry>\d{4})?(?P<mark>RC|RD|C|D)(?P<funds>[A-Z])?"
    r"(?P<amount>\d+,\d{0,2})(?P<type>[NSF])(?P<code>[A-Z0-9]{3})(?P<rest>.*)$"
)
_STRUCTURED_86_RE = re.compile(r"^(?P<gvc>\d{3})(?P<body>\?.*)$", re.DOTALL)
_SUBFIELD_RE = re.compile(r"\?(\d{2})")

_PURPOSE_KEYS = [f"{n:02d}" for n in range(20, 30)] + [f"{n:02d}" for n in range(60, 64)]


# ---------------------------------------------------------------- helpers

def _yymmdd(value: date) -> str:
    return value.strftime("%y%m%d")


def _parse_yymmdd(text: str) -> date:
    return date(full_year(int(text[0:2])), int(text[2:4]), int(text[4:6]))


def _entry_date(mmdd: str, value_date: date) -> date:
    """Año de la fecha de asiento (MMDD) según la valuta, con cambio de año."""
    month, day = int(mmdd[:2]), int(mmdd[2:])
    year = value_date.year
    if month == 12 and value_date.month == 1:
        year -= 1
    elif month == 1 and value_date.month == 12:
        year += 1
    return date(year, month, day)


def _reference16(value: Optional[str], what: str) -> Optional[str]:
    value = collapse_whitespace(value)
    if not value:
        return None
    if len(value) > REFERENCE_MAX:
        log.warning("Referencia %s recortada a %d: %r", what, REFERENCE_MAX, value)
        value = value[:REFERENCE_MAX]
    return value


def _clean_subfield(value: Optional[str]) -> str:
    return collapse_whitespace(value).replace("?", ".")


def _wrap_86(info: str, width: int) -> List[str]:
    """
    Trozos de hasta `width` caracteres; "".join(...) == info.
    Ninguna línea de continuación empieza con ':', '-' o '{': el corte retrocede
    hasta un carácter permitido.
    """
    pieces: List[str] = []
    start = 0
    while len(info) - start > width:
        end = start + width
        while end > start + 1 and info[end] in _CONTINUATION_FORBIDDEN:
            end -= 1
        if info[end] in _CONTINUATION_FORBIDDEN:
            # sin corte válido en todo el trozo
            end = start + width
        pieces.append(info[start:end])
        start = end
    pieces.append(info[start:])
    return pieces


# ---------------------------------------------------------------- escritura

def _balance_line(tag: str, balance: Balance) -> str:
    return f":{tag}:{balance.credit_debit.value}{_yymmdd(balance.as_of)}{balance.currency}{format_amount_comma(balance.amount)}"


def _account_line(document: Statement) -> str:
    if document.bank_id and is_blz(document.bank_id) and document.account_id.isdigit():
        return f"{document.bank_id}/{document.account_id}"
    return document.account_id


def _line_61(tx: Transaction) -> str:
    if tx.reversal:
        mark = "RC" if tx.credit_debit is CreditDebit.DEBIT else "RD"
    else:
        mark = tx.credit_debit.value

    entry = tx.booking_date.strftime("%m%d")
    end_to_end = tx.reference.end_to_end_id
    if end_to_end and end_to_end.upper() == NOT_PROVIDED:
        end_to_end = None
    customer = _reference16(end_to_end or tx.reference.instruction_id, "cliente") or NONREF
    line = (
        f":61:{_yymmdd(tx.value_date)}{entry}{mark}{format_amount_comma(tx.amount)}"
        f"N{iso_to_mt940_code(tx.transaction_code)}{customer}"
    )
    bank_ref = _reference16(tx.bank_reference, "banco")
    if bank_ref:
        line += f"//{bank_ref}"
    return line


def _tag_fields(tx: Transaction, include_party: bool) -> SepaFields:
    return SepaFields(
        end_to_end_id=tx.reference.end_to_end_id,
        mandate_id=tx.reference.mandate_id,
        creditor_id=tx.reference.creditor_id,
        customer_reference=tx.reference.instruction_id,
        name=tx.counterparty_name if include_party else None,
        iban=tx.counterparty_iban if include_party else None,
        bic=tx.counterparty_bic if include_party else None,
        purpose=tx.purpose,
    )


def _structured_86(tx: Transaction) -> str:
    """Formato alemán: GVC?00texto?20..?29 propósito?30 BLZ/BIC?31 cuenta?32?33 nombre?60..?63."""
    code = (tx.transaction_code or "").strip()
    gvc = code if re.fullmatch(r"\d{3}", code) else UNSTRUCTURED_GVC

    parts = [gvc]
    if tx.booking_text:
        parts.append("?00" + _clean_subfield(tx.booking_text)[:SUBFIELD_WIDTH])

    purpose = encode_tags(_tag_fields(tx, include_party=False)).replace("?", ".")
    pieces = chunk(purpose, SUBFIELD_WIDTH)
    if len(pieces) > len(_PURPOSE_KEYS):
        log.warning("Propósito :86: recortado a %d subcampos", len(_PURPOSE_KEYS))
    purpose_parts = {key: piece for key, piece in zip(_PURPOSE_KEYS, pieces)}

    for key in _PURPOSE_KEYS[:10]:
        if key in purpose_parts:
            parts.append(f"?{key}{purpose_parts[key]}")
    if tx.counterparty_bic:
        parts.append("?30" + _clean_subfield(tx.counterparty_bic))
    if tx.counterparty_iban:
        parts.append("?31" + _clean_subfield(tx.counterparty_iban))
    name = chunk(_clean_subfield(tx.counterparty_name), SUBFIELD_WIDTH)
    for key, piece in zip(("32", "33"), name):
        parts.append(f"?{key}{piece}")
    for key in _PURPOSE_KEYS[10:]:
        if key in purpose_parts:
            parts.append(f"?{key}{purpose_parts[key]}")
    return "".join(parts)


def _info_86(tx: Transaction, structured: bool) -> str:
    if structured:
        return _structured_86(tx)
    return encode_tags(_tag_fields(tx, include_party=True))


def render_statement(document: Statement, *, structured: bool = False, line_width: int = 65) -> List[str]:
    reference = _reference16(document.id, ":20:") or NONREF
    lines = [f":20:{reference}"]
    related = getattr(document, "related_reference", None)
    if related:
        lines.append(f":21:{_reference16(related, ':21:')}")
    lines.append(f":25:{_account_line(document)}")
    lines.append(f":28C:{document.sequence_number or '00001'}")

    if document.opening_balance is not None:
        lines.append(_balance_line("60F", document.opening_balance))

    for tx in document.transactions:
        lines.append(_line_61(tx))
        info = _info_86(tx, structured)
        if info:
            pieces = _wrap_86(info, line_width)
            lines.append(":86:" + pieces[0])
            lines.extend(pieces[1:])

    if document.closing_balance is not None:
        lines.append(_balance_line("62F", document.closing_balance))
    available = getattr(document, "available_balance", None)
    if available is not None:
        lines.append(_balance_line("64", available))
    lines.append("-")
    return lines


def render_mt940(
    documents: Union[Statement, Iterable[Statement]],
    *,
    structured: bool = False,
    line_width: int = 65,
) -> str:
    """Serializa uno o varios extractos MT940 con CRLF; cada uno termina en "-"."""
    if isinstance(documents, Statement):
        documents = [documents]
    lines: List[str] = []
    for doc in documents:
        lines.extend(render_statement(doc, structured=structured, line_width=line_width))
    return "".join(line + "\r\n" for line in lines)


# ---------------------------------------------------------------- lectura

def _parse_balance(value: str, kind: BalanceKind, where: str) -> Balance:
    m = _BALANCE_RE.match(value.strip())
    if not m:
        raise MalformedDocument(f"{where}: balance inválido {value!r}")
    try:
        return Balance(
            credit_debit=CreditDebit(m.group("cd")),
            as_of=_parse_yymmdd(m.group("date")),
            currency=m.group("currency"),
            amount=parse_amount(m.group("amount")),
            kind=kind,
        )
    except ValueError as exc:
        raise MalformedDocument(f"{where}: balance inválido {value!r}: {exc}") from exc


def _parse_61(value: str, where: str) -> Dict[str, object]:
    first, _, details = value.partition("\n")
    m = _LINE61_RE.match(first.strip())
    if not m:
        raise MalformedDocument(f"{where}: línea :61: inválida {first!r}")
    try:
        value_date = _parse_yymmdd(m.group("value"))
        booking_date = _entry_date(m.group("entry"), value_date) if m.group("entry") else value_date
        amount = parse_amount(m.group("amount"))
    except ValueError as exc:
        raise MalformedDocument(f"{where}: línea :61: inválida {first!r}: {exc}") from exc

    mark = m.group("mark")
    reversal = mark.startswith("R")
    if mark in ("C", "RD"):
        credit_debit = CreditDebit.CREDIT
    else:
        credit_debit = CreditDebit.DEBIT

    reference, _, bank_reference = m.group("rest").partition("//")
    reference = reference.strip()
    return {
        "value_date": value_date,
        "booking_date": booking_date,
        "amount": amount,
        "credit_debit": credit_debit,
        "reversal": reversal,
        "code": m.group("code"),
        "customer_reference": None if reference.upper() in ("", NONREF) else reference,
        "bank_reference": bank_reference.strip() or None,
        "details": collapse_whitespace(details) or None,
    }


def _split_subfields(body: str) -> Dict[str, str]:
    out: Dict[str, str] = {}
    parts = _SUBFIELD_RE.split(body)
    # parts: ["", "00", "texto", "20", "...", ...]
    for i in range(1, len(parts) - 1, 2):
        key, value = parts[i], parts[i + 1]
        out[key] = out.get(key, "") + value
    return out


def _parse_86(value: str) -> Dict[str, object]:
    text = value.replace("\n", "")
    m = _STRUCTURED_86_RE.match(text)
    if not m:
        tags = decode_tags(text)
        return {
            "tags": tags,
            "counterparty_name": tags.name,
            "counterparty_iban": tags.iban,
            "counterparty_bic": tags.bic,
        }

    sub = _split_subfields(m.group("body"))
    purpose = ""
    for key in _PURPOSE_KEYS:
        piece = sub.get(key, "")
        # los bancos abren cada tag en un subcampo nuevo, sin espacio previo
        if purpose and starts_with_tag(piece):
            purpose += " "
        purpose += piece
    tags = decode_tags(purpose)
    name = collapse_whitespace(sub.get("32", "") + sub.get("33", "")) or tags.name
    bank = collapse_whitespace(sub.get("30"))
    account = collapse_whitespace(sub.get("31"))
    if is_iban(account):
        iban = normalize_iban(account)
    elif is_blz(bank) and account.isdigit() and len(account.lstrip("0")) <= 10:
        iban = german_iban(bank, account)
    else:
        iban = tags.iban
    return {
        "tags": tags,
        "gvc": m.group("gvc"),
        "booking_text": collapse_whitespace(sub.get("00")) or None,
        "counterparty_name": name or None,
        "counterparty_bic": bank.upper() if is_bic(bank) else tags.bic,
        "counterparty_iban": iban,
    }


def _build_transaction(line61: Dict[str, object], info: Optional[Dict[str, object]], currency: str) -> Transaction:
    info = info or {}
    tags: SepaFields = info.get("tags") or SepaFields()  # type: ignore[assignment]

    end_to_end = tags.end_to_end_id
    if not (tags.end_to_end_id or tags.customer_reference) and line61["customer_reference"]:
        end_to_end = line61["customer_reference"]  # type: ignore[assignment]

    gvc = info.get("gvc")
    if gvc and gvc != UNSTRUCTURED_GVC:
        code = gvc
    else:
        code = mt940_to_iso_code(line61["code"])  # type: ignore[arg-type]

    return Transaction(
        booking_date=line61["booking_date"],
        value_date=line61["value_date"],
        amount=line61["amount"],
        currency=currency,
        credit_debit=line61["credit_debit"],
        reversal=line61["reversal"],
        reference=Reference(
            end_to_end_id=end_to_end,
            mandate_id=tags.mandate_id,
            creditor_id=tags.creditor_id,
            instruction_id=tags.customer_reference,
        ),
        bank_reference=line61["bank_reference"],
        counterparty_name=info.get("counterparty_name"),
        counterparty_iban=info.get("counterparty_iban"),
        counterparty_bic=info.get("counterparty_bic"),
        purpose_lines=(tags.purpose,) if tags.purpose else (),
        transaction_code=code,
        booking_text=info.get("booking_text") or line61["details"],
    )


def _parse_section(section: StatementSection, default_currency: str) -> Mt940Document:
    where = f"extracto #{section.index + 1}"
    builder = StatementBuilder()
    opening: Optional[Balance] = None
    closing: Optional[Balance] = None
    available: Optional[Balance] = None
    related: Optional[str] = None
    pending: List[List[Optional[Dict[str, object]]]] = []
    account_seen = False

    for tag, value in section.fields:
        if tag == "20":
            builder = builder.with_id(value.strip())
        elif tag == "21":
            related = value.strip() or None
        elif tag == "25":
            bank, account = split_account_id(value)
            builder = builder.with_account(account, bank)
            account_seen = True
        elif tag in ("28C", "28"):
            builder = builder.with_sequence_number(value.strip() or None)
        elif tag in ("60F", "60M"):
            if opening is None:
                opening = _parse_balance(value, BalanceKind.OPENING, where)
        elif tag in ("62F", "62M"):
            closing = _parse_balance(value, BalanceKind.CLOSING, where)
        elif tag == "64":
            available = _parse_balance(value, BalanceKind.CLOSING, where)
        elif tag == "61":
            pending.append([_parse_61(value, where), None])
        elif tag == "86":
            # :86: sin :61: previo es información del extracto
            if pending and pending[-1][1] is None:
                pending[-1][1] = _parse_86(value)
        else:
            log.debug("%s: tag :%s: ignorado", where, tag)

    if not account_seen:
        raise MalformedDocument(f"{where}: falta :25:")

    currency = next((b.currency for b in (opening, closing) if b is not None), default_currency)
    transactions = [_build_transaction(line61, info, currency) for line61, info in pending]  # type: ignore[arg-type]

    builder = (
        builder.with_currency(currency)
        .with_opening_balance(opening)
        .with_closing_balance(closing)
        .add_transactions(transactions)
        .with_extra(related_reference=related, available_balance=available)
    )
    return builder.build(Mt940Document)


def parse_mt940(text: str, default_currency: str = "EUR") -> List[Mt940Document]:
    """Lee un archivo MT940 (uno o varios extractos)."""
    sections = segment_statements(text)
    if not sections:
        raise MalformedDocument("No se encontró ningún extracto MT940 (:20:)")
    documents = [_parse_section(s, default_currency) for s in sections]
    log.debug("MT940: %d extractos, %d transacciones", len(documents), sum(len(d.transactions) for d in documents))
    return documents

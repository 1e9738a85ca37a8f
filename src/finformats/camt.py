from __future__ import annotations

import re
from datetime import date, datetime
from typing import Iterable, List, Optional, Tuple, Union

from lxml import etree
from pydantic import TypeAdapter, ValidationError

from .errors import MalformedDocument, UnknownMessageType
from .iban import is_bic, is_iban, normalize_iban
from .logging_setup import get_logger
from .models import (
    Balance,
    BalanceKind,
    CamtDocument,
    CamtType,
    CreditDebit,
    Reference,
    Statement,
    StatementBuilder,
    Transaction,
)
from .normalize import format_amount_dot, parse_amount, parse_date, segment_purpose
from .xpath import XPathEvaluator, load_xml

log = get_logger(__name__)

NAMESPACE_TEMPLATE = "urn:iso:std:iso:20022:tech:xsd:{type}.001.{version}"
USTRD_MAX = 140

# tipo -> (elemento de mensaje, elemento de extracto)
LAYOUT = {
    CamtType.CAMT052: ("BkToCstmrAcctRpt", "Rpt"),
    CamtType.CAMT053: ("BkToCstmrStmt", "Stmt"),
    CamtType.CAMT054: ("BkToCstmrDbtCdtNtfctn", "Ntfctn"),
}

_CD_CODES = {CreditDebit.CREDIT: "CRDT", CreditDebit.DEBIT: "DBIT"}
_CD_BY_CODE = {v: k for k, v in _CD_CODES.items()}
_NS_RE = re.compile(r"(camt\.\d{3})\.001\.(\d{2})")
_DATETIME = TypeAdapter(datetime)


def namespace_for(camt_type: CamtType, version: str = "02") -> str:
    return NAMESPACE_TEMPLATE.format(type=camt_type.value, version=version)


def message_info(namespace: Optional[str]) -> Tuple[Optional[CamtType], Optional[str]]:
    """("urn:...:camt.053.001.08") -> (CamtType.CAMT053, "08")."""
    m = _NS_RE.search(namespace or "")
    if not m:
        return None, None
    try:
        return CamtType(m.group(1)), m.group(2)
    except ValueError:
        return None, m.group(2)


def parse_datetime(text: Optional[str]) -> Optional[datetime]:
    if not text:
        return None
    try:
        return _DATETIME.validate_python(text)
    except ValidationError as exc:
        raise MalformedDocument(f"Fecha/hora inválida: {text!r}") from exc


# ---------------------------------------------------------------- escritura

class _Writer:
    def __init__(self, camt_type: CamtType, version: str) -> None:
        self.camt_type = camt_type
        self.version = version
        self.ns = namespace_for(camt_type, version)
        number = int(version)
        self.bic_tag = "BIC" if number < 4 else "BICFI"
        self.party_wrapper = number >= 8
        self.status_code = number >= 8

    def el(self, parent: Optional[etree._Element], tag: str, text: Optional[str] = None, **attrib: str) -> etree._Element:
        qname = f"{{{self.ns}}}{tag}"
        node = etree.Element(qname, nsmap={None: self.ns}) if parent is None else etree.SubElement(parent, qname)
        for k, v in attrib.items():
            node.set(k, v)
        if text is not None:
            node.text = text
        return node

    def path(self, parent: etree._Element, path: str, text: Optional[str] = None) -> etree._Element:
        node = parent
        for step in path.split("/"):
            node = self.el(node, step)
        if text is not None:
            node.text = text
        return node

    def amount(self, parent: etree._Element, tag: str, amount, currency: str) -> None:
        self.el(parent, tag, format_amount_dot(amount), Ccy=currency)

    def account(self, parent: etree._Element, tag: str, account_id: str) -> etree._Element:
        acct = self.el(parent, tag)
        ident = self.el(acct, "Id")
        if is_iban(account_id):
            self.el(ident, "IBAN", normalize_iban(account_id))
        else:
            self.path(ident, "Othr/Id", account_id)
        return acct

    def agent(self, parent: etree._Element, tag: str, bic: str) -> None:
        self.path(self.el(parent, tag), f"FinInstnId/{self.bic_tag}", bic.upper())

    def party(self, parent: etree._Element, tag: str, name: Optional[str], creditor_id: Optional[str] = None) -> None:
        node = self.el(parent, tag)
        if self.party_wrapper:
            node = self.el(node, "Pty")
        if name:
            self.el(node, "Nm", name[:140])
        if creditor_id:
            othr = self.path(node, "Id/PrvtId/Othr")
            self.el(othr, "Id", creditor_id)
            self.path(othr, "SchmeNm/Prtry", "SEPA")

    def balance(self, parent: etree._Element, code: str, balance: Balance) -> None:
        bal = self.el(parent, "Bal")
        self.path(bal, "Tp/CdOrPrtry/Cd", code)
        self.amount(bal, "Amt", balance.amount, balance.currency)
        self.el(bal, "CdtDbtInd", _CD_CODES[balance.credit_debit])
        self.path(bal, "Dt/Dt", balance.as_of.isoformat())

    def entry(self, parent: etree._Element, tx: Transaction) -> None:
        ntry = self.el(parent, "Ntry")
        if tx.entry_reference:
            self.el(ntry, "NtryRef", tx.entry_reference[:35])
        self.amount(ntry, "Amt", tx.amount, tx.currency)
        self.el(ntry, "CdtDbtInd", _CD_CODES[tx.credit_debit])
        if tx.reversal:
            self.el(ntry, "RvslInd", "true")
        if self.status_code:
            self.path(ntry, "Sts/Cd", "BOOK")
        else:
            self.el(ntry, "Sts", "BOOK")
        self.path(ntry, "BookgDt/Dt", tx.booking_date.isoformat())
        self.path(ntry, "ValDt/Dt", tx.value_date.isoformat())
        if tx.bank_reference:
            self.el(ntry, "AcctSvcrRef", tx.bank_reference[:35])
        self.path(ntry, "BkTxCd/Prtry/Cd", tx.transaction_code or "NTRF")

        details = self.path(ntry, "NtryDtls/TxDtls")
        ref = tx.reference
        if ref.instruction_id or ref.end_to_end_id or ref.mandate_id:
            refs = self.el(details, "Refs")
            if ref.instruction_id:
                self.el(refs, "InstrId", ref.instruction_id[:35])
            if ref.end_to_end_id:
                self.el(refs, "EndToEndId", ref.end_to_end_id[:35])
            if ref.mandate_id:
                self.el(refs, "MndtId", ref.mandate_id[:35])

        incoming = tx.credit_debit is CreditDebit.CREDIT
        has_party = tx.counterparty_name or tx.counterparty_iban or ref.creditor_id
        if has_party:
            parties = self.el(details, "RltdPties")
            if incoming:
                if tx.counterparty_name:
                    self.party(parties, "Dbtr", tx.counterparty_name)
                if tx.counterparty_iban:
                    self.account(parties, "DbtrAcct", tx.counterparty_iban)
                if ref.creditor_id:
                    self.party(parties, "Cdtr", None, ref.creditor_id)
            else:
                if tx.counterparty_name or ref.creditor_id:
                    self.party(parties, "Cdtr", tx.counterparty_name, ref.creditor_id)
                if tx.counterparty_iban:
                    self.account(parties, "CdtrAcct", tx.counterparty_iban)

        if tx.counterparty_bic and is_bic(tx.counterparty_bic):
            agents = self.el(details, "RltdAgts")
            self.agent(agents, "DbtrAgt" if incoming else "CdtrAgt", tx.counterparty_bic)

        purpose = tx.purpose
        if purpose:
            rmt = self.el(details, "RmtInf")
            for line in segment_purpose(purpose, USTRD_MAX):
                self.el(rmt, "Ustrd", line)

        if tx.booking_text:
            self.el(ntry, "AddtlNtryInf", tx.booking_text[:500])


def _created(document: Statement) -> str:
    stamp = document.created_at or datetime.now().replace(microsecond=0)
    return stamp.isoformat()


def _sequence(value: Optional[str]) -> Optional[str]:
    m = re.match(r"\s*(\d+)", value or "")
    return str(int(m.group(1))) if m else None


def _statement_balances(camt_type: CamtType) -> Optional[Tuple[str, str]]:
    if camt_type is CamtType.CAMT054:
        return None
    opening = "PRCD" if camt_type is CamtType.CAMT052 else "OPBD"
    return opening, "CLBD"


def build_camt_tree(
    documents: Union[Statement, Iterable[Statement]],
    camt_type: Optional[CamtType] = None,
    version: str = "02",
    message_id: Optional[str] = None,
) -> etree._Element:
    docs = [documents] if isinstance(documents, Statement) else list(documents)
    if not docs:
        raise MalformedDocument("No hay extractos para serializar")
    first = docs[0]
    camt_type = camt_type or (first.camt_type if isinstance(first, CamtDocument) else CamtType.CAMT053)
    if camt_type not in LAYOUT:
        raise UnknownMessageType(camt_type.value)

    w = _Writer(camt_type, version)
    message_tag, statement_tag = LAYOUT[camt_type]
    root = w.el(None, "Document")
    message = w.el(root, message_tag)
    header = w.el(message, "GrpHdr")
    msg_id = message_id or getattr(first, "message_id", None) or first.id
    w.el(header, "MsgId", msg_id[:35])
    w.el(header, "CreDtTm", _created(first))

    codes = _statement_balances(camt_type)
    for doc in docs:
        stmt = w.el(message, statement_tag)
        w.el(stmt, "Id", doc.id[:35])
        seq = _sequence(doc.sequence_number)
        if seq:
            w.el(stmt, "ElctrncSeqNb", seq)
        w.el(stmt, "CreDtTm", _created(doc))
        acct = w.account(stmt, "Acct", doc.account_id)
        w.el(acct, "Ccy", doc.currency)
        owner = getattr(doc, "account_owner", None)
        if owner:
            w.path(acct, "Ownr/Nm", owner[:140])
        if doc.bank_id and is_bic(doc.bank_id):
            w.agent(acct, "Svcr", doc.bank_id)
        if codes:
            if doc.opening_balance is not None:
                w.balance(stmt, codes[0], doc.opening_balance)
            if doc.closing_balance is not None:
                w.balance(stmt, codes[1], doc.closing_balance)
        for tx in doc.transactions:
            w.entry(stmt, tx)
    return root


def render_camt(
    documents: Union[Statement, Iterable[Statement]],
    camt_type: Optional[CamtType] = None,
    version: str = "02",
    message_id: Optional[str] = None,
) -> bytes:
    root = build_camt_tree(documents, camt_type, version, message_id)
    return etree.tostring(root, xml_declaration=True, encoding="UTF-8", pretty_print=True)


# ---------------------------------------------------------------- lectura

def _required(ev: XPathEvaluator, node: etree._Element, path, what: str) -> str:
    value = ev.text(path, node)
    if value is None:
        raise MalformedDocument(f"Falta {what}")
    return value


def _credit_debit(code: str) -> CreditDebit:
    try:
        return _CD_BY_CODE[code.strip().upper()]
    except KeyError:
        raise MalformedDocument(f"CdtDbtInd inválido: {code!r}") from None


def _amount(text: str):
    try:
        return parse_amount(text)
    except ValueError as exc:
        raise MalformedDocument(str(exc)) from exc


def _date(ev: XPathEvaluator, node: etree._Element, prefix: str) -> Optional[date]:
    raw = ev.text((f"{prefix}/Dt", f"{prefix}/DtTm"), node)
    if raw is None:
        return None
    try:
        return parse_date(raw)
    except ValueError as exc:
        raise MalformedDocument(str(exc)) from exc


def read_balances(ev: XPathEvaluator, statement: etree._Element) -> Tuple[Optional[Balance], Optional[Balance]]:
    """(apertura, cierre) desde Bal: OPBD o PRCD abren, CLBD cierra. Otros códigos se ignoran."""
    opening: Optional[Balance] = None
    closing: Optional[Balance] = None
    for bal in ev.nodes("Bal", statement):
        code = (ev.text(("Tp/CdOrPrtry/Cd", "Tp/CdOrPrtry/Prtry"), bal) or "").upper()
        if code in ("OPBD", "PRCD"):
            kind = BalanceKind.OPENING
        elif code == "CLBD":
            kind = BalanceKind.CLOSING
        else:
            continue
        as_of = _date(ev, bal, "Dt")
        if as_of is None:
            raise MalformedDocument(f"Balance {code} sin fecha")
        balance = Balance(
            credit_debit=_credit_debit(_required(ev, bal, "CdtDbtInd", f"CdtDbtInd en balance {code}")),
            as_of=as_of,
            currency=_required(ev, bal, "Amt/@Ccy", f"moneda en balance {code}"),
            amount=_amount(_required(ev, bal, "Amt", f"importe en balance {code}")),
            kind=kind,
        )
        if kind is BalanceKind.OPENING:
            # OPBD gana sobre PRCD
            if opening is None or code == "OPBD":
                opening = balance
        else:
            closing = balance
    return opening, closing


def _read_entry(ev: XPathEvaluator, ntry: etree._Element) -> Transaction:
    credit_debit = _credit_debit(_required(ev, ntry, "CdtDbtInd", "CdtDbtInd en Ntry"))
    booking = _date(ev, ntry, "BookgDt")
    value = _date(ev, ntry, "ValDt")
    if booking is None and value is None:
        raise MalformedDocument("Ntry sin BookgDt ni ValDt")

    details = ev.node("NtryDtls/TxDtls", ntry)
    ctx = details if details is not None else ntry
    party = "Dbtr" if credit_debit is CreditDebit.CREDIT else "Cdtr"

    def t(*paths: str) -> Optional[str]:
        return ev.text(paths, ctx) if details is not None else None

    purpose = ev.texts("RmtInf/Ustrd", details) if details is not None else []
    creditor_id = t("RltdPties/Cdtr/Id/PrvtId/Othr/Id", "RltdPties/Cdtr/Pty/Id/PrvtId/Othr/Id")
    iban = t(f"RltdPties/{party}Acct/Id/IBAN")

    return Transaction(
        booking_date=booking or value,
        value_date=value or booking,
        amount=_amount(_required(ev, ntry, "Amt", "Amt en Ntry")),
        currency=_required(ev, ntry, "Amt/@Ccy", "moneda en Ntry"),
        credit_debit=credit_debit,
        reversal=(ev.text("RvslInd", ntry) or "").lower() == "true",
        reference=Reference(
            end_to_end_id=t("Refs/EndToEndId"),
            mandate_id=t("Refs/MndtId"),
            creditor_id=creditor_id,
            instruction_id=t("Refs/InstrId"),
        ),
        entry_reference=ev.text("NtryRef", ntry),
        bank_reference=ev.text("AcctSvcrRef", ntry) or t("Refs/AcctSvcrRef"),
        counterparty_name=t(f"RltdPties/{party}/Nm", f"RltdPties/{party}/Pty/Nm"),
        counterparty_iban=normalize_iban(iban) if iban else t(f"RltdPties/{party}Acct/Id/Othr/Id"),
        counterparty_bic=t(
            f"RltdAgts/{party}Agt/FinInstnId/BIC",
            f"RltdAgts/{party}Agt/FinInstnId/BICFI",
        ),
        purpose_lines=tuple(purpose),
        transaction_code=ev.text(("BkTxCd/Prtry/Cd", "BkTxCd/Domn/Cd"), ntry),
        booking_text=ev.text("AddtlNtryInf", ntry) or t("AddtlTxInf"),
    )


def read_entries(ev: XPathEvaluator, statement: etree._Element) -> List[Transaction]:
    """Una Transaction por Ntry; solo se lee el primer TxDtls de cada una."""
    return [_read_entry(ev, ntry) for ntry in ev.nodes("Ntry", statement)]


def read_statement(
    ev: XPathEvaluator,
    statement: etree._Element,
    camt_type: CamtType,
    message_id: Optional[str] = None,
    message_created: Optional[str] = None,
    default_currency: str = "EUR",
) -> CamtDocument:
    opening, closing = read_balances(ev, statement)
    transactions = read_entries(ev, statement)

    currency = ev.text("Acct/Ccy", statement)
    if currency is None:
        for candidate in (opening, closing, *transactions):
            if candidate is not None:
                currency = candidate.currency
                break
    account = ev.text(("Acct/Id/IBAN", "Acct/Id/Othr/Id"), statement)
    if account is None:
        raise MalformedDocument(f"{camt_type.value}: falta Acct/Id")

    builder = (
        StatementBuilder()
        .with_id(ev.text("Id", statement) or message_id or "")
        .with_created_at(parse_datetime(ev.text("CreDtTm", statement) or message_created))
        .with_account(
            normalize_iban(account) if is_iban(account) else account,
            ev.text(("Acct/Svcr/FinInstnId/BIC", "Acct/Svcr/FinInstnId/BICFI"), statement),
        )
        .with_currency(currency or default_currency)
        .with_sequence_number(ev.text(("ElctrncSeqNb", "LglSeqNb"), statement))
        .with_opening_balance(opening)
        .with_closing_balance(closing)
        .add_transactions(transactions)
        .with_extra(
            camt_type=camt_type,
            message_id=message_id,
            account_owner=ev.text("Acct/Ownr/Nm", statement),
        )
    )
    return builder.build(CamtDocument)


def parse_camt(xml: Union[str, bytes], default_currency: str = "EUR") -> List[CamtDocument]:
    """Lee un mensaje CAMT.052/053/054 completo: un CamtDocument por Rpt/Stmt/Ntfctn."""
    ev = XPathEvaluator(load_xml(xml))
    camt_type, _ = message_info(ev.namespace)
    if camt_type is not None and camt_type not in LAYOUT:
        raise UnknownMessageType(camt_type.value)

    candidates = [camt_type] if camt_type is not None else list(LAYOUT)
    for candidate in candidates:
        message_tag, statement_tag = LAYOUT[candidate]
        message = ev.find_root(message_tag)
        if message is None:
            continue
        msg_id = ev.text("GrpHdr/MsgId", message)
        created = ev.text("GrpHdr/CreDtTm", message)
        documents = [
            read_statement(ev, stmt, candidate, msg_id, created, default_currency)
            for stmt in ev.nodes(statement_tag, message)
        ]
        log.debug("%s: %d extractos", candidate.value, len(documents))
        return documents

    raise MalformedDocument("No se encontró BkToCstmrStmt, BkToCstmrAcctRpt ni BkToCstmrDbtCdtNtfctn")

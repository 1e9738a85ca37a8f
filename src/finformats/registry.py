"""Registry declarativo de parsers CAMT.

Cada tipo de mensaje se describe con una entrada: clase destino, elemento raíz,
mapa ``campo -> XPath`` (o tupla de rutas de respaldo) y, opcionalmente, un
post-procesador para elementos repetidos que una tabla estática no expresa.
Un único parser genérico sirve a todos los tipos: evalúa cada ruta relativa al
elemento raíz, deja ``None`` donde no hay valor y construye el modelo pydantic,
que convierte cada string al tipo declarado del campo (fecha, Decimal, bool...).

El registry se llena una sola vez, de forma perezosa y protegida por un lock;
después solo se lee. ``register_type`` permite sobrescribir una entrada (gana la
última). ``reset`` existe solo en registries creados con ``allow_reset=True``.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Callable, Dict, List, Mapping, Optional, Tuple, Type, Union

from lxml import etree
from pydantic import BaseModel, ValidationError

from . import messages as m
from .camt import LAYOUT, read_balances, read_entries
from .errors import MalformedDocument, UnknownMessageType
from .logging_setup import get_logger
from .models import CamtDocument, CamtType
from .xpath import XPathEvaluator, load_xml

log = get_logger(__name__)

FieldPath = Union[str, Tuple[str, ...]]
PostProcessor = Callable[[BaseModel, XPathEvaluator, etree._Element, str], BaseModel]

ASSIGNMENT_MAPPINGS: Mapping[str, FieldPath] = MappingProxyType({
    "assignment_id": "Assgnmt/Id",
    "creation_date_time": "Assgnmt/CreDtTm",
    "assigner_agent_bic": "Assgnmt/Assgnr/Agt/FinInstnId/BICFI",
    "assigner_party_name": "Assgnmt/Assgnr/Pty/Nm",
    "assignee_agent_bic": "Assgnmt/Assgne/Agt/FinInstnId/BICFI",
    "assignee_party_name": "Assgnmt/Assgne/Pty/Nm",
    "case_id": "Case/Id",
    "case_creator": "Case/Cretr/Pty/Nm",
})

UNDERLYING_MAPPINGS: Mapping[str, FieldPath] = MappingProxyType({
    "original_message_id": "Undrlyg/Initn/OrgnlGrpInf/OrgnlMsgId",
    "original_message_name_id": "Undrlyg/Initn/OrgnlGrpInf/OrgnlMsgNmId",
    "original_creation_date_time": "Undrlyg/Initn/OrgnlGrpInf/OrgnlCreDtTm",
    "original_end_to_end_id": "Undrlyg/Initn/OrgnlEndToEndId",
    "original_transaction_id": "Undrlyg/Initn/OrgnlTxId",
    "original_interbank_settlement_amount": "Undrlyg/Initn/OrgnlIntrBkSttlmAmt",
    "original_currency": "Undrlyg/Initn/OrgnlIntrBkSttlmAmt/@Ccy",
    "original_interbank_settlement_date": "Undrlyg/Initn/OrgnlIntrBkSttlmDt",
})


@dataclass(frozen=True)
class RegistryEntry:
    message_type: CamtType
    document_class: Type[BaseModel]
    root_element: str
    field_mappings: Mapping[str, FieldPath] = field(default_factory=dict)
    include_assignment: bool = False
    include_underlying: bool = False
    post_processor: Optional[PostProcessor] = None

    def all_mappings(self) -> Dict[str, FieldPath]:
        """Bloques comunes primero; el mapa propio del tipo los sobrescribe."""
        merged: Dict[str, FieldPath] = {}
        if self.include_assignment:
            merged.update(ASSIGNMENT_MAPPINGS)
        if self.include_underlying:
            merged.update(UNDERLYING_MAPPINGS)
        merged.update(self.field_mappings)
        return merged


def _coerce_type(message_type: Union[CamtType, str]) -> CamtType:
    if isinstance(message_type, CamtType):
        return message_type
    try:
        return CamtType(str(message_type).strip().lower())
    except ValueError:
        raise UnknownMessageType(str(message_type)) from None


class CamtParserRegistry:
    def __init__(self, allow_reset: bool = False) -> None:
        self._entries: Dict[CamtType, RegistryEntry] = {}
        self._initialized = False
        self._lock = threading.Lock()
        self._allow_reset = allow_reset

    @property
    def initialized(self) -> bool:
        return self._initialized

    def initialize(self) -> None:
        if self._initialized:
            return
        with self._lock:
            if self._initialized:
                return
            for entry in builtin_entries():
                self._entries[entry.message_type] = entry
            self._initialized = True
            log.debug("Registry CAMT inicializado con %d tipos", len(self._entries))

    def register_type(
        self,
        message_type: Union[CamtType, str],
        document_class: Type[BaseModel],
        root_element: str,
        field_mappings: Optional[Mapping[str, FieldPath]] = None,
        include_assignment: bool = False,
        include_underlying: bool = False,
        post_processor: Optional[PostProcessor] = None,
    ) -> RegistryEntry:
        """Registra (o sobrescribe) un tipo. Las entradas integradas se cargan antes."""
        entry = RegistryEntry(
            message_type=_coerce_type(message_type),
            document_class=document_class,
            root_element=root_element,
            field_mappings=MappingProxyType(dict(field_mappings or {})),
            include_assignment=include_assignment,
            include_underlying=include_underlying,
            post_processor=post_processor,
        )
        unknown = set(entry.all_mappings()) - set(document_class.model_fields)
        if unknown:
            raise ValueError(f"{document_class.__name__} no tiene los campos: {', '.join(sorted(unknown))}")

        self.initialize()
        with self._lock:
            if entry.message_type in self._entries:
                log.debug("Sobrescribiendo registro de %s", entry.message_type.value)
            self._entries[entry.message_type] = entry
        return entry

    def get(self, message_type: Union[CamtType, str]) -> RegistryEntry:
        self.initialize()
        tag = _coerce_type(message_type)
        entry = self._entries.get(tag)
        if entry is None:
            raise UnknownMessageType(tag.value)
        return entry

    def registered_types(self) -> List[CamtType]:
        self.initialize()
        return sorted(self._entries, key=lambda t: t.value)

    def reset(self) -> None:
        if not self._allow_reset:
            raise RuntimeError("reset() solo está disponible en registries creados con allow_reset=True")
        with self._lock:
            self._entries.clear()
            self._initialized = False

    def parse(self, xml: Union[str, bytes], message_type: Union[CamtType, str]) -> BaseModel:
        entry = self.get(message_type)
        ev = XPathEvaluator(load_xml(xml))
        root = ev.find_root(entry.root_element)
        if root is None:
            raise MalformedDocument(f"No se encontró el bloque <{entry.root_element}> ({entry.message_type.value})")

        values: Dict[str, object] = {}
        for name, path in entry.all_mappings().items():
            value = ev.text(path, root)
            if value is not None:
                values[name] = value
        for tag_field in ("message_type", "camt_type"):
            if tag_field in entry.document_class.model_fields:
                values[tag_field] = entry.message_type

        try:
            document = entry.document_class(**values)
            if entry.post_processor is not None:
                document = entry.post_processor(document, ev, root, ev.prefix)
        except ValidationError as exc:
            raise MalformedDocument(f"{entry.message_type.value}: {exc}") from exc
        return document


# ---------------------------------------------------------------- post-procesadores

def _text(ev: XPathEvaluator, node: etree._Element, path: str) -> Optional[str]:
    return ev.text(path, node)


def _camt026_reasons(document, ev: XPathEvaluator, root: etree._Element, prefix: str):
    reasons = [
        m.UnableToApplyReason(
            additional_information=_text(ev, node, "AddtlInf"),
            missing_information_type=_text(ev, node, "MssngInf/Tp"),
            incorrect_information_type=_text(ev, node, "IncrrctInf/Tp"),
        )
        for node in ev.nodes("Justfn/MssngOrIncrrctInf", root)
    ]
    return document.model_copy(update={"unable_to_apply_reasons": tuple(reasons)})


def _camt028_information(document, ev: XPathEvaluator, root: etree._Element, prefix: str):
    infos = [
        m.AdditionalPaymentInformation(remittance_information=_text(ev, node, "Ustrd"))
        for node in ev.nodes("InfReqd/RmtInf", root)
    ]
    return document.model_copy(update={"additional_information": tuple(infos)})


def _camt087_modifications(document, ev: XPathEvaluator, root: etree._Element, prefix: str):
    requests = [
        m.ModificationRequest(
            requested_settlement_amount=_text(ev, node, "PmtModDtls/ReqdAmt"),
            requested_currency=_text(ev, node, "PmtModDtls/ReqdAmt/@Ccy"),
            creditor_name=_text(ev, node, "CdtrDtls/Cdtr/Nm"),
            creditor_account=_text(ev, node, "CdtrDtls/CdtrAcct/Id/IBAN"),
            remittance_information=_text(ev, node, "RmtInf/Ustrd"),
        )
        for node in ev.nodes("Mod", root)
    ]
    return document.model_copy(update={"modification_requests": tuple(requests)})


def _camt057_items(document, ev: XPathEvaluator, root: etree._Element, prefix: str):
    items = [
        m.NotificationItem(
            id=_text(ev, node, "Id") or "",
            expected_value_date=_text(ev, node, "XpctdValDt"),
            amount=_text(ev, node, "Amt"),
            currency=_text(ev, node, "Amt/@Ccy"),
            debtor_name=_text(ev, node, "Dbtr/Nm"),
            debtor_account_iban=_text(ev, node, "DbtrAcct/Id/IBAN"),
            debtor_agent_bic=_text(ev, node, "DbtrAgt/FinInstnId/BICFI"),
            remittance_information=_text(ev, node, "RmtInf/Ustrd"),
        )
        for node in ev.nodes("Ntfctn", root)
    ]
    return document.model_copy(update={"items": tuple(items)})


def _camt058_items(document, ev: XPathEvaluator, root: etree._Element, prefix: str):
    items = [
        m.CancellationItem(
            original_item_id=_text(ev, node, "OrgnlItmId") or "",
            cancellation_reason_code=_text(ev, node, "CxlRsnInf/Rsn/Cd"),
            cancellation_reason_proprietary=_text(ev, node, "CxlRsnInf/Rsn/Prtry"),
            cancellation_additional_info=_text(ev, node, "CxlRsnInf/AddtlInf"),
        )
        for node in ev.nodes("OrgnlNtfctn/OrgnlItm", root)
    ]
    return document.model_copy(update={"items": tuple(items)})


def _camt059_items(document, ev: XPathEvaluator, root: etree._Element, prefix: str):
    items = [
        m.StatusItem(
            original_item_id=_text(ev, node, "OrgnlItmId") or "",
            item_status=_text(ev, node, "ItmSts"),
            reason_code=_text(ev, node, "StsRsnInf/Rsn/Cd"),
            reason_proprietary=_text(ev, node, "StsRsnInf/Rsn/Prtry"),
            additional_information=_text(ev, node, "StsRsnInf/AddtlInf"),
        )
        for node in ev.nodes("OrgnlNtfctnAndSts/OrgnlItmAndSts", root)
    ]
    return document.model_copy(update={"items": tuple(items)})


def _statement_contents(document, ev: XPathEvaluator, root: etree._Element, prefix: str):
    """Balances y movimientos del primer Stmt/Rpt/Ntfctn del mensaje."""
    _, statement_tag = LAYOUT[document.camt_type]
    statement = ev.node(statement_tag, root)
    if statement is None:
        raise MalformedDocument(f"{document.camt_type.value}: falta <{statement_tag}>")
    opening, closing = read_balances(ev, statement)
    return document.model_copy(
        update={
            "opening_balance": opening,
            "closing_balance": closing,
            "transactions": tuple(read_entries(ev, statement)),
        }
    )


def _statement_mappings(statement_tag: str) -> Dict[str, FieldPath]:
    s = statement_tag
    return {
        "message_id": "GrpHdr/MsgId",
        "id": (f"{s}/Id", "GrpHdr/MsgId"),
        "created_at": (f"{s}/CreDtTm", "GrpHdr/CreDtTm"),
        "account_id": (f"{s}/Acct/Id/IBAN", f"{s}/Acct/Id/Othr/Id"),
        "bank_id": (f"{s}/Acct/Svcr/FinInstnId/BIC", f"{s}/Acct/Svcr/FinInstnId/BICFI"),
        "currency": (f"{s}/Acct/Ccy", f"{s}/Bal/Amt/@Ccy", f"{s}/Ntry/Amt/@Ccy"),
        "sequence_number": (f"{s}/ElctrncSeqNb", f"{s}/LglSeqNb"),
        "account_owner": f"{s}/Acct/Ownr/Nm",
    }


def builtin_entries() -> List[RegistryEntry]:
    """Tabla integrada: un registro por tipo soportado."""

    def entry(message_type, cls, root, mappings=None, assignment=False, underlying=False, post=None):
        return RegistryEntry(
            message_type=message_type,
            document_class=cls,
            root_element=root,
            field_mappings=MappingProxyType(dict(mappings or {})),
            include_assignment=assignment,
            include_underlying=underlying,
            post_processor=post,
        )

    T = CamtType
    entries = [
        entry(T.CAMT026, m.Camt026Document, "UblToApply", assignment=True, underlying=True, post=_camt026_reasons),
        entry(T.CAMT027, m.Camt027Document, "ClmNonRcpt", {
            "missing_cover_indicator": "CoverDtls/MssngCoverInd",
            "cover_date": "CoverDtls/CoverDt",
        }, assignment=True, underlying=True),
        entry(T.CAMT028, m.Camt028Document, "AddtlPmtInf", assignment=True, underlying=True, post=_camt028_information),
        entry(T.CAMT029, m.Camt029Document, "RsltnOfInvstgtn", {
            "investigation_status": "Sts/Conf",
            "investigation_status_proprietary": "Sts/Prtry",
        }, assignment=True),
        entry(T.CAMT030, m.Camt030Document, "NtfctnOfCaseAssgnmt", {
            "header_message_id": "Hdr/Id",
            "creation_date_time": "Hdr/CreDtTm",
            "assigner_agent_bic": "Assgnmt/Assgnr/Agt/FinInstnId/BICFI",
            "assigner_party_name": "Assgnmt/Assgnr/Pty/Nm",
            "assignee_agent_bic": "Assgnmt/Assgne/Agt/FinInstnId/BICFI",
            "assignee_party_name": "Assgnmt/Assgne/Pty/Nm",
            "case_id": "Case/Id",
            "case_creator": "Case/Cretr/Pty/Nm",
            "notification_justification": "Justfn/Rsn",
        }),
        entry(T.CAMT031, m.Camt031Document, "RjctInvstgtn", {
            "rejection_reason_code": "Justfn/RjctnRsn/Cd",
            "rejection_reason_proprietary": "Justfn/RjctnRsn/Prtry",
            "additional_information": "Justfn/AddtlInf",
        }, assignment=True),
        entry(T.CAMT033, m.Camt033Document, "ReqForDplct", assignment=True, underlying=True),
        entry(T.CAMT034, m.Camt034Document, "Dplct", {
            "duplicate_content": "Dplct/PrtryData/Data",
            "duplicate_content_type": "Dplct/PrtryData/Tp",
        }, assignment=True),
        entry(T.CAMT035, m.Camt035Document, "PrtryFrmtInvstgtn", {
            "proprietary_data": "PrtryData/Data",
            "proprietary_type": "PrtryData/Tp",
        }, assignment=True),
        entry(T.CAMT036, m.Camt036Document, "DbtAuthstnRspn", {
            "debit_authorised": "Conf/DbtAuthstn",
            "authorised_amount": "Conf/AmtToDbt",
            "authorised_currency": "Conf/AmtToDbt/@Ccy",
            "value_date": "Conf/ValDtToDbt",
            "reason": "Conf/Rsn",
        }, assignment=True),
        entry(T.CAMT037, m.Camt037Document, "DbtAuthstnReq", {
            "debtor_name": "Dtl/Dbtr/Nm",
            "debtor_account_iban": "Dtl/DbtrAcct/Id/IBAN",
            "reason": "Dtl/Rsn/Prtry",
        }, assignment=True, underlying=True),
        entry(T.CAMT038, m.Camt038Document, "CaseStsRptReq", {
            "request_id": "ReqHdr/Id",
            "creation_date_time": "ReqHdr/CreDtTm",
            "case_id": "Case/Id",
            "case_creator": "Case/Cretr/Pty/Nm",
            "requester_agent_bic": "ReqHdr/Reqstr/Agt/FinInstnId/BICFI",
            "requester_party_name": "ReqHdr/Reqstr/Pty/Nm",
            "responder_agent_bic": "ReqHdr/Rspndr/Agt/FinInstnId/BICFI",
            "responder_party_name": "ReqHdr/Rspndr/Pty/Nm",
        }),
        entry(T.CAMT039, m.Camt039Document, "CaseStsRpt", {
            "report_id": "Hdr/Id",
            "creation_date_time": "Hdr/CreDtTm",
            "status_code": "Sts/Conf",
            "status_reason": "Sts/StsRsn/Rsn/Prtry",
            "case_id": "Case/Id",
            "case_creator": "Case/Cretr/Pty/Nm",
            "reporter_agent_bic": "Hdr/Fr/Agt/FinInstnId/BICFI",
            "reporter_party_name": "Hdr/Fr/Pty/Nm",
            "receiver_agent_bic": "Hdr/To/Agt/FinInstnId/BICFI",
            "receiver_party_name": "Hdr/To/Pty/Nm",
            "additional_information": "Sts/StsRsn/AddtlInf",
        }),
        entry(T.CAMT055, m.Camt055Document, "CstmrPmtCxlReq", {
            "message_id": "GrpHdr/MsgId",
            "creation_date_time": "GrpHdr/CreDtTm",
            "number_of_transactions": "GrpHdr/NbOfTxs",
            "control_sum": "GrpHdr/CtrlSum",
            "initiating_party_name": "GrpHdr/InitgPty/Nm",
            "initiating_party_id": "GrpHdr/InitgPty/Id/OrgId/Othr/Id",
            "case_id": "Case/Id",
            "case_creator": "Case/Cretr/Pty/Nm",
        }),
        entry(T.CAMT056, m.Camt056Document, "FIToFIPmtCxlReq", {
            "message_id": "GrpHdr/MsgId",
            "creation_date_time": "GrpHdr/CreDtTm",
            "number_of_transactions": "GrpHdr/NbOfTxs",
            "control_sum": "GrpHdr/CtrlSum",
            "instructing_agent_bic": "GrpHdr/InstgAgt/FinInstnId/BICFI",
            "instructed_agent_bic": "GrpHdr/InstdAgt/FinInstnId/BICFI",
            "case_id": "Case/Id",
            "case_creator": "Case/Cretr/Pty/Nm",
        }),
        entry(T.CAMT057, m.Camt057Document, "NtfctnToRcv", {
            "group_header_message_id": "GrpHdr/MsgId",
            "creation_date_time": "GrpHdr/CreDtTm",
            "initiating_party_name": "GrpHdr/InitgPty/Nm",
            "message_recipient_bic": "GrpHdr/MsgRcpt/FinInstnId/BICFI",
        }, post=_camt057_items),
        entry(T.CAMT058, m.Camt058Document, "NtfctnToRcvCxlAdvc", {
            "group_header_message_id": "GrpHdr/MsgId",
            "creation_date_time": "GrpHdr/CreDtTm",
            "initiating_party_name": "GrpHdr/InitgPty/Nm",
            "message_recipient_bic": "GrpHdr/MsgRcpt/FinInstnId/BICFI",
            "original_message_id": "OrgnlNtfctn/OrgnlMsgId",
            "original_message_name_id": "OrgnlNtfctn/OrgnlMsgNmId",
            "original_creation_date_time": "OrgnlNtfctn/OrgnlCreDtTm",
        }, post=_camt058_items),
        entry(T.CAMT059, m.Camt059Document, "NtfctnToRcvStsRpt", {
            "group_header_message_id": "GrpHdr/MsgId",
            "creation_date_time": "GrpHdr/CreDtTm",
            "initiating_party_name": "GrpHdr/InitgPty/Nm",
            "message_recipient_bic": "GrpHdr/MsgRcpt/FinInstnId/BICFI",
            "original_message_id": "OrgnlNtfctnAndSts/OrgnlMsgId",
            "original_message_name_id": "OrgnlNtfctnAndSts/OrgnlMsgNmId",
            "original_creation_date_time": "OrgnlNtfctnAndSts/OrgnlCreDtTm",
            "original_group_status_code": "OrgnlNtfctnAndSts/OrgnlNtfctnSts",
        }, post=_camt059_items),
        entry(T.CAMT087, m.Camt087Document, "ReqToModfyPmt", assignment=True, underlying=True, post=_camt087_modifications),
    ]
    for camt_type, (message_tag, statement_tag) in LAYOUT.items():
        entries.append(entry(camt_type, CamtDocument, message_tag, _statement_mappings(statement_tag), post=_statement_contents))
    return entries


REGISTRY = CamtParserRegistry()


def parse(xml: Union[str, bytes], message_type: Union[CamtType, str], registry: Optional[CamtParserRegistry] = None) -> BaseModel:
    """Parsea `xml` como `message_type` usando el registry del proceso (o el dado)."""
    return (registry or REGISTRY).parse(xml, message_type)

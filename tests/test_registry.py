from __future__ import annotations

import threading
import time
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

import pytest
from pydantic import BaseModel

import finformats.registry as registry_module
from finformats import messages as m
from finformats.camt import render_camt
from finformats.converters import camt_to_mt940
from finformats.errors import MalformedDocument, UnknownMessageType
from finformats.models import CamtDocument, CamtType
from finformats.registry import ASSIGNMENT_MAPPINGS, UNDERLYING_MAPPINGS, CamtParserRegistry, RegistryEntry


def _document(camt_type: str, version: str, body: str) -> str:
    return f'<Document xmlns="urn:iso:std:iso:20022:tech:xsd:{camt_type}.001.{version}">{body}</Document>'


CAMT026 = _document(
    "camt.026",
    "07",
    """
    <UblToApply>
      <Assgnmt>
        <Id>ASSGN-1</Id>
        <Assgnr><Agt><FinInstnId><BICFI>COBADEFFXXX</BICFI></FinInstnId></Agt></Assgnr>
        <Assgne><Pty><Nm>Muster Bank</Nm></Pty></Assgne>
        <CreDtTm>2024-03-01T09:30:00</CreDtTm>
      </Assgnmt>
      <Case><Id>CASE-7</Id><Cretr><Pty><Nm>Creator AG</Nm></Pty></Cretr></Case>
      <Undrlyg>
        <Initn>
          <OrgnlGrpInf><OrgnlMsgId>ORIG-1</OrgnlMsgId><OrgnlMsgNmId>pacs.008.001.08</OrgnlMsgNmId></OrgnlGrpInf>
          <OrgnlEndToEndId>E2E-9</OrgnlEndToEndId>
          <OrgnlIntrBkSttlmAmt Ccy="EUR">1500.00</OrgnlIntrBkSttlmAmt>
          <OrgnlIntrBkSttlmDt>2024-02-28</OrgnlIntrBkSttlmDt>
        </Initn>
      </Undrlyg>
      <Justfn>
        <MssngOrIncrrctInf><AddtlInf>Falta referencia</AddtlInf><MssngInf><Tp>RMTI</Tp></MssngInf></MssngOrIncrrctInf>
        <MssngOrIncrrctInf><IncrrctInf><Tp>BENF</Tp></IncrrctInf></MssngOrIncrrctInf>
      </Justfn>
    </UblToApply>
    """,
)


class CaseStatus(BaseModel):
    status: Optional[str] = None


# ---------------------------------------------------------------- ciclo de vida

def test_registry_initializes_lazily_with_all_types(registry):
    assert not registry.initialized
    types = registry.registered_types()

    assert registry.initialized
    assert len(types) == 22
    assert CamtType.CAMT053 in types and CamtType.CAMT087 in types

    before = registry.get(CamtType.CAMT026)
    registry.initialize()
    assert registry.get(CamtType.CAMT026) is before


def test_reset_requires_opt_in(registry):
    with pytest.raises(RuntimeError):
        CamtParserRegistry().reset()

    registry.initialize()
    registry.reset()
    assert not registry.initialized
    assert registry.get("camt.026").root_element == "UblToApply"


def test_register_type_before_initialize_survives_builtin_load(registry):
    registry.register_type(CamtType.CAMT029, CaseStatus, "RsltnOfInvstgtn", {"status": "Sts/Conf"})

    assert registry.initialized
    assert registry.get(CamtType.CAMT029).document_class is CaseStatus
    assert len(registry.registered_types()) == 22


def test_last_registration_wins(registry):
    registry.initialize()
    registry.register_type("camt.029", CaseStatus, "RsltnOfInvstgtn", {"status": "Sts/Conf"})
    registry.register_type("CAMT.029", CaseStatus, "RsltnOfInvstgtn", {"status": "Sts/Prtry"})

    xml = _document("camt.029", "09", "<RsltnOfInvstgtn><Sts><Conf>ACCP</Conf><Prtry>OWN</Prtry></Sts></RsltnOfInvstgtn>")
    assert registry.parse(xml, CamtType.CAMT029) == CaseStatus(status="OWN")


def test_mappings_must_name_model_fields(registry):
    with pytest.raises(ValueError):
        registry.register_type(CamtType.CAMT029, CaseStatus, "RsltnOfInvstgtn", {"nope": "Sts/Conf"})
    with pytest.raises(ValueError):
        registry.register_type(CamtType.CAMT029, CaseStatus, "RsltnOfInvstgtn", include_assignment=True)


def test_unknown_type_is_rejected(registry):
    with pytest.raises(UnknownMessageType):
        registry.get("camt.999")
    with pytest.raises(UnknownMessageType):
        registry.parse(CAMT026, "pain.001")


def test_mapping_merge_order_lets_type_mappings_win():
    entry = RegistryEntry(
        message_type=CamtType.CAMT026,
        document_class=m.Camt026Document,
        root_element="UblToApply",
        field_mappings={"case_id": "Case/Othr"},
        include_assignment=True,
        include_underlying=True,
    )
    merged = entry.all_mappings()
    assert merged["case_id"] == "Case/Othr"
    assert set(ASSIGNMENT_MAPPINGS) | set(UNDERLYING_MAPPINGS) <= set(merged)


def test_concurrent_first_use_loads_builtin_table_once(registry, monkeypatch):
    calls = []
    original = registry_module.builtin_entries

    def slow_entries():
        calls.append(threading.get_ident())
        time.sleep(0.05)
        return original()

    monkeypatch.setattr(registry_module, "builtin_entries", slow_entries)

    barrier = threading.Barrier(8)
    results = []

    def worker():
        barrier.wait()
        results.append(len(registry.registered_types()))

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(calls) == 1
    assert results == [22] * 8


# ---------------------------------------------------------------- parseo

def test_camt026_assignment_underlying_and_reasons(registry):
    doc = registry.parse(CAMT026, "camt.026")

    assert isinstance(doc, m.Camt026Document)
    assert doc.message_type is CamtType.CAMT026
    assert doc.assignment_id == "ASSGN-1"
    assert doc.creation_date_time == datetime(2024, 3, 1, 9, 30)
    assert doc.assigner_agent_bic == "COBADEFFXXX"
    assert doc.assigner_party_name is None
    assert doc.assignee_party_name == "Muster Bank"
    assert doc.case_id == "CASE-7"
    assert doc.case_creator == "Creator AG"
    assert doc.original_message_id == "ORIG-1"
    assert doc.original_message_name_id == "pacs.008.001.08"
    assert doc.original_end_to_end_id == "E2E-9"
    assert doc.original_interbank_settlement_amount == Decimal("1500.00")
    assert doc.original_currency == "EUR"
    assert doc.original_interbank_settlement_date == date(2024, 2, 28)

    first, second = doc.unable_to_apply_reasons
    assert first.additional_information == "Falta referencia"
    assert first.missing_information_type == "RMTI"
    assert second.incorrect_information_type == "BENF"


def test_document_without_namespace_is_parsed(registry):
    xml = "<Document><UblToApply><Case><Id>C-1</Id></Case></UblToApply></Document>"
    doc = registry.parse(xml, CamtType.CAMT026)
    assert doc.case_id == "C-1"
    assert doc.unable_to_apply_reasons == ()


def test_camt028_additional_information(registry):
    xml = _document(
        "camt.028",
        "09",
        "<AddtlPmtInf><Case><Id>C-28</Id></Case>"
        "<InfReqd><RmtInf><Ustrd>Rechnung 1</Ustrd></RmtInf><RmtInf><Ustrd>Rechnung 2</Ustrd></RmtInf></InfReqd>"
        "</AddtlPmtInf>",
    )
    doc = registry.parse(xml, CamtType.CAMT028)
    assert [i.remittance_information for i in doc.additional_information] == ["Rechnung 1", "Rechnung 2"]


def test_camt027_booleans_and_bad_dates(registry):
    body = "<ClmNonRcpt><CoverDtls><MssngCoverInd>true</MssngCoverInd><CoverDt>{}</CoverDt></CoverDtls></ClmNonRcpt>"
    doc = registry.parse(_document("camt.027", "07", body.format("2024-04-02")), CamtType.CAMT027)
    assert doc.missing_cover_indicator is True
    assert doc.cover_date == date(2024, 4, 2)

    with pytest.raises(MalformedDocument):
        registry.parse(_document("camt.027", "07", body.format("kein-datum")), CamtType.CAMT027)


def test_camt057_notification_items(registry):
    xml = _document(
        "camt.057",
        "06",
        "<NtfctnToRcv><GrpHdr><MsgId>N-1</MsgId><CreDtTm>2024-05-01T12:00:00</CreDtTm></GrpHdr>"
        "<Ntfctn><Id>I-1</Id><XpctdValDt>2024-05-03</XpctdValDt><Amt Ccy=\"EUR\">99.95</Amt>"
        "<Dbtr><Nm>Max Muster</Nm></Dbtr><DbtrAcct><Id><IBAN>DE89370400440532013000</IBAN></Id></DbtrAcct></Ntfctn>"
        "<Ntfctn><Id>I-2</Id></Ntfctn>"
        "</NtfctnToRcv>",
    )
    doc = registry.parse(xml, CamtType.CAMT057)

    assert doc.group_header_message_id == "N-1"
    first, second = doc.items
    assert first.id == "I-1"
    assert first.expected_value_date == date(2024, 5, 3)
    assert first.amount == Decimal("99.95")
    assert first.currency == "EUR"
    assert first.debtor_name == "Max Muster"
    assert first.debtor_account_iban == "DE89370400440532013000"
    assert second.id == "I-2" and second.amount is None


def test_camt057_bad_item_amount_is_malformed(registry):
    xml = _document("camt.057", "06", "<NtfctnToRcv><Ntfctn><Id>I-1</Id><Amt Ccy=\"EUR\">viel</Amt></Ntfctn></NtfctnToRcv>")
    with pytest.raises(MalformedDocument):
        registry.parse(xml, CamtType.CAMT057)


def test_camt058_cancellation_items(registry):
    xml = _document(
        "camt.058",
        "08",
        "<NtfctnToRcvCxlAdvc><OrgnlNtfctn><OrgnlMsgId>N-1</OrgnlMsgId>"
        "<OrgnlItm><OrgnlItmId>I-1</OrgnlItmId><CxlRsnInf><Rsn><Cd>DUPL</Cd></Rsn></CxlRsnInf></OrgnlItm>"
        "<OrgnlItm><OrgnlItmId>I-2</OrgnlItmId><CxlRsnInf><Rsn><Prtry>OTHER</Prtry></Rsn>"
        "<AddtlInf>doppelt</AddtlInf></CxlRsnInf></OrgnlItm>"
        "</OrgnlNtfctn></NtfctnToRcvCxlAdvc>",
    )
    doc = registry.parse(xml, CamtType.CAMT058)

    assert doc.original_message_id == "N-1"
    assert [i.original_item_id for i in doc.items] == ["I-1", "I-2"]
    assert doc.items[0].cancellation_reason_code == "DUPL"
    assert doc.items[1].cancellation_reason_proprietary == "OTHER"
    assert doc.items[1].cancellation_additional_info == "doppelt"


def test_camt059_status_items(registry):
    xml = _document(
        "camt.059",
        "06",
        "<NtfctnToRcvStsRpt><OrgnlNtfctnAndSts><OrgnlMsgId>N-1</OrgnlMsgId><OrgnlNtfctnSts>RCVD</OrgnlNtfctnSts>"
        "<OrgnlItmAndSts><OrgnlItmId>I-1</OrgnlItmId><ItmSts>RJCT</ItmSts>"
        "<StsRsnInf><Rsn><Cd>AM05</Cd></Rsn></StsRsnInf></OrgnlItmAndSts>"
        "</OrgnlNtfctnAndSts></NtfctnToRcvStsRpt>",
    )
    doc = registry.parse(xml, CamtType.CAMT059)

    assert doc.original_group_status_code == "RCVD"
    (item,) = doc.items
    assert (item.original_item_id, item.item_status, item.reason_code) == ("I-1", "RJCT", "AM05")


def test_camt087_modification_requests(registry):
    xml = _document(
        "camt.087",
        "06",
        "<ReqToModfyPmt><Case><Id>C-87</Id></Case>"
        "<Mod><PmtModDtls><ReqdAmt Ccy=\"EUR\">10.00</ReqdAmt></PmtModDtls>"
        "<CdtrDtls><Cdtr><Nm>Neuer Name</Nm></Cdtr><CdtrAcct><Id><IBAN>DE02120300000000202051</IBAN></Id></CdtrAcct></CdtrDtls>"
        "<RmtInf><Ustrd>Korrektur</Ustrd></RmtInf></Mod>"
        "</ReqToModfyPmt>",
    )
    doc = registry.parse(xml, CamtType.CAMT087)

    (mod,) = doc.modification_requests
    assert mod.requested_settlement_amount == Decimal("10.00")
    assert mod.requested_currency == "EUR"
    assert mod.creditor_name == "Neuer Name"
    assert mod.creditor_account == "DE02120300000000202051"
    assert mod.remittance_information == "Korrektur"


def test_missing_root_element_is_malformed(registry):
    with pytest.raises(MalformedDocument):
        registry.parse(CAMT026, CamtType.CAMT029)


def test_statement_through_registry_feeds_converter(registry, mt940_document, settings):
    doc = registry.parse(render_camt(mt940_document), CamtType.CAMT053)

    assert isinstance(doc, CamtDocument)
    assert doc.camt_type is CamtType.CAMT053
    assert doc.id == doc.message_id == "STMT-2024-01"
    assert doc.bank_id == "COBADEFFXXX"
    assert doc.account_owner is None
    assert doc.opening_balance.amount == Decimal("1000.00")
    assert len(doc.transactions) == 3

    mt940 = camt_to_mt940.convert(doc, settings=settings)
    assert mt940.closing_balance.signed_amount == Decimal("950.00")
    assert mt940.related_reference is None


def test_module_level_parse_uses_process_registry():
    doc = registry_module.parse(CAMT026, "camt.026")
    assert doc.case_id == "CASE-7"

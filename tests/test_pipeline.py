from __future__ import annotations

import io
import json
import logging
from decimal import Decimal

import pytest
from pydantic import ValidationError
from rich.console import Console
from rich.logging import RichHandler

from finformats import logging_setup
from finformats.camt import parse_camt, render_camt
from finformats.config import Settings, load_settings
from finformats.converters import mt940_to_datev
from finformats.datev import render_datev
from finformats.detect import CAMT, DATEV, MT940, FormatInfo, detect_format
from finformats.errors import MalformedDocument
from finformats.models import CamtType
from finformats.mt940 import parse_mt940, render_mt940
from finformats.pipeline import main

CAMT026 = (
    '<Document xmlns="urn:iso:std:iso:20022:tech:xsd:camt.026.001.07">'
    "<UblToApply><Case><Id>CASE-1</Id></Case>"
    "<Undrlyg><Initn><OrgnlIntrBkSttlmAmt Ccy=\"EUR\">12.50</OrgnlIntrBkSttlmAmt></Initn></Undrlyg>"
    "</UblToApply></Document>"
)


@pytest.fixture(autouse=True)
def wide_console(monkeypatch):
    # la tabla de rich se recorta al ancho de la consola
    monkeypatch.setenv("COLUMNS", "250")


@pytest.fixture
def mt940_file(tmp_path, mt940_document):
    path = tmp_path / "januar.sta"
    path.write_bytes(render_mt940(mt940_document).encode("iso-8859-1"))
    return path


@pytest.fixture
def datev_file(tmp_path, mt940_document, settings):
    path = tmp_path / "januar.csv"
    datev = mt940_to_datev.convert(mt940_document, settings=settings)
    path.write_bytes(render_datev(datev).encode("cp1252"))
    return path


# ---------------------------------------------------------------- detección

def test_detect_camt_by_namespace(mt940_document):
    assert detect_format(render_camt(mt940_document, version="08")) == FormatInfo(CAMT, CamtType.CAMT053, "08")
    assert detect_format(CAMT026) == FormatInfo(CAMT, CamtType.CAMT026, "07")


def test_detect_camt_without_namespace_by_message_element():
    info = detect_format(b"\xef\xbb\xbf<?xml version='1.0'?>\n<Document><BkToCstmrAcctRpt/></Document>")
    assert info == FormatInfo(CAMT, CamtType.CAMT052, None)


def test_detect_mt940_with_and_without_envelope(mt940_document):
    assert detect_format(render_mt940(mt940_document)) == FormatInfo(MT940)
    assert detect_format("{1:F01COBADEFFAXXX0000000000}{4:\r\n:20:X\r\n-}") == FormatInfo(MT940)
    assert detect_format("\r\n\r\n:20:X\r\n:25:123\r\n") == FormatInfo(MT940)


def test_detect_datev(datev_file):
    assert detect_format(datev_file.read_bytes()) == FormatInfo(DATEV)


@pytest.mark.parametrize("data", [b"", b"   \r\n", b"hola;mundo", "a;b;c;d;e;f;g"])
def test_detect_rejects_unknown_content(data):
    with pytest.raises(MalformedDocument):
        detect_format(data)


# ---------------------------------------------------------------- config / logging

def test_load_settings_from_mapping():
    settings = load_settings(
        {
            "FINFORMATS_CAMT_VERSION": "8",
            "FINFORMATS_ENFORCE_SINGLE_CURRENCY": "false",
            "FINFORMATS_MT940_LINE_WIDTH": "  ",
            "OTRA_VARIABLE": "x",
        }
    )
    assert settings.camt_version == "08"
    assert settings.enforce_single_currency is False
    assert settings.mt940_line_width == 65
    assert settings.default_currency == "EUR"


@pytest.mark.parametrize(
    "environ",
    [{"FINFORMATS_CAMT_VERSION": "12"}, {"FINFORMATS_DEFAULT_CURRENCY": "euro"}, {"FINFORMATS_MT940_LINE_WIDTH": "80"}],
)
def test_invalid_settings_are_rejected(environ):
    with pytest.raises(ValidationError):
        load_settings(environ)


def test_settings_are_frozen():
    with pytest.raises(ValidationError):
        Settings().default_currency = "USD"


def test_configure_logging_installs_single_rich_handler(monkeypatch):
    monkeypatch.setattr(logging_setup, "_CONFIGURED", False)
    logger = logging.getLogger("finformats")
    monkeypatch.setattr(logger, "handlers", [])
    monkeypatch.setattr(logger, "propagate", True)
    monkeypatch.setattr(logger, "level", logging.NOTSET)

    stream = io.StringIO()
    logging_setup.configure_logging("debug", console=Console(file=stream, width=200))
    logging_setup.configure_logging("error")

    rich_handlers = [h for h in logger.handlers if isinstance(h, RichHandler)]
    assert len(rich_handlers) == 1
    assert logger.level == logging.DEBUG
    assert logger.propagate is False

    logging_setup.get_logger("finformats.prueba").debug("mensaje de prueba")
    assert "mensaje de prueba" in stream.getvalue()


def test_log_level_falls_back_to_environment(monkeypatch):
    monkeypatch.setenv("FINFORMATS_LOG_LEVEL", "INFO")
    assert logging_setup._parse_level(None) == logging.INFO
    assert logging_setup._parse_level("nivel-raro") == logging.INFO
    monkeypatch.delenv("FINFORMATS_LOG_LEVEL")
    assert logging_setup._parse_level(None) == logging.WARNING
    assert logging_setup._parse_level(10) == logging.DEBUG


# ---------------------------------------------------------------- CLI

def test_convert_mt940_to_camt_file(mt940_file, tmp_path):
    out = tmp_path / "salida" / "januar.xml"
    assert main(["convert", str(mt940_file), "--to", "camt053", "--out", str(out)]) == 0

    (doc,) = parse_camt(out.read_bytes())
    assert doc.camt_type is CamtType.CAMT053
    assert doc.closing_balance.signed_amount == Decimal("950.00")
    assert len(doc.transactions) == 3


def test_convert_to_datev_prints_to_stdout(mt940_file, capsys):
    assert main(["convert", str(mt940_file), "--to", "datev"]) == 0
    captured = capsys.readouterr()
    assert '"DE02120300000000202051";0001;31.01.2024' in captured.out
    assert "Transacciones convertidas: 3" in captured.err


def test_convert_datev_needs_opening_balance(datev_file, capsys):
    assert main(["convert", str(datev_file), "--to", "mt940"]) == 2
    assert "MissingBalance" in capsys.readouterr().err

    assert main(["convert", str(datev_file), "--to", "mt940", "--opening", "1.000,00"]) == 0
    (doc,) = parse_mt940(capsys.readouterr().out)
    assert doc.opening_balance.signed_amount == Decimal("1000.00")
    assert doc.closing_balance.signed_amount == Decimal("950.00")


def test_convert_rejects_bad_opening_amount(mt940_file):
    with pytest.raises(SystemExit):
        main(["convert", str(mt940_file), "--to", "camt053", "--opening", "mucho"])


def test_convert_to_same_format_is_not_supported(mt940_file):
    with pytest.raises(SystemExit):
        main(["convert", str(mt940_file), "--to", "mt940"])


def test_check_reports_consistent_and_inconsistent_statements(mt940_file, tmp_path, capsys):
    assert main(["check", str(mt940_file)]) == 0
    assert "OK" in capsys.readouterr().err

    broken = tmp_path / "kaputt.sta"
    broken.write_bytes(mt940_file.read_bytes().replace(b":62F:C240131EUR950,00", b":62F:C240131EUR999,00"))
    assert main(["check", str(broken)]) == 1
    assert "InconsistentBalances" in capsys.readouterr().err


def test_check_without_balances_is_a_warning(datev_file, capsys):
    assert main(["check", str(datev_file)]) == 0
    assert "sin balances" in capsys.readouterr().err


def test_inspect_prints_json(tmp_path, capsys):
    path = tmp_path / "camt026.xml"
    path.write_text(CAMT026, encoding="utf-8")

    assert main(["inspect", str(path)]) == 0
    data = json.loads(capsys.readouterr().out)
    assert data["message_type"] == "camt.026"
    assert data["case_id"] == "CASE-1"
    assert data["original_currency"] == "EUR"


def test_missing_file_exits(tmp_path):
    with pytest.raises(SystemExit):
        main(["check", str(tmp_path / "no-existe.sta")])

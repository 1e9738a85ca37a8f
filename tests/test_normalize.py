from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest

from finformats.iban import blz_from_iban, german_iban, is_bic, is_iban, normalize_iban, split_account_id
from finformats.normalize import (
    chunk,
    collapse_whitespace,
    format_amount_comma,
    format_amount_dot,
    format_date_de,
    format_signed_amount,
    parse_amount,
    parse_date,
    segment_purpose,
)
from finformats.sepa import SepaFields, decode_tags, encode_tags, iso_to_mt940_code, mt940_to_iso_code


# ---------------------------------------------------------------- importes

@pytest.mark.parametrize(
    "text, expected",
    [
        ("1.234,56", "1234.56"),
        ("1234,56", "1234.56"),
        ("1,234.56", "1234.56"),
        ("1234.56", "1234.56"),
        ("+1234,56", "1234.56"),
        ("-0,5", "-0.50"),
        ("1234,", "1234.00"),
        (" 12 ", "12.00"),
        ("1.000.000", "1000000.00"),
    ],
)
def test_parse_amount_accepts_comma_and_period_forms(text, expected):
    assert parse_amount(text) == Decimal(expected)


@pytest.mark.parametrize("text", ["", "abc", "1,2,3", "12,345"])
def test_parse_amount_rejects_garbage_and_extra_decimals(text):
    with pytest.raises(ValueError):
        parse_amount(text)


def test_amount_formatting_never_rounds():
    assert format_amount_comma(Decimal("1234.5")) == "1234,50"
    assert format_amount_dot(Decimal("0.1")) == "0.10"
    assert format_signed_amount(Decimal("-12.3")) == "-12,30"
    assert format_signed_amount(Decimal("1234.56")) == "+1234,56"
    with pytest.raises(ValueError):
        format_amount_dot(Decimal("1.005"))


# ---------------------------------------------------------------- fechas

@pytest.mark.parametrize(
    "text, expected",
    [
        ("2024-01-31", date(2024, 1, 31)),
        ("2024-01-31T10:15:00+01:00", date(2024, 1, 31)),
        ("31.01.2024", date(2024, 1, 31)),
        ("31.01.24", date(2024, 1, 31)),
        ("240131", date(2024, 1, 31)),
        ("20240131", date(2024, 1, 31)),
        ("31012024", date(2024, 1, 31)),
        ("31/1/2024", date(2024, 1, 31)),
        ("31-01-2024", date(2024, 1, 31)),
        ("991231", date(1999, 12, 31)),
        ("301231", date(2030, 12, 31)),
    ],
)
def test_parse_date_formats(text, expected):
    assert parse_date(text) == expected


def test_parse_date_rejects_unknown_format():
    with pytest.raises(ValueError):
        parse_date("Jan 31 2024")


def test_format_date_de():
    assert format_date_de(date(2024, 3, 9)) == "09.03.2024"


# ---------------------------------------------------------------- texto

def test_segment_purpose_wraps_on_words_without_truncating():
    text = "Rechnung 2024-001 vom 15.01.2024 Kundennummer 4711 Vertrag 99"
    lines = segment_purpose(text, 27)
    assert all(len(line) <= 27 for line in lines)
    assert " ".join(lines) == text


def test_segment_purpose_splits_words_longer_than_width():
    lines = segment_purpose("X" * 60, 27)
    assert lines == ["X" * 27, "X" * 27, "X" * 6]


def test_chunk_is_exact_and_lossless():
    text = "EREF+ABC MREF+M1 SVWZ+Text mit  doppelten Leerzeichen"
    pieces = chunk(text, 27)
    assert all(len(p) == 27 for p in pieces[:-1])
    assert "".join(pieces) == text
    assert chunk("", 27) == []


def test_collapse_whitespace():
    assert collapse_whitespace("  a \n b\t c ") == "a b c"
    assert collapse_whitespace(None) == ""


# ---------------------------------------------------------------- tags SEPA

def test_encode_tags_fixed_order():
    encoded = encode_tags(
        SepaFields(
            purpose="Miete Januar",
            bic="COBADEFFXXX",
            iban="DE89370400440532013000",
            name="Max Mustermann",
            customer_reference="K1",
            creditor_id="DE98ZZZ09999999999",
            mandate_id="M-1",
            end_to_end_id="E-1",
        )
    )
    assert encoded == (
        "EREF+E-1 MREF+M-1 CRED+DE98ZZZ09999999999 KREF+K1 NAME+Max Mustermann "
        "IBAN+DE89370400440532013000 BIC+COBADEFFXXX SVWZ+Miete Januar"
    )


def test_svwz_prefix_only_when_another_tag_precedes():
    assert encode_tags(SepaFields(purpose="Nur Text")) == "Nur Text"
    assert encode_tags(SepaFields(mandate_id="M", purpose="Text")) == "MREF+M SVWZ+Text"


def test_notprovided_end_to_end_is_dropped():
    assert encode_tags(SepaFields(end_to_end_id="NOTPROVIDED", purpose="Text")) == "Text"
    assert decode_tags("EREF+NOTPROVIDED SVWZ+Text").end_to_end_id is None


def test_decode_tags_recovers_values_with_spaces():
    fields = decode_tags("EREF+E 1 NAME+Max Mustermann IBAN+DE89370400440532013000 SVWZ+Miete Januar")
    assert fields.end_to_end_id == "E 1"
    assert fields.name == "Max Mustermann"
    assert fields.iban == "DE89370400440532013000"
    assert fields.purpose == "Miete Januar"
    assert fields.mandate_id is None


def test_decode_tags_without_tags_is_plain_purpose():
    fields = decode_tags("  Gutschrift   Zinsen ")
    assert fields.purpose == "Gutschrift Zinsen"
    assert fields.end_to_end_id is None
    assert decode_tags("").is_empty()


def test_decode_tags_ignores_tag_like_text_inside_words():
    fields = decode_tags("SVWZ+Ersatz NAMEN+X")
    assert fields.name is None
    assert fields.purpose == "Ersatz NAMEN+X"


def test_transaction_code_tables():
    assert iso_to_mt940_code("NTRF") == "TRF"
    assert iso_to_mt940_code("NCHG") == "CHG"
    assert iso_to_mt940_code("XXXX") == "TRF"
    assert iso_to_mt940_code(None) == "TRF"
    assert mt940_to_iso_code("CHG") == "NCHG"
    assert mt940_to_iso_code("TRA") == "NTRF"
    assert mt940_to_iso_code("ZZZ") == "NTRF"


# ---------------------------------------------------------------- IBAN / BIC / BLZ

def test_iban_validation_and_normalization():
    assert is_iban("DE89 3704 0044 0532 0130 00")
    assert normalize_iban("de89 3704 0044 0532 0130 00") == "DE89370400440532013000"
    assert not is_iban("DE88370400440532013000")
    assert not is_iban("1234")


def test_blz_from_german_iban():
    assert blz_from_iban("DE89370400440532013000") == "37040044"
    assert blz_from_iban("AT611904300234573201") is None
    assert blz_from_iban(None) is None


def test_german_iban_from_blz_and_account():
    assert german_iban("37040044", "532013000") == "DE89370400440532013000"
    with pytest.raises(ValueError):
        german_iban("3704", "1")


def test_bic_format():
    assert is_bic("COBADEFFXXX")
    assert is_bic("cobadeff")
    assert not is_bic("37040044")


def test_split_account_id():
    assert split_account_id("37040044/532013000") == ("37040044", "532013000")
    assert split_account_id("DE89370400440532013000") == (None, "DE89370400440532013000")

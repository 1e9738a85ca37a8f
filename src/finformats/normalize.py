from __future__ import annotations

import re
import textwrap
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import List, Optional

_CENT = Decimal("0.01")

# Patrón de forma antes de strptime: %m/%d aceptan un solo dígito y "240131"
# calzaría con %Y%m%d como 2401-03-01.
_DATE_PATTERNS = (
    (re.compile(r"^\d{4}-\d{2}-\d{2}$"), "%Y-%m-%d"),
    (re.compile(r"^\d{1,2}\.\d{1,2}\.\d{4}$"), "%d.%m.%Y"),
    (re.compile(r"^\d{1,2}\.\d{1,2}\.\d{2}$"), "%d.%m.%y"),
    (re.compile(r"^\d{8}$"), "%Y%m%d"),
    (re.compile(r"^\d{6}$"), "%y%m%d"),
    (re.compile(r"^\d{8}$"), "%d%m%Y"),
    (re.compile(r"^\d{6}$"), "%d%m%y"),
    (re.compile(r"^\d{1,2}/\d{1,2}/\d{4}$"), "%d/%m/%Y"),
    (re.compile(r"^\d{1,2}-\d{1,2}-\d{4}$"), "%d-%m-%Y"),
)

# Años de dos dígitos: 00-30 -> 20xx, 31-99 -> 19xx
_YEAR_PIVOT = 30


# ---------------------------------------------------------------- importes

def _two_places(value: Decimal) -> Decimal:
    if value.as_tuple().exponent < -2 and value != value.quantize(_CENT):
        raise ValueError(f"Importe con más de dos decimales: {value}")
    return value.quantize(_CENT)


def parse_amount(text: str) -> Decimal:
    """
    Acepta coma o punto decimal, con o sin separador de miles y signo opcional:
    "1.234,56", "1234,56", "1,234.56", "1234.56", "+1234,56", "1234," (MT940).
    Nunca redondea: más de dos decimales es un error.
    """
    raw = (text or "").strip().replace(" ", "")
    if not raw:
        raise ValueError("Importe vacío")

    sign = ""
    if raw[0] in "+-":
        sign, raw = ("-" if raw[0] == "-" else ""), raw[1:]

    if "," in raw and "." in raw:
        # el último separador es el decimal
        if raw.rfind(",") > raw.rfind("."):
            raw = raw.replace(".", "").replace(",", ".")
        else:
            raw = raw.replace(",", "")
    elif "," in raw:
        if raw.count(",") > 1:
            raise ValueError(f"Importe ambiguo: {text!r}")
        raw = raw.replace(",", ".")
    elif raw.count(".") > 1:
        raw = raw.replace(".", "")

    if raw.endswith("."):
        raw += "00"
    try:
        value = Decimal(sign + raw)
    except InvalidOperation as exc:
        raise ValueError(f"Importe inválido: {text!r}") from exc
    return _two_places(value)


def format_amount_comma(amount: Decimal) -> str:
    """1234.5 -> "1234,50" (MT940 / DATEV, sin separador de miles)."""
    return f"{_two_places(amount):.2f}".replace(".", ",")


def format_amount_dot(amount: Decimal) -> str:
    """1234.5 -> "1234.50" (ISO 20022)."""
    return f"{_two_places(amount):.2f}"


def format_signed_amount(value: Decimal) -> str:
    """-12.3 -> "-12,30"; 12.3 -> "+12,30". Signo siempre explícito."""
    sign = "-" if value < 0 else "+"
    return sign + format_amount_comma(abs(value))


# ---------------------------------------------------------------- fechas

def full_year(yy: int) -> int:
    return (2000 if yy <= _YEAR_PIVOT else 1900) + yy


def parse_date(text: str) -> date:
    raw = (text or "").strip()
    if "T" in raw:
        raw = raw.split("T", 1)[0]
    for pattern, fmt in _DATE_PATTERNS:
        if not pattern.match(raw):
            continue
        try:
            parsed = datetime.strptime(raw, fmt).date()
        except ValueError:
            continue
        if "%y" in fmt:
            yy = parsed.year % 100
            parsed = parsed.replace(year=full_year(yy))
        return parsed
    raise ValueError(f"Fecha no reconocida: {text!r}")


def parse_optional_date(text: Optional[str]) -> Optional[date]:
    if not text or not text.strip():
        return None
    return parse_date(text)


def format_date_de(value: date) -> str:
    return value.strftime("%d.%m.%Y")


# ---------------------------------------------------------------- texto

def collapse_whitespace(text: Optional[str]) -> str:
    return " ".join((text or "").split())


def segment_purpose(text: str, width: int = 27) -> List[str]:
    """
    Parte el texto en líneas de `width` por palabras, sin truncar:
    una palabra más larga que `width` se corta en trozos.
    """
    text = collapse_whitespace(text)
    if not text:
        return []
    return textwrap.wrap(text, width=width, break_long_words=True, break_on_hyphens=False)


def chunk(text: str, width: int) -> List[str]:
    """Trozos exactos de `width` caracteres; "".join(chunk(t, w)) == t."""
    return [text[i : i + width] for i in range(0, len(text), width)]

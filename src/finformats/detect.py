from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional, Union

from .camt import LAYOUT, message_info
from .errors import MalformedDocument
from .models import CamtType

DATEV = "datev"
MT940 = "mt940"
CAMT = "camt"


@dataclass(frozen=True)
class FormatInfo:
    format: str
    camt_type: Optional[CamtType] = None
    version: Optional[str] = None


_MT940_RE = re.compile(r"^:20:", re.MULTILINE)
_SWIFT_BLOCK_RE = re.compile(r"^\{1:")
_CAMT_NS_RE = re.compile(r"urn:iso:std:iso:20022:tech:xsd:camt\.\d{3}\.001\.\d{2}")
_DATEV_DATE_RE = re.compile(r"\d{2}\.\d{2}\.\d{2,4}")


def _sample(data: Union[str, bytes]) -> str:
    if isinstance(data, bytes):
        if data.startswith(b"\xef\xbb\xbf"):
            data = data[3:]
        # latin-1 nunca falla; alcanza para olfatear el formato
        data = data[:8192].decode("latin-1")
    return data[:8192].lstrip("\ufeff \t\r\n")


def _camt_info(text: str) -> FormatInfo:
    m = _CAMT_NS_RE.search(text)
    camt_type, version = message_info(m.group(0) if m else None)
    if camt_type is None:
        # sin namespace: se busca el elemento de mensaje
        for candidate, (message_tag, _) in LAYOUT.items():
            if f"<{message_tag}" in text or f":{message_tag}" in text:
                camt_type = candidate
                break
    return FormatInfo(CAMT, camt_type, version)


def _looks_like_datev(text: str) -> bool:
    first = next((line for line in text.splitlines() if line.strip()), "")
    fields = first.split(";")
    return len(fields) >= 7 and any(_DATEV_DATE_RE.fullmatch(f.strip().strip('"')) for f in fields[3:6])


def detect_format(data: Union[str, bytes]) -> FormatInfo:
    """
    Determina el formato por contenido:
    - XML con namespace camt.NNN.001.VV (o elemento BkToCstmr*) -> CAMT
    - bloque SWIFT {1: o una línea :20: -> MT940
    - filas `;` con fechas DD.MM.YYYY en las columnas de extracto -> DATEV
    """
    text = _sample(data)
    if not text:
        raise MalformedDocument("Archivo vacío")
    if text.startswith("<"):
        return _camt_info(text)
    if _SWIFT_BLOCK_RE.match(text) or _MT940_RE.search(text):
        return FormatInfo(MT940)
    if _looks_like_datev(text):
        return FormatInfo(DATEV)
    raise MalformedDocument("Formato no reconocido (se esperaba DATEV, MT940 o CAMT)")

from __future__ import annotations

import re
from dataclasses import dataclass, fields
from typing import Dict, Optional

from .normalize import collapse_whitespace

# Orden fijo de emisión
SEPA_TAG_ORDER = ("EREF", "MREF", "CRED", "KREF", "NAME", "IBAN", "BIC", "SVWZ")
NOT_PROVIDED = "NOTPROVIDED"

_TAG_RE = re.compile(r"(?:(?<=\s)|^)(EREF|MREF|CRED|KREF|NAME|IBAN|BIC|SVWZ)\+")

ISO_TO_MT940: Dict[str, str] = {
    "NTRF": "TRF",
    "NCHK": "CHK",
    "NBOE": "BOE",
    "NDCR": "DCR",
    "NLCR": "LCR",
    "NMSC": "MSC",
    "NCHG": "CHG",
    "NINT": "INT",
    "NDIV": "DIV",
    "NRTI": "RTI",
}
MT940_TO_ISO: Dict[str, str] = {mt: iso for iso, mt in ISO_TO_MT940.items()}
MT940_TO_ISO["TRA"] = "NTRF"


@dataclass(frozen=True)
class SepaFields:
    end_to_end_id: Optional[str] = None   # EREF
    mandate_id: Optional[str] = None      # MREF
    creditor_id: Optional[str] = None     # CRED
    customer_reference: Optional[str] = None  # KREF
    name: Optional[str] = None
    iban: Optional[str] = None
    bic: Optional[str] = None
    purpose: Optional[str] = None         # SVWZ o texto sin tag

    def is_empty(self) -> bool:
        return all(getattr(self, f.name) is None for f in fields(self))


_ATTR_BY_TAG = dict(zip(SEPA_TAG_ORDER, (f.name for f in fields(SepaFields))))


def encode_tags(values: SepaFields) -> str:
    """
    Serializa como tokens TAG+valor separados por espacio, en orden fijo.
    El texto libre lleva SVWZ+ solo si hay algún otro tag antes.
    """
    parts = []
    for tag in SEPA_TAG_ORDER[:-1]:
        value = collapse_whitespace(getattr(values, _ATTR_BY_TAG[tag]))
        if not value:
            continue
        if tag == "EREF" and value.upper() == NOT_PROVIDED:
            continue
        parts.append(f"{tag}+{value}")

    purpose = collapse_whitespace(values.purpose)
    if purpose:
        parts.append(f"SVWZ+{purpose}" if parts else purpose)
    return " ".join(parts)


def decode_tags(text: str) -> SepaFields:
    """
    Inversa de encode_tags. Los valores pueden contener espacios: cada valor
    llega hasta el siguiente tag. Texto previo al primer tag cuenta como propósito.
    """
    text = text or ""
    matches = list(_TAG_RE.finditer(text))
    if not matches:
        purpose = collapse_whitespace(text)
        return SepaFields(purpose=purpose or None)

    found: Dict[str, str] = {}
    leading = collapse_whitespace(text[: matches[0].start()])
    for i, m in enumerate(matches):
        end = matches[i + 1].start() if i + 1 < len(matches) else len(text)
        value = collapse_whitespace(text[m.end() : end])
        if value and m.group(1) not in found:
            found[m.group(1)] = value

    purpose = " ".join(p for p in (leading, found.pop("SVWZ", "")) if p)
    kwargs = {_ATTR_BY_TAG[tag]: value for tag, value in found.items()}
    if kwargs.get("end_to_end_id", "").upper() == NOT_PROVIDED:
        kwargs.pop("end_to_end_id")
    return SepaFields(purpose=purpose or None, **kwargs)


def iso_to_mt940_code(code: Optional[str]) -> str:
    return ISO_TO_MT940.get((code or "").strip().upper(), "TRF")


def mt940_to_iso_code(code: Optional[str]) -> str:
    return MT940_TO_ISO.get((code or "").strip().upper(), "NTRF")


def starts_with_tag(text: Optional[str]) -> bool:
    return bool(_TAG_RE.match(text or ""))

from __future__ import annotations

import re
from typing import Optional, Tuple

_IBAN_RE = re.compile(r"^[A-Z]{2}\d{2}[A-Z0-9]{11,30}$")
_BIC_RE = re.compile(r"^[A-Z]{4}[A-Z]{2}[A-Z0-9]{2}([A-Z0-9]{3})?$")
_BLZ_RE = re.compile(r"^\d{8}$")
_DE_IBAN_LEN = 22


def normalize_iban(value: Optional[str]) -> str:
    return re.sub(r"\s+", "", value or "").upper()


def _mod97(text: str) -> int:
    digits = "".join(str(int(c, 36)) for c in text)
    return int(digits) % 97


def is_iban(value: Optional[str]) -> bool:
    iban = normalize_iban(value)
    if not _IBAN_RE.match(iban):
        return False
    return _mod97(iban[4:] + iban[:4]) == 1


def is_bic(value: Optional[str]) -> bool:
    return bool(_BIC_RE.match((value or "").strip().upper()))


def is_blz(value: Optional[str]) -> bool:
    return bool(_BLZ_RE.match((value or "").strip()))


def blz_from_iban(value: Optional[str]) -> Optional[str]:
    """
    BLZ de un IBAN alemán: caracteres 5-12 (DE + 2 dígitos de control + BLZ + cuenta).
    Es una heurística de respaldo cuando no hay BIC; no consulta ningún directorio.
    """
    iban = normalize_iban(value)
    if not iban.startswith("DE") or len(iban) != _DE_IBAN_LEN:
        return None
    blz = iban[4:12]
    return blz if blz.isdigit() else None


def german_iban(blz: str, account_number: str) -> str:
    """IBAN alemán a partir de BLZ (8 dígitos) y número de cuenta (hasta 10)."""
    blz = blz.strip()
    account_number = account_number.strip().lstrip("0") or "0"
    if not is_blz(blz) or not account_number.isdigit() or len(account_number) > 10:
        raise ValueError(f"BLZ/cuenta inválidos: {blz}/{account_number}")
    bban = blz + account_number.zfill(10)
    check = 98 - _mod97(bban + "DE00")
    return f"DE{check:02d}{bban}"


def split_account_id(value: str) -> Tuple[Optional[str], str]:
    """
    "37040044/532013000" -> ("37040044", "532013000"); un IBAN u otro id queda entero.
    Es la forma de :25: en MT940.
    """
    raw = (value or "").strip()
    if "/" in raw:
        bank, account = raw.split("/", 1)
        return (bank.strip() or None), account.strip()
    return None, raw

from __future__ import annotations

import os
from functools import lru_cache
from typing import Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

ENV_PREFIX = "FINFORMATS_"


class Settings(BaseModel):
    model_config = ConfigDict(frozen=True)

    default_currency: str = Field("EUR", pattern=r"^[A-Z]{3}$")
    camt_version: str = Field("02", description="Versión de esquema camt.05x.001.NN a emitir")
    enforce_single_currency: bool = True
    mt940_line_width: int = Field(65, ge=27, le=65)
    mt940_structured_purpose: bool = Field(False, description=":86: con subcampos ?xx en vez de texto libre")
    datev_encoding: str = "cp1252"
    mt940_encoding: str = "iso-8859-1"

    @field_validator("camt_version")
    @classmethod
    def _check_version(cls, value: str) -> str:
        value = value.strip().zfill(2)
        if not value.isdigit() or not 2 <= int(value) <= 8:
            raise ValueError(f"versión CAMT no soportada: {value}")
        return value


def load_settings(environ: Optional[Mapping[str, str]] = None) -> Settings:
    """
    Lee FINFORMATS_<CAMPO> del entorno (p.ej. FINFORMATS_CAMT_VERSION=08).
    Variables vacías se ignoran; pydantic convierte "false"/"65" al tipo del campo.
    """
    env = os.environ if environ is None else environ
    values = {}
    for name in Settings.model_fields:
        raw = env.get(ENV_PREFIX + name.upper())
        if raw is not None and raw.strip():
            values[name] = raw.strip()
    return Settings(**values)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return load_settings()

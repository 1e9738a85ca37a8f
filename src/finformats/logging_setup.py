"""Configuración central de logging para el paquete ``finformats``.

- ``configure_logging(...)``: agrega un único ``RichHandler`` al logger raíz
  del paquete. Lo llama el CLI una vez al arrancar.
- ``get_logger(name)``: devuelve un logger; si nadie configuró logging, el
  logger raíz recibe un ``NullHandler`` para no ensuciar a quien use la librería.

Los módulos de la librería nunca agregan handlers propios.
"""

from __future__ import annotations

import logging
import os
from typing import Optional, Union

from rich.console import Console
from rich.logging import RichHandler

_PKG_LOGGER_NAME = "finformats"
_CONFIGURED = False


def _level_from_name(value: str) -> Optional[int]:
    value = value.strip().upper()
    if value.isdigit():
        return int(value)
    numeric = getattr(logging, value, None)
    return numeric if isinstance(numeric, int) else None


def _parse_level(level: Union[int, str, None]) -> int:
    if isinstance(level, int):
        return level
    if isinstance(level, str):
        numeric = _level_from_name(level)
        if numeric is not None:
            return numeric
    env_val = os.getenv("FINFORMATS_LOG_LEVEL")
    if env_val:
        numeric = _level_from_name(env_val)
        if numeric is not None:
            return numeric
    return logging.WARNING


def configure_logging(level: Union[int, str, None] = None, *, console: Optional[Console] = None) -> None:
    """
    Configura el logger raíz del paquete una sola vez.

    level:
        int o nombre ("DEBUG", "INFO", ...). Si es None se usa
        FINFORMATS_LOG_LEVEL y, si no existe, WARNING.
    console:
        Console de rich para el handler (por defecto stderr).
    """
    global _CONFIGURED
    if _CONFIGURED:
        return

    logger = logging.getLogger(_PKG_LOGGER_NAME)
    for h in list(logger.handlers):
        if isinstance(h, logging.NullHandler):
            logger.removeHandler(h)

    resolved = _parse_level(level)
    handler = RichHandler(console=console or Console(stderr=True), show_path=False, rich_tracebacks=True)
    handler.setLevel(resolved)
    handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))

    logger.setLevel(resolved)
    logger.addHandler(handler)
    logger.propagate = False

    _CONFIGURED = True


def get_logger(name: str) -> logging.Logger:
    pkg_logger = logging.getLogger(_PKG_LOGGER_NAME)
    if not _CONFIGURED and not pkg_logger.handlers:
        pkg_logger.addHandler(logging.NullHandler())
    return logging.getLogger(name)

from __future__ import annotations

from decimal import Decimal
from typing import Iterable, Optional


class FinFormatsError(Exception):
    """Base de todos los errores de finformats. Siempre es un input rechazado, nunca transitorio."""


# --- reconciliación ---

class ReconciliationError(FinFormatsError):
    pass


class MissingBalance(ReconciliationError):
    def __init__(self, message: str = "Se requiere al menos un balance (apertura o cierre)") -> None:
        super().__init__(message)


class InconsistentBalances(ReconciliationError):
    """
    El balance de cierre suministrado no coincide con apertura + transacciones.
    - expected: cierre calculado
    - actual: cierre suministrado
    - delta: actual - expected
    """

    def __init__(self, expected: Decimal, actual: Decimal, currency: Optional[str] = None) -> None:
        self.expected = expected
        self.actual = actual
        self.delta = actual - expected
        self.currency = currency
        suffix = f" {currency}" if currency else ""
        super().__init__(
            f"Balances inconsistentes: esperado={expected}{suffix} suministrado={actual}{suffix} delta={self.delta}"
        )


# --- conversión ---

class ConversionError(FinFormatsError):
    pass


class EmptySourceDocument(ConversionError):
    def __init__(self, message: str = "El documento origen no tiene transacciones") -> None:
        super().__init__(message)


class UnsupportedCurrencyMixture(ConversionError):
    def __init__(self, currencies: Iterable[str]) -> None:
        self.currencies = tuple(sorted(currencies))
        super().__init__(f"Más de una moneda en un extracto de moneda única: {', '.join(self.currencies)}")


# --- registry / parser ---

class ParseError(FinFormatsError):
    pass


class UnknownMessageType(ParseError):
    def __init__(self, message_type: str) -> None:
        self.message_type = message_type
        super().__init__(f"No hay configuración registrada para {message_type}")


class MalformedDocument(ParseError):
    pass

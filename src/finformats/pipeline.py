from __future__ import annotations

import argparse
from decimal import Decimal
from pathlib import Path
from typing import List, Optional, Sequence

from rich.console import Console
from rich.table import Table

from .camt import parse_camt, render_camt
from .config import Settings, get_settings
from .converters import (
    camt_to_datev,
    camt_to_mt940,
    datev_to_camt,
    datev_to_mt940,
    mt940_to_camt,
    mt940_to_datev,
)
from .datev import datev_statement, parse_datev, render_datev
from .detect import CAMT, DATEV, MT940, FormatInfo, detect_format
from .errors import FinFormatsError, MissingBalance
from .logging_setup import configure_logging, get_logger
from .models import CamtType, DatevDocument, Statement
from .mt940 import parse_mt940, render_mt940
from .normalize import format_amount_dot, parse_amount
from .reconcile import reconcile, transaction_total
from .registry import parse as registry_parse

log = get_logger(__name__)

TARGETS = {
    "datev": (DATEV, None),
    "mt940": (MT940, None),
    "camt052": (CAMT, CamtType.CAMT052),
    "camt053": (CAMT, CamtType.CAMT053),
    "camt054": (CAMT, CamtType.CAMT054),
}


def _read_source(data: bytes, info: FormatInfo, settings: Settings) -> list:
    if info.format == DATEV:
        return [parse_datev(data.decode(settings.datev_encoding))]
    if info.format == MT940:
        return parse_mt940(data.decode(settings.mt940_encoding), settings.default_currency)
    return parse_camt(data, settings.default_currency)


def _convert(documents: list, source: str, target: str, camt_type: Optional[CamtType], args, settings: Settings) -> list:
    seed = args.opening
    cd = args.credit_debit
    if source == DATEV and target == MT940:
        return datev_to_mt940.convert_multiple(documents, seed, cd, settings=settings)
    if source == DATEV and target == CAMT:
        return datev_to_camt.convert_multiple(documents, seed, cd, camt_type=camt_type, settings=settings)
    if source == MT940 and target == DATEV:
        return mt940_to_datev.convert_multiple(documents, seed, cd, settings=settings)
    if source == MT940 and target == CAMT:
        return mt940_to_camt.convert_multiple(documents, seed, cd, camt_type=camt_type, settings=settings)
    if source == CAMT and target == DATEV:
        return camt_to_datev.convert_multiple(documents, seed, cd, settings=settings)
    if source == CAMT and target == MT940:
        return camt_to_mt940.convert_multiple(documents, seed, cd, settings=settings)
    raise SystemExit(f"Conversión {source} -> {target} no soportada")


def _encoding(target: str, settings: Settings) -> str:
    if target == DATEV:
        return settings.datev_encoding
    if target == MT940:
        return settings.mt940_encoding
    return "utf-8"


def _render(documents: list, target: str, camt_type: Optional[CamtType], settings: Settings) -> bytes:
    if target == DATEV:
        rows = tuple(row for doc in documents for row in doc.rows)
        return render_datev(DatevDocument(rows=rows)).encode(_encoding(target, settings), errors="replace")
    if target == MT940:
        text = render_mt940(
            documents,
            structured=settings.mt940_structured_purpose,
            line_width=settings.mt940_line_width,
        )
        return text.encode(_encoding(target, settings), errors="replace")
    return render_camt(documents, camt_type, settings.camt_version)


def _opening(text: str) -> Decimal:
    try:
        return parse_amount(text)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(str(exc)) from exc


def _load(path: Path, console: Console):
    if not path.exists():
        raise SystemExit(f"No existe el archivo: {path}")
    console.print(f"Procesando: {path}", style="bold")
    data = path.read_bytes()
    return data, detect_format(data)


def cmd_convert(args, console: Console, settings: Settings) -> int:
    data, info = _load(Path(args.file), console)
    target, camt_type = TARGETS[args.to]
    documents = _read_source(data, info, settings)
    log.info("Origen %s: %d documento(s)", info.format, len(documents))

    converted = _convert(documents, info.format, target, camt_type, args, settings)
    payload = _render(converted, target, camt_type, settings)

    if args.out:
        out_path = Path(args.out)
        out_path.parent.mkdir(parents=True, exist_ok=True)
        out_path.write_bytes(payload)
        console.print(f"OK -> {out_path}", style="bold green")
    else:
        print(payload.decode(_encoding(target, settings)))

    total = sum(len(d.rows) if isinstance(d, DatevDocument) else len(d.transactions) for d in converted)
    console.print(f"Transacciones convertidas: {total}", style="bold cyan")
    return 0


def _statements(documents: list, settings: Settings) -> List[Statement]:
    return [
        datev_statement(d, settings.default_currency) if isinstance(d, DatevDocument) else d
        for d in documents
    ]


def cmd_check(args, console: Console, settings: Settings) -> int:
    """Tabla de reconciliación por extracto; código 1 si alguno no cuadra."""
    data, info = _load(Path(args.file), console)
    statements = _statements(_read_source(data, info, settings), settings)

    table = Table(title=f"{args.file} ({info.format})")
    for col in ("Extracto", "Cuenta", "Moneda", "Movs", "Apertura", "Suma", "Cierre", "Estado"):
        table.add_column(col, justify="right" if col in ("Movs", "Apertura", "Suma", "Cierre") else "left")

    failures = 0
    for st in statements:
        total = transaction_total(st.transactions)
        opening = closing = None
        try:
            opening, closing = reconcile(st.transactions, st.opening_balance, st.closing_balance)
            status = "[green]OK[/green]"
        except MissingBalance:
            status = "[yellow]sin balances[/yellow]"
        except FinFormatsError as exc:
            failures += 1
            status = f"[red]{type(exc).__name__}[/red]: {exc}"
        table.add_row(
            st.id,
            st.account_id,
            ", ".join(sorted(st.currencies)),
            str(len(st.transactions)),
            format_amount_dot(opening.signed_amount) if opening else "-",
            format_amount_dot(total),
            format_amount_dot(closing.signed_amount) if closing else "-",
            status,
        )

    console.print(table)
    return 1 if failures else 0


def cmd_inspect(args, console: Console, settings: Settings) -> int:
    data, info = _load(Path(args.file), console)
    message_type = args.type or (info.camt_type.value if info.camt_type else None)
    if not message_type:
        raise SystemExit("No se pudo determinar el tipo CAMT; usar --type camt.NNN")
    document = registry_parse(data, message_type)
    print(document.model_dump_json(indent=2))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Conversión DATEV / MT940 / CAMT")
    parser.add_argument("--log-level", default=None, help="DEBUG, INFO, WARNING... (o FINFORMATS_LOG_LEVEL)")
    sub = parser.add_subparsers(dest="command", required=True)

    p_convert = sub.add_parser("convert", help="Convierte un archivo a otro formato")
    p_convert.add_argument("file", help="Ruta al archivo de origen")
    p_convert.add_argument("--to", required=True, choices=sorted(TARGETS), help="Formato de destino")
    p_convert.add_argument("--opening", type=_opening, default=None, help="Balance de apertura (p.ej. 1000,00 o -25.10)")
    p_convert.add_argument("--credit-debit", choices=("C", "D"), default=None, help="Signo del balance de apertura")
    p_convert.add_argument("--out", default="", help="Ruta de salida (opcional)")
    p_convert.set_defaults(handler=cmd_convert)

    p_check = sub.add_parser("check", help="Reconciliación de balances por extracto")
    p_check.add_argument("file", help="Ruta al archivo")
    p_check.set_defaults(handler=cmd_check)

    p_inspect = sub.add_parser("inspect", help="Parsea un mensaje CAMT y lo muestra como JSON")
    p_inspect.add_argument("file", help="Ruta al XML")
    p_inspect.add_argument("--type", default=None, help="Tipo de mensaje (camt.026 ... camt.087)")
    p_inspect.set_defaults(handler=cmd_inspect)
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level)
    console = Console(stderr=True)
    try:
        return args.handler(args, console, get_settings())
    except FinFormatsError as exc:
        console.print(f"{type(exc).__name__}: {exc}", style="bold red")
        return 2


if __name__ == "__main__":
    raise SystemExit(main())

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

_TAG_RE = re.compile(r"^:(\d{2}[A-Z]?):(.*)$")


@dataclass
class StatementSection:
    index: int
    fields: List[Tuple[str, str]] = field(default_factory=list)   # (tag, valor con \n en continuaciones)

    def first(self, *tags: str) -> Optional[str]:
        for tag, value in self.fields:
            if tag in tags:
                return value
        return None


def _is_trailer(line: str) -> bool:
    return line.strip() in ("-", "-}") or line.startswith("-}")


def _strip_envelope(line: str) -> Optional[str]:
    """
    Quita el sobre SWIFT "{1:...}{2:...}{4:": se descarta y lo que siga a
    "{4:" se conserva. Devuelve None si la línea no aporta contenido.
    """
    if line.startswith("{"):
        idx = line.find("{4:")
        if idx < 0:
            return None
        rest = line[idx + 3 :]
        return rest or None
    return line


def segment_statements(text: str) -> List[StatementSection]:
    """
    Parte un archivo MT940 en extractos: cada :20: abre uno nuevo.
    Las líneas sin tag son continuación del campo anterior (p.ej. :86: multilínea).
    Dentro de un mensaje abierto solo "{1:" se toma como sobre; "-" lo cierra.
    """
    sections: List[StatementSection] = []
    current: Optional[StatementSection] = None
    in_message = False

    for raw in text.replace("\r\n", "\n").replace("\r", "\n").split("\n"):
        if _is_trailer(raw):
            in_message = False
            continue
        line = _strip_envelope(raw) if not in_message or raw.startswith("{1:") else raw
        if line is None or not line.strip():
            continue

        m = _TAG_RE.match(line)
        if m:
            in_message = True
            tag, value = m.group(1), m.group(2)
            if tag == "20" or current is None:
                current = StatementSection(index=len(sections))
                sections.append(current)
            current.fields.append((tag, value))
            continue

        if current is None or not current.fields:
            # basura antes del primer tag
            continue
        tag, value = current.fields[-1]
        current.fields[-1] = (tag, value + "\n" + line)

    return sections

from __future__ import annotations

from typing import Dict, List, Optional, Sequence, Union

from lxml import etree

from .errors import MalformedDocument

_PARSER = etree.XMLParser(resolve_entities=False, no_network=True, remove_blank_text=True)


def load_xml(source: Union[str, bytes]) -> etree._Element:
    """Parsea XML (str o bytes) sin resolver entidades externas."""
    data = source.encode("utf-8") if isinstance(source, str) else source
    data = data.strip()
    if data.startswith(b"<?xml") and isinstance(source, str):
        # lxml rechaza str con declaración de encoding; ya lo codificamos en UTF-8
        data = data.split(b"?>", 1)[1].lstrip()
    if not data:
        raise MalformedDocument("XML vacío")
    try:
        return etree.fromstring(data, parser=_PARSER)
    except etree.XMLSyntaxError as exc:
        raise MalformedDocument(f"XML inválido: {exc}") from exc


def namespace_of(root: etree._Element) -> Optional[str]:
    ns = etree.QName(root).namespace
    if ns:
        return ns
    for uri in root.nsmap.values():
        if uri and "camt." in uri:
            return uri
    return None


class XPathEvaluator:
    """
    Evalúa rutas tipo "Assgnmt/Assgnr/Agt/FinInstnId/BICFI" agregando el prefijo
    "ns:" a cada paso. Los pasos "@Attr", ".", ".." y los ya calificados no se tocan.
    """

    PREFIX_NAME = "ns"

    def __init__(self, root: etree._Element) -> None:
        self.root = root
        self.namespace = namespace_of(root)
        self.namespaces: Dict[str, str] = {self.PREFIX_NAME: self.namespace} if self.namespace else {}
        self.prefix = f"{self.PREFIX_NAME}:" if self.namespace else ""

    def qualify(self, path: str) -> str:
        if not self.prefix:
            return path
        parts = []
        for step in path.split("/"):
            if not step or step in (".", "..", "*") or step.startswith("@") or ":" in step or "(" in step:
                parts.append(step)
            else:
                parts.append(self.prefix + step)
        return "/".join(parts)

    def nodes(self, path: str, context: Optional[etree._Element] = None) -> List[etree._Element]:
        node = self.root if context is None else context
        return node.xpath(self.qualify(path), namespaces=self.namespaces)

    def node(self, path: str, context: Optional[etree._Element] = None) -> Optional[etree._Element]:
        found = self.nodes(path, context)
        return found[0] if found else None

    def text(self, path: Union[str, Sequence[str]], context: Optional[etree._Element] = None) -> Optional[str]:
        """
        string(ruta) relativo al contexto; "" -> None.
        Con una lista de rutas devuelve el primer resultado no vacío.
        """
        node = self.root if context is None else context
        paths = [path] if isinstance(path, str) else list(path)
        for p in paths:
            result = node.xpath(f"string({self.qualify(p)})", namespaces=self.namespaces)
            result = str(result).strip()
            if result:
                return result
        return None

    def texts(self, path: str, context: Optional[etree._Element] = None) -> List[str]:
        out = []
        for n in self.nodes(path, context):
            value = (n.text or "").strip() if isinstance(n, etree._Element) else str(n).strip()
            if value:
                out.append(value)
        return out

    def find_root(self, name: str) -> Optional[etree._Element]:
        """Primer elemento `name` en cualquier nivel (//ns:Name)."""
        if etree.QName(self.root).localname == name:
            return self.root
        return self.node(f"//{name}")

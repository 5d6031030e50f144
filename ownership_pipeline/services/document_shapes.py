"""
Lenient extraction helpers for EDGAR filing documents.

Filings arrive as raw XML, XML wrapped in the EDGAR SGML envelope
(`<XML>...</XML>`), or HTML/plain text. A `SourceDocument` carries the raw
text and a lazily parsed element tree; parsers hand it to a list of
`DocumentShape` adapters tried in priority order. An adapter raises
ParseError when the document does not have its shape, and the next one is
tried.

Field lookups accept several legal tag names in a fixed priority order and
tolerate values nested one or two levels deeper (`<x>v</x>`,
`<x><value>v</value></x>`, `<x><a><value>v</value></a></x>`).
"""

from __future__ import annotations

import html
import logging
import re
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from functools import cached_property
from typing import Any, Callable, Generic, Optional, Sequence, TypeVar, Union

from ownership_pipeline.errors import ParseError
from ownership_pipeline.schemas import FilingRecord


logger = logging.getLogger(__name__)

T = TypeVar("T")

_XML_BLOCK_RE = re.compile(r"<XML>([\s\S]*?)</XML>", re.IGNORECASE)
_XML_DECL_RE = re.compile(r"^\s*<\?xml[^>]*\?>", re.IGNORECASE)
_SKIP_LEAVES = {"footnoteId", "footnote"}


def local_name(tag: Any) -> str:
    return str(tag).rsplit("}", 1)[-1]


def path(*names: str) -> str:
    """'./{*}a/{*}b' for direct-child lookups, namespace-agnostic."""
    return "./" + "/".join("{*}" + n for n in names)


def anywhere(*names: str) -> str:
    """'.//{*}a/{*}b' for lookups at any depth."""
    return ".//" + "/".join("{*}" + n for n in names)


def leaf_text(node: ET.Element, depth: int = 2) -> Optional[str]:
    """Text of `node`, or of a value nested up to `depth` levels below it."""
    text = (node.text or "").strip()
    if text:
        return text
    if depth <= 0:
        return None
    children = [c for c in node if local_name(c.tag) not in _SKIP_LEAVES]
    # <value> wins over any other wrapper.
    for child in children:
        if local_name(child.tag) == "value":
            found = leaf_text(child, depth - 1)
            if found:
                return found
    for child in children:
        found = leaf_text(child, depth - 1)
        if found:
            return found
    return None


def first_text(node: Optional[ET.Element], *paths: str) -> Optional[str]:
    """First non-empty value among `paths`, tried in priority order."""
    if node is None:
        return None
    for p in paths:
        # findall covers both a single element and repeated ones.
        for found in node.findall(p):
            text = leaf_text(found)
            if text:
                return text
    return None


def extract_xml_payload(text: str) -> Optional[str]:
    """XML body of a filing, unwrapping the EDGAR `<XML>` envelope if present."""
    if not text:
        return None
    s = text.strip()
    block = _XML_BLOCK_RE.search(s)
    if block:
        s = block.group(1).strip()
    s = _XML_DECL_RE.sub("", s, count=1).strip()
    if not s.startswith("<"):
        return None
    return s


def html_to_text(raw: str) -> str:
    """
    Best-effort HTML/SGML to plain text.

    Block-level tags become line breaks so cover-page labels and their values
    stay on separate lines; other whitespace is collapsed.
    """
    no_scripts = re.sub(r"(?is)<(script|style)\b.*?>.*?</\1>", " ", raw)
    breaks = re.sub(r"(?i)<\s*(br|/p|/div|/tr|/td|/th|/li|/h\d)\b[^>]*>", "\n", no_scripts)
    no_tags = re.sub(r"(?s)<[^>]+>", " ", breaks)
    text = html.unescape(no_tags).replace("\xa0", " ")
    lines = [re.sub(r"[ \t\r\f\v]+", " ", line).strip() for line in text.split("\n")]
    return "\n".join(line for line in lines if line)


@dataclass
class SourceDocument:
    text: str
    url: str = ""
    element: Optional[ET.Element] = field(default=None, repr=False)

    @classmethod
    def coerce(cls, document: Union["SourceDocument", ET.Element, str, bytes, None], url: str = "") -> "SourceDocument":
        if isinstance(document, SourceDocument):
            return document
        if isinstance(document, ET.Element):
            return cls(text="", url=url, element=document)
        if isinstance(document, bytes):
            return cls(text=document.decode("utf-8", errors="replace"), url=url)
        return cls(text=document or "", url=url)

    @cached_property
    def tree(self) -> Optional[ET.Element]:
        if self.element is not None:
            return self.element
        payload = extract_xml_payload(self.text)
        if payload is None:
            return None
        try:
            return ET.fromstring(payload)
        except ET.ParseError as e:
            logger.debug("document", extra={"url": self.url, "outcome": "xml_parse_error", "reason": str(e)})
            return None

    @cached_property
    def plain_text(self) -> str:
        return html_to_text(self.text) if self.text else ""


@dataclass(frozen=True)
class ParseContext:
    filing: FilingRecord
    source_url: str = ""


class DocumentShape(Generic[T]):
    """One known layout of a filing document."""

    name = "shape"

    def matches(self, doc: SourceDocument) -> bool:
        raise NotImplementedError

    def extract(self, doc: SourceDocument, ctx: ParseContext) -> T:
        raise NotImplementedError


def parse_with_shapes(
    shapes: Sequence[DocumentShape[T]],
    document: Any,
    ctx: ParseContext,
    empty: Callable[[], T],
) -> T:
    """
    Run `shapes` in order and return the first successful extraction.

    Never raises: a document no shape understands (or one that trips an
    unexpected error) is logged and yields `empty()`.
    """
    try:
        doc = SourceDocument.coerce(document, ctx.source_url)
        for shape in shapes:
            if not shape.matches(doc):
                continue
            try:
                return shape.extract(doc, ctx)
            except ParseError as e:
                logger.debug(
                    "parse",
                    extra={"shape": shape.name, "url": ctx.source_url, "outcome": "shape_mismatch", "reason": str(e)},
                )
    except Exception:
        logger.warning(
            "parse",
            extra={"url": ctx.source_url, "form_type": ctx.filing.form_type, "outcome": "error"},
            exc_info=True,
        )
        return empty()

    logger.warning(
        "parse",
        extra={"url": ctx.source_url, "form_type": ctx.filing.form_type, "outcome": "unrecognized_document"},
    )
    return empty()

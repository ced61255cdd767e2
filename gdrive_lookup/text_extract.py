"""
text_extract.py - Plain-text extraction for the few formats Drive exports.

Supported inputs:
  - text/* (plain, csv, html)
  - JSON, including Apps Script project exports
  - PDF (via pypdf)
  - OpenDocument text/presentation/spreadsheet (zip + content.xml)
  - Office Open XML docx/pptx/xlsx (zip + part XML)

``extract_text`` raises ``UnsupportedFormatError`` for anything else and
lets decoding/parsing errors propagate; the highlight engine decides how
to degrade.
"""

from __future__ import annotations

import html
import io
import json
import re
import zipfile
from typing import Any
from xml.etree import ElementTree


class UnsupportedFormatError(ValueError):
    pass


ODF_MIME_TYPES = {
    "application/vnd.oasis.opendocument.text",
    "application/vnd.oasis.opendocument.presentation",
    "application/vnd.oasis.opendocument.spreadsheet",
}

OOXML_PARTS = {
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": r"^word/document\.xml$",
    "application/vnd.openxmlformats-officedocument.presentationml.presentation": r"^ppt/slides/slide\d+\.xml$",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet": r"^xl/sharedStrings\.xml$",
}

JSON_MIME_TYPES = {
    "application/json",
    "application/vnd.google-apps.script+json",
}


def decode_bytes(data: bytes) -> str:
    for encoding in ("utf-8", "utf-8-sig", "latin-1"):
        try:
            return data.decode(encoding)
        except Exception:
            continue
    return data.decode("utf-8", errors="replace")


def strip_html_text(text: str) -> str:
    if not text:
        return ""
    s = re.sub(r"(?is)<script.*?>.*?</script>", " ", text)
    s = re.sub(r"(?is)<style.*?>.*?</style>", " ", s)
    s = re.sub(r"(?i)<br\s*/?>", "\n", s)
    s = re.sub(r"(?i)</p\s*>", "\n\n", s)
    s = re.sub(r"(?i)</div\s*>", "\n", s)
    s = re.sub(r"(?s)<[^>]+>", " ", s)
    s = html.unescape(s)
    s = re.sub(r"\r\n?", "\n", s)
    s = re.sub(r"[ \t]+\n", "\n", s)
    s = re.sub(r"\n{3,}", "\n\n", s)
    return s.strip()


def _json_strings(node: Any) -> list[str]:
    if isinstance(node, str):
        return [node]
    if isinstance(node, dict):
        out: list[str] = []
        for value in node.values():
            out.extend(_json_strings(value))
        return out
    if isinstance(node, list):
        out = []
        for value in node:
            out.extend(_json_strings(value))
        return out
    return []


def _extract_json(data: bytes) -> str:
    payload = json.loads(decode_bytes(data))
    return "\n".join(s for s in _json_strings(payload) if s.strip())


_BLOCK_TAGS = {"p", "h", "si", "tr"}


def _xml_text(xml_bytes: bytes) -> str:
    root = ElementTree.fromstring(xml_bytes)
    lines: list[str] = []
    current: list[str] = []

    def _flush() -> None:
        if current:
            lines.append("".join(current))
            current.clear()

    def _walk(elem: ElementTree.Element) -> None:
        tag = elem.tag.rsplit("}", 1)[-1] if isinstance(elem.tag, str) else ""
        block = tag in _BLOCK_TAGS
        if block:
            _flush()
        if tag == "tab":
            current.append("\t")
        if elem.text:
            current.append(elem.text)
        for child in elem:
            _walk(child)
            if child.tail:
                current.append(child.tail)
        if block:
            _flush()

    _walk(root)
    _flush()
    return "\n".join(line.strip() for line in lines if line.strip())


def _extract_odf(data: bytes) -> str:
    with zipfile.ZipFile(io.BytesIO(data)) as zf:
        return _xml_text(zf.read("content.xml"))


def _extract_ooxml(data: bytes, part_pattern: str) -> str:
    chunks: list[str] = []
    with zipfile.ZipFile(io.BytesIO(data)) as zf:
        names = sorted(n for n in zf.namelist() if re.match(part_pattern, n))
        for name in names:
            text = _xml_text(zf.read(name))
            if text:
                chunks.append(text)
    return "\n\n".join(chunks)


def _extract_pdf(data: bytes) -> str:
    from pypdf import PdfReader

    reader = PdfReader(io.BytesIO(data))
    chunks: list[str] = []
    for page in reader.pages:
        try:
            text = page.extract_text() or ""
        except Exception:
            text = ""
        if text.strip():
            chunks.append(text.strip())
    return "\n\n".join(chunks)


def extract_text(data: bytes, mime_type: str) -> str:
    """Return the plain text of *data* interpreted as *mime_type*."""
    mime = str(mime_type or "").split(";", 1)[0].strip().lower()
    if mime in JSON_MIME_TYPES:
        return _extract_json(data)
    if mime in ("text/html", "application/xhtml+xml"):
        return strip_html_text(decode_bytes(data))
    if mime.startswith("text/"):
        return decode_bytes(data)
    if mime == "application/pdf":
        return _extract_pdf(data)
    if mime in ODF_MIME_TYPES:
        return _extract_odf(data)
    if mime in OOXML_PARTS:
        return _extract_ooxml(data, OOXML_PARTS[mime])
    raise UnsupportedFormatError(f"no text extractor for {mime or 'unknown type'}")

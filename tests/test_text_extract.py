"""Tests for plain-text extraction."""

import io
import json
import zipfile

import pytest

from gdrive_lookup.text_extract import UnsupportedFormatError, decode_bytes, extract_text

ODF_TEXT = "application/vnd.oasis.opendocument.text"
DOCX = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
XLSX = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def _zip(parts):
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w") as zf:
        for name, content in parts.items():
            zf.writestr(name, content)
    return buf.getvalue()


def test_plain_text():
    assert extract_text("hello cat".encode("utf-8"), "text/plain") == "hello cat"


def test_csv_with_charset_parameter():
    assert extract_text(b"a,b\n1,2", "text/csv; charset=utf-8") == "a,b\n1,2"


def test_latin1_fallback():
    assert decode_bytes("caf\xe9".encode("latin-1")) == "caf\xe9"


def test_html_drops_scripts_and_unescapes():
    raw = b"<p>Hello</p><script>alert(1)</script><p>World &amp; co</p>"
    text = extract_text(raw, "text/html")

    assert "Hello" in text
    assert "World & co" in text
    assert "alert" not in text
    assert "<p>" not in text


def test_apps_script_json():
    payload = {"files": [{"name": "Code", "type": "server_js", "source": "function cat() {}"}]}
    text = extract_text(json.dumps(payload).encode(), "application/vnd.google-apps.script+json")

    assert "function cat() {}" in text
    assert "Code" in text


def test_odf_text():
    content = (
        '<office:document-content '
        'xmlns:office="urn:oasis:names:tc:opendocument:xmlns:office:1.0" '
        'xmlns:text="urn:oasis:names:tc:opendocument:xmlns:text:1.0">'
        "<office:body><office:text>"
        "<text:p>First cat</text:p>"
        "<text:p>Second <text:span>line</text:span></text:p>"
        "</office:text></office:body></office:document-content>"
    )
    data = _zip({"mimetype": ODF_TEXT, "content.xml": content})

    assert extract_text(data, ODF_TEXT) == "First cat\nSecond line"


def test_docx():
    document = (
        '<w:document xmlns:w="http://schemas.openxmlformats.org/wordprocessingml/2006/main">'
        "<w:body>"
        "<w:p><w:r><w:t>Hello</w:t></w:r><w:r><w:t xml:space=\"preserve\"> world</w:t></w:r></w:p>"
        "<w:p><w:r><w:t>Bye</w:t></w:r></w:p>"
        "</w:body></w:document>"
    )
    data = _zip({"word/document.xml": document})

    assert extract_text(data, DOCX) == "Hello world\nBye"


def test_xlsx_shared_strings():
    shared = (
        '<sst xmlns="http://schemas.openxmlformats.org/spreadsheetml/2006/main">'
        "<si><t>alpha</t></si><si><t>beta</t></si></sst>"
    )
    data = _zip({"xl/sharedStrings.xml": shared})

    assert extract_text(data, XLSX) == "alpha\nbeta"


def test_unsupported_type():
    with pytest.raises(UnsupportedFormatError):
        extract_text(b"\x00", "application/octet-stream")


def test_corrupt_archive_raises():
    with pytest.raises(zipfile.BadZipFile):
        extract_text(b"not a zip", ODF_TEXT)

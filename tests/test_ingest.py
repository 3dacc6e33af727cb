from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace

import pytest
from pypdf import PdfWriter

import deepfind.rag.ingest as ingest
from deepfind.rag.errors import EmptyDocumentError, InvalidPdfError, PdfFileNotFoundError, UnreadablePdfError


class _Page:
    def __init__(self, text=None, error: Exception | None = None):
        self.text = text
        self.error = error

    def extract_text(self):
        if self.error:
            raise self.error
        return self.text


def _fake_reader(monkeypatch, pages):
    monkeypatch.setattr(ingest, "_open_reader", lambda path: SimpleNamespace(pages=pages))


def test_clean_text():
    raw = "Intro text  with   spaces\r\n\r\n\r\n\r\nhyphen-\nated word\n 12 \nend\x00"
    assert ingest.clean_text(raw) == "Intro text with spaces\n\nhyphenated word\nend"
    assert ingest.clean_text("") == ""
    assert ingest.clean_text("  \n  ") == ""


def test_clean_text_keeps_long_numbers():
    assert ingest.clean_text("2024\n7") == "2024"


def test_scan_pdf_files(tmp_path: Path):
    (tmp_path / "b").mkdir()
    for name in ["z.pdf", "b/a.PDF", "notes.txt", "b/pdf"]:
        (tmp_path / name).write_bytes(b"x")
    found = [p.relative_to(tmp_path).as_posix() for p in ingest.scan_pdf_files(tmp_path)]
    assert found == ["b/a.PDF", "z.pdf"]


def test_parse_pdf_pages_in_order(tmp_path: Path, monkeypatch):
    _fake_reader(monkeypatch, [_Page("First  page"), _Page(None), _Page("Third\n3\npage")])

    doc = ingest.parse_pdf(tmp_path / "manual.pdf")

    assert doc.file_name == "manual.pdf"
    assert doc.total_pages == 3
    assert [p.page_number for p in doc.pages] == [1, 2, 3]
    assert [p.text for p in doc.pages] == ["First page", "", "Third\npage"]


def test_parse_pdf_without_text(tmp_path: Path, monkeypatch):
    _fake_reader(monkeypatch, [_Page(""), _Page("   ")])
    with pytest.raises(EmptyDocumentError):
        ingest.parse_pdf(tmp_path / "scan.pdf")

    _fake_reader(monkeypatch, [])
    with pytest.raises(EmptyDocumentError):
        ingest.parse_pdf(tmp_path / "scan.pdf")


def test_page_extraction_failure(tmp_path: Path, monkeypatch):
    _fake_reader(monkeypatch, [_Page("ok"), _Page(error=KeyError("/Font"))])
    with pytest.raises(UnreadablePdfError):
        ingest.parse_pdf(tmp_path / "broken.pdf")


def test_blank_pdf_has_no_text(tmp_path: Path):
    path = tmp_path / "blank.pdf"
    writer = PdfWriter()
    writer.add_blank_page(width=612, height=792)
    with path.open("wb") as f:
        writer.write(f)

    with pytest.raises(EmptyDocumentError):
        ingest.PdfParser().parse(path)


def test_missing_and_invalid_files(tmp_path: Path):
    with pytest.raises(PdfFileNotFoundError):
        ingest.parse_pdf(tmp_path / "missing.pdf")

    bad = tmp_path / "bad.pdf"
    bad.write_bytes(b"this is not a pdf")
    with pytest.raises(InvalidPdfError):
        ingest.parse_pdf(bad)

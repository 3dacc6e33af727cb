# deepfind/rag/ingest.py
from __future__ import annotations

import re
import unicodedata
from pathlib import Path
from typing import Iterator, List

from deepfind.rag.errors import (
    EmptyDocumentError,
    InvalidPdfError,
    PdfFileNotFoundError,
    UnreadablePdfError,
)
from deepfind.rag.types import DocumentPage, ParsedDocument


def clean_text(text: str) -> str:
    if not text:
        return ""

    t = unicodedata.normalize("NFC", text)
    t = (
        t.replace("\r\n", "\n")
        .replace("\r", "\n")
        .replace("\u00A0", " ")
        .replace("\u202F", " ")
        .replace("\x00", "")
    )
    t = re.sub(r"[ \t]{2,}", " ", t)          # runs of spaces inside lines
    t = re.sub(r"(\w)-[ \t]*\n[ \t]*(\w)", r"\1\2", t)  # words hyphenated across lines

    lines: List[str] = []
    for line in t.split("\n"):
        s = line.strip()
        if s.isdigit() and len(s) <= 3:      # bare page numbers
            continue
        lines.append(s)

    t = "\n".join(lines)
    t = re.sub(r"\n{3,}", "\n\n", t)
    return t.strip()


def is_pdf_file(path: Path) -> bool:
    return path.suffix.lower() == ".pdf"


def scan_pdf_files(root: Path) -> List[Path]:
    return [p for p in sorted(root.rglob("*")) if p.is_file() and is_pdf_file(p)]


def _open_reader(path: Path):
    from pypdf import PdfReader
    from pypdf.errors import PdfReadError

    if not path.is_file():
        raise PdfFileNotFoundError(f"PDF file not found: {path}")

    try:
        reader = PdfReader(str(path))
    except (PdfReadError, OSError, ValueError) as e:
        raise InvalidPdfError(f"Invalid or corrupted PDF file: {path} ({e})") from e

    if reader.is_encrypted:
        try:
            # empty owner password still lets most "protected" PDFs be read
            if not reader.decrypt(""):
                raise UnreadablePdfError(f"PDF is password-protected: {path}")
        except (PdfReadError, NotImplementedError) as e:
            raise UnreadablePdfError(f"PDF cannot be decrypted: {path} ({e})") from e
    return reader


def iter_pdf_pages(path: Path) -> Iterator[DocumentPage]:
    """Lazily yield cleaned pages in order; call again to restart."""
    reader = _open_reader(path)
    for i, page in enumerate(reader.pages, start=1):
        try:
            raw = page.extract_text() or ""
        except Exception as e:
            raise UnreadablePdfError(f"Failed to extract text from page {i} of {path}: {e}") from e
        yield DocumentPage(page_number=i, text=clean_text(raw))


def parse_pdf(path: Path) -> ParsedDocument:
    path = Path(path)
    pages = tuple(iter_pdf_pages(path))

    if not pages:
        raise EmptyDocumentError(f"PDF has no pages: {path}")
    if not any(p.text for p in pages):
        raise EmptyDocumentError(f"PDF contains no readable text: {path}")

    return ParsedDocument(file_path=str(path), file_name=path.name, pages=pages)


class PdfParser:
    """Injectable wrapper around parse_pdf."""

    def parse(self, path: Path) -> ParsedDocument:
        return parse_pdf(path)

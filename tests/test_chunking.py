from __future__ import annotations

import string

import pytest

from deepfind.rag.chunking import Chunker, chunk_document, make_chunk_id, sanitize_file_name, tail_segments
from deepfind.rag.errors import ConfigurationError
from deepfind.rag.types import DocumentPage, ParsedDocument


def _text(n: int, alphabet: str = string.ascii_lowercase) -> str:
    return "".join(alphabet[i % len(alphabet)] for i in range(n))


def _doc(*page_texts: str, name: str = "report.pdf") -> ParsedDocument:
    pages = tuple(DocumentPage(page_number=i, text=t) for i, t in enumerate(page_texts, start=1))
    return ParsedDocument(file_path=f"/docs/{name}", file_name=name, pages=pages)


def test_three_page_example():
    page2 = _text(1500)
    page3 = _text(300, string.digits)
    doc = _doc("", page2, page3)

    chunks = chunk_document(doc, folder_path="/docs", chunk_size_chars=1000, overlap_chars=200)

    assert len(chunks) == 2

    assert chunks[0].content == page2[0:1000]
    assert chunks[0].page_number == 2
    assert chunks[0].chunk_number == 0

    assert chunks[1].content == page2[800:1500] + page3[0:300]
    assert len(chunks[1].content) == 1000
    assert chunks[1].page_number == 2
    assert chunks[1].chunk_number == 1


def _stream(doc: ParsedDocument) -> str:
    return "".join(p.text for p in doc.pages if p.text.strip())


@pytest.mark.parametrize("size,overlap", [(100, 20), (50, 0), (64, 63), (1000, 200)])
def test_size_overlap_and_coverage(size, overlap):
    doc = _doc(_text(237), "", _text(91, string.ascii_uppercase), _text(410, string.digits))
    chunks = list(Chunker(size, overlap).chunk(doc, "/docs"))

    assert chunks
    assert all(0 < len(c.content) <= size for c in chunks)
    assert all(c.chunk_size == len(c.content) for c in chunks)

    for prev, nxt in zip(chunks, chunks[1:]):
        if overlap:
            assert nxt.content[:overlap] == prev.content[-overlap:]

    rebuilt = chunks[0].content + "".join(c.content[overlap:] for c in chunks[1:])
    assert rebuilt == _stream(doc)


def test_chunk_numbers_are_sequential_and_ids_unique():
    chunks = list(Chunker(100, 10).chunk(_doc(_text(950))))
    assert [c.chunk_number for c in chunks] == list(range(len(chunks)))
    assert len({c.id for c in chunks}) == len(chunks)
    assert all(c.id.startswith("report_p1_c") for c in chunks)


def test_continuation_chunk_tagged_with_page_of_overlap_start():
    page1 = _text(950)
    page2 = _text(500, string.digits)
    chunks = chunk_document(_doc(page1, page2))

    assert chunks[0].content == page1 + page2[:50]
    assert chunks[0].page_number == 1
    # overlap starts inside page 1
    assert chunks[1].content == page1[800:] + page2
    assert chunks[1].page_number == 1
    assert len(chunks) == 2


def test_short_document_is_one_chunk():
    chunks = chunk_document(_doc("just a few words"))
    assert len(chunks) == 1
    assert chunks[0].content == "just a few words"
    assert chunks[0].word_count == 4
    assert chunks[0].folder_path == ""


def test_whitespace_pages_produce_no_chunks():
    assert chunk_document(_doc("", "   \n  ", "")) == []


def test_no_trailing_chunk_of_overlap_only():
    # exactly one window: the carried overlap has no new text after it
    chunks = chunk_document(_doc(_text(1000)))
    assert len(chunks) == 1


@pytest.mark.parametrize("size,overlap", [(0, 0), (100, 100), (100, 150), (100, -1)])
def test_invalid_chunker_config(size, overlap):
    with pytest.raises(ConfigurationError):
        Chunker(size, overlap)


def test_iter_batches_flushes_fixed_sizes():
    chunker = Chunker(100, 0)
    batches = list(chunker.iter_batches(_doc(_text(1050)), flush_size=4))
    assert [len(b) for b in batches] == [4, 4, 3]

    with pytest.raises(ConfigurationError):
        list(chunker.iter_batches(_doc("x"), flush_size=0))


def test_chunk_document_serializes_with_engine_field_names():
    doc = chunk_document(_doc("some text"), folder_path="/docs")[0].to_document()
    assert {"id", "content", "fileName", "filePath", "folderPath", "pageNumber", "chunkNumber",
            "chunkSize", "wordCount", "createdAt", "fileType"} <= set(doc)
    assert doc["pageNumber"] == 1
    assert doc["fileType"] == "pdf"


def test_sanitize_file_name_and_id():
    assert sanitize_file_name("My Report (v2).pdf") == "My_Report__v2"
    assert sanitize_file_name("###.pdf") == "doc"
    assert len(sanitize_file_name("a" * 200 + ".pdf")) == 50
    assert make_chunk_id("x.pdf", None, 3).startswith("x_p0_c3_")


def test_tail_segments_walks_back_across_pages():
    assert tail_segments([(1, 950), (2, 50)], 200) == [(1, 150), (2, 50)]
    assert tail_segments([(1, 300)], 200) == [(1, 200)]
    assert tail_segments([(1, 10), (2, 20)], 200) == [(1, 10), (2, 20)]

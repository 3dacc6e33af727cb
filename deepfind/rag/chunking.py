from __future__ import annotations

import re
import uuid
from pathlib import Path
from typing import Iterator, List, Optional, Tuple

from deepfind.rag.errors import ConfigurationError
from deepfind.rag.text import count_words
from deepfind.rag.types import DocumentChunk, ParsedDocument

# (page_number, number of characters) spans that make up the current buffer
Segment = Tuple[int, int]


def sanitize_file_name(file_name: str, max_length: int = 50) -> str:
    stem = Path(file_name).stem
    safe = re.sub(r"[^a-zA-Z0-9_]", "_", stem).strip("_")
    if not safe:
        return "doc"
    return safe[:max_length]


def make_chunk_id(file_name: str, page_number: Optional[int], chunk_number: int) -> str:
    page = page_number if page_number is not None else 0
    return f"{sanitize_file_name(file_name)}_p{page}_c{chunk_number}_{uuid.uuid4().hex}"


def tail_segments(segments: List[Segment], overlap: int) -> List[Segment]:
    """Segments covering the last `overlap` characters of the buffer.

    Walks backward over the buffer's pages, taking from each page what is
    still needed until the overlap is used up or the buffer start is reached.
    """
    out: List[Segment] = []
    remaining = overlap
    for page_number, length in reversed(segments):
        if remaining <= 0:
            break
        take = min(length, remaining)
        out.append((page_number, take))
        remaining -= take
    out.reverse()
    return out


class Chunker:
    """Cross-page sliding window over a parsed document.

    Non-empty pages are concatenated as one stream of characters and cut
    into windows of `chunk_size`; each window after the first starts with
    the last `overlap` characters of the previous one. A chunk is tagged
    with the page its first character comes from, which for a
    continuation chunk is the page where the carried overlap begins.
    """

    def __init__(self, chunk_size: int = 1000, overlap: int = 200, file_type: str = "pdf"):
        if chunk_size <= 0:
            raise ConfigurationError("chunk_size must be > 0")
        if overlap < 0:
            raise ConfigurationError("overlap must be >= 0")
        if overlap >= chunk_size:
            raise ConfigurationError("overlap must be < chunk_size")

        self.chunk_size = int(chunk_size)
        self.overlap = int(overlap)
        self.file_type = file_type

    def _make_chunk(
        self,
        content: str,
        document: ParsedDocument,
        folder_path: str,
        page_number: Optional[int],
        chunk_number: int,
    ) -> DocumentChunk:
        return DocumentChunk(
            id=make_chunk_id(document.file_name, page_number, chunk_number),
            content=content,
            file_name=document.file_name,
            file_path=document.file_path,
            folder_path=folder_path,
            page_number=page_number,
            chunk_number=chunk_number,
            chunk_size=len(content),
            word_count=count_words(content),
            file_type=self.file_type,
        )

    def chunk(self, document: ParsedDocument, folder_path: str = "") -> Iterator[DocumentChunk]:
        buffer: List[str] = []
        buffer_len = 0
        segments: List[Segment] = []
        fresh = 0          # characters in the buffer not yet emitted
        chunk_number = 0

        for page in document.pages:
            text = page.text
            if not text or not text.strip():
                continue

            offset = 0
            while offset < len(text):
                take = min(self.chunk_size - buffer_len, len(text) - offset)
                buffer.append(text[offset:offset + take])
                buffer_len += take
                fresh += take
                offset += take

                if segments and segments[-1][0] == page.page_number:
                    segments[-1] = (page.page_number, segments[-1][1] + take)
                else:
                    segments.append((page.page_number, take))

                if buffer_len < self.chunk_size:
                    continue

                content = "".join(buffer)
                if content.strip():
                    yield self._make_chunk(content, document, folder_path, segments[0][0], chunk_number)
                    chunk_number += 1

                if self.overlap and len(content) >= self.overlap:
                    carried = content[-self.overlap:]
                    segments = tail_segments(segments, self.overlap)
                else:
                    carried = ""
                    segments = []
                buffer = [carried] if carried else []
                buffer_len = len(carried)
                fresh = 0

        if fresh > 0:
            content = "".join(buffer)
            if content.strip():
                yield self._make_chunk(content, document, folder_path, segments[0][0], chunk_number)

    def iter_batches(
        self,
        document: ParsedDocument,
        folder_path: str = "",
        flush_size: int = 64,
    ) -> Iterator[List[DocumentChunk]]:
        if flush_size <= 0:
            raise ConfigurationError("flush_size must be > 0")

        batch: List[DocumentChunk] = []
        for c in self.chunk(document, folder_path):
            batch.append(c)
            if len(batch) >= flush_size:
                yield batch
                batch = []
        if batch:
            yield batch


def chunk_document(
    document: ParsedDocument,
    *,
    folder_path: str = "",
    chunk_size_chars: int = 1000,
    overlap_chars: int = 200,
) -> List[DocumentChunk]:
    return list(Chunker(chunk_size_chars, overlap_chars).chunk(document, folder_path))

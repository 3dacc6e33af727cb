from __future__ import annotations

import os
from datetime import datetime, timezone
from typing import Any, List, NamedTuple, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, model_validator

from deepfind.rag.text import count_words


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z")


class DocumentPage(BaseModel):
    model_config = ConfigDict(frozen=True)

    page_number: int = Field(ge=1)
    text: str = ""


class ParsedDocument(BaseModel):
    model_config = ConfigDict(frozen=True)

    file_path: str = Field(min_length=1)
    file_name: str = Field(min_length=1)
    pages: Tuple[DocumentPage, ...] = ()

    @property
    def total_pages(self) -> int:
        return len(self.pages)


class DocumentChunk(BaseModel):
    """One indexed span of document text; serialized by alias for the engine."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = Field(min_length=1, max_length=512)
    content: str = Field(min_length=1)
    file_name: str = Field(alias="fileName")
    file_path: str = Field(alias="filePath")
    folder_path: str = Field(default="", alias="folderPath")
    page_number: Optional[int] = Field(default=None, ge=1, alias="pageNumber")
    chunk_number: int = Field(ge=0, alias="chunkNumber")
    chunk_size: int = Field(ge=1, alias="chunkSize")
    word_count: int = Field(ge=0, alias="wordCount")
    created_at: str = Field(default_factory=_utc_now_iso, alias="createdAt")
    file_type: str = Field(default="pdf", alias="fileType")

    @model_validator(mode="after")
    def _check_content(self) -> "DocumentChunk":
        if not self.content.strip():
            raise ValueError("content must not be blank")
        if self.chunk_size != len(self.content):
            raise ValueError(f"chunk_size {self.chunk_size} != len(content) {len(self.content)}")
        return self

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


class SearchHit(BaseModel):
    # engine extras such as "_formatted" are ignored
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str = Field(min_length=1)
    content: str
    file_name: Optional[str] = Field(default=None, alias="fileName")
    file_path: str = Field(default="", alias="filePath")
    page_number: Optional[int] = Field(default=None, alias="pageNumber")
    chunk_number: int = Field(default=0, alias="chunkNumber")
    word_count: Optional[int] = Field(default=None, alias="wordCount")

    def to_chunk(self) -> DocumentChunk:
        path = self.file_path
        page = self.page_number if self.page_number and self.page_number >= 1 else None
        return DocumentChunk(
            id=self.id,
            content=self.content,
            file_name=self.file_name or os.path.basename(path) or self.id,
            file_path=path,
            folder_path=os.path.dirname(path),
            page_number=page,
            chunk_number=max(0, int(self.chunk_number)),
            chunk_size=len(self.content),
            word_count=self.word_count if self.word_count is not None else count_words(self.content),
        )


class SearchResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    hits: List[SearchHit]
    query: str = ""
    processing_time_ms: int = Field(default=0, alias="processingTimeMs")
    limit: int = 0
    offset: int = 0
    estimated_total_hits: Optional[int] = Field(default=None, alias="estimatedTotalHits")


class SearchOptions(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    limit: int = Field(default=20, ge=1)
    offset: int = Field(default=0, ge=0)
    attributes_to_retrieve: Optional[List[str]] = Field(default=None, alias="attributesToRetrieve")
    attributes_to_highlight: Optional[List[str]] = Field(default=None, alias="attributesToHighlight")
    highlight_pre_tag: Optional[str] = Field(default=None, alias="highlightPreTag")
    highlight_post_tag: Optional[str] = Field(default=None, alias="highlightPostTag")
    filter: Optional[str | List[Any]] = None
    sort: Optional[List[str]] = None
    facets: Optional[List[str]] = None

    def to_body(self, query: str) -> dict[str, Any]:
        body = self.model_dump(by_alias=True, exclude_none=True)
        body["q"] = query
        return body


class ScoredChunk(NamedTuple):
    chunk: DocumentChunk
    score: float

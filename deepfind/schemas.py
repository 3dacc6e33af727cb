from __future__ import annotations

from typing import Optional, List
from pydantic import BaseModel, Field


class AskRequest(BaseModel):
    question: str = Field(min_length=1)
    index_name: Optional[str] = None


class SourceItem(BaseModel):
    chunk_id: str
    source: str
    file_name: str
    page: Optional[int] = None
    chunk_number: int
    score: float
    snippet: str


class Usage(BaseModel):
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0


class AskResponse(BaseModel):
    ok: bool = True
    answer: str
    reason: Optional[str] = None
    index_name: Optional[str] = None
    sources: List[SourceItem] = Field(default_factory=list)
    context_tokens: int = 0
    latency_ms: int = 0
    usage: Optional[Usage] = None
    request_id: Optional[str] = None


class IndexRequest(BaseModel):
    folder_path: str = Field(min_length=1)
    index_name: Optional[str] = None


class IndexResponse(BaseModel):
    ok: bool = True
    index_name: str
    total_files: int = 0
    processed_files: int = 0
    failed_files: List[str] = Field(default_factory=list)
    total_chunks: int = 0
    cancelled: bool = False
    latency_ms: int = 0

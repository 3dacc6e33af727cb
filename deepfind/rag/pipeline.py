from __future__ import annotations

import logging
import time
import uuid
from typing import List, Optional, Protocol, Tuple

from deepfind.config import settings
from deepfind.rag.engine import build_engine
from deepfind.rag.errors import (
    ConfigurationError,
    InvalidQueryError,
    ModelNotReadyError,
    NoIndexError,
    NoRelevantContentError,
)
from deepfind.rag.generator import LanguageModel, build_generator
from deepfind.rag.prompt import assemble_context, build as build_prompt
from deepfind.rag.reranker import score_chunks
from deepfind.rag.retriever import MultiQueryRetriever, RetrieveMetrics
from deepfind.rag.types import DocumentChunk, ScoredChunk
from deepfind.schemas import AskResponse, SourceItem, Usage
from deepfind.utils.logging import get_logger


class ChunkRetriever(Protocol):
    def retrieve(self, query: str, index_name: str) -> Tuple[List[DocumentChunk], RetrieveMetrics]: ...


def _snippet(text: str, n: int = 320) -> str:
    t = " ".join((text or "").split())
    return t if len(t) <= n else t[:n].rstrip() + "…"


def _source_item(s: ScoredChunk) -> SourceItem:
    c = s.chunk
    return SourceItem(
        chunk_id=c.id,
        source=c.file_path,
        file_name=c.file_name,
        page=c.page_number,
        chunk_number=c.chunk_number,
        score=round(float(s.score), 4),
        snippet=_snippet(c.content),
    )


class DocumentQA:
    """Question -> retrieve -> rerank -> context -> answer over one index."""

    def __init__(
        self,
        *,
        retriever: ChunkRetriever,
        generator: LanguageModel,
        token_budget: int = 4096,
        logger: Optional[logging.Logger] = None,
    ):
        self.retriever = retriever
        self.generator = generator
        self.token_budget = int(token_budget)
        self.log = logger or get_logger("pipeline")

    def answer(self, question: str, index_name: Optional[str]) -> AskResponse:
        request_id = str(uuid.uuid4())
        t0 = time.perf_counter()

        if not index_name:
            raise NoIndexError()

        q = (question or "").strip()
        if not q:
            raise InvalidQueryError("Empty question")

        chunks, metrics = self.retriever.retrieve(q, index_name)
        if not chunks:
            raise NoRelevantContentError()

        ranked = score_chunks(q, chunks)
        window = assemble_context([s.chunk for s in ranked], self.token_budget)
        if window.empty:
            raise NoRelevantContentError("Context budget too small for the best matching chunk")

        self.log.info(
            "QA context | request_id=%s | retrieved=%s | used=%s | tokens=%s",
            request_id, metrics.returned, len(window.chunks), window.tokens,
        )

        if not self.generator.is_ready():
            raise ModelNotReadyError()

        system_prompt, user_prompt = build_prompt(q, window.text)
        gen_res = self.generator.generate(system_prompt, user_prompt)

        latency_ms = int((time.perf_counter() - t0) * 1000)
        self.log.info("QA done | request_id=%s | latency_ms=%s", request_id, latency_ms)

        return AskResponse(
            ok=True,
            answer=gen_res.text,
            index_name=index_name,
            sources=[_source_item(s) for s in ranked[: len(window.chunks)]],
            context_tokens=window.tokens,
            latency_ms=latency_ms,
            usage=Usage(**gen_res.usage) if gen_res.usage else None,
            request_id=request_id,
        )


def build_document_qa(engine=None, generator: Optional[LanguageModel] = None,
                      logger: Optional[logging.Logger] = None) -> DocumentQA:
    engine = engine or build_engine(logger=logger)
    return DocumentQA(
        retriever=MultiQueryRetriever(engine=engine, logger=logger),
        generator=generator or build_generator(logger=logger),
        token_budget=settings.CONTEXT_TOKEN_BUDGET,
        logger=logger,
    )


def answer(question: str, index_name: Optional[str] = None) -> AskResponse:
    if not index_name:
        raise NoIndexError()

    try:
        generator = build_generator()
    except ConfigurationError as e:
        raise ModelNotReadyError(f"Language model is not configured: {e}") from e

    with build_engine() as engine:
        qa = build_document_qa(engine=engine, generator=generator)
        return qa.answer(question, index_name)

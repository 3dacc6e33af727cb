from __future__ import annotations

import argparse
import logging
import time
from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional, Protocol

from pydantic import ValidationError

from deepfind.config import settings
from deepfind.rag.engine import build_engine
from deepfind.rag.errors import EngineError, EngineHTTPError, EngineUnavailableError, InvalidQueryError, NoIndexError
from deepfind.rag.keywords import get_query_keywords
from deepfind.rag.reranker import rerank_lexical
from deepfind.rag.types import DocumentChunk, SearchOptions, SearchResponse
from deepfind.utils.logging import get_logger, setup_logging

RETRIEVE_ATTRIBUTES = ["id", "content", "fileName", "filePath", "pageNumber", "chunkNumber", "wordCount"]


class SearchBackend(Protocol):
    def health_check(self) -> bool: ...

    def search(self, uid: str, query: str, options: Optional[SearchOptions] = None) -> SearchResponse: ...


def _snippet(text: str, n: int = 360) -> str:
    t = " ".join((text or "").split())
    return t if len(t) <= n else t[:n].rstrip() + "…"


def _search_options(limit: int) -> SearchOptions:
    return SearchOptions(
        limit=limit,
        attributes_to_retrieve=RETRIEVE_ATTRIBUTES,
        attributes_to_highlight=["content"],
        highlight_pre_tag="<mark>",
        highlight_post_tag="</mark>",
    )


def iter_phrases(keywords: List[str], max_words: int) -> Iterator[str]:
    """Keyword phrases of 1..max_words words, each length scanned from the end backward."""
    for length in range(1, max_words + 1):
        for start in range(len(keywords) - length, -1, -1):
            yield " ".join(keywords[start:start + length])


@dataclass
class RetrieveMetrics:
    searches: int
    failed_searches: int
    candidates: int
    returned: int
    keywords: List[str]
    total_latency_ms: int


class MultiQueryRetriever:
    """Full query plus keyword-phrase fan-out, deduplicated by chunk id.

    The first search uses the query as typed. Phrase searches then add
    chunks not seen yet until the cap is reached. A failing phrase search
    is logged and skipped; an unhealthy engine or failing first search
    fails the whole call.
    """

    def __init__(
        self,
        *,
        engine: SearchBackend,
        cap: Optional[int] = None,
        initial_limit: Optional[int] = None,
        phrase_limit: Optional[int] = None,
        max_phrase_words: Optional[int] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.engine = engine
        self.cap = int(cap) if cap is not None else int(settings.RETRIEVAL_CAP)
        self.initial_limit = int(initial_limit) if initial_limit is not None else int(settings.INITIAL_SEARCH_LIMIT)
        self.phrase_limit = int(phrase_limit) if phrase_limit is not None else int(settings.PHRASE_SEARCH_LIMIT)
        self.max_phrase_words = (
            int(max_phrase_words) if max_phrase_words is not None else int(settings.MAX_PHRASE_WORDS)
        )
        self.log = logger or get_logger("retriever")

    def _merge(self, found: Dict[str, DocumentChunk], resp: SearchResponse, cap: int) -> int:
        added = 0
        for hit in resp.hits:
            if len(found) >= cap:
                break
            if hit.id in found:
                continue
            try:
                found[hit.id] = hit.to_chunk()
            except ValidationError as e:
                self.log.warning("RETRIEVE bad hit skipped | id=%s | err=%s", hit.id, e.error_count())
                continue
            added += 1
        return added

    def retrieve(self, query: str, index_name: str, *, cap: Optional[int] = None) -> tuple[List[DocumentChunk], RetrieveMetrics]:
        q = (query or "").strip()
        if not q:
            raise InvalidQueryError("Empty query")

        limit = int(cap) if cap is not None else self.cap
        if limit <= 0:
            raise InvalidQueryError("cap must be > 0")

        t0 = time.perf_counter()

        if not self.engine.health_check():
            raise EngineUnavailableError("Search engine is not healthy")

        found: Dict[str, DocumentChunk] = {}
        searches = 0
        failed = 0

        # 1) full query
        try:
            resp = self.engine.search(index_name, q, _search_options(self.initial_limit))
        except EngineHTTPError as e:
            if e.status == 404:
                raise NoIndexError(f"Index {index_name} does not exist") from e
            raise
        searches += 1
        candidates = len(resp.hits)
        added = self._merge(found, resp, limit)
        self.log.info("RETRIEVE full query | index=%s | hits=%s | added=%s", index_name, len(resp.hits), added)

        # 2) keyword phrases
        keywords = get_query_keywords(q)
        self.log.info("RETRIEVE keywords | %s", keywords)

        phrase_opts = _search_options(self.phrase_limit)
        for phrase in iter_phrases(keywords, self.max_phrase_words):
            if len(found) >= limit:
                break
            try:
                resp = self.engine.search(index_name, phrase, phrase_opts)
            except EngineError as e:
                failed += 1
                self.log.warning("RETRIEVE phrase failed | phrase=%r | err=%s", phrase, f"{type(e).__name__}: {e}")
                continue
            finally:
                searches += 1

            candidates += len(resp.hits)
            added = self._merge(found, resp, limit)
            self.log.debug("RETRIEVE phrase | phrase=%r | hits=%s | added=%s", phrase, len(resp.hits), added)

        chunks = list(found.values())
        metrics = RetrieveMetrics(
            searches=searches,
            failed_searches=failed,
            candidates=candidates,
            returned=len(chunks),
            keywords=keywords,
            total_latency_ms=int((time.perf_counter() - t0) * 1000),
        )
        self.log.info(
            "RETRIEVE done | index=%s | searches=%s | failed=%s | returned=%s | latency_ms=%s",
            index_name, searches, failed, metrics.returned, metrics.total_latency_ms,
        )
        return chunks, metrics


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Retriever: query -> reranked chunks (multi-query lexical)")
    parser.add_argument("query", type=str, help="Query string")
    parser.add_argument("--index", type=str, required=True, help="Index name to search")
    parser.add_argument("--cap", type=int, default=None, help="Override RETRIEVAL_CAP from env")
    parser.add_argument("--show", type=int, default=10, help="How many reranked chunks to print")
    args = parser.parse_args(argv)

    log = setup_logging()

    with build_engine(logger=log) as engine:
        retriever = MultiQueryRetriever(engine=engine, cap=args.cap, logger=log)
        try:
            chunks, m = retriever.retrieve(args.query, args.index)
        except (EngineError, InvalidQueryError, NoIndexError) as e:
            print(f"ERROR: {type(e).__name__}: {e}")
            return 2

    ranked = rerank_lexical(args.query, chunks)

    print(f"\nQUERY: {args.query.strip()}")
    print(f"KEYWORDS: {m.keywords}\n")

    if not ranked:
        print("NOT FOUND: no chunks matched.\n")
    for rank, c in enumerate(ranked[: args.show], start=1):
        print(f"[{rank}] {c.file_path} (page {c.page_number}) seq={c.chunk_number}")
        print(f"    id: {c.id}")
        print(f"    snippet: {_snippet(c.content)}")
        print()

    print(
        "METRICS:"
        f" searches={m.searches}"
        f" failed_searches={m.failed_searches}"
        f" candidates={m.candidates}"
        f" returned={m.returned}"
        f" total_latency_ms={m.total_latency_ms}"
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())

from __future__ import annotations

import threading
import time
import uuid
from typing import Optional

from fastapi import FastAPI
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError

from deepfind.schemas import AskRequest, AskResponse, IndexRequest, IndexResponse
from deepfind.utils.logging import setup_logging
from deepfind.rag.errors import (
    ConfigurationError,
    EngineError,
    EngineUnavailableError,
    IndexingError,
    IndexingInProgressError,
    InvalidQueryError,
    ModelNotReadyError,
    NoIndexError,
    NoRelevantContentError,
    RagError,
)
from deepfind.rag.index import FolderIndexer, build_folder_indexer
from deepfind.rag.pipeline import answer as rag_answer


log = setup_logging()
app = FastAPI(title="Deepfind Document QA", version="0.1")

_indexer: Optional[FolderIndexer] = None
_indexer_lock = threading.Lock()


def get_indexer() -> FolderIndexer:
    # one shared indexer per process; its lock is the exclusive indexing flag
    global _indexer
    with _indexer_lock:
        if _indexer is None:
            _indexer = build_folder_indexer(logger=log)
        return _indexer


def _status_for(e: RagError) -> int:
    if isinstance(e, NoIndexError):
        return 404
    if isinstance(e, NoRelevantContentError):
        return 200
    if isinstance(e, (EngineUnavailableError, ModelNotReadyError)):
        return 503
    if isinstance(e, IndexingInProgressError):
        return 409
    if isinstance(e, (InvalidQueryError, ConfigurationError, IndexingError)):
        return 422
    if isinstance(e, EngineError):
        return 502
    return 500


def _ask_error(request_id: str, latency_ms: int, reason: str, index_name: Optional[str] = None) -> dict:
    return AskResponse(
        ok=False,
        request_id=request_id,
        answer="",
        reason=reason,
        index_name=index_name,
        sources=[],
        latency_ms=latency_ms,
        usage=None,
    ).model_dump()


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(_, __: RequestValidationError):

    return JSONResponse(
        status_code=422,
        content={
            "ok": False,
            "request_id": str(uuid.uuid4()),
            "reason": "invalid_input",
            "answer": "",
            "sources": [],
            "latency_ms": 0,
            "usage": None,
        },
    )


@app.post("/ask", response_model=AskResponse)
def ask(req: AskRequest):
    request_id = str(uuid.uuid4())
    t0 = time.perf_counter()

    q = (req.question or "").strip()

    if not q:
        return JSONResponse(
            status_code=422,
            content=_ask_error(request_id, 0, InvalidQueryError.reason, req.index_name),
        )

    log.info("REQ /ask | request_id=%s | index=%s | q_len=%s", request_id, req.index_name, len(q))

    try:
        res = rag_answer(q, req.index_name)
        res.request_id = request_id

        latency_ms = int((time.perf_counter() - t0) * 1000)
        res.latency_ms = latency_ms

        tokens = (res.usage.total_tokens if res.usage else None)
        log.info(
            "RES /ask | request_id=%s | status=%s | latency_ms=%s | sources=%s | tokens=%s",
            request_id, "ok", res.latency_ms, len(res.sources), tokens
        )

        return JSONResponse(status_code=200, content=res.model_dump())

    except RagError as e:
        latency_ms = int((time.perf_counter() - t0) * 1000)
        status = _status_for(e)
        reason = getattr(e, "reason", None) or type(e).__name__
        log.info(
            "RES /ask | request_id=%s | status=%s | http=%s | latency_ms=%s | err=%s",
            request_id, reason, status, latency_ms, f"{type(e).__name__}: {e}",
        )
        return JSONResponse(
            status_code=status,
            content=_ask_error(request_id, latency_ms, reason, req.index_name),
        )

    except Exception as e:
        latency_ms = int((time.perf_counter() - t0) * 1000)
        log.exception(
            "RES /ask | request_id=%s | status=error | latency_ms=%s | err=%s",
            request_id,
            latency_ms,
            f"{type(e).__name__}: {e}",
        )

        return JSONResponse(
            status_code=500,
            content=_ask_error(request_id, latency_ms, "internal_error", req.index_name),
        )


@app.post("/indexes", response_model=IndexResponse)
def create_index(req: IndexRequest):
    t0 = time.perf_counter()
    log.info("REQ /indexes | folder=%s | index=%s", req.folder_path, req.index_name)

    try:
        result = get_indexer().index_folder(req.folder_path, index_name=req.index_name)
    except RagError as e:
        status = _status_for(e)
        log.info("RES /indexes | http=%s | err=%s", status, f"{type(e).__name__}: {e}")
        return JSONResponse(
            status_code=status,
            content={"ok": False, "error": type(e).__name__, "message": str(e)},
        )

    res = IndexResponse(
        ok=result.files_indexed > 0 and not result.cancelled,
        index_name=result.index_name,
        total_files=result.files_found,
        processed_files=result.files_indexed,
        failed_files=result.failed_files,
        total_chunks=result.chunks_indexed,
        cancelled=result.cancelled,
        latency_ms=int((time.perf_counter() - t0) * 1000),
    )
    log.info(
        "RES /indexes | index=%s | files=%s/%s | chunks=%s",
        res.index_name, res.processed_files, res.total_files, res.total_chunks,
    )
    return JSONResponse(status_code=200, content=res.model_dump())


@app.delete("/indexes/{name}")
def delete_index(name: str):
    try:
        deleted = get_indexer().clear_index(name)
    except RagError as e:
        status = _status_for(e)
        log.info("RES DELETE /indexes | index=%s | http=%s | err=%s", name, status, f"{type(e).__name__}: {e}")
        return JSONResponse(
            status_code=status,
            content={"ok": False, "index_name": name, "error": type(e).__name__, "message": str(e)},
        )
    return JSONResponse(status_code=200 if deleted else 404, content={"ok": deleted, "index_name": name})


@app.get("/")
def root():
    return {"ok": True}

from __future__ import annotations

import json
import threading
from pathlib import Path
from typing import Dict, List

import httpx
import pytest

from deepfind.rag.chunking import Chunker
from deepfind.rag.engine import SearchEngineClient
from deepfind.rag.errors import (
    ConfigurationError,
    EngineHTTPError,
    EngineUnavailableError,
    IndexingError,
    IndexingInProgressError,
    InvalidPdfError,
)
from deepfind.rag.index import FolderIndexer, create_index_name
from deepfind.rag.index_writer import IndexWriter
from deepfind.rag.types import DocumentPage, ParsedDocument


class FakeEngine:
    """Queued-task engine: create and delete are accepted whether or not the index exists."""

    def __init__(self, healthy: bool = True, index_exists: bool = False):
        self.healthy = healthy
        self.indexes: set = {"kb_existing"} if index_exists else set()
        self.docs: Dict[str, List[dict]] = {}
        self.ops: List[tuple] = []

    def health_check(self) -> bool:
        return self.healthy

    def create_index(self, uid: str, primary_key: str = "id") -> dict:
        self.ops.append(("create", uid))
        self.indexes.add(uid)
        return {"taskUid": len(self.ops)}

    def delete_index(self, uid: str) -> dict:
        self.ops.append(("delete", uid))
        self.indexes.discard(uid)
        self.docs.pop(uid, None)
        return {"taskUid": len(self.ops)}

    def add_documents(self, uid: str, documents) -> dict:
        self.docs.setdefault(uid, []).extend(d.to_document() for d in documents)
        return {"taskUid": len(self.ops)}


class StrictDeleteEngine(FakeEngine):
    """Rejects deleting a missing index with a 404."""

    def delete_index(self, uid: str) -> dict:
        if uid not in self.indexes:
            self.ops.append(("delete", uid))
            raise EngineHTTPError(404, f"Index `{uid}` not found")
        return super().delete_index(uid)


class FakeParser:
    def __init__(self, texts: Dict[str, List[str]]):
        self.texts = texts
        self.parsed: List[str] = []

    def parse(self, path: Path) -> ParsedDocument:
        self.parsed.append(path.name)
        pages = self.texts.get(path.name)
        if pages is None:
            raise InvalidPdfError(f"Invalid or corrupted PDF file: {path}")
        return ParsedDocument(
            file_path=str(path),
            file_name=path.name,
            pages=tuple(DocumentPage(page_number=i, text=t) for i, t in enumerate(pages, start=1)),
        )


def _folder(tmp_path: Path, names: List[str]) -> Path:
    root = tmp_path / "docs"
    (root / "sub").mkdir(parents=True)
    for n in names:
        (root / n).write_bytes(b"%PDF-1.4 placeholder")
    (root / "notes.txt").write_text("not a pdf", encoding="utf-8")
    return root


def _indexer(engine: FakeEngine, parser: FakeParser, **kw) -> FolderIndexer:
    writer = IndexWriter(
        engine=engine, batch_size=3, retries=0, sleep_base_s=0, success_pause_s=0,
        failure_pause_s=0, recovery_wait_s=0,
    )
    return FolderIndexer(engine=engine, writer=writer, chunker=Chunker(100, 20), parser=parser, **kw)


def test_index_name_is_stable_per_folder():
    assert create_index_name("/a/b") == create_index_name("/a/b")
    assert create_index_name("/a/b") != create_index_name("/a/c")
    assert create_index_name("/a/b").startswith("kb_")
    assert len(create_index_name("/a/b")) == 3 + 16


def test_index_folder_happy_path(tmp_path):
    root = _folder(tmp_path, ["a.pdf", "sub/b.PDF"])
    engine = FakeEngine()
    parser = FakeParser({"a.pdf": ["x" * 250], "b.PDF": ["", "short page"]})
    progress: List[float] = []

    result = _indexer(engine, parser).index_folder(str(root), on_progress=progress.append)

    assert result.index_name == create_index_name(str(root.resolve()))
    assert result.files_found == 2
    assert result.files_indexed == 2
    assert result.failed_files == []
    assert result.chunks_indexed == len(engine.docs[result.index_name])
    assert result.chunks_indexed == 4  # 3 windows for a.pdf, 1 for b.PDF
    assert progress == [0.5, 1.0]
    assert sorted(parser.parsed) == ["a.pdf", "b.PDF"]

    doc = engine.docs[result.index_name][0]
    assert doc["folderPath"] == str(root.resolve())


def test_bad_file_is_recorded_and_skipped(tmp_path):
    root = _folder(tmp_path, ["good.pdf", "broken.pdf", "blank.pdf"])
    engine = FakeEngine()
    parser = FakeParser({"good.pdf": ["some useful text"], "blank.pdf": ["   "]})

    result = _indexer(engine, parser).index_folder(str(root), index_name="kb_test")

    assert result.files_found == 3
    assert result.files_indexed == 1
    assert sorted(Path(p).name for p in result.failed_files) == ["blank.pdf", "broken.pdf"]
    assert result.chunks_indexed == 1


def test_existing_index_is_dropped_before_create(tmp_path):
    root = _folder(tmp_path, ["a.pdf"])
    engine = FakeEngine(index_exists=True)
    engine.docs["kb_existing"] = [{"id": "stale", "content": "old text"}]

    _indexer(engine, FakeParser({"a.pdf": ["text"]})).index_folder(str(root), index_name="kb_existing")

    assert engine.ops[:2] == [("delete", "kb_existing"), ("create", "kb_existing")]
    assert all(d["id"] != "stale" for d in engine.docs["kb_existing"])


def test_reindexing_a_folder_replaces_its_chunks(tmp_path):
    root = _folder(tmp_path, ["a.pdf", "b.pdf"])
    engine = FakeEngine()
    indexer = _indexer(engine, FakeParser({"a.pdf": ["x" * 250], "b.pdf": ["short page"]}))

    first = indexer.index_folder(str(root))
    second = indexer.index_folder(str(root))

    assert first.index_name == second.index_name
    assert first.chunks_indexed == second.chunks_indexed == 4
    assert len(engine.docs[second.index_name]) == second.chunks_indexed


def test_missing_index_on_first_run_is_fine(tmp_path):
    root = _folder(tmp_path, ["a.pdf"])
    engine = StrictDeleteEngine()

    result = _indexer(engine, FakeParser({"a.pdf": ["text"]})).index_folder(str(root), index_name="kb_new")

    assert result.files_indexed == 1
    assert engine.ops[:2] == [("delete", "kb_new"), ("create", "kb_new")]


def test_drop_failure_aborts_the_job(tmp_path):
    root = _folder(tmp_path, ["a.pdf"])

    class ForbiddenEngine(FakeEngine):
        def delete_index(self, uid):
            raise EngineHTTPError(403, "The provided API key is invalid.")

    indexer = _indexer(ForbiddenEngine(), FakeParser({"a.pdf": ["text"]}))
    with pytest.raises(IndexingError):
        indexer.index_folder(str(root), index_name="kb_x")
    assert not indexer.is_indexing


def test_reindex_through_http_client_keeps_one_copy(tmp_path):
    # engine that answers every mutation with 202 and applies it in order
    store: Dict[str, List[dict]] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        path, method = request.url.path, request.method
        if path == "/health":
            return httpx.Response(200, json={"status": "available"})
        if path == "/indexes" and method == "POST":
            store.setdefault(json.loads(request.content)["uid"], [])
        elif path.endswith("/documents") and method == "POST":
            store.setdefault(path.split("/")[2], []).extend(json.loads(request.content))
        elif method == "DELETE":
            store.pop(path.split("/")[2], None)
        return httpx.Response(202, json={"taskUid": 1, "status": "enqueued"})

    root = _folder(tmp_path, ["a.pdf"])
    engine = SearchEngineClient(base_url="http://meili.test", transport=httpx.MockTransport(handler))
    writer = IndexWriter(
        engine=engine, batch_size=3, retries=0, sleep_base_s=0, success_pause_s=0,
        failure_pause_s=0, recovery_wait_s=0,
    )
    indexer = FolderIndexer(
        engine=engine, writer=writer, chunker=Chunker(100, 20), parser=FakeParser({"a.pdf": ["y" * 250]}),
    )

    runs = [indexer.index_folder(str(root)).chunks_indexed for _ in range(2)]
    name = create_index_name(str(root.resolve()))

    assert runs == [3, 3]
    assert len(store[name]) == 3


def test_invalid_folder(tmp_path):
    with pytest.raises(ConfigurationError):
        _indexer(FakeEngine(), FakeParser({})).index_folder(str(tmp_path / "missing"))


def test_unhealthy_engine(tmp_path):
    root = _folder(tmp_path, ["a.pdf"])
    indexer = _indexer(FakeEngine(healthy=False), FakeParser({"a.pdf": ["text"]}))
    with pytest.raises(EngineUnavailableError):
        indexer.index_folder(str(root))
    assert not indexer.is_indexing


def test_folder_without_pdfs(tmp_path):
    root = _folder(tmp_path, [])
    with pytest.raises(IndexingError):
        _indexer(FakeEngine(), FakeParser({})).index_folder(str(root))


def test_second_job_is_rejected_while_running(tmp_path):
    root = _folder(tmp_path, ["a.pdf"])
    started = threading.Event()
    release = threading.Event()

    class SlowParser(FakeParser):
        def parse(self, path):
            started.set()
            release.wait(5)
            return super().parse(path)

    indexer = _indexer(FakeEngine(), SlowParser({"a.pdf": ["text"]}))
    worker = threading.Thread(target=indexer.index_folder, args=(str(root),))
    worker.start()
    try:
        assert started.wait(5)
        assert indexer.is_indexing
        with pytest.raises(IndexingInProgressError):
            indexer.index_folder(str(root))
    finally:
        release.set()
        worker.join(5)

    assert not indexer.is_indexing


def test_cancel_stops_before_next_file(tmp_path):
    root = _folder(tmp_path, ["a.pdf", "b.pdf"])
    holder: List[FolderIndexer] = []

    class CancellingParser(FakeParser):
        def parse(self, path):
            doc = super().parse(path)
            holder[0].cancel()
            return doc

    indexer = _indexer(FakeEngine(), CancellingParser({"a.pdf": ["text a"], "b.pdf": ["text b"]}))
    holder.append(indexer)
    result = indexer.index_folder(str(root))

    assert result.cancelled
    assert result.files_indexed == 0
    assert result.chunks_indexed == 0


def test_clear_index():
    engine = StrictDeleteEngine(index_exists=True)
    indexer = _indexer(engine, FakeParser({}))
    assert indexer.clear_index("kb_existing") is True
    assert indexer.clear_index("kb_existing") is False


def test_clear_index_engine_down_propagates():
    class DownEngine(FakeEngine):
        def delete_index(self, uid):
            raise EngineUnavailableError("DELETE /indexes/kb timed out")

    with pytest.raises(EngineUnavailableError):
        _indexer(DownEngine(), FakeParser({})).clear_index("kb")


def test_flush_size_must_be_positive():
    with pytest.raises(ConfigurationError):
        _indexer(FakeEngine(), FakeParser({}), flush_size=0)

from __future__ import annotations

import argparse
import hashlib
import json
import logging
import threading
import time
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Callable, List, Optional, Protocol

from deepfind.config import settings, validate_settings
from deepfind.rag.chunking import Chunker
from deepfind.rag.engine import build_engine
from deepfind.rag.errors import (
    ConfigurationError,
    EngineError,
    EngineHTTPError,
    EngineUnavailableError,
    IndexingError,
    IndexingInProgressError,
    PdfParseError,
)
from deepfind.rag.index_writer import IndexWriter
from deepfind.rag.ingest import PdfParser, scan_pdf_files
from deepfind.rag.types import ParsedDocument
from deepfind.utils.logging import get_logger, setup_logging


class IndexAdmin(Protocol):
    def health_check(self) -> bool: ...

    def create_index(self, uid: str, primary_key: str = "id") -> dict: ...

    def delete_index(self, uid: str) -> dict: ...


class DocumentParser(Protocol):
    def parse(self, path: Path) -> ParsedDocument: ...


@dataclass
class IndexingResult:
    index_name: str
    folder_path: str
    files_found: int = 0
    files_indexed: int = 0
    chunks_indexed: int = 0
    failed_files: List[str] = field(default_factory=list)
    cancelled: bool = False
    build_time_sec: float = 0.0


def create_index_name(folder_path: str) -> str:
    digest = hashlib.sha256(folder_path.encode("utf-8")).hexdigest()
    return f"kb_{digest[:16]}"


class FolderIndexer:
    """Indexes every PDF under a folder into one engine index.

    Only one job may run per indexer at a time. Files that fail to parse or
    lose batches are recorded and skipped; the job itself keeps going.
    """

    def __init__(
        self,
        *,
        engine: IndexAdmin,
        writer: IndexWriter,
        chunker: Chunker,
        parser: Optional[DocumentParser] = None,
        flush_size: int = 64,
        logger: Optional[logging.Logger] = None,
    ):
        self.engine = engine
        self.writer = writer
        self.chunker = chunker
        self.parser = parser or PdfParser()
        if int(flush_size) <= 0:
            raise ConfigurationError("flush_size must be > 0")
        self.flush_size = int(flush_size)
        self.log = logger or get_logger("indexer")
        self._lock = threading.Lock()
        self._cancel = writer.cancel_event

    @property
    def is_indexing(self) -> bool:
        return self._lock.locked()

    def cancel(self) -> None:
        self._cancel.set()

    def _recreate_index(self, index_name: str) -> None:
        # create is a queued task and does not fail on an existing uid; drop first
        try:
            self.engine.delete_index(index_name)
            self.log.info("INDEX previous dropped | index=%s", index_name)
        except EngineHTTPError as e:
            if e.status != 404:
                raise IndexingError(f"Failed to drop index {index_name}: {e}") from e
            self.log.info("INDEX no previous index | index=%s", index_name)

        try:
            self.engine.create_index(index_name, primary_key="id")
        except EngineHTTPError as e:
            raise IndexingError(f"Failed to create index {index_name}: {e}") from e
        self.log.info("INDEX created | index=%s", index_name)

    def _index_file(self, path: Path, folder_path: str, index_name: str, result: IndexingResult) -> None:
        try:
            document = self.parser.parse(path)
        except PdfParseError as e:
            self.log.warning("FILE parse failed | file=%s | err=%s", path, e)
            result.failed_files.append(str(path))
            return

        chunks = 0
        lost = 0
        try:
            for batch in self.chunker.iter_batches(document, folder_path, flush_size=self.flush_size):
                report = self.writer.index_batch(index_name, batch)
                chunks += len(batch)
                lost += report.failed
                result.chunks_indexed += report.indexed
                if report.cancelled:
                    result.cancelled = True
                    break
        except ValueError as e:
            # invalid chunk data; whatever was flushed before stays indexed
            self.log.warning("FILE chunking failed | file=%s | err=%s", path, e)
            result.failed_files.append(str(path))
            return

        if result.cancelled:
            return
        if chunks == 0 or lost:
            self.log.warning(
                "FILE incomplete | file=%s | chunks=%s | lost=%s", document.file_name, chunks, lost
            )
            result.failed_files.append(str(path))
            return

        result.files_indexed += 1
        self.log.info("FILE done | file=%s | chunks=%s", document.file_name, chunks)

    def index_folder(
        self,
        folder_path: str,
        index_name: Optional[str] = None,
        on_progress: Optional[Callable[[float], None]] = None,
    ) -> IndexingResult:
        root = Path(folder_path)
        if not root.is_dir():
            raise ConfigurationError(f"Invalid folder path: {folder_path}")

        if not self._lock.acquire(blocking=False):
            raise IndexingInProgressError("Another indexing job is already running")

        try:
            self._cancel.clear()
            t0 = time.perf_counter()
            folder = str(root.resolve())
            name = index_name or create_index_name(folder)
            result = IndexingResult(index_name=name, folder_path=folder)

            if not self.engine.health_check():
                raise EngineUnavailableError("Search engine is not healthy")

            self._recreate_index(name)

            pdf_files = scan_pdf_files(root)
            result.files_found = len(pdf_files)
            if not pdf_files:
                raise IndexingError(f"No PDF files found in {folder}")

            self.log.info("INDEX start | index=%s | folder=%s | files=%s", name, folder, len(pdf_files))

            for n, path in enumerate(pdf_files, start=1):
                if self._cancel.is_set():
                    result.cancelled = True
                if result.cancelled:
                    self.log.info("INDEX cancelled | index=%s | done_files=%s", name, n - 1)
                    break

                self._index_file(path, folder, name, result)
                if on_progress:
                    on_progress(n / len(pdf_files))

            result.build_time_sec = round(time.perf_counter() - t0, 3)
            self.log.info(
                "INDEX done | index=%s | files=%s/%s | chunks=%s | failed=%s | sec=%s",
                name, result.files_indexed, result.files_found, result.chunks_indexed,
                len(result.failed_files), result.build_time_sec,
            )
            return result
        finally:
            self._lock.release()

    def clear_index(self, index_name: str) -> bool:
        """Delete an index. False if it does not exist; other engine errors propagate."""
        try:
            self.engine.delete_index(index_name)
        except EngineHTTPError as e:
            self.log.warning("INDEX delete failed | index=%s | err=%s", index_name, e)
            if e.status == 404:
                return False
            raise
        except EngineError as e:
            self.log.warning("INDEX delete failed | index=%s | err=%s", index_name, e)
            raise
        self.log.info("INDEX deleted | index=%s", index_name)
        return True


def build_folder_indexer(engine=None, logger: Optional[logging.Logger] = None) -> FolderIndexer:
    validate_settings(settings)
    engine = engine or build_engine(logger=logger)
    writer = IndexWriter(
        engine=engine,
        batch_size=settings.INDEX_BATCH_SIZE,
        retries=settings.INDEX_RETRIES,
        sleep_base_s=settings.INDEX_RETRY_BASE_S,
        success_pause_s=settings.INDEX_SUCCESS_PAUSE_S,
        failure_pause_s=settings.INDEX_FAILURE_PAUSE_S,
        health_check_every=settings.HEALTH_CHECK_EVERY,
        recovery_wait_s=settings.HEALTH_RECOVERY_WAIT_S,
        logger=logger,
    )
    return FolderIndexer(
        engine=engine,
        writer=writer,
        chunker=Chunker(settings.CHUNK_SIZE_CHARS, settings.OVERLAP_CHARS),
        flush_size=settings.CHUNK_FLUSH_SIZE,
        logger=logger,
    )


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Index a folder of PDFs into the search engine")
    parser.add_argument("folder", type=str, help="Folder to index (recursively)")
    parser.add_argument("--index", type=str, default=None, help="Index name (default: hash of folder path)")
    args = parser.parse_args(argv)

    log = setup_logging()
    indexer = build_folder_indexer(logger=log)

    try:
        result = indexer.index_folder(args.folder, index_name=args.index)
    except (ConfigurationError, IndexingError, EngineError) as e:
        print(f"ERROR: {type(e).__name__}: {e}")
        return 2
    finally:
        indexer.engine.close()

    print(json.dumps(asdict(result), ensure_ascii=False, indent=2))
    return 0 if result.files_indexed else 1


if __name__ == "__main__":
    raise SystemExit(main())

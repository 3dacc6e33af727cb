from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Optional, Protocol, Sequence

from deepfind.rag.errors import EngineError
from deepfind.rag.types import DocumentChunk
from deepfind.utils.logging import get_logger


class DocumentSink(Protocol):
    def add_documents(self, uid: str, documents: Sequence[DocumentChunk]) -> dict: ...

    def health_check(self) -> bool: ...


@dataclass
class IndexReport:
    batches: int = 0
    failed_batches: int = 0
    indexed: int = 0
    failed: int = 0
    cancelled: bool = False

    @property
    def ok(self) -> bool:
        return self.failed_batches == 0 and not self.cancelled


class IndexWriter:
    """Submits chunks to the engine in fixed-size batches with retry and pacing.

    A batch that still fails after all retries is logged and skipped so one
    bad batch does not abort the rest of the folder.
    """

    def __init__(
        self,
        *,
        engine: DocumentSink,
        batch_size: int = 50,
        retries: int = 3,
        sleep_base_s: float = 0.5,
        success_pause_s: float = 0.05,
        failure_pause_s: float = 0.5,
        health_check_every: int = 200,
        recovery_wait_s: float = 2.0,
        recovery_attempts: int = 5,
        cancel_event: Optional[threading.Event] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.engine = engine
        self.batch_size = max(1, int(batch_size))
        self.retries = max(0, int(retries))
        self.sleep_base_s = float(sleep_base_s)
        self.success_pause_s = float(success_pause_s)
        self.failure_pause_s = float(failure_pause_s)
        self.health_check_every = max(1, int(health_check_every))
        self.recovery_wait_s = float(recovery_wait_s)
        self.recovery_attempts = max(1, int(recovery_attempts))
        self.cancel_event = cancel_event or threading.Event()
        self.log = logger or get_logger("index_writer")
        self._sent = 0

    @property
    def batches_sent(self) -> int:
        return self._sent

    def _submit(self, index_name: str, batch: Sequence[DocumentChunk], label: str) -> bool:
        last_err: Optional[Exception] = None

        for attempt in range(1, self.retries + 2):
            try:
                self.engine.add_documents(index_name, batch)
                self.log.info(
                    "INDEX batch ok | index=%s | batch=%s | size=%s | attempt=%s",
                    index_name, label, len(batch), attempt,
                )
                return True

            except EngineError as e:
                last_err = e
                self.log.warning(
                    "INDEX batch err | index=%s | batch=%s | attempt=%s/%s | sample_ids=%s | err=%s",
                    index_name, label, attempt, self.retries + 1,
                    ",".join(c.id for c in batch[:3]), f"{type(e).__name__}: {e}",
                )
                if attempt <= self.retries:
                    time.sleep(self.sleep_base_s * attempt)
                    continue

        self.log.error(
            "INDEX batch dropped | index=%s | batch=%s | attempts=%s | err=%s",
            index_name, label, self.retries + 1, last_err,
        )
        return False

    def _wait_for_recovery(self) -> bool:
        if self.engine.health_check():
            return True
        for attempt in range(1, self.recovery_attempts + 1):
            self.log.warning(
                "INDEX engine unhealthy | after_batches=%s | wait_s=%s | attempt=%s/%s",
                self._sent, self.recovery_wait_s, attempt, self.recovery_attempts,
            )
            time.sleep(self.recovery_wait_s)
            if self.engine.health_check():
                self.log.info("INDEX engine recovered | after_batches=%s", self._sent)
                return True
        return False

    def index_batch(self, index_name: str, chunks: Sequence[DocumentChunk]) -> IndexReport:
        report = IndexReport()
        total_batches = (len(chunks) + self.batch_size - 1) // self.batch_size

        for b in range(total_batches):
            if self.cancel_event.is_set():
                self.log.info("INDEX cancelled | index=%s | batch=%s/%s", index_name, b + 1, total_batches)
                report.cancelled = True
                break

            i = b * self.batch_size
            batch = chunks[i: i + self.batch_size]
            ok = self._submit(index_name, batch, f"{b + 1}/{total_batches}")

            self._sent += 1
            report.batches += 1
            if ok:
                report.indexed += len(batch)
                time.sleep(self.success_pause_s)
            else:
                report.failed_batches += 1
                report.failed += len(batch)
                time.sleep(self.failure_pause_s)

            if self._sent % self.health_check_every == 0:
                if not self._wait_for_recovery():
                    self.log.error("INDEX engine still unhealthy | after_batches=%s | continuing", self._sent)

        return report

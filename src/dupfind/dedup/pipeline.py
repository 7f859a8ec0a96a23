"""
Concurrent scan coordinator.

Candidate paths are pulled lazily and fingerprinted by a bounded worker
pool. Finished records travel through a bounded queue to one grouping
thread, which is the only writer of the GroupingEngine. All state of a
scan lives on its ScanPipeline instance.
"""

from __future__ import annotations

import itertools
import queue
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional, Tuple, Union

from ..config import Settings
from ..logging import get_logger
from ..walk import Candidate
from .cluster import GroupingEngine
from .events import EventStream, ScanCompleted
from .hash import fingerprint_file
from .index import IndexExhaustionError, make_index
from .normalize import DecodeError, PathInput, as_path
from .record import ImageRecord

logger = get_logger(__name__)

CandidateInput = Union[Candidate, PathInput]

_DONE = object()
_SLOT_POLL_SECONDS = 0.1


class CancellationRequested(Exception):
    """Raised inside a worker that picks up a record after cancel()."""


@dataclass(frozen=True)
class FailureDetail:
    path: Path
    reason: str


@dataclass(frozen=True)
class ScanSummary:
    scanned: int
    fingerprinted: int
    failed: int
    abandoned: int
    grouped: int
    group_count: int
    cancelled: bool
    failures: Tuple[FailureDetail, ...]
    elapsed: float


class ScanCounters:
    """Running totals, updated from the dispatcher, workers and consumer."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.scanned = 0
        self.fingerprinted = 0
        self.failed = 0
        self.abandoned = 0

    def add(self, **deltas: int) -> None:
        with self._lock:
            for name, delta in deltas.items():
                setattr(self, name, getattr(self, name) + delta)

    def snapshot(self) -> dict:
        with self._lock:
            return {
                "scanned": self.scanned,
                "fingerprinted": self.fingerprinted,
                "failed": self.failed,
                "abandoned": self.abandoned,
            }


class ScanPipeline:
    """
    One scan: dispatch, fingerprint, group, report.

    Without an explicit stream, events are buffered for pull consumers, who
    must drain them with poll() or by iterating self.events. Push-only callers
    should pass EventStream(buffered=False) so nothing accumulates.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        engine: Optional[GroupingEngine] = None,
        events: Optional[EventStream] = None,
    ):
        self.settings = settings or Settings()
        self.engine = engine or GroupingEngine(
            threshold=self.settings.distance_threshold,
            index=make_index(self.settings.index_kind, self.settings.max_records),
        )
        self.events = events or EventStream()
        self.counters = ScanCounters()

        self._cancel = threading.Event()
        self._results: queue.Queue = queue.Queue(maxsize=self.settings.queue_size)
        self._slots = threading.BoundedSemaphore(self.settings.worker_count + self.settings.queue_size)
        self._ids = itertools.count(1)
        self._thread: Optional[threading.Thread] = None
        self._summary: Optional[ScanSummary] = None
        self._error: Optional[BaseException] = None
        self._halted = False

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    @property
    def summary(self) -> Optional[ScanSummary]:
        return self._summary

    def cancel(self) -> None:
        """Stop dispatching new work. In-flight images finish or are abandoned."""
        if not self._cancel.is_set():
            logger.info("Scan cancellation requested")
        self._cancel.set()

    def start(self, candidates: Iterable[CandidateInput]) -> None:
        if self._thread is not None:
            raise RuntimeError("a ScanPipeline runs a single scan; create a new one")
        self._thread = threading.Thread(
            target=self._run, args=(candidates,), name="dupfind-dispatch", daemon=True
        )
        self._thread.start()

    def wait(self, timeout: Optional[float] = None) -> Optional[ScanSummary]:
        """
        Block until the scan finishes.

        Returns:
            The summary, or None if timeout expired first

        Raises:
            IndexExhaustionError: If the index filled up (partial summary on exc.summary)
            Exception: Whatever the candidate iterable raised
        """
        if self._thread is None:
            raise RuntimeError("scan was not started")
        self._thread.join(timeout)
        if self._thread.is_alive():
            return None
        if self._error is not None:
            raise self._error
        return self._summary

    def run(self, candidates: Iterable[CandidateInput]) -> ScanSummary:
        self.start(candidates)
        return self.wait()

    def _run(self, candidates: Iterable[CandidateInput]) -> None:
        started = time.monotonic()
        consumer = threading.Thread(target=self._consume, name="dupfind-grouping", daemon=True)
        consumer.start()
        try:
            with ThreadPoolExecutor(
                max_workers=self.settings.worker_count, thread_name_prefix="dupfind-worker"
            ) as pool:
                self._dispatch(candidates, pool)
        except Exception as exc:
            logger.error(f"Candidate stream failed: {exc}")
            if self._error is None:
                self._error = exc
        finally:
            self._results.put(_DONE)
            consumer.join()

        self._summary = self._summarize(time.monotonic() - started)
        if isinstance(self._error, IndexExhaustionError):
            self._error.summary = self._summary
        logger.info(
            f"Scan finished: {self._summary.scanned} scanned, {self._summary.failed} failed, "
            f"{self._summary.group_count} groups"
        )
        self.events.publish(ScanCompleted(self._summary))

    def _dispatch(self, candidates: Iterable[CandidateInput], pool: ThreadPoolExecutor) -> None:
        for candidate in candidates:
            if not self._acquire_slot():
                break
            record = self._make_record(candidate)
            self.counters.add(scanned=1)
            pool.submit(self._work, record)
        if self._cancel.is_set():
            logger.info("Dispatch stopped by cancellation")

    def _acquire_slot(self) -> bool:
        # Cancellation is checked while waiting for capacity, never mid-image
        while not self._cancel.is_set():
            if self._slots.acquire(timeout=_SLOT_POLL_SECONDS):
                return True
        return False

    def _make_record(self, candidate: CandidateInput) -> ImageRecord:
        record_id = next(self._ids)
        if isinstance(candidate, Candidate):
            return ImageRecord(
                record_id=record_id,
                path=as_path(candidate.path),
                size=candidate.size,
                mtime=candidate.mtime,
            )
        return ImageRecord(record_id=record_id, path=as_path(candidate))

    def _work(self, record: ImageRecord) -> None:
        try:
            if self._cancel.is_set():
                raise CancellationRequested(record.path)
            try:
                fingerprint, normalized = fingerprint_file(record.path, self.settings)
            except DecodeError as exc:
                result = record.with_error(exc.reason)
            except Exception as exc:
                logger.exception(f"Unexpected error fingerprinting {record.path}")
                result = record.with_error(f"unexpected error: {exc}")
            else:
                result = record.with_fingerprint(fingerprint, normalized.width, normalized.height)
            self._results.put(result)
        except CancellationRequested:
            self.counters.add(abandoned=1)
            logger.debug(f"Abandoned {record.path} after cancellation")
        finally:
            self._slots.release()

    def _consume(self) -> None:
        while True:
            item = self._results.get()
            if item is _DONE:
                return
            if self._halted:
                # Grouping stopped; keep draining so workers never block
                self.counters.add(abandoned=1)
                continue
            try:
                events = self.engine.ingest(item)
            except IndexExhaustionError as exc:
                logger.error(f"Stopping scan: {exc}")
                self._halt(exc)
                continue
            except Exception as exc:
                logger.exception(f"Grouping failed on {item.path}")
                self._halt(exc)
                continue

            if item.error is not None:
                self.counters.add(failed=1)
                logger.warning(f"Failed to fingerprint {item.path}: {item.error}")
            else:
                self.counters.add(fingerprinted=1)
            for event in events:
                self.events.publish(event)

    def _halt(self, exc: Exception) -> None:
        self._halted = True
        self._error = exc
        self.counters.add(abandoned=1)
        self.cancel()

    def _summarize(self, elapsed: float) -> ScanSummary:
        counts = self.counters.snapshot()
        failures = tuple(
            FailureDetail(path=record.path, reason=record.error or "unknown error")
            for record in self.engine.failures()
        )
        return ScanSummary(
            scanned=counts["scanned"],
            fingerprinted=counts["fingerprinted"],
            failed=counts["failed"],
            abandoned=counts["abandoned"],
            grouped=self.engine.grouped_count,
            group_count=self.engine.group_count,
            cancelled=self._cancel.is_set(),
            failures=failures,
            elapsed=elapsed,
        )

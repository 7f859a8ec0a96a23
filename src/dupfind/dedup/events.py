"""
Incremental scan events for presentation layers.

Events describe changes to the set of visible duplicate groups so that a
consumer can update its view without re-reading the whole partition. They
may arrive in any interleaving relative to the order paths were submitted.
"""

from __future__ import annotations

import queue
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Callable, Iterator, List, Optional, Tuple, Union

from ..logging import get_logger
from .record import ImageRecord

if TYPE_CHECKING:
    from .pipeline import ScanSummary

logger = get_logger(__name__)


@dataclass(frozen=True)
class GroupCreated:
    """A group reached two members and became visible."""
    group_id: str
    records: Tuple[ImageRecord, ...]


@dataclass(frozen=True)
class GroupExtended:
    group_id: str
    added: Tuple[ImageRecord, ...]


@dataclass(frozen=True)
class GroupsMerged:
    """Visible groups merged_group_ids were folded into group_id."""
    group_id: str
    merged_group_ids: Tuple[str, ...]
    added: Tuple[ImageRecord, ...]


@dataclass(frozen=True)
class ScanFailed:
    path: Path
    reason: str


@dataclass(frozen=True)
class ScanCompleted:
    summary: "ScanSummary"


ScanEvent = Union[GroupCreated, GroupExtended, GroupsMerged, ScanFailed, ScanCompleted]

Subscriber = Callable[[ScanEvent], None]


class EventStream:
    """
    Thread-safe fan-out of scan events.

    Subscribers are called synchronously on the publishing thread. Every
    event is also buffered for pull consumers, who use poll() or iterate
    the stream until ScanCompleted.
    """

    def __init__(self, buffered: bool = True):
        self._subscribers: List[Subscriber] = []
        self._lock = threading.Lock()
        self._buffer: Optional[queue.Queue] = queue.Queue() if buffered else None

    def subscribe(self, callback: Subscriber) -> None:
        with self._lock:
            self._subscribers.append(callback)

    def unsubscribe(self, callback: Subscriber) -> None:
        with self._lock:
            self._subscribers.remove(callback)

    def publish(self, event: ScanEvent) -> None:
        with self._lock:
            subscribers = list(self._subscribers)

        for callback in subscribers:
            try:
                callback(event)
            except Exception:
                logger.exception(f"Event subscriber {callback!r} failed on {type(event).__name__}")

        if self._buffer is not None:
            self._buffer.put(event)

    def poll(self, timeout: Optional[float] = None) -> Optional[ScanEvent]:
        """Next buffered event, or None if none arrives within timeout."""
        if self._buffer is None:
            raise RuntimeError("event stream was created without a buffer")
        try:
            return self._buffer.get(timeout=timeout)
        except queue.Empty:
            return None

    def drain(self) -> List[ScanEvent]:
        """All events buffered so far, without blocking."""
        events = []
        while True:
            event = self.poll(timeout=0)
            if event is None:
                return events
            events.append(event)

    def __iter__(self) -> Iterator[ScanEvent]:
        while True:
            event = self.poll()
            yield event
            if isinstance(event, ScanCompleted):
                return

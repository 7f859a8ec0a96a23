"""Clustering logic for grouping near-duplicate images."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from ..logging import get_logger
from .events import GroupCreated, GroupExtended, GroupsMerged, ScanEvent, ScanFailed
from .index import SimilarityIndex, make_index
from .record import ImageRecord, RecordState

logger = get_logger(__name__)


@dataclass(frozen=True)
class DuplicateGroup:
    """A visible group of near-duplicate images with a canonical representative."""
    group_id: str
    records: Tuple[ImageRecord, ...]
    canonical: ImageRecord

    @property
    def paths(self) -> Tuple[str, ...]:
        return tuple(str(record.path) for record in self.records)

    def __len__(self) -> int:
        return len(self.records)


class UnionFind:
    """Disjoint sets over integer ids with path compression and union by size."""

    def __init__(self) -> None:
        self._parent: Dict[int, int] = {}
        self._size: Dict[int, int] = {}

    def __contains__(self, item: int) -> bool:
        return item in self._parent

    def add(self, item: int) -> None:
        if item not in self._parent:
            self._parent[item] = item
            self._size[item] = 1

    def find(self, item: int) -> int:
        root = item
        while self._parent[root] != root:
            root = self._parent[root]
        while self._parent[item] != root:
            self._parent[item], item = root, self._parent[item]
        return root

    def union(self, x: int, y: int) -> int:
        """Join the sets of x and y and return the new root."""
        rx, ry = self.find(x), self.find(y)
        if rx == ry:
            return rx
        if self._size[rx] < self._size[ry]:
            rx, ry = ry, rx
        self._parent[ry] = rx
        self._size[rx] += self._size.pop(ry)
        return rx

    def size(self, item: int) -> int:
        return self._size[self.find(item)]


class GroupingEngine:
    """
    Incremental near-duplicate partition over ingested records.

    Each fingerprinted record is joined with every earlier record within
    the distance threshold, so groups are the connected components of the
    similarity graph. Two records a and c can share a group without being
    within threshold of each other if some b links them. The partition
    does not depend on ingestion order; only which label survives a merge
    does.

    All mutations go through one lock, so a single consumer thread may
    ingest while other threads query.
    """

    def __init__(self, threshold: int = 6, index: Optional[SimilarityIndex] = None):
        if threshold < 0:
            raise ValueError(f"threshold must be non-negative, got {threshold}")
        self.threshold = threshold
        self._index = index if index is not None else make_index()
        self._sets = UnionFind()
        self._records: Dict[int, ImageRecord] = {}
        self._failures: List[ImageRecord] = []
        self._members: Dict[int, List[int]] = {}  # root -> record ids
        self._labels: Dict[int, str] = {}  # root -> group id, visible groups only
        self._label_counter = 0
        self._lock = threading.RLock()

    def ingest(self, record: ImageRecord) -> List[ScanEvent]:
        """
        Add a finished record to the partition.

        Args:
            record: A FINGERPRINTED or FAILED record

        Returns:
            Events describing visible changes, possibly empty

        Raises:
            ValueError: If the record is in another state or its id was seen before
            IndexExhaustionError: If the similarity index is full
        """
        with self._lock:
            if record.record_id in self._records:
                raise ValueError(f"record {record.record_id} was already ingested")

            if record.state is RecordState.FAILED:
                self._records[record.record_id] = record
                self._failures.append(record)
                return [ScanFailed(path=record.path, reason=record.error or "unknown error")]

            if record.state is not RecordState.FINGERPRINTED:
                raise ValueError(
                    f"cannot ingest record {record.record_id} in state {record.state.value}"
                )
            return self._ingest_fingerprinted(record)

    def _ingest_fingerprinted(self, record: ImageRecord) -> List[ScanEvent]:
        matches = self._index.query_within(record.fingerprint, self.threshold)
        # Insert before touching the partition; a full index leaves it unchanged
        self._index.insert(record.fingerprint, record.record_id)

        grouped = record.as_grouped()
        rid = grouped.record_id
        self._records[rid] = grouped
        self._sets.add(rid)
        self._members[rid] = [rid]

        roots = sorted({self._sets.find(match.ref) for match in matches})
        if not roots:
            logger.debug(f"{record.path}: no match within {self.threshold}")
            return []

        for match in matches:
            logger.debug(f"Linked {record.path} to record {match.ref} (distance: {match.distance})")

        return [self._merge(rid, roots)]

    def _merge(self, rid: int, roots: List[int]) -> ScanEvent:
        visible = [root for root in roots if root in self._labels]
        # Largest visible group keeps its label; smallest label breaks ties
        visible.sort(key=lambda root: (-len(self._members[root]), self._labels[root]))

        added: List[int] = [rid]
        for root in roots:
            if root not in self._labels:
                added.extend(self._members[root])

        merged_labels = tuple(self._labels.pop(root) for root in visible[1:])
        label = self._labels.pop(visible[0]) if visible else None

        new_root = rid
        for root in roots:
            members = self._members.pop(root)
            members_new = self._members.pop(new_root)
            new_root = self._sets.union(new_root, root)
            self._members[new_root] = members_new + members

        if label is None:
            label = self._next_label()
            self._labels[new_root] = label
            records = tuple(self._records[i] for i in sorted(self._members[new_root]))
            logger.info(f"Created duplicate group {label} with {len(records)} images")
            return GroupCreated(group_id=label, records=records)

        self._labels[new_root] = label
        added_records = tuple(self._records[i] for i in sorted(added))
        if merged_labels:
            logger.info(f"Merged groups {', '.join(merged_labels)} into {label}")
            return GroupsMerged(group_id=label, merged_group_ids=merged_labels, added=added_records)

        logger.debug(f"Extended group {label} by {len(added_records)} images")
        return GroupExtended(group_id=label, added=added_records)

    def _next_label(self) -> str:
        self._label_counter += 1
        return f"dup_{self._label_counter:03d}"

    def groups(self) -> List[DuplicateGroup]:
        """Snapshot of visible groups, ordered by canonical path."""
        with self._lock:
            groups = [self._build_group(root) for root in self._labels]
        return sorted(groups, key=lambda group: str(group.canonical.path))

    def group_of(self, record_id: int) -> Optional[DuplicateGroup]:
        """The visible group containing record_id, if any."""
        with self._lock:
            if record_id not in self._sets:
                return None
            root = self._sets.find(record_id)
            if root not in self._labels:
                return None
            return self._build_group(root)

    def records(self) -> List[ImageRecord]:
        with self._lock:
            return list(self._records.values())

    def failures(self) -> List[ImageRecord]:
        with self._lock:
            return list(self._failures)

    @property
    def record_count(self) -> int:
        with self._lock:
            return len(self._records)

    @property
    def group_count(self) -> int:
        with self._lock:
            return len(self._labels)

    @property
    def grouped_count(self) -> int:
        """Number of records that belong to a visible group."""
        with self._lock:
            return sum(len(self._members[root]) for root in self._labels)

    def _build_group(self, root: int) -> DuplicateGroup:
        records = tuple(sorted((self._records[i] for i in self._members[root]), key=lambda r: str(r.path)))
        return DuplicateGroup(
            group_id=self._labels[root],
            records=records,
            canonical=_select_canonical(records),
        )


def _select_canonical(records: Tuple[ImageRecord, ...]) -> ImageRecord:
    """
    Select canonical image from a group.

    Selection criteria (in order):
    1. Largest pixel count
    2. Largest file size
    3. Lexicographically smallest path
    """
    return min(records, key=lambda r: (-r.pixel_count, -(r.size or 0), str(r.path)))

"""Perceptual near-duplicate detection engine."""

from .normalize import DecodeError, NormalizedImage, normalize_file, normalize_image
from .hash import compute_fingerprint, fingerprint_file
from .distance import hamming_distance
from .index import BKTreeIndex, IndexExhaustionError, LinearIndex, make_index
from .record import ImageRecord, RecordState
from .events import (
    EventStream,
    GroupCreated,
    GroupExtended,
    GroupsMerged,
    ScanCompleted,
    ScanFailed,
)
from .cluster import DuplicateGroup, GroupingEngine
from .pipeline import CancellationRequested, ScanPipeline, ScanSummary
from .model import ScanResult, find_duplicates

__all__ = [
    "DecodeError",
    "NormalizedImage",
    "normalize_file",
    "normalize_image",
    "compute_fingerprint",
    "fingerprint_file",
    "hamming_distance",
    "BKTreeIndex",
    "IndexExhaustionError",
    "LinearIndex",
    "make_index",
    "ImageRecord",
    "RecordState",
    "EventStream",
    "GroupCreated",
    "GroupExtended",
    "GroupsMerged",
    "ScanCompleted",
    "ScanFailed",
    "DuplicateGroup",
    "GroupingEngine",
    "CancellationRequested",
    "ScanPipeline",
    "ScanSummary",
    "ScanResult",
    "find_duplicates",
]

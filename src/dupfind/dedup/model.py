"""Public API for near-duplicate image search."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Optional

from ..config import Settings
from ..logging import get_logger
from .cluster import DuplicateGroup
from .events import EventStream, Subscriber
from .pipeline import CandidateInput, ScanPipeline, ScanSummary

logger = get_logger(__name__)


@dataclass(frozen=True)
class ScanResult:
    summary: ScanSummary
    groups: List[DuplicateGroup]


def find_duplicates(
    paths: Iterable[CandidateInput],
    settings: Optional[Settings] = None,
    on_event: Optional[Subscriber] = None,
) -> ScanResult:
    """
    Fingerprint every path and group near-duplicates.

    Args:
        paths: Image paths or walk Candidates, consumed lazily
        settings: Scan settings, defaults if omitted
        on_event: Called on the grouping thread for every scan event

    Returns:
        ScanResult with the summary and the visible duplicate groups
    """
    events = EventStream(buffered=False)
    if on_event is not None:
        events.subscribe(on_event)

    pipeline = ScanPipeline(settings=settings, events=events)
    summary = pipeline.run(paths)
    groups = pipeline.engine.groups()

    if summary.fingerprinted < 2:
        logger.info("Less than 2 images with valid fingerprints, no duplicates possible")
    logger.info(f"Found {len(groups)} duplicate groups covering {summary.grouped} images")
    return ScanResult(summary=summary, groups=groups)

"""Per-image records tracked through a scan."""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from pathlib import Path
from typing import Optional

import imagehash


class RecordState(str, Enum):
    PENDING = "pending"
    FINGERPRINTED = "fingerprinted"
    GROUPED = "grouped"
    FAILED = "failed"


@dataclass(frozen=True)
class ImageRecord:
    """One candidate image. State changes produce a new record."""
    record_id: int
    path: Path
    size: Optional[int] = None
    mtime: Optional[float] = None
    state: RecordState = RecordState.PENDING
    fingerprint: Optional[imagehash.ImageHash] = None
    error: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None

    @property
    def pixel_count(self) -> int:
        if self.width is None or self.height is None:
            return 0
        return self.width * self.height

    def with_fingerprint(
        self,
        fingerprint: imagehash.ImageHash,
        width: Optional[int] = None,
        height: Optional[int] = None,
    ) -> "ImageRecord":
        self._require(RecordState.PENDING)
        return replace(
            self,
            state=RecordState.FINGERPRINTED,
            fingerprint=fingerprint,
            width=width,
            height=height,
        )

    def with_error(self, reason: str) -> "ImageRecord":
        self._require(RecordState.PENDING)
        return replace(self, state=RecordState.FAILED, error=reason)

    def as_grouped(self) -> "ImageRecord":
        self._require(RecordState.FINGERPRINTED)
        return replace(self, state=RecordState.GROUPED)

    def _require(self, state: RecordState) -> None:
        if self.state is not state:
            raise ValueError(
                f"record {self.record_id} ({self.path}) is {self.state.value}, expected {state.value}"
            )

import os
from dataclasses import dataclass
from typing import Optional


class ConfigError(ValueError):
    """Raised when scan settings are inconsistent."""


INDEX_KINDS = ("bktree", "linear")


def _default_workers() -> int:
    return os.cpu_count() or 4


@dataclass
class Settings:
    grid_size: int = 32
    hash_size: int = 8
    distance_threshold: int = 6
    worker_count: int = 0  # 0 picks os.cpu_count()
    queue_size: int = 64
    min_dimension: int = 16
    index_kind: str = "bktree"
    max_records: Optional[int] = None

    def __post_init__(self) -> None:
        if self.worker_count == 0:
            self.worker_count = _default_workers()
        self.validate()

    @property
    def bit_width(self) -> int:
        """Number of bits in one fingerprint."""
        return self.hash_size * self.hash_size

    def validate(self) -> None:
        if self.hash_size < 2:
            raise ConfigError(f"hash_size must be at least 2, got {self.hash_size}")
        if self.grid_size <= self.hash_size:
            raise ConfigError(
                f"grid_size ({self.grid_size}) must exceed hash_size ({self.hash_size})"
            )
        if not 0 <= self.distance_threshold < self.bit_width:
            raise ConfigError(
                f"distance_threshold must be in [0, {self.bit_width}), "
                f"got {self.distance_threshold}"
            )
        if self.worker_count < 1:
            raise ConfigError(f"worker_count must be positive, got {self.worker_count}")
        if self.queue_size < 1:
            raise ConfigError(f"queue_size must be positive, got {self.queue_size}")
        if self.min_dimension < 1:
            raise ConfigError(f"min_dimension must be positive, got {self.min_dimension}")
        if self.index_kind not in INDEX_KINDS:
            raise ConfigError(
                f"index_kind must be one of {', '.join(INDEX_KINDS)}, got {self.index_kind!r}"
            )
        if self.max_records is not None and self.max_records < 1:
            raise ConfigError(f"max_records must be positive, got {self.max_records}")

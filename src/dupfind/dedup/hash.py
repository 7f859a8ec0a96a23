"""Perceptual fingerprint computation for near-duplicate detection."""

from __future__ import annotations

from typing import Tuple

import imagehash
import numpy as np
from scipy.fft import dct

from ..config import Settings
from ..logging import get_logger
from .normalize import NormalizedImage, PathInput, normalize_file

logger = get_logger(__name__)


def compute_fingerprint(pixels: np.ndarray, hash_size: int = 8) -> imagehash.ImageHash:
    """
    Derive a hash_size x hash_size bit fingerprint from a canonical grid.

    The grid goes through a 2-D orthonormal DCT-II. The lowest-frequency
    block, without the DC row and column, is compared against its own
    median: bits above the median are set. Dropping the DC terms makes the
    result independent of overall brightness; the median comparison makes
    it independent of positive contrast scaling.

    Args:
        pixels: 2-D grayscale grid, at least hash_size + 1 on each side
        hash_size: Side of the retained coefficient block

    Returns:
        ImageHash holding hash_size ** 2 bits

    Raises:
        ValueError: If the grid has the wrong shape for hash_size
    """
    grid = np.asarray(pixels, dtype=np.float64)
    if grid.ndim != 2:
        raise ValueError(f"expected a 2-D grid, got shape {grid.shape}")
    if min(grid.shape) < hash_size + 1:
        raise ValueError(
            f"grid {grid.shape[0]}x{grid.shape[1]} too small for hash_size {hash_size}"
        )

    coefficients = dct(dct(grid, axis=0, norm="ortho"), axis=1, norm="ortho")
    low = coefficients[1:hash_size + 1, 1:hash_size + 1]
    median = np.median(low)
    return imagehash.ImageHash(low > median)


def fingerprint_file(
    path: PathInput,
    settings: Settings,
) -> Tuple[imagehash.ImageHash, NormalizedImage]:
    """
    Load an image from disk and fingerprint it with the given settings.

    Raises:
        DecodeError: If the file cannot be read or decoded
    """
    normalized = normalize_file(path, grid_size=settings.grid_size, min_dimension=settings.min_dimension)
    fingerprint = compute_fingerprint(normalized.pixels, hash_size=settings.hash_size)
    logger.debug(f"Fingerprinted {path}: {fingerprint}")
    return fingerprint, normalized

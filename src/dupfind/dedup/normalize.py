"""Decode image files into a small canonical grayscale grid."""

from __future__ import annotations

import io
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

import numpy as np
from PIL import Image, ImageOps

from ..logging import get_logger

logger = get_logger(__name__)

PathInput = Union[str, bytes, "os.PathLike[str]", "os.PathLike[bytes]"]

RESAMPLE_FILTER = Image.Resampling.LANCZOS


class DecodeError(Exception):
    """Raised when an image cannot be turned into a canonical grid."""

    def __init__(self, path: Optional[Path], reason: str):
        self.path = path
        self.reason = reason
        where = f"{path}: " if path is not None else ""
        super().__init__(f"{where}{reason}")


@dataclass(frozen=True)
class NormalizedImage:
    """Canonical grayscale grid plus the dimensions of the decoded source."""
    pixels: np.ndarray
    width: int
    height: int


def as_path(value: PathInput) -> Path:
    """Turn str, bytes or PathLike into a Path without requiring valid text."""
    return Path(os.fsdecode(value))


def normalize_image(
    data: bytes,
    grid_size: int = 32,
    min_dimension: int = 16,
    path: Optional[Path] = None,
) -> NormalizedImage:
    """
    Decode raw image bytes and reduce them to a grid_size x grid_size grid.

    Args:
        data: Encoded image bytes
        grid_size: Side of the square output grid
        min_dimension: Smallest accepted source width or height
        path: Source path, only used for error messages

    Returns:
        NormalizedImage with float64 intensities in [0, 255]

    Raises:
        DecodeError: If the data is empty, corrupt, unsupported or too small
    """
    if not data:
        raise DecodeError(path, "empty file")

    try:
        with Image.open(io.BytesIO(data)) as img:
            img.seek(0)
            img.load()
            # Orientation first so rotated-by-EXIF copies match their upright twins
            oriented = ImageOps.exif_transpose(img)
            width, height = oriented.size
            if width < min_dimension or height < min_dimension:
                raise DecodeError(
                    path,
                    f"image too small ({width}x{height} < {min_dimension}x{min_dimension})",
                )
            gray = _to_grayscale(oriented)
            canonical = gray.resize((grid_size, grid_size), RESAMPLE_FILTER)
    except DecodeError:
        raise
    except Exception as exc:
        raise DecodeError(path, f"cannot decode image: {exc}") from exc

    pixels = np.asarray(canonical, dtype=np.float64)
    return NormalizedImage(pixels=pixels, width=width, height=height)


def normalize_file(
    path: PathInput,
    grid_size: int = 32,
    min_dimension: int = 16,
) -> NormalizedImage:
    """Read a file from disk and normalize it, see normalize_image."""
    image_path = as_path(path)
    try:
        data = image_path.read_bytes()
    except OSError as exc:
        raise DecodeError(image_path, f"cannot read file: {exc.strerror or exc}") from exc
    except ValueError as exc:
        # Paths with embedded NUL bytes never reach the filesystem
        raise DecodeError(image_path, f"cannot read file: {exc}") from exc

    normalized = normalize_image(data, grid_size=grid_size, min_dimension=min_dimension, path=image_path)
    logger.debug(f"Normalized {image_path} ({normalized.width}x{normalized.height})")
    return normalized


def _to_grayscale(img: Image.Image) -> Image.Image:
    if img.mode in ("RGBA", "LA", "PA") or (img.mode == "P" and "transparency" in img.info):
        rgba = img.convert("RGBA")
        background = Image.new("RGBA", rgba.size, (255, 255, 255, 255))
        img = Image.alpha_composite(background, rgba)

    if img.mode in ("I", "I;16", "I;16B", "I;16L", "F"):
        # Wide integer/float modes clip badly in convert("L"); rescale to 8 bits
        array = np.asarray(img, dtype=np.float64)
        low, high = float(array.min()), float(array.max())
        scale = 255.0 / (high - low) if high > low else 0.0
        return Image.fromarray(((array - low) * scale).astype(np.uint8))

    if img.mode != "RGB" and img.mode != "L":
        img = img.convert("RGB")
    return img.convert("L")

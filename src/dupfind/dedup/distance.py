"""Distance metrics and conversions for fingerprints."""

import imagehash
import numpy as np


def hamming_distance(a: imagehash.ImageHash, b: imagehash.ImageHash) -> int:
    """
    Calculate Hamming distance between two fingerprints.

    Args:
        a: First fingerprint
        b: Second fingerprint

    Returns:
        Hamming distance (number of differing bits)

    Raises:
        TypeError: If the fingerprints have different widths
    """
    return a - b


def fingerprint_to_int(fingerprint: imagehash.ImageHash) -> int:
    """Pack a fingerprint's bits into an int, first bit most significant."""
    value = 0
    for bit in fingerprint.hash.flatten():
        value = (value << 1) | int(bit)
    return value


def fingerprint_from_int(value: int, hash_size: int = 8) -> imagehash.ImageHash:
    """Inverse of fingerprint_to_int for a hash_size x hash_size fingerprint."""
    width = hash_size * hash_size
    if value < 0 or value >> width:
        raise ValueError(f"{value} does not fit in {width} bits")
    bits = [(value >> (width - 1 - i)) & 1 for i in range(width)]
    return imagehash.ImageHash(np.array(bits, dtype=bool).reshape(hash_size, hash_size))


def int_distance(a: int, b: int) -> int:
    """Hamming distance between two packed fingerprints."""
    return (a ^ b).bit_count()

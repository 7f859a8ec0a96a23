"""dupfind – perceptual near-duplicate image finder."""

__version__ = "0.1.0"

"""Concurrent relocation of image sets."""

from .image_set import DEFAULT_CONCURRENCY, ImageSet
from .pool import Outcome, run_bounded
from .tar_image_set import TarImageSet

__all__ = ["DEFAULT_CONCURRENCY", "ImageSet", "Outcome", "TarImageSet", "run_bounded"]

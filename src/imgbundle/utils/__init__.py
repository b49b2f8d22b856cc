"""Utility functions for bundle relocation."""

from .digest import calculate_digest, ensure_digest, validate_digest, verify_digest

__all__ = ["calculate_digest", "ensure_digest", "validate_digest", "verify_digest"]

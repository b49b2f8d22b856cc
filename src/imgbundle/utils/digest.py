"""Digest calculation and validation utilities."""

import hashlib
import re
from typing import Union

from ..exceptions import IntegrityError

# algorithm:hex, with the hex length fixed per algorithm
DIGEST_PATTERN = re.compile(r"^(?P<algorithm>[a-z0-9]+):(?P<hex>[a-f0-9]+)$")

DIGEST_HEX_LENGTHS = {"sha256": 64, "sha512": 128}


def calculate_digest(data: Union[bytes, bytearray], algorithm: str = "sha256") -> str:
    """Calculate digest of data.

    Args:
        data: Data to hash
        algorithm: Hash algorithm (default: sha256)

    Returns:
        Digest string in format "algorithm:hex"

    Raises:
        ValueError: If algorithm is not supported
        ValueError: If data is not bytes-like
    """
    if not isinstance(data, (bytes, bytearray)):
        raise ValueError("Data must be bytes or bytearray")

    if algorithm not in DIGEST_HEX_LENGTHS:
        raise ValueError(f"Unsupported algorithm: {algorithm}")

    hasher = hashlib.new(algorithm)
    hasher.update(data)
    return f"{algorithm}:{hasher.hexdigest()}"


def validate_digest(digest: str) -> bool:
    """Validate digest format.

    Args:
        digest: Digest string to validate

    Returns:
        True if valid digest format
    """
    if not isinstance(digest, str):
        return False

    match = DIGEST_PATTERN.match(digest)
    if not match:
        return False

    expected_length = DIGEST_HEX_LENGTHS.get(match.group("algorithm"))
    return expected_length == len(match.group("hex"))


def split_digest(digest: str) -> tuple[str, str]:
    """Split a digest into (algorithm, hex)."""
    if not validate_digest(digest):
        raise ValueError(f"Invalid digest format: {digest}")
    algorithm, hex_part = digest.split(":", 1)
    return algorithm, hex_part


def verify_digest(data: Union[bytes, bytearray], expected_digest: str) -> bool:
    """Verify data matches expected digest.

    Args:
        data: Data to verify
        expected_digest: Expected digest string

    Returns:
        True if data matches digest

    Raises:
        ValueError: If digest format is invalid
    """
    algorithm, _ = split_digest(expected_digest)
    actual_digest = calculate_digest(data, algorithm)
    return actual_digest == expected_digest


def ensure_digest(data: Union[bytes, bytearray], expected_digest: str, what: str) -> None:
    """Raise IntegrityError unless data hashes to expected_digest."""
    if not verify_digest(data, expected_digest):
        algorithm, _ = split_digest(expected_digest)
        raise IntegrityError(
            f"Digest mismatch for {what}: expected {expected_digest}, "
            f"got {calculate_digest(data, algorithm)}"
        )

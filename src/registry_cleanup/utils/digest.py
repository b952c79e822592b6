"""Digest calculation and validation utilities."""

import hashlib
import re
from typing import Union

# Regex pattern for valid digest format (algorithm:hex)
DIGEST_PATTERN = re.compile(r"^[a-z0-9]+:[a-f0-9]+$")

SUPPORTED_ALGORITHMS = ("sha256", "sha512")


def calculate_digest(data: Union[bytes, bytearray], algorithm: str = "sha256") -> str:
    """Calculate the content digest of a manifest body.

    Args:
        data: Raw manifest bytes as served by the registry
        algorithm: Hash algorithm (default: sha256)

    Returns:
        Digest string in format "algorithm:hex"

    Raises:
        ValueError: If algorithm is not supported or data is not bytes-like
    """
    if not isinstance(data, (bytes, bytearray)):
        raise ValueError("Data must be bytes or bytearray")

    if algorithm not in SUPPORTED_ALGORITHMS:
        raise ValueError(f"Unsupported algorithm: {algorithm}")

    return f"{algorithm}:{hashlib.new(algorithm, data).hexdigest()}"


def validate_digest(digest: str) -> bool:
    """Check if a reference is a well-formed content digest."""
    if not isinstance(digest, str) or not DIGEST_PATTERN.match(digest):
        return False

    algorithm, _ = digest.split(":", 1)
    return algorithm in SUPPORTED_ALGORITHMS


def normalize_digest(value: str) -> str:
    """Prefix a bare hex id (as printed by ``docker image ls``) with sha256."""
    if ":" in value:
        return value
    return f"sha256:{value}"


def short_digest(digest: str, length: int = 12) -> str:
    """Shorten a digest for log output."""
    _, _, hex_part = digest.partition(":")
    return hex_part[:length] if hex_part else digest[:length]

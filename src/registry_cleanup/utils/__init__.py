"""Utility functions for registry cleanup."""

from .digest import calculate_digest, validate_digest
from .patterns import compile_patterns, expand_packages, matches_any

__all__ = [
    "calculate_digest",
    "validate_digest",
    "compile_patterns",
    "expand_packages",
    "matches_any",
]

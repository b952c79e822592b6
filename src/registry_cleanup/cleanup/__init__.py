"""Cleanup pipeline: relationship graph, filters and engine."""

from .engine import CleanupEngine
from .filters import ImageFilter
from .manifest import (
    ImageGraph,
    build_image_graph,
    find_ghost_digests,
    find_parent_images,
    is_ghost,
    is_orphaned,
    is_partial_multi_arch,
    is_referrer_image,
)

__all__ = [
    "CleanupEngine",
    "ImageFilter",
    "ImageGraph",
    "build_image_graph",
    "find_ghost_digests",
    "find_parent_images",
    "is_ghost",
    "is_orphaned",
    "is_partial_multi_arch",
    "is_referrer_image",
]

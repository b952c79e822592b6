"""Policy filters that turn discovered images into a deletion set."""

import logging
from dataclasses import replace
from datetime import datetime, timezone
from typing import Optional

from ..core.types import CleanupConfig, Image, Tag
from ..utils.patterns import compile_patterns, matches_any
from ..utils.validation import parse_older_than
from .manifest import (
    find_parent_images,
    is_ghost,
    is_orphaned,
    is_partial_multi_arch,
)

logger = logging.getLogger(__name__)

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def recency(image: Image) -> datetime:
    """Sort key: most recent update, else creation, else the epoch."""
    return _aware(image.updated_at or image.created_at) or EPOCH


class ImageFilter:
    """Select images for deletion according to a ``CleanupConfig``.

    ``select`` never mutates its inputs. It works on single-tag candidates
    so that tag patterns and retention apply per tag, then merges the
    survivors back into one image per (package, digest).
    """

    def __init__(self, config: CleanupConfig) -> None:
        self.config = config
        self.exclude_patterns = compile_patterns(config.exclude_tags)
        self.delete_patterns = compile_patterns(config.delete_tags)

    @property
    def has_selecting_filter(self) -> bool:
        """True if the policy names what to delete beyond retention counts."""
        config = self.config
        return bool(
            config.delete_tags
            or config.older_than
            or config.delete_ghost_images
            or config.delete_partial_images
            or config.delete_orphaned_images
        )

    def is_excluded(self, tag_name: str) -> bool:
        return matches_any(tag_name, self.exclude_patterns)

    def select(
        self,
        images: list[Image],
        all_images: list[Image],
        now: Optional[datetime] = None,
    ) -> list[Image]:
        """Compute the deletion set.

        Args:
            images: Images to consider
            all_images: Whole discovered set, used for graph predicates
            now: Reference time for older-than (defaults to current UTC time)

        Returns:
            Copies of the selected images whose ``tags`` hold only the tags
            to delete

        Raises:
            ConfigurationError: If older-than is malformed
        """
        cutoff = None
        if self.config.older_than:
            cutoff = parse_older_than(
                self.config.older_than, _aware(now) or datetime.now(timezone.utc)
            )

        candidates = self.split_candidates(images)
        candidates = self.remove_child_images(candidates, all_images)

        if self.exclude_patterns:
            candidates = self.filter_exclude_tags(candidates)
        if cutoff is not None:
            candidates = self.filter_older_than(candidates, cutoff)
        if self.delete_patterns:
            candidates = self.filter_delete_tags(candidates)
        if self.config.delete_ghost_images:
            candidates = [c for c in candidates if is_ghost(c, all_images)]
        if self.config.delete_partial_images:
            candidates = [c for c in candidates if is_partial_multi_arch(c)]
        if self.config.delete_orphaned_images:
            candidates = [c for c in candidates if is_orphaned(c, all_images)]

        marked = self.mark_tagged(candidates) + self.mark_untagged(candidates)
        selected = self.strip_excluded_tags(self.merge(marked))
        logger.debug(f"Selected {len(selected)} of {len(images)} images for deletion")
        return selected

    @staticmethod
    def split_candidates(images: list[Image]) -> list[Image]:
        """One candidate per tag; untagged images are their own candidate."""
        candidates = []
        for image in images:
            if image.tags:
                candidates.extend(replace(image, tags=[tag]) for tag in image.tags)
            else:
                candidates.append(image)
        return candidates

    @staticmethod
    def remove_child_images(
        candidates: list[Image], all_images: list[Image]
    ) -> list[Image]:
        """Children are only ever deleted through their parent index."""
        return [c for c in candidates if not find_parent_images(c, all_images)]

    def filter_exclude_tags(self, candidates: list[Image]) -> list[Image]:
        return [
            c for c in candidates if not any(self.is_excluded(t) for t in c.tag_names)
        ]

    @staticmethod
    def filter_older_than(candidates: list[Image], cutoff: datetime) -> list[Image]:
        # images without a creation time are never old enough
        return [
            c
            for c in candidates
            if c.created_at is not None and _aware(c.created_at) < cutoff
        ]

    def filter_delete_tags(self, candidates: list[Image]) -> list[Image]:
        return [
            c
            for c in candidates
            if any(matches_any(t, self.delete_patterns) for t in c.tag_names)
        ]

    @staticmethod
    def _beyond_newest(candidates: list[Image], keep: int) -> list[Image]:
        """Candidates whose manifest is not among the ``keep`` most recent.

        Ranking is per package and per distinct digest, so several tags of
        one manifest share a single slot.
        """
        by_package: dict[str, dict[str, list[Image]]] = {}
        for candidate in candidates:
            digests = by_package.setdefault(candidate.package.name, {})
            digests.setdefault(candidate.digest, []).append(candidate)

        marked = []
        for digests in by_package.values():
            groups = sorted(digests.values(), key=lambda g: recency(g[0]), reverse=True)
            for group in groups[keep:]:
                marked.extend(group)
        return marked

    def mark_tagged(self, candidates: list[Image]) -> list[Image]:
        tagged = [c for c in candidates if c.tags]
        if self.config.keep_n_tagged:
            return self._beyond_newest(tagged, self.config.keep_n_tagged)
        if self.has_selecting_filter:
            return tagged
        return []

    def mark_untagged(self, candidates: list[Image]) -> list[Image]:
        untagged = [c for c in candidates if not c.tags]
        if self.config.delete_untagged:
            return untagged
        if self.config.keep_n_untagged:
            return self._beyond_newest(untagged, self.config.keep_n_untagged)
        if self.has_selecting_filter:
            return untagged
        return []

    @staticmethod
    def merge(candidates: list[Image]) -> list[Image]:
        """Collapse candidates to one image per (package, digest), tags unioned."""
        merged: dict[tuple[str, str], Image] = {}
        for candidate in candidates:
            existing = merged.get(candidate.key)
            if existing is None:
                merged[candidate.key] = replace(candidate, tags=list(candidate.tags))
                continue
            names = set(existing.tag_names)
            existing.tags.extend(t for t in candidate.tags if t.name not in names)
        return list(merged.values())

    def strip_excluded_tags(self, images: list[Image]) -> list[Image]:
        """Drop protected tags; drop images left with no tag to delete."""
        result = []
        for image in images:
            if not image.tags:
                result.append(image)
                continue
            kept: list[Tag] = [t for t in image.tags if not self.is_excluded(t.name)]
            if kept:
                image.tags = kept
                result.append(image)
        return result

"""Cleanup orchestration: discover, filter, delete, validate."""

import logging
from typing import Optional

from ..core.types import (
    CleanupConfig,
    CleanupResult,
    Image,
    Manifest,
    Package,
    Referrer,
    RegistryFeature,
    Tag,
)
from ..exceptions import AuthenticationError, ConfigurationError, NotFoundError
from ..providers.base import RegistryProvider
from ..utils.patterns import expand_packages
from ..utils.validation import validate_cleanup_config
from .filters import ImageFilter
from .manifest import (
    ImageGraph,
    build_image_graph,
    find_ghost_digests,
    find_parent_images,
    is_partial_multi_arch,
)

logger = logging.getLogger(__name__)


class CleanupEngine:
    """Run one cleanup pass against a registry provider.

    Registry calls are awaited one at a time. Authentication failures abort
    the run; every other failure is logged, recorded in the result and the
    run moves on to the next item.
    """

    def __init__(self, provider: RegistryProvider, config: CleanupConfig) -> None:
        self.provider = provider
        self.config = config
        self.filter = ImageFilter(config)

    async def run(self, package_names: Optional[list[str]] = None) -> CleanupResult:
        """Clean up the given packages, or every package when none are given.

        Raises:
            ConfigurationError: On an invalid policy, before any registry call
            AuthenticationError: When the registry rejects the credentials;
                the work done so far is attached as ``partial_result``
        """
        validate_cleanup_config(self.config)
        result = CleanupResult()
        try:
            await self.cleanup(list(package_names or []), result)
        except AuthenticationError as e:
            e.partial_result = result
            raise
        return result

    async def cleanup(self, package_names: list[str], result: CleanupResult) -> None:
        logger.info("Starting discovery phase...")
        images = await self.discover_images(package_names, result)
        logger.info(f"Discovered {len(images)} images")

        graph = build_image_graph(images)

        logger.info("Starting filtering phase...")
        to_delete = self.filter.select(images, images)
        logger.info(f"Filtered to {len(to_delete)} images for deletion")

        if self.config.dry_run:
            self.report_dry_run(to_delete, result)
            deleted_keys = self.planned_removals(to_delete, graph)
        else:
            logger.info("Starting deletion phase...")
            deleted_keys = await self.delete_images(to_delete, graph, result)

        self.count_kept(images, to_delete, deleted_keys, result)

        if self.config.validate:
            logger.info("Starting validation phase...")
            survivors = [image for image in images if image.key not in deleted_keys]
            self.validate_images(survivors)

    # Discovery

    async def resolve_packages(self, package_names: list[str]) -> list[Package]:
        if not package_names:
            packages = await self.provider.list_packages()
            logger.info(f"Found {len(packages)} packages")
            return packages

        if not self.config.expand_packages:
            return [Package(id=name, name=name) for name in package_names]

        available = await self.provider.list_packages()
        if not available:
            raise ConfigurationError(
                "Package expansion requires a registry that can list packages"
            )
        by_name = {package.name: package for package in available}
        names = expand_packages(package_names, list(by_name), self.config.use_regex)
        logger.info(f"Expanded {package_names} to {len(names)} packages: {names}")
        return [by_name[name] for name in names]

    async def discover_images(
        self, package_names: list[str], result: CleanupResult
    ) -> list[Image]:
        images: list[Image] = []
        for package in await self.resolve_packages(package_names):
            logger.debug(f"Discovering images for package: {package.name}")
            images.extend(await self.discover_package(package, result))
        return images

    def _record(self, result: CleanupResult, message: str) -> None:
        logger.warning(message)
        result.errors.append(message)

    async def fetch_referrers(self, package_name: str, digest: str) -> list[Referrer]:
        if not self.provider.supports_feature(RegistryFeature.REFERRERS):
            return []
        try:
            return await self.provider.get_referrers(package_name, digest)
        except AuthenticationError:
            raise
        except Exception as e:
            logger.debug(f"Could not get referrers for {package_name}@{digest}: {e}")
            return []

    async def discover_package(
        self, package: Package, result: CleanupResult
    ) -> list[Image]:
        name = package.name
        try:
            tags = await self.provider.list_tags(name)
        except AuthenticationError:
            raise
        except Exception as e:
            self._record(result, f"Failed to list tags for {name}: {e}")
            tags = []
        logger.debug(f"Found {len(tags)} tags for {name}")

        tags_by_digest: dict[str, list[Tag]] = {}
        for tag in tags:
            tags_by_digest.setdefault(tag.digest, []).append(tag)

        images: dict[str, Image] = {}
        # tags whose manifest fetch failed; reattached if the listing has it
        unresolved: dict[str, list[Tag]] = {}
        for digest, digest_tags in tags_by_digest.items():
            try:
                manifest = await self.provider.get_manifest(name, digest)
            except AuthenticationError:
                raise
            except Exception as e:
                self._record(result, f"Failed to get manifest for {name}@{digest}: {e}")
                unresolved[digest] = digest_tags
                continue

            existing = images.get(manifest.digest)
            if existing is not None:
                known = set(existing.tag_names)
                existing.tags.extend(t for t in digest_tags if t.name not in known)
                continue
            referrers = await self.fetch_referrers(name, manifest.digest)
            images[manifest.digest] = make_image(package, manifest, digest_tags, referrers)

        try:
            manifests = await self.provider.get_package_manifests(name)
        except AuthenticationError:
            raise
        except Exception as e:
            self._record(result, f"Failed to list manifests for {name}: {e}")
            manifests = []

        for manifest in manifests:
            if manifest.digest in images:
                continue
            referrers = await self.fetch_referrers(name, manifest.digest)
            images[manifest.digest] = make_image(
                package, manifest, unresolved.get(manifest.digest, []), referrers
            )

        return list(images.values())

    # Deletion

    def report_dry_run(self, to_delete: list[Image], result: CleanupResult) -> None:
        logger.info("DRY RUN: Would delete the following images:")
        for image in to_delete:
            tags = ", ".join(image.tag_names) or "untagged"
            logger.info(f"  - {image.package.name}@{image.digest} (tags: {tags})")
            result.deleted_tags.extend(image.tag_names)
        result.deleted_count = len(to_delete)

    def planned_removals(
        self, to_delete: list[Image], graph: ImageGraph
    ) -> set[tuple[str, str]]:
        """Keys a real run would remove, assuming every selected index goes."""
        planned = {image.key for image in to_delete}
        children = {
            child.key
            for image in to_delete
            for child in image.child_images
            if self.is_removable_child(child, graph, planned)
        }
        return planned | children

    def has_excluded_tags_for_manifest(
        self, image: Image, graph: ImageGraph, deleted: set[str]
    ) -> bool:
        """True if a protected tag is still bound to the image's manifest.

        Checked against the discovered set, not the registry.
        """
        discovered = graph.get(*image.key)
        if discovered is None:
            return False
        return any(
            self.filter.is_excluded(name)
            for name in discovered.tag_names
            if name not in deleted
        )

    @staticmethod
    def remaining_tags(image: Image, graph: ImageGraph, deleted: set[str]) -> list[str]:
        discovered = graph.get(*image.key)
        if discovered is None:
            return []
        return [name for name in discovered.tag_names if name not in deleted]

    @staticmethod
    def is_removable_child(
        child: Image, graph: ImageGraph, parents: set[tuple[str, str]]
    ) -> bool:
        """A child goes with its index only if nothing else still needs it.

        The child must carry no tag of its own and every index declaring it
        must be in ``parents``.
        """
        if child.tags:
            return False
        return all(
            parent.key in parents for parent in find_parent_images(child, graph.images)
        )

    async def delete_images(
        self, to_delete: list[Image], graph: ImageGraph, result: CleanupResult
    ) -> set[tuple[str, str]]:
        """Delete each selected image; return the keys whose manifest is gone.

        Children are handled after every selected index, so a platform
        manifest shared with an index that survives this run is kept.
        """
        removed: set[tuple[str, str]] = set()
        clean: dict[tuple[str, str], bool] = {}
        for image in to_delete:
            errors_before = len(result.errors)
            if await self.delete_image(image, graph, result):
                removed.add(image.key)
            clean[image.key] = len(result.errors) == errors_before

        handled: set[tuple[str, str]] = set()
        for image in to_delete:
            if image.key not in removed:
                continue
            name = image.package.name
            for child in image.child_images:
                if child.key in handled:
                    continue
                handled.add(child.key)
                if not self.is_removable_child(child, graph, removed):
                    logger.info(
                        f"Keeping child manifest {child.digest} of {name}, "
                        "still tagged or referenced by a kept index"
                    )
                    continue
                if await self.delete_manifest(name, child.digest, result, child=True):
                    removed.add(child.key)
                else:
                    clean[image.key] = False

        result.deleted_count += sum(clean.values())
        return removed

    async def delete_image(
        self, image: Image, graph: ImageGraph, result: CleanupResult
    ) -> bool:
        """Delete one image's tags, then its manifest; True if the manifest is gone."""
        name = image.package.name
        all_tags = image.tag_names
        deleted: set[str] = set()

        if image.tags:
            protected = self.has_excluded_tags_for_manifest(image, graph, deleted)
            failed = False
            for tag in all_tags:
                try:
                    await self.provider.delete_tag(name, tag, all_tags)
                except AuthenticationError:
                    raise
                except NotFoundError:
                    logger.info(f"Tag {tag} already deleted from {name}")
                except Exception as e:
                    self._record(result, f"Failed to delete tag {tag}: {e}")
                    failed = True
                    continue
                else:
                    logger.info(f"Deleted tag {tag} from {name}")
                deleted.add(tag)
                result.deleted_tags.append(tag)

            protected = protected or self.has_excluded_tags_for_manifest(
                image, graph, deleted
            )
            remaining = self.remaining_tags(image, graph, deleted)
            if failed or protected or remaining:
                logger.info(
                    f"Keeping manifest {image.digest} of {name}"
                    + (f", still tagged {', '.join(remaining)}" if remaining else "")
                )
                return False

        return await self.delete_manifest(name, image.digest, result)

    async def delete_manifest(
        self, package_name: str, digest: str, result: CleanupResult, child: bool = False
    ) -> bool:
        kind = "child manifest" if child else "manifest"
        try:
            await self.provider.delete_manifest(package_name, digest)
        except AuthenticationError:
            raise
        except NotFoundError:
            logger.info(f"The {kind} {digest} is already gone from {package_name}")
            return True
        except Exception as e:
            self._record(result, f"Failed to delete {kind} {digest}: {e}")
            return False
        logger.info(f"Deleted {kind} {digest} from {package_name}")
        return True

    # Reporting and validation

    @staticmethod
    def count_kept(
        images: list[Image],
        to_delete: list[Image],
        removed: set[tuple[str, str]],
        result: CleanupResult,
    ) -> None:
        """Count every image that survives, and tags stripped from selections."""
        selected = {image.key: image for image in to_delete}

        for image in images:
            chosen = selected.get(image.key)
            if chosen is None:
                if image.key in removed:
                    continue
                result.kept_count += 1
                result.kept_tags.extend(image.tag_names)
                continue
            planned = set(chosen.tag_names)
            result.kept_tags.extend(t for t in image.tag_names if t not in planned)

    def validate_images(self, survivors: list[Image]) -> None:
        for image in survivors:
            if image.is_multi_arch and is_partial_multi_arch(image):
                missing = len(image.manifest.manifests) - len(image.child_images)
                logger.warning(
                    f"Multi-arch image {image.package.name}@{image.digest} "
                    f"is missing {missing} child images"
                )
        for package_name, digest in find_ghost_digests(survivors):
            logger.warning(
                f"Ghost image {package_name}@{digest} is referenced but does not exist"
            )


def make_image(
    package: Package,
    manifest: Manifest,
    tags: list[Tag],
    referrers: list[Referrer],
) -> Image:
    """Build an Image, falling back to tag timestamps when the manifest has none."""
    created = [t.created_at for t in tags if t.created_at]
    updated = [t.updated_at for t in tags if t.updated_at]
    return Image(
        package=package,
        manifest=manifest,
        tags=list(tags),
        referrers=list(referrers),
        created_at=manifest.created_at or (min(created) if created else None),
        updated_at=manifest.updated_at or (max(updated) if updated else None),
    )

"""Relationship graph over discovered images.

Every predicate here is scoped to one package: a digest shared by two
packages is two unrelated images.
"""

from dataclasses import dataclass, field
from typing import Iterable, Optional

from ..core.types import Image, Manifest

ImageKey = tuple[str, str]


def is_multi_arch_manifest(manifest: Manifest) -> bool:
    return bool(manifest.manifests)


def get_child_digests(manifest: Manifest) -> list[str]:
    return manifest.child_digests if is_multi_arch_manifest(manifest) else []


@dataclass
class ImageGraph:
    """Index and child adjacency built over one flat image list.

    ``images`` owns every Image; ``index`` and ``children`` only hold
    references into it.
    """

    images: list[Image]
    index: dict[ImageKey, Image] = field(default_factory=dict)
    children: dict[ImageKey, list[Image]] = field(default_factory=dict)

    def get(self, package_name: str, digest: str) -> Optional[Image]:
        return self.index.get((package_name, digest))


def build_image_graph(images: list[Image]) -> ImageGraph:
    """Resolve multi-arch child references in place.

    Sets ``is_multi_arch`` on every image (true iff its manifest declares
    child descriptors) and points ``child_images`` at the resolved children
    from the same package. Declared children that were not discovered are
    left unresolved, which is what makes an index partial.
    """
    graph = ImageGraph(images=images)
    for image in images:
        graph.index.setdefault(image.key, image)

    for image in images:
        declared = get_child_digests(image.manifest)
        image.is_multi_arch = bool(declared)
        resolved = []
        for digest in declared:
            child = graph.get(image.package.name, digest)
            if child is not None and child is not image:
                resolved.append(child)
        image.child_images = resolved
        if resolved:
            graph.children[image.key] = resolved

    return graph


def _same_package(image: Image, all_images: Iterable[Image]) -> list[Image]:
    return [other for other in all_images if other.package.name == image.package.name]


def find_parent_images(image: Image, all_images: Iterable[Image]) -> list[Image]:
    """Images whose index declares ``image`` as a child."""
    return [
        candidate
        for candidate in _same_package(image, all_images)
        if image.digest in get_child_digests(candidate.manifest)
    ]


def is_referrer_image(image: Image, all_images: Iterable[Image]) -> bool:
    """True if another image lists this digest among its referrers."""
    for candidate in _same_package(image, all_images):
        if candidate.digest == image.digest:
            continue
        if any(ref.digest == image.digest for ref in candidate.referrers):
            return True
    return False


def is_partial_multi_arch(image: Image) -> bool:
    """An index that declares more children than were resolved."""
    if not is_multi_arch_manifest(image.manifest):
        return False
    return len(get_child_digests(image.manifest)) > len(image.child_images)


def is_orphaned(image: Image, all_images: Iterable[Image]) -> bool:
    """Untagged, nobody's child, nobody's referrer."""
    all_images = list(all_images)
    if image.tags:
        return False
    if find_parent_images(image, all_images):
        return False
    return not is_referrer_image(image, all_images)


def is_ghost(image: Image, all_images: Iterable[Image]) -> bool:
    """True if ``image`` stands for a dangling child reference.

    Some index in ``all_images`` declares the digest as a child, yet no
    image with that digest was discovered. Tagged images and referrer
    targets are never ghosts.
    """
    all_images = list(all_images)
    if image.tags or is_referrer_image(image, all_images):
        return False
    if not find_parent_images(image, all_images):
        return False
    return not any(
        other.digest == image.digest
        for other in _same_package(image, all_images)
    )


def find_ghost_digests(all_images: Iterable[Image]) -> list[ImageKey]:
    """Every (package, digest) declared as a child but never discovered."""
    all_images = list(all_images)
    present = {image.key for image in all_images}
    ghosts: list[ImageKey] = []
    for image in all_images:
        for digest in get_child_digests(image.manifest):
            key = (image.package.name, digest)
            if key not in present and key not in ghosts:
                ghosts.append(key)
    return ghosts

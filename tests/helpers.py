"""Test helpers: image builders and an in-memory registry provider."""

import hashlib
from datetime import datetime, timedelta, timezone
from typing import Optional

from registry_cleanup.core.types import (
    OCI_INDEX_MEDIA_TYPE,
    OCI_MANIFEST_MEDIA_TYPE,
    Descriptor,
    Image,
    Manifest,
    Package,
    Referrer,
    RegistryFeature,
    Tag,
)
from registry_cleanup.exceptions import NotFoundError, RegistryError
from registry_cleanup.providers.base import RegistryProvider

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


def digest_of(label: str) -> str:
    """Deterministic digest for a readable label."""
    return f"sha256:{hashlib.sha256(label.encode()).hexdigest()}"


def days_ago(days: float) -> datetime:
    return NOW - timedelta(days=days)


def make_manifest(
    label: str,
    children: tuple[str, ...] = (),
    created_at: Optional[datetime] = None,
    updated_at: Optional[datetime] = None,
) -> Manifest:
    """Image manifest, or an index when ``children`` are given (as labels)."""
    if children:
        return Manifest(
            digest=digest_of(label),
            media_type=OCI_INDEX_MEDIA_TYPE,
            manifests=[
                Descriptor(digest=digest_of(child), media_type=OCI_MANIFEST_MEDIA_TYPE)
                for child in children
            ],
            created_at=created_at,
            updated_at=updated_at,
        )
    return Manifest(
        digest=digest_of(label),
        media_type=OCI_MANIFEST_MEDIA_TYPE,
        created_at=created_at,
        updated_at=updated_at,
    )


def make_tag(name: str, label: str, when: Optional[datetime] = None) -> Tag:
    return Tag(name=name, digest=digest_of(label), created_at=when, updated_at=when)


def make_image(
    label: str,
    tags: tuple[str, ...] = (),
    package: str = "app",
    children: tuple[str, ...] = (),
    referrers: tuple[str, ...] = (),
    created_at: Optional[datetime] = None,
    updated_at: Optional[datetime] = None,
) -> Image:
    """Build a discovered image; ``children`` and ``referrers`` are labels."""
    manifest = make_manifest(label, children, created_at, updated_at)
    return Image(
        package=Package(id=package, name=package),
        manifest=manifest,
        tags=[make_tag(name, label, updated_at or created_at) for name in tags],
        referrers=[
            Referrer(
                digest=digest_of(ref),
                artifact_type="application/vnd.dev.sigstore.bundle+json",
                media_type=OCI_MANIFEST_MEDIA_TYPE,
            )
            for ref in referrers
        ],
        created_at=created_at,
        updated_at=updated_at,
    )


def tags_by_digest(images: list[Image]) -> dict[str, list[str]]:
    """{digest: sorted tag names} for compact assertions."""
    return {image.digest: sorted(image.tag_names) for image in images}


class FakeRegistryProvider(RegistryProvider):
    """In-memory registry.

    With ``manifest_only`` the provider behaves like a plain OCI registry:
    deleting a tag deletes its manifest and is refused while other tags
    outside ``all_tags`` are bound to it.
    """

    registry_type = "fake"

    def __init__(
        self,
        features: tuple[RegistryFeature, ...] = (
            RegistryFeature.MULTI_ARCH,
            RegistryFeature.REFERRERS,
        ),
        manifest_only: bool = False,
        can_list_packages: bool = True,
    ):
        self.features = frozenset(features)
        self.manifest_only = manifest_only
        self.can_list_packages = can_list_packages
        self.manifests: dict[str, dict[str, Manifest]] = {}
        self.tags: dict[str, dict[str, str]] = {}
        self.tag_times: dict[tuple[str, str], datetime] = {}
        self.referrers: dict[tuple[str, str], list[Referrer]] = {}
        self.failures: dict[tuple, Exception] = {}
        self.calls: list[tuple] = []
        self.authenticated = False

    # setup

    def add_manifest(self, package: str, manifest: Manifest) -> Manifest:
        self.manifests.setdefault(package, {})[manifest.digest] = manifest
        self.tags.setdefault(package, {})
        return manifest

    def add_image(
        self,
        package: str,
        label: str,
        tags: tuple[str, ...] = (),
        children: tuple[str, ...] = (),
        created_at: Optional[datetime] = None,
        updated_at: Optional[datetime] = None,
    ) -> Manifest:
        manifest = self.add_manifest(
            package, make_manifest(label, children, created_at, updated_at)
        )
        for name in tags:
            self.tags[package][name] = manifest.digest
            if updated_at or created_at:
                self.tag_times[(package, name)] = updated_at or created_at
        return manifest

    def add_referrer(self, package: str, subject: str, label: str) -> None:
        self.add_manifest(package, make_manifest(label))
        self.referrers.setdefault((package, digest_of(subject)), []).append(
            Referrer(
                digest=digest_of(label),
                artifact_type="application/vnd.in-toto+json",
                media_type=OCI_MANIFEST_MEDIA_TYPE,
            )
        )

    def fail(self, method: str, *args, error: Optional[Exception] = None) -> None:
        """Make ``method(*args)`` raise ``error`` (RegistryError by default)."""
        self.failures[(method, *args)] = error or RegistryError(
            f"{method} failed", 500, self.registry_type
        )

    def _check(self, method: str, *args) -> None:
        self.calls.append((method, *args))
        error = self.failures.get((method, *args)) or self.failures.get((method,))
        if error is not None:
            raise error

    def destructive_calls(self) -> list[tuple]:
        return [c for c in self.calls if c[0] in ("delete_tag", "delete_manifest")]

    def _package(self, package: str) -> dict[str, Manifest]:
        if package not in self.manifests:
            raise NotFoundError(f"Package {package} not found", self.registry_type)
        return self.manifests[package]

    # RegistryProvider

    async def authenticate(self) -> None:
        self._check("authenticate")
        self.authenticated = True

    async def list_packages(self) -> list[Package]:
        self._check("list_packages")
        if not self.can_list_packages:
            return []
        return [Package(id=name, name=name) for name in self.manifests]

    async def list_tags(self, package_name: str) -> list[Tag]:
        self._check("list_tags", package_name)
        self._package(package_name)
        return [
            Tag(
                name=name,
                digest=digest,
                created_at=self.tag_times.get((package_name, name)),
                updated_at=self.tag_times.get((package_name, name)),
            )
            for name, digest in self.tags[package_name].items()
        ]

    async def get_package_manifests(self, package_name: str) -> list[Manifest]:
        self._check("get_package_manifests", package_name)
        return list(self._package(package_name).values())

    async def get_manifest(self, package_name: str, reference: str) -> Manifest:
        self._check("get_manifest", package_name, reference)
        manifests = self._package(package_name)
        digest = self.tags[package_name].get(reference, reference)
        if digest not in manifests:
            raise NotFoundError(f"Manifest {reference} not found", self.registry_type)
        return manifests[digest]

    async def delete_tag(
        self, package_name: str, tag: str, all_tags: list[str]
    ) -> None:
        self._check("delete_tag", package_name, tag)
        tags = self.tags.get(package_name, {})
        if tag not in tags:
            raise NotFoundError(f"Tag {tag} not found", self.registry_type)
        digest = tags[tag]

        if not self.manifest_only:
            del tags[tag]
            return

        outside = [
            name
            for name, bound in tags.items()
            if bound == digest and name != tag and name not in all_tags
        ]
        if outside:
            raise RegistryError(
                f"Manifest {digest} is also tagged {outside}", None, self.registry_type
            )
        self._remove_manifest(package_name, digest)

    def _remove_manifest(self, package_name: str, digest: str) -> None:
        del self.manifests[package_name][digest]
        tags = self.tags[package_name]
        for name in [n for n, bound in tags.items() if bound == digest]:
            del tags[name]

    async def delete_manifest(self, package_name: str, digest: str) -> None:
        self._check("delete_manifest", package_name, digest)
        if digest not in self.manifests.get(package_name, {}):
            raise NotFoundError(f"Manifest {digest} not found", self.registry_type)
        self._remove_manifest(package_name, digest)

    async def get_referrers(self, package_name: str, digest: str) -> list[Referrer]:
        self._check("get_referrers", package_name, digest)
        return list(self.referrers.get((package_name, digest), []))

    def supports_feature(self, feature: RegistryFeature) -> bool:
        return feature in self.features

    def get_known_registry_urls(self) -> list[str]:
        return []


"""GitHub Container Registry provider."""

import logging
from dataclasses import replace
from typing import Any, Optional

from ..core.transport import RetryingTransport
from ..core.types import (
    Manifest,
    Package,
    ProviderConfig,
    Referrer,
    RegistryFeature,
    RegistryType,
    Tag,
)
from ..exceptions import AuthenticationError, NotFoundError, RegistryError
from .base import BaseProvider, parse_timestamp, quote_package

logger = logging.getLogger(__name__)

GITHUB_API_URL = "https://api.github.com"
PER_PAGE = 100


class GHCRProvider(BaseProvider):
    """GitHub Packages REST API plus the OCI API on ghcr.io.

    Every package version is one manifest: its ``name`` is the digest and
    ``metadata.container.tags`` lists the tags bound to it. Deleting a
    version removes the manifest together with all of those tags.
    """

    registry_type = RegistryType.GHCR.value
    features = frozenset(RegistryFeature)
    known_registry_urls = ("ghcr.io",)

    def __init__(self, config: ProviderConfig, transport: RetryingTransport) -> None:
        if not config.registry_url:
            config = replace(config, registry_url="ghcr.io")
        super().__init__(config, transport)
        self.api_url = (config.api_url or GITHUB_API_URL).rstrip("/")
        self.owner = config.owner or ""

    def api_headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.config.token}",
            "Accept": "application/vnd.github+json",
        }

    def registry_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.config.token}"}

    def oci_name(self, package_name: str) -> str:
        """Repository path on ghcr.io (``owner/package``)."""
        if "/" in package_name or not self.owner:
            return package_name
        return f"{self.owner}/{package_name}"

    def versions_url(self, package_name: str) -> str:
        return (
            f"{self.api_url}/users/{self.owner}/packages/container/"
            f"{quote_package(package_name)}/versions"
        )

    async def authenticate(self) -> None:
        try:
            await self.transport.get(f"{self.api_url}/user", self.api_headers())
        except AuthenticationError as e:
            raise AuthenticationError(
                f"GitHub authentication failed: {e.message}", self.registry_type
            ) from e
        except RegistryError as e:
            raise AuthenticationError(
                f"Authentication failed: {e.message}", self.registry_type
            ) from e
        self.authenticated = True
        logger.debug("Successfully authenticated with GitHub")

    async def _paginate(self, url: str) -> list[dict[str, Any]]:
        items: list[dict[str, Any]] = []
        page = 1
        separator = "&" if "?" in url else "?"
        while True:
            response = await self.transport.get(
                f"{url}{separator}page={page}&per_page={PER_PAGE}", self.api_headers()
            )
            batch = response.data if isinstance(response.data, list) else []
            items.extend(batch)
            if len(batch) < PER_PAGE:
                return items
            page += 1

    async def list_packages(self) -> list[Package]:
        await self.ensure_authenticated()

        try:
            data = await self._paginate(
                f"{self.api_url}/users/{self.owner}/packages?package_type=container"
            )
        except NotFoundError:
            logger.warning(f"No packages found for owner {self.owner}")
            return []

        return [
            Package(
                id=str(item["id"]),
                name=item["name"],
                type=item.get("package_type", "container"),
                owner=(item.get("owner") or {}).get("login", self.owner),
                url=item.get("html_url"),
                created_at=parse_timestamp(item.get("created_at")),
                updated_at=parse_timestamp(item.get("updated_at")),
            )
            for item in data
        ]

    async def list_versions(self, package_name: str) -> list[dict[str, Any]]:
        """All package versions, newest first as returned by the API."""
        await self.ensure_authenticated()
        return await self._paginate(self.versions_url(package_name))

    @staticmethod
    def version_tags(version: dict[str, Any]) -> list[str]:
        metadata = version.get("metadata") or {}
        return list((metadata.get("container") or {}).get("tags") or [])

    async def list_tags(self, package_name: str) -> list[Tag]:
        tags = []
        for version in await self.list_versions(package_name):
            created_at = parse_timestamp(version.get("created_at"))
            updated_at = parse_timestamp(version.get("updated_at"))
            for name in self.version_tags(version):
                tags.append(
                    Tag(
                        name=name,
                        digest=version["name"],
                        created_at=created_at,
                        updated_at=updated_at,
                    )
                )
        return tags

    async def get_package_manifests(self, package_name: str) -> list[Manifest]:
        manifests = []
        for version in await self.list_versions(package_name):
            digest = version["name"]
            try:
                manifest = await self.get_manifest(package_name, digest)
            except RegistryError as e:
                logger.warning(
                    f"Failed to get manifest for {package_name}@{digest}: {e}"
                )
                continue
            manifests.append(
                replace(
                    manifest,
                    created_at=manifest.created_at
                    or parse_timestamp(version.get("created_at")),
                    updated_at=manifest.updated_at
                    or parse_timestamp(version.get("updated_at")),
                )
            )
        return manifests

    async def get_manifest(self, package_name: str, reference: str) -> Manifest:
        await self.ensure_authenticated()
        return await self.fetch_manifest(self.oci_name(package_name), reference)

    async def _find_version(
        self, package_name: str, digest: Optional[str] = None, tag: Optional[str] = None
    ) -> dict[str, Any]:
        for version in await self.list_versions(package_name):
            if digest is not None and version.get("name") == digest:
                return version
            if tag is not None and tag in self.version_tags(version):
                return version
        raise NotFoundError(
            f"No package version for {package_name}@{digest or tag}", self.registry_type
        )

    async def _delete_version(self, package_name: str, version: dict[str, Any]) -> None:
        await self.transport.delete(
            f"{self.versions_url(package_name)}/{version['id']}", self.api_headers()
        )

    async def delete_tag(
        self, package_name: str, tag: str, all_tags: list[str]
    ) -> None:
        version = await self._find_version(package_name, tag=tag)
        outside = sorted(set(self.version_tags(version)) - set(all_tags) - {tag})
        if outside:
            raise RegistryError(
                f"Cannot delete tag {tag}: package version {version['id']} is also "
                f"tagged {', '.join(outside)}",
                registry_type=self.registry_type,
            )
        await self._delete_version(package_name, version)
        logger.info(
            f"Deleted tag {tag} (version {version['id']}) from package {package_name}"
        )

    async def delete_manifest(self, package_name: str, digest: str) -> None:
        version = await self._find_version(package_name, digest=digest)
        await self._delete_version(package_name, version)
        logger.info(f"Deleted manifest {digest} from package {package_name}")

    async def get_referrers(self, package_name: str, digest: str) -> list[Referrer]:
        if not self.supports_feature(RegistryFeature.REFERRERS):
            return []
        await self.ensure_authenticated()
        return await self.fetch_referrers(self.oci_name(package_name), digest)

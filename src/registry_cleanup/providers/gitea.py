"""Gitea container registry provider."""

import logging
import re
from dataclasses import replace
from typing import Any

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

PAGE_LIMIT = 50


class GiteaProvider(BaseProvider):
    """Gitea package API at ``<url>/api/v1`` plus the OCI API at ``<url>/v2``.

    Package versions are named after tags, so a single tag can be removed
    through the package API without touching other tags of the manifest.
    """

    registry_type = RegistryType.GITEA.value
    features = frozenset({RegistryFeature.MULTI_ARCH, RegistryFeature.REFERRERS})

    def __init__(self, config: ProviderConfig, transport: RetryingTransport) -> None:
        super().__init__(config, transport)
        self.registry_url = re.sub(r"/v2/?$", "", self.registry_url)
        self.api_url = (config.api_url or f"{self.registry_url}/api/v1").rstrip("/")
        self.owner = config.owner or config.username or ""

    def api_headers(self) -> dict[str, str]:
        return {"Authorization": f"token {self.config.token}"}

    def registry_headers(self) -> dict[str, str]:
        username = self.config.username or self.owner
        return {"Authorization": self.basic_auth(username, self.config.token or "")}

    def oci_name(self, package_name: str) -> str:
        if "/" in package_name or not self.owner:
            return package_name
        return f"{self.owner}/{package_name}"

    @staticmethod
    def package_only(package_name: str) -> str:
        return package_name.rsplit("/", 1)[-1]

    def package_url(self, package_name: str) -> str:
        return (
            f"{self.api_url}/packages/{self.owner}/container/"
            f"{quote_package(self.package_only(package_name))}"
        )

    async def authenticate(self) -> None:
        logger.debug(f"Authenticating with Gitea API at {self.api_url}")
        try:
            await self.transport.get(f"{self.api_url}/user", self.api_headers())
        except AuthenticationError as e:
            raise AuthenticationError(
                f"Gitea authentication failed: {e.message}", self.registry_type
            ) from e
        except RegistryError as e:
            raise AuthenticationError(
                f"Authentication failed: {e.message}", self.registry_type
            ) from e
        self.authenticated = True
        logger.debug("Successfully authenticated with Gitea")

    async def _paginate(self, url: str) -> list[dict[str, Any]]:
        items: list[dict[str, Any]] = []
        page = 1
        separator = "&" if "?" in url else "?"
        while True:
            response = await self.transport.get(
                f"{url}{separator}page={page}&limit={PAGE_LIMIT}", self.api_headers()
            )
            batch = response.data if isinstance(response.data, list) else []
            items.extend(batch)
            if len(batch) < PAGE_LIMIT:
                return items
            page += 1

    async def list_packages(self) -> list[Package]:
        await self.ensure_authenticated()

        try:
            data = await self._paginate(
                f"{self.api_url}/packages/{self.owner}?type=container"
            )
        except NotFoundError:
            logger.warning(f"No packages found for owner {self.owner}")
            return []

        # the package API lists one entry per version; collapse to names
        packages: dict[str, Package] = {}
        for item in data:
            name = item["name"]
            if name in packages:
                continue
            packages[name] = Package(
                id=str(item.get("id", name)),
                name=name,
                type=item.get("type", "container"),
                owner=(item.get("owner") or {}).get("login", self.owner),
                url=item.get("html_url"),
                created_at=parse_timestamp(item.get("created_at")),
            )
        return list(packages.values())

    async def list_tags(self, package_name: str) -> list[Tag]:
        await self.ensure_authenticated()

        oci_name = self.oci_name(package_name)
        tags = []
        for name in await self.fetch_tag_names(oci_name):
            try:
                manifest = await self.fetch_manifest(oci_name, name)
            except RegistryError as e:
                logger.debug(f"Could not get manifest for tag {name}: {e}")
                continue
            tags.append(
                Tag(
                    name=name,
                    digest=manifest.digest,
                    created_at=manifest.created_at,
                    updated_at=manifest.updated_at,
                )
            )
        return tags

    async def _version_times(self, package_name: str) -> dict[str, Any]:
        try:
            versions = await self._paginate(self.package_url(package_name))
        except RegistryError as e:
            logger.debug(f"Package versions unavailable for {package_name}: {e}")
            return {}
        return {
            item.get("version"): parse_timestamp(item.get("created_at"))
            for item in versions
        }

    async def get_package_manifests(self, package_name: str) -> list[Manifest]:
        """Manifests of every tag, dated with the package version timestamps."""
        tags = await self.list_tags(package_name)
        created = await self._version_times(package_name)

        manifests: dict[str, Manifest] = {}
        for tag in tags:
            if tag.digest in manifests:
                continue
            try:
                manifest = await self.get_manifest(package_name, tag.digest)
            except RegistryError as e:
                logger.warning(
                    f"Failed to get manifest for {package_name}@{tag.digest}: {e}"
                )
                continue
            if manifest.created_at is None and created.get(tag.name):
                manifest = replace(manifest, created_at=created[tag.name])
            manifests[tag.digest] = manifest
        return list(manifests.values())

    async def get_manifest(self, package_name: str, reference: str) -> Manifest:
        await self.ensure_authenticated()
        return await self.fetch_manifest(self.oci_name(package_name), reference)

    async def delete_tag(
        self, package_name: str, tag: str, all_tags: list[str]
    ) -> None:
        await self.ensure_authenticated()

        try:
            await self.transport.delete(
                f"{self.package_url(package_name)}/{quote_package(tag)}",
                self.api_headers(),
            )
            logger.info(f"Deleted tag {tag} from package {package_name}")
            return
        except AuthenticationError:
            raise
        except RegistryError as e:
            logger.debug(
                f"Package API could not delete {tag} ({e}); "
                "falling back to manifest deletion"
            )

        oci_name = self.oci_name(package_name)
        try:
            manifest = await self.fetch_manifest(oci_name, tag)
        except NotFoundError:
            logger.info(f"Tag {tag} already deleted")
            return
        await self.ensure_manifest_delete_is_safe(
            package_name, tag, manifest.digest, all_tags
        )
        await self.delete_manifest(package_name, manifest.digest)
        logger.info(f"Deleted tag {tag} from package {package_name}")

    async def delete_manifest(self, package_name: str, digest: str) -> None:
        await self.ensure_authenticated()
        try:
            await self.delete_manifest_by_digest(self.oci_name(package_name), digest)
        except NotFoundError:
            logger.debug(f"Manifest {digest} already deleted")

    async def get_referrers(self, package_name: str, digest: str) -> list[Referrer]:
        if not self.supports_feature(RegistryFeature.REFERRERS):
            return []
        await self.ensure_authenticated()
        return await self.fetch_referrers(self.oci_name(package_name), digest)

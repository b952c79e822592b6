"""Provider for any OCI distribution compliant registry."""

import logging

from ..core.types import (
    Manifest,
    Package,
    Referrer,
    RegistryFeature,
    RegistryType,
    Tag,
)
from ..exceptions import AuthenticationError, RegistryError
from .base import BaseProvider

logger = logging.getLogger(__name__)


class GenericOCIProvider(BaseProvider):
    """Talks only the OCI Registry V2 API.

    The distribution API has no tag deletion, so a tag can only go away
    together with its manifest.
    """

    registry_type = RegistryType.OCI.value
    features = frozenset(RegistryFeature)

    def registry_headers(self) -> dict[str, str]:
        if self.config.username:
            password = self.config.password or self.config.token or ""
            return {"Authorization": self.basic_auth(self.config.username, password)}
        if self.config.token:
            return {"Authorization": f"Bearer {self.config.token}"}
        return {}

    async def authenticate(self) -> None:
        """Probe ``/v2/`` with the configured credentials."""
        try:
            await self.transport.get(f"{self.registry_api_url()}/", self.registry_headers())
        except AuthenticationError as e:
            raise AuthenticationError(
                f"OCI registry authentication failed: {e.message}", self.registry_type
            ) from e
        except RegistryError as e:
            raise AuthenticationError(
                f"Could not reach OCI registry at {self.registry_url}: {e.message}",
                self.registry_type,
            ) from e
        self.authenticated = True
        logger.debug(f"Authenticated with OCI registry {self.registry_url}")

    async def list_packages(self) -> list[Package]:
        logger.warning(
            "Generic OCI registries cannot enumerate packages; "
            "specify package names explicitly"
        )
        return []

    async def list_tags(self, package_name: str) -> list[Tag]:
        await self.ensure_authenticated()

        tags = []
        for name in await self.fetch_tag_names(package_name):
            try:
                manifest = await self.fetch_manifest(package_name, name)
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

    async def get_package_manifests(self, package_name: str) -> list[Manifest]:
        """Manifests reachable from tags; the V2 API cannot list untagged ones."""
        await self.ensure_authenticated()

        manifests: dict[str, Manifest] = {}
        for tag in await self.list_tags(package_name):
            if tag.digest in manifests:
                continue
            try:
                manifests[tag.digest] = await self.fetch_manifest(package_name, tag.digest)
            except RegistryError as e:
                logger.warning(
                    f"Failed to get manifest for {package_name}@{tag.digest}: {e}"
                )
        return list(manifests.values())

    async def get_manifest(self, package_name: str, reference: str) -> Manifest:
        await self.ensure_authenticated()
        return await self.fetch_manifest(package_name, reference)

    async def delete_tag(
        self, package_name: str, tag: str, all_tags: list[str]
    ) -> None:
        await self.ensure_authenticated()

        manifest = await self.fetch_manifest(package_name, tag)
        await self.ensure_manifest_delete_is_safe(
            package_name, tag, manifest.digest, all_tags
        )
        await self.delete_manifest_by_digest(package_name, manifest.digest)
        logger.info(f"Deleted tag {tag} from package {package_name}")

    async def delete_manifest(self, package_name: str, digest: str) -> None:
        await self.ensure_authenticated()
        await self.delete_manifest_by_digest(package_name, digest)

    async def get_referrers(self, package_name: str, digest: str) -> list[Referrer]:
        if not self.supports_feature(RegistryFeature.REFERRERS):
            return []
        await self.ensure_authenticated()
        return await self.fetch_referrers(package_name, digest)

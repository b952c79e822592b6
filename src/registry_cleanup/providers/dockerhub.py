"""Docker Hub provider backed by the Hub REST API."""

import logging
import time
from dataclasses import replace
from typing import Optional

from ..core.transport import RetryingTransport
from ..core.types import (
    DOCKER_MANIFEST_MEDIA_TYPE,
    Manifest,
    Package,
    ProviderConfig,
    Referrer,
    RegistryFeature,
    RegistryType,
    Tag,
)
from ..exceptions import AuthenticationError, NotFoundError, RegistryError
from .base import BaseProvider, parse_timestamp

logger = logging.getLogger(__name__)

HUB_API_URL = "https://hub.docker.com/v2"
PAGE_SIZE = 100
TOKEN_TTL = 600


class DockerHubProvider(BaseProvider):
    """Docker Hub through ``hub.docker.com/v2``.

    Hub deletes tags individually and drops a manifest together with its
    last tag; there is no manifest delete endpoint.
    """

    registry_type = RegistryType.DOCKER_HUB.value
    features = frozenset({RegistryFeature.MULTI_ARCH})
    known_registry_urls = ("docker.io", "registry-1.docker.io", "hub.docker.com")

    def __init__(self, config: ProviderConfig, transport: RetryingTransport) -> None:
        if not config.registry_url:
            config = replace(config, registry_url="registry-1.docker.io")
        super().__init__(config, transport)
        self.api_url = (config.api_url or HUB_API_URL).rstrip("/")
        self.username = config.username or config.owner or ""
        self._hub_token: Optional[str] = None
        self._hub_token_expiry = 0.0

    def registry_headers(self) -> dict[str, str]:
        return {}

    async def hub_token(self) -> str:
        """JWT from ``/users/login/``, cached for ten minutes."""
        if self._hub_token and time.monotonic() < self._hub_token_expiry:
            return self._hub_token

        password = self.config.password or self.config.token or ""
        response = await self.transport.post(
            f"{self.api_url}/users/login/",
            {"username": self.username, "password": password},
        )
        data = response.data if isinstance(response.data, dict) else {}
        token = data.get("token")
        if not token:
            raise AuthenticationError(
                "Failed to obtain Docker Hub API token", self.registry_type
            )
        self._hub_token = token
        self._hub_token_expiry = time.monotonic() + TOKEN_TTL
        return token

    async def api_headers(self) -> dict[str, str]:
        return {"Authorization": f"JWT {await self.hub_token()}"}

    async def authenticate(self) -> None:
        try:
            await self.hub_token()
        except AuthenticationError as e:
            raise AuthenticationError(
                "Docker Hub authentication failed: invalid credentials. "
                f"Check your username and password/token ({e.message})",
                self.registry_type,
            ) from e
        except RegistryError as e:
            raise AuthenticationError(
                f"Docker Hub authentication failed: {e.message}", self.registry_type
            ) from e
        self.authenticated = True
        logger.debug("Successfully authenticated with Docker Hub")

    def repository_parts(self, package_name: str) -> tuple[str, str]:
        if "/" in package_name:
            namespace, repo = package_name.split("/", 1)
            return namespace, repo
        return self.username, package_name

    async def _paginate(self, url: str) -> list[dict]:
        items: list[dict] = []
        page = 1
        while True:
            response = await self.transport.get(
                f"{url}?page={page}&page_size={PAGE_SIZE}", await self.api_headers()
            )
            data = response.data if isinstance(response.data, dict) else {}
            batch = data.get("results") or []
            items.extend(batch)
            if len(batch) < PAGE_SIZE or not data.get("next", True):
                return items
            page += 1

    async def list_packages(self) -> list[Package]:
        await self.ensure_authenticated()

        results = await self._paginate(f"{self.api_url}/repositories/{self.username}/")
        return [
            Package(
                id=f"{item.get('namespace', self.username)}/{item['name']}",
                name=item["name"],
                owner=item.get("namespace", self.username),
                updated_at=parse_timestamp(item.get("last_updated")),
            )
            for item in results
        ]

    async def list_tags(self, package_name: str) -> list[Tag]:
        await self.ensure_authenticated()

        namespace, repo = self.repository_parts(package_name)
        results = await self._paginate(
            f"{self.api_url}/repositories/{namespace}/{repo}/tags"
        )
        tags = []
        for item in results:
            digest = item.get("digest") or next(
                (image["digest"] for image in item.get("images") or [] if image.get("digest")),
                None,
            )
            if not digest:
                logger.debug(f"Tag {item.get('name')} has no digest, skipping")
                continue
            updated_at = parse_timestamp(item.get("last_updated"))
            tags.append(
                Tag(
                    name=item["name"],
                    digest=digest,
                    created_at=parse_timestamp(item.get("tag_last_pushed")) or updated_at,
                    updated_at=updated_at,
                )
            )
        return tags

    @staticmethod
    def manifest_from_tags(digest: str, tags: list[Tag]) -> Manifest:
        """Hub exposes no manifest bodies; build one from the tag listing."""
        created = [tag.created_at for tag in tags if tag.created_at]
        updated = [tag.updated_at for tag in tags if tag.updated_at]
        return Manifest(
            digest=digest,
            media_type=DOCKER_MANIFEST_MEDIA_TYPE,
            created_at=min(created) if created else None,
            updated_at=max(updated) if updated else None,
        )

    async def get_package_manifests(self, package_name: str) -> list[Manifest]:
        by_digest: dict[str, list[Tag]] = {}
        for tag in await self.list_tags(package_name):
            by_digest.setdefault(tag.digest, []).append(tag)
        return [
            self.manifest_from_tags(digest, tags) for digest, tags in by_digest.items()
        ]

    async def get_manifest(self, package_name: str, reference: str) -> Manifest:
        tags = await self.list_tags(package_name)
        matching = [t for t in tags if reference in (t.name, t.digest)]
        if not matching:
            raise NotFoundError(
                f"Tag or digest not found: {reference}", self.registry_type
            )
        digest = matching[0].digest
        return self.manifest_from_tags(digest, [t for t in tags if t.digest == digest])

    async def delete_tag(
        self, package_name: str, tag: str, all_tags: list[str]
    ) -> None:
        await self.ensure_authenticated()

        namespace, repo = self.repository_parts(package_name)
        await self.transport.delete(
            f"{self.api_url}/repositories/{namespace}/{repo}/tags/{tag}/",
            await self.api_headers(),
        )
        logger.info(f"Deleted tag {tag} from package {package_name}")

    async def delete_manifest(self, package_name: str, digest: str) -> None:
        remaining = [t.name for t in await self.list_tags(package_name) if t.digest == digest]
        if remaining:
            raise RegistryError(
                f"Docker Hub cannot delete manifest {digest} directly; "
                f"still tagged {', '.join(remaining)}",
                registry_type=self.registry_type,
            )
        logger.debug(f"Manifest {digest} has no tags left and is removed by Hub")

    async def get_referrers(self, package_name: str, digest: str) -> list[Referrer]:
        return []

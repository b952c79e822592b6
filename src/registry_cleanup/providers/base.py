"""Registry capability interface and shared OCI distribution helpers."""

import base64
import json
import logging
import re
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Optional
from urllib.parse import quote

from ..core.transport import RetryingTransport
from ..core.types import (
    INDEX_MEDIA_TYPES,
    OCI_MANIFEST_MEDIA_TYPE,
    Descriptor,
    Manifest,
    Package,
    Platform,
    ProviderConfig,
    Referrer,
    RegistryFeature,
    Response,
    Tag,
)
from ..exceptions import RegistryError
from ..utils.digest import calculate_digest, validate_digest

logger = logging.getLogger(__name__)

_FRACTION_PATTERN = re.compile(r"(\.\d+)")

MANIFEST_ACCEPT = ", ".join(
    [
        "application/vnd.oci.image.manifest.v1+json",
        "application/vnd.oci.image.index.v1+json",
        "application/vnd.docker.distribution.manifest.v2+json",
        "application/vnd.docker.distribution.manifest.list.v2+json",
    ]
)


class RegistryProvider(ABC):
    """Contract every backend adapter satisfies.

    The cleanup engine only talks to registries through this interface and
    never branches on the concrete backend, only on ``supports_feature``.
    """

    registry_type: str = ""

    @abstractmethod
    async def authenticate(self) -> None:
        """Establish credentials. Idempotent; raises AuthenticationError."""

    @abstractmethod
    async def list_packages(self) -> list[Package]:
        """List all packages, or [] with a warning if the backend cannot enumerate."""

    @abstractmethod
    async def get_package_manifests(self, package_name: str) -> list[Manifest]:
        """List every reachable manifest of a package, untagged ones included."""

    @abstractmethod
    async def list_tags(self, package_name: str) -> list[Tag]:
        """List current tag -> digest bindings."""

    @abstractmethod
    async def delete_tag(
        self, package_name: str, tag: str, all_tags: list[str]
    ) -> None:
        """Delete one tag.

        ``all_tags`` names every tag of the same manifest being deleted in
        this run. Backends that can only delete whole manifests must refuse
        unless every tag bound to the manifest is in ``all_tags``.
        """

    @abstractmethod
    async def get_manifest(self, package_name: str, reference: str) -> Manifest:
        """Fetch a manifest by tag or digest."""

    @abstractmethod
    async def delete_manifest(self, package_name: str, digest: str) -> None:
        """Delete a manifest (and, on most backends, every tag bound to it)."""

    @abstractmethod
    async def get_referrers(self, package_name: str, digest: str) -> list[Referrer]:
        """List referrers of a manifest; [] when REFERRERS is unsupported."""

    @abstractmethod
    def supports_feature(self, feature: RegistryFeature) -> bool:
        """Report an optional capability."""

    @abstractmethod
    def get_known_registry_urls(self) -> list[str]:
        """Hosts this backend serves, used for auto-detection."""


class BaseProvider(RegistryProvider):
    """Common OCI Registry V2 plumbing for HTTP-based providers."""

    features: frozenset = frozenset()
    known_registry_urls: tuple[str, ...] = ()

    def __init__(self, config: ProviderConfig, transport: RetryingTransport) -> None:
        self.config = config
        self.transport = transport
        self.registry_url = self.normalize_registry_url(config.registry_url or "")
        self.authenticated = False

    @staticmethod
    def normalize_registry_url(url: str) -> str:
        """Ensure a scheme and drop trailing slashes."""
        if not url:
            return ""
        if not url.startswith(("http://", "https://")):
            url = f"https://{url}"
        return url.rstrip("/")

    async def ensure_authenticated(self) -> None:
        if not self.authenticated:
            await self.authenticate()

    def supports_feature(self, feature: RegistryFeature) -> bool:
        return feature in self.features

    def get_known_registry_urls(self) -> list[str]:
        return list(self.known_registry_urls)

    # OCI distribution URLs

    def registry_api_url(self) -> str:
        return f"{self.registry_url}/v2"

    def manifest_url(self, package_name: str, reference: str) -> str:
        return f"{self.registry_api_url()}/{package_name}/manifests/{reference}"

    def tags_url(self, package_name: str) -> str:
        return f"{self.registry_api_url()}/{package_name}/tags/list"

    def referrers_url(self, package_name: str, digest: str) -> str:
        return f"{self.registry_api_url()}/{package_name}/referrers/{digest}"

    @staticmethod
    def basic_auth(username: str, password: str) -> str:
        encoded = base64.b64encode(f"{username}:{password}".encode()).decode()
        return f"Basic {encoded}"

    @abstractmethod
    def registry_headers(self) -> dict[str, str]:
        """Headers for OCI distribution API calls."""

    # Shared OCI operations

    async def fetch_tag_names(self, package_name: str) -> list[str]:
        response = await self.transport.get(
            self.tags_url(package_name), self.registry_headers()
        )
        data = response.data if isinstance(response.data, dict) else {}
        return list(data.get("tags") or [])

    async def fetch_manifest(self, package_name: str, reference: str) -> Manifest:
        """GET a manifest through the OCI API and convert it."""
        headers = {**self.registry_headers(), "Accept": MANIFEST_ACCEPT}
        response = await self.transport.get(
            self.manifest_url(package_name, reference), headers
        )
        return self.manifest_from_response(reference, response)

    async def fetch_referrers(self, package_name: str, digest: str) -> list[Referrer]:
        """Query the OCI referrers API; failures degrade to no referrers."""
        try:
            response = await self.transport.get(
                self.referrers_url(package_name, digest), self.registry_headers()
            )
        except RegistryError as e:
            logger.debug(
                f"Referrers API not available for {package_name}@{digest}: {e}"
            )
            return []

        data = response.data if isinstance(response.data, dict) else {}
        return [
            Referrer(
                digest=item["digest"],
                artifact_type=item.get("artifactType") or "unknown",
                media_type=item.get("mediaType", ""),
                size=item.get("size", 0),
                annotations=item.get("annotations") or {},
            )
            for item in data.get("manifests") or []
        ]

    async def delete_manifest_by_digest(self, package_name: str, digest: str) -> None:
        await self.transport.delete(
            self.manifest_url(package_name, digest), self.registry_headers()
        )
        logger.info(f"Deleted manifest {digest} from package {package_name}")

    async def tags_for_digest(self, package_name: str, digest: str) -> list[str]:
        tags = await self.list_tags(package_name)
        return [tag.name for tag in tags if tag.digest == digest]

    async def ensure_manifest_delete_is_safe(
        self, package_name: str, tag: str, digest: str, all_tags: list[str]
    ) -> None:
        """Refuse a manifest delete that would take unrequested tags with it.

        The bound-tag set is re-listed right before the check, so this is a
        best-effort guard: a tag pushed after the listing is not seen.
        """
        bound = await self.tags_for_digest(package_name, digest)
        outside = sorted(set(bound) - set(all_tags) - {tag})
        if outside:
            raise RegistryError(
                f"Cannot delete tag {tag}: manifest {digest} is also tagged "
                f"{', '.join(outside)}, and this registry can only delete whole "
                "manifests",
                registry_type=self.registry_type,
            )

    def manifest_from_response(self, reference: str, response: Response) -> Manifest:
        data = response.data
        if isinstance(data, str):
            data = json.loads(data)

        digest = response.headers.get("docker-content-digest")
        if not digest:
            if validate_digest(reference):
                digest = reference
            else:
                digest = calculate_digest(response.body)
        return convert_to_manifest(digest, parse_oci_manifest(data))


def parse_oci_manifest(data: Any) -> dict[str, Any]:
    """Validate the minimal shape of an OCI manifest or index."""
    if not isinstance(data, dict):
        raise RegistryError("Invalid manifest: not an object")
    if not data.get("mediaType"):
        if data.get("manifests"):
            data = {**data, "mediaType": INDEX_MEDIA_TYPES[0]}
        elif data.get("config"):
            data = {**data, "mediaType": OCI_MANIFEST_MEDIA_TYPE}
        else:
            raise RegistryError("Invalid manifest: missing mediaType")
    return data


def _descriptor(data: dict[str, Any]) -> Descriptor:
    platform = data.get("platform")
    return Descriptor(
        digest=data["digest"],
        media_type=data.get("mediaType", ""),
        size=data.get("size", 0),
        platform=Platform(
            architecture=platform.get("architecture", ""),
            os=platform.get("os", ""),
            variant=platform.get("variant"),
        )
        if platform
        else None,
        annotations=data.get("annotations") or {},
    )


def _created_annotation(annotations: dict[str, str]) -> Optional[datetime]:
    return parse_timestamp(annotations.get("org.opencontainers.image.created"))


def convert_to_manifest(
    digest: str,
    data: dict[str, Any],
    created_at: Optional[datetime] = None,
    updated_at: Optional[datetime] = None,
) -> Manifest:
    """Convert a parsed manifest or index into a ``Manifest``."""
    annotations = data.get("annotations") or {}
    created_at = created_at or _created_annotation(annotations)
    media_type = data["mediaType"]

    if media_type in INDEX_MEDIA_TYPES:
        return Manifest(
            digest=digest,
            media_type=media_type,
            size=len(json.dumps(data)),
            manifests=[_descriptor(m) for m in data.get("manifests") or []],
            annotations=annotations,
            created_at=created_at,
            updated_at=updated_at,
        )

    config = data.get("config")
    return Manifest(
        digest=digest,
        media_type=media_type,
        size=(config or {}).get("size") or len(json.dumps(data)),
        config=_descriptor(config) if config else None,
        layers=[_descriptor(layer) for layer in data.get("layers") or []],
        annotations=annotations,
        created_at=created_at,
        updated_at=updated_at,
    )


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp into an aware UTC datetime."""
    if not value:
        return None
    # registries emit nanosecond precision; datetime keeps microseconds
    value = _FRACTION_PATTERN.sub(lambda m: m.group(1)[:7], value.strip())
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def quote_package(name: str) -> str:
    """URL-encode a package name for vendor REST APIs (``a/b`` -> ``a%2Fb``)."""
    return quote(name, safe="")

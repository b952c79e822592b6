"""Data models shared by the transport, providers and cleanup engine."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional


class RegistryFeature(str, Enum):
    """Optional capabilities a provider may report."""

    MULTI_ARCH = "MULTI_ARCH"
    REFERRERS = "REFERRERS"
    ATTESTATION = "ATTESTATION"
    COSIGN = "COSIGN"


class RegistryType(str, Enum):
    """Supported registry backends."""

    GHCR = "ghcr"
    GITEA = "gitea"
    DOCKER_HUB = "docker-hub"
    DOCKER = "docker"
    OCI = "oci"
    AUTO = "auto"


OCI_INDEX_MEDIA_TYPE = "application/vnd.oci.image.index.v1+json"
OCI_MANIFEST_MEDIA_TYPE = "application/vnd.oci.image.manifest.v1+json"
DOCKER_MANIFEST_LIST_MEDIA_TYPE = (
    "application/vnd.docker.distribution.manifest.list.v2+json"
)
DOCKER_MANIFEST_MEDIA_TYPE = "application/vnd.docker.distribution.manifest.v2+json"

INDEX_MEDIA_TYPES = (OCI_INDEX_MEDIA_TYPE, DOCKER_MANIFEST_LIST_MEDIA_TYPE)


@dataclass(frozen=True)
class Platform:
    """Platform of a child manifest inside an index."""

    architecture: str
    os: str
    variant: Optional[str] = None


@dataclass(frozen=True)
class Descriptor:
    """Content descriptor (config, layer or child manifest)."""

    digest: str
    media_type: str
    size: int = 0
    platform: Optional[Platform] = None
    annotations: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class Package:
    """Logical repository/image name as reported by the backend."""

    id: str
    name: str
    type: str = "container"
    owner: Optional[str] = None
    repository: Optional[str] = None
    url: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass(frozen=True)
class Manifest:
    """Content-addressed manifest; ``digest`` is its identity."""

    digest: str
    media_type: str
    size: int = 0
    config: Optional[Descriptor] = None
    layers: list[Descriptor] = field(default_factory=list)
    manifests: list[Descriptor] = field(default_factory=list)
    annotations: dict[str, str] = field(default_factory=dict)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def child_digests(self) -> list[str]:
        return [child.digest for child in self.manifests]


@dataclass(frozen=True)
class Tag:
    """Mutable name -> digest binding."""

    name: str
    digest: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass(frozen=True)
class Referrer:
    """Artifact (signature, attestation, SBOM) whose subject is a manifest."""

    digest: str
    artifact_type: str
    media_type: str
    size: int = 0
    annotations: dict[str, str] = field(default_factory=dict)


@dataclass(eq=False)
class Image:
    """Working unit of the cleanup engine.

    One image exists per (package, manifest digest). ``child_images`` holds
    references into the same flat collection the graph was built from.
    """

    package: Package
    manifest: Manifest
    tags: list[Tag] = field(default_factory=list)
    is_multi_arch: bool = False
    child_images: list["Image"] = field(default_factory=list)
    referrers: list[Referrer] = field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def digest(self) -> str:
        return self.manifest.digest

    @property
    def key(self) -> tuple[str, str]:
        return (self.package.name, self.manifest.digest)

    @property
    def tag_names(self) -> list[str]:
        return [tag.name for tag in self.tags]

    def __repr__(self) -> str:
        return f"Image({self.package.name}@{self.digest}, tags={self.tag_names})"


@dataclass(frozen=True)
class CleanupConfig:
    """Declarative cleanup policy, immutable for the duration of a run."""

    dry_run: bool = False
    keep_n_tagged: Optional[int] = None
    keep_n_untagged: Optional[int] = None
    delete_untagged: bool = False
    delete_tags: tuple[str, ...] = ()
    exclude_tags: tuple[str, ...] = ()
    older_than: Optional[str] = None
    delete_ghost_images: bool = False
    delete_partial_images: bool = False
    delete_orphaned_images: bool = False
    validate: bool = False
    retry: int = 3
    throttle: int = 1000
    verbose: bool = False
    expand_packages: bool = False
    use_regex: bool = False


@dataclass(frozen=True)
class ProviderConfig:
    """Backend selection and credentials."""

    registry_type: RegistryType
    registry_url: Optional[str] = None
    token: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None
    owner: Optional[str] = None
    repository: Optional[str] = None
    packages: tuple[str, ...] = ()
    expand_packages: bool = False
    use_regex: bool = False
    api_url: Optional[str] = None


@dataclass(frozen=True)
class TransportConfig:
    """Retry, throttle and timeout settings for the HTTP transport.

    ``throttle`` is in milliseconds, ``timeout`` in seconds.
    """

    retry: int = 3
    throttle: int = 1000
    timeout: float = 30
    headers: dict[str, str] = field(default_factory=dict)
    verify_ssl: bool = True


@dataclass
class Response:
    """HTTP response returned by the transport."""

    status: int
    headers: dict[str, str] = field(default_factory=dict)
    data: Any = None
    body: bytes = b""


@dataclass
class CleanupResult:
    """Outcome accumulated over a cleanup run."""

    deleted_count: int = 0
    kept_count: int = 0
    deleted_tags: list[str] = field(default_factory=list)
    kept_tags: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def has_errors(self) -> bool:
        return bool(self.errors)

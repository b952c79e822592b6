"""Transport and data model."""

from .transport import RetryingTransport
from .types import (
    CleanupConfig,
    CleanupResult,
    Descriptor,
    Image,
    Manifest,
    Package,
    Platform,
    ProviderConfig,
    Referrer,
    RegistryFeature,
    RegistryType,
    Response,
    Tag,
    TransportConfig,
)

__all__ = [
    "RetryingTransport",
    "CleanupConfig",
    "CleanupResult",
    "Descriptor",
    "Image",
    "Manifest",
    "Package",
    "Platform",
    "ProviderConfig",
    "Referrer",
    "RegistryFeature",
    "RegistryType",
    "Response",
    "Tag",
    "TransportConfig",
]

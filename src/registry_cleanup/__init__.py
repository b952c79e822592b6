"""Registry Cleanup - policy-driven deletion of container images and tags."""

__version__ = "0.1.0"

from .cleanup import CleanupEngine, ImageFilter
from .core.transport import RetryingTransport
from .core.types import (
    CleanupConfig,
    CleanupResult,
    Image,
    ProviderConfig,
    RegistryFeature,
    RegistryType,
    TransportConfig,
)
from .exceptions import (
    AuthenticationError,
    ConfigurationError,
    NotFoundError,
    RegistryCleanupError,
    RegistryError,
)
from .providers import RegistryProvider, create_provider

__all__ = [
    "CleanupEngine",
    "ImageFilter",
    "RetryingTransport",
    "RegistryProvider",
    "create_provider",
    "CleanupConfig",
    "CleanupResult",
    "Image",
    "ProviderConfig",
    "RegistryFeature",
    "RegistryType",
    "TransportConfig",
    "RegistryCleanupError",
    "RegistryError",
    "AuthenticationError",
    "NotFoundError",
    "ConfigurationError",
]

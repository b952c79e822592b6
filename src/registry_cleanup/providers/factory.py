"""Provider selection by registry type or URL."""

import logging

from ..core.transport import RetryingTransport
from ..core.types import ProviderConfig, RegistryType
from ..exceptions import ConfigurationError
from ..utils.validation import match_registry_url
from .base import BaseProvider
from .docker_cli import DockerCLIProvider
from .dockerhub import DockerHubProvider
from .generic_oci import GenericOCIProvider
from .ghcr import GHCRProvider
from .gitea import GiteaProvider

logger = logging.getLogger(__name__)

PROVIDERS: dict[RegistryType, type[BaseProvider]] = {
    RegistryType.GHCR: GHCRProvider,
    RegistryType.GITEA: GiteaProvider,
    RegistryType.DOCKER_HUB: DockerHubProvider,
    RegistryType.DOCKER: DockerCLIProvider,
    RegistryType.OCI: GenericOCIProvider,
}


def detect_registry_type(registry_url: str) -> RegistryType:
    """Match a registry URL against each provider's known hosts.

    Falls back to the generic OCI provider when no host matches.
    """
    for registry_type, provider_cls in PROVIDERS.items():
        known = list(provider_cls.known_registry_urls)
        if known and match_registry_url(registry_url, known):
            logger.debug(f"Matched registry URL {registry_url} to {registry_type.value}")
            return registry_type

    logger.debug(f"No provider matched {registry_url}, using generic OCI")
    return RegistryType.OCI


def create_provider(config: ProviderConfig, transport: RetryingTransport) -> BaseProvider:
    """Instantiate the provider for ``config.registry_type``.

    Raises:
        ConfigurationError: When ``auto`` is requested without a registry URL
    """
    registry_type = config.registry_type
    if registry_type == RegistryType.AUTO:
        if not config.registry_url:
            raise ConfigurationError("registry-url is required when registry-type is auto")
        registry_type = detect_registry_type(config.registry_url)
        logger.info(
            f"Auto-detected registry type: {registry_type.value} "
            f"for URL: {config.registry_url}"
        )

    provider_cls = PROVIDERS.get(registry_type)
    if provider_cls is None:
        raise ConfigurationError(f"Unknown registry type: {registry_type}")
    return provider_cls(config, transport)

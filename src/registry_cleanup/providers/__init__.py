"""Registry backends behind one capability interface."""

from .base import BaseProvider, RegistryProvider
from .docker_cli import DockerCLIProvider
from .dockerhub import DockerHubProvider
from .factory import create_provider, detect_registry_type
from .generic_oci import GenericOCIProvider
from .ghcr import GHCRProvider
from .gitea import GiteaProvider

__all__ = [
    "RegistryProvider",
    "BaseProvider",
    "GHCRProvider",
    "GiteaProvider",
    "DockerHubProvider",
    "GenericOCIProvider",
    "DockerCLIProvider",
    "create_provider",
    "detect_registry_type",
]

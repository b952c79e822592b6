"""Configuration validation and registry URL helpers."""

import re
from datetime import datetime, timedelta, timezone
from typing import Optional

from ..core.types import CleanupConfig, ProviderConfig, RegistryType
from ..exceptions import ConfigurationError

OLDER_THAN_PATTERN = re.compile(r"^(\d+)([dwmy])$", re.IGNORECASE)

_UNIT_DAYS = {"d": 1, "w": 7, "m": 30, "y": 365}

_URL_REQUIRED = (RegistryType.GITEA, RegistryType.DOCKER, RegistryType.OCI, RegistryType.AUTO)
_TOKEN_REQUIRED = (RegistryType.GHCR, RegistryType.GITEA)


def validate_registry_type(value: str) -> RegistryType:
    """Parse a registry type name."""
    try:
        return RegistryType(value.strip().lower())
    except ValueError:
        valid = ", ".join(t.value for t in RegistryType)
        raise ConfigurationError(
            f"Invalid registry-type: {value}. Must be one of: {valid}"
        ) from None


def parse_older_than_duration(older_than: str) -> timedelta:
    """Parse ``<number><unit>`` where unit is d, w, m (30 days) or y (365 days)."""
    match = OLDER_THAN_PATTERN.match(older_than.strip())
    if not match:
        raise ConfigurationError(
            'older-than must be in format: <number><unit> (e.g., "30d", "2w", "1m", "1y")'
        )
    value, unit = int(match.group(1)), match.group(2).lower()
    return timedelta(days=value * _UNIT_DAYS[unit])


def parse_older_than(older_than: str, now: Optional[datetime] = None) -> datetime:
    """Return the cutoff instant for an older-than duration."""
    now = now or datetime.now(timezone.utc)
    return now - parse_older_than_duration(older_than)


def validate_cleanup_config(config: CleanupConfig) -> None:
    """Reject invalid cleanup policies before any network call.

    Raises:
        ConfigurationError: On negative counts or a malformed older-than
    """
    for name, value in (
        ("keep-n-tagged", config.keep_n_tagged),
        ("keep-n-untagged", config.keep_n_untagged),
        ("retry", config.retry),
        ("throttle", config.throttle),
    ):
        if value is not None and value < 0:
            raise ConfigurationError(f"{name} must be a non-negative number")

    if config.older_than:
        parse_older_than_duration(config.older_than)


def validate_provider_config(config: ProviderConfig) -> None:
    """Check that the backend selection carries what it needs.

    Raises:
        ConfigurationError: On missing URL, credentials or package selection
    """
    registry_type = config.registry_type

    if registry_type in _URL_REQUIRED and not config.registry_url:
        raise ConfigurationError(
            f"registry-url is required when registry-type is {registry_type.value}"
        )

    if registry_type in (RegistryType.DOCKER, RegistryType.DOCKER_HUB, RegistryType.OCI):
        if not config.token and not config.username:
            raise ConfigurationError(
                "Authentication required: provide either token or "
                f"username/password for {registry_type.value}"
            )
        if config.username and not (config.password or config.token):
            raise ConfigurationError(
                "registry-password is required when registry-username is provided"
            )
    elif registry_type in _TOKEN_REQUIRED and not config.token:
        raise ConfigurationError(f"token is required for registry-type: {registry_type.value}")

    if not config.packages and not config.owner:
        raise ConfigurationError("Either packages or owner must be provided")


def normalize_registry_url(url: str) -> str:
    """Strip protocol and trailing slashes."""
    return re.sub(r"^https?://", "", url.strip()).rstrip("/")


def extract_hostname(url: str) -> str:
    return normalize_registry_url(url).split("/", 1)[0].lower()


def match_registry_url(url: str, known_urls: list[str]) -> bool:
    """Match a URL host against known hosts, exactly or as a subdomain."""
    hostname = extract_hostname(url)
    for known_url in known_urls:
        known = extract_hostname(known_url)
        if hostname == known or hostname.endswith(f".{known}"):
            return True
    return False

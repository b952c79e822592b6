"""Input loading from command-line flags and ``INPUT_*`` environment variables."""

import argparse
import os
from dataclasses import dataclass
from typing import Mapping, Optional, Sequence

from .core.types import CleanupConfig, ProviderConfig
from .exceptions import ConfigurationError
from .utils.validation import (
    validate_cleanup_config,
    validate_provider_config,
    validate_registry_type,
)

OWNER_FALLBACK_VARS = ("GITEA_ACTOR", "GITHUB_ACTOR", "GITHUB_REPOSITORY_OWNER")
DEBUG_VARS = ("ACTIONS_STEP_DEBUG", "ACTIONS_RUNNER_DEBUG", "RUNNER_DEBUG")


@dataclass(frozen=True)
class ParsedInputs:
    provider_config: ProviderConfig
    cleanup_config: CleanupConfig
    packages: list[str]
    skip_certificate_check: bool = False
    verbose: bool = False
    debug: bool = False
    timeout: float = 30


def parse_bool(value: Optional[str]) -> bool:
    return (value or "").strip().lower() in ("true", "1", "yes")


def split_list(value: Optional[str]) -> list[str]:
    """Split a comma separated list, dropping blanks."""
    return [item.strip() for item in (value or "").split(",") if item.strip()]


def _env_input(environ: Mapping[str, str], name: str) -> Optional[str]:
    # runners keep the hyphen in INPUT_<NAME>; shells cannot export that
    for key in (f"INPUT_{name.upper()}", f"INPUT_{name.upper().replace('-', '_')}"):
        value = environ.get(key)
        if value:
            return value
    return None


def _optional_int(value: str) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid integer: {value!r}") from None


def build_parser(environ: Mapping[str, str]) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="registry-cleanup",
        description="Delete container images from a registry according to a policy.",
    )

    def add(name: str, help_text: str, **kwargs) -> None:
        parser.add_argument(
            f"--{name}", default=_env_input(environ, name), help=help_text, **kwargs
        )

    def flag(name: str, help_text: str) -> None:
        parser.add_argument(
            f"--{name}",
            action="store_true",
            default=parse_bool(_env_input(environ, name)),
            help=help_text,
        )

    add("registry-type", "ghcr, gitea, docker-hub, docker, oci or auto")
    add("registry-url", "Registry URL")
    add("registry-username", "Registry username")
    add("registry-password", "Registry password")
    add("token", "API token")
    add("owner", "Package owner")
    add("repository", "Repository name")
    add("package", "Single package name")
    add("packages", "Comma separated package names or patterns")
    flag("expand-packages", "Expand wildcards in package names")
    flag("use-regex", "Treat package patterns as regular expressions")
    flag("dry-run", "Report what would be deleted without deleting")
    add("keep-n-tagged", "Keep the N most recent tagged images", type=_optional_int)
    add("keep-n-untagged", "Keep the N most recent untagged images", type=_optional_int)
    flag("delete-untagged", "Delete all untagged images")
    add("delete-tags", "Comma separated tag patterns to delete")
    add("exclude-tags", "Comma separated tag patterns to protect")
    add("older-than", "Only delete images older than e.g. 30d, 2w, 1m, 1y")
    flag("delete-ghost-images", "Delete ghost images")
    flag("delete-partial-images", "Delete partial multi-arch images")
    flag("delete-orphaned-images", "Delete orphaned images")
    flag("validate", "Validate multi-arch images after cleanup")
    flag("skip-certificate-check", "Disable TLS certificate verification")
    flag("verbose", "Enable verbose logging")

    parser.add_argument(
        "--retry",
        type=int,
        default=_env_input(environ, "retry") or "3",
        help="Retries per request (default: 3)",
    )
    parser.add_argument(
        "--throttle",
        type=int,
        default=_env_input(environ, "throttle") or "1000",
        help="Base backoff delay in milliseconds (default: 1000)",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=_env_input(environ, "timeout") or "30",
        help="Request timeout in seconds (default: 30)",
    )
    return parser


def load_inputs(
    argv: Optional[Sequence[str]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> ParsedInputs:
    """Read and validate all inputs.

    Raises:
        ConfigurationError: On missing or invalid inputs
    """
    environ = os.environ if environ is None else environ
    args = build_parser(environ).parse_args(argv)

    if not args.registry_type:
        raise ConfigurationError("registry-type is required")
    registry_type = validate_registry_type(args.registry_type)

    owner = args.owner or next(
        (environ[var] for var in OWNER_FALLBACK_VARS if environ.get(var)), None
    )
    debug = any(parse_bool(environ.get(var)) for var in DEBUG_VARS)
    verbose = args.verbose or debug

    packages = []
    if args.package:
        packages.append(args.package.strip())
    packages.extend(split_list(args.packages))

    provider_config = ProviderConfig(
        registry_type=registry_type,
        registry_url=args.registry_url,
        token=args.token,
        username=args.registry_username,
        password=args.registry_password,
        owner=owner,
        repository=args.repository,
        packages=tuple(packages),
        expand_packages=args.expand_packages,
        use_regex=args.use_regex,
    )
    cleanup_config = CleanupConfig(
        dry_run=args.dry_run,
        keep_n_tagged=args.keep_n_tagged,
        keep_n_untagged=args.keep_n_untagged,
        delete_untagged=args.delete_untagged,
        delete_tags=tuple(split_list(args.delete_tags)),
        exclude_tags=tuple(split_list(args.exclude_tags)),
        older_than=args.older_than or None,
        delete_ghost_images=args.delete_ghost_images,
        delete_partial_images=args.delete_partial_images,
        delete_orphaned_images=args.delete_orphaned_images,
        validate=args.validate,
        retry=args.retry,
        throttle=args.throttle,
        verbose=verbose,
        expand_packages=args.expand_packages,
        use_regex=args.use_regex,
    )

    validate_provider_config(provider_config)
    validate_cleanup_config(cleanup_config)

    return ParsedInputs(
        provider_config=provider_config,
        cleanup_config=cleanup_config,
        packages=packages,
        skip_certificate_check=args.skip_certificate_check,
        verbose=verbose,
        debug=debug,
        timeout=args.timeout,
    )

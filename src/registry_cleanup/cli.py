"""Command-line entry point."""

import asyncio
import logging
import os
import sys
from typing import Optional, Sequence

from .cleanup import CleanupEngine
from .config import ParsedInputs, load_inputs
from .core.transport import RetryingTransport
from .core.types import CleanupResult, TransportConfig
from .exceptions import RegistryCleanupError
from .providers import create_provider

logger = logging.getLogger("registry_cleanup")

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(name)s - %(message)s"


def setup_logging(verbose: bool = False, debug: bool = False) -> None:
    """Configure root logging once; later calls only adjust levels."""
    if not logging.getLogger().handlers:
        logging.basicConfig(
            level=logging.DEBUG if debug else logging.INFO, format=LOG_FORMAT
        )
    if verbose or debug:
        logger.setLevel(logging.DEBUG)


def write_outputs(result: CleanupResult, path: Optional[str]) -> None:
    """Append the run summary to a ``$GITHUB_OUTPUT`` style file."""
    if not path:
        return
    with open(path, "a", encoding="utf-8") as f:
        f.write(f"deleted-count={result.deleted_count}\n")
        f.write(f"kept-count={result.kept_count}\n")
        f.write(f"deleted-tags={','.join(result.deleted_tags)}\n")
        f.write(f"kept-tags={','.join(result.kept_tags)}\n")


async def run(inputs: ParsedInputs) -> CleanupResult:
    transport_config = TransportConfig(
        retry=inputs.cleanup_config.retry,
        throttle=inputs.cleanup_config.throttle,
        timeout=inputs.timeout,
        verify_ssl=not inputs.skip_certificate_check,
    )
    async with RetryingTransport(transport_config) as transport:
        provider = create_provider(inputs.provider_config, transport)
        await provider.authenticate()
        engine = CleanupEngine(provider, inputs.cleanup_config)
        return await engine.run(inputs.packages)


def main(argv: Optional[Sequence[str]] = None) -> int:
    try:
        inputs = load_inputs(argv)
    except RegistryCleanupError as e:
        setup_logging()
        logger.error(str(e))
        return 1

    setup_logging(inputs.verbose, inputs.debug)

    if inputs.skip_certificate_check:
        logger.warning(
            "TLS certificate verification is disabled. Only use this with "
            "trusted endpoints."
        )

    try:
        result = asyncio.run(run(inputs))
    except RegistryCleanupError as e:
        logger.error(str(e))
        if e.partial_result is not None:
            write_outputs(e.partial_result, os.environ.get("GITHUB_OUTPUT"))
        return 1

    write_outputs(result, os.environ.get("GITHUB_OUTPUT"))

    mode = " (dry run)" if inputs.cleanup_config.dry_run else ""
    logger.info(
        f"Cleanup completed{mode}: deleted {result.deleted_count} images, "
        f"kept {result.kept_count} images"
    )
    if result.has_errors:
        logger.warning(f"Encountered {len(result.errors)} errors during cleanup")
        for error in result.errors:
            logger.warning(f"  - {error}")
        if not inputs.cleanup_config.dry_run:
            logger.error(f"Cleanup completed with {len(result.errors)} errors")
            return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())

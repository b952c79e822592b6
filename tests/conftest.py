"""Test configuration and fixtures."""

import pytest
import pytest_asyncio
from aiohttp.test_utils import TestServer

from registry_cleanup.core.transport import RetryingTransport
from registry_cleanup.core.types import CleanupConfig, TransportConfig
from tests.helpers import NOW, FakeRegistryProvider


@pytest_asyncio.fixture
async def serve():
    """Start aiohttp applications on local test servers."""
    servers = []

    async def start(app):
        server = TestServer(app)
        await server.start_server()
        servers.append(server)
        return server

    yield start

    for server in servers:
        await server.close()


@pytest_asyncio.fixture
async def transport():
    """Transport with fast retries; backoff delays are recorded, not slept."""
    async with RetryingTransport(TransportConfig(retry=2, throttle=10, timeout=5)) as t:
        t.delays = []

        async def backoff(attempt):
            t.delays.append(t.config.throttle * attempt)

        t._backoff = backoff
        yield t


@pytest.fixture
def now():
    """Fixed reference time for age based filters."""
    return NOW


@pytest.fixture
def provider():
    """Empty in-memory registry supporting multi-arch and referrers."""
    return FakeRegistryProvider()


@pytest.fixture
def oci_provider():
    """In-memory registry that can only delete whole manifests."""
    return FakeRegistryProvider(manifest_only=True)


@pytest.fixture
def config():
    """Default (no-op) cleanup policy."""
    return CleanupConfig()


# Pytest configuration
def pytest_configure(config):
    """Configure pytest markers and settings."""
    config.addinivalue_line(
        "markers", "integration: mark test as integration test against a test server"
    )
    config.addinivalue_line("markers", "unit: mark test as unit test (default)")

"""Test configuration and fixtures."""

import pytest
import pytest_asyncio
from aiohttp.test_utils import TestServer

from imgbundle import RegistryClient, RegistryConfig
from tests.helpers import FakeRegistry, create_registry_app, make_bundle, make_image


@pytest.fixture
def registry():
    """Empty in-memory registry."""
    return FakeRegistry()


@pytest.fixture
def bundle_setup(registry):
    """A bundle at registry.io/repo-b whose lock lists one image in registry.io/repo-a."""
    image = make_image(b"app layer")
    image_url = registry.push("registry.io/repo-a", image, tag="1.0")
    bundle = make_bundle([image_url])
    bundle_url = registry.push("registry.io/repo-b", bundle, tag="v1")
    return {
        "registry": registry,
        "image": image,
        "image_url": image_url,
        "bundle": bundle,
        "bundle_url": bundle_url,
    }


@pytest_asyncio.fixture
async def registry_server():
    """In-process Distribution v2 registry."""
    server = TestServer(create_registry_app())
    await server.start_server()
    yield server
    await server.close()


@pytest.fixture
def registry_host(registry_server):
    return f"127.0.0.1:{registry_server.port}"


@pytest_asyncio.fixture
async def http_client(registry_host):
    """RegistryClient talking plain HTTP to the in-process registry."""
    config = RegistryConfig(timeout=10, insecure_registries=(registry_host,))
    async with RegistryClient(config) as client:
        yield client

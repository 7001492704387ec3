"""Shared pytest fixtures for streamstore tests.

A single FastAPI app is created per test session to avoid duplicate
Prometheus metric registration errors (the instrumentator registers
collectors in the global prometheus_client registry).

Every test gets a fresh, connected MemoryTransport. For gateway tests it is
installed on ``app.state`` by hand because the lifespan context doesn't run
under httpx's ASGITransport.
"""

import pytest
from httpx import ASGITransport, AsyncClient

from streamstore.config import (
    ObjectsConfig,
    ServerConfig,
    StreamStoreConfig,
    TransportConfig,
)
from streamstore.objects.client import ObjectStoreClient
from streamstore.server import create_app
from streamstore.transport.memory import MemoryTransport

# Small chunks so modest payloads span many chunk messages.
TEST_CHUNK_SIZE = 64


@pytest.fixture(scope="session")
def config() -> StreamStoreConfig:
    """Create a test config using the in-memory transport."""
    return StreamStoreConfig(
        server=ServerConfig(host="127.0.0.1", port=9010),
        transport=TransportConfig(engine="memory"),
        objects=ObjectsConfig(chunk_size=TEST_CHUNK_SIZE, read_buffer_chunks=4),
    )


@pytest.fixture(scope="session")
def app(config: StreamStoreConfig):
    """Create a single test FastAPI application for the whole session."""
    return create_app(config)


@pytest.fixture
async def transport() -> MemoryTransport:
    """A connected in-memory transport, closed after the test."""
    t = MemoryTransport()
    await t.connect()
    yield t
    await t.close()


@pytest.fixture
def store(transport: MemoryTransport) -> ObjectStoreClient:
    """An object store client over the test transport."""
    return ObjectStoreClient(
        transport,
        chunk_size=TEST_CHUNK_SIZE,
        read_buffer_chunks=4,
        reclaim_timeout=5.0,
    )


@pytest.fixture
async def bucket(store: ObjectStoreClient):
    """A freshly created bucket named ``test-bucket``."""
    return await store.create_bucket("test-bucket")


@pytest.fixture
async def client(app, config, transport) -> AsyncClient:
    """Create an async HTTP client for the gateway app.

    Installs the test transport and a client built from the test config on
    app.state before each test (mirrors the lifespan).
    """
    app.state.transport = transport
    app.state.client = ObjectStoreClient.from_config(transport, config.objects)

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as c:
        yield c

"""Shared pytest fixtures for Hiraeth tests.

Each test gets its own SQLite database and data directory under
``tmp_path``. API tests build a fresh app per test with metrics disabled
(the Prometheus registry is process-global) and run its lifespan
explicitly, since ASGITransport does not drive lifespan events.
"""

import pytest
from httpx import ASGITransport, AsyncClient

from hiraeth.auth import hash_secret
from hiraeth.config import (
    AuthConfig,
    HiraethConfig,
    MetadataConfig,
    ObservabilityConfig,
    ServerConfig,
    SQLiteConfig,
    StorageConfig,
    UploadConfig,
)
from hiraeth.lifecycle.manager import LifecycleManager
from hiraeth.metadata.sqlite import SQLiteObjectStore
from hiraeth.server import create_app
from hiraeth.storage.local import LocalBlobStore

# Cheap bcrypt cost for tests.
TEST_BCRYPT_ROUNDS = 4


class FakeClock:
    """Manually advanced wall clock in UNIX seconds."""

    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
async def store(tmp_path):
    """A fresh SQLiteObjectStore for each test."""
    s = SQLiteObjectStore(str(tmp_path / "hiraeth.db"))
    await s.init_db()
    yield s
    await s.close()


@pytest.fixture
async def blobs(tmp_path):
    """A LocalBlobStore in a per-test data directory."""
    b = LocalBlobStore(tmp_path / "data")
    await b.init()
    yield b
    await b.close()


@pytest.fixture
async def owner(store) -> int:
    """Id of a principal named alice."""
    return await store.create_user("alice", hash_secret("alice-pw", rounds=TEST_BCRYPT_ROUNDS))


@pytest.fixture
async def other_owner(store) -> int:
    """Id of a second principal named bob."""
    return await store.create_user("bob", hash_secret("bob-pw", rounds=TEST_BCRYPT_ROUNDS))


@pytest.fixture
async def manager(store, blobs):
    """A LifecycleManager on the real clock with short timeouts."""
    m = LifecycleManager(
        store,
        blobs,
        chunk_size=1024,
        inactivity_timeout=0.2,
        max_lifetime=3600.0,
    )
    yield m
    await m.close()


def make_config(tmp_path, *, auth_enabled: bool = False, **uploads) -> HiraethConfig:
    """Build a test config rooted in ``tmp_path``."""
    return HiraethConfig(
        server=ServerConfig(host="127.0.0.1", port=8089),
        auth=AuthConfig(enabled=auth_enabled, bcrypt_rounds=TEST_BCRYPT_ROUNDS),
        metadata=MetadataConfig(
            engine="sqlite", sqlite=SQLiteConfig(path=str(tmp_path / "hiraeth.db"))
        ),
        storage=StorageConfig(data_dir=str(tmp_path / "data")),
        uploads=UploadConfig(**uploads),
        observability=ObservabilityConfig(metrics=False, health_check=True),
    )


@pytest.fixture
def config_factory(tmp_path):
    """Build test configs with overrides, e.g. ``config_factory(chunk_size=8)``."""

    def factory(**kwargs) -> HiraethConfig:
        return make_config(tmp_path, **kwargs)

    return factory


@pytest.fixture
def config(config_factory) -> HiraethConfig:
    """Test config with auth disabled."""
    return config_factory()


@pytest.fixture
async def app(config):
    """A Hiraeth app with its lifespan running for the duration of a test."""
    application = create_app(config)
    async with application.router.lifespan_context(application):
        yield application


@pytest.fixture
async def client(app) -> AsyncClient:
    """Create an async test client for the Hiraeth app."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as ac:
        yield ac

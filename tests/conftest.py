"""Shared fixtures: each test gets its own file-backed SQLite grid."""

import pytest
from fastapi.testclient import TestClient

from database import Settings, create_db_engine
from core.grid_store import GridStore
from core.live_feed import LiveFeed
from core.placement_arbiter import PlacementArbiter
from main import create_app


@pytest.fixture
def settings(tmp_path):
    return Settings(
        database_url=f"sqlite:///{tmp_path / 'grid.db'}",
        grid_width=10,
        grid_height=10,
        reveal_threshold=3,
        placement_retry_backoff=0.0,
        presence_ttl_seconds=30.0,
    )


@pytest.fixture
def store(settings):
    engine = create_db_engine(settings.database_url, settings.store_acquire_timeout)
    grid_store = GridStore(engine, settings.grid_width, settings.grid_height)
    grid_store.create_tables()
    yield grid_store
    engine.dispose()


@pytest.fixture
def arbiter(store):
    return PlacementArbiter(store, max_attempts=3, retry_backoff=0.0)


@pytest.fixture
def live_feed(store):
    feed = LiveFeed(store)
    yield feed
    feed.close()


@pytest.fixture
def client(settings):
    app = create_app(settings)
    with TestClient(app) as test_client:
        yield test_client

"""Shared fixtures for API tests.

The app is created without entering its lifespan; a ``RouterServices``
look-alike wired to the in-memory stores from the top-level conftest is
placed on ``app.state.services`` instead.
"""

from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from src.api.app import create_app
from src.api.auth import verify_api_key
from src.config.settings import Settings
from src.notifications.config import NotificationConfig
from src.transport.hub import TopicHub


class DirectWorkerPool:
    """Worker pool stand-in that dispatches on the request's own task."""

    def __init__(self, dispatcher):
        self.dispatcher = dispatcher
        self.submitted = []
        self.error: Exception | None = None
        self.queue_depth = 0

    async def submit(self, event):
        self.submitted.append(event)
        if self.error is not None:
            raise self.error
        return await self.dispatcher.dispatch(event)


@pytest.fixture
def mock_db():
    db = AsyncMock()
    db.health_check = AsyncMock(return_value=True)
    return db


@pytest.fixture
def worker_pool(dispatcher):
    return DirectWorkerPool(dispatcher)


@pytest.fixture
def services(
    mock_db,
    directory,
    registry,
    notification_repo,
    preference_repo,
    worker_pool,
    dispatcher,
):
    return SimpleNamespace(
        settings=Settings(ws_heartbeat_seconds=1),
        notification_config=NotificationConfig(history_page_limit=50),
        database=mock_db,
        redis_client=None,
        directory=directory,
        registry=registry,
        notifications=notification_repo,
        preferences=preference_repo,
        hub=TopicHub(queue_size=16),
        bridge=SimpleNamespace(is_distributed=False),
        dispatcher=dispatcher,
        workers=worker_pool,
    )


@pytest.fixture
def app(services):
    application = create_app()
    application.state.services = services
    application.dependency_overrides[verify_api_key] = lambda: "test-key"
    yield application
    application.dependency_overrides.clear()


@pytest.fixture
def client(app):
    """TestClient that skips the lifespan so no real stores are touched."""
    return TestClient(app)

"""
Dependency injection for FastAPI endpoints.

All long-lived services are owned by one ``RouterServices`` container that
the application lifespan builds and stores on ``app.state.services``.
Endpoint dependencies only read from it, so tests can swap any piece with
``app.dependency_overrides``.
"""

from dataclasses import dataclass

import redis.asyncio as redis
import structlog
from fastapi import HTTPException, Request, status

from src.assignments.config import RoutingConfig
from src.assignments.handoff import CaseServiceClient
from src.assignments.registry import AssignmentRegistry
from src.assignments.repository import AssignmentRepository
from src.assignments.resolver import DirectoryRepository, RecipientResolver
from src.assignments.strategies import StrategyEngine
from src.config.settings import Settings, get_settings
from src.notifications.channels import build_channels
from src.notifications.config import NotificationConfig
from src.notifications.dispatcher import NotificationDispatcher
from src.notifications.preferences import PreferenceFilter, PreferenceRepository
from src.notifications.repository import NotificationRepository
from src.notifications.worker import EventWorkerPool
from src.storage.database import Database, PersistenceUnavailableError
from src.transport.bridge import RedisTopicBridge
from src.transport.config import TransportConfig
from src.transport.hub import TopicHub

logger = structlog.get_logger(__name__)


@dataclass
class RouterServices:
    """Everything the API needs, wired once per process."""

    settings: Settings
    notification_config: NotificationConfig
    database: Database
    redis_client: redis.Redis | None
    directory: DirectoryRepository
    registry: AssignmentRegistry
    notifications: NotificationRepository
    preferences: PreferenceRepository
    hub: TopicHub
    bridge: RedisTopicBridge
    dispatcher: NotificationDispatcher
    workers: EventWorkerPool

    async def close(self) -> None:
        await self.workers.stop()
        await self.bridge.stop()
        self.hub.close_all()
        await self.database.close()
        if self.redis_client is not None:
            await self.redis_client.aclose()


async def build_services(settings: Settings | None = None) -> RouterServices:
    """Connect to the stores and wire the routing pipeline.

    A database that is down at startup does not stop the API from serving;
    requests that need it answer 503 until it comes back.
    """
    settings = settings or get_settings()
    routing = RoutingConfig()
    notification_config = NotificationConfig()
    transport_config = TransportConfig()

    database = Database()
    try:
        await database.connect()
    except PersistenceUnavailableError as e:
        logger.error("Database unavailable at startup", error=str(e))

    redis_client: redis.Redis | None = None
    if settings.redis_enabled:
        redis_client = redis.from_url(
            str(settings.redis_url),
            encoding="utf-8",
            decode_responses=True,
        )

    hub = TopicHub(
        queue_size=transport_config.session_queue_size,
        max_sessions=settings.ws_max_connections,
    )
    bridge = RedisTopicBridge(hub, channel=transport_config.redis_channel)
    await bridge.start(redis_client)

    directory = DirectoryRepository(database)
    registry = AssignmentRegistry(AssignmentRepository(database))
    notifications = NotificationRepository(database)
    preferences = PreferenceRepository(database, notification_config)

    dispatcher = NotificationDispatcher(
        registry=registry,
        resolver=RecipientResolver(directory),
        strategies=StrategyEngine(registry, directory),
        preferences=preferences,
        preference_filter=PreferenceFilter(),
        notifications=notifications,
        publisher=bridge,
        directory=directory,
        channels=build_channels(notification_config),
        handoff=CaseServiceClient(
            url=routing.case_service_url,
            timeout=routing.case_service_timeout,
        ),
        config=notification_config,
        routing=routing,
    )
    workers = EventWorkerPool(dispatcher, config=routing)
    await workers.start()

    return RouterServices(
        settings=settings,
        notification_config=notification_config,
        database=database,
        redis_client=redis_client,
        directory=directory,
        registry=registry,
        notifications=notifications,
        preferences=preferences,
        hub=hub,
        bridge=bridge,
        dispatcher=dispatcher,
        workers=workers,
    )


def get_services(request: Request) -> RouterServices:
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service is starting up",
        )
    return services


def get_registry(request: Request) -> AssignmentRegistry:
    return get_services(request).registry


def get_notification_repository(request: Request) -> NotificationRepository:
    return get_services(request).notifications


def get_preference_repository(request: Request) -> PreferenceRepository:
    return get_services(request).preferences


def get_worker_pool(request: Request) -> EventWorkerPool:
    return get_services(request).workers


def get_notification_config(request: Request) -> NotificationConfig:
    return get_services(request).notification_config


def get_database(request: Request) -> Database:
    return get_services(request).database


def get_redis_client(request: Request) -> redis.Redis | None:
    return get_services(request).redis_client


def get_hub(request: Request) -> TopicHub:
    return get_services(request).hub

"""
Health check endpoint with infrastructure checks.
"""

import time

import structlog
from fastapi import APIRouter, Depends

from src.api.dependencies import RouterServices, get_services
from src.api.models import ComponentHealth, HealthResponse
from src.storage.database import Database

router = APIRouter()
logger = structlog.get_logger(__name__)

VERSION = "0.1.0"


async def check_database(db: Database) -> ComponentHealth:
    """Check database connectivity and measure latency."""
    start = time.perf_counter()
    healthy = await db.health_check()
    latency_ms = (time.perf_counter() - start) * 1000
    return ComponentHealth(
        status="healthy" if healthy else "unhealthy",
        latency_ms=round(latency_ms, 2),
    )


async def check_redis(redis_client) -> ComponentHealth:
    """Check Redis connectivity and measure latency."""
    start = time.perf_counter()
    try:
        await redis_client.ping()
    except Exception as e:
        latency_ms = (time.perf_counter() - start) * 1000
        return ComponentHealth(
            status="unhealthy",
            latency_ms=round(latency_ms, 2),
            details={"error": str(e)},
        )
    latency_ms = (time.perf_counter() - start) * 1000
    return ComponentHealth(status="healthy", latency_ms=round(latency_ms, 2))


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Service health check",
    description="Check the health of the service and its dependencies.",
)
async def health_check(
    services: RouterServices = Depends(get_services),
) -> HealthResponse:
    """
    Status logic:
    - unhealthy: database is down (webhooks answer 503)
    - degraded: Redis is down (live frames only reach this process)
    - healthy: all components operational
    """
    components: dict[str, ComponentHealth] = {
        "database": await check_database(services.database),
    }
    if services.redis_client is not None:
        components["redis"] = await check_redis(services.redis_client)

    if components["database"].status == "unhealthy":
        status = "unhealthy"
    elif any(c.status == "unhealthy" for c in components.values()):
        status = "degraded"
    else:
        status = "healthy"

    return HealthResponse(
        status=status,
        components=components,
        live_sessions=services.hub.session_count,
        distributed=services.bridge.is_distributed,
        worker_queue_depth=services.workers.queue_depth,
        version=VERSION,
    )

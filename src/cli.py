"""
Command-line interface for the case alert router.

Usage:
    router serve      # Run the API server
    router init-db    # Initialize database
    router health     # Check service health
    router listen     # Follow a user's live notifications
"""

import asyncio
import json
import signal
import sys

import click

from src.config.settings import get_settings
from src.observability.logging import setup_logging
from src.observability.metrics import get_metrics


@click.group()
@click.option("--debug", is_flag=True, help="Enable debug logging")
def main(debug: bool) -> None:
    """Case Alert Router - alert routing, assignment and live notifications."""
    if debug:
        import os
        os.environ["LOG_LEVEL"] = "DEBUG"
        get_settings.cache_clear()

    setup_logging()

    settings = get_settings()
    if settings.tracing_enabled:
        from src.observability.tracing import setup_tracing

        setup_tracing(
            service_name=settings.otel_service_name,
            otlp_endpoint=settings.otel_exporter_otlp_endpoint,
        )


@main.command("init-db")
def init_db() -> None:
    """Initialize the database schema."""
    from src.storage.database import Database
    from src.storage.schema import create_tables

    async def run():
        async with Database() as db:
            await create_tables(db)
        click.echo("Database initialized successfully")

    asyncio.run(run())


@main.command()
def health() -> None:
    """Check health of all dependencies."""
    import structlog
    logger = structlog.get_logger()

    async def check():
        settings = get_settings()
        results: dict[str, bool] = {}

        if settings.redis_enabled:
            import redis.asyncio as aioredis

            client = aioredis.from_url(str(settings.redis_url), decode_responses=True)
            try:
                results["redis"] = bool(await client.ping())
            except Exception as e:
                results["redis"] = False
                logger.error("Redis health check failed", error=str(e))
            finally:
                await client.aclose()

        from src.storage.database import Database, PersistenceUnavailableError

        db = Database()
        try:
            await db.connect()
            results["postgres"] = await db.health_check()
        except PersistenceUnavailableError as e:
            results["postgres"] = False
            logger.error("Postgres health check failed", error=str(e))
        finally:
            await db.close()

        from src.assignments.config import RoutingConfig
        from src.notifications.config import NotificationConfig

        routing = RoutingConfig()
        notifications = NotificationConfig()
        results["case_service_configured"] = routing.case_service_url is not None
        results["desktop_push_configured"] = notifications.desktop_push_url is not None
        results["email_configured"] = notifications.smtp_host is not None

        click.echo("\nHealth Check Results:")
        click.echo("-" * 40)

        all_healthy = True
        for name, status in results.items():
            icon = "✓" if status else "✗"
            color = "green" if status else "red"
            click.echo(click.style(f"  {icon} {name}: {status}", fg=color))
            if name in ("redis", "postgres") and not status:
                all_healthy = False

        click.echo("-" * 40)

        if all_healthy:
            click.echo(click.style("All core services healthy!", fg="green"))
            sys.exit(0)
        else:
            click.echo(click.style("Some services unhealthy!", fg="red"))
            sys.exit(1)

    asyncio.run(check())


@main.command()
@click.option("--host", default=None, help="API server host")
@click.option("--port", default=None, type=int, help="API server port")
@click.option("--reload", is_flag=True, help="Enable auto-reload (dev only)")
@click.option("--metrics-port", default=None, type=int, help="Metrics server port")
def serve(host: str | None, port: int | None, reload: bool, metrics_port: int | None) -> None:
    """Start the alert router API server."""
    import uvicorn

    settings = get_settings()
    host = host or settings.api_host
    port = port or settings.api_port
    metrics_port = metrics_port or settings.metrics_port

    get_metrics().start_server(port=metrics_port)

    click.echo(f"Starting API server on {host}:{port}")
    click.echo(f"Metrics available on http://localhost:{metrics_port}/metrics")
    click.echo(f"API docs available on http://localhost:{port}/docs")

    uvicorn.run(
        "src.api.app:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
        log_level="info",
    )


@main.command()
@click.option("--user-id", required=True, type=int, help="User whose notifications to follow")
@click.option("--topic", "topics", multiple=True, help="Extra topic to subscribe to (can repeat)")
@click.option("--url", default=None, help="API base URL (default: local server)")
@click.option("--api-key", default=None, envvar="ROUTER_API_KEY", help="API key")
def listen(user_id: int, topics: tuple[str, ...], url: str | None, api_key: str | None) -> None:
    """Print live notifications for a user, reconnecting as needed.

    Example:
        router listen --user-id 5 --topic team.2
    """
    from src.transport.backoff import ReconnectBackoff
    from src.transport.client import ReconnectingNotificationClient
    from src.transport.config import TransportConfig

    settings = get_settings()
    config = TransportConfig()
    base_url = url or f"http://localhost:{settings.api_port}"

    client = ReconnectingNotificationClient(
        base_url,
        user_id=user_id,
        topics=topics,
        api_key=api_key,
        backoff=ReconnectBackoff(
            base_delay=config.reconnect_base_delay,
            max_delay=config.reconnect_max_delay,
            multiplier=config.reconnect_multiplier,
            jitter_range=config.reconnect_jitter,
        ),
        heartbeat=settings.ws_heartbeat_seconds,
    )

    async def run():
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, lambda: asyncio.ensure_future(client.stop()))

        runner = asyncio.create_task(client.run())
        click.echo(f"Listening for notifications for user {user_id} on {client.ws_url}")
        async for notification in client.frames():
            severity = notification.get("severity", "?")
            title = notification.get("title", "")
            click.echo(f"[{severity}] #{notification.get('id')} {title}")
            click.echo(f"    {json.dumps(notification, default=str)}")
        await runner

    asyncio.run(run())


if __name__ == "__main__":
    main()

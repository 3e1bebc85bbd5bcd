"""Cross-process fan-out for the topic hub over Redis pub/sub.

Every API process runs its own hub holding its own sessions. ``publish``
sends ``{"topic", "message"}`` to one Redis channel; a background listener
in each process re-publishes what it receives into the local hub, so a
frame reaches the user's sessions whichever worker they are connected to.

Without Redis, or when a Redis publish fails, frames go straight to the
local hub.

Pattern: Background subscriber task, same lifecycle as the API's other
long-running components (``start`` / ``stop``).
"""

import asyncio
import json
import logging
from typing import Any

from src.observability.tracing import (
    extract_trace_context,
    get_tracer,
    inject_trace_context,
    traced,
)
from src.transport.hub import TopicHub

logger = logging.getLogger(__name__)

DEFAULT_CHANNEL = "router:topics"

_tracer = get_tracer(__name__)


class RedisTopicBridge:
    """Publishes topic frames through Redis and feeds the local hub.

    Lifecycle:
        1. ``start(redis_client)`` - subscribe to the channel, spawn listener
        2. ``publish(topic, message)`` - from the dispatcher
        3. ``stop()`` - cancel the listener, close pub/sub
    """

    def __init__(self, hub: TopicHub, channel: str = DEFAULT_CHANNEL) -> None:
        self._hub = hub
        self._channel = channel
        self._redis: Any | None = None
        self._pubsub: Any | None = None
        self._listener_task: asyncio.Task | None = None
        self._running = False

    @property
    def hub(self) -> TopicHub:
        return self._hub

    @property
    def is_distributed(self) -> bool:
        """True while frames travel through Redis."""
        return self._running and self._redis is not None

    async def start(self, redis_client: Any | None) -> None:
        """Subscribe to the Redis channel and start the listener.

        Args:
            redis_client: An async Redis client, or None for local-only mode.
        """
        if self._running or redis_client is None:
            if redis_client is None:
                logger.info("Topic bridge running in local-only mode")
            return

        try:
            self._pubsub = redis_client.pubsub()
            await self._pubsub.subscribe(self._channel)
        except Exception as e:
            logger.error("Failed to start topic bridge, staying local: %s", e)
            self._pubsub = None
            return

        self._redis = redis_client
        self._running = True
        self._listener_task = asyncio.create_task(
            self._listen(), name="topic-bridge-listener",
        )
        logger.info("Topic bridge started (channel=%s)", self._channel)

    async def stop(self) -> None:
        """Stop the listener task and close pub/sub."""
        self._running = False

        if self._listener_task is not None:
            self._listener_task.cancel()
            try:
                await self._listener_task
            except asyncio.CancelledError:
                pass
            self._listener_task = None

        if self._pubsub is not None:
            try:
                await self._pubsub.unsubscribe(self._channel)
                await self._pubsub.close()
            except Exception as e:
                logger.warning("Error closing pub/sub: %s", e)
            self._pubsub = None

        self._redis = None
        logger.info("Topic bridge stopped")

    async def publish(self, topic: str, message: dict[str, Any]) -> int:
        """Fan a frame out to every process.

        Returns:
            Number of Redis subscribers reached, or the number of local
            sessions when running without Redis.
        """
        if not self.is_distributed:
            return self._hub.publish(topic, message)

        envelope = {"topic": topic, "message": message, **inject_trace_context()}
        try:
            return await self._redis.publish(self._channel, json.dumps(envelope, default=str))
        except Exception as e:
            logger.warning("Redis publish failed for %s, delivering locally: %s", topic, e)
            return self._hub.publish(topic, message)

    async def _listen(self) -> None:
        """Background task: read messages from Redis pub/sub and dispatch."""
        try:
            while self._running:
                try:
                    message = await self._pubsub.get_message(
                        ignore_subscribe_messages=True, timeout=1.0,
                    )
                    if message is not None and message["type"] == "message":
                        self._dispatch_message(message["data"])
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    logger.warning("Error reading pub/sub message: %s", e)
                    await asyncio.sleep(1.0)
        except asyncio.CancelledError:
            pass

    def _dispatch_message(self, raw_data: str | bytes) -> int:
        """Parse one envelope and publish it into the local hub."""
        try:
            if isinstance(raw_data, bytes):
                raw_data = raw_data.decode("utf-8")
            envelope = json.loads(raw_data)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.warning("Invalid bridge message: %s", e)
            return 0

        topic = envelope.get("topic") if isinstance(envelope, dict) else None
        message = envelope.get("message") if isinstance(envelope, dict) else None
        if not isinstance(topic, str) or not isinstance(message, dict):
            logger.warning("Bridge message missing topic or message, ignoring")
            return 0

        with traced(
            _tracer,
            "bridge.deliver",
            {"topic": topic},
            parent_context=extract_trace_context(envelope),
        ):
            return self._hub.publish(topic, message)

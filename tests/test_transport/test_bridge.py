"""Tests for the Redis topic bridge."""

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.transport.bridge import RedisTopicBridge
from src.transport.hub import TopicHub


@pytest.fixture
def hub():
    return TopicHub()


@pytest.fixture
def subscribed(hub):
    session = hub.open_session(user_id=5)
    hub.subscribe(session.session_id, "user.5")
    return session


async def _no_message(**kwargs):
    await asyncio.sleep(0.01)
    return None


def _redis_client(publish_result=1):
    client = MagicMock()
    pubsub = MagicMock()
    pubsub.subscribe = AsyncMock()
    pubsub.unsubscribe = AsyncMock()
    pubsub.close = AsyncMock()
    pubsub.get_message = AsyncMock(side_effect=_no_message)
    client.pubsub.return_value = pubsub
    client.publish = AsyncMock(return_value=publish_result)
    return client


class TestLocalMode:
    @pytest.mark.asyncio
    async def test_publish_goes_to_hub(self, hub, subscribed):
        bridge = RedisTopicBridge(hub)
        await bridge.start(None)

        assert not bridge.is_distributed
        assert await bridge.publish("user.5", {"id": 1}) == 1
        assert subscribed.queue.get_nowait()["data"] == {"id": 1}


class TestDistributedMode:
    @pytest.mark.asyncio
    async def test_publish_sends_envelope(self, hub):
        client = _redis_client()
        bridge = RedisTopicBridge(hub, channel="test:topics")
        await bridge.start(client)
        try:
            assert bridge.is_distributed
            await bridge.publish("user.5", {"id": 1})
        finally:
            await bridge.stop()

        channel, raw = client.publish.call_args[0]
        assert channel == "test:topics"
        envelope = json.loads(raw)
        assert envelope["topic"] == "user.5"
        assert envelope["message"] == {"id": 1}

    @pytest.mark.asyncio
    async def test_redis_failure_falls_back_to_hub(self, hub, subscribed):
        client = _redis_client()
        client.publish.side_effect = ConnectionError("redis down")
        bridge = RedisTopicBridge(hub)
        await bridge.start(client)
        try:
            assert await bridge.publish("user.5", {"id": 2}) == 1
        finally:
            await bridge.stop()
        assert subscribed.queue.get_nowait()["data"] == {"id": 2}

    @pytest.mark.asyncio
    async def test_subscribe_failure_stays_local(self, hub):
        client = _redis_client()
        client.pubsub.return_value.subscribe.side_effect = ConnectionError("refused")
        bridge = RedisTopicBridge(hub)
        await bridge.start(client)
        assert not bridge.is_distributed

    @pytest.mark.asyncio
    async def test_stop_closes_pubsub(self, hub):
        client = _redis_client()
        bridge = RedisTopicBridge(hub)
        await bridge.start(client)
        await bridge.stop()

        pubsub = client.pubsub.return_value
        pubsub.unsubscribe.assert_awaited_once()
        pubsub.close.assert_awaited_once()
        assert not bridge.is_distributed


class TestDispatchMessage:
    def test_delivers_to_local_sessions(self, hub, subscribed):
        bridge = RedisTopicBridge(hub)
        raw = json.dumps({"topic": "user.5", "message": {"id": 3}}).encode()
        assert bridge._dispatch_message(raw) == 1
        assert subscribed.queue.get_nowait()["data"] == {"id": 3}

    @pytest.mark.parametrize("raw", [
        "not json",
        json.dumps(["list"]),
        json.dumps({"topic": "user.5"}),
        json.dumps({"topic": 5, "message": {}}),
    ])
    def test_malformed_messages_ignored(self, hub, subscribed, raw):
        assert RedisTopicBridge(hub)._dispatch_message(raw) == 0
        assert subscribed.queue.empty()

"""Tests for the in-process topic hub."""

import asyncio

import pytest

from src.transport.hub import TopicHub


@pytest.fixture
def hub():
    return TopicHub(queue_size=2)


class TestSessions:
    def test_open_and_close(self, hub):
        session = hub.open_session(user_id=5)
        assert hub.session_count == 1
        assert hub.get_session(session.session_id) is session

        hub.close_session(session.session_id)
        assert hub.session_count == 0
        # closing twice is harmless
        hub.close_session(session.session_id)

    def test_session_limit(self):
        hub = TopicHub(max_sessions=1)
        assert hub.open_session(user_id=1) is not None
        assert hub.open_session(user_id=2) is None

    def test_duplicate_session_id_rejected(self, hub):
        hub.open_session(session_id="s1")
        with pytest.raises(ValueError):
            hub.open_session(session_id="s1")


class TestPublish:
    def test_every_session_of_a_user_receives(self, hub):
        tab1 = hub.open_session(user_id=5)
        tab2 = hub.open_session(user_id=5)
        other = hub.open_session(user_id=7)
        for session in (tab1, tab2):
            hub.subscribe(session.session_id, "user.5")
        hub.subscribe(other.session_id, "user.7")

        assert hub.publish("user.5", {"id": 1}) == 2
        assert tab1.queue.get_nowait() == {"type": "notification", "topic": "user.5", "data": {"id": 1}}
        assert tab2.queue.qsize() == 1
        assert other.queue.empty()

    def test_no_subscribers(self, hub):
        assert hub.publish("user.5", {"id": 1}) == 0

    def test_no_backlog_for_late_subscribers(self, hub):
        hub.publish("user.5", {"id": 1})
        session = hub.open_session(user_id=5)
        hub.subscribe(session.session_id, "user.5")
        assert session.queue.empty()

    def test_full_queue_drops_frames(self, hub):
        session = hub.open_session(user_id=5)
        hub.subscribe(session.session_id, "user.5")
        for i in range(3):
            hub.publish("user.5", {"id": i})

        assert session.queue.qsize() == 2
        assert session.dropped == 1
        assert hub.frames_dropped == 1


class TestSubscriptions:
    def test_cancel_handle_is_idempotent(self, hub):
        session = hub.open_session()
        cancel = hub.subscribe(session.session_id, "team.1")
        assert hub.subscriber_count("team.1") == 1

        cancel()
        cancel()
        assert hub.subscriber_count("team.1") == 0
        assert "team.1" not in session.topics

    def test_subscribe_twice(self, hub):
        session = hub.open_session()
        hub.subscribe(session.session_id, "team.1")
        hub.subscribe(session.session_id, "team.1")
        assert hub.publish("team.1", {}) == 1

    def test_unknown_session(self, hub):
        with pytest.raises(KeyError):
            hub.subscribe("missing", "team.1")

    def test_close_removes_subscriptions(self, hub):
        session = hub.open_session()
        hub.subscribe(session.session_id, "team.1")
        hub.close_session(session.session_id)
        assert hub.subscriber_count("team.1") == 0


class TestNextFrame:
    @pytest.mark.asyncio
    async def test_timeout_returns_none(self, hub):
        session = hub.open_session()
        assert await session.next_frame(timeout=0.01) is None

    @pytest.mark.asyncio
    async def test_waits_for_publish(self, hub):
        session = hub.open_session()
        hub.subscribe(session.session_id, "user.1")
        waiter = asyncio.create_task(session.next_frame(timeout=1.0))
        await asyncio.sleep(0)
        hub.publish("user.1", {"id": 9})
        frame = await waiter
        assert frame["data"] == {"id": 9}

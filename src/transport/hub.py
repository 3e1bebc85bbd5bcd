"""Topic hub: in-process pub/sub session multiplexer.

Each connected client owns a ``Session`` with a bounded frame queue. A
session subscribes to any number of topics; ``publish`` copies the frame
into the queue of every session subscribed to the topic. Several sessions
per user (tabs, devices) all receive every frame.

There is no backlog. A session that is not connected when a frame is
published never sees it and reconciles through the notification history
API instead.
"""

import asyncio
import logging
import threading
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from src.observability.metrics import get_metrics

logger = logging.getLogger(__name__)


@dataclass
class Session:
    """One live client connection and the frames waiting for it."""

    session_id: str
    queue: asyncio.Queue
    user_id: int | None = None
    topics: set[str] = field(default_factory=set)
    dropped: int = 0
    connected_at: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    async def next_frame(self, timeout: float | None = None) -> dict[str, Any] | None:
        """Wait for the next frame; None when ``timeout`` elapses first."""
        if timeout is None:
            return await self.queue.get()
        try:
            return await asyncio.wait_for(self.queue.get(), timeout)
        except asyncio.TimeoutError:
            return None


class TopicHub:
    """Session registry plus topic subscriptions.

    Subscription state is guarded by a lock; ``publish`` takes a snapshot
    of the subscribers under the lock and enqueues outside it.
    """

    def __init__(self, queue_size: int = 256, max_sessions: int | None = None) -> None:
        self._queue_size = queue_size
        self._max_sessions = max_sessions
        self._lock = threading.Lock()
        self._sessions: dict[str, Session] = {}
        self._subscribers: dict[str, set[str]] = {}
        self.frames_dropped = 0

    @property
    def session_count(self) -> int:
        return len(self._sessions)

    def subscriber_count(self, topic: str) -> int:
        with self._lock:
            return len(self._subscribers.get(topic, ()))

    def get_session(self, session_id: str) -> Session | None:
        return self._sessions.get(session_id)

    def open_session(
        self,
        user_id: int | None = None,
        session_id: str | None = None,
    ) -> Session | None:
        """Register a new session.

        Returns:
            The session, or None if the session limit is reached.
        """
        session = Session(
            session_id=session_id or uuid.uuid4().hex,
            queue=asyncio.Queue(maxsize=self._queue_size),
            user_id=user_id,
        )
        with self._lock:
            if self._max_sessions is not None and len(self._sessions) >= self._max_sessions:
                return None
            if session.session_id in self._sessions:
                raise ValueError(f"Session already open: {session.session_id}")
            self._sessions[session.session_id] = session

        logger.info(
            "Session opened (session=%s, user=%s, total=%d)",
            session.session_id, user_id, len(self._sessions),
        )
        return session

    def subscribe(self, session_id: str, topic: str) -> Callable[[], None]:
        """Subscribe a session to a topic.

        Subscribing twice is harmless.

        Returns:
            A cancel handle; calling it more than once is a no-op.

        Raises:
            KeyError: The session is not open.
        """
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                raise KeyError(f"Unknown session: {session_id}")
            self._subscribers.setdefault(topic, set()).add(session_id)
            session.topics.add(topic)

        def cancel() -> None:
            self.unsubscribe(session_id, topic)

        return cancel

    def unsubscribe(self, session_id: str, topic: str) -> None:
        with self._lock:
            self._unsubscribe_locked(session_id, topic)

    def _unsubscribe_locked(self, session_id: str, topic: str) -> None:
        subscribers = self._subscribers.get(topic)
        if subscribers is not None:
            subscribers.discard(session_id)
            if not subscribers:
                del self._subscribers[topic]
        session = self._sessions.get(session_id)
        if session is not None:
            session.topics.discard(topic)

    def close_session(self, session_id: str) -> None:
        """Drop the session and every subscription it holds."""
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return
            for topic in list(session.topics):
                self._unsubscribe_locked(session_id, topic)
            del self._sessions[session_id]

        logger.info(
            "Session closed (session=%s, user=%s, total=%d)",
            session_id, session.user_id, len(self._sessions),
        )

    def publish(self, topic: str, message: dict[str, Any]) -> int:
        """Enqueue ``message`` for every session subscribed to ``topic``.

        Returns:
            Number of sessions the frame was queued for.
        """
        with self._lock:
            targets = [
                self._sessions[sid]
                for sid in self._subscribers.get(topic, ())
                if sid in self._sessions
            ]

        if not targets:
            return 0

        frame = {"type": "notification", "topic": topic, "data": message}
        delivered = 0
        for session in targets:
            try:
                session.queue.put_nowait(frame)
                delivered += 1
            except asyncio.QueueFull:
                session.dropped += 1
                self.frames_dropped += 1
                get_metrics().record_frame_dropped()
                logger.warning(
                    "Session %s queue full, dropping frame on %s (dropped=%d)",
                    session.session_id, topic, session.dropped,
                )
        return delivered

    def close_all(self) -> None:
        with self._lock:
            self._sessions.clear()
            self._subscribers.clear()

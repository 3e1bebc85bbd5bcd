"""WebSocket endpoint for live notifications.

Clients connect to ``/ws/notifications?user_id=<id>&api_key=<key>``. The
session is subscribed to every topic the user may hear (own topic, team
topics, and the unassigned pool for admins). Afterwards the client may send:

- ``{"type": "subscribe", "topic": "team.3"}``
- ``{"type": "unsubscribe", "topic": "team.3"}``
- ``{"type": "ping"}``

Server frames are ``{"type": "notification", "topic", "data"}`` plus
``subscribed``/``unsubscribed``/``pong``/``heartbeat``/``error`` replies.
Auth is via the ``api_key`` query parameter since browsers cannot set
custom headers on WebSocket upgrade requests.
"""

import asyncio
import logging
from typing import Any

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect

from src.api.auth import is_valid_api_key
from src.observability.metrics import get_metrics
from src.storage.database import PersistenceUnavailableError
from src.transport.hub import Session, TopicHub
from src.transport.topics import allowed_topics, is_valid_topic

logger = logging.getLogger(__name__)

router = APIRouter()


def _reply(session: Session, frame: dict[str, Any]) -> None:
    # Replies share the session queue so the writer is the only sender
    try:
        session.queue.put_nowait(frame)
    except asyncio.QueueFull:
        logger.debug("Session %s queue full, dropping %s reply", session.session_id, frame["type"])


def _handle_client_frame(
    hub: TopicHub,
    session: Session,
    permitted: frozenset[str],
    message: Any,
) -> None:
    if not isinstance(message, dict):
        _reply(session, {"type": "error", "detail": "frames must be JSON objects"})
        return

    kind = message.get("type")
    topic = message.get("topic")

    if kind == "ping":
        _reply(session, {"type": "pong"})
    elif kind in ("subscribe", "unsubscribe"):
        if not isinstance(topic, str) or not is_valid_topic(topic):
            _reply(session, {"type": "error", "detail": f"invalid topic {topic!r}"})
        elif kind == "unsubscribe":
            hub.unsubscribe(session.session_id, topic)
            _reply(session, {"type": "unsubscribed", "topic": topic})
        elif topic not in permitted:
            _reply(session, {"type": "error", "detail": f"not allowed to subscribe to {topic}"})
        else:
            hub.subscribe(session.session_id, topic)
            _reply(session, {"type": "subscribed", "topic": topic})
    else:
        _reply(session, {"type": "error", "detail": f"unknown frame type {kind!r}"})


async def _read_loop(ws: WebSocket, hub: TopicHub, session: Session, permitted: frozenset[str]) -> None:
    while True:
        try:
            message = await ws.receive_json()
        except ValueError:
            _reply(session, {"type": "error", "detail": "invalid JSON"})
            continue
        _handle_client_frame(hub, session, permitted, message)


async def _write_loop(ws: WebSocket, session: Session, heartbeat_seconds: float) -> None:
    while True:
        frame = await session.next_frame(timeout=heartbeat_seconds)
        await ws.send_json(frame if frame is not None else {"type": "heartbeat"})


@router.websocket("/ws/notifications")
async def ws_notifications(
    ws: WebSocket,
    user_id: int = Query(...),
    api_key: str | None = Query(default=None),
) -> None:
    services = getattr(ws.app.state, "services", None)
    if services is None:
        await ws.close(code=1011, reason="Service is starting up")
        return
    settings = services.settings

    if not settings.ws_enabled:
        await ws.close(code=1008, reason="Live notifications not enabled")
        return

    if not is_valid_api_key(api_key):
        await ws.close(code=1008, reason="Invalid or missing API key")
        return

    try:
        user = await services.directory.get_user(user_id)
    except PersistenceUnavailableError:
        await ws.close(code=1011, reason="Directory unavailable")
        return
    if user is None:
        await ws.close(code=1008, reason=f"Unknown user {user_id}")
        return

    hub: TopicHub = services.hub
    session = hub.open_session(user_id=user_id)
    if session is None:
        await ws.close(code=1008, reason="Max connections reached")
        return

    metrics = get_metrics()
    metrics.set_live_sessions(hub.session_count)
    permitted = allowed_topics(user_id, user.team_ids, user.role)

    await ws.accept()
    for topic in sorted(permitted):
        hub.subscribe(session.session_id, topic)
    _reply(session, {"type": "subscribed", "topics": sorted(permitted)})

    reader = asyncio.create_task(_read_loop(ws, hub, session, permitted))
    writer = asyncio.create_task(_write_loop(ws, session, settings.ws_heartbeat_seconds))
    try:
        done, pending = await asyncio.wait(
            {reader, writer}, return_when=asyncio.FIRST_COMPLETED,
        )
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        for task in done:
            exc = task.exception()
            if exc is not None and not isinstance(exc, WebSocketDisconnect):
                logger.warning("Live session %s ended with error: %s", session.session_id, exc)
    finally:
        reader.cancel()
        writer.cancel()
        hub.close_session(session.session_id)
        metrics.set_live_sessions(hub.session_count)

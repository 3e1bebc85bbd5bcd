"""Reconnecting WebSocket client for the live notification stream.

The server keeps no backlog, so after every (re)connect the client:

1. re-subscribes to the same topic set,
2. pulls anything it missed from ``GET /notifications?since=<last id>``,
3. resumes reading live frames.

Live frames and reconciled records can overlap; frames whose id was
already delivered are dropped, so consumers see each notification once.

The reconnect backoff only starts over once a session has delivered a
frame; a server that accepts the upgrade and drops it straight away keeps
the delays growing.
"""

import asyncio
import json
import logging
from collections import deque
from collections.abc import AsyncIterator, Iterable
from typing import Any
from urllib.parse import urlencode, urlsplit, urlunsplit

import aiohttp

from src.transport.backoff import ReconnectBackoff

logger = logging.getLogger(__name__)

_STOP = object()


class TransportDisconnected(Exception):
    """The live connection dropped or could not be established."""


class ReconnectingNotificationClient:
    """Consumes live notifications for one user with reconnect semantics.

    Usage:
        client = ReconnectingNotificationClient("http://localhost:8001", user_id=5)
        runner = asyncio.create_task(client.run())
        async for frame in client.frames():
            print(frame["title"])
    """

    def __init__(
        self,
        base_url: str,
        user_id: int,
        topics: Iterable[str] = (),
        api_key: str | None = None,
        backoff: ReconnectBackoff | None = None,
        heartbeat: float = 30.0,
        page_size: int = 100,
        seen_window: int = 10_000,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._user_id = user_id
        self._topics = frozenset(topics)
        self._api_key = api_key
        self._backoff = backoff or ReconnectBackoff()
        self._heartbeat = heartbeat
        self._page_size = page_size

        self._queue: asyncio.Queue = asyncio.Queue()
        self._seen_ids: set[int] = set()
        self._seen_order: deque[int] = deque(maxlen=seen_window)
        self._last_seen_id: int | None = None
        self._running = False
        self._ws: aiohttp.ClientWebSocketResponse | None = None
        self.connect_count = 0

    @property
    def topics(self) -> frozenset[str]:
        return self._topics

    @property
    def last_seen_id(self) -> int | None:
        return self._last_seen_id

    @property
    def is_connected(self) -> bool:
        return self._ws is not None and not self._ws.closed

    @property
    def ws_url(self) -> str:
        parts = urlsplit(self._base_url)
        scheme = "wss" if parts.scheme == "https" else "ws"
        query: dict[str, Any] = {"user_id": self._user_id}
        if self._api_key:
            query["api_key"] = self._api_key
        return urlunsplit(
            (scheme, parts.netloc, f"{parts.path}/ws/notifications", urlencode(query), "")
        )

    def _headers(self) -> dict[str, str]:
        return {"X-API-KEY": self._api_key} if self._api_key else {}

    async def run(self) -> None:
        """Connect and keep reconnecting until ``stop()`` is called."""
        self._running = True
        async with aiohttp.ClientSession(headers=self._headers()) as http:
            while self._running:
                try:
                    await self._connect_once(http)
                except TransportDisconnected as e:
                    if not self._running:
                        break
                    delay = self._backoff.next_delay()
                    logger.info(
                        "Live connection lost (%s), reconnecting in %.1fs (attempt %d)",
                        e, delay, self._backoff.attempt,
                    )
                    await asyncio.sleep(delay)
        self._queue.put_nowait(_STOP)

    async def stop(self) -> None:
        self._running = False
        if self._ws is not None and not self._ws.closed:
            await self._ws.close()

    async def frames(self) -> AsyncIterator[dict[str, Any]]:
        """Yield notifications in arrival order until the client stops."""
        while True:
            item = await self._queue.get()
            if item is _STOP:
                return
            yield item

    async def _connect_once(self, http: aiohttp.ClientSession) -> None:
        try:
            ws = await http.ws_connect(self.ws_url, heartbeat=self._heartbeat)
        except (aiohttp.ClientError, OSError, asyncio.TimeoutError) as e:
            raise TransportDisconnected(f"connect failed: {e}") from e

        self._ws = ws
        healthy = False
        try:
            self.connect_count += 1
            logger.info("Live connection established (user=%s)", self._user_id)

            for topic in sorted(self._topics):
                await ws.send_json({"type": "subscribe", "topic": topic})

            await self._reconcile(http)

            async for msg in ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    if not healthy:
                        # Only a session that delivers a frame restarts the backoff schedule
                        healthy = True
                        self._backoff.reset()
                    self._handle_text(msg.data)
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    raise TransportDisconnected(f"websocket error: {ws.exception()}")
        except (aiohttp.ClientError, ConnectionError) as e:
            raise TransportDisconnected(str(e)) from e
        finally:
            self._ws = None
            if not ws.closed:
                await ws.close()

        raise TransportDisconnected(f"connection closed (code={ws.close_code})")

    async def _reconcile(self, http: aiohttp.ClientSession) -> None:
        """Pull notifications missed while disconnected."""
        params: dict[str, Any] = {"user_id": self._user_id, "limit": self._page_size}
        if self._last_seen_id is None:
            params["unread_only"] = "true"

        fetched = 0
        while True:
            if self._last_seen_id is not None:
                params["since"] = self._last_seen_id
            try:
                async with http.get(f"{self._base_url}/notifications", params=params) as resp:
                    resp.raise_for_status()
                    body = await resp.json()
            except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
                logger.warning("Reconciliation failed for user %s: %s", self._user_id, e)
                return

            items = body.get("notifications", []) if isinstance(body, dict) else []
            for item in items:
                self._deliver(item)
            fetched += len(items)
            if len(items) < self._page_size or self._last_seen_id is None:
                break

        if fetched:
            logger.info("Reconciled %d notifications for user %s", fetched, self._user_id)

    def _handle_text(self, raw: str) -> None:
        try:
            frame = json.loads(raw)
        except ValueError:
            logger.debug("Ignoring non-JSON frame")
            return
        if not isinstance(frame, dict):
            return

        kind = frame.get("type")
        if kind == "notification" and isinstance(frame.get("data"), dict):
            self._deliver(frame["data"])
        elif kind == "error":
            logger.warning("Server rejected request: %s", frame.get("detail"))

    def _deliver(self, notification: dict[str, Any]) -> None:
        notification_id = notification.get("id")
        if isinstance(notification_id, int):
            if notification_id in self._seen_ids:
                return
            if len(self._seen_order) == self._seen_order.maxlen:
                self._seen_ids.discard(self._seen_order[0])
            self._seen_order.append(notification_id)
            self._seen_ids.add(notification_id)
            if self._last_seen_id is None or notification_id > self._last_seen_id:
                self._last_seen_id = notification_id
        self._queue.put_nowait(notification)

"""Notification channel adapters for out-of-band delivery.

Provides an ABC for channel adapters plus concrete implementations for a
desktop push gateway and SMTP email. A CircuitBreaker decorator wraps any
channel so an unhealthy downstream is skipped quickly instead of eating the
dispatch timeout on every notification.

Adapters signal failure by raising ``ChannelDeliveryError``. The dispatcher
records the error in its report; nothing here retries.
"""

import asyncio
import enum
import logging
import smtplib
import time
from abc import ABC, abstractmethod
from email.mime.text import MIMEText

import httpx

from src.assignments.schemas import User
from src.notifications.config import NotificationConfig
from src.notifications.schemas import NotificationRecord

logger = logging.getLogger(__name__)


class ChannelDeliveryError(Exception):
    """A channel adapter could not deliver a notification."""

    def __init__(self, channel: str, message: str) -> None:
        super().__init__(f"{channel}: {message}")
        self.channel = channel
        self.message = message


class NotificationChannel(ABC):
    """Abstract base for notification delivery channels."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Identifier matching a preference flag (``desktop`` or ``email``)."""

    @abstractmethod
    async def send(self, record: NotificationRecord, user: User | None) -> None:
        """Deliver a notification to ``user``.

        Args:
            record: Persisted notification to deliver.
            user: Directory entry for the recipient, when known.

        Raises:
            ChannelDeliveryError: Delivery failed.
        """


class DesktopPushChannel(NotificationChannel):
    """Posts notifications as JSON to a desktop push gateway.

    Creates a new ``httpx.AsyncClient`` per call (short-lived, no pooling).
    """

    def __init__(
        self,
        url: str,
        headers: dict[str, str] | None = None,
        timeout: float = 5.0,
    ) -> None:
        self._url = url
        self._headers = headers or {}
        self._timeout = timeout

    @property
    def name(self) -> str:
        return "desktop"

    def _build_payload(self, record: NotificationRecord) -> dict:
        return {
            "userId": record.recipient_id,
            "notificationId": record.id,
            "title": record.title,
            "body": record.message,
            "severity": record.severity.value,
            "type": record.type,
            "ruleId": record.rule_id,
            # Gateway collapses repeated pushes for the same event
            "tag": f"{record.rule_id}:{record.external_event_id}",
        }

    async def send(self, record: NotificationRecord, user: User | None) -> None:
        payload = self._build_payload(record)
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(self._url, json=payload, headers=self._headers)
        except httpx.TimeoutException as e:
            raise ChannelDeliveryError(self.name, "push gateway timed out") from e
        except httpx.HTTPError as e:
            raise ChannelDeliveryError(self.name, f"push gateway request failed: {e}") from e

        if not resp.is_success:
            raise ChannelDeliveryError(
                self.name, f"push gateway returned {resp.status_code}",
            )


class EmailChannel(NotificationChannel):
    """Sends plain-text notification email through an SMTP relay.

    ``smtplib`` is blocking, so each send runs in a worker thread.
    """

    def __init__(
        self,
        host: str,
        port: int = 25,
        sender: str = "alerts@localhost",
        username: str | None = None,
        password: str | None = None,
        use_tls: bool = False,
        timeout: float = 10.0,
    ) -> None:
        self._host = host
        self._port = port
        self._sender = sender
        self._username = username
        self._password = password
        self._use_tls = use_tls
        self._timeout = timeout

    @property
    def name(self) -> str:
        return "email"

    def _build_message(self, record: NotificationRecord, address: str) -> MIMEText:
        body = "\n".join([
            record.message or record.title,
            "",
            f"Rule: {record.rule_id}",
            f"Severity: {record.severity.value}",
            f"Type: {record.type}",
            f"Created: {record.created_at.isoformat()}",
        ])
        msg = MIMEText(body, "plain", "utf-8")
        msg["Subject"] = f"[{record.severity.value}] {record.title}"
        msg["From"] = self._sender
        msg["To"] = address
        return msg

    def _send_sync(self, msg: MIMEText) -> None:
        with smtplib.SMTP(self._host, self._port, timeout=self._timeout) as server:
            if self._use_tls:
                server.starttls()
            if self._username:
                server.login(self._username, self._password or "")
            server.send_message(msg)

    async def send(self, record: NotificationRecord, user: User | None) -> None:
        address = user.email if user else None
        if not address:
            raise ChannelDeliveryError(
                self.name, f"no email address for user {record.recipient_id}",
            )

        msg = self._build_message(record, address)
        try:
            await asyncio.to_thread(self._send_sync, msg)
        except (smtplib.SMTPException, OSError) as e:
            raise ChannelDeliveryError(self.name, f"SMTP delivery failed: {e}") from e

        logger.debug("Email sent to %s for notification %s", address, record.id)


class CircuitState(enum.Enum):
    """Circuit breaker states."""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker(NotificationChannel):
    """Wraps a NotificationChannel with circuit breaker protection.

    State machine: CLOSED → OPEN → HALF_OPEN → CLOSED.

    - CLOSED: All sends pass through. Consecutive failures tracked.
    - OPEN: Sends rejected immediately with ``ChannelDeliveryError``. After
      recovery_timeout, moves to HALF_OPEN.
    - HALF_OPEN: Single probe allowed. Success → CLOSED, failure → OPEN.
    """

    def __init__(
        self,
        channel: NotificationChannel,
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0,
    ) -> None:
        self._channel = channel
        self._failure_threshold = failure_threshold
        self._recovery_timeout = recovery_timeout
        self._state = CircuitState.CLOSED
        self._consecutive_failures = 0
        self._last_failure_time: float = 0.0

    @property
    def name(self) -> str:
        return self._channel.name

    @property
    def state(self) -> CircuitState:
        return self._state

    async def send(self, record: NotificationRecord, user: User | None) -> None:
        if self._state == CircuitState.OPEN:
            if time.monotonic() - self._last_failure_time >= self._recovery_timeout:
                self._state = CircuitState.HALF_OPEN
                logger.info(
                    "Circuit breaker %s: OPEN → HALF_OPEN (recovery probe)",
                    self.name,
                )
            else:
                raise ChannelDeliveryError(self.name, "circuit open")

        try:
            await self._channel.send(record, user)
        except ChannelDeliveryError:
            self._record_failure()
            raise
        except (asyncio.CancelledError, TimeoutError):
            # A caller-side timeout cancels the send; a hung backend counts as a failure
            self._record_failure()
            raise

        if self._state == CircuitState.HALF_OPEN:
            logger.info(
                "Circuit breaker %s: HALF_OPEN → CLOSED (probe succeeded)",
                self.name,
            )
        self._state = CircuitState.CLOSED
        self._consecutive_failures = 0

    def _record_failure(self) -> None:
        self._consecutive_failures += 1
        self._last_failure_time = time.monotonic()

        if self._state == CircuitState.HALF_OPEN:
            self._state = CircuitState.OPEN
            logger.warning(
                "Circuit breaker %s: HALF_OPEN → OPEN (probe failed)",
                self.name,
            )
        elif self._consecutive_failures >= self._failure_threshold:
            self._state = CircuitState.OPEN
            logger.warning(
                "Circuit breaker %s: CLOSED → OPEN after %d failures",
                self.name, self._consecutive_failures,
            )


def build_channels(config: NotificationConfig) -> list[NotificationChannel]:
    """Instantiate the channels enabled in ``NotificationConfig``, breaker-wrapped."""
    channels: list[NotificationChannel] = []
    if config.desktop_push_url:
        channels.append(
            DesktopPushChannel(config.desktop_push_url, timeout=config.channel_timeout_seconds)
        )
    if config.smtp_host:
        channels.append(
            EmailChannel(
                host=config.smtp_host,
                port=config.smtp_port,
                sender=config.smtp_sender,
                username=config.smtp_username,
                password=config.smtp_password,
                use_tls=config.smtp_use_tls,
                timeout=config.channel_timeout_seconds,
            )
        )
    return [
        CircuitBreaker(
            channel=ch,
            failure_threshold=config.circuit_breaker_threshold,
            recovery_timeout=config.circuit_breaker_recovery_seconds,
        )
        for ch in channels
    ]

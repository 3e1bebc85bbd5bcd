"""Per-user preference storage and the delivery gate built on it.

The filter runs three checks in order and stops at the first failure:
type allow-list, severity threshold, quiet hours. CRITICAL notifications
always pass the quiet-hours check. A rejected notification is still
persisted; the filter only decides whether it is pushed live.
"""

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Literal, Protocol
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from src.assignments.schemas import Severity
from src.notifications.config import NotificationConfig
from src.notifications.schemas import MINUTES_PER_DAY, NotificationPreference
from src.storage.database import Database

logger = logging.getLogger(__name__)

RejectReason = Literal["type", "severity", "quiet_hours"]


class _Notifiable(Protocol):
    severity: Severity
    type: str


class PreferenceRepository:
    """Repository for ``notification_preferences`` rows."""

    def __init__(
        self,
        database: Database,
        config: NotificationConfig | None = None,
    ) -> None:
        self._db = database
        self._config = config or NotificationConfig()

    def default_for(self, user_id: int) -> NotificationPreference:
        return NotificationPreference.default(
            user_id,
            severity_threshold=self._config.default_severity_threshold,
            quiet_hours_start=self._config.default_quiet_hours_start,
            quiet_hours_end=self._config.default_quiet_hours_end,
            timezone=self._config.default_timezone,
        )

    async def get(self, user_id: int) -> NotificationPreference:
        """Return the saved preference, or the configured default."""
        row = await self._db.fetchrow(
            "SELECT * FROM notification_preferences WHERE user_id = $1", user_id,
        )
        if row is None:
            return self.default_for(user_id)
        return _row_to_preference(row)

    async def get_many(self, user_ids: Iterable[int]) -> dict[int, NotificationPreference]:
        """Preferences for several users; every requested id gets an entry."""
        ids = sorted(set(user_ids))
        if not ids:
            return {}
        rows = await self._db.fetch(
            "SELECT * FROM notification_preferences WHERE user_id = ANY($1::bigint[])",
            ids,
        )
        found = {row["user_id"]: _row_to_preference(row) for row in rows}
        return {uid: found.get(uid) or self.default_for(uid) for uid in ids}

    async def save(self, preference: NotificationPreference) -> NotificationPreference:
        sql = """
            INSERT INTO notification_preferences (
                user_id, severity_threshold, enabled_types,
                quiet_hours_start, quiet_hours_end, timezone,
                in_app, desktop, email
            ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
            ON CONFLICT (user_id) DO UPDATE SET
                severity_threshold = EXCLUDED.severity_threshold,
                enabled_types = EXCLUDED.enabled_types,
                quiet_hours_start = EXCLUDED.quiet_hours_start,
                quiet_hours_end = EXCLUDED.quiet_hours_end,
                timezone = EXCLUDED.timezone,
                in_app = EXCLUDED.in_app,
                desktop = EXCLUDED.desktop,
                email = EXCLUDED.email,
                updated_at = NOW()
            RETURNING *
        """
        row = await self._db.fetchrow(
            sql,
            preference.user_id,
            preference.severity_threshold.value,
            sorted(preference.enabled_types),
            preference.quiet_hours_start,
            preference.quiet_hours_end,
            preference.timezone,
            preference.in_app,
            preference.desktop,
            preference.email,
        )
        return _row_to_preference(row)


@dataclass(frozen=True)
class FilterDecision:
    """Result of the preference gate; ``reason`` names the failing check."""

    deliver: bool
    reason: RejectReason | None = None

    def __bool__(self) -> bool:
        return self.deliver


_DELIVER = FilterDecision(deliver=True)


def in_quiet_hours(start: int, end: int, minute_of_day: int) -> bool:
    """True when ``minute_of_day`` falls in ``[start, end)``.

    ``start < end`` is a same-day window. ``start >= end`` wraps midnight and
    covers ``[start, 1440) + [0, end)``; with ``start == end`` that is the
    whole day.
    """
    minute = minute_of_day % MINUTES_PER_DAY
    if start < end:
        return start <= minute < end
    return minute >= start or minute < end


def current_minute_of_day(preference: NotificationPreference, now: datetime) -> int:
    """Minute of day for ``now`` in the preference's timezone.

    Naive datetimes are taken as UTC. An unknown zone name falls back to
    UTC with a warning rather than failing the dispatch.
    """
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    try:
        local = now.astimezone(ZoneInfo(preference.timezone))
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning(
            "Unknown timezone %r for user %s, using UTC",
            preference.timezone, preference.user_id,
        )
        local = now.astimezone(timezone.utc)
    return local.hour * 60 + local.minute


class PreferenceFilter:
    """Stateless delivery gate; ``clock`` is injectable for tests."""

    def __init__(self, clock: Callable[[], datetime] | None = None) -> None:
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def should_deliver(
        self,
        preference: NotificationPreference,
        notification: _Notifiable,
        now: datetime | None = None,
    ) -> bool:
        return self.evaluate(preference, notification, now).deliver

    def evaluate(
        self,
        preference: NotificationPreference,
        notification: _Notifiable,
        now: datetime | None = None,
    ) -> FilterDecision:
        if preference.enabled_types and notification.type not in preference.enabled_types:
            return FilterDecision(deliver=False, reason="type")

        if notification.severity.rank < preference.severity_threshold.rank:
            return FilterDecision(deliver=False, reason="severity")

        if notification.severity is Severity.CRITICAL or not preference.has_quiet_hours:
            return _DELIVER

        minute = current_minute_of_day(preference, now or self._clock())
        if in_quiet_hours(preference.quiet_hours_start, preference.quiet_hours_end, minute):
            return FilterDecision(deliver=False, reason="quiet_hours")
        return _DELIVER


def _row_to_preference(row: Any) -> NotificationPreference:
    return NotificationPreference(
        user_id=row["user_id"],
        severity_threshold=Severity(row["severity_threshold"]),
        enabled_types=frozenset(row["enabled_types"] or ()),
        quiet_hours_start=row["quiet_hours_start"],
        quiet_hours_end=row["quiet_hours_end"],
        timezone=row["timezone"],
        in_app=row["in_app"],
        desktop=row["desktop"],
        email=row["email"],
    )

"""Schema definitions for notifications, preferences and dispatch reports.

``NotificationRecord`` maps 1:1 to the ``notifications`` table; one record
exists per ``(rule_id, external_event_id, recipient_id)`` triple.
``NotificationPreference`` maps to ``notification_preferences``.
"""

import json
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal

from src.assignments.errors import ValidationError
from src.assignments.schemas import Severity

NotificationType = Literal[
    "CASE_CREATED",
    "CASE_ASSIGNED",
    "CASE_UNASSIGNED",
    "CASE_UPDATED",
    "ALERT_FIRED",
    "ALERT_RESOLVED",
    "SLA_BREACH",
    "CUSTOM",
]

VALID_NOTIFICATION_TYPES: frozenset[str] = frozenset({
    "CASE_CREATED",
    "CASE_ASSIGNED",
    "CASE_UNASSIGNED",
    "CASE_UPDATED",
    "ALERT_FIRED",
    "ALERT_RESOLVED",
    "SLA_BREACH",
    "CUSTOM",
})

MINUTES_PER_DAY = 24 * 60

_TIME_OF_DAY = re.compile(r"^([01]?\d|2[0-3]):([0-5]\d)$")


def normalize_type(value: str | None, default: str = "CASE_CREATED") -> str:
    """Upper-case a notification type; unknown types become ``CUSTOM``."""
    if not value:
        return default
    candidate = value.strip().upper()
    return candidate if candidate in VALID_NOTIFICATION_TYPES else "CUSTOM"


def parse_time_of_day(value: str | int | None) -> int | None:
    """Convert ``"HH:MM"`` to minutes after midnight.

    Integers are accepted as already-converted minutes. ``None`` and empty
    strings mean "not set".

    Raises:
        ValidationError: Malformed time or out-of-range minutes.
    """
    if value is None or value == "":
        return None
    if isinstance(value, int) and not isinstance(value, bool):
        if not 0 <= value < MINUTES_PER_DAY:
            raise ValidationError("quiet_hours", f"minute of day out of range: {value}")
        return value
    if not isinstance(value, str):
        raise ValidationError("quiet_hours", f"expected HH:MM, got {value!r}")
    match = _TIME_OF_DAY.match(value.strip())
    if match is None:
        raise ValidationError("quiet_hours", f"expected HH:MM, got {value!r}")
    return int(match.group(1)) * 60 + int(match.group(2))


def format_time_of_day(minutes: int | None) -> str | None:
    if minutes is None:
        return None
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


@dataclass
class NotificationPreference:
    """Per-user delivery preference.

    Attributes:
        user_id: Owner of the preference.
        severity_threshold: Lowest severity that is delivered live.
        enabled_types: Allowed notification types; empty means all types.
        quiet_hours_start: Minute of day the quiet window opens, or None.
        quiet_hours_end: Minute of day the quiet window closes, or None.
        timezone: IANA zone the quiet window is expressed in.
        in_app: Push live frames to connected sessions.
        desktop: Invoke the desktop push adapter.
        email: Invoke the email adapter.
    """

    user_id: int
    severity_threshold: Severity = Severity.MEDIUM
    enabled_types: frozenset[str] = frozenset()
    quiet_hours_start: int | None = None
    quiet_hours_end: int | None = None
    timezone: str = "UTC"
    in_app: bool = True
    desktop: bool = True
    email: bool = False

    def __post_init__(self) -> None:
        self.severity_threshold = Severity.parse(self.severity_threshold, "severity_threshold")
        self.enabled_types = frozenset(
            normalize_type(t) for t in (self.enabled_types or ())
        )
        self.quiet_hours_start = parse_time_of_day(self.quiet_hours_start)
        self.quiet_hours_end = parse_time_of_day(self.quiet_hours_end)

    @property
    def has_quiet_hours(self) -> bool:
        return self.quiet_hours_start is not None and self.quiet_hours_end is not None

    @classmethod
    def default(
        cls,
        user_id: int,
        severity_threshold: Severity | str = Severity.MEDIUM,
        quiet_hours_start: str | None = None,
        quiet_hours_end: str | None = None,
        timezone: str = "UTC",
    ) -> "NotificationPreference":
        """Preference applied to users who never saved one."""
        return cls(
            user_id=user_id,
            severity_threshold=severity_threshold,
            quiet_hours_start=quiet_hours_start,
            quiet_hours_end=quiet_hours_end,
            timezone=timezone,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "severity_threshold": self.severity_threshold.value,
            "enabled_types": sorted(self.enabled_types),
            "quiet_hours_start": format_time_of_day(self.quiet_hours_start),
            "quiet_hours_end": format_time_of_day(self.quiet_hours_end),
            "timezone": self.timezone,
            "in_app": self.in_app,
            "desktop": self.desktop,
            "email": self.email,
        }


@dataclass
class AlertEvent:
    """An inbound alert event from the external alerting engine."""

    rule_id: str
    external_event_id: str
    severity: Severity | None = None
    type: str = "CASE_CREATED"
    payload: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.rule_id:
            raise ValidationError("rule_id", "must be a non-empty string")
        if not self.external_event_id:
            raise ValidationError("external_event_id", "must be a non-empty string")
        if self.severity is not None:
            self.severity = Severity.parse(self.severity, "severity")
        self.type = normalize_type(self.type)

    @property
    def title(self) -> str:
        return str(
            self.payload.get("title")
            or self.payload.get("summary")
            or f"Alert on rule {self.rule_id}"
        )

    @property
    def message(self) -> str:
        return str(self.payload.get("message") or self.payload.get("description") or "")

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "AlertEvent":
        """Build an event from a webhook body with camelCase or snake_case keys."""
        return cls(
            rule_id=data.get("ruleId") or data.get("rule_id") or "",
            external_event_id=str(
                data.get("externalEventId") or data.get("external_event_id") or ""
            ),
            severity=data.get("severity"),
            type=data.get("type") or "CASE_CREATED",
            payload=dict(data.get("payload") or {}),
        )


@dataclass
class NotificationRecord:
    """A persisted notification from the notifications table.

    ``id`` is assigned by the database and increases monotonically, which
    makes it usable as a reconciliation cursor (``since=<id>``).
    """

    recipient_id: int
    rule_id: str
    external_event_id: str
    severity: Severity
    type: str
    title: str
    message: str = ""
    payload: dict[str, Any] = field(default_factory=dict)
    id: int | None = None
    created_at: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    read_at: datetime | None = None

    @property
    def dedup_key(self) -> tuple[str, str, int]:
        return (self.rule_id, self.external_event_id, self.recipient_id)

    @property
    def is_read(self) -> bool:
        return self.read_at is not None

    def to_frame(self) -> dict[str, Any]:
        """Live transport frame pushed to connected sessions."""
        return {
            "id": self.id,
            "ruleId": self.rule_id,
            "severity": self.severity.value,
            "type": self.type,
            "title": self.title,
            "message": self.message,
            "createdAt": self.created_at.isoformat(),
        }

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-serializable dictionary."""
        return {
            "id": self.id,
            "recipient_id": self.recipient_id,
            "rule_id": self.rule_id,
            "external_event_id": self.external_event_id,
            "severity": self.severity.value,
            "type": self.type,
            "title": self.title,
            "message": self.message,
            "payload": self.payload,
            "created_at": self.created_at.isoformat(),
            "read_at": self.read_at.isoformat() if self.read_at else None,
        }

    @classmethod
    def from_row(cls, row: Any) -> "NotificationRecord":
        payload = row["payload"]
        if isinstance(payload, str):
            payload = json.loads(payload)
        return cls(
            id=row["id"],
            recipient_id=row["recipient_id"],
            rule_id=row["rule_id"],
            external_event_id=row["external_event_id"],
            severity=Severity(row["severity"]),
            type=row["type"],
            title=row["title"],
            message=row["message"] or "",
            payload=payload or {},
            created_at=row["created_at"],
            read_at=row["read_at"],
        )


@dataclass
class ChannelError:
    """A channel adapter failure recorded in a dispatch report."""

    channel: str
    recipient_id: int
    error: str

    def to_dict(self) -> dict[str, Any]:
        return {"channel": self.channel, "recipient_id": self.recipient_id, "error": self.error}


DispatchStatus = Literal["delivered", "duplicate", "no_recipients", "inactive"]


@dataclass
class DispatchReport:
    """Outcome of dispatching one alert event.

    ``created`` is True when at least one new record was written.
    ``recipient_count`` counts everyone the event resolved to, including
    recipients whose record already existed.
    """

    rule_id: str
    external_event_id: str
    status: DispatchStatus
    created: bool = False
    recipient_count: int = 0
    records_created: int = 0
    duplicates: int = 0
    live_pushed: int = 0
    suppressed: int = 0
    assignee_id: int | None = None
    unassigned: bool = False
    handoff_error: str | None = None
    channel_errors: list[ChannelError] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "rule_id": self.rule_id,
            "external_event_id": self.external_event_id,
            "status": self.status,
            "created": self.created,
            "recipient_count": self.recipient_count,
            "records_created": self.records_created,
            "duplicates": self.duplicates,
            "live_pushed": self.live_pushed,
            "suppressed": self.suppressed,
            "assignee_id": self.assignee_id,
            "unassigned": self.unassigned,
            "handoff_error": self.handoff_error,
            "channel_errors": [e.to_dict() for e in self.channel_errors],
        }

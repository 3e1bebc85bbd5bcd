"""
Request and response models for the alert router API.

Bodies use camelCase on the wire (``ruleId``, ``recipientCount``) and
accept snake_case too, matching the alerting engine's webhook format.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from src.assignments.schemas import RuleAssignment
from src.notifications.schemas import NotificationPreference, NotificationRecord, format_time_of_day


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ErrorResponse(BaseModel):
    """Error body returned by exception handlers."""

    detail: str = Field(..., description="Human-readable error message")
    error_type: str | None = Field(default=None, description="Error category")
    field: str | None = Field(default=None, description="Offending field, for validation errors")


# --- Webhooks ---------------------------------------------------------------


class AlertEventRequest(CamelModel):
    """Alert event posted by the alerting engine."""

    rule_id: str = Field(..., min_length=1, description="Alert rule identifier")
    external_event_id: str = Field(
        ..., min_length=1, description="Engine-side event id, used for deduplication",
    )
    severity: str | None = Field(
        default=None, description="Overrides the assignment severity when set",
    )
    type: str = Field(default="CASE_CREATED", description="Notification type")
    payload: dict[str, Any] = Field(
        default_factory=dict, description="Free-form event body (title, message, ...)",
    )


class WebhookResponse(CamelModel):
    created: bool = Field(..., description="At least one new notification was stored")
    recipient_count: int = Field(..., description="Users the event resolved to")
    status: str = Field(..., description="delivered, duplicate, no_recipients or inactive")


class GrafanaWebhookResponse(CamelModel):
    processed: int = Field(..., description="Alerts dispatched")
    created: int = Field(..., description="Alerts that produced new notifications")
    recipient_count: int = Field(..., description="Total recipients across all alerts")
    skipped: int = Field(..., description="Alerts without a resolvable rule")


# --- Rule assignments -------------------------------------------------------


class AssignmentRequest(CamelModel):
    """Desired state for a rule assignment."""

    severity: str = "MEDIUM"
    category: str = "OPERATIONAL"
    strategy: str = Field(default="MANUAL", description="MANUAL, ROUND_ROBIN, LOAD_BASED or TEAM_BASED")
    active: bool = True
    user_ids: list[int] = Field(default_factory=list)
    team_ids: list[int] = Field(default_factory=list)
    rule_name: str | None = None
    description: str | None = None


class MembersRequest(CamelModel):
    user_ids: list[int] = Field(default_factory=list)
    team_ids: list[int] = Field(default_factory=list)


class AssignmentItem(CamelModel):
    rule_id: str
    rule_name: str | None = None
    description: str | None = None
    severity: str
    category: str
    strategy: str
    active: bool
    user_ids: list[int]
    team_ids: list[int]
    created_at: str
    updated_at: str

    @classmethod
    def from_assignment(cls, assignment: RuleAssignment) -> "AssignmentItem":
        return cls.model_validate(assignment.to_dict())


class AssignmentListResponse(CamelModel):
    assignments: list[AssignmentItem]
    total: int


# --- Notifications ----------------------------------------------------------


class NotificationItem(CamelModel):
    id: int
    rule_id: str
    external_event_id: str
    severity: str
    type: str
    title: str
    message: str
    payload: dict[str, Any]
    created_at: str
    read_at: str | None = None
    read: bool

    @classmethod
    def from_record(cls, record: NotificationRecord) -> "NotificationItem":
        return cls.model_validate({**record.to_dict(), "read": record.is_read})


class NotificationListResponse(CamelModel):
    notifications: list[NotificationItem]
    total: int
    last_id: int | None = Field(default=None, description="Cursor for the next ``since`` query")


class UnreadCountResponse(CamelModel):
    user_id: int
    unread: int


class MarkReadResponse(CamelModel):
    updated: int


# --- Preferences ------------------------------------------------------------


class PreferenceRequest(CamelModel):
    severity_threshold: str = "MEDIUM"
    enabled_types: list[str] = Field(
        default_factory=list, description="Empty list accepts every type",
    )
    quiet_hours_start: str | None = Field(default=None, description="HH:MM in the user's timezone")
    quiet_hours_end: str | None = Field(default=None, description="HH:MM in the user's timezone")
    timezone: str = "UTC"
    in_app: bool = True
    desktop: bool = True
    email: bool = False


class PreferenceItem(CamelModel):
    user_id: int
    severity_threshold: str
    enabled_types: list[str]
    quiet_hours_start: str | None = None
    quiet_hours_end: str | None = None
    timezone: str
    in_app: bool
    desktop: bool
    email: bool

    @classmethod
    def from_preference(cls, preference: NotificationPreference) -> "PreferenceItem":
        return cls(
            user_id=preference.user_id,
            severity_threshold=preference.severity_threshold.value,
            enabled_types=sorted(preference.enabled_types),
            quiet_hours_start=format_time_of_day(preference.quiet_hours_start),
            quiet_hours_end=format_time_of_day(preference.quiet_hours_end),
            timezone=preference.timezone,
            in_app=preference.in_app,
            desktop=preference.desktop,
            email=preference.email,
        )


# --- Health -----------------------------------------------------------------


class ComponentHealth(BaseModel):
    """Health status of an individual infrastructure component."""

    status: str = Field(..., description="healthy or unhealthy")
    latency_ms: float | None = Field(default=None, description="Check latency in milliseconds")
    details: dict[str, Any] = Field(default_factory=dict)


class HealthResponse(BaseModel):
    status: str = Field(..., description="healthy, degraded or unhealthy")
    components: dict[str, ComponentHealth] = Field(default_factory=dict)
    live_sessions: int = Field(default=0, description="Connected WebSocket sessions")
    distributed: bool = Field(default=False, description="Live frames travel through Redis")
    worker_queue_depth: int = 0
    version: str

"""Routing configuration.

Controls the event worker pool, the fallback role used for unassigned
alerts, and the Case Service hand-off. All settings can be overridden via
``ROUTING_*`` environment variables.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class RoutingConfig(BaseSettings):
    """Configuration for event routing and assignee hand-off."""

    model_config = SettingsConfigDict(
        env_prefix="ROUTING_",
        case_sensitive=False,
        extra="ignore",
    )

    # Worker pool
    worker_count: int = Field(
        default=8,
        ge=1,
        le=256,
        description="Number of concurrent event dispatch workers",
    )
    queue_size: int = Field(
        default=1000,
        ge=1,
        description="Maximum number of events waiting for a worker",
    )

    default_notification_type: str = Field(
        default="CASE_CREATED",
        description="Notification type used when an event does not name one",
    )
    fallback_role: str = Field(
        default="ADMIN",
        description="Role notified when an alert has no assignment or no recipients",
    )

    # Case Service hand-off
    case_service_url: str | None = Field(
        default=None,
        description="Case Service endpoint receiving {ruleId, assigneeId}; unset = log only",
    )
    case_service_timeout: float = Field(
        default=5.0,
        gt=0.0,
        description="Seconds to wait for the Case Service to answer",
    )

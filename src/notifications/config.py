"""Notification delivery configuration.

Controls channel adapter timeouts, circuit breakers, the desktop push
gateway, SMTP delivery and the preference defaults applied to users who
never saved any. All settings can be overridden via ``NOTIFICATIONS_*``
environment variables.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class NotificationConfig(BaseSettings):
    """Configuration for notification dispatch."""

    model_config = SettingsConfigDict(
        env_prefix="NOTIFICATIONS_",
        case_sensitive=False,
        extra="ignore",
    )

    channel_timeout_seconds: float = Field(
        default=5.0,
        gt=0.0,
        le=60.0,
        description="Upper bound on a single channel adapter send",
    )
    circuit_breaker_threshold: int = Field(
        default=5,
        ge=1,
        description="Consecutive failures before circuit opens",
    )
    circuit_breaker_recovery_seconds: float = Field(
        default=60.0,
        ge=5.0,
        description="Seconds before circuit breaker probes recovery",
    )

    # Desktop push gateway
    desktop_push_url: str | None = Field(
        default=None,
        description="Push gateway endpoint for desktop notifications; unset disables the channel",
    )

    # Email
    smtp_host: str | None = Field(
        default=None,
        description="SMTP relay host; unset disables the email channel",
    )
    smtp_port: int = Field(default=25, ge=1, le=65535)
    smtp_sender: str = Field(
        default="alerts@localhost",
        description="From address for notification email",
    )
    smtp_username: str | None = Field(default=None)
    smtp_password: str | None = Field(default=None)
    smtp_use_tls: bool = Field(default=False, description="Issue STARTTLS after connecting")

    # Defaults for users without saved preferences
    default_severity_threshold: str = Field(
        default="MEDIUM",
        description="Minimum severity delivered to users with no saved preference",
    )
    default_quiet_hours_start: str | None = Field(
        default=None,
        description="HH:MM start of the default quiet window (unset = no quiet hours)",
    )
    default_quiet_hours_end: str | None = Field(
        default=None,
        description="HH:MM end of the default quiet window",
    )
    default_timezone: str = Field(
        default="UTC",
        description="IANA timezone used for the default quiet window",
    )

    history_page_limit: int = Field(
        default=100,
        ge=1,
        le=1000,
        description="Maximum notifications returned by one history query",
    )

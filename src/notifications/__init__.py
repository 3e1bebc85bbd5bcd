"""Notification preferences, persistence and dispatch.

Components:
- AlertEvent / NotificationRecord / NotificationPreference / DispatchReport
- NotificationRepository: Deduplicated record store and history queries
- PreferenceRepository / PreferenceFilter: Per-user delivery gate
- NotificationChannel / DesktopPushChannel / EmailChannel: Channel adapters
- CircuitBreaker: Resilience wrapper for channels
- NotificationDispatcher: Routing and delivery orchestration
- EventWorkerPool: Concurrent dispatch of inbound events
- parse_grafana_webhook: Grafana webhook adapter
- NotificationConfig: NOTIFICATIONS_* settings
"""

from src.notifications.channels import (
    ChannelDeliveryError,
    CircuitBreaker,
    DesktopPushChannel,
    EmailChannel,
    NotificationChannel,
    build_channels,
)
from src.notifications.config import NotificationConfig
from src.notifications.dispatcher import NotificationDispatcher
from src.notifications.grafana import parse_grafana_webhook
from src.notifications.preferences import (
    FilterDecision,
    PreferenceFilter,
    PreferenceRepository,
    in_quiet_hours,
)
from src.notifications.repository import NotificationRepository
from src.notifications.schemas import (
    VALID_NOTIFICATION_TYPES,
    AlertEvent,
    ChannelError,
    DispatchReport,
    NotificationPreference,
    NotificationRecord,
)
from src.notifications.worker import EventWorkerPool, WorkerPoolClosed

__all__ = [
    "AlertEvent",
    "ChannelDeliveryError",
    "ChannelError",
    "CircuitBreaker",
    "DesktopPushChannel",
    "DispatchReport",
    "EmailChannel",
    "EventWorkerPool",
    "FilterDecision",
    "NotificationChannel",
    "NotificationConfig",
    "NotificationDispatcher",
    "NotificationPreference",
    "NotificationRecord",
    "NotificationRepository",
    "PreferenceFilter",
    "PreferenceRepository",
    "VALID_NOTIFICATION_TYPES",
    "WorkerPoolClosed",
    "build_channels",
    "in_quiet_hours",
    "parse_grafana_webhook",
]

"""Notification dispatcher orchestrating routing, persistence and delivery.

For one alert event the dispatcher:

1. looks up the rule assignment (unknown rule -> unassigned pool,
   inactive rule -> nothing delivered),
2. resolves recipients (nobody -> unassigned pool),
3. persists one record per recipient, deduplicated on
   ``(rule_id, external_event_id, recipient_id)``,
4. stops there when every record already existed (webhook retry),
5. otherwise selects the case owner and hands it to the Case Service
   while, per new record, it applies the preference filter, pushes the
   live frame and calls the channel adapters.

Records are written before anything is pushed. A crash after step 3
leaves records that clients pick up through the history API; live push is
best effort. Only ``PersistenceUnavailableError`` escapes ``dispatch``.

Pattern: Orchestrator, delegates to registry/resolver/strategies and
stateless channels.
"""

import asyncio
import logging
import time
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol

from src.assignments.config import RoutingConfig
from src.assignments.handoff import CaseServiceClient
from src.assignments.registry import AssignmentRegistry
from src.assignments.resolver import DirectoryRepository, RecipientResolver, Resolution
from src.assignments.schemas import RuleAssignment, Severity, User
from src.assignments.strategies import StrategyEngine
from src.notifications.channels import ChannelDeliveryError, NotificationChannel
from src.notifications.config import NotificationConfig
from src.notifications.preferences import PreferenceFilter, PreferenceRepository
from src.notifications.repository import NotificationRepository
from src.notifications.schemas import (
    AlertEvent,
    ChannelError,
    DispatchReport,
    NotificationPreference,
    NotificationRecord,
)
from src.observability.metrics import MetricsCollector, get_metrics
from src.observability.tracing import get_tracer, traced
from src.transport.topics import ADMIN_UNASSIGNED_TOPIC, user_topic

logger = logging.getLogger(__name__)

_tracer = get_tracer(__name__)

UNASSIGNED_TYPE = "CASE_UNASSIGNED"


class Publisher(Protocol):
    """Anything that can fan a frame out to a topic (hub or bridge)."""

    async def publish(self, topic: str, message: dict[str, Any]) -> int: ...


@dataclass
class _DeliveryOutcome:
    pushed: bool = False
    suppressed: bool = False
    errors: list[ChannelError] = field(default_factory=list)


class NotificationDispatcher:
    """Routes alert events to recipients and hands the case to its owner."""

    def __init__(
        self,
        registry: AssignmentRegistry,
        resolver: RecipientResolver,
        strategies: StrategyEngine,
        preferences: PreferenceRepository,
        preference_filter: PreferenceFilter,
        notifications: NotificationRepository,
        publisher: Publisher,
        directory: DirectoryRepository,
        channels: Sequence[NotificationChannel] = (),
        handoff: CaseServiceClient | None = None,
        config: NotificationConfig | None = None,
        routing: RoutingConfig | None = None,
        metrics: MetricsCollector | None = None,
    ) -> None:
        self._registry = registry
        self._resolver = resolver
        self._strategies = strategies
        self._preferences = preferences
        self._filter = preference_filter
        self._notifications = notifications
        self._publisher = publisher
        self._directory = directory
        self._channels = list(channels)
        self._handoff = handoff or CaseServiceClient()
        self._config = config or NotificationConfig()
        self._routing = routing or RoutingConfig()
        self._metrics = metrics or get_metrics()

    @property
    def channels(self) -> list[NotificationChannel]:
        return self._channels

    async def dispatch(self, event: AlertEvent) -> DispatchReport:
        """Route one alert event.

        Raises:
            PersistenceUnavailableError: The notification store could not be
                written; the caller should answer 5xx so the sender retries.
        """
        started = time.perf_counter()
        with traced(
            _tracer,
            "dispatch",
            {"rule_id": event.rule_id, "external_event_id": event.external_event_id},
        ):
            report = await self._dispatch(event)

        self._metrics.record_dispatch(report.status, time.perf_counter() - started)
        logger.info(
            "Dispatched %s/%s: status=%s created=%d duplicates=%d pushed=%d "
            "suppressed=%d assignee=%s channel_errors=%d",
            event.rule_id, event.external_event_id, report.status,
            report.records_created, report.duplicates, report.live_pushed,
            report.suppressed, report.assignee_id, len(report.channel_errors),
        )
        return report

    async def _dispatch(self, event: AlertEvent) -> DispatchReport:
        assignment = await self._registry.find_assignment(event.rule_id)
        if assignment is None:
            return await self._route_unassigned(event, None, reason="no_assignment")

        if not assignment.active:
            logger.debug("Rule %s is inactive, skipping event", event.rule_id)
            return DispatchReport(
                rule_id=event.rule_id,
                external_event_id=event.external_event_id,
                status="inactive",
            )

        resolution = await self._resolver.resolve_with_teams(assignment)
        if resolution.is_empty:
            return await self._route_unassigned(event, assignment, reason="no_recipients")

        return await self._deliver(event, assignment, resolution)

    async def _deliver(
        self,
        event: AlertEvent,
        assignment: RuleAssignment,
        resolution: Resolution,
    ) -> DispatchReport:
        recipients = resolution.recipients
        severity = event.severity or assignment.severity
        report = DispatchReport(
            rule_id=event.rule_id,
            external_event_id=event.external_event_id,
            status="delivered",
            recipient_count=len(recipients),
        )

        new_records = await self._persist(event, recipients, severity, event.type)
        report.records_created = len(new_records)
        report.duplicates = len(recipients) - len(new_records)
        self._metrics.record_duplicates(report.duplicates)

        if not new_records:
            logger.info(
                "Duplicate event %s/%s, nothing new to deliver",
                event.rule_id, event.external_event_id,
            )
            report.status = "duplicate"
            return report

        report.created = True
        self._metrics.record_notification_created(severity.value, len(new_records))

        preferences = await self._preferences.get_many(r.recipient_id for r in new_records)
        users = await self._load_users(new_records)

        assignee, outcomes = await asyncio.gather(
            self._select_and_hand_off(event, assignment, resolution, report),
            asyncio.gather(*(
                self._deliver_one(
                    record,
                    preferences.get(record.recipient_id)
                    or self._preferences.default_for(record.recipient_id),
                    users.get(record.recipient_id),
                )
                for record in new_records
            )),
        )
        report.assignee_id = assignee
        self._collect(report, outcomes)
        return report

    async def _route_unassigned(
        self,
        event: AlertEvent,
        assignment: RuleAssignment | None,
        reason: str,
    ) -> DispatchReport:
        """Notify the fallback role and hand the case off with no owner."""
        self._metrics.record_unassigned(reason)
        severity = event.severity or (assignment.severity if assignment else Severity.MEDIUM)
        report = DispatchReport(
            rule_id=event.rule_id,
            external_event_id=event.external_event_id,
            status="no_recipients",
            unassigned=True,
        )

        admins = await self._directory.get_user_ids_by_role(self._routing.fallback_role)
        new_records = await self._persist(event, admins, severity, UNASSIGNED_TYPE)
        report.records_created = len(new_records)
        report.duplicates = len(admins) - len(new_records)
        self._metrics.record_duplicates(report.duplicates)

        if admins and not new_records:
            report.status = "duplicate"
            return report

        logger.warning(
            "No recipients for rule %s (%s), routed to %d %s user(s)",
            event.rule_id, reason, len(admins), self._routing.fallback_role,
        )

        if new_records:
            report.created = True
            self._metrics.record_notification_created(severity.value, len(new_records))
            # One frame for the pool; per-admin ids are picked up on reconcile
            frame = {**new_records[0].to_frame(), "id": None, "unassigned": True}
            if await self._publish(ADMIN_UNASSIGNED_TOPIC, frame):
                report.live_pushed = 1

        await self._hand_off(event, None, report)
        return report

    async def _persist(
        self,
        event: AlertEvent,
        recipients: Sequence[int],
        severity: Severity,
        notification_type: str,
    ) -> list[NotificationRecord]:
        """Create records concurrently; returns only the newly created ones."""
        records = [
            NotificationRecord(
                recipient_id=recipient_id,
                rule_id=event.rule_id,
                external_event_id=event.external_event_id,
                severity=severity,
                type=notification_type,
                title=event.title,
                message=event.message,
                payload=event.payload,
            )
            for recipient_id in recipients
        ]
        created = await asyncio.gather(
            *(self._notifications.create_if_absent(record) for record in records)
        )
        return [record for record in created if record is not None]

    async def _load_users(self, records: Sequence[NotificationRecord]) -> dict[int, User]:
        # Only the email channel needs directory details
        if not self._channels:
            return {}
        return await self._directory.get_users(r.recipient_id for r in records)

    async def _select_and_hand_off(
        self,
        event: AlertEvent,
        assignment: RuleAssignment,
        resolution: Resolution,
        report: DispatchReport,
    ) -> int | None:
        assignee = await self._strategies.select_assignee(
            assignment, resolution.recipients, resolution.teams,
        )
        self._metrics.record_assignee(assignment.strategy.value)
        await self._hand_off(event, assignee, report)
        return assignee

    async def _hand_off(
        self,
        event: AlertEvent,
        assignee: int | None,
        report: DispatchReport,
    ) -> None:
        result = await self._handoff.hand_off(
            event.rule_id, assignee, event.external_event_id,
        )
        if result.error:
            self._metrics.handoff_errors.inc()
            report.handoff_error = result.error

    async def _deliver_one(
        self,
        record: NotificationRecord,
        preference: NotificationPreference,
        user: User | None,
    ) -> _DeliveryOutcome:
        outcome = _DeliveryOutcome()
        decision = self._filter.evaluate(preference, record)
        if not decision:
            logger.debug(
                "Notification %s for user %s suppressed by preference (%s)",
                record.id, record.recipient_id, decision.reason,
            )
            self._metrics.record_suppressed(decision.reason)
            outcome.suppressed = True
            return outcome

        if preference.in_app:
            outcome.pushed = await self._publish(
                user_topic(record.recipient_id), record.to_frame(),
            )

        outcome.errors = await self._run_channels(record, preference, user)
        return outcome

    async def _publish(self, topic: str, frame: dict[str, Any]) -> bool:
        try:
            delivered = await self._publisher.publish(topic, frame)
        except Exception as e:
            # The record is already stored; clients reconcile on reconnect
            logger.warning("Live publish to %s failed: %s", topic, e)
            return False
        self._metrics.record_frame_published(topic, delivered)
        return True

    async def _run_channels(
        self,
        record: NotificationRecord,
        preference: NotificationPreference,
        user: User | None,
    ) -> list[ChannelError]:
        enabled = [ch for ch in self._channels if getattr(preference, ch.name, False)]
        if not enabled:
            return []
        results = await asyncio.gather(
            *(self._send_bounded(ch, record, user) for ch in enabled)
        )
        return [error for error in results if error is not None]

    async def _send_bounded(
        self,
        channel: NotificationChannel,
        record: NotificationRecord,
        user: User | None,
    ) -> ChannelError | None:
        timeout = self._config.channel_timeout_seconds
        try:
            async with asyncio.timeout(timeout):
                await channel.send(record, user)
            return None
        except ChannelDeliveryError as e:
            message = e.message
        except TimeoutError:
            message = f"no response within {timeout:.1f}s"

        logger.warning(
            "Channel %s failed for notification %s (user %s): %s",
            channel.name, record.id, record.recipient_id, message,
        )
        self._metrics.record_channel_error(channel.name)
        return ChannelError(channel=channel.name, recipient_id=record.recipient_id, error=message)

    @staticmethod
    def _collect(report: DispatchReport, outcomes: Sequence[_DeliveryOutcome]) -> None:
        for outcome in outcomes:
            report.live_pushed += int(outcome.pushed)
            report.suppressed += int(outcome.suppressed)
            report.channel_errors.extend(outcome.errors)

"""
Prometheus metrics for monitoring alert routing and delivery.

Defines and exposes metrics for:
- Notification creation, deduplication and preference suppression
- Live frames published to the transport
- Channel adapter failures
- Assignee selection per strategy
- Dispatch latency and worker queue depth

Metrics are exposed via HTTP endpoint for Prometheus scraping.
"""

import logging

from prometheus_client import (
    REGISTRY,
    Counter,
    Gauge,
    Histogram,
    start_http_server,
)

from src.config.settings import get_settings

logger = logging.getLogger(__name__)

# Buckets for latency histograms (in seconds)
LATENCY_BUCKETS = (0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0)


class MetricsCollector:
    """
    Prometheus metrics collector for the alert router.

    Usage:
        metrics = get_metrics()
        metrics.start_server()

        metrics.notifications_created.labels(severity="HIGH").inc()
        metrics.record_dispatch("delivered", latency=0.12)
    """

    def __init__(self):
        """Initialize Prometheus metrics."""

        # Dispatch counters
        self.events_dispatched = Counter(
            "case_router_events_dispatched_total",
            "Total alert events dispatched",
            ["status"],  # delivered, duplicate, no_recipients, inactive
        )

        self.notifications_created = Counter(
            "case_router_notifications_created_total",
            "Total notification records created",
            ["severity"],
        )

        self.notifications_deduplicated = Counter(
            "case_router_notifications_deduplicated_total",
            "Total notifications skipped because the dedup key existed",
        )

        self.notifications_suppressed = Counter(
            "case_router_notifications_suppressed_total",
            "Notifications persisted but not pushed because of user preference",
            ["reason"],  # type, severity, quiet_hours
        )

        self.unassigned_routed = Counter(
            "case_router_unassigned_routed_total",
            "Events routed to the unassigned pool",
            ["reason"],  # no_assignment, no_recipients
        )

        # Assignment
        self.assignee_selected = Counter(
            "case_router_assignee_selected_total",
            "Assignee selections by strategy",
            ["strategy"],
        )

        self.handoff_errors = Counter(
            "case_router_handoff_errors_total",
            "Failed hand-offs to the Case Service",
        )

        # Delivery
        self.frames_published = Counter(
            "case_router_frames_published_total",
            "Live frames published to the transport",
            ["kind"],  # user, team, admin
        )

        self.frames_dropped = Counter(
            "case_router_frames_dropped_total",
            "Live frames dropped because a session queue was full",
        )

        self.channel_errors = Counter(
            "case_router_channel_errors_total",
            "Channel adapter delivery failures",
            ["channel"],
        )

        # Latency
        self.dispatch_latency = Histogram(
            "case_router_dispatch_latency_seconds",
            "Time to dispatch one alert event end to end",
            buckets=LATENCY_BUCKETS,
        )

        # Gauges
        self.live_sessions = Gauge(
            "case_router_live_sessions",
            "Number of open live transport sessions",
        )

        self.worker_queue_depth = Gauge(
            "case_router_worker_queue_depth",
            "Events waiting for a dispatch worker",
        )

        logger.info("Prometheus metrics initialized")

    def start_server(self, port: int | None = None) -> None:
        """
        Start Prometheus metrics HTTP server.

        Args:
            port: Port to expose metrics on (default from settings)
        """
        settings = get_settings()
        port = port or settings.metrics_port

        start_http_server(port, registry=REGISTRY)
        logger.info(f"Prometheus metrics server started on port {port}")

    # Convenience methods

    def record_dispatch(self, status: str, latency: float | None = None) -> None:
        """
        Record the outcome of one dispatch.

        Args:
            status: Report status
            latency: Optional dispatch latency in seconds
        """
        self.events_dispatched.labels(status=status).inc()
        if latency is not None:
            self.dispatch_latency.observe(latency)

    def record_notification_created(self, severity: str, count: int = 1) -> None:
        self.notifications_created.labels(severity=severity).inc(count)

    def record_duplicates(self, count: int) -> None:
        if count > 0:
            self.notifications_deduplicated.inc(count)

    def record_suppressed(self, reason: str) -> None:
        self.notifications_suppressed.labels(reason=reason).inc()

    def record_unassigned(self, reason: str) -> None:
        self.unassigned_routed.labels(reason=reason).inc()

    def record_assignee(self, strategy: str) -> None:
        self.assignee_selected.labels(strategy=strategy).inc()

    def record_channel_error(self, channel: str) -> None:
        self.channel_errors.labels(channel=channel).inc()

    def record_frame_published(self, topic: str, delivered: int = 1) -> None:
        """
        Record a live publish.

        Args:
            topic: Topic the frame went to (``user.5``, ``team.2``, ``admin.unassigned``)
            delivered: Sessions that received the frame
        """
        kind = topic.split(".", 1)[0]
        self.frames_published.labels(kind=kind).inc(delivered)

    def record_frame_dropped(self) -> None:
        self.frames_dropped.inc()

    def set_live_sessions(self, count: int) -> None:
        self.live_sessions.set(count)

    def set_worker_queue_depth(self, depth: int) -> None:
        self.worker_queue_depth.set(depth)


# Global metrics instance
_metrics: MetricsCollector | None = None


def get_metrics() -> MetricsCollector:
    """Get global metrics collector instance."""
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector()
    return _metrics

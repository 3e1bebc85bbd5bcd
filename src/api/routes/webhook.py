"""Inbound alert webhooks from the alerting engine and Grafana."""

from typing import Any

import structlog
from fastapi import APIRouter, Body, Depends, status

from src.api.auth import verify_api_key
from src.api.dependencies import get_worker_pool
from src.api.models import (
    AlertEventRequest,
    ErrorResponse,
    GrafanaWebhookResponse,
    WebhookResponse,
)
from src.notifications.grafana import parse_grafana_webhook
from src.notifications.schemas import AlertEvent
from src.notifications.worker import EventWorkerPool

logger = structlog.get_logger(__name__)
router = APIRouter()

_ERRORS = {
    401: {"model": ErrorResponse, "description": "Invalid API key"},
    422: {"model": ErrorResponse, "description": "Malformed event"},
    503: {"model": ErrorResponse, "description": "Notification store unavailable, retry"},
}


@router.post(
    "/webhook",
    status_code=status.HTTP_202_ACCEPTED,
    response_model=WebhookResponse,
    responses=_ERRORS,
    summary="Receive an alert event",
    description=(
        "Route one alert event to the rule's recipients. Replaying an event "
        "with the same ruleId and externalEventId creates nothing new."
    ),
)
async def receive_alert(
    request: AlertEventRequest,
    api_key: str = Depends(verify_api_key),
    workers: EventWorkerPool = Depends(get_worker_pool),
) -> WebhookResponse:
    event = AlertEvent(
        rule_id=request.rule_id,
        external_event_id=request.external_event_id,
        severity=request.severity,
        type=request.type,
        payload=request.payload,
    )
    report = await workers.submit(event)
    return WebhookResponse(
        created=report.created,
        recipient_count=report.recipient_count,
        status=report.status,
    )


@router.post(
    "/webhook/grafana",
    status_code=status.HTTP_202_ACCEPTED,
    response_model=GrafanaWebhookResponse,
    responses=_ERRORS,
    summary="Receive a Grafana alerting webhook",
    description="Dispatch every alert in a Grafana unified-alerting notification.",
)
async def receive_grafana_alert(
    body: dict[str, Any] = Body(...),
    api_key: str = Depends(verify_api_key),
    workers: EventWorkerPool = Depends(get_worker_pool),
) -> GrafanaWebhookResponse:
    parsed = parse_grafana_webhook(body)

    created = 0
    recipient_count = 0
    for event in parsed.events:
        report = await workers.submit(event)
        created += int(report.created)
        recipient_count += report.recipient_count

    logger.info(
        "Grafana webhook processed",
        processed=len(parsed.events),
        created=created,
        skipped=parsed.skipped,
    )
    return GrafanaWebhookResponse(
        processed=len(parsed.events),
        created=created,
        recipient_count=recipient_count,
        skipped=parsed.skipped,
    )

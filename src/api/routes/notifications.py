"""Notification history, unread counts and read receipts.

``GET /notifications?since=<id>`` is the reconciliation query live clients
run after a reconnect; results are in ascending id order so the last item's
id is the next cursor.
"""

import structlog
from fastapi import APIRouter, Depends, Query

from src.api.auth import verify_api_key
from src.api.dependencies import get_notification_config, get_notification_repository
from src.api.models import (
    MarkReadResponse,
    NotificationItem,
    NotificationListResponse,
    UnreadCountResponse,
)
from src.notifications.config import NotificationConfig
from src.notifications.repository import NotificationRepository

logger = structlog.get_logger(__name__)
router = APIRouter(prefix="/notifications")


@router.get(
    "",
    response_model=NotificationListResponse,
    summary="List a user's notifications",
)
async def list_notifications(
    user_id: int = Query(..., description="Recipient"),
    since: int | None = Query(default=None, ge=0, description="Only ids greater than this"),
    unread_only: bool = Query(default=False),
    limit: int | None = Query(default=None, ge=1, le=1000),
    api_key: str = Depends(verify_api_key),
    repo: NotificationRepository = Depends(get_notification_repository),
    config: NotificationConfig = Depends(get_notification_config),
) -> NotificationListResponse:
    records = await repo.list_for_user(
        user_id,
        since_id=since,
        unread_only=unread_only,
        limit=min(limit or config.history_page_limit, config.history_page_limit),
    )
    items = [NotificationItem.from_record(r) for r in records]
    return NotificationListResponse(
        notifications=items,
        total=len(items),
        last_id=items[-1].id if items else since,
    )


@router.get(
    "/unread-count",
    response_model=UnreadCountResponse,
    summary="Count unread notifications",
)
async def unread_count(
    user_id: int = Query(...),
    api_key: str = Depends(verify_api_key),
    repo: NotificationRepository = Depends(get_notification_repository),
) -> UnreadCountResponse:
    return UnreadCountResponse(user_id=user_id, unread=await repo.count_unread(user_id))


@router.post(
    "/mark-all-read",
    response_model=MarkReadResponse,
    summary="Mark every notification read",
)
async def mark_all_read(
    user_id: int = Query(...),
    api_key: str = Depends(verify_api_key),
    repo: NotificationRepository = Depends(get_notification_repository),
) -> MarkReadResponse:
    updated = await repo.mark_all_read(user_id)
    logger.info("Notifications marked read", user_id=user_id, updated=updated)
    return MarkReadResponse(updated=updated)


@router.post(
    "/{notification_id}/read",
    response_model=MarkReadResponse,
    summary="Mark one notification read",
    description="Already-read or foreign notifications report ``updated: 0``.",
)
async def mark_read(
    notification_id: int,
    user_id: int = Query(...),
    api_key: str = Depends(verify_api_key),
    repo: NotificationRepository = Depends(get_notification_repository),
) -> MarkReadResponse:
    updated = await repo.mark_read(user_id, notification_id)
    return MarkReadResponse(updated=int(updated))

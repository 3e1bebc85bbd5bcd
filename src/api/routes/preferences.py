"""Per-user notification preference endpoints."""

from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import structlog
from fastapi import APIRouter, Depends

from src.api.auth import verify_api_key
from src.api.dependencies import get_preference_repository
from src.api.models import ErrorResponse, PreferenceItem, PreferenceRequest
from src.assignments.errors import ValidationError
from src.notifications.preferences import PreferenceRepository
from src.notifications.schemas import NotificationPreference

logger = structlog.get_logger(__name__)
router = APIRouter(prefix="/preferences")


@router.get(
    "/{user_id}",
    response_model=PreferenceItem,
    summary="Get a user's preference",
    description="Users who never saved a preference get the configured defaults.",
)
async def get_preference(
    user_id: int,
    api_key: str = Depends(verify_api_key),
    repo: PreferenceRepository = Depends(get_preference_repository),
) -> PreferenceItem:
    return PreferenceItem.from_preference(await repo.get(user_id))


@router.put(
    "/{user_id}",
    response_model=PreferenceItem,
    responses={422: {"model": ErrorResponse, "description": "Invalid preference"}},
    summary="Replace a user's preference",
)
async def put_preference(
    user_id: int,
    request: PreferenceRequest,
    api_key: str = Depends(verify_api_key),
    repo: PreferenceRepository = Depends(get_preference_repository),
) -> PreferenceItem:
    try:
        ZoneInfo(request.timezone)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ValidationError("timezone", f"unknown time zone {request.timezone!r}") from e

    preference = NotificationPreference(
        user_id=user_id,
        severity_threshold=request.severity_threshold,
        enabled_types=frozenset(request.enabled_types),
        quiet_hours_start=request.quiet_hours_start,
        quiet_hours_end=request.quiet_hours_end,
        timezone=request.timezone,
        in_app=request.in_app,
        desktop=request.desktop,
        email=request.email,
    )
    saved = await repo.save(preference)
    logger.info(
        "Preference saved",
        user_id=user_id,
        severity_threshold=saved.severity_threshold.value,
        quiet_hours=saved.has_quiet_hours,
    )
    return PreferenceItem.from_preference(saved)

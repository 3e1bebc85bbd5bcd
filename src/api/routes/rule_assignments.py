"""Rule assignment CRUD endpoints."""

import structlog
from fastapi import APIRouter, Depends, Query

from src.api.auth import verify_api_key
from src.api.dependencies import get_registry
from src.api.models import (
    AssignmentItem,
    AssignmentListResponse,
    AssignmentRequest,
    ErrorResponse,
    MembersRequest,
)
from src.assignments.registry import AssignmentRegistry
from src.assignments.schemas import AssignmentSpec

logger = structlog.get_logger(__name__)
router = APIRouter(prefix="/rule-assignments")

_NOT_FOUND = {404: {"model": ErrorResponse, "description": "No assignment for the rule"}}
_INVALID = {422: {"model": ErrorResponse, "description": "Invalid assignment"}}


@router.get(
    "",
    response_model=AssignmentListResponse,
    summary="List rule assignments",
)
async def list_assignments(
    active: bool | None = Query(default=None, description="Filter by active flag"),
    user_id: int | None = Query(default=None, description="Only rules that name this user directly"),
    api_key: str = Depends(verify_api_key),
    registry: AssignmentRegistry = Depends(get_registry),
) -> AssignmentListResponse:
    if user_id is not None:
        assignments = await registry.assignments_for_user(user_id)
        if active is not None:
            assignments = [a for a in assignments if a.active == active]
    else:
        assignments = await registry.list_assignments(active=active)

    items = [AssignmentItem.from_assignment(a) for a in assignments]
    return AssignmentListResponse(assignments=items, total=len(items))


@router.get(
    "/{rule_id}",
    response_model=AssignmentItem,
    responses=_NOT_FOUND,
    summary="Get a rule assignment",
)
async def get_assignment(
    rule_id: str,
    api_key: str = Depends(verify_api_key),
    registry: AssignmentRegistry = Depends(get_registry),
) -> AssignmentItem:
    assignment = await registry.get_assignment(rule_id)
    return AssignmentItem.from_assignment(assignment)


@router.put(
    "/{rule_id}",
    response_model=AssignmentItem,
    responses=_INVALID,
    summary="Create or replace a rule assignment",
    description="Idempotent: writing the stored state again changes nothing.",
)
async def upsert_assignment(
    rule_id: str,
    request: AssignmentRequest,
    api_key: str = Depends(verify_api_key),
    registry: AssignmentRegistry = Depends(get_registry),
) -> AssignmentItem:
    spec = AssignmentSpec(
        severity=request.severity,
        category=request.category,
        strategy=request.strategy,
        active=request.active,
        user_ids=request.user_ids,
        team_ids=request.team_ids,
        rule_name=request.rule_name,
        description=request.description,
    )
    assignment = await registry.upsert_assignment(rule_id, spec)
    return AssignmentItem.from_assignment(assignment)


@router.post(
    "/{rule_id}/members",
    response_model=AssignmentItem,
    responses={**_NOT_FOUND, **_INVALID},
    summary="Add users or teams to a rule assignment",
)
async def add_members(
    rule_id: str,
    request: MembersRequest,
    api_key: str = Depends(verify_api_key),
    registry: AssignmentRegistry = Depends(get_registry),
) -> AssignmentItem:
    assignment = await registry.add_recipients(rule_id, request.user_ids, request.team_ids)
    return AssignmentItem.from_assignment(assignment)


@router.delete(
    "/{rule_id}/members",
    response_model=AssignmentItem,
    responses={**_NOT_FOUND, **_INVALID},
    summary="Remove users or teams from a rule assignment",
    description="Ids that are not assigned are ignored.",
)
async def remove_members(
    rule_id: str,
    request: MembersRequest,
    api_key: str = Depends(verify_api_key),
    registry: AssignmentRegistry = Depends(get_registry),
) -> AssignmentItem:
    assignment = await registry.remove_recipients(rule_id, request.user_ids, request.team_ids)
    return AssignmentItem.from_assignment(assignment)

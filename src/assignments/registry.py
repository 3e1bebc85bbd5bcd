"""Assignment registry: the single owner of rule assignments and cursors.

Every read returns an immutable ``RuleAssignment`` snapshot. The round-robin
cursor only moves through ``next_cursor``, which serializes callers per rule
key; different rules never wait on each other.
"""

import asyncio
from collections.abc import Iterable, Mapping
from typing import Any

import structlog

from src.assignments.errors import NotFoundError, ValidationError
from src.assignments.repository import AssignmentRepository
from src.assignments.schemas import AssignmentSpec, RuleAssignment, parse_ids

logger = structlog.get_logger(__name__)


class AssignmentRegistry:
    """CRUD and cursor API over rule assignments."""

    def __init__(self, repository: AssignmentRepository) -> None:
        self._repo = repository
        self._cursor_locks: dict[str, asyncio.Lock] = {}

    def _lock_for(self, rule_id: str) -> asyncio.Lock:
        # setdefault is atomic on the event loop thread
        return self._cursor_locks.setdefault(rule_id, asyncio.Lock())

    async def get_assignment(self, rule_id: str) -> RuleAssignment:
        """Return the assignment for ``rule_id``.

        Raises:
            NotFoundError: No assignment exists for the rule.
        """
        assignment = await self._repo.get(rule_id)
        if assignment is None:
            raise NotFoundError(rule_id)
        return assignment

    async def find_assignment(self, rule_id: str) -> RuleAssignment | None:
        """Like ``get_assignment`` but returns None for unknown rules."""
        return await self._repo.get(rule_id)

    async def list_assignments(self, active: bool | None = None) -> list[RuleAssignment]:
        return await self._repo.list_all(active=active)

    async def assignments_for_user(self, user_id: int) -> list[RuleAssignment]:
        return await self._repo.list_for_user(user_id)

    async def upsert_assignment(
        self,
        rule_id: str,
        spec: AssignmentSpec | Mapping[str, Any],
    ) -> RuleAssignment:
        """Create or replace the assignment for ``rule_id``.

        Re-applying a spec equal to the stored state performs no write.

        Raises:
            ValidationError: Unknown severity/strategy/category or bad ids.
        """
        if not rule_id or not str(rule_id).strip():
            raise ValidationError("rule_id", "must be a non-empty string")
        if not isinstance(spec, AssignmentSpec):
            spec = AssignmentSpec.from_dict(spec)

        existing = await self._repo.get(rule_id)
        if existing is not None and existing.matches(spec):
            logger.debug("Assignment unchanged, skipping write", rule_id=rule_id)
            return existing

        saved = await self._repo.save(rule_id, spec)
        logger.info(
            "Rule assignment upserted",
            rule_id=rule_id,
            created=existing is None,
            strategy=saved.strategy.value,
            severity=saved.severity.value,
        )
        return saved

    async def add_recipients(
        self,
        rule_id: str,
        user_ids: Iterable[int] = (),
        team_ids: Iterable[int] = (),
    ) -> RuleAssignment:
        """Add users/teams to an existing assignment (already-present ids are no-ops)."""
        users = parse_ids(user_ids, "user_ids")
        teams = parse_ids(team_ids, "team_ids")
        current = await self.get_assignment(rule_id)

        if users <= current.user_ids and teams <= current.team_ids:
            return current

        await self._repo.add_members(rule_id, users, teams)
        return await self.get_assignment(rule_id)

    async def remove_recipients(
        self,
        rule_id: str,
        user_ids: Iterable[int] = (),
        team_ids: Iterable[int] = (),
    ) -> RuleAssignment:
        """Remove users/teams from an assignment.

        Ids that are not currently assigned are ignored.

        Raises:
            NotFoundError: No assignment exists for the rule.
        """
        users = parse_ids(user_ids, "user_ids")
        teams = parse_ids(team_ids, "team_ids")
        current = await self.get_assignment(rule_id)

        present_users = users & current.user_ids
        present_teams = teams & current.team_ids
        if not present_users and not present_teams:
            return current

        await self._repo.remove_members(rule_id, present_users, present_teams)
        logger.info(
            "Recipients removed from rule assignment",
            rule_id=rule_id,
            user_ids=sorted(present_users),
            team_ids=sorted(present_teams),
        )
        return await self.get_assignment(rule_id)

    async def next_cursor(self, rule_id: str) -> int:
        """Return the rule's round-robin position and advance it by one.

        Calls for the same rule are serialized; the repository performs the
        read-increment in a single statement so the cursor survives
        restarts and other processes.
        """
        async with self._lock_for(rule_id):
            return await self._repo.advance_cursor(rule_id)

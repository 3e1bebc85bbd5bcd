"""Assignee selection strategies.

Each strategy picks exactly one case owner from the resolved recipient
list, or ``None`` when the list is empty. Recipients arrive sorted by user
id, which keeps every strategy deterministic for a given cursor and load
snapshot.
"""

from collections.abc import Mapping, Sequence
from typing import assert_never

import structlog

from src.assignments.registry import AssignmentRegistry
from src.assignments.resolver import DirectoryRepository
from src.assignments.schemas import RuleAssignment, Strategy, Team

logger = structlog.get_logger(__name__)


class StrategyEngine:
    """Selects a single assignee for a rule according to its strategy."""

    def __init__(
        self,
        registry: AssignmentRegistry,
        directory: DirectoryRepository,
    ) -> None:
        self._registry = registry
        self._directory = directory

    async def select_assignee(
        self,
        assignment: RuleAssignment,
        recipients: Sequence[int],
        teams: Mapping[int, Team] | None = None,
    ) -> int | None:
        """Pick the assignee for ``assignment`` from ``recipients``.

        Args:
            assignment: Snapshot of the rule assignment.
            recipients: Resolved recipients in ascending id order.
            teams: Teams already loaded by the resolver. Only TEAM_BASED
                reads them; they are fetched when not supplied.

        Returns:
            The chosen user id, or None when there are no recipients.
        """
        if not recipients:
            return None

        match assignment.strategy:
            case Strategy.MANUAL:
                chosen = recipients[0]
            case Strategy.ROUND_ROBIN:
                chosen = await self._round_robin(assignment.rule_id, recipients)
            case Strategy.LOAD_BASED:
                chosen = await self._least_loaded(recipients)
            case Strategy.TEAM_BASED:
                chosen = await self._team_lead(assignment, recipients, teams)
            case _:
                assert_never(assignment.strategy)

        logger.debug(
            "Assignee selected",
            rule_id=assignment.rule_id,
            strategy=assignment.strategy.value,
            assignee_id=chosen,
            candidates=len(recipients),
        )
        return chosen

    async def _round_robin(self, rule_id: str, recipients: Sequence[int]) -> int:
        position = await self._registry.next_cursor(rule_id)
        return recipients[position % len(recipients)]

    async def _least_loaded(self, recipients: Sequence[int]) -> int:
        counts = await self._directory.get_open_case_counts(recipients)
        # min() keeps the first of equal keys, so ties go to recipient order
        return min(recipients, key=lambda user_id: counts.get(user_id, 0))

    async def _team_lead(
        self,
        assignment: RuleAssignment,
        recipients: Sequence[int],
        teams: Mapping[int, Team] | None,
    ) -> int:
        if teams is None and assignment.team_ids:
            teams = await self._directory.get_teams(assignment.team_ids)

        present = set(recipients)
        for team_id in sorted(teams or {}):
            lead = teams[team_id].lead_user_id
            if lead is not None and lead in present:
                return lead

        logger.debug(
            "No team lead among recipients, falling back to load-based",
            rule_id=assignment.rule_id,
        )
        return await self._least_loaded(recipients)

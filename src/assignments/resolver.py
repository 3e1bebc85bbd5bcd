"""Recipient resolution: expand an assignment into a deterministic user list.

Teams are expanded into their current members and unioned with the directly
assigned users. The result is sorted ascending by user id, because the
round-robin and team-based strategies depend on a stable order.
"""

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from src.assignments.schemas import RuleAssignment, Team, TeamMember, User
from src.storage.database import Database

logger = logging.getLogger(__name__)


class DirectoryRepository:
    """Read access to the user/team directory owned by the CRUD layer."""

    def __init__(self, database: Database) -> None:
        self._db = database

    async def get_teams(self, team_ids: Iterable[int]) -> dict[int, Team]:
        """Load teams with members in roster order.

        Inactive teams and inactive users are excluded, so a team whose
        members have all been deactivated resolves to no one.
        """
        ids = sorted(set(team_ids))
        if not ids:
            return {}
        sql = """
            SELECT t.team_id, t.name, u.user_id, tm.is_lead
            FROM teams t
            LEFT JOIN team_members tm ON tm.team_id = t.team_id
            LEFT JOIN users u ON u.user_id = tm.user_id AND u.active
            WHERE t.team_id = ANY($1::bigint[]) AND t.active
            ORDER BY t.team_id, tm.position, tm.user_id
        """
        rows = await self._db.fetch(sql, ids)

        names: dict[int, str] = {}
        members: dict[int, list[TeamMember]] = {}
        for row in rows:
            team_id = row["team_id"]
            names[team_id] = row["name"]
            bucket = members.setdefault(team_id, [])
            if row["user_id"] is not None:
                bucket.append(TeamMember(user_id=row["user_id"], is_lead=row["is_lead"]))

        return {
            team_id: Team(team_id=team_id, name=names[team_id], members=tuple(members[team_id]))
            for team_id in names
        }

    async def get_users(self, user_ids: Iterable[int]) -> dict[int, User]:
        ids = sorted(set(user_ids))
        if not ids:
            return {}
        sql = """
            SELECT u.user_id, u.login, u.email, u.role, u.open_case_count,
                   COALESCE(
                       array_agg(tm.team_id ORDER BY tm.team_id)
                           FILTER (WHERE tm.team_id IS NOT NULL),
                       '{}'
                   ) AS team_ids
            FROM users u
            LEFT JOIN team_members tm ON tm.user_id = u.user_id
            WHERE u.user_id = ANY($1::bigint[]) AND u.active
            GROUP BY u.user_id
        """
        rows = await self._db.fetch(sql, ids)
        return {row["user_id"]: _row_to_user(row) for row in rows}

    async def get_user(self, user_id: int) -> User | None:
        users = await self.get_users([user_id])
        return users.get(user_id)

    async def get_open_case_counts(self, user_ids: Iterable[int]) -> dict[int, int]:
        """Point-in-time snapshot of open case counts."""
        ids = sorted(set(user_ids))
        if not ids:
            return {}
        rows = await self._db.fetch(
            "SELECT user_id, open_case_count FROM users WHERE user_id = ANY($1::bigint[])",
            ids,
        )
        return {row["user_id"]: row["open_case_count"] for row in rows}

    async def get_inactive_user_ids(self, user_ids: Iterable[int]) -> set[int]:
        """Ids among ``user_ids`` that belong to deactivated users."""
        ids = sorted(set(user_ids))
        if not ids:
            return set()
        rows = await self._db.fetch(
            "SELECT user_id FROM users WHERE user_id = ANY($1::bigint[]) AND NOT active",
            ids,
        )
        return {row["user_id"] for row in rows}

    async def get_user_ids_by_role(self, role: str) -> list[int]:
        rows = await self._db.fetch(
            "SELECT user_id FROM users WHERE role = $1 AND active ORDER BY user_id",
            role,
        )
        return [row["user_id"] for row in rows]

    async def get_user_team_ids(self, user_id: int) -> list[int]:
        rows = await self._db.fetch(
            "SELECT team_id FROM team_members WHERE user_id = $1 ORDER BY team_id",
            user_id,
        )
        return [row["team_id"] for row in rows]


@dataclass(frozen=True)
class Resolution:
    """Resolved recipients plus the teams that were expanded to get them."""

    recipients: tuple[int, ...]
    teams: dict[int, Team] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return not self.recipients


class RecipientResolver:
    """Expands assignments into sorted, de-duplicated recipient tuples."""

    def __init__(self, directory: DirectoryRepository) -> None:
        self._directory = directory

    async def resolve(self, assignment: RuleAssignment) -> tuple[int, ...]:
        """Return the sorted recipient ids; an empty tuple means no recipients."""
        resolution = await self.resolve_with_teams(assignment)
        return resolution.recipients

    async def resolve_with_teams(self, assignment: RuleAssignment) -> Resolution:
        teams = await self._directory.get_teams(assignment.team_ids) if assignment.team_ids else {}

        # Deactivated users drop out whether assigned directly or through a team
        inactive = (
            await self._directory.get_inactive_user_ids(assignment.user_ids)
            if assignment.user_ids else set()
        )
        recipients: set[int] = set(assignment.user_ids) - inactive
        for team in teams.values():
            recipients.update(team.member_ids)

        missing = assignment.team_ids - teams.keys()
        if missing:
            logger.debug(
                "Rule %s references unknown or inactive teams: %s",
                assignment.rule_id, sorted(missing),
            )

        return Resolution(recipients=tuple(sorted(recipients)), teams=teams)


def _row_to_user(row: Any) -> User:
    return User(
        user_id=row["user_id"],
        login=row.get("login"),
        email=row.get("email"),
        role=row["role"],
        open_case_count=row["open_case_count"] or 0,
        team_ids=tuple(row.get("team_ids") or ()),
    )

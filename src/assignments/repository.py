"""Rule assignment repository backed by asyncpg.

Owns the ``rule_assignments`` table, its two membership tables and the
per-rule ``assignment_cursors`` used by round-robin selection.
"""

import logging
from typing import Any

from src.assignments.schemas import (
    AssignmentSpec,
    Category,
    RuleAssignment,
    Severity,
    Strategy,
)
from src.storage.database import Database

logger = logging.getLogger(__name__)

_SELECT_ASSIGNMENTS = """
    SELECT
        ra.rule_id, ra.rule_name, ra.description, ra.severity, ra.category,
        ra.strategy, ra.active, ra.created_at, ra.updated_at,
        COALESCE(
            (SELECT array_agg(u.user_id ORDER BY u.user_id)
             FROM rule_assignment_users u WHERE u.rule_id = ra.rule_id),
            '{}'
        ) AS user_ids,
        COALESCE(
            (SELECT array_agg(t.team_id ORDER BY t.team_id)
             FROM rule_assignment_teams t WHERE t.rule_id = ra.rule_id),
            '{}'
        ) AS team_ids
    FROM rule_assignments ra
"""


class AssignmentRepository:
    """Persistence for rule assignments and round-robin cursors."""

    def __init__(self, database: Database) -> None:
        self._db = database

    async def get(self, rule_id: str) -> RuleAssignment | None:
        """Load one assignment with its membership sets.

        Args:
            rule_id: External rule identifier.

        Returns:
            RuleAssignment or None if no row exists.
        """
        row = await self._db.fetchrow(
            _SELECT_ASSIGNMENTS + " WHERE ra.rule_id = $1", rule_id,
        )
        if row is None:
            return None
        return _row_to_assignment(row)

    async def list_all(self, active: bool | None = None) -> list[RuleAssignment]:
        """List assignments, optionally filtered by the active flag."""
        if active is None:
            rows = await self._db.fetch(_SELECT_ASSIGNMENTS + " ORDER BY ra.rule_id")
        else:
            rows = await self._db.fetch(
                _SELECT_ASSIGNMENTS + " WHERE ra.active = $1 ORDER BY ra.rule_id",
                active,
            )
        return [_row_to_assignment(row) for row in rows]

    async def list_for_user(self, user_id: int) -> list[RuleAssignment]:
        """Assignments naming the user directly or through one of their teams."""
        sql = _SELECT_ASSIGNMENTS + """
            WHERE ra.rule_id IN (
                SELECT rule_id FROM rule_assignment_users WHERE user_id = $1
                UNION
                SELECT rat.rule_id FROM rule_assignment_teams rat
                JOIN team_members tm ON tm.team_id = rat.team_id
                WHERE tm.user_id = $1
            )
            ORDER BY ra.rule_id
        """
        rows = await self._db.fetch(sql, user_id)
        return [_row_to_assignment(row) for row in rows]

    async def save(self, rule_id: str, spec: AssignmentSpec) -> RuleAssignment:
        """Upsert the assignment row and replace its membership sets.

        Runs in a single transaction so readers never see a half-applied
        membership change.
        """
        async with self._db.transaction() as conn:
            await conn.execute(
                """
                INSERT INTO rule_assignments (
                    rule_id, rule_name, description, severity, category,
                    strategy, active
                ) VALUES ($1, $2, $3, $4, $5, $6, $7)
                ON CONFLICT (rule_id) DO UPDATE SET
                    rule_name = EXCLUDED.rule_name,
                    description = EXCLUDED.description,
                    severity = EXCLUDED.severity,
                    category = EXCLUDED.category,
                    strategy = EXCLUDED.strategy,
                    active = EXCLUDED.active,
                    updated_at = NOW()
                """,
                rule_id,
                spec.rule_name,
                spec.description,
                spec.severity.value,
                spec.category.value,
                spec.strategy.value,
                spec.active,
            )
            await conn.execute(
                "DELETE FROM rule_assignment_users WHERE rule_id = $1", rule_id,
            )
            await conn.execute(
                "DELETE FROM rule_assignment_teams WHERE rule_id = $1", rule_id,
            )
            await self._insert_members(conn, rule_id, spec.user_ids, spec.team_ids)
            row = await conn.fetchrow(
                _SELECT_ASSIGNMENTS + " WHERE ra.rule_id = $1", rule_id,
            )

        logger.info(
            "Saved rule assignment %s (strategy=%s, users=%d, teams=%d)",
            rule_id, spec.strategy.value, len(spec.user_ids), len(spec.team_ids),
        )
        return _row_to_assignment(row)

    async def add_members(
        self,
        rule_id: str,
        user_ids: frozenset[int],
        team_ids: frozenset[int],
    ) -> None:
        async with self._db.transaction() as conn:
            await self._insert_members(conn, rule_id, user_ids, team_ids)
            await conn.execute(
                "UPDATE rule_assignments SET updated_at = NOW() WHERE rule_id = $1",
                rule_id,
            )

    async def remove_members(
        self,
        rule_id: str,
        user_ids: frozenset[int],
        team_ids: frozenset[int],
    ) -> None:
        """Delete membership rows; ids that are not present are ignored."""
        async with self._db.transaction() as conn:
            if user_ids:
                await conn.execute(
                    "DELETE FROM rule_assignment_users "
                    "WHERE rule_id = $1 AND user_id = ANY($2::bigint[])",
                    rule_id,
                    sorted(user_ids),
                )
            if team_ids:
                await conn.execute(
                    "DELETE FROM rule_assignment_teams "
                    "WHERE rule_id = $1 AND team_id = ANY($2::bigint[])",
                    rule_id,
                    sorted(team_ids),
                )
            await conn.execute(
                "UPDATE rule_assignments SET updated_at = NOW() WHERE rule_id = $1",
                rule_id,
            )

    async def advance_cursor(self, rule_id: str) -> int:
        """Atomically return the current cursor position and increment it.

        The cursor row is created on first use. The read and the increment
        happen in one statement, so the database never hands the same
        position out twice.
        """
        sql = """
            INSERT INTO assignment_cursors (rule_id, position)
            VALUES ($1, 1)
            ON CONFLICT (rule_id) DO UPDATE SET
                position = assignment_cursors.position + 1,
                updated_at = NOW()
            RETURNING position - 1
        """
        value = await self._db.fetchval(sql, rule_id)
        return int(value or 0)

    @staticmethod
    async def _insert_members(
        conn: Any,
        rule_id: str,
        user_ids: frozenset[int],
        team_ids: frozenset[int],
    ) -> None:
        if user_ids:
            await conn.executemany(
                "INSERT INTO rule_assignment_users (rule_id, user_id) "
                "VALUES ($1, $2) ON CONFLICT DO NOTHING",
                [(rule_id, uid) for uid in sorted(user_ids)],
            )
        if team_ids:
            await conn.executemany(
                "INSERT INTO rule_assignment_teams (rule_id, team_id) "
                "VALUES ($1, $2) ON CONFLICT DO NOTHING",
                [(rule_id, tid) for tid in sorted(team_ids)],
            )


def _row_to_assignment(row: Any) -> RuleAssignment:
    """Convert an asyncpg Record to a RuleAssignment."""
    return RuleAssignment(
        rule_id=row["rule_id"],
        rule_name=row.get("rule_name"),
        description=row.get("description"),
        severity=Severity(row["severity"]),
        category=Category(row["category"]),
        strategy=Strategy(row["strategy"]),
        active=row["active"],
        user_ids=frozenset(row.get("user_ids") or ()),
        team_ids=frozenset(row.get("team_ids") or ()),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )

"""Tests for AssignmentRepository and DirectoryRepository with a mocked Database."""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.assignments.repository import AssignmentRepository, _row_to_assignment
from src.assignments.resolver import DirectoryRepository
from src.assignments.schemas import AssignmentSpec, Category, Severity, Strategy


def _make_db_row(**overrides):
    """Create a mock asyncpg Record as a dict."""
    row = {
        "rule_id": "R1",
        "rule_name": "Revenue drop",
        "description": None,
        "severity": "HIGH",
        "category": "REVENUE_LOSS",
        "strategy": "ROUND_ROBIN",
        "active": True,
        "user_ids": [5, 7],
        "team_ids": [1],
        "created_at": datetime(2026, 2, 7, 10, 0, 0, tzinfo=timezone.utc),
        "updated_at": datetime(2026, 2, 7, 10, 0, 0, tzinfo=timezone.utc),
    }
    row.update(overrides)
    return row


@pytest.fixture
def mock_conn():
    conn = AsyncMock()
    conn.fetchrow.return_value = _make_db_row()
    return conn


@pytest.fixture
def mock_db(mock_conn):
    db = AsyncMock()

    @asynccontextmanager
    async def transaction():
        yield mock_conn

    db.transaction = MagicMock(side_effect=transaction)
    return db


@pytest.fixture
def repo(mock_db):
    return AssignmentRepository(mock_db)


class TestRowToAssignment:
    def test_basic_conversion(self):
        assignment = _row_to_assignment(_make_db_row())
        assert assignment.rule_id == "R1"
        assert assignment.severity is Severity.HIGH
        assert assignment.category is Category.REVENUE_LOSS
        assert assignment.strategy is Strategy.ROUND_ROBIN
        assert assignment.user_ids == frozenset({5, 7})
        assert assignment.team_ids == frozenset({1})

    def test_empty_membership(self):
        assignment = _row_to_assignment(_make_db_row(user_ids=None, team_ids=[]))
        assert assignment.user_ids == frozenset()
        assert not assignment.has_recipients


class TestGet:
    @pytest.mark.asyncio
    async def test_returns_none_when_missing(self, repo, mock_db):
        mock_db.fetchrow.return_value = None
        assert await repo.get("missing") is None

    @pytest.mark.asyncio
    async def test_filters_by_rule_id(self, repo, mock_db):
        mock_db.fetchrow.return_value = _make_db_row()
        result = await repo.get("R1")
        assert result.rule_id == "R1"
        sql, rule_id = mock_db.fetchrow.call_args[0]
        assert "WHERE ra.rule_id = $1" in sql
        assert rule_id == "R1"


class TestListAll:
    @pytest.mark.asyncio
    async def test_active_filter_is_parameterized(self, repo, mock_db):
        mock_db.fetch.return_value = [_make_db_row()]
        result = await repo.list_all(active=True)
        assert len(result) == 1
        sql, active = mock_db.fetch.call_args[0]
        assert "ra.active = $1" in sql
        assert active is True

    @pytest.mark.asyncio
    async def test_unfiltered(self, repo, mock_db):
        mock_db.fetch.return_value = []
        assert await repo.list_all() == []
        assert len(mock_db.fetch.call_args[0]) == 1


class TestSave:
    @pytest.mark.asyncio
    async def test_replaces_membership_in_transaction(self, repo, mock_conn):
        spec = AssignmentSpec(severity="HIGH", strategy="ROUND_ROBIN", user_ids=[7, 5], team_ids=[1])
        result = await repo.save("R1", spec)

        assert result.rule_id == "R1"
        statements = [call.args[0] for call in mock_conn.execute.call_args_list]
        assert "ON CONFLICT (rule_id) DO UPDATE" in statements[0]
        assert any("DELETE FROM rule_assignment_users" in s for s in statements)
        assert any("DELETE FROM rule_assignment_teams" in s for s in statements)

        user_rows = mock_conn.executemany.call_args_list[0].args[1]
        assert user_rows == [("R1", 5), ("R1", 7)]

    @pytest.mark.asyncio
    async def test_no_member_inserts_for_empty_sets(self, repo, mock_conn):
        await repo.save("R1", AssignmentSpec())
        mock_conn.executemany.assert_not_called()


class TestRemoveMembers:
    @pytest.mark.asyncio
    async def test_deletes_only_requested_kinds(self, repo, mock_conn):
        await repo.remove_members("R1", frozenset({5}), frozenset())
        statements = [call.args[0] for call in mock_conn.execute.call_args_list]
        assert any("DELETE FROM rule_assignment_users" in s for s in statements)
        assert not any("DELETE FROM rule_assignment_teams" in s for s in statements)


class TestAdvanceCursor:
    @pytest.mark.asyncio
    async def test_single_upsert_statement(self, repo, mock_db):
        mock_db.fetchval.return_value = 3
        assert await repo.advance_cursor("R1") == 3
        sql = mock_db.fetchval.call_args[0][0]
        assert "ON CONFLICT (rule_id) DO UPDATE" in sql
        assert "RETURNING position - 1" in sql

    @pytest.mark.asyncio
    async def test_first_use_returns_zero(self, repo, mock_db):
        mock_db.fetchval.return_value = 0
        assert await repo.advance_cursor("new-rule") == 0


class TestDirectoryRepository:
    @pytest.mark.asyncio
    async def test_get_teams_keeps_roster_order(self):
        db = AsyncMock()
        db.fetch.return_value = [
            {"team_id": 1, "name": "noc", "user_id": 9, "is_lead": False},
            {"team_id": 1, "name": "noc", "user_id": 4, "is_lead": True},
            {"team_id": 2, "name": "empty", "user_id": None, "is_lead": None},
        ]
        teams = await DirectoryRepository(db).get_teams([2, 1])

        assert teams[1].member_ids == (9, 4)
        assert teams[1].lead_user_id == 4
        assert teams[2].member_ids == ()
        assert db.fetch.call_args[0][1] == [1, 2]

    @pytest.mark.asyncio
    async def test_get_teams_skips_query_for_no_ids(self):
        db = AsyncMock()
        assert await DirectoryRepository(db).get_teams([]) == {}
        db.fetch.assert_not_called()

    @pytest.mark.asyncio
    async def test_get_user_ids_by_role(self):
        db = AsyncMock()
        db.fetch.return_value = [{"user_id": 1}, {"user_id": 4}]
        assert await DirectoryRepository(db).get_user_ids_by_role("ADMIN") == [1, 4]
        assert db.fetch.call_args[0][1] == "ADMIN"

    @pytest.mark.asyncio
    async def test_get_inactive_user_ids(self):
        db = AsyncMock()
        db.fetch.return_value = [{"user_id": 6}]
        assert await DirectoryRepository(db).get_inactive_user_ids([6, 5, 6]) == {6}
        sql, ids = db.fetch.call_args[0]
        assert "NOT active" in sql
        assert ids == [5, 6]

    @pytest.mark.asyncio
    async def test_get_inactive_user_ids_skips_query_for_no_ids(self):
        db = AsyncMock()
        assert await DirectoryRepository(db).get_inactive_user_ids([]) == set()
        db.fetch.assert_not_called()

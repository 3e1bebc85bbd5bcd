"""Tests for NotificationRepository with a mocked Database."""

from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest

from src.assignments.schemas import Severity
from src.notifications.repository import NotificationRepository
from src.notifications.schemas import NotificationRecord


def _row(**overrides):
    row = {
        "id": 10,
        "recipient_id": 5,
        "rule_id": "R1",
        "external_event_id": "e1",
        "severity": "HIGH",
        "type": "CASE_CREATED",
        "title": "Revenue drop",
        "message": "",
        "payload": "{}",
        "created_at": datetime(2026, 3, 10, tzinfo=timezone.utc),
        "read_at": None,
    }
    row.update(overrides)
    return row


def _record():
    return NotificationRecord(
        recipient_id=5, rule_id="R1", external_event_id="e1",
        severity=Severity.HIGH, type="CASE_CREATED", title="Revenue drop",
    )


@pytest.fixture
def mock_db():
    return AsyncMock()


@pytest.fixture
def repo(mock_db):
    return NotificationRepository(mock_db)


class TestCreateIfAbsent:
    @pytest.mark.asyncio
    async def test_returns_stored_record(self, repo, mock_db):
        mock_db.fetchrow.return_value = _row()
        stored = await repo.create_if_absent(_record())
        assert stored.id == 10
        sql = mock_db.fetchrow.call_args[0][0]
        assert "ON CONFLICT (rule_id, external_event_id, recipient_id) DO NOTHING" in sql

    @pytest.mark.asyncio
    async def test_conflict_returns_none(self, repo, mock_db):
        mock_db.fetchrow.return_value = None
        assert await repo.create_if_absent(_record()) is None


class TestListForUser:
    @pytest.mark.asyncio
    async def test_since_and_unread_filters(self, repo, mock_db):
        mock_db.fetch.return_value = [_row(id=11)]
        result = await repo.list_for_user(5, since_id=10, unread_only=True, limit=20)

        assert [r.id for r in result] == [11]
        sql, *params = mock_db.fetch.call_args[0]
        assert "id > $2" in sql
        assert "read_at IS NULL" in sql
        assert "LIMIT $3" in sql
        assert params == [5, 10, 20]

    @pytest.mark.asyncio
    async def test_default_query(self, repo, mock_db):
        mock_db.fetch.return_value = []
        await repo.list_for_user(5)
        sql, *params = mock_db.fetch.call_args[0]
        assert "LIMIT $2" in sql
        assert params == [5, 100]


class TestReadState:
    @pytest.mark.asyncio
    async def test_mark_read(self, repo, mock_db):
        mock_db.execute.return_value = "UPDATE 1"
        assert await repo.mark_read(5, 10) is True
        mock_db.execute.return_value = "UPDATE 0"
        assert await repo.mark_read(5, 10) is False

    @pytest.mark.asyncio
    async def test_mark_all_read(self, repo, mock_db):
        mock_db.execute.return_value = "UPDATE 3"
        assert await repo.mark_all_read(5) == 3

    @pytest.mark.asyncio
    async def test_count_unread(self, repo, mock_db):
        mock_db.fetchval.return_value = 4
        assert await repo.count_unread(5) == 4

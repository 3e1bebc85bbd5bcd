"""Notification repository: the persisted store behind live delivery.

Every dispatched notification lands here first. Live pushes are best
effort; clients that missed them reconcile with ``list_for_user`` and
``count_unread``.
"""

import json
import logging

from src.notifications.schemas import NotificationRecord
from src.storage.database import Database

logger = logging.getLogger(__name__)


class NotificationRepository:
    """Repository for ``notifications`` rows."""

    def __init__(self, database: Database) -> None:
        self._db = database

    async def create_if_absent(self, record: NotificationRecord) -> NotificationRecord | None:
        """Insert a record unless its dedup key already exists.

        Args:
            record: Record to persist; ``id`` is ignored and assigned by the
                database.

        Returns:
            The stored record with its id, or None when a record with the
            same ``(rule_id, external_event_id, recipient_id)`` exists.
        """
        sql = """
            INSERT INTO notifications (
                recipient_id, rule_id, external_event_id, severity, type,
                title, message, payload, created_at
            ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
            ON CONFLICT (rule_id, external_event_id, recipient_id) DO NOTHING
            RETURNING *
        """
        row = await self._db.fetchrow(
            sql,
            record.recipient_id,
            record.rule_id,
            record.external_event_id,
            record.severity.value,
            record.type,
            record.title,
            record.message,
            json.dumps(record.payload, default=str),
            record.created_at,
        )
        if row is None:
            logger.debug(
                "Notification already exists for %s, skipping", record.dedup_key,
            )
            return None
        return NotificationRecord.from_row(row)

    async def list_for_user(
        self,
        user_id: int,
        since_id: int | None = None,
        unread_only: bool = False,
        limit: int = 100,
    ) -> list[NotificationRecord]:
        """Notifications for a user in ascending id order.

        Args:
            user_id: Recipient.
            since_id: Only return records with ``id > since_id``.
            unread_only: Skip records that were marked read.
            limit: Maximum rows returned.
        """
        conditions = ["recipient_id = $1"]
        params: list = [user_id]
        idx = 2

        if since_id is not None:
            conditions.append(f"id > ${idx}")
            params.append(since_id)
            idx += 1

        if unread_only:
            conditions.append("read_at IS NULL")

        where = " AND ".join(conditions)
        params.append(limit)
        sql = f"""
            SELECT * FROM notifications
            WHERE {where}
            ORDER BY id ASC
            LIMIT ${idx}
        """
        rows = await self._db.fetch(sql, *params)
        return [NotificationRecord.from_row(row) for row in rows]

    async def count_unread(self, user_id: int) -> int:
        value = await self._db.fetchval(
            "SELECT COUNT(*) FROM notifications WHERE recipient_id = $1 AND read_at IS NULL",
            user_id,
        )
        return int(value or 0)

    async def mark_read(self, user_id: int, notification_id: int) -> bool:
        """Mark one notification read.

        Returns:
            True if an unread notification owned by the user was updated.
        """
        result = await self._db.execute(
            """
            UPDATE notifications SET read_at = NOW()
            WHERE id = $1 AND recipient_id = $2 AND read_at IS NULL
            """,
            notification_id,
            user_id,
        )
        return result == "UPDATE 1"

    async def mark_all_read(self, user_id: int) -> int:
        """Mark every unread notification read; returns the number updated."""
        result = await self._db.execute(
            "UPDATE notifications SET read_at = NOW() WHERE recipient_id = $1 AND read_at IS NULL",
            user_id,
        )
        # asyncpg returns a status string like "UPDATE 3"
        return int(result.split()[-1])

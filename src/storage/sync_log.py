"""
Append-only audit log of sync attempts.

Rows are never updated or deleted (a trigger in schema.sql enforces this).
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

import asyncpg

from assignment_sync.models import SyncAction, SyncOutcome
from storage import db

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SyncLogEntry:
    user_id: str
    action: SyncAction
    status: SyncOutcome
    assignment_id: Optional[str] = None
    direction: str = "to_calendar"
    error_message: Optional[str] = None
    details: dict = field(default_factory=dict)


class SyncLog:

    async def append(self, entry: SyncLogEntry) -> bool:
        """
        Write one audit row.

        The provider call this entry describes has already happened, so a
        failing audit write is reported in the application log and does not
        turn a completed sync into a failure.
        """
        try:
            await db.execute(
                """
                INSERT INTO calendar_sync_log (
                    user_id, assignment_id, action, direction,
                    status, error_message, details
                ) VALUES ($1, $2, $3, $4, $5, $6, $7)
                """,
                entry.user_id,
                entry.assignment_id,
                entry.action,
                entry.direction,
                entry.status,
                entry.error_message,
                entry.details,
            )
            return True
        except (asyncpg.PostgresError, OSError, RuntimeError) as e:
            logger.error(
                f"Failed to write sync log ({entry.action}/{entry.status}) "
                f"for user {entry.user_id}: {e}"
            )
            return False


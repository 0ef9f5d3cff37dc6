import logging
from typing import List, Optional

from assignment_sync.config import PROVIDER_GOOGLE
from assignment_sync.models import Assignment
from storage import db

logger = logging.getLogger(__name__)

_ASSIGNMENT_COLUMNS = """
    a.id, a.title, a.date, a.time, a.timezone, a.duration_minutes,
    a.assignment_type, a.setting, a.location_type, a.location_details,
    a.description, a.prep_status
"""


class AssignmentRepository:
    """Read-only access to the host app's assignments table."""

    def __init__(self, provider: str = PROVIDER_GOOGLE):
        self.provider = provider

    async def get(self, user_id: str, assignment_id: str) -> Optional[Assignment]:
        record = await db.fetchrow(
            f"""
            SELECT {_ASSIGNMENT_COLUMNS}
            FROM assignments a
            WHERE a.id::text = $1 AND a.user_id::text = $2
            """,
            assignment_id,
            user_id,
        )
        return Assignment.model_validate(dict(record)) if record else None

    async def list_unsynced(self, user_id: str) -> List[Assignment]:
        """Assignments without an active mapping for the provider, oldest first."""
        records = await db.fetch(
            f"""
            SELECT {_ASSIGNMENT_COLUMNS}
            FROM assignments a
            LEFT JOIN calendar_sync_events m
                ON m.assignment_id = a.id::text
               AND m.user_id = $1
               AND m.provider = $2
               AND m.sync_status = 'active'
            WHERE a.user_id::text = $1
              AND m.assignment_id IS NULL
            ORDER BY a.date, a.time NULLS FIRST, a.id
            """,
            user_id,
            self.provider,
        )
        return [Assignment.model_validate(dict(r)) for r in records]

    async def count_unsynced(self, user_id: str) -> int:
        return len(await self.list_unsynced(user_id))

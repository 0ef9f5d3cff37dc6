import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from assignment_sync.config import PROVIDER_GOOGLE
from assignment_sync.models import MappingStatus
from storage import db

logger = logging.getLogger(__name__)


@dataclass
class SyncMapping:
    """Correspondence between an assignment and its external calendar event."""
    assignment_id: str
    user_id: str
    provider: str
    external_event_id: str
    external_calendar_id: str
    event_link: Optional[str]
    sync_status: MappingStatus
    updated_at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return self.sync_status == "active"

    @classmethod
    def from_record(cls, record) -> "SyncMapping":
        return cls(
            assignment_id=record["assignment_id"],
            user_id=record["user_id"],
            provider=record["provider"],
            external_event_id=record["external_event_id"],
            external_calendar_id=record["external_calendar_id"] or "primary",
            event_link=record["event_link"],
            sync_status=record["sync_status"],
            updated_at=record["updated_at"],
        )


class MappingStore:
    """calendar_sync_events table, unique per (assignment, user, provider)."""

    def __init__(self, provider: str = PROVIDER_GOOGLE):
        self.provider = provider

    async def get(self, user_id: str, assignment_id: str) -> Optional[SyncMapping]:
        record = await db.fetchrow(
            """
            SELECT * FROM calendar_sync_events
            WHERE assignment_id = $1 AND user_id = $2 AND provider = $3
            """,
            assignment_id,
            user_id,
            self.provider,
        )
        return SyncMapping.from_record(record) if record else None

    async def get_active(self, user_id: str, assignment_id: str) -> Optional[SyncMapping]:
        mapping = await self.get(user_id, assignment_id)
        if mapping is None or not mapping.is_active:
            return None
        return mapping

    async def upsert(
        self,
        user_id: str,
        assignment_id: str,
        external_event_id: str,
        external_calendar_id: str,
        event_link: Optional[str],
    ) -> SyncMapping:
        """Record a confirmed provider event, overwriting any stale mapping."""
        record = await db.fetchrow(
            """
            INSERT INTO calendar_sync_events (
                assignment_id, user_id, provider, external_event_id,
                external_calendar_id, event_link, sync_status
            ) VALUES ($1, $2, $3, $4, $5, $6, 'active')
            ON CONFLICT (assignment_id, user_id, provider) DO UPDATE SET
                external_event_id = EXCLUDED.external_event_id,
                external_calendar_id = EXCLUDED.external_calendar_id,
                event_link = EXCLUDED.event_link,
                sync_status = 'active',
                last_synced_at = NOW(),
                updated_at = NOW()
            RETURNING *
            """,
            assignment_id,
            user_id,
            self.provider,
            external_event_id,
            external_calendar_id,
            event_link,
        )
        return SyncMapping.from_record(record)

    async def mark_deleted(self, user_id: str, assignment_id: str) -> bool:
        status = await db.execute(
            """
            UPDATE calendar_sync_events
            SET sync_status = 'deleted', updated_at = NOW()
            WHERE assignment_id = $1 AND user_id = $2 AND provider = $3
            """,
            assignment_id,
            user_id,
            self.provider,
        )
        return db.affected_rows(status) > 0

    async def mark_all_deleted(self, user_id: str) -> int:
        status = await db.execute(
            """
            UPDATE calendar_sync_events
            SET sync_status = 'deleted', updated_at = NOW()
            WHERE user_id = $1 AND provider = $2 AND sync_status = 'active'
            """,
            user_id,
            self.provider,
        )
        count = db.affected_rows(status)
        if count > 0:
            logger.info(f"Marked {count} mappings deleted for user {user_id}")
        return count

    async def count_active(self, user_id: str) -> int:
        return await db.fetchval(
            """
            SELECT COUNT(*) FROM calendar_sync_events
            WHERE user_id = $1 AND provider = $2 AND sync_status = 'active'
            """,
            user_id,
            self.provider,
        )

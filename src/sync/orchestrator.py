"""
Reconciles one assignment with its mirrored calendar event.

Per assignment the external state moves through

    Unsynced -> Synced -> (Drifted) -> Synced | Deleted

using the calendar_sync_events mapping for idempotency. The mapping is only
written after the provider confirmed the call, so a failed request never
leaves a half-written row behind.
"""

import logging
from typing import Any, Mapping, Optional, Union

from assignment_sync.config import Settings
from assignment_sync.errors import (
    AuthExpiredError,
    CalendarSyncError,
    EventNotFoundError,
    NotConnectedError,
    ValidationError,
)
from assignment_sync.metrics import DRIFT_RECOVERIES_TOTAL, SYNC_ATTEMPTS_TOTAL
from assignment_sync.models import (
    Assignment,
    DeleteResult,
    SyncAction,
    SyncOutcome,
    SyncPreferences,
    SyncResult,
)
from integration.event_mapper import assignment_to_event
from integration.token_manager import TokenManager
from storage.mapping_store import MappingStore
from storage.sync_log import SyncLog, SyncLogEntry

logger = logging.getLogger(__name__)


class SyncOrchestrator:

    def __init__(
        self,
        settings: Settings,
        token_manager: TokenManager,
        mapping_store: MappingStore,
        sync_log: SyncLog,
    ):
        self.settings = settings
        self.token_manager = token_manager
        self.mapping_store = mapping_store
        self.sync_log = sync_log

    def build_event(
        self,
        assignment: Union[Assignment, Mapping[str, Any]],
        preferences: Optional[SyncPreferences] = None,
    ) -> dict:
        return assignment_to_event(
            assignment,
            app_url=self.settings.app_url,
            default_timezone=self.settings.default_timezone,
            summary_prefix=self.settings.event_summary_prefix,
            preferences=preferences,
        )

    async def _record(
        self,
        user_id: str,
        assignment_id: Optional[str],
        action: SyncAction,
        status: SyncOutcome,
        error_message: Optional[str] = None,
        details: Optional[dict] = None,
    ) -> None:
        SYNC_ATTEMPTS_TOTAL.labels(action=action, status=status).inc()
        await self.sync_log.append(
            SyncLogEntry(
                user_id=user_id,
                assignment_id=assignment_id,
                action=action,
                status=status,
                error_message=error_message,
                details=details or {},
            )
        )

    async def _fail(
        self,
        user_id: str,
        assignment_id: Optional[str],
        action: SyncAction,
        error: CalendarSyncError,
    ) -> str:
        logger.error(
            f"Calendar {action} failed for assignment {assignment_id} "
            f"(user {user_id}): {error.raw}"
        )
        if isinstance(error, AuthExpiredError):
            await self.token_manager.invalidate(user_id, error.raw)
        await self._record(
            user_id,
            assignment_id,
            action,
            "failed",
            error_message=error.raw,
            details={
                "error_kind": error.__class__.__name__,
                "status_code": error.status_code,
            },
        )
        return error.user_message

    async def sync_assignment(
        self,
        user_id: str,
        assignment: Union[Assignment, Mapping[str, Any]],
        preferences: Optional[SyncPreferences] = None,
    ) -> SyncResult:
        """Create or update the external event for one assignment."""
        if isinstance(assignment, Assignment):
            assignment_id = assignment.id
        else:
            assignment_id = assignment.get("id")
        assignment_id = str(assignment_id) if assignment_id else None

        mapping = None
        if assignment_id:
            mapping = await self.mapping_store.get_active(user_id, assignment_id)
        action = "update" if mapping else "create"

        # Validation happens before any network call (including token refresh)
        try:
            body = self.build_event(assignment, preferences)
        except ValidationError as e:
            logger.warning(f"Rejected assignment {assignment_id} for user {user_id}: {e.raw}")
            await self._record(
                user_id,
                assignment_id,
                action,
                "failed",
                error_message=e.raw,
                details={"error_kind": "validation"},
            )
            return SyncResult(success=False, error=e.user_message)

        client = await self.token_manager.get_valid_client(user_id)
        if client is None:
            return SyncResult(success=False, error=NotConnectedError().user_message)

        details: dict = {}
        # existing events stay in the calendar they were created in
        event_calendar_id = client.calendar_id

        try:
            if mapping is not None:
                try:
                    event = await client.update_event(
                        mapping.external_event_id,
                        body,
                        calendar_id=mapping.external_calendar_id,
                    )
                    event_calendar_id = mapping.external_calendar_id
                except EventNotFoundError:
                    # Deleted or moved in the calendar by the user: recreate
                    logger.info(
                        f"Event {mapping.external_event_id} for assignment {assignment_id} "
                        f"is gone from the calendar, recreating"
                    )
                    DRIFT_RECOVERIES_TOTAL.inc()
                    action = "create"
                    details = {
                        "drift_recovered": True,
                        "previous_event_id": mapping.external_event_id,
                    }
                    event = await client.insert_event(body)
            else:
                event = await client.insert_event(body)
        except CalendarSyncError as e:
            return SyncResult(
                success=False, error=await self._fail(user_id, assignment_id, action, e)
            )

        event_id = event.get("id")
        event_link = event.get("htmlLink")
        await self.mapping_store.upsert(
            user_id, assignment_id, event_id, event_calendar_id, event_link
        )
        details.update({"event_id": event_id, "event_link": event_link})
        await self._record(user_id, assignment_id, action, "success", details=details)
        logger.info(f"Synced assignment {assignment_id} ({action}) -> event {event_id}")

        return SyncResult(success=True, event_id=event_id, event_link=event_link)

    async def delete_assignment_event(self, user_id: str, assignment_id: str) -> DeleteResult:
        """Remove the mirrored event. Deleting something never synced is a no-op success."""
        mapping = await self.mapping_store.get_active(user_id, assignment_id)
        if mapping is None:
            return DeleteResult(success=True)

        client = await self.token_manager.get_valid_client(user_id)
        if client is None:
            return DeleteResult(success=False, error=NotConnectedError().user_message)

        try:
            await client.delete_event(
                mapping.external_event_id, calendar_id=mapping.external_calendar_id
            )
        except EventNotFoundError:
            logger.info(f"Event {mapping.external_event_id} already absent from calendar")
        except CalendarSyncError as e:
            return DeleteResult(
                success=False, error=await self._fail(user_id, assignment_id, "delete", e)
            )

        await self.mapping_store.mark_deleted(user_id, assignment_id)
        await self._record(
            user_id,
            assignment_id,
            "delete",
            "success",
            details={"event_id": mapping.external_event_id},
        )
        return DeleteResult(success=True)

import logging
from typing import List, Optional

from assignment_sync.errors import NotConnectedError
from assignment_sync.metrics import BATCH_ITEMS_TOTAL
from assignment_sync.models import (
    Assignment,
    BatchItemResult,
    BatchSyncReport,
    BatchSyncResult,
    SyncPreferences,
)
from integration.token_manager import TokenManager
from storage.assignments import AssignmentRepository
from storage.credential_store import CredentialStore
from storage.sync_log import SyncLog, SyncLogEntry
from sync.orchestrator import SyncOrchestrator

logger = logging.getLogger(__name__)

MAX_REPORTED_ERRORS = 50
MAX_BATCH_SIZE = 50


class BatchSyncRunner:
    """
    Sync every un-synced assignment of a user, one at a time.

    Calls are sequential because the provider rate-limits per user; a full
    sync is a background operation so the extra latency is fine. One failing
    item never stops the run.
    """

    def __init__(
        self,
        orchestrator: SyncOrchestrator,
        token_manager: TokenManager,
        assignments: AssignmentRepository,
        credential_store: CredentialStore,
        sync_log: SyncLog,
    ):
        self.orchestrator = orchestrator
        self.token_manager = token_manager
        self.assignments = assignments
        self.credential_store = credential_store
        self.sync_log = sync_log

    async def _preferences(self, user_id: str) -> Optional[SyncPreferences]:
        credential = await self.credential_store.get(user_id)
        if credential is None:
            return None
        return SyncPreferences.model_validate(credential.sync_preferences or {})

    async def _sync_item(
        self, user_id: str, assignment: Assignment, preferences: Optional[SyncPreferences]
    ) -> Optional[str]:
        """Returns None on success, otherwise the user-facing error."""
        try:
            result = await self.orchestrator.sync_assignment(user_id, assignment, preferences)
        except Exception as e:
            logger.exception(f"Unexpected error syncing assignment {assignment.id}: {e}")
            return "Failed to sync to calendar"
        return None if result.success else (result.error or "Failed to sync to calendar")

    async def run(self, user_id: str) -> BatchSyncResult:
        candidates: List[Assignment] = await self.assignments.list_unsynced(user_id)
        result = BatchSyncResult()
        if not candidates:
            return result

        # Token problems short-circuit the whole run before any provider call
        if await self.token_manager.get_valid_client(user_id) is None:
            result.failed = len(candidates)
            result.errors.append(NotConnectedError().user_message)
            await self._log_full_sync(user_id, result, len(candidates))
            return result

        preferences = await self._preferences(user_id)
        logger.info(f"Full sync for user {user_id}: {len(candidates)} candidates")

        for assignment in candidates:
            error = await self._sync_item(user_id, assignment, preferences)
            if error is None:
                result.synced += 1
                BATCH_ITEMS_TOTAL.labels(status="success").inc()
                continue
            result.failed += 1
            BATCH_ITEMS_TOTAL.labels(status="failed").inc()
            if len(result.errors) < MAX_REPORTED_ERRORS:
                result.errors.append(f"{assignment.title or assignment.id}: {error}")

        await self.credential_store.touch_last_sync(user_id)
        await self._log_full_sync(user_id, result, len(candidates))
        logger.info(
            f"Full sync for user {user_id} finished: "
            f"{result.synced} synced, {result.failed} failed"
        )
        return result

    async def run_selected(self, user_id: str, assignment_ids: List[str]) -> BatchSyncReport:
        """Sync an explicit list of assignment ids (at most MAX_BATCH_SIZE)."""
        if len(assignment_ids) > MAX_BATCH_SIZE:
            raise ValueError(f"Maximum {MAX_BATCH_SIZE} assignments per batch")

        preferences = await self._preferences(user_id)
        report = BatchSyncReport()
        for assignment_id in assignment_ids:
            assignment = await self.assignments.get(user_id, assignment_id)
            if assignment is None:
                report.results.append(
                    BatchItemResult(id=assignment_id, success=False, error="Assignment not found")
                )
                continue
            try:
                outcome = await self.orchestrator.sync_assignment(user_id, assignment, preferences)
            except Exception as e:
                logger.exception(f"Unexpected error syncing assignment {assignment_id}: {e}")
                report.results.append(
                    BatchItemResult(id=assignment_id, success=False, error="Failed to sync to calendar")
                )
                continue
            report.results.append(BatchItemResult(id=assignment_id, **outcome.model_dump()))

        report.synced = sum(1 for r in report.results if r.success)
        report.failed = len(report.results) - report.synced
        return report

    async def _log_full_sync(self, user_id: str, result: BatchSyncResult, total: int) -> None:
        await self.sync_log.append(
            SyncLogEntry(
                user_id=user_id,
                action="full_sync",
                status="success" if result.failed == 0 else "failed",
                details={"synced": result.synced, "failed": result.failed, "total": total},
            )
        )

import json
import logging
from typing import List, Optional

import asyncpg
from cryptography.fernet import Fernet, InvalidToken

from assignment_sync.config import Settings
from assignment_sync.errors import AuthExchangeError, CalendarSyncError
from assignment_sync.models import (
    ALLOWED_PREFERENCE_KEYS,
    BatchSyncReport,
    BatchSyncResult,
    CalendarSummary,
    ConnectionStatus,
    DeleteResult,
    SyncPreferences,
    SyncResult,
)
from integration.token_manager import TokenManager
from storage.assignments import AssignmentRepository
from storage.credential_store import Credential, CredentialStore
from storage.mapping_store import MappingStore
from storage.sync_log import SyncLog, SyncLogEntry
from sync.batch_runner import BatchSyncRunner
from sync.connection_cache import ConnectionStatusCache
from sync.orchestrator import SyncOrchestrator

logger = logging.getLogger(__name__)

OAUTH_STATE_TTL_S = 600
MAX_STATE_LENGTH = 1000
MAX_CALENDAR_ID_LENGTH = 255
ASSIGNMENT_NOT_FOUND = "Assignment not found"


class CalendarSyncService:
    """Entry point the HTTP layer talks to; wires the sync engine together."""

    def __init__(
        self,
        settings: Settings,
        fernet: Fernet,
        credential_store: CredentialStore,
        mapping_store: MappingStore,
        sync_log: SyncLog,
        assignments: AssignmentRepository,
        token_manager: Optional[TokenManager] = None,
        status_cache: Optional[ConnectionStatusCache] = None,
    ):
        self.settings = settings
        self.fernet = fernet
        self.credential_store = credential_store
        self.mapping_store = mapping_store
        self.sync_log = sync_log
        self.assignments = assignments
        self.provider = credential_store.provider
        self.status_cache = status_cache or ConnectionStatusCache(
            ttl_s=settings.connection_cache_ttl_s
        )
        self.token_manager = token_manager or TokenManager(
            settings,
            credential_store,
            sync_log,
            on_deactivate=self._forget_status,
        )
        self.orchestrator = SyncOrchestrator(
            settings, self.token_manager, mapping_store, sync_log
        )
        self.batch_runner = BatchSyncRunner(
            self.orchestrator,
            self.token_manager,
            assignments,
            credential_store,
            sync_log,
        )

    def _forget_status(self, user_id: str) -> None:
        self.status_cache.invalidate(user_id, self.provider)

    # OAuth state ------------------------------------------------------------

    def encode_state(self, user_id: str) -> str:
        return self.fernet.encrypt(json.dumps({"user_id": user_id}).encode()).decode()

    def decode_state(self, state: Optional[str]) -> str:
        if not state or len(state) > MAX_STATE_LENGTH:
            raise AuthExchangeError("Invalid session state", raw="missing or oversized state")
        try:
            payload = json.loads(self.fernet.decrypt(state.encode(), ttl=OAUTH_STATE_TTL_S))
        except (InvalidToken, ValueError) as e:
            raise AuthExchangeError("Invalid session state", raw=f"bad state: {e!r}") from e
        user_id = payload.get("user_id") if isinstance(payload, dict) else None
        if not user_id:
            raise AuthExchangeError("Invalid session state", raw="state without user_id")
        return str(user_id)

    # Connection lifecycle ---------------------------------------------------

    def connect_calendar(self, user_id: str) -> str:
        """Consent URL for the user; the callback recovers user_id from state."""
        return self.token_manager.build_authorization_url(self.encode_state(user_id))

    async def handle_oauth_callback(self, code: str, state: Optional[str]) -> Credential:
        user_id = self.decode_state(state)
        try:
            tokens = await self.token_manager.exchange_code(code)
        except AuthExchangeError as e:
            await self.sync_log.append(
                SyncLogEntry(
                    user_id=user_id,
                    action="connect",
                    status="failed",
                    error_message=e.raw,
                )
            )
            raise

        calendar_name = "Primary Calendar"
        try:
            client = self.token_manager.client_for_tokens(tokens)
            info = await client.get_calendar("primary")
            calendar_name = info.get("summary") or calendar_name
        except CalendarSyncError as e:
            logger.info(f"Could not read primary calendar name: {e.raw}")

        credential = await self.credential_store.upsert(
            user_id, tokens, calendar_id="primary", calendar_name=calendar_name
        )
        self._forget_status(user_id)
        await self.sync_log.append(
            SyncLogEntry(
                user_id=user_id,
                action="connect",
                status="success",
                details={"calendar_name": calendar_name, "provider": self.provider},
            )
        )
        logger.info(f"User {user_id} connected calendar '{calendar_name}'")
        return credential

    async def disconnect(self, user_id: str) -> bool:
        try:
            await self.credential_store.deactivate(user_id)
            await self.mapping_store.mark_all_deleted(user_id)
        except (asyncpg.PostgresError, OSError) as e:
            logger.error(f"Failed to disconnect calendar for user {user_id}: {e}")
            return False
        self._forget_status(user_id)
        await self.sync_log.append(
            SyncLogEntry(user_id=user_id, action="disconnect", status="success")
        )
        return True

    async def is_connected(self, user_id: str) -> bool:
        cached = self.status_cache.get(user_id, self.provider)
        if cached is not None:
            return cached
        connected = await self.credential_store.get_active(user_id) is not None
        self.status_cache.set(user_id, self.provider, connected)
        return connected

    async def get_status(self, user_id: str) -> ConnectionStatus:
        connected = await self.is_connected(user_id)
        credential = await self.credential_store.get(user_id) if connected else None
        if credential is None:
            return ConnectionStatus(connected=False)
        return ConnectionStatus(
            connected=True,
            calendar_id=credential.calendar_id,
            calendar_name=credential.calendar_name,
            auto_sync_enabled=credential.auto_sync_enabled,
            sync_preferences=credential.sync_preferences,
            last_sync_at=credential.last_sync_at,
            synced_events_count=await self.mapping_store.count_active(user_id),
            pending_events_count=await self.assignments.count_unsynced(user_id),
        )

    async def list_calendars(self, user_id: str) -> List[CalendarSummary]:
        client = await self.token_manager.get_valid_client(user_id)
        if client is None:
            return []
        try:
            items = await client.list_calendars()
        except CalendarSyncError as e:
            logger.error(f"Failed to list calendars for user {user_id}: {e.raw}")
            return []
        return [CalendarSummary.model_validate(item) for item in items if item.get("id")]

    async def update_preferences(self, user_id: str, preferences: dict) -> bool:
        allowed = {k: preferences[k] for k in ALLOWED_PREFERENCE_KEYS if k in preferences}
        # validates types; stored as the caller's whitelisted subset
        SyncPreferences.model_validate(allowed)
        return await self.credential_store.update_preferences(user_id, allowed)

    async def set_calendar(self, user_id: str, calendar_id: str) -> bool:
        if not calendar_id or len(calendar_id) > MAX_CALENDAR_ID_LENGTH:
            raise ValueError("Invalid calendar ID")
        return await self.credential_store.set_calendar(user_id, calendar_id)

    # Sync operations ---------------------------------------------------------

    async def _preferences(self, user_id: str) -> Optional[SyncPreferences]:
        credential = await self.credential_store.get(user_id)
        if credential is None:
            return None
        return SyncPreferences.model_validate(credential.sync_preferences or {})

    async def sync_one(self, user_id: str, assignment_id: str) -> SyncResult:
        assignment = await self.assignments.get(user_id, assignment_id)
        if assignment is None:
            return SyncResult(success=False, error=ASSIGNMENT_NOT_FOUND)
        return await self.orchestrator.sync_assignment(
            user_id, assignment, await self._preferences(user_id)
        )

    async def sync_batch(self, user_id: str, assignment_ids: List[str]) -> BatchSyncReport:
        return await self.batch_runner.run_selected(user_id, assignment_ids)

    async def sync_all(self, user_id: str) -> BatchSyncResult:
        return await self.batch_runner.run(user_id)

    async def delete_sync(self, user_id: str, assignment_id: str) -> DeleteResult:
        return await self.orchestrator.delete_assignment_event(user_id, assignment_id)

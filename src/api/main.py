import logging
import os

from fastapi import FastAPI

from api import state
from api.backend import CalendarSyncService
from api.routers import auth, calendar, ops
from assignment_sync.config import get_settings
from storage import db
from storage.assignments import AssignmentRepository
from storage.credential_store import CredentialStore, build_fernet
from storage.mapping_store import MappingStore
from storage.sync_log import SyncLog

# Logging configuration
logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

INIT_SCHEMA_ON_STARTUP = os.getenv("INIT_SCHEMA_ON_STARTUP", "true").lower() in {
    "1",
    "true",
    "yes",
}

app = FastAPI(title="assignment-calendar-sync")
app.include_router(auth.router)
app.include_router(calendar.router)
app.include_router(ops.router)


def build_service() -> CalendarSyncService:
    settings = get_settings()
    fernet = build_fernet(settings.token_encryption_key)
    return CalendarSyncService(
        settings=settings,
        fernet=fernet,
        credential_store=CredentialStore(fernet),
        mapping_store=MappingStore(),
        sync_log=SyncLog(),
        assignments=AssignmentRepository(),
    )


@app.on_event("startup")
async def startup() -> None:
    await db.init_db_pool()
    if INIT_SCHEMA_ON_STARTUP:
        await db.init_schema()
    state.sync_service = build_service()
    logger.info("Calendar sync engine started")


@app.on_event("shutdown")
async def shutdown() -> None:
    state.sync_service = None
    await db.close_db_pool()

import logging
import time
from typing import Any, Dict, List

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from api.backend import ASSIGNMENT_NOT_FOUND, CalendarSyncService
from api.dependencies import get_current_user_id, get_sync_service
from assignment_sync.metrics import REQUESTS_TOTAL
from sync.batch_runner import MAX_BATCH_SIZE

router = APIRouter(prefix="/calendar")
logger = logging.getLogger(__name__)


class SyncBatchIn(BaseModel):
    assignment_ids: List[str] = Field(..., min_length=1)


class PreferencesIn(BaseModel):
    sync_preferences: Dict[str, Any]


class CalendarIdIn(BaseModel):
    calendar_id: str


@router.get("/calendars")
async def list_calendars(
    user_id: str = Depends(get_current_user_id),
    service: CalendarSyncService = Depends(get_sync_service),
) -> dict:
    calendars = await service.list_calendars(user_id)
    return {"calendars": [c.model_dump() for c in calendars]}


@router.post("/sync/{assignment_id}")
async def sync_assignment(
    assignment_id: str,
    user_id: str = Depends(get_current_user_id),
    service: CalendarSyncService = Depends(get_sync_service),
) -> dict:
    """Create or update the calendar event for one assignment."""
    result = await service.sync_one(user_id, assignment_id)
    if not result.success and result.error == ASSIGNMENT_NOT_FOUND:
        raise HTTPException(status_code=404, detail=ASSIGNMENT_NOT_FOUND)
    REQUESTS_TOTAL.labels(
        endpoint="/calendar/sync", status="ok" if result.success else "failed"
    ).inc()
    return result.model_dump(exclude_none=True)


@router.post("/sync-batch")
async def sync_batch(
    payload: SyncBatchIn,
    user_id: str = Depends(get_current_user_id),
    service: CalendarSyncService = Depends(get_sync_service),
) -> dict:
    if len(payload.assignment_ids) > MAX_BATCH_SIZE:
        raise HTTPException(
            status_code=400, detail=f"Maximum {MAX_BATCH_SIZE} assignments per batch"
        )
    report = await service.sync_batch(user_id, payload.assignment_ids)
    return report.model_dump(exclude_none=True)


@router.post("/sync-all")
async def sync_all(
    user_id: str = Depends(get_current_user_id),
    service: CalendarSyncService = Depends(get_sync_service),
) -> dict:
    """Sync every assignment that has no active calendar event yet."""
    start = time.time()
    result = await service.sync_all(user_id)
    logger.info(
        f"sync-all for {user_id}: {result.synced} synced, {result.failed} failed "
        f"in {time.time() - start:.1f}s"
    )
    REQUESTS_TOTAL.labels(
        endpoint="/calendar/sync-all", status="ok" if result.failed == 0 else "partial"
    ).inc()
    return result.model_dump()


@router.delete("/sync/{assignment_id}")
async def unsync_assignment(
    assignment_id: str,
    user_id: str = Depends(get_current_user_id),
    service: CalendarSyncService = Depends(get_sync_service),
) -> dict:
    result = await service.delete_sync(user_id, assignment_id)
    return result.model_dump(exclude_none=True)


@router.put("/preferences")
async def update_preferences(
    payload: PreferencesIn,
    user_id: str = Depends(get_current_user_id),
    service: CalendarSyncService = Depends(get_sync_service),
) -> dict:
    try:
        updated = await service.update_preferences(user_id, payload.sync_preferences)
    except ValueError as e:
        # pydantic's ValidationError is a ValueError
        raise HTTPException(status_code=400, detail=f"Invalid preferences: {e}")
    if not updated:
        raise HTTPException(status_code=404, detail="No calendar connection")
    return {"success": True}


@router.put("/calendar-id")
async def set_calendar(
    payload: CalendarIdIn,
    user_id: str = Depends(get_current_user_id),
    service: CalendarSyncService = Depends(get_sync_service),
) -> dict:
    try:
        updated = await service.set_calendar(user_id, payload.calendar_id)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid calendar ID")
    if not updated:
        raise HTTPException(status_code=404, detail="No calendar connection")
    return {"success": True}

from typing import Optional

from fastapi import Header, HTTPException

from api import state
from api.backend import CalendarSyncService


def get_sync_service() -> CalendarSyncService:
    if state.sync_service is None:
        raise HTTPException(status_code=503, detail="Calendar sync not initialized")
    return state.sync_service


def get_current_user_id(x_user_id: Optional[str] = Header(None)) -> str:
    """The host app's auth layer authenticates the caller and forwards the id."""
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Unauthorized")
    return x_user_id.strip()

import logging
from typing import Optional
from urllib.parse import quote

from fastapi import APIRouter, Depends, HTTPException, Response

from api.backend import CalendarSyncService
from api.dependencies import get_current_user_id, get_sync_service
from assignment_sync.errors import AuthExchangeError
from assignment_sync.metrics import REQUESTS_TOTAL

router = APIRouter()
logger = logging.getLogger(__name__)


def _redirect_to_app(service: CalendarSyncService, query: str) -> Response:
    return Response(
        status_code=307,
        headers={"Location": f"{service.settings.app_url}/assignments?{query}"},
    )


@router.get("/auth/google/login")
async def google_login(
    redirect: bool = False,
    user_id: str = Depends(get_current_user_id),
    service: CalendarSyncService = Depends(get_sync_service),
):
    """Starts the OAuth2 consent flow for the calling user."""
    if not service.settings.is_configured():
        raise HTTPException(
            status_code=503,
            detail="Google Calendar integration is not configured on this server.",
        )

    auth_url = service.connect_calendar(user_id)
    REQUESTS_TOTAL.labels(endpoint="/auth/google/login", status="ok").inc()
    if redirect:
        return Response(status_code=307, headers={"Location": auth_url})
    return {"authUrl": auth_url}


@router.get("/auth/google/callback")
async def google_callback(
    code: Optional[str] = None,
    state: Optional[str] = None,
    error: Optional[str] = None,
    service: CalendarSyncService = Depends(get_sync_service),
) -> Response:
    """Handles the OAuth2 callback and stores the credential."""
    if error:
        logger.error(f"OAuth error: {error}")
        REQUESTS_TOTAL.labels(endpoint="/auth/google/callback", status="error").inc()
        return _redirect_to_app(service, f"calendar_error={quote(error)}")

    if not service.settings.is_configured():
        return _redirect_to_app(
            service,
            "calendar_error=" + quote("Google Calendar integration is not configured"),
        )

    if not code:
        return _redirect_to_app(
            service, "calendar_error=" + quote("No authorization code received")
        )

    try:
        credential = await service.handle_oauth_callback(code, state)
    except AuthExchangeError as e:
        logger.error(f"OAuth callback failed: {e.raw}")
        REQUESTS_TOTAL.labels(endpoint="/auth/google/callback", status="error").inc()
        return _redirect_to_app(service, f"calendar_error={quote(e.user_message)}")

    REQUESTS_TOTAL.labels(endpoint="/auth/google/callback", status="ok").inc()
    return _redirect_to_app(
        service,
        "calendar_connected=true&calendar_name="
        + quote(credential.calendar_name or "Primary Calendar"),
    )


@router.get("/auth/google/status")
async def google_status(
    user_id: str = Depends(get_current_user_id),
    service: CalendarSyncService = Depends(get_sync_service),
) -> dict:
    """Connection status, calendar choice and sync counters."""
    status = await service.get_status(user_id)
    return status.model_dump(mode="json")


@router.post("/auth/google/disconnect")
async def google_disconnect(
    user_id: str = Depends(get_current_user_id),
    service: CalendarSyncService = Depends(get_sync_service),
) -> dict:
    """Deactivate the stored credential and retire all event mappings."""
    success = await service.disconnect(user_id)
    return {"success": success}

import asyncio
import logging
from typing import List, Optional

import google_auth_httplib2
import httplib2
from googleapiclient.discovery import build

from assignment_sync.errors import classify_provider_error
from assignment_sync.metrics import PROVIDER_CALL_LATENCY_SECONDS

logger = logging.getLogger(__name__)


class CalendarIntegration:
    """
    Thin async wrapper around the Google Calendar v3 API.

    googleapiclient is blocking, so every request runs in a worker thread
    and carries its own socket timeout. Provider errors come out already
    classified (see assignment_sync.errors).
    """

    def __init__(
        self,
        credentials=None,
        calendar_id: str = "primary",
        timeout_s: float = 15.0,
    ):
        self.credentials = credentials
        self.calendar_id = calendar_id or "primary"
        self.timeout_s = timeout_s
        self._service = None

    def _get_service(self):
        if self._service is None:
            http = google_auth_httplib2.AuthorizedHttp(
                self.credentials, http=httplib2.Http(timeout=self.timeout_s)
            )
            self._service = build(
                "calendar", "v3", http=http, cache_discovery=False
            )
        return self._service

    async def _execute(self, make_request, operation: str):
        def _run():
            return make_request(self._get_service()).execute()

        try:
            with PROVIDER_CALL_LATENCY_SECONDS.labels(operation=operation).time():
                return await asyncio.to_thread(_run)
        except Exception as e:
            error = classify_provider_error(e)
            logger.warning(
                f"Google Calendar {operation} failed "
                f"({error.__class__.__name__}): {error.raw}"
            )
            raise error from e

    async def insert_event(self, body: dict, calendar_id: Optional[str] = None) -> dict:
        cal = calendar_id or self.calendar_id
        return await self._execute(
            lambda s: s.events().insert(calendarId=cal, body=body),
            "insert",
        )

    async def update_event(
        self, event_id: str, body: dict, calendar_id: Optional[str] = None
    ) -> dict:
        cal = calendar_id or self.calendar_id
        return await self._execute(
            lambda s: s.events().update(calendarId=cal, eventId=event_id, body=body),
            "update",
        )

    async def delete_event(self, event_id: str, calendar_id: Optional[str] = None) -> None:
        cal = calendar_id or self.calendar_id
        await self._execute(
            lambda s: s.events().delete(calendarId=cal, eventId=event_id),
            "delete",
        )

    async def list_calendars(self) -> List[dict]:
        items: List[dict] = []
        page_token = None
        while True:
            result = await self._execute(
                lambda s, token=page_token: s.calendarList().list(pageToken=token),
                "calendarList.list",
            )
            items.extend(result.get("items", []))
            page_token = result.get("nextPageToken")
            if not page_token:
                break
        return items

    async def get_calendar(self, calendar_id: Optional[str] = None) -> dict:
        cal = calendar_id or self.calendar_id
        return await self._execute(
            lambda s: s.calendars().get(calendarId=cal),
            "calendars.get",
        )

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


SyncAction = Literal[
    "create",
    "update",
    "delete",
    "refresh_token",
    "full_sync",
    "connect",
    "disconnect",
]
SyncOutcome = Literal["success", "failed"]
MappingStatus = Literal["active", "deleted"]

ALLOWED_PREFERENCE_KEYS = (
    "sync_new_assignments",
    "add_prep_reminders",
    "prep_reminder_minutes",
    "include_team_as_attendees",
    "event_color",
)


class Assignment(BaseModel):
    """
    Interpreting assignment as read from the host app.

    Every field is optional here on purpose: the host rows are not trusted,
    and the event mapper decides what is missing or malformed.
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: Optional[str] = None
    title: Optional[str] = None
    date: Optional[str] = None
    time: Optional[str] = None
    timezone: Optional[str] = None
    duration_minutes: Optional[int] = None
    type: Optional[str] = Field(
        None, validation_alias=AliasChoices("type", "assignment_type")
    )
    setting: Optional[str] = None
    location_type: Optional[str] = None
    location_details: Optional[str] = None
    description: Optional[str] = None
    prep_status: Optional[str] = None

    @field_validator("id", mode="before")
    @classmethod
    def id_as_str(cls, v: Any) -> Optional[str]:
        # host rows carry UUID objects straight from asyncpg
        return str(v) if v is not None else None

    @field_validator("date", "time", mode="before")
    @classmethod
    def temporal_as_str(cls, v: Any) -> Optional[str]:
        if v is None:
            return None
        if hasattr(v, "isoformat"):
            return v.isoformat()
        return str(v)


class SyncPreferences(BaseModel):
    """
    Per-connection sync preferences.

    Only add_prep_reminders, prep_reminder_minutes and event_color shape the
    event. sync_new_assignments and include_team_as_attendees are stored and
    reported for the host app; the engine does not act on them.
    """

    model_config = ConfigDict(extra="ignore")

    sync_new_assignments: bool = True
    add_prep_reminders: bool = True
    prep_reminder_minutes: int = Field(60, ge=0, le=40320)
    include_team_as_attendees: bool = False
    event_color: Optional[str] = None


class SyncResult(BaseModel):
    success: bool
    event_id: Optional[str] = None
    event_link: Optional[str] = None
    error: Optional[str] = None


class BatchItemResult(SyncResult):
    id: str


class BatchSyncResult(BaseModel):
    synced: int = 0
    failed: int = 0
    errors: List[str] = Field(default_factory=list)


class BatchSyncReport(BaseModel):
    results: List[BatchItemResult] = Field(default_factory=list)
    synced: int = 0
    failed: int = 0


class DeleteResult(BaseModel):
    success: bool
    error: Optional[str] = None


class ConnectionStatus(BaseModel):
    connected: bool
    calendar_id: Optional[str] = None
    calendar_name: Optional[str] = None
    # host-app flag, reported as stored
    auto_sync_enabled: Optional[bool] = None
    sync_preferences: Dict[str, Any] = Field(default_factory=dict)
    last_sync_at: Optional[datetime] = None
    synced_events_count: int = 0
    pending_events_count: int = 0


class CalendarSummary(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    summary: str = ""
    primary: bool = False
    access_role: Optional[str] = Field(
        None, validation_alias=AliasChoices("accessRole", "access_role")
    )
    time_zone: Optional[str] = Field(
        None, validation_alias=AliasChoices("timeZone", "time_zone")
    )

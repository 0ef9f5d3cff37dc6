"""
Assignment -> Google Calendar event payload.

Pure and deterministic: no I/O and no clock, so the same assignment (and the
same preferences) always produces the same payload and a re-sync is a no-op
update on the provider side.
"""

from __future__ import annotations

import re
from datetime import datetime, timedelta
from typing import Any, Dict, Mapping, Optional, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import pydantic

from assignment_sync.errors import ValidationError
from assignment_sync.models import Assignment, SyncPreferences

DEFAULT_TIME = "09:00:00"
DEFAULT_DURATION_MIN = 60
MIN_DURATION_MIN = 15
MAX_DURATION_MIN = 480

TITLE_MAX = 100
DESCRIPTION_MAX = 2000
LOCATION_MAX = 200
LABEL_MAX = 1000

DEFAULT_COLOR_ID = "8"
FALLBACK_TITLE = "Interpreting Assignment"
VIRTUAL_LOCATION = "Virtual (link in notes)"
EVENT_SOURCE = "assignment-sync"

# Google Calendar colorId per assignment category
TYPE_TO_COLOR: Dict[str, str] = {
    "Medical": "11",  # Tomato
    "Legal": "3",  # Grape
    "Educational": "10",  # Basil
    "VRS": "7",  # Peacock
    "VRI": "9",  # Blueberry
    "Community": "5",  # Banana
    "Mental Health": "1",  # Lavender
    "Conference": "6",  # Tangerine
    "Business": "2",  # Sage
    "Government": "4",  # Flamingo
}
VALID_COLOR_IDS = {str(i) for i in range(1, 12)}

_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_TIME_RE = re.compile(r"^(\d{2}):(\d{2})(?::(\d{2}))?$")
_TAG_RE = re.compile(r"<[^>]*>")
_CONTROL_RE = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")


def sanitize_text(text: Optional[str], max_length: int = LABEL_MAX) -> str:
    """Strip HTML tags and control characters, then cap the length."""
    if not text:
        return ""
    cleaned = _CONTROL_RE.sub("", _TAG_RE.sub("", str(text)))
    return cleaned[:max_length].strip()


def _parse_date(value: str) -> datetime:
    if not _DATE_RE.match(value):
        raise ValidationError(f"date must be YYYY-MM-DD, got {value!r}")
    try:
        return datetime.strptime(value, "%Y-%m-%d")
    except ValueError:
        raise ValidationError(f"date is not a real calendar day: {value!r}")


def _parse_time(value: Optional[str]) -> timedelta:
    if not value:
        value = DEFAULT_TIME
    match = _TIME_RE.match(value.strip())
    if not match:
        raise ValidationError(f"time must be HH:MM or HH:MM:SS, got {value!r}")
    hours, minutes, seconds = (int(g) if g else 0 for g in match.groups())
    if hours > 23 or minutes > 59 or seconds > 59:
        raise ValidationError(f"time out of range: {value!r}")
    return timedelta(hours=hours, minutes=minutes, seconds=seconds)


def _resolve_timezone(value: Optional[str], default_timezone: str) -> str:
    tz_name = (value or "").strip() or default_timezone
    try:
        ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError):
        raise ValidationError(f"unknown timezone {tz_name!r}")
    return tz_name


def clamp_duration(minutes: Optional[int]) -> int:
    if not minutes:
        minutes = DEFAULT_DURATION_MIN
    return min(max(int(minutes), MIN_DURATION_MIN), MAX_DURATION_MIN)


def _coerce(assignment: Union[Assignment, Mapping[str, Any]]) -> Assignment:
    if isinstance(assignment, Assignment):
        return assignment
    try:
        return Assignment.model_validate(dict(assignment))
    except pydantic.ValidationError as e:
        raise ValidationError(str(e.errors()[0].get("msg", e))) from e


def _build_description(a: Assignment, app_url: str) -> str:
    description = sanitize_text(a.description, DESCRIPTION_MAX)
    description += "\n\n---\n"
    description += f"Type: {sanitize_text(a.type) or 'General'}\n"
    if a.setting:
        description += f"Setting: {sanitize_text(a.setting)}\n"
    if a.location_type:
        description += f"Format: {sanitize_text(a.location_type)}\n"
    description += f"\n[Prep & Details]({app_url}/assignments/{a.id})"
    return description


def _build_location(a: Assignment) -> str:
    details = sanitize_text(a.location_details, LOCATION_MAX)
    if a.location_type == "virtual":
        return details or VIRTUAL_LOCATION
    return details


def _build_reminders(prefs: SyncPreferences) -> dict:
    overrides = []
    if prefs.add_prep_reminders and prefs.prep_reminder_minutes != 15:
        overrides.append({"method": "popup", "minutes": prefs.prep_reminder_minutes})
    overrides.append({"method": "popup", "minutes": 15})
    return {"useDefault": False, "overrides": overrides}


def _color_for(a: Assignment, prefs: SyncPreferences) -> str:
    if prefs.event_color in VALID_COLOR_IDS:
        return prefs.event_color
    return TYPE_TO_COLOR.get(a.type or "", DEFAULT_COLOR_ID)


def assignment_to_event(
    assignment: Union[Assignment, Mapping[str, Any]],
    *,
    app_url: str,
    default_timezone: str = "America/New_York",
    summary_prefix: str = "[IR]",
    preferences: Optional[SyncPreferences] = None,
) -> dict:
    """
    Build the Google Calendar event body for an assignment.

    Raises ValidationError when the assignment lacks id/title/date or carries
    a malformed date, time or timezone.
    """
    a = _coerce(assignment)
    prefs = preferences or SyncPreferences()

    missing = [name for name in ("id", "title", "date") if not getattr(a, name)]
    if missing:
        raise ValidationError(f"missing required field(s): {', '.join(missing)}")

    start = _parse_date(a.date) + _parse_time(a.time)
    end = start + timedelta(minutes=clamp_duration(a.duration_minutes))
    tz_name = _resolve_timezone(a.timezone, default_timezone)

    title = sanitize_text(a.title, TITLE_MAX) or FALLBACK_TITLE
    summary = f"{summary_prefix} {title}" if summary_prefix else title

    return {
        "summary": summary,
        "description": _build_description(a, app_url.rstrip("/")),
        "location": _build_location(a),
        "start": {"dateTime": start.strftime("%Y-%m-%dT%H:%M:%S"), "timeZone": tz_name},
        "end": {"dateTime": end.strftime("%Y-%m-%dT%H:%M:%S"), "timeZone": tz_name},
        "colorId": _color_for(a, prefs),
        "reminders": _build_reminders(prefs),
        "extendedProperties": {
            "private": {
                "source": EVENT_SOURCE,
                "assignment_id": a.id,
                "assignment_type": a.type or "",
                "prep_status": a.prep_status or "pending",
            }
        },
    }

"""Data models for the activity time tracker."""
from __future__ import annotations

import re
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .errors import InvalidInputError

DEFAULT_COLOR = "#4ECDC4"
SWATCHES = (
    "#4ECDC4",
    "#FF6B6B",
    "#96CEB4",
    "#FFEAA7",
    "#DDA0DD",
    "#45B7D1",
    "#F7DC6F",
    "#98D8C8",
)
DEFAULT_ACTIVITIES = (
    ("Work", "#4ECDC4"),
    ("Learning", "#FF6B6B"),
    ("Exercise", "#96CEB4"),
)

_COLOR_RE = re.compile(r"^#[0-9A-Fa-f]{6}$")


def generate_id() -> str:
    return uuid.uuid4().hex


def normalize_color(color: Optional[str]) -> str:
    value = (color or DEFAULT_COLOR).strip()
    if not _COLOR_RE.match(value):
        raise InvalidInputError(f"Invalid color swatch: {color!r}")
    return value.upper()


def _require(data: Dict[str, Any], key: str, kind: type) -> Any:
    value = data.get(key)
    if kind is int and isinstance(value, float) and value.is_integer():
        value = int(value)
    if not isinstance(value, kind) or isinstance(value, bool):
        raise InvalidInputError(f"Field '{key}' must be {kind.__name__}, got {value!r}")
    return value


@dataclass
class Activity:
    """A named category that time is tracked against."""

    id: str
    name: str
    color: str = DEFAULT_COLOR
    total_minutes: int = 0
    created_at: int = 0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Activity":
        if not isinstance(data, dict):
            raise InvalidInputError(f"Activity record must be an object, got {data!r}")
        created_at = data.get("createdAt")
        return cls(
            id=_require(data, "id", str),
            name=_require(data, "name", str),
            color=data.get("color") or DEFAULT_COLOR,
            total_minutes=_require(data, "totalMinutes", int) if "totalMinutes" in data else 0,
            created_at=int(created_at) if created_at is not None else 0,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "color": self.color,
            "totalMinutes": self.total_minutes,
            "createdAt": self.created_at,
        }


@dataclass
class Session:
    """One contiguous timed interval. Running while ``end_time`` is None."""

    id: str
    activity_id: str
    activity_name: str
    start_time: int
    end_time: Optional[int] = None
    duration: Optional[int] = None

    @property
    def is_running(self) -> bool:
        return self.end_time is None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Session":
        if not isinstance(data, dict):
            raise InvalidInputError(f"Session record must be an object, got {data!r}")
        end_time = data.get("endTime")
        duration = data.get("duration")
        session = cls(
            id=_require(data, "id", str),
            activity_id=_require(data, "activityId", str),
            activity_name=data.get("activityName") or "",
            start_time=_require(data, "startTime", int),
            end_time=int(end_time) if end_time is not None else None,
            duration=int(duration) if duration is not None else None,
        )
        if session.end_time is not None and session.duration is None:
            session.duration = max(session.end_time - session.start_time, 0)
        return session

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": self.id,
            "activityId": self.activity_id,
            "activityName": self.activity_name,
            "startTime": self.start_time,
        }
        if self.end_time is not None:
            data["endTime"] = self.end_time
            data["duration"] = self.duration
        return data


@dataclass
class TrackerState:
    """In-memory state shared by the registry and the session timer.

    Lists are replaced wholesale on every change, never mutated in place,
    so a reference handed to another thread stays a consistent snapshot.
    """

    activities: List[Activity] = field(default_factory=list)
    sessions: List[Session] = field(default_factory=list)
    running_session: Optional[Session] = None


@dataclass
class ActivitySummary:
    """Per-activity figures for dashboards."""

    activity: Activity
    session_count: int
    last_session_end: Optional[int]


@dataclass
class DashboardStats:
    today_minutes: int
    week_minutes: int
    today_session_count: int
    activities: List[ActivitySummary]
    recent_sessions: List[Session]

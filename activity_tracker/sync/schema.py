"""Table layout of the mirror document and the backend contract."""
from __future__ import annotations

from typing import List, Optional, Protocol, Sequence

from ..tracker.formatting import local_date, round_minutes, to_iso
from ..tracker.models import Activity, Session

DOCUMENT_NAME = "Activity Time Tracker"
SCHEMA_VERSION = "1"

ACTIVITIES_TABLE = "Activities"
SESSIONS_TABLE = "Sessions"
METADATA_TABLE = "Metadata"

HEADERS = {
    ACTIVITIES_TABLE: ["ID", "Name", "Color", "Total Minutes", "Created At"],
    SESSIONS_TABLE: [
        "ID",
        "Activity ID",
        "Activity Name",
        "Start Time",
        "End Time",
        "Duration (min)",
        "Date",
    ],
    METADATA_TABLE: ["Key", "Value"],
}
TABLES = (ACTIVITIES_TABLE, SESSIONS_TABLE, METADATA_TABLE)

LAST_SYNC_KEY = "Last Sync"
VERSION_KEY = "Version"

Row = List[object]


def activity_row(activity: Activity) -> Row:
    return [
        activity.id,
        activity.name,
        activity.color,
        activity.total_minutes,
        to_iso(activity.created_at),
    ]


def session_row(session: Session) -> Row:
    return [
        session.id,
        session.activity_id,
        session.activity_name,
        to_iso(session.start_time),
        to_iso(session.end_time) if session.end_time is not None else "",
        round_minutes(session.duration or 0),
        local_date(session.start_time),
    ]


class MirrorBackend(Protocol):
    """Operations a mirror document provider must support.

    Implementations raise ``MirrorDocumentMissingError`` when the document is
    gone and ``MirrorUnavailableError`` for every other failure.
    """

    def authorize(self) -> None: ...

    def exists(self, document_id: str) -> bool: ...

    def find(self, name: str) -> Optional[str]: ...

    def create(self, name: str) -> str: ...

    def clear_rows(self, document_id: str, table: str) -> None: ...

    def append_rows(self, document_id: str, table: str, rows: Sequence[Row]) -> None: ...

    def replace_rows(self, document_id: str, table: str, rows: Sequence[Row]) -> None: ...

    def set_metadata(self, document_id: str, key: str, value: str) -> None: ...

    def close(self) -> None: ...

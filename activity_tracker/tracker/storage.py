"""SQLite-backed persistence of the tracker records.

The database is used as a durable key-value store: each logical record
(activity list, session log, running-session marker, mirror handle) is one
JSON document in the ``records`` table. Every write runs in a single
transaction, so a record is either fully replaced or keeps its old value.
"""
from __future__ import annotations

import json
import logging
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterator, List, Optional, Sequence, Tuple

from .errors import InvalidInputError, StorageUnavailableError
from .formatting import now_ms, to_iso
from .models import DEFAULT_ACTIVITIES, Activity, Session, generate_id

LOGGER = logging.getLogger(__name__)

ACTIVITIES_KEY = "activities"
SESSIONS_KEY = "sessions"
CURRENT_SESSION_KEY = "currentSession"
MIRROR_KEY = "mirrorDocumentId"

_UNSET = object()


@dataclass
class StoreSnapshot:
    activities: List[Activity]
    sessions: List[Session]
    running_session: Optional[Session]


class Storage:
    """Wrapper around SQLite holding the tracker records."""

    def __init__(self, db_path: Path, clock=now_ms) -> None:
        self.db_path = Path(db_path)
        self.clock = clock
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StorageUnavailableError(f"Cannot create data directory for {self.db_path}") from exc
        self._init_db()

    @contextmanager
    def _get_conn(self) -> Iterator[sqlite3.Connection]:
        try:
            conn = sqlite3.connect(self.db_path)
        except sqlite3.Error as exc:
            raise StorageUnavailableError(f"Cannot open {self.db_path}: {exc}") from exc
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as exc:
            conn.rollback()
            LOGGER.exception("Database operation failed")
            raise StorageUnavailableError(f"Storage operation failed: {exc}") from exc
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_db(self) -> None:
        with self._get_conn() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS records (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                )
                """
            )

    def _get(self, conn: sqlite3.Connection, key: str) -> Any:
        row = conn.execute("SELECT value FROM records WHERE key = ?", (key,)).fetchone()
        if row is None:
            return None
        try:
            return json.loads(row[0])
        except ValueError as exc:
            raise StorageUnavailableError(f"Record '{key}' is corrupted") from exc

    @staticmethod
    def _put(conn: sqlite3.Connection, key: str, value: Any) -> None:
        if value is None:
            conn.execute("DELETE FROM records WHERE key = ?", (key,))
            return
        conn.execute(
            "INSERT INTO records (key, value) VALUES (?, ?) "
            "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
            (key, json.dumps(value)),
        )

    def load(self) -> StoreSnapshot:
        """Read all records, seeding the default activities on first run."""
        with self._get_conn() as conn:
            raw_activities = self._get(conn, ACTIVITIES_KEY)
            raw_sessions = self._get(conn, SESSIONS_KEY)
            raw_current = self._get(conn, CURRENT_SESSION_KEY)
            if raw_activities is None:
                created = self.clock()
                activities = [
                    Activity(id=generate_id(), name=name, color=color, created_at=created)
                    for name, color in DEFAULT_ACTIVITIES
                ]
                self._put(conn, ACTIVITIES_KEY, [a.to_dict() for a in activities])
                LOGGER.info("Seeded %s default activities", len(activities))
            else:
                activities = self._decode(ACTIVITIES_KEY, raw_activities, Activity)
        sessions = self._decode(SESSIONS_KEY, raw_sessions or [], Session)
        running = None
        if raw_current is not None:
            running = self._decode(CURRENT_SESSION_KEY, [raw_current], Session)[0]
        LOGGER.debug("Loaded %s activities and %s sessions", len(activities), len(sessions))
        return StoreSnapshot(activities=activities, sessions=sessions, running_session=running)

    @staticmethod
    def _decode(key: str, raw: Any, model) -> list:
        if not isinstance(raw, list):
            raise StorageUnavailableError(f"Record '{key}' is corrupted")
        try:
            return [model.from_dict(item) for item in raw]
        except InvalidInputError as exc:
            raise StorageUnavailableError(f"Record '{key}' is corrupted: {exc}") from exc

    def commit(
        self,
        *,
        activities: Any = _UNSET,
        sessions: Any = _UNSET,
        running_session: Any = _UNSET,
    ) -> None:
        """Write any subset of the three records in one transaction."""
        with self._get_conn() as conn:
            if activities is not _UNSET:
                self._put(conn, ACTIVITIES_KEY, [a.to_dict() for a in activities])
            if sessions is not _UNSET:
                self._put(conn, SESSIONS_KEY, [s.to_dict() for s in sessions])
            if running_session is not _UNSET:
                self._put(
                    conn,
                    CURRENT_SESSION_KEY,
                    running_session.to_dict() if running_session is not None else None,
                )

    def save_activities(self, activities: Sequence[Activity]) -> None:
        self.commit(activities=activities)
        LOGGER.debug("Saved %s activities", len(activities))

    def save_sessions(self, sessions: Sequence[Session]) -> None:
        self.commit(sessions=sessions)
        LOGGER.debug("Saved %s sessions", len(sessions))

    def save_running_session(self, session: Optional[Session]) -> None:
        self.commit(running_session=session)

    def clear_all(self) -> None:
        with self._get_conn() as conn:
            for key in (ACTIVITIES_KEY, SESSIONS_KEY, CURRENT_SESSION_KEY):
                self._put(conn, key, None)
        LOGGER.info("Cleared all local records")

    def load_mirror_handle(self) -> Optional[str]:
        with self._get_conn() as conn:
            value = self._get(conn, MIRROR_KEY)
        return value if isinstance(value, str) and value else None

    def save_mirror_handle(self, document_id: Optional[str]) -> None:
        with self._get_conn() as conn:
            self._put(conn, MIRROR_KEY, document_id or None)


def build_snapshot(activities: Sequence[Activity], sessions: Sequence[Session], now: int) -> dict:
    """Backup document: ``{activities, sessions, exportDate}``."""
    return {
        "activities": [a.to_dict() for a in activities],
        "sessions": [s.to_dict() for s in sessions],
        "exportDate": to_iso(now),
    }


def backup_filename(now: int) -> str:
    return f"time-tracker-backup-{now}.json"


def write_snapshot(path: Path, snapshot: dict) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(snapshot, indent=2), encoding="utf-8")
    LOGGER.info(
        "Exported %s activities and %s sessions to %s",
        len(snapshot["activities"]),
        len(snapshot["sessions"]),
        path,
    )
    return path


def parse_snapshot(data: Any) -> Tuple[List[Activity], List[Session]]:
    if not isinstance(data, dict):
        raise InvalidInputError("Backup must be an object with 'activities' and 'sessions'")
    raw_activities = data.get("activities")
    raw_sessions = data.get("sessions")
    if not isinstance(raw_activities, list) or not isinstance(raw_sessions, list):
        raise InvalidInputError("Backup must contain 'activities' and 'sessions' lists")
    activities = [Activity.from_dict(item) for item in raw_activities]
    sessions = [Session.from_dict(item) for item in raw_sessions]
    if any(s.is_running for s in sessions):
        raise InvalidInputError("Backup contains a session without an end time")
    names = [a.name.strip().lower() for a in activities]
    if len(set(names)) != len(names):
        raise InvalidInputError("Backup contains duplicate activity names")
    return activities, sessions


def read_snapshot(path: Path) -> Tuple[List[Activity], List[Session]]:
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(path)
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except ValueError as exc:
        raise InvalidInputError(f"{path} is not a valid backup file") from exc
    return parse_snapshot(data)

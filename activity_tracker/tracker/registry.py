"""Activity registry: CRUD over activities and their aggregate totals."""
from __future__ import annotations

import logging
from dataclasses import replace
from typing import Callable, Dict, List, Optional, Tuple

from .errors import ActivityInUseError, DuplicateNameError, InvalidInputError, NotFoundError
from .formatting import now_ms, round_minutes
from .models import Activity, Session, TrackerState, generate_id, normalize_color
from .storage import Storage

LOGGER = logging.getLogger(__name__)


class ActivityRegistry:
    """Owns the activity list inside the shared :class:`TrackerState`.

    Every mutation validates first, writes through to the store, and only
    then swaps the in-memory list, so a failed write leaves both untouched.
    """

    def __init__(self, store: Storage, state: TrackerState, clock: Callable[[], int] = now_ms) -> None:
        self.store = store
        self.state = state
        self.clock = clock

    def list(self) -> List[Activity]:
        return list(self.state.activities)

    def find(self, activity_id: str) -> Optional[Activity]:
        for activity in self.state.activities:
            if activity.id == activity_id:
                return activity
        return None

    def find_by_name(self, name: str) -> Optional[Activity]:
        key = name.strip().lower()
        for activity in self.state.activities:
            if activity.name.strip().lower() == key:
                return activity
        return None

    def create(self, name: str, color: Optional[str] = None) -> Activity:
        clean_name = (name or "").strip()
        if not clean_name:
            raise InvalidInputError("Please enter an activity name")
        swatch = normalize_color(color)
        if self.find_by_name(clean_name) is not None:
            raise DuplicateNameError(clean_name)
        activity = Activity(
            id=generate_id(),
            name=clean_name,
            color=swatch,
            total_minutes=0,
            created_at=self.clock(),
        )
        activities = [*self.state.activities, activity]
        self.store.save_activities(activities)
        self.state.activities = activities
        LOGGER.info("Created activity %s (%s)", clean_name, activity.id)
        return activity

    def delete(self, activity_id: str) -> int:
        """Delete an activity and every session recorded against it.

        Returns the number of sessions removed by the cascade.
        """
        if self.find(activity_id) is None:
            raise NotFoundError("activity", activity_id)
        running = self.state.running_session
        if running is not None and running.activity_id == activity_id:
            raise ActivityInUseError("Stop the running timer before deleting its activity")
        activities = [a for a in self.state.activities if a.id != activity_id]
        sessions = [s for s in self.state.sessions if s.activity_id != activity_id]
        removed = len(self.state.sessions) - len(sessions)
        self.store.commit(activities=activities, sessions=sessions)
        self.state.activities = activities
        self.state.sessions = sessions
        LOGGER.info("Deleted activity %s and %s sessions", activity_id, removed)
        return removed

    def with_completed_session(
        self, activity_id: str, duration_ms: int
    ) -> Tuple[List[Activity], Optional[Activity]]:
        """Return the activity list with the session applied, without persisting it."""
        updated: Optional[Activity] = None
        activities: List[Activity] = []
        for activity in self.state.activities:
            if activity.id == activity_id:
                updated = replace(
                    activity, total_minutes=activity.total_minutes + round_minutes(duration_ms)
                )
                activities.append(updated)
            else:
                activities.append(activity)
        return activities, updated

    def apply_completed_session(self, activity_id: str, duration_ms: int) -> Optional[Activity]:
        activities, updated = self.with_completed_session(activity_id, duration_ms)
        if updated is None:
            LOGGER.info("Activity %s no longer exists; total not updated", activity_id)
            return None
        self.store.save_activities(activities)
        self.state.activities = activities
        return updated

    def sessions_for(self, activity_id: str) -> List[Session]:
        return [s for s in self.state.sessions if s.activity_id == activity_id]

    def session_count(self, activity_id: str) -> int:
        return len(self.sessions_for(activity_id))

    def last_session(self, activity_id: str) -> Optional[Session]:
        sessions = self.sessions_for(activity_id)
        return sessions[-1] if sessions else None

    def recompute_totals(self) -> Dict[str, int]:
        totals = {a.id: 0 for a in self.state.activities}
        for session in self.state.sessions:
            if session.activity_id in totals and session.duration is not None:
                totals[session.activity_id] += round_minutes(session.duration)
        return totals

    def reconcile(self) -> Dict[str, Tuple[int, int]]:
        """Map of activity id to ``(stored, recomputed)`` for every mismatch."""
        recomputed = self.recompute_totals()
        return {
            a.id: (a.total_minutes, recomputed[a.id])
            for a in self.state.activities
            if a.total_minutes != recomputed[a.id]
        }

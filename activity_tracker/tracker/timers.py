"""Timer/session state machine with crash recovery and an elapsed-time ticker."""
from __future__ import annotations

import logging
import threading
from enum import Enum
from typing import Callable, Optional

from .errors import AlreadyRunningError, NotFoundError, NotRunningError
from .formatting import format_duration, now_ms
from .models import Session, TrackerState, generate_id
from .registry import ActivityRegistry
from .storage import Storage

LOGGER = logging.getLogger(__name__)


class TimerState(Enum):
    IDLE = "idle"
    RUNNING = "running"


class ElapsedTicker:
    """Calls ``callback(elapsed_ms)`` every ``interval`` seconds until cancelled.

    Elapsed time is recomputed from ``start_time`` on every tick, so missed
    or late ticks never drift the displayed value.
    """

    def __init__(
        self,
        interval: float,
        start_time: int,
        callback: Callable[[int], None],
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.interval = interval
        self.start_time = start_time
        self.callback = callback
        self.clock = clock
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def is_alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        self._thread = threading.Thread(target=self._run_loop, name="elapsed-ticker", daemon=True)
        self._thread.start()

    def _run_loop(self) -> None:
        while not self._stop_event.wait(self.interval):
            try:
                self.callback(max(self.clock() - self.start_time, 0))
            except Exception:  # noqa: BLE001
                LOGGER.exception("Timer tick callback failed")

    def cancel(self) -> None:
        self._stop_event.set()
        if self._thread and self._thread.is_alive() and self._thread is not threading.current_thread():
            self._thread.join(timeout=1)
        self._thread = None


class SessionTimer:
    """Idle/Running state machine; at most one running session system-wide.

    The running session is written to the store's current-session marker
    before the in-memory state changes, so a crash at any point leaves a
    recoverable record.
    """

    def __init__(
        self,
        store: Storage,
        registry: ActivityRegistry,
        state: TrackerState,
        clock: Callable[[], int] = now_ms,
        tick_interval: Optional[float] = 1.0,
        on_tick: Optional[Callable[[int], None]] = None,
    ) -> None:
        self.store = store
        self.registry = registry
        self.state = state
        self.clock = clock
        self.tick_interval = tick_interval
        self.on_tick = on_tick
        self._ticker: Optional[ElapsedTicker] = None

    @property
    def status(self) -> TimerState:
        return TimerState.RUNNING if self.state.running_session is not None else TimerState.IDLE

    @property
    def running_session(self) -> Optional[Session]:
        return self.state.running_session

    def recover(self) -> Optional[Session]:
        """Resume the persisted running session, if any, after a restart."""
        session = self.state.running_session
        if session is None:
            return None
        if self.registry.find(session.activity_id) is None:
            LOGGER.warning(
                "Recovered session %s references deleted activity '%s'; its time will not be totalled",
                session.id,
                session.activity_name,
            )
        LOGGER.info(
            "Recovered running session for %s (elapsed %s)",
            session.activity_name,
            format_duration(self.elapsed_ms()),
        )
        self._start_ticker(session)
        return session

    def start(self, activity_id: str) -> Session:
        if self.state.running_session is not None:
            raise AlreadyRunningError(
                f"A timer is already running for {self.state.running_session.activity_name}"
            )
        activity = self.registry.find(activity_id)
        if activity is None:
            raise NotFoundError("activity", activity_id)
        session = Session(
            id=generate_id(),
            activity_id=activity.id,
            activity_name=activity.name,
            start_time=self.clock(),
        )
        self.store.save_running_session(session)
        self.state.running_session = session
        self._start_ticker(session)
        LOGGER.info("Started timer for activity %s", activity.name)
        return session

    def stop(self) -> Session:
        running = self.state.running_session
        if running is None:
            raise NotRunningError("No timer is running")
        end_time = max(self.clock(), running.start_time)
        finished = Session(
            id=running.id,
            activity_id=running.activity_id,
            activity_name=running.activity_name,
            start_time=running.start_time,
            end_time=end_time,
            duration=end_time - running.start_time,
        )
        sessions = [*self.state.sessions, finished]
        activities, updated = self.registry.with_completed_session(finished.activity_id, finished.duration)
        if updated is None:
            LOGGER.warning("Activity %s is gone; recording session without totals", finished.activity_id)
        self.store.commit(activities=activities, sessions=sessions, running_session=None)
        self.state.activities = activities
        self.state.sessions = sessions
        self.state.running_session = None
        self._cancel_ticker()
        LOGGER.info("Stopped timer for %s after %s", finished.activity_name, format_duration(finished.duration))
        return finished

    def forget(self) -> Optional[Session]:
        """Drop the running session from memory once the store no longer holds its marker."""
        running = self.state.running_session
        self._cancel_ticker()
        self.state.running_session = None
        if running is not None:
            LOGGER.info("Discarded running session for %s", running.activity_name)
        return running

    def elapsed_ms(self, now: Optional[int] = None) -> int:
        running = self.state.running_session
        if running is None:
            return 0
        current = now if now is not None else self.clock()
        return max(current - running.start_time, 0)

    def elapsed_display(self, now: Optional[int] = None) -> str:
        return format_duration(self.elapsed_ms(now))

    def shutdown(self) -> None:
        self._cancel_ticker()

    def _start_ticker(self, session: Session) -> None:
        self._cancel_ticker()
        if not self.tick_interval or self.on_tick is None:
            return
        self._ticker = ElapsedTicker(self.tick_interval, session.start_time, self.on_tick, self.clock)
        self._ticker.start()

    def _cancel_ticker(self) -> None:
        if self._ticker is not None:
            self._ticker.cancel()
            self._ticker = None

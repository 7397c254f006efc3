"""Controllers orchestrating storage, timers, the registry and the mirror."""
from __future__ import annotations

import json
import logging
import tomllib
from concurrent.futures import Future
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional

from .errors import AlreadyRunningError, InvalidInputError
from .formatting import format_duration, local_midnight, now_ms, round_minutes
from .models import DEFAULT_COLOR, Activity, ActivitySummary, DashboardStats, Session, TrackerState
from .registry import ActivityRegistry
from .storage import Storage, backup_filename, build_snapshot, read_snapshot, write_snapshot
from .timers import SessionTimer

if TYPE_CHECKING:
    from ..sync.engine import MirrorSyncEngine, StatusListener, SyncStatus

LOGGER = logging.getLogger(__name__)


CONFIG_DIR = Path.home() / ".activity_tracker"
CONFIG_FILE_NAME = "config.toml"
DEFAULT_CONFIG_PATH = Path(__file__).resolve().parent.parent / "config" / "default_config.toml"
MIRROR_BACKENDS = ("none", "workbook", "google")

StateListener = Callable[[str, Any], None]


def _quote(value: str) -> str:
    return json.dumps(value)


@dataclass
class AppConfig:
    data_path: str = ""
    export_dir: str = ""
    default_color: str = DEFAULT_COLOR
    tick_interval_seconds: float = 1.0
    mirror_backend: str = "none"
    mirror_folder: str = ""
    google_client_secrets: str = ""
    auto_connect_mirror: bool = True
    shutdown_timeout_seconds: float = 10.0

    @classmethod
    def from_toml(cls, data: dict) -> "AppConfig":
        def as_float(key: str, default: float) -> float:
            try:
                return max(float(data.get(key, default)), 0.0)
            except (TypeError, ValueError):
                LOGGER.warning("Invalid value for %s; using %s", key, default)
                return default

        backend = str(data.get("mirror_backend", "none") or "none").lower()
        if backend not in MIRROR_BACKENDS:
            LOGGER.warning("Unknown mirror backend %r; mirroring disabled", backend)
            backend = "none"
        return cls(
            data_path=str(data.get("data_path", "") or ""),
            export_dir=str(data.get("export_dir", "") or ""),
            default_color=str(data.get("default_color", DEFAULT_COLOR) or DEFAULT_COLOR),
            tick_interval_seconds=as_float("tick_interval_seconds", 1.0),
            mirror_backend=backend,
            mirror_folder=str(data.get("mirror_folder", "") or ""),
            google_client_secrets=str(data.get("google_client_secrets", "") or ""),
            auto_connect_mirror=bool(data.get("auto_connect_mirror", True)),
            shutdown_timeout_seconds=as_float("shutdown_timeout_seconds", 10.0),
        )

    def to_toml(self) -> str:
        lines = [
            f"data_path = {_quote(self.data_path)}",
            f"export_dir = {_quote(self.export_dir)}",
            f"default_color = {_quote(self.default_color)}",
            f"tick_interval_seconds = {float(self.tick_interval_seconds)}",
            f"mirror_backend = {_quote(self.mirror_backend)}",
            f"mirror_folder = {_quote(self.mirror_folder)}",
            f"google_client_secrets = {_quote(self.google_client_secrets)}",
            f"auto_connect_mirror = {str(bool(self.auto_connect_mirror)).lower()}",
            f"shutdown_timeout_seconds = {float(self.shutdown_timeout_seconds)}",
        ]
        return "\n".join(lines) + "\n"


class ConfigManager:
    def __init__(self, config_dir: Path = CONFIG_DIR) -> None:
        self.config_dir = Path(config_dir)
        self.config_file = self.config_dir / CONFIG_FILE_NAME
        self.config_dir.mkdir(parents=True, exist_ok=True)
        self.config = self._load()

    def _load(self) -> AppConfig:
        if self.config_file.exists():
            with open(self.config_file, "rb") as fh:
                data = tomllib.load(fh)
                return AppConfig.from_toml(data)
        with open(DEFAULT_CONFIG_PATH, "rb") as fh:
            data = tomllib.load(fh)
            config = AppConfig.from_toml(data)
            self.save(config)
            return config

    def save(self, config: Optional[AppConfig] = None) -> None:
        cfg = config or self.config
        self.config_dir.mkdir(parents=True, exist_ok=True)
        self.config_file.write_text(cfg.to_toml(), encoding="utf-8")
        LOGGER.info("Saved configuration to %s", self.config_file)

    @property
    def data_path(self) -> Path:
        return Path(self.config.data_path).expanduser() if self.config.data_path else self.config_dir / "data.db"

    @property
    def export_dir(self) -> Path:
        return Path(self.config.export_dir).expanduser() if self.config.export_dir else self.config_dir / "exports"

    @property
    def token_path(self) -> Path:
        return self.config_dir / "google_token.json"


class AppController:
    """The only surface presentation code talks to.

    Every mutation is persisted before subscribers are notified, and the
    mirror is only told about it afterwards, without waiting for it.
    """

    def __init__(
        self,
        store: Storage,
        state: TrackerState,
        registry: ActivityRegistry,
        timer: SessionTimer,
        config_manager: ConfigManager,
        mirror: Optional[MirrorSyncEngine] = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.store = store
        self.state = state
        self.registry = registry
        self.timer = timer
        self.config_manager = config_manager
        self.mirror = mirror
        self.clock = clock
        self._listeners: List[StateListener] = []
        self.timer.on_tick = self._on_tick
        self.commands: Dict[str, Callable[..., Any]] = {
            "start_timer": self.start_timer,
            "stop_timer": self.stop_timer,
            "create_activity": self.create_activity,
            "delete_activity": self.delete_activity,
            "list_activities": self.list_activities,
            "list_sessions": self.list_sessions,
            "current_session": self.current_session,
            "elapsed_display": self.elapsed_display,
            "get_stats": self.get_stats,
            "export_snapshot": self.export_snapshot,
            "export_to_file": self.export_to_file,
            "import_snapshot": self.import_snapshot,
            "clear_all_data": self.clear_all_data,
            "connect_mirror": self.connect_mirror,
            "disconnect_mirror": self.disconnect_mirror,
            "sync_now": self.sync_now,
        }

    @property
    def config(self):
        return self.config_manager.config

    def restore(self, auto_connect: bool = True) -> Optional[Session]:
        """Load persisted records, resume a running session, reattach the mirror."""
        snapshot = self.store.load()
        self.state.activities = snapshot.activities
        self.state.sessions = snapshot.sessions
        self.state.running_session = snapshot.running_session
        recovered = self.timer.recover()
        if (
            auto_connect
            and self.mirror is not None
            and self.config.auto_connect_mirror
            and self.mirror.has_stored_handle()
        ):
            self.mirror.connect()
        return recovered

    def dispatch(self, command: str, **kwargs: Any) -> Any:
        handler = self.commands.get(command)
        if handler is None:
            raise InvalidInputError(f"Unknown command: {command}")
        LOGGER.debug("Dispatching %s %s", command, kwargs)
        return handler(**kwargs)

    # Subscriptions
    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def subscribe_sync(self, listener: StatusListener) -> Callable[[], None]:
        if self.mirror is None:
            return lambda: None
        return self.mirror.subscribe(listener)

    def _notify(self, event: str, payload: Any = None) -> None:
        for listener in list(self._listeners):
            try:
                listener(event, payload)
            except Exception:  # noqa: BLE001
                LOGGER.exception("State listener failed for %s", event)

    def _on_tick(self, elapsed_ms: int) -> None:
        self._notify("tick", elapsed_ms)

    # Activity management
    def list_activities(self) -> List[Activity]:
        return self.registry.list()

    def create_activity(self, name: str, color: Optional[str] = None) -> Activity:
        activity = self.registry.create(name, color or self.config.default_color)
        self._notify("activity_created", activity)
        if self.mirror is not None:
            self.mirror.activity_created(activity)
        return activity

    def delete_activity(self, activity_id: str) -> int:
        removed = self.registry.delete(activity_id)
        self._notify("activity_deleted", activity_id)
        if self.mirror is not None:
            self.mirror.full_resync()
        return removed

    # Timer operations
    def start_timer(self, activity_id: str) -> Session:
        session = self.timer.start(activity_id)
        self._notify("timer_started", session)
        if self.mirror is not None:
            self.mirror.session_started(session)
        return session

    def stop_timer(self) -> Session:
        finished = self.timer.stop()
        self._notify("timer_stopped", finished)
        if self.mirror is not None:
            self.mirror.session_completed(finished, self.state.activities)
        return finished

    def current_session(self) -> Optional[Session]:
        return self.timer.running_session

    def elapsed_display(self) -> str:
        return self.timer.elapsed_display()

    # Data retrieval
    def list_sessions(self) -> List[Session]:
        return list(self.state.sessions)

    def get_stats(self, now: Optional[int] = None) -> DashboardStats:
        current = now if now is not None else self.clock()
        today_start = local_midnight(current)
        week_start = local_midnight(current, days_back=7)
        sessions = self.state.sessions
        today = [s for s in sessions if s.start_time >= today_start]
        week = [s for s in sessions if s.start_time >= week_start]
        summaries = []
        for activity in self.state.activities:
            last = self.registry.last_session(activity.id)
            summaries.append(
                ActivitySummary(
                    activity=activity,
                    session_count=self.registry.session_count(activity.id),
                    last_session_end=last.end_time if last else None,
                )
            )
        known = {a.id for a in self.state.activities}
        recent = sorted(
            (s for s in sessions if s.activity_id in known),
            key=lambda s: s.end_time or 0,
            reverse=True,
        )[:10]
        return DashboardStats(
            today_minutes=sum(round_minutes(s.duration or 0) for s in today),
            week_minutes=sum(round_minutes(s.duration or 0) for s in week),
            today_session_count=len(today),
            activities=summaries,
            recent_sessions=recent,
        )

    # Backup
    def export_snapshot(self) -> dict:
        return build_snapshot(self.state.activities, self.state.sessions, self.clock())

    def export_to_file(self, path: Optional[Path] = None) -> Path:
        snapshot = self.export_snapshot()
        target = Path(path) if path else self.config_manager.export_dir / backup_filename(self.clock())
        return write_snapshot(target, snapshot)

    def import_snapshot(self, path: Path) -> int:
        """Replace local activities and sessions with a backup file's content."""
        if self.timer.running_session is not None:
            raise AlreadyRunningError("Stop the running timer before importing a backup")
        activities, sessions = read_snapshot(Path(path))
        self.store.commit(activities=activities, sessions=sessions, running_session=None)
        self.state.activities = activities
        self.state.sessions = sessions
        LOGGER.info("Imported %s activities and %s sessions from %s", len(activities), len(sessions), path)
        self._notify("data_imported", len(sessions))
        if self.mirror is not None:
            self.mirror.full_resync()
        return len(activities)

    def clear_all_data(self) -> None:
        self.store.clear_all()
        self.timer.forget()
        self.state.activities = []
        self.state.sessions = []
        self._notify("data_cleared")
        if self.mirror is not None:
            self.mirror.full_resync()

    # Mirror
    def connect_mirror(self) -> Optional[Future]:
        if self.mirror is None:
            raise InvalidInputError("No mirror backend configured; set mirror_backend in config.toml")
        return self.mirror.connect()

    def disconnect_mirror(self) -> None:
        if self.mirror is not None:
            self.mirror.disconnect()

    def sync_now(self) -> Optional[Future]:
        if self.mirror is None:
            return None
        return self.mirror.full_resync()

    @property
    def sync_status(self) -> Optional[SyncStatus]:
        return self.mirror.status if self.mirror is not None else None

    def status_line(self) -> str:
        running = self.timer.running_session
        if running is None:
            return "Idle"
        return f"{running.activity_name} {format_duration(self.timer.elapsed_ms())}"

    def close(self) -> None:
        self.timer.shutdown()
        if self.mirror is not None:
            self.mirror.close(timeout=self.config.shutdown_timeout_seconds)

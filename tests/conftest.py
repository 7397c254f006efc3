from typing import Dict, List, Optional

import pytest

from activity_tracker.main import build_controller
from activity_tracker.sync.schema import ACTIVITIES_TABLE, SESSIONS_TABLE
from activity_tracker.tracker.controllers import ConfigManager
from activity_tracker.tracker.errors import MirrorDocumentMissingError, MirrorUnavailableError
from activity_tracker.tracker.models import TrackerState
from activity_tracker.tracker.registry import ActivityRegistry
from activity_tracker.tracker.storage import Storage
from activity_tracker.tracker.timers import SessionTimer

BASE_TIME = 1_700_000_000_000


class FakeClock:
    def __init__(self, now: int = BASE_TIME) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


class FakeBackend:
    """In-memory mirror backend recording every call."""

    def __init__(self) -> None:
        self.documents: Dict[str, dict] = {}
        self.calls: List[tuple] = []
        self.unavailable = False
        self.created = 0

    def _check(self, document_id: Optional[str] = None) -> None:
        if self.unavailable:
            raise MirrorUnavailableError("backend offline")
        if document_id is not None and document_id not in self.documents:
            raise MirrorDocumentMissingError(document_id)

    def authorize(self) -> None:
        self.calls.append(("authorize",))
        self._check()

    def exists(self, document_id: str) -> bool:
        self._check()
        return document_id in self.documents

    def find(self, name: str) -> Optional[str]:
        self.calls.append(("find", name))
        self._check()
        for document_id, doc in self.documents.items():
            if doc["name"] == name:
                return document_id
        return None

    def create(self, name: str) -> str:
        self.calls.append(("create", name))
        self._check()
        self.created += 1
        document_id = f"doc-{self.created}"
        self.documents[document_id] = {
            "name": name,
            ACTIVITIES_TABLE: [],
            SESSIONS_TABLE: [],
            "meta": {},
        }
        return document_id

    def clear_rows(self, document_id, table) -> None:
        self._check(document_id)
        self.documents[document_id][table] = []

    def append_rows(self, document_id, table, rows) -> None:
        self.calls.append(("append_rows", table, len(rows)))
        self._check(document_id)
        self.documents[document_id][table].extend(list(r) for r in rows)

    def replace_rows(self, document_id, table, rows) -> None:
        self.calls.append(("replace_rows", table, len(rows)))
        self._check(document_id)
        self.documents[document_id][table] = [list(r) for r in rows]

    def set_metadata(self, document_id, key, value) -> None:
        self._check(document_id)
        self.documents[document_id]["meta"][key] = value

    def close(self) -> None:
        self.calls.append(("close",))

    def rows(self, table: str, document_id: str = "doc-1") -> List[list]:
        return self.documents[document_id][table]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def config_manager(tmp_path):
    return ConfigManager(tmp_path / "config")


@pytest.fixture
def store(tmp_path, clock):
    return Storage(tmp_path / "data.db", clock=clock)


@pytest.fixture
def state(store):
    snapshot = store.load()
    return TrackerState(snapshot.activities, snapshot.sessions, snapshot.running_session)


@pytest.fixture
def registry(store, state, clock):
    return ActivityRegistry(store, state, clock=clock)


@pytest.fixture
def timer(store, registry, state, clock):
    session_timer = SessionTimer(store, registry, state, clock=clock, tick_interval=None)
    yield session_timer
    session_timer.shutdown()


@pytest.fixture
def make_controller(config_manager, clock):
    """Build controllers sharing one config dir; all are closed after the test."""
    built = []

    def factory(backend=None, **kwargs):
        controller = build_controller(config_manager, backend=backend, clock=clock, **kwargs)
        built.append(controller)
        return controller

    yield factory
    for controller in built:
        controller.close()


@pytest.fixture
def backend():
    return FakeBackend()

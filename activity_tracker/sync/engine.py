"""Best-effort one-way replication of local data to a mirror document.

All mirror work runs on a single worker thread, in submission order, and is
never awaited by the local mutation path. Every submission returns a
``Future`` resolving to a :class:`MirrorResult`; failures are logged and
reported to status subscribers instead of being raised to the caller.
"""
from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional, Sequence, Set, Tuple

from ..tracker.errors import (
    MirrorDocumentMissingError,
    MirrorError,
    MirrorUnavailableError,
    StorageUnavailableError,
)
from ..tracker.formatting import now_ms, to_iso
from ..tracker.models import Activity, Session
from ..tracker.storage import Storage
from .schema import (
    ACTIVITIES_TABLE,
    DOCUMENT_NAME,
    LAST_SYNC_KEY,
    SESSIONS_TABLE,
    MirrorBackend,
    Row,
    activity_row,
    session_row,
)

LOGGER = logging.getLogger(__name__)


class SyncStatus(Enum):
    OFFLINE = "offline"
    CONNECTING = "connecting"
    SYNCING = "syncing"
    ONLINE = "online"


@dataclass
class MirrorResult:
    """Outcome of one mirror operation: ok, failed with ``error``, or skipped."""

    operation: str
    error: Optional[MirrorError] = None
    skipped: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None and not self.skipped


StatusListener = Callable[[SyncStatus, Optional[MirrorResult]], None]
StateProvider = Callable[[], Tuple[Sequence[Activity], Sequence[Session]]]

DOCUMENT_MISSING_MESSAGE = (
    "The mirror document no longer exists; it will be recreated on the next successful connect."
)


class MirrorSyncEngine:
    def __init__(
        self,
        backend: MirrorBackend,
        store: Storage,
        state_provider: StateProvider,
        clock: Callable[[], int] = now_ms,
        document_name: str = DOCUMENT_NAME,
    ) -> None:
        self.backend = backend
        self.store = store
        self.state_provider = state_provider
        self.clock = clock
        self.document_name = document_name
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="mirror-sync")
        self._lock = threading.RLock()
        self._listeners: List[StatusListener] = []
        self._pending: Set[Future] = set()
        self._document_id: Optional[str] = None
        self._active = False
        self._closed = False
        self._status = SyncStatus.OFFLINE
        self.last_result: Optional[MirrorResult] = None

    # Status -----------------------------------------------------------------
    @property
    def status(self) -> SyncStatus:
        return self._status

    @property
    def document_id(self) -> Optional[str]:
        return self._document_id

    @property
    def is_active(self) -> bool:
        """True while connected or connecting."""
        return self._active

    @property
    def connected(self) -> bool:
        return self._active and self._document_id is not None

    def has_stored_handle(self) -> bool:
        return self.store.load_mirror_handle() is not None

    def subscribe(self, listener: StatusListener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def _set_status(self, status: SyncStatus, result: Optional[MirrorResult] = None) -> None:
        with self._lock:
            self._status = status
            if result is not None:
                self.last_result = result
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(status, result)
            except Exception:  # noqa: BLE001
                LOGGER.exception("Sync status listener failed")

    # Connection -------------------------------------------------------------
    def connect(self) -> Optional[Future]:
        """Resolve (or create) the mirror document and run a full resync."""
        with self._lock:
            if self._active:
                LOGGER.debug("Mirror already active; running a full resync instead")
                return self.full_resync()
            self._active = True
        self._set_status(SyncStatus.CONNECTING)
        activities, sessions = self._capture()
        return self._submit("connect", lambda: self._connect(activities, sessions))

    def disconnect(self) -> None:
        """Forget the mirror handle. The external document is left in place."""
        with self._lock:
            self._active = False
            self._document_id = None
        self.store.save_mirror_handle(None)
        if not self._closed:
            self._executor.submit(self._close_backend)
        LOGGER.info("Mirror disconnected")
        self._set_status(SyncStatus.OFFLINE)

    def _connect(self, activities: List[Activity], sessions: List[Session]) -> MirrorResult:
        try:
            self.backend.authorize()
            document_id = self._resolve_document()
            # disconnect() flips _active under the same lock before it clears the stored handle
            with self._lock:
                if not self._active:
                    LOGGER.info("Mirror disconnected while connecting; document %s not kept", document_id)
                    return MirrorResult("connect", skipped=True)
                self.store.save_mirror_handle(document_id)
                self._document_id = document_id
        except Exception as exc:  # noqa: BLE001
            error = self._as_mirror_error(exc)
            LOGGER.warning("Mirror connect failed: %s", error)
            with self._lock:
                self._active = False
                self._document_id = None
            result = MirrorResult("connect", error=error)
            self._set_status(SyncStatus.OFFLINE, result)
            return result
        LOGGER.info("Mirror connected to document %s", document_id)
        return self._execute("connect", lambda doc: self._write_all(doc, activities, sessions))

    def _resolve_document(self) -> str:
        stored = self.store.load_mirror_handle()
        if stored and self.backend.exists(stored):
            return stored
        if stored:
            LOGGER.info("Stored mirror document %s is gone; searching by name", stored)
        found = self.backend.find(self.document_name)
        if found:
            return found
        created = self.backend.create(self.document_name)
        LOGGER.info("Created mirror document %s", created)
        return created

    # Operations -------------------------------------------------------------
    def full_resync(self) -> Optional[Future]:
        activities, sessions = self._capture()
        return self._submit_op("full_resync", lambda doc: self._write_all(doc, activities, sessions))

    def activity_created(self, activity: Activity) -> Optional[Future]:
        row = activity_row(activity)
        return self._submit_op("activity_created", lambda doc: self._append(doc, ACTIVITIES_TABLE, row))

    def session_started(self, session: Session) -> None:
        # Rows are written on completion only; a running session has no end time yet.
        LOGGER.debug("Session %s started; mirror is updated when it completes", session.id)

    def session_completed(self, session: Session, activities: Sequence[Activity]) -> Optional[Future]:
        row = session_row(session)
        activity_rows = [activity_row(a) for a in activities]

        def action(doc: str) -> None:
            self.backend.append_rows(doc, SESSIONS_TABLE, [row])
            self.backend.replace_rows(doc, ACTIVITIES_TABLE, activity_rows)
            self._touch(doc)

        return self._submit_op("session_completed", action)

    def _write_all(self, doc: str, activities: Sequence[Activity], sessions: Sequence[Session]) -> None:
        for table, rows in (
            (ACTIVITIES_TABLE, [activity_row(a) for a in activities]),
            (SESSIONS_TABLE, [session_row(s) for s in sessions]),
        ):
            self.backend.clear_rows(doc, table)
            self.backend.append_rows(doc, table, rows)
        self._touch(doc)
        LOGGER.info("Full resync wrote %s activities and %s sessions", len(activities), len(sessions))

    def _append(self, doc: str, table: str, row: Row) -> None:
        self.backend.append_rows(doc, table, [row])
        self._touch(doc)

    def _touch(self, doc: str) -> None:
        self.backend.set_metadata(doc, LAST_SYNC_KEY, to_iso(self.clock()))

    # Plumbing ---------------------------------------------------------------
    def _capture(self) -> Tuple[List[Activity], List[Session]]:
        activities, sessions = self.state_provider()
        return list(activities), [s for s in sessions if not s.is_running]

    def _submit_op(self, operation: str, action: Callable[[str], None]) -> Optional[Future]:
        if not self._active:
            return None
        return self._submit(operation, lambda: self._execute(operation, action))

    def _submit(self, operation: str, job: Callable[[], MirrorResult]) -> Optional[Future]:
        with self._lock:
            if self._closed:
                LOGGER.debug("Mirror engine closed; dropping %s", operation)
                return None
            future = self._executor.submit(job)
            self._pending.add(future)
        future.add_done_callback(self._forget)
        return future

    def _forget(self, future: Future) -> None:
        with self._lock:
            self._pending.discard(future)

    def _execute(self, operation: str, action: Callable[[str], None]) -> MirrorResult:
        with self._lock:
            doc = self._document_id if self._active else None
        if doc is None:
            LOGGER.debug("Skipping %s; mirror is not connected", operation)
            return MirrorResult(operation, skipped=True)
        self._set_status(SyncStatus.SYNCING)
        try:
            action(doc)
        except MirrorDocumentMissingError as exc:
            LOGGER.warning("Mirror document %s is missing during %s", doc, operation)
            self._drop_handle()
            notice = MirrorDocumentMissingError(f"{exc}. {DOCUMENT_MISSING_MESSAGE}")
            notice.__cause__ = exc
            result = MirrorResult(operation, error=notice)
            self._set_status(SyncStatus.OFFLINE, result)
            return result
        except Exception as exc:  # noqa: BLE001
            error = self._as_mirror_error(exc)
            LOGGER.warning("Mirror %s failed: %s", operation, error)
            result = MirrorResult(operation, error=error)
        else:
            result = MirrorResult(operation)
        self._set_status(SyncStatus.ONLINE if self._active else SyncStatus.OFFLINE, result)
        return result

    def _drop_handle(self) -> None:
        with self._lock:
            self._active = False
            self._document_id = None
        try:
            self.store.save_mirror_handle(None)
        except StorageUnavailableError:
            LOGGER.exception("Could not clear the stored mirror handle")
        LOGGER.warning(DOCUMENT_MISSING_MESSAGE)

    def _close_backend(self) -> None:
        try:
            self.backend.close()
        except Exception:  # noqa: BLE001
            LOGGER.exception("Closing the mirror backend failed")

    @staticmethod
    def _as_mirror_error(exc: Exception) -> MirrorError:
        if isinstance(exc, MirrorError):
            return exc
        if not isinstance(exc, StorageUnavailableError):
            LOGGER.exception("Unexpected mirror failure")
        return MirrorUnavailableError(str(exc) or exc.__class__.__name__)

    def drain(self, timeout: Optional[float] = None) -> bool:
        """Wait for queued operations; returns False when the timeout expired."""
        with self._lock:
            pending = list(self._pending)
        if not pending:
            return True
        _done, not_done = wait(pending, timeout=timeout)
        return not not_done

    def close(self, timeout: Optional[float] = None) -> None:
        finished = self.drain(timeout)
        with self._lock:
            if self._closed:
                return
            self._closed = True
        if not finished:
            LOGGER.warning("Mirror operations still pending at shutdown; they will be dropped")
        self._executor.shutdown(wait=finished, cancel_futures=not finished)
        self._close_backend()

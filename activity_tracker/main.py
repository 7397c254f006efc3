"""Application entry point for Activity Time Tracker."""
from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Callable, Optional

from activity_tracker.sync.engine import MirrorSyncEngine
from activity_tracker.tracker import __version__
from activity_tracker.tracker.controllers import AppController, ConfigManager
from activity_tracker.tracker.formatting import now_ms
from activity_tracker.tracker.models import TrackerState
from activity_tracker.tracker.registry import ActivityRegistry
from activity_tracker.tracker.storage import Storage
from activity_tracker.tracker.timers import SessionTimer

LOGGER = logging.getLogger(__name__)

LOG_FILE_NAME = "app.log"


def configure_logging(log_dir: Path, verbose: bool = False) -> None:
    log_dir.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(log_dir / LOG_FILE_NAME, maxBytes=1024 * 1024, backupCount=3)
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[handler, logging.StreamHandler()],
    )
    logging.info("Activity Time Tracker v%s starting", __version__)


def build_backend(config_manager: ConfigManager):
    """Instantiate the configured mirror backend, or None for local-only mode."""

    config = config_manager.config
    if config.mirror_backend == "workbook":
        from activity_tracker.sync.workbook import WorkbookBackend

        if not config.mirror_folder:
            LOGGER.warning("mirror_backend is 'workbook' but mirror_folder is empty; mirroring disabled")
            return None
        return WorkbookBackend(Path(config.mirror_folder))
    if config.mirror_backend == "google":
        from activity_tracker.core.auth import GoogleCredentialProvider
        from activity_tracker.sync.sheets import GoogleSheetsBackend

        provider = GoogleCredentialProvider(Path(config.google_client_secrets), config_manager.token_path)
        return GoogleSheetsBackend(provider)
    return None


def build_controller(
    config_manager: ConfigManager,
    backend=None,
    clock: Callable[[], int] = now_ms,
    tick_interval: Optional[float] = None,
    auto_connect: bool = True,
) -> AppController:
    """Wire the store, registry, timer and mirror together and restore state."""

    store = Storage(config_manager.data_path, clock=clock)
    state = TrackerState()
    registry = ActivityRegistry(store, state, clock=clock)
    timer = SessionTimer(store, registry, state, clock=clock, tick_interval=tick_interval)
    backend = backend if backend is not None else build_backend(config_manager)
    mirror = None
    if backend is not None:
        mirror = MirrorSyncEngine(
            backend,
            store,
            state_provider=lambda: (state.activities, state.sessions),
            clock=clock,
        )
    controller = AppController(store, state, registry, timer, config_manager, mirror=mirror, clock=clock)
    controller.restore(auto_connect=auto_connect)
    return controller


def main() -> None:
    from activity_tracker.cli import app

    app()


if __name__ == "__main__":
    main()

"""Filesystem monitoring for Devourer.

Uses Watchdog to follow every library root and feed added or removed files
through the same ingestion steps the scanner uses. Adds and deletes each go
through their own `SerialWorker`, so events of one kind are handled one at a
time and in arrival order.
"""

from __future__ import annotations

import threading
from pathlib import Path
from typing import Dict, List, NamedTuple, Optional

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from . import database
from .config import DevourerConfig
from .logging_config import get_logger
from .naming import is_manga_archive, is_valid_book, is_watched_file
from .paths import ASSET_DIR_NAME
from .repository import Repository
from .scanner import LibraryInfo, ScanOrchestrator
from .worker import SerialWorker

logger = get_logger(__name__)


class WatchTask(NamedTuple):
    path: Path
    is_directory: bool = False


def _is_hidden_artifact(path: Path) -> bool:
    return path.name.startswith("._") or ASSET_DIR_NAME in path.parts


class LibraryEventHandler(FileSystemEventHandler):
    """Filter Watchdog events and push them to the add/delete workers."""

    def __init__(self, add_worker: SerialWorker, delete_worker: SerialWorker):
        super().__init__()
        self.add_worker = add_worker
        self.delete_worker = delete_worker

    def _queue_add(self, path: Path, is_directory: bool) -> None:
        if is_directory or _is_hidden_artifact(path) or not is_watched_file(path):
            return
        self.add_worker.submit(WatchTask(path))

    def _queue_delete(self, path: Path, is_directory: bool) -> None:
        if _is_hidden_artifact(path):
            return
        if is_directory or is_watched_file(path):
            self.delete_worker.submit(WatchTask(path, is_directory))

    def on_created(self, event: FileSystemEvent) -> None:
        self._queue_add(Path(event.src_path), event.is_directory)

    def on_deleted(self, event: FileSystemEvent) -> None:
        self._queue_delete(Path(event.src_path), event.is_directory)

    def on_moved(self, event: FileSystemEvent) -> None:
        self._queue_delete(Path(event.src_path), event.is_directory)
        self._queue_add(Path(event.dest_path), event.is_directory)


class LibraryWatcher:
    """Watches all library roots and maps events back to their library."""

    def __init__(self, orchestrator: ScanOrchestrator, startup_delay: float = 5.0):
        self.orchestrator = orchestrator
        self.startup_delay = startup_delay
        self.add_worker: SerialWorker[WatchTask] = SerialWorker(
            self.handle_add, name="DevourerWatchAdd"
        )
        self.delete_worker: SerialWorker[WatchTask] = SerialWorker(
            self.handle_delete, name="DevourerWatchDelete"
        )
        self.handler = LibraryEventHandler(self.add_worker, self.delete_worker)

        self._libraries: List[LibraryInfo] = []
        self._lock = threading.Lock()
        self._observer: Optional[Observer] = None
        self._watches: Dict[Path, object] = {}
        self._timer: Optional[threading.Timer] = None
        self._wired = False

    # --- Library index ---

    def set_libraries(self, libraries: List[LibraryInfo]) -> None:
        with self._lock:
            # Longest root first so nested libraries win the prefix match.
            self._libraries = sorted(
                libraries, key=lambda lib: len(lib.path.parts), reverse=True
            )
            if self._wired:
                self._sync_watches()

    def refresh(self) -> None:
        """Reload the library list from the database."""
        with database.open_session() as session:
            libraries = [
                LibraryInfo.from_model(lib) for lib in Repository(session).list_libraries()
            ]
        self.set_libraries(libraries)

    def library_for(self, path: Path) -> Optional[LibraryInfo]:
        with self._lock:
            for library in self._libraries:
                if path == library.path or path.is_relative_to(library.path):
                    return library
        return None

    # --- Event handling ---

    def handle_add(self, task: WatchTask) -> None:
        library = self.library_for(task.path)
        if library is None:
            return

        if library.type == "book":
            if is_valid_book(task.path) and task.path.is_file():
                self.orchestrator.ingest_book_file(task.path, library)
            return

        if not is_manga_archive(task.path):
            return
        relative = task.path.relative_to(library.path)
        if len(relative.parts) < 2:
            logger.debug(f"Ignoring {task.path.name}: not inside a series folder")
            return
        series_folder = library.path / relative.parts[0]
        logger.info(f"[+] {task.path.name} -> rescanning series {series_folder.name}")
        self.orchestrator.ingest_series(series_folder, library)

    def handle_delete(self, task: WatchTask) -> None:
        library = self.library_for(task.path)
        if library is None or task.path == library.path:
            return

        if library.type == "book":
            if not task.is_directory:
                self.orchestrator.delete_book(task.path)
            return

        relative = task.path.relative_to(library.path)
        if task.is_directory and len(relative.parts) != 1:
            return
        self.orchestrator.delete_manga_path(task.path, library)

    # --- Lifecycle ---

    def _sync_watches(self) -> None:
        if self._observer is None:
            return
        roots = {lib.path for lib in self._libraries}
        for root in list(self._watches):
            if root not in roots:
                self._observer.unschedule(self._watches.pop(root))
                logger.info(f"[WATCH] Stopped watching {root}")
        for root in roots:
            if root in self._watches:
                continue
            if not root.is_dir():
                logger.error(f"Library path does not exist: {root}")
                continue
            self._watches[root] = self._observer.schedule(
                self.handler, str(root), recursive=True
            )
            logger.info(f"[WATCH] Watching {root}")

    def _wire(self) -> None:
        with self._lock:
            self._wired = True
            self._sync_watches()
        logger.info("[WATCH] File watcher ready")

    def start(self) -> None:
        """Start the observer; handlers are attached after the startup delay."""
        self.refresh()
        self._observer = Observer()
        self._observer.start()
        self._timer = threading.Timer(self.startup_delay, self._wire)
        self._timer.daemon = True
        self._timer.start()

    def stop(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
        if self._observer is not None:
            self._observer.stop()
            self._observer.join()
            self._observer = None
        self._watches.clear()
        self._wired = False
        self.add_worker.stop(timeout=5)
        self.delete_worker.stop(timeout=5)


def start_file_monitoring(
    config: DevourerConfig, orchestrator: ScanOrchestrator
) -> Optional[LibraryWatcher]:
    """Start filesystem monitoring if enabled in config."""
    if not config.monitoring.enabled:
        return None

    watcher = LibraryWatcher(orchestrator, config.monitoring.startup_delay_seconds)
    watcher.start()
    return watcher

"""Library scanning for Devourer.

Responsible for reconciling a library folder against the database.

Implements:
- one scan at a time per library, tracked by a `ScanRegistry`
- book libraries: one record per book file, folder collections, covers
- manga libraries: one series per top-level folder, one record per archive
- orphan reclamation for records whose files are gone

Every top-level entry of the library goes through the same small state
machine (`scanning` -> `complete` | `error`). A failing entry is recorded
and the scan moves on to the next one.
"""

from __future__ import annotations

import os
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Tuple, Union

import requests
from sqlalchemy.exc import IntegrityError

from . import database
from .config import DevourerConfig
from .extractor import EpubContent, extract, read_epub
from .images import to_preview
from .logging_config import get_logger
from .metadata import MetadataResolver, isbn_cover_url
from .models import Library, MangaFile
from .naming import (
    clean_book_name,
    extract_chapter_and_volume,
    is_manga_archive,
    is_valid_book,
)
from .paths import (
    ASSET_DIR_NAME,
    book_asset_dir,
    book_cover_path,
    file_preview_path,
    remove_asset_dir,
    series_asset_dir,
    series_cover_path,
    series_previews_dir,
)
from .records import BookMetadata
from .repository import Repository

logger = get_logger(__name__)

DEFAULT_MANGA_PROVIDER = "myanimelist"

STATUS_SCANNING = "scanning"
STATUS_COMPLETE = "complete"
STATUS_ERROR = "error"

ProgressCallback = Callable[..., None]


class LibraryNotFound(LookupError):
    def __init__(self, library_id: int):
        super().__init__(f"Library not found: {library_id}")
        self.library_id = library_id


@dataclass(frozen=True)
class LibraryInfo:
    """Detached view of a library row, safe to hand to worker threads."""

    id: int
    name: str
    path: Path
    type: str
    provider: Optional[str] = None
    api_key: Optional[str] = None

    @classmethod
    def from_model(cls, library: Library) -> "LibraryInfo":
        return cls(
            id=library.id,
            name=library.name,
            path=Path(library.path),
            type=library.type,
            provider=library.provider,
            api_key=library.api_key,
        )


# --- Scan sessions ---


@dataclass
class EntryProgress:
    series: str
    library_type: str
    status: str = STATUS_SCANNING
    phase: Optional[str] = None
    current: Optional[int] = None
    total: Optional[int] = None
    error: Optional[str] = None

    def to_dict(self) -> dict:
        data = {
            "series": self.series,
            "libraryType": self.library_type,
            "status": self.status,
        }
        if self.phase:
            data["phase"] = self.phase
        if self.current is not None and self.total is not None:
            data["progress"] = {"current": self.current, "total": self.total}
        if self.error:
            data["error"] = self.error
        return data


@dataclass
class ScanSession:
    library_id: int
    library_type: str
    entries: Dict[str, EntryProgress]
    start_time: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    in_progress: bool = True
    completed: int = 0

    @property
    def total(self) -> int:
        return len(self.entries)


class ScanRegistry:
    """In-memory scan state, one session per library.

    Starting a session is the lock that keeps a library down to one scan.
    Finished sessions stay readable (with `inProgress` false) until the next
    scan of the same library replaces them.
    """

    def __init__(self):
        self._sessions: Dict[int, ScanSession] = {}
        self._lock = threading.Lock()

    def try_start(
        self, library_id: int, library_type: str, entries: Iterable[str]
    ) -> Optional[ScanSession]:
        """Open a session, or return None when one is already running."""
        with self._lock:
            current = self._sessions.get(library_id)
            if current is not None and current.in_progress:
                return None
            session = ScanSession(
                library_id=library_id,
                library_type=library_type,
                entries={name: EntryProgress(name, library_type) for name in entries},
            )
            self._sessions[library_id] = session
            return session

    def is_scanning(self, library_id: int) -> bool:
        with self._lock:
            session = self._sessions.get(library_id)
            return session is not None and session.in_progress

    def _entry(self, library_id: int, name: str) -> Optional[EntryProgress]:
        session = self._sessions.get(library_id)
        return session.entries.get(name) if session else None

    def begin_entry(self, library_id: int, name: str) -> None:
        with self._lock:
            entry = self._entry(library_id, name)
            if entry is not None:
                entry.status = STATUS_SCANNING

    def update_progress(
        self,
        library_id: int,
        name: str,
        phase: str,
        current: Optional[int] = None,
        total: Optional[int] = None,
    ) -> None:
        with self._lock:
            entry = self._entry(library_id, name)
            if entry is None:
                return
            entry.phase = phase
            if current is not None and total is not None:
                entry.current, entry.total = current, total

    def complete_entry(self, library_id: int, name: str) -> None:
        self._settle(library_id, name, STATUS_COMPLETE)

    def fail_entry(self, library_id: int, name: str, error: str) -> None:
        self._settle(library_id, name, STATUS_ERROR, error)

    def _settle(
        self, library_id: int, name: str, status: str, error: Optional[str] = None
    ) -> None:
        with self._lock:
            session = self._sessions.get(library_id)
            if session is None:
                return
            entry = session.entries.get(name)
            if entry is not None:
                entry.status = status
                entry.error = error
            session.completed += 1

    def finish(self, library_id: int) -> None:
        with self._lock:
            session = self._sessions.get(library_id)
            if session is not None:
                session.in_progress = False

    def snapshot(self, library_id: int) -> dict:
        """Status document for polling clients."""
        with self._lock:
            session = self._sessions.get(library_id)
            if session is None:
                return {
                    "status": False,
                    "message": "No scan in progress",
                    "libraryType": "",
                    "remaining": [],
                }
            entries = list(session.entries.values())
            return {
                "status": True,
                "inProgress": session.in_progress,
                "libraryType": session.library_type,
                "progress": {
                    "completed": session.completed,
                    "total": session.total,
                    "series": [e.to_dict() for e in entries],
                },
                "startTime": session.start_time.isoformat(),
                "remaining": [e.series for e in entries if e.status == STATUS_SCANNING],
            }


# --- Filesystem helpers ---


def _should_ignore(name: str, ignore_patterns: Iterable[str]) -> bool:
    """Check if file/folder should be ignored based on patterns or macOS temp files."""
    if name.startswith("._") or name == ASSET_DIR_NAME:
        return True
    return name in ignore_patterns


def list_entries(root: Path, ignore_patterns: Tuple[str, ...] = ()) -> List[str]:
    """Top-level entry names of a library, sorted.

    Raises when the root is missing or unreadable.
    """
    if not root.is_dir():
        raise FileNotFoundError(f"Library path does not exist: {root}")
    return sorted(n for n in os.listdir(root) if not _should_ignore(n, ignore_patterns))


def list_files(
    folder: Path,
    predicate: Callable[[Path], bool],
    ignore_patterns: Tuple[str, ...] = (),
) -> List[Path]:
    """All files under `folder` (recursive) accepted by `predicate`, sorted."""
    found = []
    for dirpath, dirnames, filenames in os.walk(folder):
        dirnames[:] = [d for d in dirnames if not _should_ignore(d, ignore_patterns)]
        for name in filenames:
            if _should_ignore(name, ignore_patterns):
                continue
            path = Path(dirpath) / name
            if predicate(path):
                found.append(path)
    return sorted(found)


def _error_message(exc: BaseException) -> str:
    return str(exc) or exc.__class__.__name__


# --- Orchestrator ---


class ScanOrchestrator:
    """Runs library scans and the single-path ingestion steps they share
    with the filesystem watcher."""

    def __init__(
        self,
        config: DevourerConfig,
        resolver: MetadataResolver,
        registry: Optional[ScanRegistry] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config
        self.resolver = resolver
        self.registry = registry or ScanRegistry()
        self._sleep = sleep
        self._threads: Dict[int, threading.Thread] = {}

    @property
    def ignore_patterns(self) -> Tuple[str, ...]:
        return tuple(self.config.scanner.ignore_patterns)

    def get_library(self, library_id: int) -> LibraryInfo:
        with database.open_session() as session:
            library = Repository(session).get_library(library_id)
            if library is None:
                raise LibraryNotFound(library_id)
            return LibraryInfo.from_model(library)

    # --- Scan control ---

    def start_scan(self, library_id: int, wait: bool = False) -> dict:
        """Start scanning a library.

        Returns immediately with the entries about to be scanned, unless
        `wait` is set. A second request while a scan runs is rejected.
        Raises LibraryNotFound or FileNotFoundError before anything starts.
        """
        library = self.get_library(library_id)
        entries = list_entries(library.path, self.ignore_patterns)

        if self.registry.try_start(library.id, library.type, entries) is None:
            logger.info(f"[SCAN] {library.name}: scan already in progress")
            return {"status": False, "message": "Scan already in progress"}

        if wait:
            self._run_scan(library, entries)
        else:
            thread = threading.Thread(
                target=self._run_scan,
                args=(library, entries),
                daemon=True,
                name=f"DevourerScan-{library.id}",
            )
            self._threads[library.id] = thread
            thread.start()

        return {"status": True, "message": "Library scan started", "remaining": entries}

    def get_scan_status(self, library_id: int) -> dict:
        return self.registry.snapshot(library_id)

    def join(self, library_id: int, timeout: Optional[float] = None) -> None:
        """Wait for a background scan of `library_id` to end."""
        thread = self._threads.get(library_id)
        if thread is not None:
            thread.join(timeout)

    def _run_scan(self, library: LibraryInfo, entries: List[str]) -> None:
        started = time.perf_counter()
        kind = "book" if library.type == "book" else "manga"
        logger.info(
            f"[SCAN] {library.name}: {len(entries)} {kind} entries "
            "(processing one at a time due to API limits)"
        )
        try:
            if library.type == "book":
                self._scan_book_library(library, entries)
            else:
                self._scan_manga_library(library, entries)
        except Exception as exc:
            logger.error(f"[SCAN] {library.name} aborted: {exc}")
        finally:
            self.registry.finish(library.id)
            elapsed = time.perf_counter() - started
            logger.info(f"[SCAN] {library.name} completed in {elapsed:.1f}s")

    def _process_entry(
        self, library: LibraryInfo, index: int, total: int, name: str, work: Callable[[], None]
    ) -> None:
        started = time.perf_counter()
        logger.info(f"[SCAN] ({index}/{total}) {name}")
        self.registry.begin_entry(library.id, name)
        try:
            work()
        except Exception as exc:
            logger.error(f"✗ {name} - {exc}")
            self.registry.fail_entry(library.id, name, _error_message(exc))
        else:
            self.registry.complete_entry(library.id, name)
        logger.debug(f"[SCAN] {name} done in {time.perf_counter() - started:.2f}s")

    # --- Book libraries ---

    def _scan_book_library(self, library: LibraryInfo, entries: List[str]) -> None:
        collections: Dict[str, List[int]] = {}

        for index, name in enumerate(entries, 1):
            entry_path = library.path / name

            if not entry_path.is_dir():
                if not is_valid_book(entry_path):
                    logger.info(f"[SCAN] Skipping {name}: not a supported book")
                    continue
                files = [entry_path]
                bucket = None
            else:
                files = list_files(entry_path, is_valid_book, self.ignore_patterns)
                bucket = collections.setdefault(name, []) if len(files) > 1 else None

            def work(files=files, bucket=bucket) -> None:
                for file_path in files:
                    book_id = self.ingest_book_file(file_path, library)
                    if book_id is not None and bucket is not None:
                        bucket.append(book_id)

            self._process_entry(library, index, len(entries), name, work)

        self._save_collections(library, collections)
        self.sweep_books(library)

    def _save_collections(self, library: LibraryInfo, collections: Dict[str, List[int]]) -> None:
        if not collections:
            return
        with database.open_session() as session:
            repo = Repository(session)
            for name, member_ids in collections.items():
                repo.merge_collection(library.id, name, member_ids)
            repo.commit()

    def ingest_book_file(self, path: Path, library: LibraryInfo) -> Optional[int]:
        """Create the record and cover of one book file.

        Returns the new book id, or None when the path is already known.
        """
        path = Path(path)
        with database.open_session() as session:
            repo = Repository(session)
            if repo.get_book_by_path(path) is not None:
                return None

            clean_name = clean_book_name(path.name)
            embedded = read_epub(path) if path.suffix.lower() == ".epub" else None
            epub_title = embedded.metadata.title if embedded else None
            isbn = embedded.metadata.isbn if embedded else None

            metadata = self.resolver.resolve_book(
                epub_title or clean_name,
                isbn=isbn,
                provider=library.provider,
                api_key=library.api_key,
            )
            if not metadata.title:
                metadata.title = clean_name
            if embedded is not None:
                metadata.epub = embedded.metadata

            book = repo.create_book(
                library_id=library.id,
                title=epub_title or metadata.title,
                path=path,
                metadata=metadata.model_dump(mode="json"),
            )
            repo.commit()
            book_id = book.id
            book_title = book.title

        book_asset_dir(library.path, book_id).mkdir(parents=True, exist_ok=True)
        self._write_book_cover(library, book_id, metadata, embedded)
        logger.info(f"[+] {book_title} | {path}")
        return book_id

    def _write_book_cover(
        self,
        library: LibraryInfo,
        book_id: int,
        metadata: BookMetadata,
        embedded: Optional[EpubContent],
    ) -> bool:
        """Write cover.webp from the first source that works.

        Sources in order: the embedded EPUB cover (JPEG only), the catalog
        cover URL, then the ISBN-13 cover service.
        """
        sources: List[Tuple[str, Union[bytes, str]]] = []
        if embedded and embedded.cover and embedded.cover_mime_type == "image/jpeg":
            sources.append(("embedded", embedded.cover))
        if metadata.cover and len(metadata.cover) > 10:
            sources.append(("catalog", metadata.cover))
        if metadata.isbn_13:
            sources.append(("isbn", isbn_cover_url(metadata.isbn_13)))

        target = book_cover_path(library.path, book_id)
        previews = self.config.previews
        for label, source in sources:
            try:
                to_preview(source, target, previews.cover_width, previews.cover_quality)
                return True
            except (requests.RequestException, OSError, ValueError) as exc:
                logger.warning(f"Cover ({label}) failed for book {book_id}: {exc}")
        return False

    def sweep_books(self, library: LibraryInfo) -> List[int]:
        """Delete book records of this library whose file is gone."""
        removed = []
        with database.open_session() as session:
            repo = Repository(session)
            for book in repo.list_books(library.id):
                if not Path(book.path).exists():
                    logger.info(f"[-] {book.title}: file removed, deleting")
                    removed.append(book.id)
                    repo.delete_book(book)
            repo.commit()

        for book_id in removed:
            remove_asset_dir(book_asset_dir(library.path, book_id))
        return removed

    def delete_book(self, path: Path) -> bool:
        """Remove the record and assets of a deleted book file."""
        with database.open_session() as session:
            repo = Repository(session)
            book = repo.get_book_by_path(path)
            if book is None:
                return False
            library = repo.get_library(book.library_id)
            library_path = library.path if library is not None else None
            book_id = book.id
            repo.delete_book(book)
            repo.commit()

        if library_path is not None:
            remove_asset_dir(book_asset_dir(library_path, book_id))
        logger.info(f"[-] Removed: {Path(path).name}")
        return True

    # --- Manga libraries ---

    def _scan_manga_library(self, library: LibraryInfo, entries: List[str]) -> None:
        for index, name in enumerate(entries, 1):
            entry_path = library.path / name

            def work(entry_path=entry_path, name=name) -> None:
                if not entry_path.is_dir():
                    logger.debug(f"[SCAN] {name} is not a series folder")
                    return

                def progress(phase, current=None, total=None) -> None:
                    self.registry.update_progress(library.id, name, phase, current, total)

                self.ingest_series(entry_path, library, progress=progress)

            self._process_entry(library, index, len(entries), name, work)

        self.sweep_series(library)

    def ingest_series(
        self,
        folder: Path,
        library: LibraryInfo,
        progress: Optional[ProgressCallback] = None,
    ) -> None:
        """Create or refresh the series for one top-level folder.

        A new series gets catalog metadata and a cover. Archives are then
        diffed against the stored files: vanished ones are deleted, new ones
        extracted, and both changes are applied in one transaction.
        """
        report = progress or (lambda *args, **kwargs: None)
        folder = Path(folder)
        title = folder.name

        with database.open_session() as session:
            repo = Repository(session)
            series = repo.find_series(library.id, title)

            if series is None:
                report("creating_series")
                series_id = self._create_series(repo, library, folder)
            else:
                series_id = series.id

            report("scanning_files")
            archives = list_files(folder, is_manga_archive, self.ignore_patterns)
            if not archives:
                logger.info(f"[SCAN] {title}: no archives, folder-only series")
                return

            existing = repo.list_series_files(series_id)
            to_delete = [f for f in existing if not Path(f.path).exists()]
            known = {f.path for f in existing if Path(f.path).exists()}

            series_previews_dir(library.path, series_id).mkdir(parents=True, exist_ok=True)
            report("processing_files", 0, len(archives))

            creates = []
            for index, archive in enumerate(archives, 1):
                if str(archive) in known:
                    continue
                creates.append(self._build_manga_file(library, series_id, archive))
                report("file_processed", index, len(archives))

            if not to_delete and not creates:
                return

            try:
                repo.apply_series_file_changes([f.id for f in to_delete], creates)
            except IntegrityError:
                # A scan and a watcher event raced on the same folder; the
                # first writer's batch stands.
                logger.warning(f"[SCAN] {title}: files already recorded, skipping batch")
                return
            deleted_names = [f.file_name for f in to_delete]

        for file_name in deleted_names:
            _remove_preview(file_preview_path(library.path, series_id, file_name))
        if deleted_names:
            logger.info(f"[-] {title}: removed {len(deleted_names)} deleted files")
            report("files_removed", len(deleted_names), len(deleted_names))
        if creates:
            logger.info(f"[+] {title}: {len(creates)} new files")

    def _create_series(self, repo: Repository, library: LibraryInfo, folder: Path) -> int:
        title = folder.name
        manga = self.resolver.resolve_series(
            library.provider or DEFAULT_MANGA_PROVIDER, title, library.api_key
        )
        series = repo.create_series(
            library_id=library.id,
            title=title,
            path=folder,
            manga_data=manga.model_dump(mode="json") if manga else None,
        )
        repo.commit()
        series_id = series.id
        logger.info(f"[+] New series: {title}")

        series_previews_dir(library.path, series_id).mkdir(parents=True, exist_ok=True)

        if manga is not None:
            if manga.cover_image:
                previews = self.config.previews
                try:
                    to_preview(
                        manga.cover_image,
                        series_cover_path(library.path, series_id),
                        previews.cover_width,
                        previews.cover_quality,
                    )
                except (requests.RequestException, OSError, ValueError) as exc:
                    logger.warning(f"Cover failed for series {title}: {exc}")
            # Catalog etiquette on top of the rate limiter.
            self._sleep(self.config.scanner.series_delay_seconds)

        return series_id

    def _build_manga_file(self, library: LibraryInfo, series_id: int, archive: Path) -> MangaFile:
        started = time.perf_counter()
        numbers = extract_chapter_and_volume(archive.name)
        previews = self.config.previews
        result = extract(
            archive,
            file_preview_path(library.path, series_id, archive.name),
            previews.page_width,
            previews.page_quality,
        )
        if result.error:
            logger.warning(f"✗ {archive.name} - {result.error}")

        logger.debug(
            f"{archive.name} ({result.page_count} pages) in "
            f"{time.perf_counter() - started:.2f}s"
        )
        return MangaFile(
            path=str(archive),
            file_name=archive.name,
            file_format=archive.suffix.lstrip("."),
            volume=numbers.volume or 0,
            chapter=numbers.chapter or 0,
            total_pages=result.page_count,
            current_page=0,
            is_read=False,
            series_id=series_id,
            file_metadata={},
        )

    def sweep_series(self, library: LibraryInfo) -> None:
        """Delete vanished series (with their files) and vanished files."""
        removed_series: List[int] = []
        removed_previews: List[Path] = []

        with database.open_session() as session:
            repo = Repository(session)
            for series in repo.list_series(library.id):
                if not Path(series.path).exists():
                    logger.info(f"[-] Series {series.title}: folder removed, deleting")
                    removed_series.append(series.id)
                    repo.delete_series(series)
                    continue
                for manga_file in repo.list_series_files(series.id):
                    if not Path(manga_file.path).exists():
                        removed_previews.append(
                            file_preview_path(library.path, series.id, manga_file.file_name)
                        )
                        repo.delete_manga_file(manga_file)
            repo.commit()

        for series_id in removed_series:
            remove_asset_dir(series_asset_dir(library.path, series_id))
        for preview in removed_previews:
            _remove_preview(preview)

    def delete_manga_path(self, path: Path, library: LibraryInfo) -> bool:
        """Remove the archive or series record stored at `path`."""
        with database.open_session() as session:
            repo = Repository(session)
            manga_file = repo.get_manga_file_by_path(library.id, path)
            if manga_file is not None:
                preview = file_preview_path(library.path, manga_file.series_id, manga_file.file_name)
                repo.delete_manga_file(manga_file)
                repo.commit()
                _remove_preview(preview)
                logger.info(f"[-] Removed: {Path(path).name}")
                return True

            series = repo.get_series_by_path(library.id, path)
            if series is None:
                return False
            series_id = series.id
            repo.delete_series(series)
            repo.commit()

        remove_asset_dir(series_asset_dir(library.path, series_id))
        logger.info(f"[-] Removed series: {Path(path).name}")
        return True


def _remove_preview(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        pass
    except OSError as exc:
        logger.error(f"Error deleting preview image {path}: {exc}")

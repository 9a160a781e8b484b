"""Library lifecycle: create, list and delete libraries."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, List, Optional


from . import database
from .logging_config import get_logger
from .metadata import DEFAULT_BOOK_PROVIDER
from .models import LIBRARY_TYPES
from .paths import book_asset_dir, remove_asset_dir, series_asset_dir
from .repository import Repository
from .scanner import DEFAULT_MANGA_PROVIDER, LibraryInfo, LibraryNotFound, ScanOrchestrator

if TYPE_CHECKING:
    from .monitor import LibraryWatcher

logger = get_logger(__name__)


class LibraryError(ValueError):
    """Invalid library request."""


def default_settings(library_type: str) -> dict:
    provider = DEFAULT_BOOK_PROVIDER if library_type == "book" else DEFAULT_MANGA_PROVIDER
    return {"provider": provider}


def create_library(
    name: str,
    path: str,
    library_type: str,
    settings: Optional[dict] = None,
    orchestrator: Optional[ScanOrchestrator] = None,
    watcher: Optional["LibraryWatcher"] = None,
) -> LibraryInfo:
    """Register a library and kick off its first scan.

    Raises LibraryError on missing fields, an unknown type, a path that is
    not an existing directory, or a path already used by another library.
    """
    name = (name or "").strip()
    if not name or not path or not library_type:
        raise LibraryError("All fields are required")
    if library_type not in LIBRARY_TYPES:
        raise LibraryError("Invalid library type")

    root = Path(path).expanduser()
    if not root.is_absolute():
        raise LibraryError("Library path must be absolute")
    if not root.is_dir():
        raise LibraryError(f"Library path does not exist: {root}")

    merged = default_settings(library_type)
    merged.update({k: v for k, v in (settings or {}).items() if v not in (None, "")})

    with database.open_session() as session:
        repo = Repository(session)
        if repo.get_library_by_path(root) is not None:
            raise LibraryError("Library at this path already exists")
        library = repo.create_library(
            name=name, path=root, library_type=library_type, settings=merged
        )
        repo.commit()
        info = LibraryInfo.from_model(library)

    logger.info(f"[LIBRARY] Created {info.type} library {info.name} at {info.path}")

    if watcher is not None:
        watcher.refresh()
    if orchestrator is not None:
        orchestrator.start_scan(info.id)
    return info


def list_libraries() -> List[dict]:
    """Libraries with a count of their books or series."""
    with database.open_session() as session:
        repo = Repository(session)
        result = []
        for library in repo.list_libraries():
            if library.type == "book":
                count = len(repo.list_books(library.id))
            else:
                count = len(repo.list_series(library.id))
            result.append(
                {
                    "id": library.id,
                    "name": library.name,
                    "path": library.path,
                    "type": library.type,
                    "metadata": library.settings,
                    "seriesCount": count,
                }
            )
        return result


def delete_library(
    library_id: int,
    orchestrator: Optional[ScanOrchestrator] = None,
    watcher: Optional["LibraryWatcher"] = None,
) -> dict:
    """Delete a library, everything it owns and its derived assets."""
    if orchestrator is not None and orchestrator.registry.is_scanning(library_id):
        raise LibraryError("Scan in progress")

    with database.open_session() as session:
        repo = Repository(session)
        library = repo.get_library(library_id)
        if library is None:
            raise LibraryNotFound(library_id)
        root = Path(library.path)
        library_type = library.type
        owned_ids = repo.delete_library(library)
        repo.commit()

    asset_dir = book_asset_dir if library_type == "book" else series_asset_dir
    for owned_id in owned_ids:
        remove_asset_dir(asset_dir(root, owned_id))

    if watcher is not None:
        watcher.refresh()

    logger.info(f"[LIBRARY] Deleted library {library_id} ({len(owned_ids)} entries)")
    return {"status": True, "message": "Library deleted"}

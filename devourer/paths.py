"""Derived-asset layout helpers.

Generated images live beside the library content, under a hidden
`.devourer` folder at the library root:

    <library>/.devourer/files/<bookId>/cover.webp
    <library>/.devourer/series/<seriesId>/cover.webp
    <library>/.devourer/series/<seriesId>/previews/<fileName>.jpg

Clients read these paths directly, so the layout must not change.
"""

from __future__ import annotations

import shutil
from pathlib import Path
from typing import Union

from .logging_config import get_logger

logger = get_logger(__name__)

ASSET_DIR_NAME = ".devourer"

PathLike = Union[str, Path]


def asset_root(library_path: PathLike) -> Path:
    return Path(library_path) / ASSET_DIR_NAME


def book_asset_dir(library_path: PathLike, book_id: int) -> Path:
    """Return the derived-asset folder of a book.

    Example:
        >>> book_asset_dir("/books", 12)
        PosixPath('/books/.devourer/files/12')
    """
    return asset_root(library_path) / "files" / str(book_id)


def book_cover_path(library_path: PathLike, book_id: int) -> Path:
    return book_asset_dir(library_path, book_id) / "cover.webp"


def series_asset_dir(library_path: PathLike, series_id: int) -> Path:
    return asset_root(library_path) / "series" / str(series_id)


def series_cover_path(library_path: PathLike, series_id: int) -> Path:
    return series_asset_dir(library_path, series_id) / "cover.webp"


def series_previews_dir(library_path: PathLike, series_id: int) -> Path:
    return series_asset_dir(library_path, series_id) / "previews"


def file_preview_path(library_path: PathLike, series_id: int, file_name: str) -> Path:
    """Return the preview image path of one archive inside a series.

    Example:
        >>> file_preview_path("/manga", 3, "Vol 01.cbz")
        PosixPath('/manga/.devourer/series/3/previews/Vol 01.cbz.jpg')
    """
    return series_previews_dir(library_path, series_id) / f"{file_name}.jpg"


def remove_asset_dir(path: Path) -> bool:
    """Recursively delete a derived-asset folder. Missing folders are fine.

    Returns True when something was removed.
    """
    if not path.exists():
        return False
    try:
        shutil.rmtree(path)
        return True
    except OSError as exc:
        logger.error(f"Failed to delete asset folder {path}: {exc}")
        return False

"""Read-only access to zip/cbz and rar/cbr archives.

`get_archive()` picks the reader from the extension and retries with the
other format when that fails, since misnamed archives are common.
"""

from __future__ import annotations

import zipfile
from pathlib import Path
from typing import List, Type, Union

import rarfile

IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png", ".gif", ".webp", ".avif", ".tiff"}
ZIP_EXTENSIONS = {".zip", ".cbz"}
RAR_EXTENSIONS = {".rar", ".cbr"}
ARCHIVE_EXTENSIONS = ZIP_EXTENSIONS | RAR_EXTENSIONS


def is_image(filename: str) -> bool:
    return Path(filename).suffix.lower() in IMAGE_EXTENSIONS


def is_archive(path: Path) -> bool:
    return path.suffix.lower() in ARCHIVE_EXTENSIONS


class ArchiveReader:
    """Common reader over zipfile.ZipFile and rarfile.RarFile.

    Both libraries expose the same `infolist()`/`read()`/`close()` surface,
    so subclasses only name the opener.
    """

    opener = None

    def __init__(self, path: Path):
        self.path = path
        self._handle = type(self).opener(path)

    def list_images(self) -> List[str]:
        """Image entry names (by extension), sorted by plain string order."""
        return sorted(
            info.filename
            for info in self._handle.infolist()
            if not info.is_dir() and is_image(info.filename)
        )

    def read(self, filename: str) -> bytes:
        return self._handle.read(filename)

    def close(self) -> None:
        self._handle.close()

    def __enter__(self) -> "ArchiveReader":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


class ZipReader(ArchiveReader):
    opener = zipfile.ZipFile


class RarReader(ArchiveReader):
    opener = rarfile.RarFile


def get_archive(path: Union[str, Path]) -> ArchiveReader:
    """Open `path` with the reader its extension suggests, else the other one.

    Raises the first reader's error when neither format opens.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"File not found: {path}")

    suffix = path.suffix.lower()
    readers: List[Type[ArchiveReader]]
    if suffix in ZIP_EXTENSIONS:
        readers = [ZipReader, RarReader]
    elif suffix in RAR_EXTENSIONS:
        readers = [RarReader, ZipReader]
    else:
        raise ValueError(f"Unsupported archive format: {suffix}")

    try:
        return readers[0](path)
    except Exception as primary_exc:
        try:
            return readers[1](path)
        except Exception:
            raise primary_exc

"""Filename helpers: display names, volume/chapter numbers, format checks."""

from __future__ import annotations

import re
from pathlib import Path
from typing import NamedTuple, Optional, Union

VALID_BOOK_EXTENSIONS = ("epub", "mobi", "pdf", "txt", "docx", "doc", "rtf", "html")
MANGA_EXTENSIONS = (".zip", ".cbz", ".rar", ".cbr")
WATCH_EXTENSIONS = (".cbz", ".zip", ".cbr", ".rar", ".pdf", ".epub")

_BRACKETED = re.compile(r"[\[\(\<].*?[\]\)\>]")
_VOLUME_PATTERNS = (
    re.compile(r"v(?:ol(?:ume)?)?\.?\s*(\d+)", re.IGNORECASE),
    re.compile(r"\(v(\d+)\)", re.IGNORECASE),
)
_CHAPTER_PATTERNS = (
    re.compile(r"ch(?:apter)?\.?\s*(\d+\.?\d*)", re.IGNORECASE),
    re.compile(r"c(\d+\.?\d*)", re.IGNORECASE),
)
_BARE_NUMBER = re.compile(r"\d+")


class VolumeChapter(NamedTuple):
    volume: Optional[int] = None
    chapter: Optional[float] = None


def _strip_extension(name: str) -> str:
    stem, dot, ext = name.rpartition(".")
    # Only a short alphanumeric tail counts as an extension ("Vol.2" keeps its dot).
    if dot and stem and ext.isalnum() and len(ext) <= 4 and not ext.isdigit():
        return stem
    return name


def is_valid_book(path: Union[str, Path]) -> bool:
    """Check the extension against the supported book formats."""
    return Path(path).suffix.lower().lstrip(".") in VALID_BOOK_EXTENSIONS


def is_manga_archive(path: Union[str, Path]) -> bool:
    return Path(path).suffix.lower() in MANGA_EXTENSIONS


def is_watched_file(path: Union[str, Path]) -> bool:
    return Path(path).suffix.lower() in WATCH_EXTENSIONS


def clean_book_name(file_name: str) -> str:
    """Display name for a book file.

    Bracketed, parenthesised and angle-bracketed tokens are dropped along
    with the extension.

    Example:
        >>> clean_book_name("Dune (1965) [Retail].epub")
        'Dune'
    """
    name = _BRACKETED.sub("", file_name).strip()
    return _strip_extension(name).strip()


def _to_number(text: str) -> float:
    return float(text.rstrip("."))


def extract_chapter_and_volume(file_name: str) -> VolumeChapter:
    """Best-effort volume and chapter numbers from an archive file name.

    Volume is tried first (`v2`, `vol.2`, `volume 2`, `(v02)`), then chapter
    (`ch15`, `chapter 15`, `c10.5`). When neither matches, the first bare
    number outside brackets is taken as the chapter.

    Example:
        >>> extract_chapter_and_volume("Series Vol.2 Ch.15.epub")
        VolumeChapter(volume=2, chapter=15.0)
        >>> extract_chapter_and_volume("Series [Group] 007.zip")
        VolumeChapter(volume=None, chapter=7.0)
    """
    volume = None
    chapter = None

    for pattern in _VOLUME_PATTERNS:
        match = pattern.search(file_name)
        if match:
            volume = int(match.group(1))
            break

    name = _strip_extension(file_name)
    for pattern in _CHAPTER_PATTERNS:
        match = pattern.search(name)
        if match:
            chapter = _to_number(match.group(1))
            break

    if volume is None and chapter is None:
        stripped = _BRACKETED.sub("", name)
        match = _BARE_NUMBER.search(stripped)
        if match:
            chapter = float(match.group(0))

    return VolumeChapter(volume=volume, chapter=chapter)

"""Content extraction: page counts, previews and embedded e-book data.

`extract()` never raises. Corrupt or unreadable files come back as an
`ExtractResult` carrying an error message so a scan can log it and move on.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import ebooklib
from ebooklib import epub

from .archive import get_archive, is_archive
from .images import save_page_preview, to_preview
from .logging_config import get_logger
from .records import EpubMetadata

logger = get_logger(__name__)

_ISBN_RE = re.compile(r"^(?:\d{9}[\dX]|\d{13})$", re.IGNORECASE)


@dataclass
class ExtractResult:
    page_count: int = 0
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class EpubContent:
    metadata: EpubMetadata
    cover: Optional[bytes] = None
    cover_mime_type: Optional[str] = None


def _metadata(book: epub.EpubBook, namespace: Optional[str], name: str) -> list:
    # get_metadata raises KeyError when the namespace never appeared in the OPF.
    try:
        return book.get_metadata(namespace, name)
    except KeyError:
        return []


def _dc(book: epub.EpubBook, name: str) -> Optional[str]:
    for value, _attrs in _metadata(book, "DC", name):
        if value and str(value).strip():
            return str(value).strip()
    return None


def _normalize_isbn(value: str) -> str:
    value = value.strip()
    if value.lower().startswith("urn:isbn:"):
        value = value[len("urn:isbn:"):]
    return value.replace("-", "").replace(" ", "")


def _find_isbn(book: epub.EpubBook) -> Optional[str]:
    """Prefer an ISBN-shaped identifier, else the first identifier."""
    identifiers = [str(v) for v, _attrs in _metadata(book, "DC", "identifier") if v]
    for identifier in identifiers:
        candidate = _normalize_isbn(identifier)
        if _ISBN_RE.match(candidate):
            return candidate
    return identifiers[0].strip() if identifiers else None


def _find_cover(book: epub.EpubBook):
    """Locate the cover image item of an EPUB, or None."""
    # <meta name="cover"> is stored without a namespace when read back.
    cover_meta = _metadata(book, "OPF", "cover") + _metadata(book, None, "cover")
    for _value, attrs in cover_meta:
        cover_id = (attrs or {}).get("content")
        if cover_id:
            item = book.get_item_with_id(cover_id)
            if item is not None and (item.media_type or "").startswith("image/"):
                return item

    for item in book.get_items_of_type(ebooklib.ITEM_COVER):
        return item

    for item in book.get_items_of_type(ebooklib.ITEM_IMAGE):
        names = f"{item.get_id() or ''} {item.get_name() or ''}".lower()
        if "cover" in names:
            return item
    return None


def read_epub(path: Path) -> Optional[EpubContent]:
    """Read embedded metadata and the cover image of an EPUB.

    Returns None when the file cannot be parsed. A cover that cannot be read
    is dropped without failing the whole read.
    """
    try:
        book = epub.read_epub(str(path), options={"ignore_ncx": True})
    except Exception as exc:
        logger.error(f"✗ {path.name} - unable to parse EPUB: {exc}")
        return None

    metadata = EpubMetadata(
        title=_dc(book, "title"),
        author=_dc(book, "creator"),
        publisher=_dc(book, "publisher"),
        date=_dc(book, "date"),
        description=_dc(book, "description"),
        language=_dc(book, "language"),
        isbn=_find_isbn(book),
    )

    cover = None
    mime_type = None
    try:
        item = _find_cover(book)
        if item is not None:
            cover = item.get_content() or None
            mime_type = item.media_type if cover else None
    except Exception as exc:
        logger.warning(f"{path.name}: unreadable EPUB cover: {exc}")
        cover, mime_type = None, None

    return EpubContent(metadata=metadata, cover=cover, cover_mime_type=mime_type)


def _extract_archive(
    path: Path, preview_path: Path, max_width: int, quality: int
) -> ExtractResult:
    with get_archive(path) as archive:
        images = archive.list_images()
        if not images:
            return ExtractResult(page_count=0)
        save_page_preview(archive.read(images[0]), preview_path, max_width, quality)
        return ExtractResult(page_count=len(images))


def _extract_epub(path: Path, preview_path: Path, max_width: int) -> ExtractResult:
    content = read_epub(path)
    if content is None:
        return ExtractResult(error="Unable to parse EPUB")
    if content.cover:
        to_preview(content.cover, preview_path, max_width=max_width)
    return ExtractResult(page_count=0)


def extract(
    path: Path,
    preview_path: Path,
    max_width: int = 512,
    quality: int = 70,
) -> ExtractResult:
    """Count pages of `path` and write a preview image to `preview_path`.

    Archives: image entries (by extension) sorted by name; the count is the
    page count and the first one becomes the preview. E-books: the embedded
    cover becomes the preview; pages are not counted.
    """
    try:
        if path.suffix.lower() == ".epub":
            return _extract_epub(path, preview_path, max_width)
        if is_archive(path):
            return _extract_archive(path, preview_path, max_width, quality)
        return ExtractResult(error=f"Unsupported file format: {path.suffix}")
    except Exception as exc:
        logger.error(f"✗ {path.name} - extraction failed: {exc}")
        return ExtractResult(error=str(exc) or exc.__class__.__name__)

"""Canonical metadata records.

Everything a provider returns is validated into one of these models before
it is stored, so the rest of the code never deals with raw catalog JSON.
"""

from __future__ import annotations

from typing import List, Optional, Union

from pydantic import BaseModel, field_validator


def _as_text(value):
    # Catalogs mix numbers and strings for the same field (years, ids).
    if value is None or isinstance(value, str):
        return value
    if isinstance(value, (int, float)):
        return str(value)
    return value


class Identifier(BaseModel):
    model_config = {"extra": "ignore"}

    type: str
    identifier: str


class EpubMetadata(BaseModel):
    """Metadata embedded in an EPUB package document."""

    model_config = {"extra": "ignore"}

    title: Optional[str] = None
    author: Optional[str] = None
    publisher: Optional[str] = None
    date: Optional[str] = None
    description: Optional[str] = None
    language: Optional[str] = None
    isbn: Optional[str] = None


class BookMetadata(BaseModel):
    model_config = {"extra": "ignore"}

    original_title: Optional[str] = None
    title: Optional[str] = None
    subtitle: Optional[str] = None
    isbn_10: Optional[str] = None
    isbn_13: Optional[str] = None
    publish_date: Optional[str] = None
    oclc_numbers: List[str] = []
    work_key: Optional[str] = None
    key: Optional[str] = None
    dewey_decimal_class: Optional[str] = None
    description: Optional[str] = None
    authors: List[str] = []
    genres: List[str] = []
    publishers: List[str] = []
    identifiers: List[Identifier] = []
    number_of_pages: Optional[int] = None
    cover: Optional[str] = None
    subjects: List[str] = []
    provider: Optional[str] = None
    epub: Optional[EpubMetadata] = None

    @field_validator(
        "oclc_numbers", "authors", "genres", "publishers", "subjects", mode="before"
    )
    @classmethod
    def _none_to_list(cls, value):
        if value is None:
            return []
        if isinstance(value, (str, int, float)):
            return [str(value)]
        return [str(v) for v in value if v is not None]

    @field_validator(
        "isbn_10", "isbn_13", "publish_date", "dewey_decimal_class", mode="before"
    )
    @classmethod
    def _first_scalar(cls, value):
        # Catalogs often return these as lists; keep the first entry.
        if isinstance(value, list):
            value = value[0] if value else None
        return None if value is None else str(value)

    @field_validator("identifiers", mode="before")
    @classmethod
    def _identifiers(cls, value):
        if value is None:
            return []
        return [v for v in value if isinstance(v, (dict, Identifier))]

    @field_validator(
        "original_title", "title", "subtitle", "work_key", "key", "description",
        "cover", "provider", mode="before",
    )
    @classmethod
    def _text(cls, value):
        return _as_text(value)

    @field_validator("number_of_pages", mode="before")
    @classmethod
    def _page_count(cls, value):
        try:
            return int(value) if value not in (None, "") else None
        except (TypeError, ValueError):
            return None


class MangaData(BaseModel):
    model_config = {"extra": "ignore"}

    metadata_id: Optional[Union[int, str]] = None
    metadata_provider: Optional[str] = None
    title: Optional[str] = None
    titles: List[str] = []
    synopsis: Optional[str] = None
    background: Optional[str] = None
    cover_image: Optional[str] = None
    authors: List[str] = []
    demographics: List[str] = []
    genres: List[str] = []
    themes: List[str] = []
    score: Optional[float] = None
    url: Optional[str] = None
    total_volumes: Optional[int] = None
    total_chapters: Optional[int] = None
    published_from: Optional[str] = None
    published_to: Optional[str] = None
    status: Optional[str] = None

    @field_validator(
        "titles", "authors", "demographics", "genres", "themes", mode="before"
    )
    @classmethod
    def _none_to_list(cls, value):
        if value is None:
            return []
        if isinstance(value, str):
            return [value]
        return [str(v) for v in value if v is not None]

    @field_validator(
        "metadata_provider", "title", "synopsis", "background", "cover_image",
        "url", "published_from", "published_to", "status", mode="before",
    )
    @classmethod
    def _text(cls, value):
        return _as_text(value)

    @field_validator("score", mode="before")
    @classmethod
    def _score(cls, value):
        try:
            return float(value) if value not in (None, "") else None
        except (TypeError, ValueError):
            return None

    @field_validator("total_volumes", "total_chapters", mode="before")
    @classmethod
    def _count(cls, value):
        try:
            return int(value) if value not in (None, "") else None
        except (TypeError, ValueError):
            return None


def empty_book_metadata(original_title: Optional[str]) -> BookMetadata:
    """Placeholder record used when no catalog knows the book."""
    return BookMetadata(original_title=original_title)

"""SQLModel database models for Devourer."""

from datetime import datetime, timezone
from typing import Any, Optional, List

from sqlalchemy import Column, JSON, UniqueConstraint
from sqlmodel import Field, SQLModel

LIBRARY_TYPES = ("book", "manga")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Library(SQLModel, table=True):
    __tablename__ = "libraries"
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    path: str = Field(unique=True, index=True)
    type: str
    # {"provider": "...", "apiKey": "..."}; attribute renamed because
    # SQLModel reserves `metadata`.
    settings: dict = Field(
        default_factory=dict, sa_column=Column("metadata", JSON, nullable=False)
    )
    created_at: datetime = Field(default_factory=_utcnow)

    @property
    def provider(self) -> Optional[str]:
        return (self.settings or {}).get("provider")

    @property
    def api_key(self) -> Optional[str]:
        return (self.settings or {}).get("apiKey")


class BookFile(SQLModel, table=True):
    __tablename__ = "book_files"
    id: Optional[int] = Field(default=None, primary_key=True)
    title: str
    path: str = Field(unique=True, index=True)
    file_name: str
    file_format: str
    total_pages: int = 0
    # Text so readers can store positions that are not page numbers.
    current_page: str = "0"
    is_read: bool = False
    library_id: int = Field(foreign_key="libraries.id", index=True)
    book_metadata: dict = Field(
        default_factory=dict, sa_column=Column("metadata", JSON, nullable=False)
    )
    formats: List[dict] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    tags: List[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    created_at: datetime = Field(default_factory=_utcnow)


class MangaSeries(SQLModel, table=True):
    __tablename__ = "manga_series"
    id: Optional[int] = Field(default=None, primary_key=True)
    title: str = Field(index=True)
    path: str = Field(index=True)
    cover: str = ""
    manga_data: Optional[dict] = Field(default=None, sa_column=Column(JSON, nullable=True))
    library_id: int = Field(foreign_key="libraries.id", index=True)
    created_at: datetime = Field(default_factory=_utcnow)


class MangaFile(SQLModel, table=True):
    __tablename__ = "manga_files"
    # An archive belongs to its series once, whoever ingests it first.
    __table_args__ = (UniqueConstraint("series_id", "path", name="uq_manga_files_series_path"),)
    id: Optional[int] = Field(default=None, primary_key=True)
    path: str = Field(index=True)
    file_name: str
    file_format: str
    volume: int = 0
    chapter: float = 0
    total_pages: int = 0
    current_page: int = 0
    is_read: bool = False
    series_id: int = Field(foreign_key="manga_series.id", index=True)
    file_metadata: dict = Field(
        default_factory=dict, sa_column=Column("metadata", JSON, nullable=False)
    )


class Collection(SQLModel, table=True):
    __tablename__ = "collections"
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    library_id: int = Field(foreign_key="libraries.id", index=True)
    # 0 marks a shared collection visible to every user.
    user_id: int = 0
    series: List[Any] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))

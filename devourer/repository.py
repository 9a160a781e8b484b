"""Data Access Layer for Devourer.

Encapsulates database operations using SQLModel/SQLAlchemy.
"""

from __future__ import annotations

from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Union

from sqlmodel import Session, select, col

from .models import BookFile, Collection, Library, MangaFile, MangaSeries

PathLike = Union[str, Path]


class Repository:
    """Data access layer over a single SQLModel session.

    File and series paths are stored as absolute strings; the path of a book
    or archive is its natural key when reconciling against the filesystem.
    Callers control when to commit, except for the batch helpers that must be
    applied as one unit.
    """

    def __init__(self, session: Session):
        self.session = session

    def commit(self) -> None:
        self.session.commit()

    # --- Libraries ---

    def get_library(self, library_id: int) -> Optional[Library]:
        return self.session.get(Library, library_id)

    def get_library_by_path(self, path: PathLike) -> Optional[Library]:
        return self.session.exec(select(Library).where(Library.path == str(path))).first()

    def list_libraries(self) -> List[Library]:
        return list(self.session.exec(select(Library).order_by(Library.id)).all())

    def create_library(
        self, *, name: str, path: PathLike, library_type: str, settings: dict
    ) -> Library:
        library = Library(name=name, path=str(path), type=library_type, settings=settings)
        self.session.add(library)
        self.session.flush()
        self.session.refresh(library)
        return library

    def delete_library(self, library: Library) -> List[int]:
        """Delete a library and everything it owns.

        Returns the ids of the deleted books (book library) or series (manga
        library) so the caller can remove their asset folders.
        """
        if library.type == "book":
            owned = self.list_books(library.id)
            owned_ids = [b.id for b in owned]
            for book in owned:
                self.session.delete(book)
        else:
            owned = self.list_series(library.id)
            owned_ids = [s.id for s in owned]
            for series in owned:
                self._delete_series_files(series.id)
                self.session.delete(series)

        for collection in self.session.exec(
            select(Collection).where(Collection.library_id == library.id)
        ).all():
            self.session.delete(collection)

        self.session.delete(library)
        self.session.flush()
        return owned_ids

    # --- Books ---

    def get_book_by_path(self, path: PathLike) -> Optional[BookFile]:
        return self.session.exec(select(BookFile).where(BookFile.path == str(path))).first()

    def list_books(self, library_id: int) -> List[BookFile]:
        return list(
            self.session.exec(select(BookFile).where(BookFile.library_id == library_id)).all()
        )

    def create_book(
        self,
        *,
        library_id: int,
        title: str,
        path: PathLike,
        metadata: dict,
    ) -> BookFile:
        path = Path(path)
        fmt = path.suffix.lstrip(".")
        book = BookFile(
            title=title,
            path=str(path),
            file_name=path.name,
            file_format=fmt,
            total_pages=0,
            current_page="0",
            is_read=False,
            library_id=library_id,
            book_metadata=metadata,
            formats=[{"format": fmt.lower(), "name": path.name, "path": str(path)}],
            tags=[],
        )
        self.session.add(book)
        self.session.flush()
        self.session.refresh(book)
        return book

    def delete_book(self, book: BookFile) -> None:
        self.session.delete(book)
        self.session.flush()

    # --- Manga series ---

    def find_series(self, library_id: int, title: str) -> Optional[MangaSeries]:
        statement = select(MangaSeries).where(
            MangaSeries.library_id == library_id, MangaSeries.title == title
        )
        return self.session.exec(statement).first()

    def get_series_by_path(self, library_id: int, path: PathLike) -> Optional[MangaSeries]:
        statement = select(MangaSeries).where(
            MangaSeries.library_id == library_id, MangaSeries.path == str(path)
        )
        return self.session.exec(statement).first()

    def list_series(self, library_id: int) -> List[MangaSeries]:
        return list(
            self.session.exec(
                select(MangaSeries).where(MangaSeries.library_id == library_id)
            ).all()
        )

    def create_series(
        self,
        *,
        library_id: int,
        title: str,
        path: PathLike,
        manga_data: Optional[dict],
    ) -> MangaSeries:
        series = MangaSeries(
            title=title,
            path=str(path),
            cover="",
            manga_data=manga_data,
            library_id=library_id,
        )
        self.session.add(series)
        self.session.flush()
        self.session.refresh(series)
        return series

    def delete_series(self, series: MangaSeries) -> None:
        """Delete a series together with its files."""
        self._delete_series_files(series.id)
        self.session.delete(series)
        self.session.flush()

    def _delete_series_files(self, series_id: int) -> None:
        for manga_file in self.list_series_files(series_id):
            self.session.delete(manga_file)

    # --- Manga files ---

    def list_series_files(self, series_id: int) -> List[MangaFile]:
        return list(
            self.session.exec(select(MangaFile).where(MangaFile.series_id == series_id)).all()
        )

    def get_manga_file_by_path(self, library_id: int, path: PathLike) -> Optional[MangaFile]:
        statement = (
            select(MangaFile)
            .join(MangaSeries, MangaSeries.id == MangaFile.series_id)
            .where(MangaSeries.library_id == library_id, MangaFile.path == str(path))
        )
        return self.session.exec(statement).first()

    def delete_manga_file(self, manga_file: MangaFile) -> None:
        self.session.delete(manga_file)
        self.session.flush()

    def apply_series_file_changes(
        self,
        delete_ids: Sequence[int],
        creates: Iterable[MangaFile],
    ) -> None:
        """Apply deletions and creations for one series in a single commit."""
        try:
            if delete_ids:
                for manga_file in self.session.exec(
                    select(MangaFile).where(col(MangaFile.id).in_(list(delete_ids)))
                ).all():
                    self.session.delete(manga_file)
            for manga_file in creates:
                self.session.add(manga_file)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

    # --- Collections ---

    def merge_collection(self, library_id: int, name: str, member_ids: Iterable[int]) -> Collection:
        """Create the shared collection `name` or union new members into it."""
        statement = select(Collection).where(
            Collection.library_id == library_id, Collection.name == name
        )
        collection = self.session.exec(statement).first()
        new_ids = list(member_ids)

        if collection is None:
            collection = Collection(
                name=name, library_id=library_id, user_id=0, series=new_ids
            )
        else:
            merged = list(collection.series or [])
            for member_id in new_ids:
                if member_id not in merged:
                    merged.append(member_id)
            # Reassign so the JSON column is flagged dirty.
            collection.series = merged

        self.session.add(collection)
        self.session.flush()
        self.session.refresh(collection)
        return collection

    def get_collection(self, library_id: int, name: str) -> Optional[Collection]:
        statement = select(Collection).where(
            Collection.library_id == library_id, Collection.name == name
        )
        return self.session.exec(statement).first()

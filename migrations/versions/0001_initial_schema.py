"""Initial schema: libraries, book files, manga series/files, collections

Revision ID: 0001
Revises: None
Create Date: 2026-01-01 00:00:00
"""
from __future__ import annotations

import sqlalchemy as sa
from alembic import op

# revision identifiers
revision: str = "0001"
down_revision: str | None = None
branch_labels: str | None = None
depends_on: str | None = None


def _table_exists(name: str) -> bool:
    conn = op.get_bind()
    result = conn.execute(
        sa.text("SELECT 1 FROM sqlite_master WHERE type='table' AND name=:n"),
        {"n": name},
    )
    return result.fetchone() is not None


def upgrade() -> None:
    # Guarded so databases first created by init_db() can be upgraded too.

    if not _table_exists("libraries"):
        op.create_table(
            "libraries",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("name", sa.String(), nullable=False),
            sa.Column("path", sa.String(), nullable=False),
            sa.Column("type", sa.String(), nullable=False),
            sa.Column("metadata", sa.JSON(), nullable=False),
            sa.Column("created_at", sa.DateTime(), nullable=False),
        )
        op.create_index("ix_libraries_path", "libraries", ["path"], unique=True)

    if not _table_exists("book_files"):
        op.create_table(
            "book_files",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("title", sa.String(), nullable=False),
            sa.Column("path", sa.String(), nullable=False),
            sa.Column("file_name", sa.String(), nullable=False),
            sa.Column("file_format", sa.String(), nullable=False),
            sa.Column("total_pages", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("current_page", sa.String(), nullable=False, server_default="0"),
            sa.Column("is_read", sa.Boolean(), nullable=False, server_default="0"),
            sa.Column("library_id", sa.Integer(), sa.ForeignKey("libraries.id"), nullable=False),
            sa.Column("metadata", sa.JSON(), nullable=False),
            sa.Column("formats", sa.JSON(), nullable=False),
            sa.Column("tags", sa.JSON(), nullable=False),
            sa.Column("created_at", sa.DateTime(), nullable=False),
        )
        op.create_index("ix_book_files_path", "book_files", ["path"], unique=True)
        op.create_index("ix_book_files_library_id", "book_files", ["library_id"])

    if not _table_exists("manga_series"):
        op.create_table(
            "manga_series",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("title", sa.String(), nullable=False),
            sa.Column("path", sa.String(), nullable=False),
            sa.Column("cover", sa.String(), nullable=False, server_default=""),
            sa.Column("manga_data", sa.JSON(), nullable=True),
            sa.Column("library_id", sa.Integer(), sa.ForeignKey("libraries.id"), nullable=False),
            sa.Column("created_at", sa.DateTime(), nullable=False),
        )
        op.create_index("ix_manga_series_title", "manga_series", ["title"])
        op.create_index("ix_manga_series_path", "manga_series", ["path"])
        op.create_index("ix_manga_series_library_id", "manga_series", ["library_id"])

    if not _table_exists("manga_files"):
        op.create_table(
            "manga_files",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("path", sa.String(), nullable=False),
            sa.Column("file_name", sa.String(), nullable=False),
            sa.Column("file_format", sa.String(), nullable=False),
            sa.Column("volume", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("chapter", sa.Float(), nullable=False, server_default="0"),
            sa.Column("total_pages", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("current_page", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("is_read", sa.Boolean(), nullable=False, server_default="0"),
            sa.Column("series_id", sa.Integer(), sa.ForeignKey("manga_series.id"), nullable=False),
            sa.Column("metadata", sa.JSON(), nullable=False),
            sa.UniqueConstraint("series_id", "path", name="uq_manga_files_series_path"),
        )
        op.create_index("ix_manga_files_path", "manga_files", ["path"])
        op.create_index("ix_manga_files_series_id", "manga_files", ["series_id"])

    if not _table_exists("collections"):
        op.create_table(
            "collections",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("name", sa.String(), nullable=False),
            sa.Column("library_id", sa.Integer(), sa.ForeignKey("libraries.id"), nullable=False),
            sa.Column("user_id", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("series", sa.JSON(), nullable=False),
        )
        op.create_index("ix_collections_library_id", "collections", ["library_id"])


def downgrade() -> None:
    op.drop_table("collections")
    op.drop_table("manga_files")
    op.drop_table("manga_series")
    op.drop_table("book_files")
    op.drop_table("libraries")

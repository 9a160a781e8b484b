import io
import zipfile
from pathlib import Path

import pytest
from PIL import Image
from sqlmodel import create_engine

from devourer.database import init_db


def image_bytes(color="red", size=(10, 10), fmt="PNG") -> bytes:
    img = Image.new("RGB", size, color=color)
    buffer = io.BytesIO()
    img.save(buffer, format=fmt)
    return buffer.getvalue()


def make_cbz(path: Path, pages=("page001.png",), color="red") -> Path:
    """Create a CBZ file holding one tiny PNG per page name."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with zipfile.ZipFile(path, "w") as zf:
        for name in pages:
            zf.writestr(name, image_bytes(color))
    return path


@pytest.fixture
def temp_db(tmp_path, monkeypatch):
    """Point DB_PATH and engine to a fresh SQLite file."""
    db_file = tmp_path / "library.db"
    monkeypatch.setattr("devourer.database.DB_PATH", db_file, raising=True)
    monkeypatch.setattr(
        "devourer.database.engine",
        create_engine(f"sqlite:///{db_file}", connect_args={"check_same_thread": False}),
        raising=True,
    )
    init_db()
    return db_file

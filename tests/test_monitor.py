import threading
import time
from pathlib import Path
from unittest.mock import Mock

from devourer.monitor import LibraryEventHandler, LibraryWatcher, WatchTask
from devourer.scanner import LibraryInfo
from devourer.worker import SerialWorker


def _event(src_path, is_directory=False, dest_path=None):
    event = Mock()
    event.src_path = str(src_path)
    event.is_directory = is_directory
    event.dest_path = str(dest_path) if dest_path else ""
    return event


def _handler():
    add_worker, delete_worker = Mock(), Mock()
    return LibraryEventHandler(add_worker, delete_worker), add_worker, delete_worker


def _watcher(orchestrator=None):
    watcher = LibraryWatcher(orchestrator or Mock(), startup_delay=0)
    watcher.set_libraries(
        [
            LibraryInfo(1, "Books", Path("/data"), "book"),
            LibraryInfo(2, "Manga", Path("/data/manga"), "manga"),
        ]
    )
    return watcher


# --- Event filtering ---


def test_created_watched_file_is_queued():
    handler, add_worker, _ = _handler()
    handler.on_created(_event("/data/manga/Berserk/v01.cbz"))
    add_worker.submit.assert_called_once_with(WatchTask(Path("/data/manga/Berserk/v01.cbz")))


def test_created_noise_is_ignored():
    """Directories, unsupported extensions and our own artifacts."""
    handler, add_worker, _ = _handler()
    handler.on_created(_event("/data/manga/Berserk", is_directory=True))
    handler.on_created(_event("/data/manga/Berserk/notes.txt"))
    handler.on_created(_event("/data/manga/Berserk/._v01.cbz"))
    handler.on_created(_event("/data/manga/.devourer/series/1/cover.webp"))
    add_worker.submit.assert_not_called()


def test_deleted_directory_is_queued():
    handler, _, delete_worker = _handler()
    handler.on_deleted(_event("/data/manga/Berserk", is_directory=True))
    delete_worker.submit.assert_called_once_with(WatchTask(Path("/data/manga/Berserk"), True))


def test_deleted_unwatched_file_is_ignored():
    handler, _, delete_worker = _handler()
    handler.on_deleted(_event("/data/books/readme.md"))
    handler.on_deleted(_event("/data/books/.devourer/files/3", is_directory=True))
    delete_worker.submit.assert_not_called()


def test_move_is_delete_then_add():
    handler, add_worker, delete_worker = _handler()
    handler.on_moved(_event("/data/books/old.epub", dest_path="/data/books/new.epub"))
    delete_worker.submit.assert_called_once_with(WatchTask(Path("/data/books/old.epub"), False))
    add_worker.submit.assert_called_once_with(WatchTask(Path("/data/books/new.epub")))


# --- Serial worker ---


def test_serial_worker_keeps_order_and_never_overlaps():
    lock = threading.Lock()
    state = {"active": 0, "peak": 0}
    seen = []

    def handle(item):
        with lock:
            state["active"] += 1
            state["peak"] = max(state["peak"], state["active"])
        time.sleep(0.001)
        seen.append(item)
        with lock:
            state["active"] -= 1

    worker = SerialWorker(handle)
    for i in range(25):
        worker.submit(i)
    worker.join()
    worker.stop(timeout=5)

    assert seen == list(range(25))
    assert state["peak"] == 1


def test_serial_worker_survives_handler_errors():
    seen = []

    def handle(item):
        if item == "bad":
            raise RuntimeError("boom")
        seen.append(item)

    worker = SerialWorker(handle)
    for item in ("a", "bad", "b"):
        worker.submit(item)
    worker.join()
    worker.stop(timeout=5)

    assert seen == ["a", "b"]


# --- Library mapping ---


def test_library_for_uses_longest_prefix():
    watcher = _watcher()
    assert watcher.library_for(Path("/data/manga/Berserk/v01.cbz")).id == 2
    assert watcher.library_for(Path("/data/books/Dune.epub")).id == 1
    assert watcher.library_for(Path("/data/mangaextra/x.cbz")).id == 1
    assert watcher.library_for(Path("/elsewhere/x.cbz")) is None


def test_add_in_manga_library_rescans_series():
    orchestrator = Mock()
    watcher = _watcher(orchestrator)

    watcher.handle_add(WatchTask(Path("/data/manga/Berserk/extras/v01.cbz")))

    orchestrator.ingest_series.assert_called_once()
    folder, library = orchestrator.ingest_series.call_args[0]
    assert folder == Path("/data/manga/Berserk")
    assert library.id == 2


def test_add_at_manga_root_is_ignored():
    orchestrator = Mock()
    watcher = _watcher(orchestrator)
    watcher.handle_add(WatchTask(Path("/data/manga/loose.cbz")))
    orchestrator.ingest_series.assert_not_called()


def test_add_in_book_library_ingests_file(tmp_path):
    orchestrator = Mock()
    watcher = LibraryWatcher(orchestrator, startup_delay=0)
    library = LibraryInfo(1, "Books", tmp_path, "book")
    watcher.set_libraries([library])

    book = tmp_path / "Dune.epub"
    book.write_bytes(b"epub")
    watcher.handle_add(WatchTask(book))
    watcher.handle_add(WatchTask(tmp_path / "gone.epub"))

    orchestrator.ingest_book_file.assert_called_once_with(book, library)


def test_delete_in_book_library():
    orchestrator = Mock()
    watcher = _watcher(orchestrator)
    watcher.handle_delete(WatchTask(Path("/data/books/Dune.epub")))
    watcher.handle_delete(WatchTask(Path("/data/books"), True))
    orchestrator.delete_book.assert_called_once_with(Path("/data/books/Dune.epub"))


def test_delete_in_manga_library():
    orchestrator = Mock()
    watcher = _watcher(orchestrator)

    watcher.handle_delete(WatchTask(Path("/data/manga/Berserk/v01.cbz")))
    watcher.handle_delete(WatchTask(Path("/data/manga/Berserk"), True))
    # Nested folders are not series.
    watcher.handle_delete(WatchTask(Path("/data/manga/Berserk/extras"), True))

    paths = [c[0][0] for c in orchestrator.delete_manga_path.call_args_list]
    assert paths == [Path("/data/manga/Berserk/v01.cbz"), Path("/data/manga/Berserk")]

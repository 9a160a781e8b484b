"""Devourer command line.

    devourer init                      write config.ini
    devourer add PATH --name N         register a library
    devourer libraries                 list libraries
    devourer scan ID                   scan a library in the foreground
    devourer serve                     API server + file watcher
    devourer migrate [--check]         database migrations
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import typer

from devourer import __version__
from devourer.api import run_server
from devourer.config import DEFAULT_CONFIG_PATH, DevourerConfig, load_config, write_default_config
from devourer.database import init_db
from devourer.libraries import LibraryError, create_library, list_libraries
from devourer.logging_config import setup_logging
from devourer.metadata import MetadataResolver
from devourer.migrations import get_status, stamp_if_needed, upgrade
from devourer.monitor import start_file_monitoring
from devourer.scanner import LibraryNotFound, ScanOrchestrator

app = typer.Typer(add_completion=False, help="Devourer book and manga library CLI")
logger = logging.getLogger("devourer")

STARTUP_BANNER = r"""
     _
  __| | _____   _____  _   _ _ __ ___ _ __
 / _` |/ _ \ \ / / _ \| | | | '__/ _ \ '__|
| (_| |  __/\ V / (_) | |_| | | |  __/ |
 \__,_|\___| \_/ \___/ \__,_|_|  \___|_|
"""


def _require_config() -> DevourerConfig:
    try:
        return load_config()
    except FileNotFoundError:
        typer.echo("[ERROR] config.ini not found. Run: devourer init")
        raise typer.Exit(code=1)


def _orchestrator(config: DevourerConfig) -> ScanOrchestrator:
    return ScanOrchestrator(config, MetadataResolver.from_config(config))


def _upgrade_to_head() -> bool:
    """Upgrade when behind; returns True when a migration ran."""
    current, head = get_status()
    if current == head:
        logger.info(f"Database at {head} (up to date).")
        return False
    logger.info(f"Migrating database {current} -> {head} ...")
    upgrade(backup=True)
    logger.info("Migration complete.")
    return True


@app.command()
def init(
    force: bool = typer.Option(False, "--force", help="Overwrite an existing config.ini"),
) -> None:
    """Create config.ini with default settings."""
    if DEFAULT_CONFIG_PATH.exists() and not force:
        typer.echo(f"[INFO] Config already exists at {DEFAULT_CONFIG_PATH}")
        raise typer.Exit(code=0)
    typer.echo(f"[OK] Config created at {write_default_config()}")


@app.command()
def add(
    path: Path = typer.Argument(..., help="Library root folder"),
    name: str = typer.Option(..., "--name", help="Library name"),
    library_type: str = typer.Option("book", "--type", help="book or manga"),
    provider: Optional[str] = typer.Option(None, "--provider", help="Metadata provider key"),
    api_key: Optional[str] = typer.Option(None, "--api-key", help="Provider API key"),
    scan_now: bool = typer.Option(False, "--scan", help="Scan right away"),
) -> None:
    """Register a library folder."""
    setup_logging()
    _require_config()
    init_db()

    try:
        info = create_library(
            name,
            str(path.expanduser().resolve()),
            library_type,
            {"provider": provider, "apiKey": api_key},
        )
    except LibraryError as exc:
        typer.echo(f"[ERROR] {exc}")
        raise typer.Exit(code=1)

    typer.echo(f"[OK] Library {info.name} created (id {info.id})")
    if scan_now:
        scan(info.id)


@app.command()
def libraries() -> None:
    """List libraries."""
    _require_config()
    init_db()
    rows = list_libraries()
    if not rows:
        typer.echo("No libraries. Add one with: devourer add /path --name NAME")
        return
    for row in rows:
        typer.echo(
            f"  [{row['id']}] {row['name']} ({row['type']}) "
            f"{row['path']} - {row['seriesCount']} entries"
        )


@app.command()
def scan(
    library_id: int = typer.Argument(..., help="Library id (see `libraries`)"),
) -> None:
    """Scan a library and wait for it to finish."""
    setup_logging()
    orchestrator = _orchestrator(_require_config())
    init_db()

    try:
        orchestrator.start_scan(library_id, wait=True)
    except (LibraryNotFound, FileNotFoundError) as exc:
        typer.echo(f"[ERROR] {exc}")
        raise typer.Exit(code=1)

    progress = orchestrator.get_scan_status(library_id)["progress"]
    errors = [e for e in progress["series"] if e["status"] == "error"]
    typer.echo(
        f"✓ Scan completed: {progress['completed']} of {progress['total']} entries, "
        f"{len(errors)} errors."
    )
    for entry in errors:
        typer.echo(f"  ✗ {entry['series']}: {entry.get('error')}")


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, "--host", help="Override server host"),
    port: Optional[int] = typer.Option(None, "--port", help="Override server port"),
    no_watch: bool = typer.Option(False, "--no-watch", help="Do not watch library folders"),
) -> None:
    """Start the API server and the library watcher."""
    setup_logging()
    typer.echo(typer.style(STARTUP_BANNER, fg=typer.colors.MAGENTA, bold=True))
    logger.info(f"Devourer {__version__}")

    config = _require_config()
    init_db()
    stamp_if_needed()
    _upgrade_to_head()

    orchestrator = _orchestrator(config)
    watcher = None if no_watch else start_file_monitoring(config, orchestrator)
    if watcher is None:
        logger.info("File monitoring disabled")

    try:
        run_server(config, orchestrator, host=host, port=port, watcher=watcher)
    except KeyboardInterrupt:
        pass
    finally:
        if watcher is not None:
            watcher.stop()


@app.command()
def migrate(
    check: bool = typer.Option(False, "--check", help="Only report; exit 1 when behind head"),
) -> None:
    """Upgrade the database schema to the latest revision."""
    setup_logging()
    _require_config()
    init_db()
    stamp_if_needed()

    if check:
        current, head = get_status()
        if current != head:
            typer.echo(f"[WARN] Database behind. Current: {current}, head: {head}")
            raise typer.Exit(code=1)
        typer.echo(f"[OK] Database at {head} (head).")
        return

    _upgrade_to_head()


if __name__ == "__main__":
    app()

"""FastAPI control surface for Devourer.

Exposes library management and the scan control endpoints. The scan
orchestrator (and with it the scan registry) and the optional watcher live
on `app.state`.
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .config import DevourerConfig
from .libraries import LibraryError, create_library, delete_library, list_libraries
from .logging_config import get_logger
from .scanner import LibraryNotFound, ScanOrchestrator

logger = get_logger(__name__)


class LibraryCreate(BaseModel):
    name: str
    path: str
    type: str
    metadata: dict = Field(default_factory=dict)


def _orchestrator(request: Request) -> ScanOrchestrator:
    return request.app.state.orchestrator


def create_app(orchestrator: ScanOrchestrator, watcher=None) -> FastAPI:
    @asynccontextmanager
    async def _lifespan(app: FastAPI):
        logger.info("Started server process [" + str(os.getpid()) + "]")
        yield

    app = FastAPI(title="Devourer", lifespan=_lifespan)
    app.state.orchestrator = orchestrator
    app.state.watcher = watcher

    @app.exception_handler(LibraryNotFound)
    async def _not_found(request: Request, exc: LibraryNotFound):
        return JSONResponse(status_code=404, content={"status": False, "message": str(exc)})

    @app.exception_handler(LibraryError)
    async def _bad_request(request: Request, exc: LibraryError):
        return JSONResponse(status_code=400, content={"status": False, "message": str(exc)})

    @app.exception_handler(FileNotFoundError)
    async def _missing_root(request: Request, exc: FileNotFoundError):
        return JSONResponse(status_code=400, content={"status": False, "message": str(exc)})

    @app.get("/libraries")
    def get_libraries():
        return list_libraries()

    @app.post("/libraries", status_code=201)
    def post_library(payload: LibraryCreate, request: Request):
        info = create_library(
            payload.name,
            payload.path,
            payload.type,
            payload.metadata,
            orchestrator=_orchestrator(request),
            watcher=request.app.state.watcher,
        )
        return {
            "id": info.id,
            "name": info.name,
            "path": str(info.path),
            "type": info.type,
            "metadata": {"provider": info.provider},
        }

    @app.delete("/libraries/{library_id}")
    def remove_library(library_id: int, request: Request):
        return delete_library(
            library_id,
            orchestrator=_orchestrator(request),
            watcher=request.app.state.watcher,
        )

    @app.post("/library/{library_id}/scan")
    def start_scan(library_id: int, request: Request):
        return _orchestrator(request).start_scan(library_id)

    @app.get("/library/{library_id}/scan")
    def scan_status(library_id: int, request: Request):
        return _orchestrator(request).get_scan_status(library_id)

    return app


def run_server(
    config: DevourerConfig,
    orchestrator: ScanOrchestrator,
    host: Optional[str] = None,
    port: Optional[int] = None,
    watcher=None,
) -> None:
    """Run the FastAPI app with Uvicorn."""
    import uvicorn

    effective_host = host or config.server_host
    effective_port = port or config.server_port

    app = create_app(orchestrator, watcher)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logger.info(f"Devourer API available at http://{effective_host}:{effective_port}/")

    uvicorn.run(
        app,
        host=effective_host,
        port=effective_port,
        log_level="info",
        log_config=None,
    )

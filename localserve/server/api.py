# localserve/server/api.py
# Control API: the HTTP command surface the desktop UI talks to.
#
# The app is built by create_app(), which is also the composition root: it
# creates the ServerRegistry and ServerManager (unless handed one) and keeps
# the manager on app.state. Shutting the API down stops every static server.

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import APIRouter, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from localserve import __version__
from localserve.base.config import LocalServeConfig, get_config, setup_logging
from localserve.errors import LocalServeError
from localserve.server.manager import ServerManager
from localserve.server.registry import ServerRegistry
from localserve.server.routers import servers, system

logger = logging.getLogger(__name__)


def create_app(manager: Optional[ServerManager] = None, config: Optional[LocalServeConfig] = None) -> FastAPI:
    config = config or (manager.config if manager else get_config())
    manager = manager or ServerManager(ServerRegistry(), config=config)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        failures = await app.state.manager.stop_all_servers()
        if failures:
            logger.warning("[API] %d server(s) did not stop cleanly on shutdown", len(failures))

    app = FastAPI(
        title="LocalServe API",
        description="Manage local static-file servers",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.manager = manager

    @app.exception_handler(LocalServeError)
    async def localserve_error_handler(request: Request, exc: LocalServeError):
        """Convert LocalServeError to a structured JSON response."""
        logger.error(f"[API] {exc.code.value}: {exc.message}", extra={"details": exc.details})
        return JSONResponse(status_code=exc.http_status, content=exc.to_dict())

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(config.allowed_origins),
        allow_origin_regex=config.allowed_origin_regex,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # API Versioning: all command endpoints live under /v1
    v1_router = APIRouter(prefix="/v1", responses={404: {"description": "Not found"}})
    v1_router.include_router(servers.router)

    app.include_router(system.router)
    app.include_router(v1_router)
    return app


def serve(port: Optional[int] = None, host: Optional[str] = None, config: Optional[LocalServeConfig] = None):
    config = config or get_config()
    setup_logging(config)
    app = create_app(config=config)
    uvicorn.run(app, host=host or config.api_host, port=port or config.api_port, log_config=None)

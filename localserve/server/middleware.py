"""
localserve/server/middleware.py

Request wrappers placed in front of the static handler.

Pipeline order (outermost first): request logging -> CORS -> static files.
Both wrappers are decorators only: they add headers or emit a log line and
leave the wrapped response otherwise untouched.
"""

from __future__ import annotations

import logging
import time
from typing import Optional

from starlette.background import BackgroundTask
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

from localserve.server.static_files import StaticFileHandler

access_logger = logging.getLogger("localserve.access")

PREFLIGHT_MAX_AGE = "600"
ALLOWED_METHODS = "GET, HEAD, OPTIONS"


class PermissiveCORSMiddleware(BaseHTTPMiddleware):
    """
    Allow any origin.

    Every OPTIONS request is treated as a preflight and answered here with
    204; it never reaches the static handler.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if request.method == "OPTIONS":
            return Response(
                status_code=204,
                headers={
                    "Access-Control-Allow-Origin": "*",
                    "Access-Control-Allow-Methods": ALLOWED_METHODS,
                    # Echo what the browser asked for, "*" otherwise
                    "Access-Control-Allow-Headers": request.headers.get("access-control-request-headers", "*"),
                    "Access-Control-Max-Age": PREFLIGHT_MAX_AGE,
                },
            )

        response = await call_next(request)
        response.headers["Access-Control-Allow-Origin"] = "*"
        return response


class RequestLogMiddleware(BaseHTTPMiddleware):
    """
    One access-log line per completed request.

    The line is written from a background task, which Starlette runs only
    after the last body chunk has been sent, so logging never holds up the
    response.
    """

    def __init__(self, app: ASGIApp, label: str = "") -> None:
        super().__init__(app)
        self.label = label

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        started = time.perf_counter()
        path = request.scope["path"]
        try:
            response = await call_next(request)
        except Exception:
            self._log(request.method, path, 500, started)
            raise
        response.background = BackgroundTask(self._log, request.method, path, response.status_code, started)
        return response

    def _log(self, method: str, path: str, status_code: int, started: float) -> None:
        latency_ms = (time.perf_counter() - started) * 1000
        access_logger.info("[%s] %s %s %d %.2fms", self.label, method, path, status_code, latency_ms)


def build_pipeline(
    static_root,
    *,
    directory_listing: bool = False,
    serve_index: bool = True,
    cors: bool = False,
    enable_logging: bool = False,
    label: Optional[str] = None,
) -> ASGIApp:
    """Compose logging -> CORS -> static handler for one server instance."""
    app: ASGIApp = StaticFileHandler(static_root, directory_listing=directory_listing, serve_index=serve_index)
    if cors:
        app = PermissiveCORSMiddleware(app)
    if enable_logging:
        app = RequestLogMiddleware(app, label=label or str(static_root))
    return app

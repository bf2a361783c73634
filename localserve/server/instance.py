"""
localserve/server/instance.py

One static server: a listener, its accept loop and its request pipeline.

Lifecycle:
    CREATED -> STARTING -> RUNNING -> STOPPING -> STOPPED
    CREATED -> STARTING -> FAILED   (bad directory, bind failure or cancelled start)

The accept loop is an embedded uvicorn.Server running as an asyncio task on
the caller's event loop and serving the socket PortAllocator already bound.

Shutdown is cooperative first: should_exit stops accepting at once and
uvicorn drains in-flight requests. Once the grace period passes the
remaining connections are aborted and their request tasks cancelled; the
accept loop then gets force_close_timeout_seconds to return before its task
is cancelled outright.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import time
import uuid
from pathlib import Path
from typing import Iterator, Optional

import uvicorn

from localserve.base.config import ShutdownConfig
from localserve.errors import (
    BindFailedError,
    DirectoryNotFoundError,
    LocalServeError,
    PermissionDeniedError,
    ShutdownTimeoutError,
)
from localserve.server.middleware import build_pipeline
from localserve.server.models import ServerConfig, ServerHandle, ServerState, format_url
from localserve.server.ports import Allocation, PortAllocator
from localserve.server.static_files import canonical_root

logger = logging.getLogger(__name__)


def validate_static_root(static_dir: str) -> Path:
    """
    Check the root exists and is a readable directory; return it canonicalized.

    Raises:
        DirectoryNotFoundError: missing, or not a directory
        PermissionDeniedError: exists but cannot be listed
    """
    details = {"static_dir": static_dir}
    path = Path(static_dir).expanduser()

    try:
        exists = path.exists()
        is_dir = path.is_dir()
    except PermissionError as exc:
        raise PermissionDeniedError(f"Directory '{static_dir}' is not accessible. Please check permissions.", details) from exc

    if not exists:
        raise DirectoryNotFoundError(
            f"Directory '{static_dir}' does not exist. Please create it first or use a different path.", details
        )
    if not is_dir:
        raise DirectoryNotFoundError(
            f"Path '{static_dir}' is not a directory. Please specify a valid directory path.", details
        )

    try:
        with os.scandir(path):
            pass
    except PermissionError as exc:
        raise PermissionDeniedError(f"Directory '{static_dir}' is not accessible. Please check permissions.", details) from exc

    return canonical_root(path)


class _EmbeddedServer(uvicorn.Server):
    """uvicorn.Server that leaves process signals to the host and reports readiness."""

    def __init__(self, config: uvicorn.Config) -> None:
        super().__init__(config)
        self.ready = asyncio.Event()

    @contextlib.contextmanager
    def capture_signals(self) -> Iterator[None]:
        # Several servers share one process; SIGINT/SIGTERM belong to the host.
        yield

    async def startup(self, sockets=None) -> None:
        await super().startup(sockets=sockets)
        if self.started and not self.should_exit:
            self.ready.set()


class ServerInstance:
    """Owns one listener and serves static content until told to stop."""

    def __init__(
        self,
        config: ServerConfig,
        *,
        allocator: Optional[PortAllocator] = None,
        shutdown: Optional[ShutdownConfig] = None,
        server_id: Optional[str] = None,
    ):
        # config is expected to have been through ServerConfig.with_defaults()
        self.config = config
        self.id = server_id or str(uuid.uuid4())
        self.allocator = allocator or PortAllocator()
        self.shutdown_config = shutdown or ShutdownConfig()

        self.state = ServerState.CREATED
        self.port: Optional[int] = None
        self.root: Optional[Path] = None
        self.shutdown_timed_out = False

        self._allocation: Optional[Allocation] = None
        self._server: Optional[_EmbeddedServer] = None
        self._serve_task: Optional[asyncio.Task] = None
        self._stop_task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        # True from accept-loop start until shutdown has completed
        return self.state in (ServerState.RUNNING, ServerState.STOPPING)

    @property
    def host(self) -> str:
        return self.config.host or "127.0.0.1"

    def __repr__(self) -> str:
        return f"ServerInstance(id={self.id!r}, port={self.port}, state={self.state.value})"

    # ------------------------------------------------------------------
    # Start
    # ------------------------------------------------------------------

    async def start(self) -> ServerHandle:
        """
        Validate, bind, build the pipeline and spawn the accept loop.

        Returns the handle only once the accept loop is serving. On failure
        the instance ends in FAILED and nothing is left bound.
        """
        if self.state is not ServerState.CREATED:
            raise RuntimeError(f"Server {self.id} cannot be started from state {self.state.value}")
        self.state = ServerState.STARTING

        try:
            self.root = validate_static_root(self.config.static_dir)
            self._allocation = self.allocator.resolve(self.config.port or 0, self.host)
        except LocalServeError:
            self.state = ServerState.FAILED
            raise

        self.port = self._allocation.port
        url = format_url(self.host, self.port)

        app = build_pipeline(
            self.root,
            directory_listing=bool(self.config.directory_listing),
            serve_index=self.config.serve_index is not False,
            cors=bool(self.config.cors),
            enable_logging=bool(self.config.enable_logging),
            label=url,
        )

        uv_config = uvicorn.Config(
            app,
            host=self.host,
            port=self.port,
            interface="asgi3",
            lifespan="off",
            ws="none",
            proxy_headers=False,
            access_log=False,
            # Keep the host application's logging configuration intact
            log_config=None,
            timeout_graceful_shutdown=max(1, int(self.shutdown_config.grace_period_seconds + 0.999)),
        )
        self._server = _EmbeddedServer(uv_config)
        self._serve_task = asyncio.create_task(
            self._server.serve(sockets=[self._allocation.sock]),
            name=f"localserve-{self.id}",
        )

        ready_task = asyncio.create_task(self._server.ready.wait())
        try:
            await asyncio.wait({ready_task, self._serve_task}, return_when=asyncio.FIRST_COMPLETED)
        except BaseException:
            # Cancelled mid-start: nobody will ever hold a handle to this
            # instance, so the listener must not outlive this call.
            ready_task.cancel()
            await asyncio.shield(self._abort_start())
            raise

        if not self._server.ready.is_set():
            ready_task.cancel()
            await self._abort_start()
            raise BindFailedError(
                f"Server on {url} exited during startup",
                {"host": self.host, "port": self.port},
            )

        self._serve_task.add_done_callback(self._on_serve_exit)
        self.state = ServerState.RUNNING
        logger.info("[ServerInstance] %s serving %s on %s", self.id, self.root, url)

        return ServerHandle(
            id=self.id,
            host=self.host,
            port=self.port,
            url=url,
            static_dir=str(self.root),
            directory_listing=bool(self.config.directory_listing),
            logging_enabled=bool(self.config.enable_logging),
            cors_enabled=bool(self.config.cors),
            instance=self,
        )

    async def _abort_start(self) -> None:
        server, task = self._server, self._serve_task
        if server is not None:
            # uvicorn returns straight after startup once should_exit is set;
            # letting it get there means every listener it made is in
            # server.servers and can be closed below.
            server.should_exit = True
            server.force_exit = True
        if task is not None:
            done, _ = await asyncio.wait({task}, timeout=self.shutdown_config.force_close_timeout_seconds)
            if not done:
                task.cancel()
                await asyncio.wait({task})
            if not task.cancelled() and task.exception() is not None:
                logger.error(
                    "[ServerInstance] %s accept loop failed during startup", self.id, exc_info=task.exception()
                )

        self._close_listeners()
        if self._allocation is not None:
            self._allocation.sock.close()
        self.state = ServerState.FAILED
        logger.info("[ServerInstance] %s start aborted, port %s released", self.id, self.port)

    def _on_serve_exit(self, task: asyncio.Task) -> None:
        # Only interesting when the loop dies without anyone asking it to
        if self.state is not ServerState.RUNNING:
            return
        if task.cancelled():
            logger.warning("[ServerInstance] %s accept loop was cancelled", self.id)
        elif task.exception() is not None:
            logger.error("[ServerInstance] %s accept loop crashed", self.id, exc_info=task.exception())
        else:
            logger.warning("[ServerInstance] %s accept loop exited unexpectedly", self.id)
        self.state = ServerState.STOPPED
        if self._allocation is not None:
            self._allocation.sock.close()

    # ------------------------------------------------------------------
    # Stop
    # ------------------------------------------------------------------

    async def stop(self) -> None:
        """
        Stop serving. Safe to call repeatedly or concurrently: only the
        first call triggers shutdown, later calls wait for the same result.
        """
        if self.state in (ServerState.CREATED, ServerState.FAILED, ServerState.STOPPED) and self._stop_task is None:
            return
        if self._stop_task is None:
            self._stop_task = asyncio.create_task(self._shutdown(), name=f"localserve-stop-{self.id}")
        await asyncio.shield(self._stop_task)

    async def _shutdown(self) -> None:
        server, task = self._server, self._serve_task
        if server is None or task is None:
            raise RuntimeError(f"Server {self.id} has no accept loop to stop")
        self.state = ServerState.STOPPING
        started = time.monotonic()
        grace = self.shutdown_config.grace_period_seconds

        # Stop accepting; uvicorn closes the listener on its next tick
        server.should_exit = True

        try:
            await asyncio.wait_for(asyncio.shield(task), timeout=grace)
        except asyncio.TimeoutError:
            self.shutdown_timed_out = True
            logger.warning(
                "[ServerInstance] %s",
                ShutdownTimeoutError(
                    f"Server {self.id} did not drain within {grace:.1f}s, force-closing",
                    {"server_id": self.id, "port": self.port, "open_connections": self._open_connections()},
                ),
            )
            await self._force_close(server, task)
        except Exception:
            # The accept loop crashed while draining; it is down either way
            logger.exception("[ServerInstance] %s accept loop failed during shutdown", self.id)

        if self._allocation is not None:
            self._allocation.sock.close()
        self.state = ServerState.STOPPED
        logger.info("[ServerInstance] %s stopped in %.2fs", self.id, time.monotonic() - started)

    def _open_connections(self) -> int:
        if self._server is None:
            return 0
        return len(self._server.server_state.connections)

    def _close_listeners(self) -> None:
        server = self._server
        if server is None:
            return
        for listener in getattr(server, "servers", []):
            listener.close()
        # abort() drops unsent data; close() would wait for a client that
        # may never read it.
        for connection in list(server.server_state.connections):
            transport = getattr(connection, "transport", None)
            if transport is not None:
                transport.abort()

    async def _force_close(self, server: _EmbeddedServer, task: asyncio.Task) -> None:
        server.force_exit = True
        self._close_listeners()
        for request_task in list(server.server_state.tasks):
            request_task.cancel()

        try:
            await asyncio.wait_for(asyncio.shield(task), timeout=self.shutdown_config.force_close_timeout_seconds)
            return
        except asyncio.TimeoutError:
            logger.error("[ServerInstance] %s accept loop ignored force close, cancelling it", self.id)
        except Exception:
            logger.exception("[ServerInstance] %s accept loop failed during shutdown", self.id)
            return

        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            try:
                await task
            except Exception:
                logger.exception("[ServerInstance] %s accept loop failed during force close", self.id)

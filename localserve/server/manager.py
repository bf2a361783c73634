"""
localserve/server/manager.py

ServerManager: the facade UI and CLI callers talk to.

Problem:
  - Callers run any number of local static servers side by side and must
    never observe a half-started or half-stopped one.

Design:
  - start_server() fully starts a ServerInstance first and registers it
    only afterwards; a failed or cancelled start leaves the registry
    untouched and nothing bound.
  - stop_server() removes a handle only after its instance has confirmed
    shutdown.
  - stop_all_servers() stops every instance concurrently and independently
    and reports failures instead of stopping at the first one.
  - The registry is injected; each manager/registry pair is independent.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Mapping, Optional, Union

from localserve.base.config import LocalServeConfig, get_config
from localserve.errors import LocalServeError, ServerNotFoundError, handle_error
from localserve.server.instance import ServerInstance
from localserve.server.models import ServerConfig, ServerHandle, ServerInfo
from localserve.server.ports import PortAllocator
from localserve.server.registry import ServerRegistry
from localserve.server.scaffold import create_test_directory

logger = logging.getLogger(__name__)


class ServerManager:
    def __init__(
        self,
        registry: ServerRegistry,
        *,
        allocator: Optional[PortAllocator] = None,
        config: Optional[LocalServeConfig] = None,
    ):
        self.registry = registry
        self.allocator = allocator or PortAllocator()
        self.config = config or get_config()

    async def start_server(self, config: Union[ServerConfig, Mapping[str, Any]]) -> ServerInfo:
        """
        Start a static server and register it.

        Raises DirectoryNotFoundError, PermissionDeniedError, PortInUseError
        or BindFailedError; in every failure case nothing is registered.
        """
        if not isinstance(config, ServerConfig):
            config = ServerConfig.model_validate(config)
        resolved = config.with_defaults(self.config.defaults)

        instance = ServerInstance(resolved, allocator=self.allocator, shutdown=self.config.shutdown)
        try:
            handle = await instance.start()
            await self.registry.add(handle)
        except BaseException:
            # Covers cancellation too: never leave a running but unregistered
            # server behind
            await instance.stop()
            raise

        logger.info("[ServerManager] Started %s at %s (root %s)", handle.id, handle.url, handle.static_dir)
        return handle.to_info()

    async def stop_server(self, server_id: str) -> None:
        handle = await self.registry.get(server_id)
        if handle is None:
            raise ServerNotFoundError(f"Server with id {server_id} not found", {"server_id": server_id})
        await self._stop_handle(handle)
        logger.info("[ServerManager] Stopped %s", server_id)

    async def stop_all_servers(self) -> Dict[str, LocalServeError]:
        """
        Best-effort stop of every registered server.

        Returns a mapping of server id to the error that server's shutdown
        raised; an empty mapping means everything stopped cleanly. The
        registry is empty on return either way: servers registered by a
        concurrent start_server() while this runs are swept up in a further
        round.
        """
        failures: Dict[str, LocalServeError] = {}
        stopped = 0

        while True:
            handles = await self.registry.snapshot()
            if not handles:
                break

            results = await asyncio.gather(
                *(self._stop_handle(handle) for handle in handles),
                return_exceptions=True,
            )

            for handle, result in zip(handles, results):
                if isinstance(result, asyncio.CancelledError):
                    raise result
                if isinstance(result, BaseException):
                    failures[handle.id] = handle_error(result, context=f"while stopping server {handle.id}")
                    logger.error("[ServerManager] Failed to stop %s cleanly: %s", handle.id, result)
            stopped += len(handles)

        if stopped:
            logger.info("[ServerManager] Stopped %d server(s), %d failure(s)", stopped, len(failures))
        return failures

    async def list_servers(self) -> List[ServerInfo]:
        return [handle.to_info() for handle in await self.registry.snapshot()]

    async def get_server(self, server_id: str) -> ServerInfo:
        handle = await self.registry.get(server_id)
        if handle is None:
            raise ServerNotFoundError(f"Server with id {server_id} not found", {"server_id": server_id})
        return handle.to_info()

    def is_port_available(self, port: int, host: Optional[str] = None) -> bool:
        """Advisory: another process may take the port right after this returns True."""
        return self.allocator.is_available(port, host or self.config.defaults.host)

    def create_test_directory(self, path: str) -> str:
        return create_test_directory(path)

    async def _stop_handle(self, handle: ServerHandle) -> None:
        try:
            await handle.instance.stop()
        finally:
            # Whatever happened, the instance no longer serves; the registry
            # must not keep reporting it.
            await self.registry.remove(handle.id)

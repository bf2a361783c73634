from __future__ import annotations

import asyncio
import logging
from typing import Dict, List, Optional

from localserve.errors import PortInUseError
from localserve.server.models import ServerHandle

logger = logging.getLogger(__name__)


class ServerRegistry:
    """
    Authoritative map of live servers, keyed by server id.

    Every mutation and snapshot runs under one asyncio.Lock. The lock is
    only ever held for dictionary work, never across network or disk I/O.
    Each composition root owns its own registry; there is no global one.
    """

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._handles: Dict[str, ServerHandle] = {}

    async def add(self, handle: ServerHandle) -> None:
        async with self._lock:
            if handle.id in self._handles:
                raise ValueError(f"Server id {handle.id} is already registered")
            for existing in self._handles.values():
                if existing.port == handle.port:
                    raise PortInUseError(
                        f"Port {handle.port} is already served by {existing.id}",
                        {"port": handle.port, "server_id": existing.id},
                    )
            self._handles[handle.id] = handle
        logger.debug("[ServerRegistry] Registered %s on port %d", handle.id, handle.port)

    async def get(self, server_id: str) -> Optional[ServerHandle]:
        async with self._lock:
            return self._handles.get(server_id)

    async def remove(self, server_id: str) -> Optional[ServerHandle]:
        async with self._lock:
            handle = self._handles.pop(server_id, None)
        if handle is not None:
            logger.debug("[ServerRegistry] Removed %s", server_id)
        return handle

    async def snapshot(self) -> List[ServerHandle]:
        async with self._lock:
            return list(self._handles.values())

    def __len__(self) -> int:
        return len(self._handles)

    def __contains__(self, server_id: object) -> bool:
        return server_id in self._handles

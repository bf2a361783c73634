# ============================================================================
# localserve/server/__init__.py
# Server Package - Local Static Server Manager
# ============================================================================
#
# PURPOSE:
# Creates, tracks and tears down local static-file HTTP servers inside the
# host process.
#
# ARCHITECTURE:
# UI / CLI -> ServerManager -> ServerInstance (uvicorn accept loop)
#                 |                 |
#           ServerRegistry     logging -> CORS -> StaticFileHandler
#
# KEY MODULES:
# - **ports.py**: PortAllocator (bind / availability probe)
# - **static_files.py**: path containment, MIME table, directory listing
# - **middleware.py**: request logging and CORS wrappers
# - **instance.py**: one server's lifecycle
# - **registry.py**: live servers keyed by id
# - **manager.py**: the facade callers use
# - **api.py**: FastAPI control API over the manager
#
# ============================================================================

from localserve.server.manager import ServerManager
from localserve.server.models import ServerConfig, ServerHandle, ServerInfo, ServerState
from localserve.server.ports import PortAllocator
from localserve.server.registry import ServerRegistry

__all__ = [
    "PortAllocator",
    "ServerConfig",
    "ServerHandle",
    "ServerInfo",
    "ServerManager",
    "ServerRegistry",
    "ServerState",
]

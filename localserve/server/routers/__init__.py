"""
Router initialization module.

Exports the control API routers.
"""
from localserve.server.routers import servers, system

__all__ = [
    "servers",
    "system",
]

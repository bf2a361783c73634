from __future__ import annotations

import time

from fastapi import APIRouter, Request

from localserve import __version__

router = APIRouter(tags=["system"])


@router.get("/health")
async def health_check(request: Request):
    """Simple health check endpoint."""
    manager = request.app.state.manager
    return {
        "status": "ok",
        "version": __version__,
        "servers": len(manager.registry),
        "timestamp": time.time(),
    }

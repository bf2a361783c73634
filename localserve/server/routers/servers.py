from __future__ import annotations

import logging
from typing import Dict, List

from fastapi import APIRouter, Depends, Request, Response
from pydantic import BaseModel, Field

from localserve.server.manager import ServerManager
from localserve.server.models import ServerConfig, ServerInfo

logger = logging.getLogger(__name__)

router = APIRouter(tags=["servers"])


def get_manager(request: Request) -> ServerManager:
    return request.app.state.manager


class StopAllResult(BaseModel):
    stopped: int
    failures: Dict[str, Dict] = Field(default_factory=dict)


class TestDirectoryRequest(BaseModel):
    path: str = Field(..., min_length=1, max_length=4096)


class MessageResponse(BaseModel):
    message: str


class PortAvailability(BaseModel):
    port: int
    host: str
    available: bool


@router.post("/servers", response_model=ServerInfo, status_code=201)
async def start_server(config: ServerConfig, manager: ServerManager = Depends(get_manager)):
    """Start a static server. Errors come back as structured LocalServeError payloads."""
    return await manager.start_server(config)


@router.get("/servers", response_model=List[ServerInfo])
async def list_servers(manager: ServerManager = Depends(get_manager)):
    return await manager.list_servers()


@router.get("/servers/{server_id}", response_model=ServerInfo)
async def get_server(server_id: str, manager: ServerManager = Depends(get_manager)):
    return await manager.get_server(server_id)


@router.delete("/servers/{server_id}", status_code=204)
async def stop_server(server_id: str, manager: ServerManager = Depends(get_manager)):
    await manager.stop_server(server_id)
    return Response(status_code=204)


@router.delete("/servers", response_model=StopAllResult)
async def stop_all_servers(manager: ServerManager = Depends(get_manager)):
    """Best-effort: always empties the registry, reports per-server failures."""
    count = len(manager.registry)
    failures = await manager.stop_all_servers()
    return StopAllResult(
        stopped=count - len(failures),
        failures={server_id: err.to_dict() for server_id, err in failures.items()},
    )


@router.get("/ports/{port}/available", response_model=PortAvailability)
async def is_port_available(port: int, host: str = "", manager: ServerManager = Depends(get_manager)):
    """Advisory only: the answer may be stale by the time the caller uses it."""
    host = host or manager.config.defaults.host
    return PortAvailability(port=port, host=host, available=manager.is_port_available(port, host))


@router.post("/test-directories", response_model=MessageResponse, status_code=201)
async def create_test_directory(req: TestDirectoryRequest, manager: ServerManager = Depends(get_manager)):
    return MessageResponse(message=manager.create_test_directory(req.path))

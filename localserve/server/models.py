"""
localserve/server/models.py

Data model shared by the manager, the registry and the control API.

- ServerConfig: what a caller asks for (camelCase on the wire, immutable once
  accepted).
- ServerHandle: what the manager owns for one live server.
- ServerInfo: the read-only projection handed back to callers.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from localserve.base.config import ServerDefaults

if TYPE_CHECKING:
    from localserve.server.instance import ServerInstance


class ServerState(str, Enum):
    CREATED = "created"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"
    FAILED = "failed"


class ServerConfig(BaseModel):
    """Caller-supplied configuration for one static server."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    # 0 or None asks the OS for an ephemeral port
    port: Optional[int] = Field(default=None, ge=0, le=65535)
    host: Optional[str] = None
    static_dir: str = Field(..., min_length=1)
    cors: Optional[bool] = None
    directory_listing: Optional[bool] = None
    enable_logging: Optional[bool] = None
    serve_index: Optional[bool] = None

    @field_validator("host")
    @classmethod
    def validate_host(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        v = v.strip()
        return v or None

    @field_validator("static_dir")
    @classmethod
    def validate_static_dir(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("staticDir cannot be empty")
        return v

    def with_defaults(self, defaults: ServerDefaults) -> "ServerConfig":
        """Return a copy with every optional field filled in."""
        return self.model_copy(
            update={
                "port": self.port or 0,
                "host": self.host or defaults.host,
                "cors": defaults.cors if self.cors is None else self.cors,
                "directory_listing": (
                    defaults.directory_listing if self.directory_listing is None else self.directory_listing
                ),
                "enable_logging": defaults.enable_logging if self.enable_logging is None else self.enable_logging,
                "serve_index": defaults.serve_index if self.serve_index is None else self.serve_index,
            }
        )


class ServerInfo(BaseModel):
    """Read-only view of a running server, as reported to callers."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str
    url: str
    port: int
    running: bool
    static_dir: str
    directory_listing: bool
    logging_enabled: bool


def format_url(host: str, port: int) -> str:
    # IPv6 literals need brackets inside a URL authority
    if ":" in host and not host.startswith("["):
        host = f"[{host}]"
    return f"http://{host}:{port}"


@dataclass
class ServerHandle:
    """
    Manager-owned record of one live server.

    The id never changes and is never reused. The owning instance doubles as
    the shutdown signal: instance.stop() may be called any number of times
    but only the first call triggers shutdown.
    """

    id: str
    host: str
    port: int
    url: str
    static_dir: str
    directory_listing: bool
    logging_enabled: bool
    cors_enabled: bool
    instance: "ServerInstance" = field(repr=False, compare=False)

    @property
    def running(self) -> bool:
        return self.instance.running

    def to_info(self) -> ServerInfo:
        return ServerInfo(
            id=self.id,
            url=self.url,
            port=self.port,
            running=self.running,
            static_dir=self.static_dir,
            directory_listing=self.directory_listing,
            logging_enabled=self.logging_enabled,
        )

# ============================================================================
# localserve/base/config.py
# Application Configuration Management
# ============================================================================
#
# PURPOSE:
# Defines the settings for the server manager, the control API and logging.
# Every section is a frozen dataclass; LocalServeConfig.from_env() builds the
# whole tree from LOCALSERVE_* environment variables.
#
# KEY CONCEPTS:
# 1. ServerDefaults fill in whatever a start request leaves unset
# 2. ShutdownConfig bounds how long a stopping server may drain
# 3. Nothing is written to disk unless file logging is switched on
#
# ============================================================================

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

logger = logging.getLogger(__name__)


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


# ============================================================================
# Per-Server Defaults
# ============================================================================
# Applied to a ServerConfig when a field was omitted by the caller.

@dataclass(frozen=True)
class ServerDefaults:
    # Loopback only unless the caller explicitly asks for something else
    host: str = "127.0.0.1"

    # Browsers loading pages from other local dev servers need CORS
    cors: bool = True

    directory_listing: bool = False
    enable_logging: bool = False

    # Serve <dir>/index.html for directory requests when it exists
    serve_index: bool = True


# ============================================================================
# Shutdown Behaviour
# ============================================================================

@dataclass(frozen=True)
class ShutdownConfig:
    # How long in-flight requests may keep running after stop is requested
    grace_period_seconds: float = 5.0

    # Extra time allowed for the force-close step before the accept loop
    # task is cancelled outright
    force_close_timeout_seconds: float = 2.0


# ============================================================================
# Logging Configuration
# ============================================================================

@dataclass(frozen=True)
class LogConfig:
    level: str = "INFO"
    format: str = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

    # Off by default: the manager exposes nothing on disk besides served files
    file_enabled: bool = False
    file_name: str = "localserve.log"
    max_file_size_mb: int = 10
    backup_count: int = 5


# ============================================================================
# Master Configuration Container
# ============================================================================

@dataclass
class LocalServeConfig:
    defaults: ServerDefaults = field(default_factory=ServerDefaults)
    shutdown: ShutdownConfig = field(default_factory=ShutdownConfig)
    log: LogConfig = field(default_factory=LogConfig)

    # Where the optional log file lives
    base_dir: Path = field(default_factory=lambda: Path.home() / ".localserve")

    debug: bool = False

    # Control API listener
    api_host: str = "127.0.0.1"
    api_port: int = 8790

    # Origins allowed to call the control API (the desktop UI, local dev pages)
    allowed_origins: tuple = ("tauri://localhost",)
    allowed_origin_regex: str = r"https?://(localhost|127\.0\.0\.1)(:\d+)?"

    @property
    def log_path(self) -> Path:
        return self.base_dir / self.log.file_name

    @classmethod
    def from_env(cls) -> "LocalServeConfig":
        defaults = ServerDefaults(
            host=os.getenv("LOCALSERVE_DEFAULT_HOST", "127.0.0.1"),
            cors=_env_bool("LOCALSERVE_CORS", True),
            directory_listing=_env_bool("LOCALSERVE_DIRECTORY_LISTING", False),
            enable_logging=_env_bool("LOCALSERVE_ENABLE_LOGGING", False),
            serve_index=_env_bool("LOCALSERVE_SERVE_INDEX", True),
        )

        shutdown = ShutdownConfig(
            grace_period_seconds=float(os.getenv("LOCALSERVE_SHUTDOWN_GRACE", "5")),
            force_close_timeout_seconds=float(os.getenv("LOCALSERVE_FORCE_CLOSE_TIMEOUT", "2")),
        )

        log = LogConfig(
            level=os.getenv("LOCALSERVE_LOG_LEVEL", "INFO"),
            file_enabled=_env_bool("LOCALSERVE_LOG_FILE", False),
        )

        # "http://a.test,http://b.test" -> ("http://a.test", "http://b.test")
        origins_str = os.getenv("LOCALSERVE_ALLOWED_ORIGINS", "")
        origins = tuple(o.strip() for o in origins_str.split(",") if o.strip()) or ("tauri://localhost",)

        return cls(
            defaults=defaults,
            shutdown=shutdown,
            log=log,
            base_dir=Path(os.getenv("LOCALSERVE_DATA_DIR", str(Path.home() / ".localserve"))),
            debug=_env_bool("LOCALSERVE_DEBUG", False),
            api_host=os.getenv("LOCALSERVE_API_HOST", "127.0.0.1"),
            api_port=int(os.getenv("LOCALSERVE_API_PORT", "8790")),
            allowed_origins=origins,
        )


# ============================================================================
# Global Configuration Accessors
# ============================================================================
# Only the configuration is process-wide. Server state is never global: each
# composition root builds its own ServerRegistry.

_config: Optional[LocalServeConfig] = None


def get_config() -> LocalServeConfig:
    """Get the global configuration instance, loading it from the environment once."""
    global _config
    if _config is None:
        _config = LocalServeConfig.from_env()
    return _config


def set_config(config: Optional[LocalServeConfig]) -> None:
    """Replace the global configuration (mainly used for testing). None resets it."""
    global _config
    _config = config


def setup_logging(config: Optional[LocalServeConfig] = None) -> None:
    """
    Configure Python's logging system based on our settings.

    Sets up console logging and, when enabled, a rotating log file.
    Call this once at application startup.
    """
    cfg = config or get_config()

    handlers: List[logging.Handler] = [logging.StreamHandler()]

    if cfg.log.file_enabled:
        from logging.handlers import RotatingFileHandler
        cfg.base_dir.mkdir(parents=True, exist_ok=True)
        handlers.append(
            RotatingFileHandler(
                cfg.log_path,
                maxBytes=cfg.log.max_file_size_mb * 1024 * 1024,
                backupCount=cfg.log.backup_count,
            )
        )

    level = "DEBUG" if cfg.debug else cfg.log.level
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=cfg.log.format,
        handlers=handlers,
        force=True,
    )

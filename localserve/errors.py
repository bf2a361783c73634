"""Module errors: structured error taxonomy for LocalServe."""
#
# PURPOSE:
# Provides error codes, typed exceptions, and consistent error handling for
# the server manager and the control API.
#
# ERROR CODE FORMAT:
# - PORT_XXX: Port allocation / bind errors
# - FS_XXX: Filesystem errors (static roots, scaffolding)
# - SERVER_XXX: Server lifecycle errors
# - SYSTEM_XXX: Everything else
#
# USAGE:
#   from localserve.errors import PortInUseError
#
#   raise PortInUseError(
#       "Port 8080 is already in use",
#       details={"host": "127.0.0.1", "port": 8080},
#   )
#
import json
from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(Enum):
    # Port Errors
    PORT_IN_USE = "PORT_001"
    PORT_BIND_FAILED = "PORT_002"

    # Filesystem Errors
    FS_DIRECTORY_NOT_FOUND = "FS_001"
    FS_PERMISSION_DENIED = "FS_002"
    FS_DIRECTORY_EXISTS = "FS_003"
    FS_WRITE_FAILED = "FS_004"

    # Server Lifecycle Errors
    SERVER_NOT_FOUND = "SERVER_001"
    SERVER_SHUTDOWN_TIMEOUT = "SERVER_002"
    SERVER_START_FAILED = "SERVER_003"

    # System Errors
    SYSTEM_INTERNAL_ERROR = "SYSTEM_001"


class LocalServeError(Exception):
    """
    Base exception class for LocalServe with structured error information.

    Attributes:
        code: ErrorCode enum value (e.g., "PORT_001")
        message: Human-readable error message
        details: Optional dictionary with additional context
        http_status: Suggested HTTP status code for API responses
    """

    HTTP_STATUS_MAP: Dict[ErrorCode, int] = {
        ErrorCode.PORT_IN_USE: 409,             # Conflict
        ErrorCode.PORT_BIND_FAILED: 500,
        ErrorCode.FS_DIRECTORY_NOT_FOUND: 404,  # Not Found
        ErrorCode.FS_PERMISSION_DENIED: 403,    # Forbidden
        ErrorCode.FS_DIRECTORY_EXISTS: 409,
        ErrorCode.FS_WRITE_FAILED: 500,
        ErrorCode.SERVER_NOT_FOUND: 404,
        ErrorCode.SERVER_SHUTDOWN_TIMEOUT: 504, # Gateway Timeout
        ErrorCode.SERVER_START_FAILED: 500,
        ErrorCode.SYSTEM_INTERNAL_ERROR: 500,
    }

    # Subclasses pin their code so callers can raise them with just a message.
    default_code: ErrorCode = ErrorCode.SYSTEM_INTERNAL_ERROR

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        *,
        code: Optional[ErrorCode] = None,
        http_status: Optional[int] = None,
    ):
        self.code = code or self.default_code
        self.message = message
        self.details = details or {}
        self.http_status = http_status or self.HTTP_STATUS_MAP.get(self.code, 500)

        # Build exception message with code for easy debugging
        super().__init__(f"[{self.code.value}] {message}")

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for JSON serialization."""
        return {
            "code": self.code.value,
            "message": self.message,
            "details": self.details,
            "http_status": self.http_status,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LocalServeError":
        """
        Deserialize error from dictionary.

        The concrete subclass registered for the code is returned, so a
        round-tripped PortInUseError is still a PortInUseError.
        """
        code = ErrorCode(data["code"])
        error_cls = _ERROR_CLASSES.get(code, LocalServeError)
        return error_cls(
            data["message"],
            data.get("details", {}),
            code=code,
            http_status=data.get("http_status"),
        )


class PortInUseError(LocalServeError):
    """The requested port is already bound."""
    default_code = ErrorCode.PORT_IN_USE


class BindFailedError(LocalServeError):
    """Any other listen/bind failure (permissions, invalid host, bad port)."""
    default_code = ErrorCode.PORT_BIND_FAILED


class DirectoryNotFoundError(LocalServeError):
    default_code = ErrorCode.FS_DIRECTORY_NOT_FOUND


class PermissionDeniedError(LocalServeError):
    default_code = ErrorCode.FS_PERMISSION_DENIED


class DirectoryExistsError(LocalServeError):
    default_code = ErrorCode.FS_DIRECTORY_EXISTS


class ServerNotFoundError(LocalServeError):
    default_code = ErrorCode.SERVER_NOT_FOUND


class ShutdownTimeoutError(LocalServeError):
    """
    Grace period elapsed before in-flight requests drained.

    Logged by the instance, never raised to callers: shutdown proceeds to
    force-close.
    """
    default_code = ErrorCode.SERVER_SHUTDOWN_TIMEOUT


_ERROR_CLASSES: Dict[ErrorCode, type] = {
    cls.default_code: cls
    for cls in (
        PortInUseError,
        BindFailedError,
        DirectoryNotFoundError,
        PermissionDeniedError,
        DirectoryExistsError,
        ServerNotFoundError,
        ShutdownTimeoutError,
    )
}


# ============================================================================
# Convenience Functions
# ============================================================================

def handle_error(error: BaseException, context: Optional[str] = None) -> LocalServeError:
    """
    Convert a generic exception to a LocalServeError.

    Args:
        error: The original exception
        context: Optional context string (e.g., "while stopping server abc")

    Returns:
        LocalServeError with appropriate code and message
    """
    if isinstance(error, LocalServeError):
        return error

    error_type = type(error).__name__

    if isinstance(error, PermissionError):
        code = ErrorCode.FS_PERMISSION_DENIED
    elif isinstance(error, FileNotFoundError):
        code = ErrorCode.FS_DIRECTORY_NOT_FOUND
    else:
        code = ErrorCode.SYSTEM_INTERNAL_ERROR

    message = str(error) or error_type
    if context:
        message = f"{context}: {message}"

    return _ERROR_CLASSES.get(code, LocalServeError)(
        message,
        {
            "original_type": error_type,
            "original_message": str(error),
        },
        code=code,
    )


__all__ = [
    "ErrorCode",
    "LocalServeError",
    "PortInUseError",
    "BindFailedError",
    "DirectoryNotFoundError",
    "PermissionDeniedError",
    "DirectoryExistsError",
    "ServerNotFoundError",
    "ShutdownTimeoutError",
    "handle_error",
]

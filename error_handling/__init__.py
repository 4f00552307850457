"""
Error handling module for the MCP demo servers.

This module provides a structured way to handle and report errors across the
HTTP routing layer, the transport adapters and the tool handlers.
"""
from enum import Enum, IntEnum
from typing import Optional, Dict, Any, Union
import logging
from fastapi import status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict

# Import all from submodules to make them available at the package level
from .tracing import *
from .middleware import *
from .utils import *

# Re-export all error-related classes and functions
__all__ = [
    # Error codes and base classes
    'ErrorCode',
    'ErrorResponse',
    'MCPDemoError',

    # Common error types
    'NotFoundError',
    'ResourceNotFoundError',
    'DuplicateRegistrationError',

    # JSON-RPC envelopes
    'JsonRpcErrorCode',
    'jsonrpc_error',
    'jsonrpc_error_response',

    # Utility functions
    'log_error',
    'setup_error_handling',
    'ErrorHandlingMiddleware',
    'current_trace_id',

    # Tracing
    'setup_tracing',
    'get_tracer',
    'instrument_fastapi',
    'record_span_error',

    # Utils
    'ErrorHandlingConfig',
    'setup_app',
    'handle_errors',
    'trace_function',
    'get_request_id',
]


class ErrorCode(str, Enum):
    """Standard error codes for the application."""
    # Business Logic Errors
    NOT_FOUND = "not_found"
    ALREADY_EXISTS = "already_exists"

    # Unknown Error
    UNKNOWN_ERROR = "unknown_error"


class JsonRpcErrorCode(IntEnum):
    """JSON-RPC 2.0 error codes written by the HTTP layer itself."""
    INTERNAL = -32603
    METHOD_NOT_ALLOWED = -32000


class ErrorResponse(BaseModel):
    """Standard error response format for non JSON-RPC endpoints."""
    error: Dict[str, Any]

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "error": {
                    "code": "unknown_error",
                    "message": "My first Sentry error!",
                    "details": {"exception_type": "RuntimeError"},
                    "request_id": "req_12345",
                    "trace_id": "trace_12345"
                }
            }
        }
    )


class MCPDemoError(Exception):
    """Base exception class for all MCP demo server errors."""

    def __init__(
        self,
        code: Union[ErrorCode, str],
        message: str,
        status_code: int = status.HTTP_400_BAD_REQUEST,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
    ):
        self.code = ErrorCode(code) if isinstance(code, str) else code
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        self.cause = cause
        super().__init__(message)

    def to_dict(self, request_id: str = "", trace_id: str = "") -> Dict[str, Any]:
        """Convert the error to a dictionary for JSON serialization."""
        return {
            "code": self.code.value,
            "message": self.message,
            "details": self.details,
            "request_id": request_id,
            "trace_id": trace_id,
        }

    @classmethod
    def from_exception(cls, exc: Exception) -> 'MCPDemoError':
        """Create an MCPDemoError from a generic exception."""
        if isinstance(exc, MCPDemoError):
            return exc
        return cls(
            code=ErrorCode.UNKNOWN_ERROR,
            message=str(exc) or "An unknown error occurred",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            details={"exception_type": exc.__class__.__name__},
            cause=exc
        )


class NotFoundError(MCPDemoError):
    def __init__(self, resource: str, id: str, message: Optional[str] = None):
        super().__init__(
            code=ErrorCode.NOT_FOUND,
            message=message or f"{resource} with id '{id}' not found",
            status_code=status.HTTP_404_NOT_FOUND,
            details={"resource": resource, "id": id}
        )


class ResourceNotFoundError(NotFoundError):
    """Raised when a ``memory://`` resource was never created."""

    def __init__(self, uri: str):
        super().__init__("Resource", uri, message=f"Resource not found: {uri}")
        self.uri = uri


class DuplicateRegistrationError(MCPDemoError):
    """Raised when a tool or prompt name is registered twice on one server."""

    def __init__(self, kind: str, name: str):
        super().__init__(
            code=ErrorCode.ALREADY_EXISTS,
            message=f"{kind} already registered: {name}",
            status_code=status.HTTP_409_CONFLICT,
            details={"kind": kind, "name": name}
        )


def jsonrpc_error(code: int, message: str, id: Union[str, int, None] = None) -> Dict[str, Any]:
    """Build a JSON-RPC 2.0 error envelope."""
    return {
        "jsonrpc": "2.0",
        "error": {"code": int(code), "message": message},
        "id": id,
    }


def jsonrpc_error_response(
    code: int,
    message: str,
    status_code: int,
    id: Union[str, int, None] = None,
) -> JSONResponse:
    """Wrap :func:`jsonrpc_error` in a JSONResponse usable as a raw ASGI app."""
    return JSONResponse(content=jsonrpc_error(code, message, id), status_code=status_code)


def log_error(
    error: Exception,
    logger: logging.Logger,
    request_id: str = "",
    level: int = logging.ERROR,
    extra: Optional[Dict[str, Any]] = None
) -> None:
    """
    Helper function to log errors with structured context.

    Args:
        error: The exception to log
        logger: Logger instance to use
        request_id: Optional request ID for correlation
        level: Log level (default: ERROR)
        extra: Additional context to include in the log
    """
    extra = extra or {}
    if request_id:
        extra["request_id"] = request_id

    if isinstance(error, MCPDemoError):
        extra.update({
            "error_code": error.code.value,
            "status_code": error.status_code,
            **{f"detail_{key}": value for key, value in error.details.items()}
        })
        if error.cause:
            extra["cause"] = str(error.cause)
    else:
        extra.update({
            "error_type": error.__class__.__name__,
            "error_message": str(error)
        })

    logger.log(level, str(error), extra=extra, exc_info=error if level >= logging.ERROR else None)

"""
Error handling middleware for the FastAPI applications.

This module provides middleware to catch and process exceptions in a consistent way.
It is written as a plain ASGI middleware so long-lived SSE streams pass through
untouched.
"""
import logging
import uuid
from fastapi import Request, status
from fastapi.responses import JSONResponse
from opentelemetry import trace
from starlette.datastructures import Headers, MutableHeaders
from starlette.types import ASGIApp, Message, Receive, Scope, Send

logger = logging.getLogger("mcp_demo.error_handling")


def current_trace_id() -> str:
    """Return the hex trace id of the active span, or an empty string."""
    span = trace.get_current_span()
    context = span.get_span_context() if span else None
    if context is None or not context.is_valid:
        return ""
    return format(context.trace_id, "032x")


class ErrorHandlingMiddleware:
    """Middleware for handling exceptions and formatting error responses."""

    def __init__(self, app: ASGIApp, service_name: str = "add-server"):
        self.app = app
        self.service_name = service_name

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request_id = Headers(scope=scope).get("x-request-id") or str(uuid.uuid4())
        scope.setdefault("state", {})["request_id"] = request_id
        response_started = False

        async def send_with_ids(message: Message) -> None:
            nonlocal response_started
            if message["type"] == "http.response.start":
                response_started = True
                headers = MutableHeaders(scope=message)
                headers["X-Request-ID"] = request_id
                trace_id = current_trace_id()
                if trace_id:
                    headers["X-Trace-ID"] = trace_id
            await send(message)

        try:
            await self.app(scope, receive, send_with_ids)
        except Exception as exc:
            if response_started:
                # Nothing can be repaired once bytes are on the wire
                logger.exception(
                    "Error after response started",
                    extra={"request_id": request_id, "path": scope.get("path")},
                )
                return
            response = self._handle_exception(exc, request_id, current_trace_id(), scope)
            await response(scope, receive, send)

    def _handle_exception(
        self,
        exc: Exception,
        request_id: str,
        trace_id: str,
        scope: Scope,
    ) -> JSONResponse:
        """Handle an exception and return an appropriate response."""
        # Import here to avoid circular dependency
        from error_handling import MCPDemoError, ErrorResponse, log_error, record_span_error

        record_span_error(trace.get_current_span(), exc)

        if not isinstance(exc, MCPDemoError):
            exc = MCPDemoError.from_exception(exc)

        log_error(
            exc,
            logger,
            request_id=request_id,
            level=logging.ERROR if exc.status_code >= 500 else logging.WARNING,
            extra={
                "path": scope.get("path"),
                "method": scope.get("method"),
                "trace_id": trace_id,
                "service": self.service_name,
            }
        )

        error_response = ErrorResponse(
            error=exc.to_dict(request_id=request_id, trace_id=trace_id)
        )

        return JSONResponse(
            content=error_response.model_dump(),
            status_code=exc.status_code,
            headers={
                "X-Request-ID": request_id,
                "X-Trace-ID": trace_id,
                "Cache-Control": "no-store"
            }
        )


def setup_error_handling(app, service_name: str = "add-server") -> None:
    """Set up error handling middleware for a FastAPI application."""
    from error_handling import MCPDemoError, ErrorResponse, log_error

    app.add_middleware(ErrorHandlingMiddleware, service_name=service_name)

    @app.exception_handler(MCPDemoError)
    async def mcp_demo_error_handler(request: Request, exc: MCPDemoError) -> JSONResponse:
        """Handle MCPDemoError exceptions raised by route handlers."""
        request_id = getattr(request.state, "request_id", "")
        trace_id = current_trace_id()

        log_error(
            exc,
            logger,
            request_id=request_id,
            level=logging.WARNING if exc.status_code < 500 else logging.ERROR,
            extra={
                "path": request.url.path,
                "method": request.method,
                "trace_id": trace_id,
            }
        )

        # 404s keep FastAPI's "detail" format
        if exc.status_code == status.HTTP_404_NOT_FOUND:
            return JSONResponse(
                status_code=exc.status_code,
                content={"detail": exc.message},
                headers={"Cache-Control": "no-store"}
            )
        return JSONResponse(
            status_code=exc.status_code,
            content=ErrorResponse(
                error=exc.to_dict(request_id=request_id, trace_id=trace_id)
            ).model_dump(),
            headers={"Cache-Control": "no-store"}
        )


__all__ = [
    'current_trace_id',
    'ErrorHandlingMiddleware',
    'setup_error_handling',
]

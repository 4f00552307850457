"""
Utility functions for error handling and tracing integration.
"""
import logging
import inspect
from typing import Optional, Dict, Any, Type
from functools import wraps
from fastapi import Request, Depends, FastAPI


class ErrorHandlingConfig:
    """Configuration for error handling and tracing."""

    def __init__(
        self,
        service_name: str = "add-server",
        environment: str = "development",
        otlp_endpoint: Optional[str] = None,
        service_version: str = "1.0.0",
        enable_tracing: bool = True,
        enable_error_handling: bool = True,
        log_level: str = "INFO"
    ):
        self.service_name = service_name
        self.environment = environment
        self.otlp_endpoint = otlp_endpoint
        self.service_version = service_version
        self.enable_tracing = enable_tracing
        self.enable_error_handling = enable_error_handling
        self.log_level = log_level


def setup_app(
    app: FastAPI,
    config: Optional[ErrorHandlingConfig] = None
) -> FastAPI:
    """
    Set up logging, error handling and tracing for a FastAPI application.

    Args:
        app: The FastAPI application
        config: Configuration for error handling and tracing

    Returns:
        The configured FastAPI application
    """
    config = config or ErrorHandlingConfig()

    logging.basicConfig(level=config.log_level)
    logging.getLogger(config.service_name).setLevel(config.log_level)

    # Import here to avoid circular dependency
    from .tracing import setup_tracing, instrument_fastapi
    from .middleware import setup_error_handling

    if config.enable_error_handling:
        setup_error_handling(app, service_name=config.service_name)

    if config.enable_tracing:
        setup_tracing(
            service_name=config.service_name,
            environment=config.environment,
            otlp_endpoint=config.otlp_endpoint,
            service_version=config.service_version,
        )
        instrument_fastapi(app)

    return app


def handle_errors(
    error_class: Type[Exception] = Exception,
    log_level: int = logging.ERROR,
    include_request: bool = True
):
    """
    Decorator to handle errors in route handlers.

    Args:
        error_class: Exceptions of this class are re-raised untouched
        log_level: Log level for errors
        include_request: Whether to include request in error context
    """
    def decorator(func):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            # Import here to avoid circular dependency
            from error_handling import MCPDemoError

            try:
                return await func(*args, **kwargs)
            except MCPDemoError:
                raise
            except error_class as e:
                request = None
                if include_request:
                    for arg in list(args) + list(kwargs.values()):
                        if isinstance(arg, Request):
                            request = arg
                            break

                request_id = getattr(getattr(request, "state", None), "request_id", "")
                logger = logging.getLogger("mcp_demo.error_handling")

                logger.log(
                    log_level,
                    str(e),
                    extra={"function": func.__name__, "request_id": request_id},
                    exc_info=log_level >= logging.ERROR
                )

                raise MCPDemoError.from_exception(e) from e

        return wrapper
    return decorator


def trace_function(
    name: Optional[str] = None,
    attributes: Optional[Dict[str, Any]] = None,
    record_exception: bool = True
):
    """
    Decorator to trace function execution with OpenTelemetry.

    Args:
        name: Custom span name (defaults to function name)
        attributes: Additional attributes to add to the span
        record_exception: Whether to record exceptions in the span
    """
    # Import here at decorator definition time
    from .tracing import get_tracer, record_span_error

    def decorator(func):
        span_name = name or f"{func.__module__}.{func.__name__}"

        @wraps(func)
        async def async_wrapper(*args, **kwargs):
            tracer = get_tracer(func.__module__)
            with tracer.start_as_current_span(
                span_name,
                attributes=attributes or {}
            ) as span:
                try:
                    return await func(*args, **kwargs)
                except Exception as e:
                    if record_exception:
                        record_span_error(span, e)
                    raise

        @wraps(func)
        def sync_wrapper(*args, **kwargs):
            tracer = get_tracer(func.__module__)
            with tracer.start_as_current_span(
                span_name,
                attributes=attributes or {}
            ) as span:
                try:
                    return func(*args, **kwargs)
                except Exception as e:
                    if record_exception:
                        record_span_error(span, e)
                    raise

        if inspect.iscoroutinefunction(func):
            return async_wrapper
        return sync_wrapper

    return decorator


def get_request_id() -> str:
    """Dependency to get the current request ID."""
    async def _get_request_id(request: Request) -> str:
        return getattr(request.state, "request_id", "")
    return Depends(_get_request_id)


__all__ = [
    'ErrorHandlingConfig',
    'setup_app',
    'handle_errors',
    'trace_function',
    'get_request_id',
]

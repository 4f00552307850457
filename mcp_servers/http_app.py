"""
MCP HTTP Application Factory

Creates the ASGI application for one server variant.

Architecture:
- A fresh FastMCP server per HTTP request (stateless streamable HTTP) or per
  SSE connection, built by ``mcp_servers.factory.build_server``
- Transport adapters bind that server to exactly one request or stream and
  tear both down when the response ends
- Raw ASGI endpoints for /mcp and /messages, so the SDK transports own the
  response, mounted next to ordinary FastAPI routes for /health and the
  tracing diagnostic endpoint
"""

import enum
import logging
from contextlib import asynccontextmanager
from typing import Optional
from urllib.parse import parse_qsl, urlencode

import anyio
from fastapi import FastAPI, status
from mcp.server.sse import SseServerTransport
from mcp.server.streamable_http import MCP_SESSION_ID_HEADER, StreamableHTTPServerTransport
from starlette.datastructures import Headers
from starlette.types import Message, Receive, Scope, Send

from error_handling import (
    ErrorHandlingConfig,
    JsonRpcErrorCode,
    get_request_id,
    get_tracer,
    handle_errors,
    jsonrpc_error_response,
    setup_app,
    trace_function,
)
from mcp_servers.base import SERVER_VERSION, ServerProfile, ServerSettings
from mcp_servers.factory import ServerContext, build_server, describe_tools
from mcp_servers.registry import (
    STATIC_CONFIG_NAME,
    DynamicNameCounter,
    ResourceRegistry,
    default_counter,
    default_registry,
    initialize_static_resources,
    resource_uri,
)

logger = logging.getLogger("mcp_servers.http_app")

MESSAGES_PATH = "/messages"


class AdapterState(str, enum.Enum):
    IDLE = "idle"
    CONNECTED = "connected"
    HANDLING = "handling"
    CLOSED = "closed"


class ResponseTracker:
    """Wraps an ASGI ``send`` and records whether the response has started."""

    def __init__(self, send: Send):
        self._send = send
        self.started = False

    async def __call__(self, message: Message) -> None:
        if message["type"] == "http.response.start":
            self.started = True
        await self._send(message)


class StatelessTransportAdapter:
    """
    Binds one server instance to one HTTP request.

    No session id is issued. The server runs in a task group local to the
    request; when the response ends the transport is terminated and the task
    group cancelled, which also stops any handler still in flight.
    """

    def __init__(self, context: ServerContext, json_response: bool = False):
        self.context = context
        self.state = AdapterState.IDLE
        self.transport = StreamableHTTPServerTransport(
            mcp_session_id=None,
            is_json_response_enabled=json_response,
        )

    async def _run_server(self, *, task_status=anyio.TASK_STATUS_IGNORED) -> None:
        async with self.transport.connect() as (read_stream, write_stream):
            self.state = AdapterState.CONNECTED
            task_status.started()
            await self.context.server._mcp_server.run(
                read_stream,
                write_stream,
                self.context.initialization_options(),
                stateless=True,
            )

    async def handle(self, scope: Scope, receive: Receive, send: Send) -> None:
        try:
            async with anyio.create_task_group() as tg:
                await tg.start(self._run_server)
                self.state = AdapterState.HANDLING
                try:
                    await self.transport.handle_request(scope, receive, send)
                finally:
                    with anyio.CancelScope(shield=True):
                        await self.transport.terminate()
                    tg.cancel_scope.cancel()
        finally:
            self.state = AdapterState.CLOSED


class SseTransportAdapter:
    """
    Binds one server instance to one long-lived SSE connection.

    The shared ``SseServerTransport`` keeps the process-wide map of session
    id to stream; the session is dropped when the stream closes.
    """

    def __init__(self, context: ServerContext, transport: SseServerTransport):
        self.context = context
        self.transport = transport
        self.state = AdapterState.IDLE

    async def handle(self, scope: Scope, receive: Receive, send: Send) -> None:
        # Connected while the SSE response and endpoint event are being set up
        self.state = AdapterState.CONNECTED
        try:
            async with self.transport.connect_sse(scope, receive, send) as (read_stream, write_stream):
                self.state = AdapterState.HANDLING
                await self.context.server._mcp_server.run(
                    read_stream,
                    write_stream,
                    self.context.initialization_options(),
                )
        finally:
            self.state = AdapterState.CLOSED


async def run_adapter(adapter, scope: Scope, receive: Receive, send: Send) -> None:
    """
    Run an adapter and convert failures at the adapter boundary.

    Errors before the response starts become a ``-32603`` envelope; errors
    after that point are only logged.
    """
    tracker = ResponseTracker(send)
    try:
        await adapter.handle(scope, receive, tracker)
    except Exception:
        logger.exception("MCP error")
        if not tracker.started:
            response = jsonrpc_error_response(
                JsonRpcErrorCode.INTERNAL,
                "Internal server error",
                status.HTTP_500_INTERNAL_SERVER_ERROR,
            )
            await response(scope, receive, send)


async def method_not_allowed(scope: Scope, receive: Receive, send: Send) -> None:
    response = jsonrpc_error_response(
        JsonRpcErrorCode.METHOD_NOT_ALLOWED,
        "Method not allowed.",
        status.HTTP_405_METHOD_NOT_ALLOWED,
    )
    await response(scope, receive, send)


class McpEndpoint:
    """ASGI endpoint for ``/mcp``; dispatches on the HTTP verb."""

    def __init__(
        self,
        profile: ServerProfile,
        settings: ServerSettings,
        registry: ResourceRegistry,
        counter: DynamicNameCounter,
        sse_transport: Optional[SseServerTransport] = None,
    ):
        self.profile = profile
        self.settings = settings
        self.registry = registry
        self.counter = counter
        self.sse_transport = sse_transport
        self.open_streams = 0

    def new_server(self) -> ServerContext:
        return build_server(self.profile, self.settings, self.registry, self.counter)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        method = scope["method"]

        if self.profile.is_sse:
            if method == "GET":
                await self.open_stream(scope, receive, send)
            else:
                await method_not_allowed(scope, receive, send)
            return

        if method == "POST":
            await self.handle_stateless(scope, receive, send)
        elif method == "GET" and self.profile.get_requires_session_header:
            if not Headers(scope=scope).get(MCP_SESSION_ID_HEADER):
                response = jsonrpc_error_response(
                    JsonRpcErrorCode.METHOD_NOT_ALLOWED,
                    "Bad Request: mcp-session-id header required for SSE stream",
                    status.HTTP_400_BAD_REQUEST,
                )
                await response(scope, receive, send)
                return
            await self.handle_stateless(scope, receive, send)
        else:
            await method_not_allowed(scope, receive, send)

    async def handle_stateless(self, scope: Scope, receive: Receive, send: Send) -> None:
        with get_tracer(__name__).start_as_current_span("mcp.transport.stateless") as span:
            span.set_attribute("mcp.server.variant", self.profile.variant)
            adapter = StatelessTransportAdapter(self.new_server(), json_response=self.settings.json_response)
            await run_adapter(adapter, scope, receive, send)
            span.set_attribute("mcp.transport.state", adapter.state.value)

    async def open_stream(self, scope: Scope, receive: Receive, send: Send) -> None:
        adapter = SseTransportAdapter(self.new_server(), self.sse_transport)
        self.open_streams += 1
        logger.info(f"SSE stream opened ({self.open_streams} open)")
        try:
            await run_adapter(adapter, scope, receive, send)
        finally:
            self.open_streams -= 1
            logger.info(f"SSE stream closed ({self.open_streams} open)")


def with_session_id_query(scope: Scope) -> Scope:
    """Accept ``sessionId`` as an alias of the SDK's ``session_id`` query parameter."""
    params = parse_qsl(scope.get("query_string", b"").decode("latin-1"), keep_blank_values=True)
    names = {key for key, _ in params}
    if "session_id" in names or "sessionId" not in names:
        return scope
    rewritten = [("session_id" if key == "sessionId" else key, value) for key, value in params]
    return {**scope, "query_string": urlencode(rewritten).encode("latin-1")}


class MessagesEndpoint:
    """
    ASGI endpoint for ``/messages``: follow-up messages for an SSE session.

    Missing or malformed session ids are answered with 400, unknown ones with
    404, accepted messages with 202; the JSON-RPC response travels on the
    session's SSE stream.
    """

    def __init__(self, transport: SseServerTransport):
        self.transport = transport

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["method"] != "POST":
            await method_not_allowed(scope, receive, send)
            return

        scope = with_session_id_query(scope)
        tracker = ResponseTracker(send)
        try:
            await self.transport.handle_post_message(scope, receive, tracker)
        except Exception:
            logger.exception("Message error")
            if not tracker.started:
                response = jsonrpc_error_response(
                    JsonRpcErrorCode.INTERNAL,
                    "Internal server error",
                    status.HTTP_500_INTERNAL_SERVER_ERROR,
                )
                await response(scope, receive, send)


def create_mcp_http_app(
    profile: ServerProfile,
    settings: Optional[ServerSettings] = None,
    registry: Optional[ResourceRegistry] = None,
    counter: Optional[DynamicNameCounter] = None,
) -> FastAPI:
    """
    Create the FastAPI application for a server variant.

    Args:
        profile: Variant identity, capabilities and transport flavor
        settings: Runtime configuration (defaults to the environment)
        registry: Resource registry (defaults to the process-wide one)
        counter: Dynamic tool counter (defaults to the process-wide one)

    Returns:
        FastAPI application serving:
        - POST/GET /mcp -> MCP transport (per profile)
        - POST /messages -> SSE follow-up messages (sse variant)
        - GET /health -> {"status": "ok", "service": ..., "variant": ...}
        - GET /sentry-error -> always fails, for tracing verification
    """
    settings = settings or ServerSettings.from_env(profile)
    registry = default_registry if registry is None else registry
    counter = default_counter if counter is None else counter

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if profile.resources and resource_uri(STATIC_CONFIG_NAME) not in registry:
            initialize_static_resources(registry)
        logger.info(f"MCP server ({profile.variant}) listening on port {settings.port}")
        banner = describe_tools(profile)
        if banner:
            logger.info(f"Available tools:\n{banner}")
        yield
        logger.info(f"MCP server ({profile.variant}) shutting down")

    app = FastAPI(
        title=profile.server_name,
        version=SERVER_VERSION,
        description=f"MCP demo server, {profile.variant} variant",
        lifespan=lifespan,
    )

    config = ErrorHandlingConfig(
        service_name=settings.service_name,
        environment=settings.environment,
        otlp_endpoint=settings.otlp_endpoint,
        service_version=SERVER_VERSION,
        enable_tracing=settings.enable_tracing,
        log_level=settings.log_level,
    )
    app = setup_app(app, config)

    sse_transport = SseServerTransport(MESSAGES_PATH) if profile.is_sse else None
    mcp_endpoint = McpEndpoint(profile, settings, registry, counter, sse_transport)

    app.state.profile = profile
    app.state.settings = settings
    app.state.registry = registry
    app.state.mcp_endpoint = mcp_endpoint

    app.add_route("/mcp", mcp_endpoint, include_in_schema=False)
    if sse_transport is not None:
        app.add_route(MESSAGES_PATH, MessagesEndpoint(sse_transport), include_in_schema=False)

    @app.get("/health")
    @trace_function()
    async def health(request_id: str = get_request_id()):
        """Health check endpoint."""
        return {
            "status": "ok",
            "service": profile.server_name,
            "variant": profile.variant,
            "request_id": request_id,
        }

    @app.get("/sentry-error")
    @handle_errors()
    @trace_function(attributes={"component": "diagnostics"})
    async def sentry_error():
        """Always fails, to verify errors reach the tracing pipeline."""
        logger.info("Hello FastAPI!")
        raise RuntimeError("My first Sentry error!")

    return app

"""
MCP Server Factory

Builds one FastMCP server instance per invocation. The stateless transport
calls this once per HTTP request, the SSE transport once per connection.

Architecture:
- A fresh FastMCP instance with the profile's identity and capabilities
- The fixed tools, the static and known resources, and the fixed prompt
- Every handler wrapped in an OpenTelemetry span
- Nothing shared between instances except the resource registry and the
  dynamic tool counter
"""

import functools
import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Set

from mcp import types
from mcp.server.fastmcp import Context, FastMCP
from mcp.server.fastmcp.prompts import Prompt
from mcp.server.fastmcp.resources import FunctionResource
from mcp.server.lowlevel import NotificationOptions
from mcp.server.models import InitializationOptions

from error_handling import DuplicateRegistrationError, get_tracer, record_span_error
from mcp_servers.base import SERVER_VERSION, ServerProfile, ServerSettings
from mcp_servers.registry import STATIC_CONFIG_NAME, DynamicNameCounter, ResourceRegistry
from mcp_servers.tools import TOOL_TABLE, ToolHandlers, math_explanation, read_resource_text

logger = logging.getLogger("mcp_servers.factory")

# RFC 5424 severities, lowest first
LOG_LEVELS = ("debug", "info", "notice", "warning", "error", "critical", "alert", "emergency")

STATIC_CONFIG_DESCRIPTION = "Static test configuration resource for instrumentation testing"


def traced(kind: str, name: str, fn: Callable) -> Callable:
    """
    Wrap a tool, resource or prompt handler in a span named ``mcp.<kind>.<name>``.

    The wrapper keeps ``fn``'s signature so FastMCP still derives the input
    schema and injects ``Context`` from it.
    """
    prefix = f"mcp.{kind}"

    @functools.wraps(fn)
    async def wrapper(*args, **kwargs):
        tracer = get_tracer(__name__)
        with tracer.start_as_current_span(f"{prefix}.{name}") as span:
            arguments = {key: value for key, value in kwargs.items() if not isinstance(value, Context)}
            span.set_attribute(f"{prefix}.name", name)
            span.set_attribute(f"{prefix}.arguments", str(arguments))
            try:
                result = fn(*args, **kwargs)
                if inspect.isawaitable(result):
                    result = await result
                span.set_attribute(f"{prefix}.status", "success")
                return result
            except Exception as e:
                span.set_attribute(f"{prefix}.status", "error")
                span.set_attribute(f"{prefix}.error", str(e))
                record_span_error(span, e)
                logger.warning(f"{kind} {name} failed: {e}")
                raise

    return wrapper


@dataclass
class ServerContext:
    """
    One server instance plus the state its handlers reach.

    ``registry`` and ``counter`` are process-wide; everything else belongs to
    this instance and is discarded with it.
    """
    server: FastMCP
    profile: ServerProfile
    settings: ServerSettings
    registry: ResourceRegistry
    counter: DynamicNameCounter
    tool_names: Set[str] = field(default_factory=set)
    prompt_names: Set[str] = field(default_factory=set)
    resource_uris: Set[str] = field(default_factory=set)
    log_level: types.LoggingLevel = "debug"

    def register_tool(self, fn: Callable, name: str, description: str) -> None:
        if name in self.tool_names:
            raise DuplicateRegistrationError("Tool", name)
        self.server.add_tool(
            traced("tool", name, fn),
            name=name,
            description=description,
            structured_output=False,
        )
        self.tool_names.add(name)
        logger.debug(f"Registered tool: {name}")

    def register_prompt(self, fn: Callable, name: str, description: str) -> None:
        if name in self.prompt_names:
            raise DuplicateRegistrationError("Prompt", name)
        self.server.add_prompt(
            Prompt.from_function(traced("prompt", name, fn), name=name, description=description)
        )
        self.prompt_names.add(name)
        logger.debug(f"Registered prompt: {name}")

    def register_resource(self, uri: str, name: str, mime_type: str, description: Optional[str] = None) -> None:
        """Expose a registry entry on this server; reads always hit the registry."""
        if uri in self.resource_uris:
            return
        reader = traced("resource", "read", functools.partial(read_resource_text, self.registry, uri))
        self.server.add_resource(
            FunctionResource(
                uri=uri,
                name=name,
                description=description or f"Dynamic resource: {name}",
                mime_type=mime_type,
                fn=reader,
            )
        )
        self.resource_uris.add(uri)

    async def log(self, ctx: Context, level: types.LoggingLevel, message: str, logger_name: str) -> None:
        """Send a log notification tied to the current request."""
        logger.log(_python_level(level), f"[{logger_name}] {message}")
        if not self.profile.logging:
            return
        if LOG_LEVELS.index(level) < LOG_LEVELS.index(self.log_level):
            return
        await ctx.session.send_log_message(
            level=level,
            data=message,
            logger=logger_name,
            related_request_id=ctx.request_context.request_id,
        )

    async def notify(self, ctx: Context, notification: Any) -> None:
        """Announce a capability change as an explicit outgoing notification."""
        if not self.profile.list_changed:
            return
        await ctx.session.send_notification(
            types.ServerNotification(notification),
            related_request_id=ctx.request_context.request_id,
        )

    def initialization_options(self) -> InitializationOptions:
        """Initialization options advertising exactly the profile's capabilities."""
        options = self.server._mcp_server.create_initialization_options(
            notification_options=NotificationOptions(
                prompts_changed=self.profile.list_changed,
                resources_changed=self.profile.list_changed,
                tools_changed=self.profile.list_changed,
            ),
        )
        capabilities = options.capabilities
        if not self.profile.resources:
            capabilities.resources = None
        if not self.profile.prompts:
            capabilities.prompts = None
        if not self.profile.logging:
            capabilities.logging = None
        return options


def _python_level(level: str) -> int:
    return {
        "debug": logging.DEBUG,
        "info": logging.INFO,
        "notice": logging.INFO,
        "warning": logging.WARNING,
        "error": logging.ERROR,
    }.get(level, logging.CRITICAL)


def build_server(
    profile: ServerProfile,
    settings: ServerSettings,
    registry: ResourceRegistry,
    counter: DynamicNameCounter,
) -> ServerContext:
    """Create a server instance with every fixed tool, resource and prompt registered."""
    server = FastMCP(
        name=profile.server_name,
        instructions=f"MCP demo server ({profile.variant} variant)",
    )
    server._mcp_server.version = SERVER_VERSION

    context = ServerContext(
        server=server,
        profile=profile,
        settings=settings,
        registry=registry,
        counter=counter,
    )

    if profile.resources:
        for record in registry.list():
            description = STATIC_CONFIG_DESCRIPTION if record.name == STATIC_CONFIG_NAME else None
            context.register_resource(record.uri, record.name, record.mime_type, description)

    handlers = ToolHandlers(context)
    for tool_name, method_name, description in TOOL_TABLE:
        if tool_name in profile.tools:
            context.register_tool(getattr(handlers, method_name), name=tool_name, description=description)

    if profile.prompts:
        context.register_prompt(
            math_explanation,
            name="math-explanation",
            description="Explains a mathematical concept",
        )

    if profile.logging:
        @server._mcp_server.set_logging_level()
        async def set_logging_level(level: types.LoggingLevel) -> None:
            context.log_level = level
            logger.info(f"Client set log level to {level}")

    return context


def describe_tools(profile: ServerProfile) -> Optional[str]:
    """Human readable list of the profile's tools, for the startup banner."""
    lines = [f"- {name}: {description}" for name, _, description in TOOL_TABLE if name in profile.tools]
    return "\n".join(lines) if lines else None

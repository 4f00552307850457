"""
Tool handlers for the demo servers.

Each handler validates nothing itself: FastMCP builds the input schema from the
method signature and rejects malformed arguments before the handler runs.
Handlers return a list of text content blocks, which the SDK wraps in a
``CallToolResult``.
"""

import logging
from typing import TYPE_CHECKING, List, Optional, Union

import anyio
import httpx
from mcp import types
from mcp.server.fastmcp import Context
from mcp.server.fastmcp.prompts.base import Message, UserMessage

from error_handling import ResourceNotFoundError
from mcp_servers.registry import resource_uri

if TYPE_CHECKING:
    from mcp_servers.factory import ServerContext

logger = logging.getLogger("mcp_servers.tools")

Number = Union[int, float]


def text_content(text: str) -> List[types.TextContent]:
    """Build the single-block content envelope every tool returns."""
    return [types.TextContent(type="text", text=text, mimeType="text/plain")]


def format_number(value: Number) -> str:
    """Render a sum the way a JSON number prints: ``5`` rather than ``5.0``."""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


class ToolHandlers:
    """
    The fixed tool set, bound to one server instance.

    Methods are registered on the FastMCP server by
    :func:`mcp_servers.factory.build_server`. The ``ctx`` parameter is
    injected by FastMCP and is not part of the tool's input schema.
    """

    def __init__(self, context: "ServerContext"):
        self.context = context

    async def add(self, ctx: Context, a: Number, b: Number) -> List[types.TextContent]:
        """Returns a + b"""
        context = self.context
        settings = context.settings

        if context.profile.progress:
            await context.log(ctx, "info", f"Starting addition: {format_number(a)} + {format_number(b)}", "math-service")
            steps = settings.progress_steps
            for step in range(1, steps + 1):
                # anyio.sleep is a cancellation point: a client disconnect stops the loop
                await anyio.sleep(settings.progress_interval)
                await context.log(ctx, "debug", f"Addition progress: {step}/{steps}", "math-service")
                await ctx.report_progress(step, steps)

        if settings.probe_url:
            await self._probe(settings.probe_url)

        result = format_number(a + b)
        if context.profile.progress:
            await context.log(
                ctx, "info", f"Addition completed: {format_number(a)} + {format_number(b)} = {result}", "math-service"
            )
        return text_content(result)

    async def _probe(self, url: str) -> None:
        """Outbound call so traces carry an HTTP client child span."""
        try:
            async with httpx.AsyncClient(timeout=5.0) as client:
                response = await client.get(url)
            logger.debug("Probe %s answered %s", url, response.status_code)
        except httpx.HTTPError as e:
            logger.warning("Probe request to %s failed: %s", url, e)

    async def add_dynamic_tool(
        self, ctx: Context, name: str, description: Optional[str] = None
    ) -> List[types.TextContent]:
        """Adds a new dynamic tool and notifies clients"""
        context = self.context
        tool_name = f"dynamic-{name}-{context.counter.next()}"

        context.register_tool(
            _make_dynamic_tool(tool_name),
            name=tool_name,
            description=description or f"Dynamic tool: {name}",
        )

        await context.notify(ctx, types.ToolListChangedNotification(method="notifications/tools/list_changed"))
        await context.log(ctx, "info", f"Added dynamic tool: {tool_name}", "tool-manager")

        return text_content(f"Created dynamic tool: {tool_name}")

    async def create_resource(
        self, ctx: Context, name: str, content: str, mimeType: Optional[str] = None
    ) -> List[types.TextContent]:
        """Creates a new resource and notifies clients"""
        context = self.context
        uri = resource_uri(name)

        context.register_resource(uri, name, mimeType or "text/plain")
        context.registry.create(name, content, mimeType)

        await context.notify(
            ctx, types.ResourceListChangedNotification(method="notifications/resources/list_changed")
        )
        await context.log(ctx, "info", f"Created resource: {uri}", "resource-manager")

        return text_content(f"Created resource: {uri}")

    async def update_resource(self, ctx: Context, name: str, content: str) -> List[types.TextContent]:
        """Updates an existing resource and notifies clients"""
        context = self.context
        uri = resource_uri(name)

        context.registry.update(name, content)

        await context.notify(
            ctx,
            types.ResourceUpdatedNotification(
                method="notifications/resources/updated",
                params=types.ResourceUpdatedNotificationParams(uri=uri),
            ),
        )
        await context.log(ctx, "info", f"Updated resource: {uri}", "resource-manager")

        return text_content(f"Updated resource: {uri}")

    async def log_message(
        self, ctx: Context, level: types.LoggingLevel, message: str, logger: Optional[str] = None
    ) -> List[types.TextContent]:
        """Sends a custom log message to the client"""
        await self.context.log(ctx, level, message, logger or "custom-logger")
        return text_content(f"Sent {level} log message: {message}")

    async def add_dynamic_prompt(
        self, ctx: Context, name: str, description: Optional[str] = None
    ) -> List[types.TextContent]:
        """Adds a new dynamic prompt and notifies clients"""
        context = self.context
        prompt_name = f"dynamic-{name}"

        context.register_prompt(
            _make_dynamic_prompt(),
            name=prompt_name,
            description=description or f"Dynamic prompt: {name}",
        )

        await context.notify(ctx, types.PromptListChangedNotification(method="notifications/prompts/list_changed"))
        await context.log(ctx, "info", f"Added dynamic prompt: {prompt_name}", "prompt-manager")

        return text_content(f"Created dynamic prompt: {prompt_name}")


def _make_dynamic_tool(tool_name: str):
    async def dynamic_tool(input: str) -> List[types.TextContent]:
        return text_content(f"Dynamic tool {tool_name} processed: {input}")

    return dynamic_tool


def _make_dynamic_prompt():
    def dynamic_prompt(topic: str) -> List[Message]:
        return [UserMessage(f"This is a dynamic prompt about: {topic}")]

    return dynamic_prompt


def math_explanation(concept: str) -> List[Message]:
    """Explains a mathematical concept"""
    return [UserMessage(f"Please explain the mathematical concept: {concept}")]


def read_resource_text(registry, uri: str) -> str:
    """Resource read callback; raises the not-found failure for unknown URIs."""
    try:
        return registry.read(uri)
    except ResourceNotFoundError:
        logger.warning("Read of unknown resource %s", uri)
        raise


# (tool name, handler method name, description)
TOOL_TABLE = (
    ("add", "add", "Returns a + b"),
    ("add-dynamic-tool", "add_dynamic_tool", "Adds a new dynamic tool and notifies clients"),
    ("create-resource", "create_resource", "Creates a new resource and notifies clients"),
    ("update-resource", "update_resource", "Updates an existing resource and notifies clients"),
    ("log-message", "log_message", "Sends a custom log message to the client"),
    ("add-dynamic-prompt", "add_dynamic_prompt", "Adds a new dynamic prompt and notifies clients"),
)

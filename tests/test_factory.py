"""Tests for server construction, capabilities and handler tracing."""
from unittest.mock import MagicMock, Mock, patch

import pytest
from mcp.server.fastmcp.exceptions import ToolError

from error_handling import DuplicateRegistrationError
from mcp_servers import BASIC_PROFILE, NOTIFICATIONS_PROFILE, SSE_PROFILE, build_server
from mcp_servers.base import FIXED_TOOLS, SERVER_VERSION
from mcp_servers.factory import describe_tools
from mcp_servers.registry import initialize_static_resources

from conftest import make_settings


def mock_tracer():
    tracer = MagicMock()
    span = MagicMock()
    tracer.start_as_current_span.return_value.__enter__ = Mock(return_value=span)
    tracer.start_as_current_span.return_value.__exit__ = Mock(return_value=False)
    return tracer, span


def span_attributes(span):
    return {call[0][0]: call[0][1] for call in span.set_attribute.call_args_list}


@pytest.mark.asyncio
async def test_basic_server_has_only_add(registry, counter):
    context = build_server(BASIC_PROFILE, make_settings(), registry, counter)

    tools = await context.server.list_tools()

    assert [tool.name for tool in tools] == ["add"]
    assert tools[0].description == "Returns a + b"
    assert set(tools[0].inputSchema["required"]) == {"a", "b"}
    assert await context.server.list_prompts() == []


@pytest.mark.asyncio
async def test_notifications_server_has_fixed_tools_and_prompt(registry, counter):
    context = build_server(NOTIFICATIONS_PROFILE, make_settings(), registry, counter)

    tools = {tool.name for tool in await context.server.list_tools()}
    prompts = {prompt.name for prompt in await context.server.list_prompts()}

    assert tools == set(FIXED_TOOLS)
    assert prompts == {"math-explanation"}


@pytest.mark.asyncio
async def test_tool_schemas_hide_context(registry, counter):
    context = build_server(NOTIFICATIONS_PROFILE, make_settings(), registry, counter)

    tools = {tool.name: tool for tool in await context.server.list_tools()}

    assert "ctx" not in tools["add"].inputSchema["properties"]
    assert tools["create-resource"].inputSchema["required"] == ["name", "content"]
    assert "mimeType" in tools["create-resource"].inputSchema["properties"]


@pytest.mark.asyncio
async def test_registry_resources_are_registered(registry, counter):
    initialize_static_resources(registry)
    registry.create("notes", "hello")

    context = build_server(SSE_PROFILE, make_settings(), registry, counter)
    resources = {str(resource.uri): resource for resource in await context.server.list_resources()}

    assert set(resources) == {"memory://test-config", "memory://notes"}
    assert resources["memory://test-config"].mimeType == "application/json"
    assert resources["memory://test-config"].description == (
        "Static test configuration resource for instrumentation testing"
    )


@pytest.mark.asyncio
async def test_resource_reads_follow_registry_updates(registry, counter):
    registry.create("notes", "v1")
    context = build_server(NOTIFICATIONS_PROFILE, make_settings(), registry, counter)

    registry.update("notes", "v2")
    contents = list(await context.server.read_resource("memory://notes"))

    assert contents[0].content == "v2"


@pytest.mark.asyncio
async def test_basic_server_ignores_registry(registry, counter):
    registry.create("notes", "hello")

    context = build_server(BASIC_PROFILE, make_settings(), registry, counter)

    assert await context.server.list_resources() == []


def test_server_identity(registry, counter):
    basic = build_server(BASIC_PROFILE, make_settings(), registry, counter)
    sse = build_server(SSE_PROFILE, make_settings(), registry, counter)

    assert basic.server.name == "add-server"
    assert sse.server.name == "sse-add-server"
    options = basic.initialization_options()
    assert options.server_name == "add-server"
    assert options.server_version == SERVER_VERSION


def test_basic_capabilities_advertise_tools_only(registry, counter):
    context = build_server(BASIC_PROFILE, make_settings(), registry, counter)

    capabilities = context.initialization_options().capabilities

    assert capabilities.tools is not None
    assert not capabilities.tools.listChanged
    assert capabilities.resources is None
    assert capabilities.prompts is None
    assert capabilities.logging is None


@pytest.mark.parametrize("profile", [NOTIFICATIONS_PROFILE, SSE_PROFILE])
def test_full_capabilities_advertise_list_changed(profile, registry, counter):
    context = build_server(profile, make_settings(), registry, counter)

    capabilities = context.initialization_options().capabilities

    assert capabilities.tools.listChanged is True
    assert capabilities.resources.listChanged is True
    assert capabilities.prompts.listChanged is True
    assert capabilities.logging is not None


def test_duplicate_tool_registration_rejected(registry, counter):
    context = build_server(BASIC_PROFILE, make_settings(), registry, counter)

    with pytest.raises(DuplicateRegistrationError, match="Tool already registered: add"):
        context.register_tool(lambda: None, name="add", description="again")


def test_duplicate_prompt_registration_rejected(registry, counter):
    context = build_server(NOTIFICATIONS_PROFILE, make_settings(), registry, counter)

    with pytest.raises(DuplicateRegistrationError) as exc_info:
        context.register_prompt(lambda concept: [], name="math-explanation", description="again")

    assert exc_info.value.status_code == 409


def test_instances_do_not_share_dynamic_state(registry, counter):
    first = build_server(NOTIFICATIONS_PROFILE, make_settings(), registry, counter)
    second = build_server(NOTIFICATIONS_PROFILE, make_settings(), registry, counter)

    first.register_tool(lambda: None, name="only-on-first", description="local")

    assert "only-on-first" in first.tool_names
    assert "only-on-first" not in second.tool_names


def test_describe_tools():
    assert describe_tools(BASIC_PROFILE) == "- add: Returns a + b"
    assert describe_tools(SSE_PROFILE).count("\n") == len(FIXED_TOOLS) - 1


@pytest.mark.asyncio
async def test_tool_call_creates_span(registry, counter):
    """Test that a tool call runs inside an OpenTelemetry span."""
    context = build_server(BASIC_PROFILE, make_settings(), registry, counter)
    tracer, span = mock_tracer()

    with patch("mcp_servers.factory.get_tracer", return_value=tracer):
        await context.server.call_tool("add", {"a": 2, "b": 3})

    tracer.start_as_current_span.assert_called_once_with("mcp.tool.add")
    attributes = span_attributes(span)
    assert attributes["mcp.tool.name"] == "add"
    assert attributes["mcp.tool.arguments"] == "{'a': 2, 'b': 3}"
    assert attributes["mcp.tool.status"] == "success"
    assert "mcp.tool.error" not in attributes


@pytest.mark.asyncio
async def test_failed_tool_call_marks_span(registry, counter):
    """Test that span has error status for failed calls."""
    context = build_server(NOTIFICATIONS_PROFILE, make_settings(), registry, counter)
    tracer, span = mock_tracer()

    with patch("mcp_servers.factory.get_tracer", return_value=tracer):
        with pytest.raises(ToolError):
            await context.server.call_tool("update-resource", {"name": "ghost", "content": "boo"})

    attributes = span_attributes(span)
    assert attributes["mcp.tool.status"] == "error"
    assert "Resource not found: memory://ghost" in attributes["mcp.tool.error"]
    span.record_exception.assert_called_once()
    span.set_status.assert_called_once()


@pytest.mark.asyncio
async def test_resource_read_creates_span(registry, counter):
    initialize_static_resources(registry)
    context = build_server(NOTIFICATIONS_PROFILE, make_settings(), registry, counter)
    tracer, span = mock_tracer()

    with patch("mcp_servers.factory.get_tracer", return_value=tracer):
        await context.server.read_resource("memory://test-config")

    tracer.start_as_current_span.assert_called_once_with("mcp.resource.read")
    assert span_attributes(span)["mcp.resource.status"] == "success"


@pytest.mark.asyncio
async def test_prompt_render_creates_span(registry, counter):
    context = build_server(NOTIFICATIONS_PROFILE, make_settings(), registry, counter)
    tracer, span = mock_tracer()

    with patch("mcp_servers.factory.get_tracer", return_value=tracer):
        result = await context.server.get_prompt("math-explanation", {"concept": "limits"})

    tracer.start_as_current_span.assert_called_once_with("mcp.prompt.math-explanation")
    assert span_attributes(span)["mcp.prompt.arguments"] == "{'concept': 'limits'}"
    assert result.messages[0].content.text == "Please explain the mathematical concept: limits"

"""
MCP Servers Module

Instrumented demo MCP servers that expose a small, fixed tool set over
HTTP:

- basic: stateless streamable HTTP, the ``add`` tool only
- notifications: stateless streamable HTTP with resources, prompts,
  logging and list-changed notifications
- sse: the same capability set over a long-lived SSE stream
"""

from mcp_servers.base import (
    BASIC_PROFILE,
    NOTIFICATIONS_PROFILE,
    PROFILES,
    SSE_PROFILE,
    ServerProfile,
    ServerSettings,
)
from mcp_servers.factory import ServerContext, build_server
from mcp_servers.http_app import create_mcp_http_app
from mcp_servers.registry import DynamicNameCounter, ResourceRegistry

__all__ = [
    "BASIC_PROFILE",
    "NOTIFICATIONS_PROFILE",
    "SSE_PROFILE",
    "PROFILES",
    "ServerProfile",
    "ServerSettings",
    "ServerContext",
    "build_server",
    "create_mcp_http_app",
    "DynamicNameCounter",
    "ResourceRegistry",
]

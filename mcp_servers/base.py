"""
Base MCP Server Utilities

Provides shared functionality for all demo server variants including:
- Configuration management
- Server profiles (identity, capabilities, transport flavor)
"""

import os
import logging
from dataclasses import dataclass, field
from typing import FrozenSet, Optional

logger = logging.getLogger("mcp_servers")

SERVER_VERSION = "1.0.0"

FIXED_TOOLS = (
    "add",
    "add-dynamic-tool",
    "create-resource",
    "update-resource",
    "log-message",
    "add-dynamic-prompt",
)


@dataclass(frozen=True)
class ServerProfile:
    """
    Identity and capability set of one demo server variant.

    ``transport`` is either ``"stateless"`` (streamable HTTP, one server per
    request) or ``"sse"`` (one server per SSE connection).
    """
    variant: str
    server_name: str
    transport: str
    default_port: int
    tools: FrozenSet[str] = field(default_factory=lambda: frozenset(FIXED_TOOLS))
    resources: bool = True
    prompts: bool = True
    logging: bool = True
    list_changed: bool = True
    progress: bool = True
    # Stateless GET /mcp needs an mcp-session-id header; False rejects GET outright
    get_requires_session_header: bool = True

    @property
    def is_sse(self) -> bool:
        return self.transport == "sse"


BASIC_PROFILE = ServerProfile(
    variant="basic",
    server_name="add-server",
    transport="stateless",
    default_port=3005,
    tools=frozenset({"add"}),
    resources=False,
    prompts=False,
    logging=False,
    list_changed=False,
    progress=False,
    get_requires_session_header=False,
)

NOTIFICATIONS_PROFILE = ServerProfile(
    variant="notifications",
    server_name="add-server",
    transport="stateless",
    default_port=3005,
)

SSE_PROFILE = ServerProfile(
    variant="sse",
    server_name="sse-add-server",
    transport="sse",
    default_port=3006,
    progress=False,
)

PROFILES = {
    profile.variant: profile
    for profile in (BASIC_PROFILE, NOTIFICATIONS_PROFILE, SSE_PROFILE)
}


@dataclass
class ServerSettings:
    """Runtime configuration, read from the environment."""
    host: str = "127.0.0.1"
    port: int = 3005
    environment: str = "development"
    service_name: str = "add-server"
    otlp_endpoint: Optional[str] = None
    enable_tracing: bool = True
    log_level: str = "INFO"
    json_response: bool = False
    progress_steps: int = 3
    progress_interval: float = 1.0
    probe_url: Optional[str] = None

    @classmethod
    def from_env(cls, profile: ServerProfile) -> "ServerSettings":
        """Build settings for ``profile`` from environment variables."""
        return cls(
            host=get_env_or_default("HOST", "127.0.0.1"),
            port=int(get_env_or_default("PORT", str(profile.default_port))),
            environment=get_env_or_default("ENV", "development"),
            service_name=get_env_or_default("OTEL_SERVICE_NAME", profile.server_name),
            otlp_endpoint=os.environ.get("OTEL_EXPORTER_OTLP_ENDPOINT") or None,
            enable_tracing=parse_bool(get_env_or_default("ENABLE_TRACING", "true")),
            log_level=get_env_or_default("LOG_LEVEL", "INFO").upper(),
            json_response=parse_bool(get_env_or_default("MCP_JSON_RESPONSE", "false")),
            progress_steps=int(get_env_or_default("ADD_PROGRESS_STEPS", "3")),
            progress_interval=float(get_env_or_default("ADD_PROGRESS_INTERVAL", "1.0")),
            probe_url=os.environ.get("ADD_PROBE_URL") or None,
        )


def parse_bool(value: str) -> bool:
    return value.strip().lower() in {"1", "true", "yes", "on"}


def get_env_or_default(key: str, default: str) -> str:
    """Get environment variable or return default."""
    return os.environ.get(key, default)

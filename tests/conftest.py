"""
Pytest configuration and fixtures for the MCP demo servers

Provides fixtures to:
1. Build isolated registries, counters and settings per test
2. Build a mocked FastMCP ``Context`` for calling tool handlers directly
3. Start a variant app on a live uvicorn server for end-to-end tests
"""
import socket
import sys
import threading
import time
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest
import uvicorn

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from mcp_servers import ServerSettings, create_mcp_http_app
from mcp_servers.registry import DynamicNameCounter, ResourceRegistry


ACCEPT = "application/json, text/event-stream"


def make_settings(**overrides) -> ServerSettings:
    """Settings for tests: no tracing exporters, no progress delay."""
    values = {
        "enable_tracing": False,
        "environment": "test",
        "progress_interval": 0,
        "log_level": "WARNING",
    }
    values.update(overrides)
    return ServerSettings(**values)


def free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


class LiveServer:
    """Runs an ASGI app with uvicorn in a background thread."""

    def __init__(self, app):
        self.port = free_port()
        config = uvicorn.Config(app, host="127.0.0.1", port=self.port, log_level="warning")
        self.server = uvicorn.Server(config)
        self.thread = threading.Thread(target=self.server.run, daemon=True)

    @property
    def url(self) -> str:
        return f"http://127.0.0.1:{self.port}"

    def start(self, timeout: float = 10.0) -> "LiveServer":
        self.thread.start()
        deadline = time.time() + timeout
        while not self.server.started:
            if time.time() > deadline:
                raise RuntimeError("uvicorn server failed to start")
            time.sleep(0.05)
        return self

    def stop(self) -> None:
        self.server.should_exit = True
        self.thread.join(timeout=5)


@pytest.fixture
def registry():
    """Fresh resource registry, isolated from the process-wide one."""
    return ResourceRegistry()


@pytest.fixture
def counter():
    """Fresh dynamic tool counter."""
    return DynamicNameCounter()


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def mock_ctx():
    """Stand-in for the FastMCP Context injected into tool handlers."""
    ctx = MagicMock()
    ctx.session.send_log_message = AsyncMock()
    ctx.session.send_notification = AsyncMock()
    ctx.report_progress = AsyncMock()
    ctx.request_context.request_id = 7
    return ctx


@pytest.fixture
def live_server():
    """
    Factory fixture: start a variant app on a free port.

    Every server started through the factory is stopped after the test.
    """
    servers = []

    def start(profile, **overrides):
        registry = overrides.pop("registry", None)
        counter = overrides.pop("counter", None)
        app = create_mcp_http_app(
            profile,
            make_settings(**overrides),
            ResourceRegistry() if registry is None else registry,
            DynamicNameCounter() if counter is None else counter,
        )
        server = LiveServer(app).start()
        servers.append(server)
        return server

    yield start

    for server in servers:
        server.stop()

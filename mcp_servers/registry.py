"""
In-memory resource registry shared by every server instance in the process.

Resources live under ``memory://<name>`` keys for the lifetime of the process.
There is no persistence, eviction or delete operation.
"""

import json
import logging
import threading
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional
from urllib.parse import quote

from error_handling import ResourceNotFoundError

logger = logging.getLogger("mcp_servers.registry")

MEMORY_SCHEME = "memory://"
STATIC_CONFIG_NAME = "test-config"


def resource_uri(name: str) -> str:
    """
    Return the ``memory://`` URI for a resource name.

    The name is percent-encoded so that names with spaces or URL delimiters
    still form a valid URI, e.g. ``my notes`` -> ``memory://my%20notes``.
    """
    return f"{MEMORY_SCHEME}{quote(name, safe='')}"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ResourceRecord:
    """A named piece of content held by the registry."""
    name: str
    content: str
    mime_type: str
    created_at: datetime
    updated_at: datetime

    @property
    def uri(self) -> str:
        return resource_uri(self.name)


class ResourceRegistry:
    """
    Process-wide map of ``memory://`` URIs to resource records.

    Each operation holds the registry lock, so a read-modify-write such as
    :meth:`update` is atomic. Concurrent writers to the same key are
    last-writer-wins.
    """

    def __init__(self):
        self._records: Dict[str, ResourceRecord] = {}
        self._lock = threading.Lock()

    def set(self, uri: str, record: ResourceRecord) -> None:
        """Insert or replace the record stored under ``uri``."""
        with self._lock:
            self._records[str(uri)] = record

    def get(self, uri: str) -> ResourceRecord:
        """Return a snapshot of the record stored under ``uri``."""
        with self._lock:
            record = self._records.get(str(uri))
            if record is None:
                raise ResourceNotFoundError(str(uri))
            return replace(record)

    def create(self, name: str, content: str, mime_type: Optional[str] = None) -> ResourceRecord:
        """Create (or overwrite) the resource ``memory://<name>``."""
        now = _utcnow()
        record = ResourceRecord(
            name=name,
            content=content,
            mime_type=mime_type or "text/plain",
            created_at=now,
            updated_at=now,
        )
        self.set(record.uri, record)
        logger.debug("Stored resource %s", record.uri)
        return replace(record)

    def update(self, name: str, content: str) -> ResourceRecord:
        """Replace the content of an existing resource and bump ``updated_at``."""
        uri = resource_uri(name)
        with self._lock:
            record = self._records.get(uri)
            if record is None:
                raise ResourceNotFoundError(uri)
            # Clock resolution can repeat a timestamp; updates must move forward
            now = max(_utcnow(), record.updated_at + timedelta(microseconds=1))
            record.content = content
            record.updated_at = now
            return replace(record)

    def read(self, uri: str) -> str:
        """Return the text content stored under ``uri``."""
        return self.get(uri).content

    def list(self) -> List[ResourceRecord]:
        with self._lock:
            return [replace(record) for record in self._records.values()]

    def __contains__(self, uri: object) -> bool:
        with self._lock:
            return str(uri) in self._records

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)


class DynamicNameCounter:
    """Strictly increasing counter used to name dynamic tools."""

    def __init__(self, start: int = 0):
        self._value = start
        self._lock = threading.Lock()

    def next(self) -> int:
        with self._lock:
            self._value += 1
            return self._value

    @property
    def value(self) -> int:
        return self._value


def initialize_static_resources(registry: "ResourceRegistry", environment: str = "test") -> ResourceRecord:
    """Seed the registry with the static ``memory://test-config`` document."""
    content = json.dumps({
        "version": "1.0.0",
        "environment": environment,
        "features": {
            "logging": True,
            "notifications": True,
            "instrumentation": True,
        },
        "timestamp": _utcnow().isoformat(),
    }, indent=2)
    return registry.create(STATIC_CONFIG_NAME, content, "application/json")


# Shared by every server instance built in this process
default_registry = ResourceRegistry()
default_counter = DynamicNameCounter()

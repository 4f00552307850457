"""Tests for the in-memory resource registry and the dynamic tool counter."""
import json
import threading

import pytest

from error_handling import ResourceNotFoundError
from mcp_servers.registry import (
    STATIC_CONFIG_NAME,
    DynamicNameCounter,
    ResourceRegistry,
    initialize_static_resources,
    resource_uri,
)


def test_resource_uri_uses_memory_scheme():
    assert resource_uri("notes") == "memory://notes"


def test_resource_uri_percent_encodes_names():
    assert resource_uri("my notes") == "memory://my%20notes"
    assert resource_uri("a/b?c") == "memory://a%2Fb%3Fc"


def test_names_with_spaces_are_stored_under_encoded_uri(registry):
    record = registry.create("my notes", "hello")

    assert record.uri == "memory://my%20notes"
    assert registry.read("memory://my%20notes") == "hello"
    assert registry.update("my notes", "v2").content == "v2"


def test_create_defaults_to_text_plain(registry):
    record = registry.create("notes", "hello")

    assert record.uri == "memory://notes"
    assert record.mime_type == "text/plain"
    assert record.created_at == record.updated_at
    assert registry.read("memory://notes") == "hello"


def test_create_keeps_explicit_mime_type(registry):
    registry.create("doc", "{}", "application/json")

    assert registry.get("memory://doc").mime_type == "application/json"


def test_get_unknown_uri_raises_not_found(registry):
    with pytest.raises(ResourceNotFoundError) as exc_info:
        registry.get("memory://missing")

    assert exc_info.value.uri == "memory://missing"
    assert exc_info.value.status_code == 404
    assert str(exc_info.value) == "Resource not found: memory://missing"


def test_update_replaces_content_and_moves_timestamp_forward(registry):
    created = registry.create("notes", "v1")

    updated = registry.update("notes", "v2")

    assert registry.read("memory://notes") == "v2"
    assert updated.created_at == created.created_at
    assert updated.updated_at > created.created_at


def test_repeated_updates_are_strictly_increasing(registry):
    registry.create("notes", "v0")

    stamps = [registry.update("notes", f"v{i}").updated_at for i in range(1, 20)]

    assert all(later > earlier for earlier, later in zip(stamps, stamps[1:]))


def test_update_unknown_name_raises_and_creates_nothing(registry):
    with pytest.raises(ResourceNotFoundError):
        registry.update("ghost", "boo")

    assert "memory://ghost" not in registry
    assert len(registry) == 0


def test_returned_records_are_snapshots(registry):
    registry.create("notes", "original")

    snapshot = registry.get("memory://notes")
    snapshot.content = "tampered"
    listed = registry.list()
    listed[0].content = "tampered again"

    assert registry.read("memory://notes") == "original"


def test_set_overwrites_existing_record(registry):
    first = registry.create("notes", "one")
    first.content = "two"

    registry.set(first.uri, first)

    assert registry.read(first.uri) == "two"


def test_static_config_document(registry):
    record = initialize_static_resources(registry, environment="test")

    assert record.uri == resource_uri(STATIC_CONFIG_NAME)
    assert record.mime_type == "application/json"
    payload = json.loads(registry.read("memory://test-config"))
    assert payload["version"] == "1.0.0"
    assert payload["environment"] == "test"
    assert payload["features"] == {
        "logging": True,
        "notifications": True,
        "instrumentation": True,
    }
    assert "timestamp" in payload


def test_counter_is_strictly_increasing(counter):
    values = [counter.next() for _ in range(5)]

    assert values == [1, 2, 3, 4, 5]
    assert counter.value == 5


def test_counter_never_repeats_across_threads():
    counter = DynamicNameCounter()
    seen = []
    lock = threading.Lock()

    def worker():
        for _ in range(200):
            value = counter.next()
            with lock:
                seen.append(value)

    threads = [threading.Thread(target=worker) for _ in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(seen) == len(set(seen)) == 800
    assert counter.value == 800


def test_registries_are_independent():
    first = ResourceRegistry()
    second = ResourceRegistry()

    first.create("notes", "only here")

    assert "memory://notes" in first
    assert "memory://notes" not in second

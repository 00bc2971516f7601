#!/usr/bin/env python3
"""Tests for the status endpoint"""

from unittest.mock import Mock

from fastapi.testclient import TestClient

from courier.directory_feed import DirectoryEntry
from courier.status_server import StatusServer, create_status_app
from courier.task_registry import TaskRegistry


def test_status_serves_registry_snapshot():
    registry = Mock()
    registry.snapshot.return_value = {
        "dir_files": ["a.xml", "b.xml"],
        "working_files": ["b.xml"],
    }
    client = TestClient(create_status_app(registry))

    response = client.get("/")

    assert response.status_code == 200
    assert response.json() == {"dir_files": ["a.xml", "b.xml"], "working_files": ["b.xml"]}


def test_status_with_real_registry():
    registry = TaskRegistry(worker_factory=Mock())
    registry.set_directory_listing([DirectoryEntry("a.xml", False, 1)])
    client = TestClient(create_status_app(registry))

    assert client.get("/").json() == {"dir_files": ["a.xml"], "working_files": []}


def test_health():
    client = TestClient(create_status_app(Mock()))

    assert client.get("/health").json() == {"status": "ok"}


def test_status_is_read_only():
    client = TestClient(create_status_app(Mock()))

    assert client.post("/").status_code == 405


def test_stop_without_start_is_noop():
    server = StatusServer(Mock(), host="127.0.0.1", port=9999)
    server.stop()
    assert server._thread is None

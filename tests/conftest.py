"""Shared pytest fixtures: backend config and a live development backend."""

import threading

import pytest
from werkzeug.serving import make_server

from sync_tracker.server import create_app


@pytest.fixture()
def backend_config() -> dict:
    """Two apps: one with server-defined classes, one receiving log entries."""
    return {
        "jwt_secret": "test-secret-0123456789abcdef0123456789",
        "apps": {
            "tracker-app": {
                "allow_anonymous": True,
                "api_keys": ["user-key"],
                "users": {"alice@example.com": "pw"},
                "classes": [
                    {"name": "Item", "properties": {"_id": "string", "name": "string"}},
                    {
                        "name": "Address",
                        "embedded": True,
                        "properties": {"street": "string"},
                    },
                    {"name": "Store", "properties": {"_id": "string", "name": "string"}},
                ],
                "objects": {
                    "Item": [
                        {"_id": "item-1", "name": "Widget"},
                        {"_id": "item-2", "name": "Gadget"},
                    ],
                    "Store": [{"_id": "store-1", "name": "Main"}],
                },
            },
            "log-app": {"api_keys": ["log-key"], "classes": []},
        },
    }


@pytest.fixture()
def live_backend(backend_config):
    """Serve the development backend on an ephemeral port; yield (base_url, state)."""
    app = create_app(backend_config)
    server = make_server("127.0.0.1", 0, app, threaded=True)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    yield f"http://127.0.0.1:{server.server_port}", app.config["state"]
    server.shutdown()
    thread.join(timeout=5)

"""Tests for the SyncTracker orchestration against a live backend."""

import sqlite3
import threading
import time

import pytest

from sync_tracker.client import SyncClient
from sync_tracker.config import TrackerConfig
from sync_tracker.errors import AuthError
from sync_tracker.models import ObjectSchema
from sync_tracker.shipper import LogShipper
from sync_tracker.store import LocalStore
from sync_tracker.tracker import SyncTracker
from sync_tracker.transport import HttpTransport


def _config(base_url, tmp_path, **overrides) -> TrackerConfig:
    defaults = {
        "app_id": "tracker-app",
        "base_url": base_url,
        "log_app_id": "log-app",
        "log_api_key": "log-key",
        "api_key": "user-key",
        "batch_size": 3,
        "log_level": "all",
        "data_dir": str(tmp_path / "data"),
        "shutdown_delay": 0.0,
    }
    defaults.update(overrides)
    return TrackerConfig(**defaults)


def _sync_client(config, app_id) -> SyncClient:
    transport = HttpTransport(config.base_url, max_retries=0, timeout=5.0)
    return SyncClient(app_id, config.base_url, config.data_dir, transport=transport)


def _tracker(config, with_shipper=True):
    client = _sync_client(config, config.app_id)
    shipper = None
    if with_shipper:
        shipper = LogShipper(_sync_client(config, config.log_app_id), config.log_api_key)
    return SyncTracker(config, client, shipper, threading.Event()), client


class TestRun:

    def test_run_reports_counts_per_class(self, live_backend, tmp_path):
        base_url, _ = live_backend
        tracker, _ = _tracker(_config(base_url, tmp_path), with_shipper=False)
        tracker.start_logging()
        try:
            counts = tracker.run()
        finally:
            tracker.shutdown()

        assert counts == {"Item": 2, "Store": 1}

    def test_embedded_and_asymmetric_classes_skipped(self, tmp_path):
        store = LocalStore(str(tmp_path / "s.sqlite"), [
            ObjectSchema(name="B", properties={"_id": "string"}),
            ObjectSchema(name="A", properties={"_id": "string"}),
            ObjectSchema(name="E", properties={"x": "string"}, embedded=True),
            ObjectSchema(name="L", properties={"_id": "string"}, asymmetric=True),
        ])
        try:
            assert [s.name for s in SyncTracker.synced_classes(store)] == ["A", "B"]
        finally:
            store.close()

    def test_cached_user_skips_login(self, live_backend, tmp_path):
        base_url, _ = live_backend
        config = _config(base_url, tmp_path)
        tracker, client = _tracker(config, with_shipper=False)
        first = tracker.login()

        again, _ = _tracker(config, with_shipper=False)
        assert again.login().id == first.id

    def test_clean_logs_out_cached_user(self, live_backend, tmp_path):
        base_url, _ = live_backend
        config = _config(base_url, tmp_path, api_key="", clean=False)
        tracker, _ = _tracker(config, with_shipper=False)
        anonymous = tracker.login()

        cleaned, _ = _tracker(_config(base_url, tmp_path, api_key="", clean=True), with_shipper=False)
        # A fresh anonymous login yields a different user id
        assert cleaned.login().id != anonymous.id

    def test_login_failure_propagates(self, live_backend, tmp_path):
        base_url, _ = live_backend
        tracker, _ = _tracker(_config(base_url, tmp_path, api_key="wrong"), with_shipper=False)
        with pytest.raises(AuthError):
            tracker.run()


class TestRemoteLogging:

    def test_diagnostics_reach_log_app(self, live_backend, tmp_path):
        base_url, state = live_backend
        config = _config(base_url, tmp_path)
        tracker, _ = _tracker(config)

        tracker.start_logging()
        try:
            tracker.run()
        finally:
            tracker.shutdown()

        uploads = state.uploads("log-app")
        assert uploads
        assert all(change["class"] == "LogEntry" for change in uploads)
        records = [change["object"] for change in uploads]
        assert {r["appId"] for r in records} == {"tracker-app"}
        assert len({r["logSessionId"] for r in records}) == 1
        assert any(r["message"].startswith("Logged in user") for r in records)
        assert any(r["message"] == "Subscriptions updated: 2 class(es)" for r in records)

    def test_error_path_still_ships_logs(self, live_backend, tmp_path):
        base_url, state = live_backend
        tracker, _ = _tracker(_config(base_url, tmp_path, api_key="wrong", log_level="error"))

        tracker.start_logging()
        try:
            with pytest.raises(AuthError):
                tracker.run()
        finally:
            tracker.shutdown()

        messages = [c["object"]["message"] for c in state.uploads("log-app")]
        assert len(messages) == 1
        assert messages[0].startswith("Login failed")

    def test_shutdown_waits_for_delay_unless_signalled(self, live_backend, tmp_path):
        base_url, _ = live_backend
        config = _config(base_url, tmp_path, shutdown_delay=30.0)
        client = _sync_client(config, config.app_id)
        shutdown_event = threading.Event()
        shutdown_event.set()
        tracker = SyncTracker(config, client, None, shutdown_event)

        tracker.start_logging()
        started = time.monotonic()
        tracker.shutdown()

        assert time.monotonic() - started < 5.0

    def test_store_close_failure_still_stops_shipper(self, live_backend, tmp_path, monkeypatch):
        base_url, state = live_backend
        config = _config(base_url, tmp_path)
        client = _sync_client(config, config.app_id)
        shipper = LogShipper(_sync_client(config, config.log_app_id), config.log_api_key)
        tracker = SyncTracker(config, client, shipper, threading.Event())

        tracker.start_logging()
        tracker.run()
        store = tracker.store

        def failing_close(store):
            raise sqlite3.OperationalError("disk I/O error")

        monkeypatch.setattr(client, "close", failing_close)
        with pytest.raises(sqlite3.OperationalError):
            tracker.shutdown()

        assert not shipper.active
        assert tracker.store is None
        assert state.uploads("log-app")
        store.close()

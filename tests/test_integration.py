"""Integration tests for the CLI entry point against a live backend."""

import json

import pytest

import main as cli


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ("SYNC_APP_ID", "LOG_APP_ID", "LOG_API_KEY", "BATCH_SIZE", "CONFIG_PATH",
                 "SYNC_USER", "SYNC_PASSWORD", "SYNC_API_KEY", "LOG_LEVEL", "DATA_DIR"):
        monkeypatch.delenv(name, raising=False)


def _argv(base_url, tmp_path, *extra) -> list[str]:
    return [
        "--app-id", "tracker-app",
        "--base-url", base_url,
        "--log-app-id", "log-app",
        "--log-api-key", "log-key",
        "--data-dir", str(tmp_path / "data"),
        "--shutdown-delay", "0",
        *extra,
    ]


def test_full_run_ships_logs(live_backend, tmp_path):
    base_url, state = live_backend

    exit_code = cli.main(_argv(base_url, tmp_path, "--user", "alice@example.com",
                               "--password", "pw", "--log-level", "debug", "--batch-size", "2"))

    assert exit_code == 0
    records = [c["object"] for c in state.uploads("log-app")]
    assert records
    assert all(r["logLevel"] >= 2 for r in records)
    assert len({r["_id"] for r in records}) == len(records)


def test_second_run_reuses_cached_users(live_backend, tmp_path):
    base_url, state = live_backend
    assert cli.main(_argv(base_url, tmp_path, "--apiKey", "user-key")) == 0
    first_session = {c["object"]["logSessionId"] for c in state.uploads("log-app")}

    assert cli.main(_argv(base_url, tmp_path, "--apiKey", "user-key")) == 0
    sessions = {c["object"]["logSessionId"] for c in state.uploads("log-app")}

    assert len(first_session) == 1
    assert len(sessions) == 2

    user_file = tmp_path / "data" / "tracker-app" / "user.json"
    assert json.loads(user_file.read_text())["provider"] == "api-key"


def test_missing_app_id_exit_code(tmp_path):
    assert cli.main(["--data-dir", str(tmp_path)]) == 2


def test_failed_login_exit_code(live_backend, tmp_path):
    base_url, state = live_backend
    assert cli.main(_argv(base_url, tmp_path, "--apiKey", "wrong")) == 1
    # The failure itself was shipped before shutdown
    assert any(
        c["object"]["message"].startswith("Login failed") for c in state.uploads("log-app")
    )


def test_without_remote_logging(live_backend, tmp_path):
    base_url, state = live_backend
    argv = [
        "--app-id", "tracker-app",
        "--base-url", base_url,
        "--data-dir", str(tmp_path / "data"),
        "--shutdown-delay", "0",
    ]
    assert cli.main(argv) == 0
    assert state.uploads("log-app") == []


def test_unknown_log_level_exit_code(tmp_path):
    argv = ["--app-id", "tracker-app", "--log-level", "verbose", "--data-dir", str(tmp_path)]
    assert cli.main(argv) == 2


def test_transports_closed_on_exit(live_backend, tmp_path, monkeypatch):
    base_url, _ = live_backend
    closed = []
    original_close = cli.HttpTransport.close

    def recording_close(self):
        closed.append(self)
        original_close(self)

    monkeypatch.setattr(cli.HttpTransport, "close", recording_close)

    assert cli.main(_argv(base_url, tmp_path, "--apiKey", "wrong")) == 1
    assert len(closed) == 2

"""Tests for the Flask development backend."""

import zlib

import pytest

from sync_tracker.server import create_app

LOGIN = "/api/client/v2.0/app/{app}/auth/providers/{provider}/login"
SYNC = "/api/client/v2.0/app/{app}/sync/{op}"


@pytest.fixture
def app(backend_config):
    backend_config["max_upload_bytes"] = 2000
    application = create_app(backend_config)
    application.config["TESTING"] = True
    return application


@pytest.fixture
def client(app):
    return app.test_client()


def _login(client, app_id="tracker-app", provider="api-key", body=None) -> dict:
    response = client.post(
        LOGIN.format(app=app_id, provider=provider),
        json=body if body is not None else {"key": "user-key"},
    )
    assert response.status_code == 200, response.get_json()
    return response.get_json()


def _auth(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


def test_health(client):
    body = client.get("/health").get_json()
    assert body["status"] == "healthy"
    assert body["apps"] == ["log-app", "tracker-app"]


class TestLogin:

    def test_api_key_user_id_is_stable(self, client):
        assert _login(client)["user_id"] == _login(client)["user_id"]

    def test_anonymous_users_differ(self, client):
        first = _login(client, provider="anon-user", body={})
        second = _login(client, provider="anon-user", body={})
        assert first["user_id"] != second["user_id"]

    @pytest.mark.parametrize("app_id, provider, body, status", [
        ("tracker-app", "api-key", {"key": "nope"}, 401),
        ("tracker-app", "local-userpass", {"username": "alice@example.com", "password": "x"}, 401),
        ("log-app", "anon-user", {}, 401),
        ("tracker-app", "custom-jwt", {}, 401),
        ("missing-app", "api-key", {"key": "user-key"}, 404),
    ])
    def test_rejected(self, client, app_id, provider, body, status):
        response = client.post(LOGIN.format(app=app_id, provider=provider), json=body)
        assert response.status_code == status
        assert "error" in response.get_json()


class TestSessions:

    def test_refresh_issues_access_token(self, client):
        tokens = _login(client)
        response = client.post("/api/client/v2.0/auth/session", headers=_auth(tokens["refresh_token"]))
        assert response.status_code == 200
        access = response.get_json()["access_token"]
        assert client.get(SYNC.format(app="tracker-app", op="schema"), headers=_auth(access)).status_code == 200

    def test_access_token_cannot_refresh(self, client):
        tokens = _login(client)
        response = client.post("/api/client/v2.0/auth/session", headers=_auth(tokens["access_token"]))
        assert response.status_code == 401

    def test_logout_revokes(self, client):
        tokens = _login(client)
        headers = _auth(tokens["refresh_token"])
        assert client.delete("/api/client/v2.0/auth/session", headers=headers).status_code == 204
        assert client.post("/api/client/v2.0/auth/session", headers=headers).status_code == 401

    def test_token_for_other_app_rejected(self, client):
        tokens = _login(client, app_id="log-app", body={"key": "log-key"})
        response = client.get(
            SYNC.format(app="tracker-app", op="schema"), headers=_auth(tokens["access_token"])
        )
        assert response.status_code == 401


class TestSync:

    def test_schema(self, client):
        tokens = _login(client)
        body = client.get(
            SYNC.format(app="tracker-app", op="schema"), headers=_auth(tokens["access_token"])
        ).get_json()
        assert [c["name"] for c in body["classes"]] == ["Item", "Address", "Store"]

    def test_upload_then_download(self, client, app):
        headers = _auth(_login(client)["access_token"])
        changes = {"changes": [{"class": "Item", "object": {"_id": "item-3", "name": "New"}}]}

        response = client.post(SYNC.format(app="tracker-app", op="upload"), json=changes, headers=headers)
        assert response.get_json() == {"accepted": 1}

        objects = client.get(
            SYNC.format(app="tracker-app", op="download") + "?class=Item", headers=headers
        ).get_json()["objects"]
        assert {o["_id"] for o in objects} == {"item-1", "item-2", "item-3"}
        assert app.config["state"].uploads("tracker-app") == changes["changes"]

    def test_deflate_upload(self, client):
        headers = _auth(_login(client)["access_token"])
        headers["Content-Encoding"] = "deflate"
        body = zlib.compress(b'{"changes": [{"class": "Item", "object": {"_id": "z", "name": "Z"}}]}')
        response = client.post(SYNC.format(app="tracker-app", op="upload"), data=body, headers=headers)
        assert response.get_json() == {"accepted": 1}

    def test_oversized_upload(self, client):
        headers = _auth(_login(client)["access_token"])
        changes = {"changes": [{"class": "Item", "object": {"_id": "big", "name": "X" * 5000}}]}
        response = client.post(SYNC.format(app="tracker-app", op="upload"), json=changes, headers=headers)
        assert response.status_code == 413

    @pytest.mark.parametrize("body", [
        b"not json",
        b'{"changes": [{"object": {"_id": "x"}}]}',
        b'{"changes": [{"class": "Item", "object": {}}]}',
    ])
    def test_malformed_upload(self, client, body):
        headers = _auth(_login(client)["access_token"])
        headers["Content-Type"] = "application/json"
        response = client.post(SYNC.format(app="tracker-app", op="upload"), data=body, headers=headers)
        assert response.status_code == 400

    def test_download_requires_class(self, client):
        headers = _auth(_login(client)["access_token"])
        response = client.get(SYNC.format(app="tracker-app", op="download"), headers=headers)
        assert response.status_code == 400

    def test_requires_token(self, client):
        assert client.get(SYNC.format(app="tracker-app", op="schema")).status_code == 401

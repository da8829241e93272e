"""Development sync backend: a Flask app speaking the client's HTTP protocol.

State is kept in memory. Apps, their credentials and server-defined classes
come from a config dict (usually loaded from YAML).
"""

import logging
import os
import threading
import time
import uuid
import zlib

import jwt
import yaml
from flask import Flask, jsonify, request

from sync_tracker.serializer import deserialize_changes
from sync_tracker.splitter import MAX_UPLOAD_BYTES

logger = logging.getLogger(__name__)

DEFAULT_SERVER_CONFIG = {
    "jwt_secret": "dev-secret-change-me-0123456789abcdef",
    "access_token_ttl": 1800,
    "refresh_token_ttl": 60 * 60 * 24 * 60,
    "max_upload_bytes": MAX_UPLOAD_BYTES,
    "apps": {},
}


def load_server_config(path: str = "server.yaml") -> dict:
    """Load the backend config from *path*; ``SERVER_CONFIG`` overrides it."""
    path = os.environ.get("SERVER_CONFIG", path)
    with open(path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


class BackendState:
    """Users, revoked tokens and synced objects of every configured app."""

    def __init__(self, config: dict):
        merged = dict(DEFAULT_SERVER_CONFIG)
        merged.update(config or {})
        self.secret = merged["jwt_secret"]
        self.access_ttl = int(merged["access_token_ttl"])
        self.refresh_ttl = int(merged["refresh_token_ttl"])
        self.max_upload_bytes = int(merged["max_upload_bytes"])
        self.apps = merged["apps"] or {}
        self._lock = threading.Lock()
        self._revoked: set[str] = set()
        self._objects: dict[str, dict[str, dict]] = {}
        self._uploads: dict[str, list[dict]] = {}

        for app_id, app in self.apps.items():
            for class_name, objects in (app.get("objects") or {}).items():
                for obj in objects:
                    self._objects.setdefault(app_id, {}).setdefault(class_name, {})[
                        str(obj["_id"])
                    ] = obj

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    def issue_token(self, app_id: str, user_id: str, kind: str, ttl: int) -> str:
        now = int(time.time())
        claims = {
            "sub": user_id,
            "app": app_id,
            "typ": kind,
            "iat": now,
            "exp": now + ttl,
            "jti": uuid.uuid4().hex,
        }
        return jwt.encode(claims, self.secret, algorithm="HS256")

    def verify_token(self, token: str, kind: str) -> dict | None:
        try:
            claims = jwt.decode(token, self.secret, algorithms=["HS256"])
        except jwt.InvalidTokenError:
            return None
        if claims.get("typ") != kind:
            return None
        with self._lock:
            if claims.get("jti") in self._revoked:
                return None
        return claims

    def revoke(self, claims: dict):
        with self._lock:
            self._revoked.add(claims["jti"])

    # ------------------------------------------------------------------
    # Data
    # ------------------------------------------------------------------

    def apply_changes(self, app_id: str, changes: list[dict]) -> int:
        with self._lock:
            app_objects = self._objects.setdefault(app_id, {})
            uploads = self._uploads.setdefault(app_id, [])
            for change in changes:
                obj = change["object"]
                app_objects.setdefault(change["class"], {})[str(obj["_id"])] = obj
                uploads.append(change)
        return len(changes)

    def objects(self, app_id: str, class_name: str) -> list[dict]:
        with self._lock:
            return list(self._objects.get(app_id, {}).get(class_name, {}).values())

    def uploads(self, app_id: str) -> list[dict]:
        with self._lock:
            return list(self._uploads.get(app_id, []))


def _login_user_id(app: dict, provider: str, payload: dict) -> str | None:
    """Return the user id for valid credentials, or None."""
    if provider == "api-key":
        key = payload.get("key")
        if key and key in (app.get("api_keys") or []):
            return uuid.uuid5(uuid.NAMESPACE_OID, f"api-key:{key}").hex
    elif provider == "local-userpass":
        username = payload.get("username")
        users = app.get("users") or {}
        if username in users and users[username] == payload.get("password"):
            return uuid.uuid5(uuid.NAMESPACE_OID, f"user:{username}").hex
    elif provider == "anon-user":
        if app.get("allow_anonymous", False):
            return uuid.uuid4().hex
    return None


def create_app(config: dict | None = None) -> Flask:
    """Flask application factory."""
    app = Flask(__name__)
    state = BackendState(config or {})
    app.config["state"] = state

    def error(message: str, status: int):
        return jsonify({"error": message}), status

    def bearer_token() -> str:
        header = request.headers.get("Authorization", "")
        return header[7:] if header.startswith("Bearer ") else ""

    def authorize(app_id: str):
        if app_id not in state.apps:
            return None, error(f"app {app_id} not found", 404)
        claims = state.verify_token(bearer_token(), "access")
        if claims is None or claims.get("app") != app_id:
            return None, error("invalid session", 401)
        return claims, None

    # --- Routes ---

    @app.route("/health")
    def health():
        return jsonify({"status": "healthy", "apps": sorted(state.apps)})

    @app.route("/api/client/v2.0/app/<app_id>/auth/providers/<provider>/login", methods=["POST"])
    def login(app_id, provider):
        app_config = state.apps.get(app_id)
        if app_config is None:
            return error(f"app {app_id} not found", 404)

        user_id = _login_user_id(app_config, provider, request.get_json(silent=True) or {})
        if user_id is None:
            logger.info("Rejected %s login for app %s", provider, app_id)
            return error("invalid credentials", 401)

        logger.info("User %s logged in to app %s via %s", user_id, app_id, provider)
        return jsonify({
            "user_id": user_id,
            "access_token": state.issue_token(app_id, user_id, "access", state.access_ttl),
            "refresh_token": state.issue_token(app_id, user_id, "refresh", state.refresh_ttl),
        })

    @app.route("/api/client/v2.0/auth/session", methods=["POST"])
    def refresh_session():
        claims = state.verify_token(bearer_token(), "refresh")
        if claims is None:
            return error("invalid session", 401)
        return jsonify({
            "access_token": state.issue_token(
                claims["app"], claims["sub"], "access", state.access_ttl
            ),
        })

    @app.route("/api/client/v2.0/auth/session", methods=["DELETE"])
    def logout():
        claims = state.verify_token(bearer_token(), "refresh")
        if claims is None:
            return error("invalid session", 401)
        state.revoke(claims)
        return "", 204

    @app.route("/api/client/v2.0/app/<app_id>/sync/schema")
    def schema(app_id):
        _, failure = authorize(app_id)
        if failure:
            return failure
        return jsonify({"classes": state.apps[app_id].get("classes") or []})

    @app.route("/api/client/v2.0/app/<app_id>/sync/upload", methods=["POST"])
    def upload(app_id):
        _, failure = authorize(app_id)
        if failure:
            return failure

        data = request.get_data()
        if len(data) > state.max_upload_bytes:
            return error(f"upload of {len(data)} bytes exceeds {state.max_upload_bytes}", 413)
        try:
            changes = deserialize_changes(data, request.headers.get("Content-Encoding"))
        except (ValueError, zlib.error) as exc:
            return error(f"malformed upload: {exc}", 400)

        for change in changes:
            if not isinstance(change, dict) or "class" not in change or "_id" not in change.get("object", {}):
                return error("every change needs a class and an object with an _id", 400)

        accepted = state.apply_changes(app_id, changes)
        logger.info("Accepted %d change(s) for app %s", accepted, app_id)
        return jsonify({"accepted": accepted})

    @app.route("/api/client/v2.0/app/<app_id>/sync/download")
    def download(app_id):
        _, failure = authorize(app_id)
        if failure:
            return failure
        class_name = request.args.get("class")
        if not class_name:
            return error("missing class parameter", 400)
        return jsonify({"objects": state.objects(app_id, class_name)})

    return app

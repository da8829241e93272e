"""Sync client: authenticates against the sync backend and manages local stores."""

import logging
import os
import sqlite3
import threading
from typing import Callable, Optional

from sync_tracker.auth import Credentials, User, UserCache
from sync_tracker.errors import (
    AuthError,
    OpenError,
    SyncError,
    TransportError,
    WriteError,
)
from sync_tracker.models import LogLevel, ObjectSchema, parse_log_level
from sync_tracker.serializer import CONTENT_ENCODING, serialize_changes
from sync_tracker.splitter import MAX_UPLOAD_BYTES, split_changes
from sync_tracker.store import LocalStore, compact_on_launch
from sync_tracker.transport import HttpTransport

logger = logging.getLogger(__name__)

DiagnosticCallback = Callable[[int, str], None]

API_PREFIX = "/api/client/v2.0"


class SyncClient:
    """Client for one app on the sync backend.

    Emits diagnostics for its own operations through a registered callback,
    filtered by the configured log level.
    """

    def __init__(
        self,
        app_id: str,
        base_url: str,
        data_dir: str,
        transport: HttpTransport | None = None,
        upload_limit_bytes: int = MAX_UPLOAD_BYTES,
        compress_uploads: bool = False,
    ):
        self.app_id = app_id
        self._transport = transport or HttpTransport(base_url)
        self._app_dir = os.path.join(data_dir, app_id)
        self._user_cache = UserCache(self._app_dir)
        self._upload_limit = upload_limit_bytes
        self._compress = compress_uploads
        self._log_level = LogLevel.INFO
        self._callback: Optional[DiagnosticCallback] = None
        self._callback_lock = threading.Lock()
        self._user: User | None = None
        self._user_loaded = False

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------

    def set_log_level(self, level):
        self._log_level = parse_log_level(level)

    @property
    def log_level(self) -> LogLevel:
        return self._log_level

    def register_diagnostic_callback(self, callback: DiagnosticCallback):
        with self._callback_lock:
            self._callback = callback

    def unregister_diagnostic_callback(self):
        with self._callback_lock:
            self._callback = None

    def _emit(self, level: LogLevel, message: str, *args):
        if self._log_level == LogLevel.OFF or level < self._log_level:
            return
        with self._callback_lock:
            callback = self._callback
        if callback is None:
            return
        callback(int(level), message % args if args else message)

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------

    @property
    def current_user(self) -> User | None:
        if not self._user_loaded:
            self._user = self._user_cache.load()
            self._user_loaded = True
        return self._user

    def login(self, credentials: Credentials) -> User:
        """Log in with *credentials* and cache the resulting user."""
        path = f"{API_PREFIX}/app/{self.app_id}/auth/providers/{credentials.provider}/login"
        self._emit(LogLevel.DEBUG, "Logging in with provider %s", credentials.provider)
        try:
            body = self._transport.request("POST", path, json_body=credentials.payload)
        except TransportError as exc:
            self._emit(LogLevel.ERROR, "Login failed: %s", exc)
            raise AuthError(f"Login to app {self.app_id} failed: {exc}") from exc

        try:
            user = User(
                id=body["user_id"],
                access_token=body["access_token"],
                refresh_token=body["refresh_token"],
                provider=credentials.provider,
            )
        except (KeyError, TypeError) as exc:
            raise AuthError(f"Malformed login response from app {self.app_id}") from exc

        self._user_cache.save(user)
        self._user = user
        self._user_loaded = True
        self._emit(LogLevel.INFO, "Logged in user %s", user.id)
        return user

    def logout(self, user: User):
        """Revoke the user's session on the backend and forget the cached user."""
        try:
            self._transport.request(
                "DELETE", f"{API_PREFIX}/auth/session", token=user.refresh_token
            )
        except TransportError as exc:
            logger.warning("Logout of user %s was not acknowledged: %s", user.id, exc)
        self._user_cache.clear()
        self._user = None
        self._user_loaded = True
        user.refresh_token = ""
        user.access_token = ""
        self._emit(LogLevel.INFO, "Logged out user %s", user.id)

    def refresh_access_token(self, user: User) -> User:
        try:
            body = self._transport.request(
                "POST", f"{API_PREFIX}/auth/session", token=user.refresh_token
            )
        except TransportError as exc:
            if exc.status == 401:
                # Session revoked or expired server-side
                self._user_cache.clear()
                self._user = None
                self._user_loaded = True
                user.refresh_token = ""
                user.access_token = ""
                self._emit(LogLevel.WARN, "Session of user %s expired, logged out", user.id)
            raise AuthError(f"Could not refresh access token: {exc}") from exc
        user.access_token = body["access_token"]
        self._user_cache.save(user)
        self._emit(LogLevel.DEBUG, "Refreshed access token for user %s", user.id)
        return user

    def _authorized_request(self, user: User, method: str, path: str, **kwargs):
        """Send a request with the user's access token, refreshing it once on 401."""
        try:
            return self._transport.request(method, path, token=user.access_token, **kwargs)
        except TransportError as exc:
            if exc.status != 401:
                raise
        self.refresh_access_token(user)
        return self._transport.request(method, path, token=user.access_token, **kwargs)

    # ------------------------------------------------------------------
    # Stores
    # ------------------------------------------------------------------

    def store_path(self, user: User) -> str:
        return os.path.join(self._app_dir, f"{user.id}.sqlite")

    def fetch_schema(self, user: User) -> list[ObjectSchema]:
        body = self._authorized_request(
            user, "GET", f"{API_PREFIX}/app/{self.app_id}/sync/schema"
        )
        return [ObjectSchema.from_dict(item) for item in body.get("classes", [])]

    def open_store(
        self,
        user: User,
        schema: list[ObjectSchema] | None = None,
        clean: bool = False,
    ) -> LocalStore:
        """Open the user's local store, fetching the server schema when none is given."""
        if user is None or not user.is_logged_in:
            raise OpenError("Cannot open a store without a logged-in user")

        path = self.store_path(user)
        if clean and LocalStore.delete_file(path):
            logger.info("Cleaned local store %s", path)

        try:
            if schema is None:
                schema = self.fetch_schema(user)
            store = LocalStore(path, schema, user=user)
        except (AuthError, TransportError, sqlite3.Error, OSError) as exc:
            self._emit(LogLevel.ERROR, "Failed to open store: %s", exc)
            raise OpenError(f"Could not open store {path}: {exc}") from exc

        total, used = store.size()
        if compact_on_launch(total, used):
            logger.info("Compacting store %s (%d bytes, %d used)", path, total, used)
            store.compact()

        self._emit(LogLevel.INFO, "Opened store %s with %d class(es)", path, len(schema))
        return store

    def write_batch(self, store: LocalStore, class_name: str, records: list[dict]):
        """Write *records* to *store* as one transaction."""
        try:
            store.write(class_name, records)
        except (ValueError, sqlite3.Error) as exc:
            self._emit(LogLevel.ERROR, "Write of %d %s record(s) failed: %s",
                       len(records), class_name, exc)
            raise WriteError(f"Write of {len(records)} {class_name} record(s) failed: {exc}") from exc
        self._emit(LogLevel.TRACE, "Wrote %d %s record(s)", len(records), class_name)

    def propagate_pending_writes(self, store: LocalStore) -> int:
        """Upload every pending write in order. Returns the number uploaded."""
        try:
            pending = store.pending_changes()
        except sqlite3.Error as exc:
            raise SyncError(f"Could not read pending writes: {exc}") from exc
        if not pending:
            return 0

        changes_by_id = {id(change): seq for seq, change in pending}
        groups = split_changes(
            [change for _, change in pending],
            max_bytes=self._upload_limit,
            compress=self._compress,
        )

        uploaded = 0
        path = f"{API_PREFIX}/app/{self.app_id}/sync/upload"
        headers = {"Content-Type": "application/json"}
        if self._compress:
            headers["Content-Encoding"] = CONTENT_ENCODING

        for group in groups:
            body = serialize_changes(group, compress=self._compress)
            try:
                self._authorized_request(store.user, "POST", path, data=body, headers=headers)
                store.mark_uploaded([changes_by_id[id(change)] for change in group])
            except (AuthError, TransportError, sqlite3.Error) as exc:
                self._emit(LogLevel.ERROR, "Upload failed after %d change(s): %s", uploaded, exc)
                raise SyncError(
                    f"Uploaded {uploaded} of {len(pending)} pending write(s): {exc}"
                ) from exc
            uploaded += len(group)

        self._emit(LogLevel.DEBUG, "Uploaded %d pending write(s)", uploaded)
        return uploaded

    def update_subscriptions(self, store: LocalStore, class_names: list[str]) -> dict[str, int]:
        """Subscribe to every object of each class and download them.

        Returns the number of objects downloaded per class.
        """
        downloaded = {}
        path = f"{API_PREFIX}/app/{self.app_id}/sync/download"
        for class_name in class_names:
            name = f"All {class_name}"
            if store.add_subscription(name, class_name):
                self._emit(LogLevel.DEBUG, "Added subscription '%s'", name)
            try:
                body = self._authorized_request(
                    store.user, "GET", path, params={"class": class_name}
                )
            except (AuthError, TransportError) as exc:
                self._emit(LogLevel.ERROR, "Download of %s failed: %s", class_name, exc)
                raise SyncError(f"Download of {class_name} failed: {exc}") from exc
            objects = body.get("objects", [])
            store.replace_objects(class_name, objects)
            downloaded[class_name] = len(objects)
        self._emit(LogLevel.INFO, "Subscriptions updated: %d class(es)", len(downloaded))
        return downloaded

    def close(self, store: LocalStore):
        store.close()
        self._emit(LogLevel.DEBUG, "Closed store %s", store.path)

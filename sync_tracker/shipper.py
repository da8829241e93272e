"""Log shipper: batches a sync client's diagnostics into a remote log store."""

import logging
import threading
import time
import uuid
from contextlib import contextmanager

from sync_tracker.auth import Credentials, User, token_expired
from sync_tracker.batch_buffer import BatchBuffer
from sync_tracker.client import SyncClient
from sync_tracker.errors import (
    AuthError,
    AuthUnavailable,
    OpenError,
    SessionUnavailable,
    SyncError,
    WriteError,
)
from sync_tracker.metrics import MetricsCollector
from sync_tracker.models import (
    LOG_ENTRY_SCHEMA,
    LogEvent,
    LogLevel,
    create_log_event,
    event_to_record,
    parse_log_level,
)

logger = logging.getLogger(__name__)


class LogShipper:
    """Ships the diagnostics of a host sync client to a separate logging app.

    Events are buffered in memory and written to the log store as one write
    unit every *batch_size* events; stop_session() writes the last partial
    batch and uploads everything still pending. Up to batch_size - 1 events
    are lost if the process dies between flushes.
    """

    def __init__(self, client: SyncClient, api_key: str, log_level="off"):
        self._client = client
        self._api_key = api_key
        self._metrics = MetricsCollector()
        self._state_lock = threading.Lock()
        self._buffer: BatchBuffer | None = None
        self._store = None
        self._host: SyncClient | None = None
        self._session_id: str | None = None
        self._target_app_id: str | None = None
        self._stopping = False

        # Diagnostics of the logging client itself go to the process log
        client.set_log_level(log_level)
        client.register_diagnostic_callback(self._log_own_diagnostic)

    @staticmethod
    def _log_own_diagnostic(level: int, message: str):
        logger.info("RL - (%s) %s", LogLevel(level).name.lower(), message)

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    def _authenticate(self) -> User:
        """Reuse the cached logging user unless it is missing or expired."""
        user = self._client.current_user

        if user is None or not user.is_logged_in or token_expired(user.refresh_token):
            try:
                user = self._client.login(Credentials.api_key(self._api_key))
            except AuthError as exc:
                raise AuthUnavailable(f"Remote logger user unavailable: {exc}") from exc

        if user is None or not user.is_logged_in:
            raise AuthUnavailable("Remote logger user unavailable")
        return user

    def start_session(self, host: SyncClient, batch_size: int = 5, severity_threshold="info") -> str:
        """Start shipping *host*'s diagnostics. Returns the new session id."""
        threshold = parse_log_level(severity_threshold)

        with self._state_lock:
            if self._buffer is not None:
                raise RuntimeError("A log session is already active")

            buffer = BatchBuffer(batch_size, self._write_batch)
            user = self._authenticate()
            session_id = uuid.uuid4().hex

            try:
                store = self._client.open_store(user, [LOG_ENTRY_SCHEMA])
            except OpenError as exc:
                raise SessionUnavailable(f"Could not open the log store: {exc}") from exc

            self._store = store
            self._session_id = session_id
            self._target_app_id = host.app_id
            self._host = host
            self._stopping = False
            self._buffer = buffer

        host.set_log_level(threshold)
        host.register_diagnostic_callback(self.add_event)

        logger.info(
            "Started log session %s for app %s (batch_size=%d, level=%s)",
            session_id,
            host.app_id,
            batch_size,
            threshold.name.lower(),
        )
        return session_id

    def stop_session(self):
        """Flush remaining events, upload pending writes, and close the log store.

        The store is closed even when the final flush or upload fails; the
        first such error is re-raised afterwards.
        """
        with self._state_lock:
            buffer = self._buffer
            if buffer is None:
                return

            self._host.unregister_diagnostic_callback()
            self._stopping = True
            errors = []

            try:
                buffer.close()
            except WriteError as exc:
                logger.error(
                    "Final log flush failed, %d event(s) not delivered: %s",
                    buffer.pending_count,
                    exc,
                )
                errors.append(exc)

            try:
                uploaded = self._client.propagate_pending_writes(self._store)
                logger.debug("Uploaded %d log record(s) on stop", uploaded)
            except SyncError as exc:
                logger.error("Uploading pending log records failed: %s", exc)
                errors.append(exc)
            finally:
                self._client.close(self._store)
                session_id = self._session_id
                self._buffer = None
                self._store = None
                self._host = None
                self._session_id = None
                self._target_app_id = None

        logger.info("Stopped log session %s. Metrics: %s", session_id, self._metrics.snapshot())

        if errors:
            raise errors[0]

    @contextmanager
    def session(self, host: SyncClient, batch_size: int = 5, severity_threshold="info"):
        """Run a log session for the duration of a ``with`` block."""
        self.start_session(host, batch_size, severity_threshold)
        try:
            yield self
        finally:
            self.stop_session()

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def add_event(self, severity: int, message: str):
        """Diagnostic callback registered on the host client.

        Events arriving after the session ended (an emit racing stop_session
        on another thread) are dropped instead of raising into the host.
        """
        try:
            self.record_event(severity, message)
        except RuntimeError as exc:
            logger.debug("Dropped log event outside a session (%s): %s", exc, message)

    def record_event(self, severity: int, message: str):
        """Record one diagnostic event; may flush a full batch synchronously.

        Raises RuntimeError when no session is active. A failed threshold
        flush is logged and the events stay pending until the next flush
        opportunity.
        """
        buffer = self._buffer
        if buffer is None:
            raise RuntimeError("No active log session")

        user = self._host.current_user if self._host is not None else None
        event = create_log_event(
            target_app_id=self._target_app_id,
            severity=severity,
            session_id=self._session_id,
            message=message,
            user_id=user.id if user is not None and user.is_logged_in else None,
        )

        try:
            buffer.add(event)
        except WriteError as exc:
            logger.error(
                "Log flush failed, %d event(s) kept for retry: %s",
                buffer.pending_count,
                exc,
            )

    def flush(self) -> int:
        """Write all pending events as one write unit. Raises WriteError on failure."""
        buffer = self._buffer
        if buffer is None:
            return 0
        return buffer.flush()

    def _write_batch(self, batch: list[LogEvent]):
        """Flush callback (called by BatchBuffer under its lock)."""
        if self._stopping:
            trigger = "shutdown"
        elif len(batch) >= self._buffer.batch_size:
            trigger = "size"
        else:
            trigger = "manual"

        start = time.monotonic()
        try:
            self._client.write_batch(
                self._store,
                LOG_ENTRY_SCHEMA.name,
                [event_to_record(event) for event in batch],
            )
        except WriteError:
            self._metrics.record_failure()
            raise
        elapsed_ms = (time.monotonic() - start) * 1000

        self._metrics.record_flush(len(batch), elapsed_ms, trigger)
        logger.debug("Flushed %d log event(s) (%s)", len(batch), trigger)

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def active(self) -> bool:
        return self._buffer is not None

    @property
    def session_id(self) -> str | None:
        return self._session_id

    @property
    def batch_size(self) -> int | None:
        return self._buffer.batch_size if self._buffer is not None else None

    @property
    def pending_count(self) -> int:
        return self._buffer.pending_count if self._buffer is not None else 0

    def pending_events(self) -> list[LogEvent]:
        return self._buffer.pending() if self._buffer is not None else []

    @property
    def metrics(self) -> MetricsCollector:
        return self._metrics

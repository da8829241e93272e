"""Sync tracker: login, subscribe to every server class, report object counts."""

import logging
import threading

from sync_tracker.auth import User
from sync_tracker.client import SyncClient
from sync_tracker.config import TrackerConfig, select_credentials
from sync_tracker.models import LogLevel, ObjectSchema
from sync_tracker.shipper import LogShipper
from sync_tracker.store import LocalStore

logger = logging.getLogger(__name__)


class SyncTracker:
    """Drives one run of the tool against a single sync app.

    When a LogShipper is given, the app client's diagnostics are shipped to
    the remote log store; otherwise they go to the process log.
    """

    def __init__(
        self,
        config: TrackerConfig,
        client: SyncClient,
        shipper: LogShipper | None,
        shutdown_event: threading.Event,
    ):
        self._config = config
        self._client = client
        self._shipper = shipper
        self._shutdown = shutdown_event
        self._store: LocalStore | None = None

    @property
    def store(self) -> LocalStore | None:
        return self._store

    def start_logging(self):
        if self._shipper is not None:
            self._shipper.start_session(
                self._client,
                batch_size=self._config.batch_size,
                severity_threshold=self._config.log_level,
            )
        else:
            self._client.set_log_level(self._config.log_level)
            self._client.register_diagnostic_callback(_log_diagnostic)

    def login(self) -> User:
        """Reuse the cached user when possible, otherwise log in."""
        user = self._client.current_user

        if self._config.clean and user is not None and user.is_logged_in:
            self._client.logout(user)
            user = None

        if user is None or not user.is_logged_in:
            user = self._client.login(select_credentials(self._config))
            logger.info("Logged in with the user: %s", user.id)
        else:
            logger.info("Skipped login with the user: %s", user.id)
        return user

    def open_store(self, user: User) -> LocalStore:
        logger.info("Opening store...")
        self._store = self._client.open_store(user, clean=self._config.clean)
        logger.info("Opened store %s", self._store.path)
        return self._store

    @staticmethod
    def synced_classes(store: LocalStore) -> list[ObjectSchema]:
        """Top-level queryable classes, sorted by name."""
        return [s for s in store.schema if not s.embedded and not s.asymmetric]

    def update_subscriptions(self, store: LocalStore) -> list[str]:
        names = [s.name for s in self.synced_classes(store)]
        logger.info("Updating subscriptions...")
        self._client.update_subscriptions(store, names)
        logger.info("Subscriptions updated")
        return names

    def track_class(self, store: LocalStore, class_name: str) -> int:
        count = len(store.objects(class_name))
        logger.info("Got %d %s objects", count, class_name)
        return count

    def run(self) -> dict[str, int]:
        """Log in, open the store, subscribe, and return object counts per class."""
        user = self.login()
        store = self.open_store(user)
        names = self.update_subscriptions(store)
        return {name: self.track_class(store, name) for name in names}

    def shutdown(self):
        """Wait out the shutdown delay, then close the store and stop logging."""
        if self._config.shutdown_delay > 0:
            self._shutdown.wait(timeout=self._config.shutdown_delay)

        try:
            if self._store is not None:
                store, self._store = self._store, None
                self._client.close(store)
            logger.info("Done")
        finally:
            if self._shipper is not None:
                self._shipper.stop_session()
            else:
                self._client.unregister_diagnostic_callback()


def _log_diagnostic(level: int, message: str):
    logger.info("(%s) %s", LogLevel(level).name.lower(), message)

"""Local synchronized store backed by SQLite.

Holds the local copy of synced objects, the queue of writes waiting to be
uploaded, and the active subscriptions. One store file per user per app.
"""

import json
import logging
import os
import sqlite3
import threading
from datetime import datetime, timezone

from sync_tracker.models import ObjectSchema

logger = logging.getLogger(__name__)

COMPACT_THRESHOLD_BYTES = 10 * 1024 * 1024  # 10 MB


def compact_on_launch(total_bytes: int, used_bytes: int) -> bool:
    """Compact when the file is over 10 MB and more than 10 MB of it is free."""
    return total_bytes > COMPACT_THRESHOLD_BYTES and (
        total_bytes - used_bytes
    ) > COMPACT_THRESHOLD_BYTES


class LocalStore:
    """Thread-safe SQLite store for synced objects and pending writes."""

    def __init__(self, path: str, schema: list[ObjectSchema], user=None):
        self.path = path
        self.user = user
        self._lock = threading.Lock()
        if path != ":memory:":
            os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)
        self._conn = sqlite3.connect(path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._schema = {s.name: s for s in schema}
        self._init_database()

    def _init_database(self):
        with self._lock, self._conn:
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS objects (
                    class_name TEXT NOT NULL,
                    object_id TEXT NOT NULL,
                    data TEXT NOT NULL,
                    PRIMARY KEY (class_name, object_id)
                )
            """)
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS pending_writes (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    class_name TEXT NOT NULL,
                    payload TEXT NOT NULL,
                    created_at TEXT NOT NULL
                )
            """)
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS subscriptions (
                    name TEXT PRIMARY KEY,
                    class_name TEXT NOT NULL
                )
            """)
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS object_schema (
                    name TEXT PRIMARY KEY,
                    definition TEXT NOT NULL
                )
            """)
            for object_schema in self._schema.values():
                self._conn.execute(
                    "INSERT OR REPLACE INTO object_schema (name, definition) VALUES (?, ?)",
                    (object_schema.name, json.dumps(object_schema.to_dict())),
                )

    # ------------------------------------------------------------------
    # Schema
    # ------------------------------------------------------------------

    @property
    def schema(self) -> list[ObjectSchema]:
        """Object schemas sorted by class name."""
        return [self._schema[name] for name in sorted(self._schema)]

    def _check_records(self, class_name: str, records: list[dict]) -> ObjectSchema:
        object_schema = self._schema.get(class_name)
        if object_schema is None:
            raise ValueError(f"Class {class_name!r} is not part of the store schema")
        if object_schema.embedded:
            raise ValueError(f"Class {class_name!r} is embedded and cannot be written directly")

        required = object_schema.required_properties()
        for record in records:
            missing = [prop for prop in required if record.get(prop) is None]
            if missing:
                raise ValueError(
                    f"{class_name} record is missing required properties: {', '.join(missing)}"
                )
        return object_schema

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def write(self, class_name: str, records: list[dict]) -> int:
        """Write *records* in one transaction and queue them for upload.

        Asymmetric classes are only queued, never kept as local objects.
        Raises ValueError for schema violations and sqlite3.Error on storage
        failures; in both cases nothing is written.
        """
        object_schema = self._check_records(class_name, records)
        created_at = datetime.now(timezone.utc).isoformat()

        with self._lock, self._conn:
            for record in records:
                payload = json.dumps(record)
                if not object_schema.asymmetric:
                    self._conn.execute(
                        "INSERT OR REPLACE INTO objects (class_name, object_id, data) "
                        "VALUES (?, ?, ?)",
                        (class_name, str(record[object_schema.primary_key]), payload),
                    )
                self._conn.execute(
                    "INSERT INTO pending_writes (class_name, payload, created_at) "
                    "VALUES (?, ?, ?)",
                    (class_name, payload, created_at),
                )
        return len(records)

    def pending_changes(self, limit: int | None = None) -> list[tuple[int, dict]]:
        """Return queued writes oldest-first as (seq, change) tuples."""
        query = "SELECT seq, class_name, payload FROM pending_writes ORDER BY seq"
        params: tuple = ()
        if limit is not None:
            query += " LIMIT ?"
            params = (limit,)
        with self._lock:
            rows = self._conn.execute(query, params).fetchall()
        return [
            (row["seq"], {"class": row["class_name"], "object": json.loads(row["payload"])})
            for row in rows
        ]

    def mark_uploaded(self, seqs: list[int]):
        if not seqs:
            return
        with self._lock, self._conn:
            self._conn.executemany(
                "DELETE FROM pending_writes WHERE seq = ?",
                [(seq,) for seq in seqs],
            )

    def pending_count(self) -> int:
        with self._lock:
            row = self._conn.execute("SELECT COUNT(*) FROM pending_writes").fetchone()
        return row[0]

    # ------------------------------------------------------------------
    # Objects and subscriptions
    # ------------------------------------------------------------------

    def objects(self, class_name: str) -> list[dict]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT data FROM objects WHERE class_name = ? ORDER BY object_id",
                (class_name,),
            ).fetchall()
        return [json.loads(row["data"]) for row in rows]

    def replace_objects(self, class_name: str, objects: list[dict]):
        """Replace the local copy of a class with downloaded objects.

        Objects with writes still waiting for upload keep their local version.
        """
        object_schema = self._schema.get(class_name)
        if object_schema is None:
            raise ValueError(f"Class {class_name!r} is not part of the store schema")
        key = object_schema.primary_key

        with self._lock, self._conn:
            pending = [
                json.loads(row["payload"])
                for row in self._conn.execute(
                    "SELECT payload FROM pending_writes WHERE class_name = ? ORDER BY seq",
                    (class_name,),
                )
            ]
            self._conn.execute("DELETE FROM objects WHERE class_name = ?", (class_name,))
            for obj in objects + pending:
                self._conn.execute(
                    "INSERT OR REPLACE INTO objects (class_name, object_id, data) "
                    "VALUES (?, ?, ?)",
                    (class_name, str(obj[key]), json.dumps(obj)),
                )

    def add_subscription(self, name: str, class_name: str) -> bool:
        """Add a named subscription. Returns False if it already existed."""
        with self._lock, self._conn:
            cursor = self._conn.execute(
                "INSERT OR IGNORE INTO subscriptions (name, class_name) VALUES (?, ?)",
                (name, class_name),
            )
        return cursor.rowcount == 1

    def subscriptions(self) -> dict[str, str]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT name, class_name FROM subscriptions ORDER BY name"
            ).fetchall()
        return {row["name"]: row["class_name"] for row in rows}

    # ------------------------------------------------------------------
    # File maintenance
    # ------------------------------------------------------------------

    def size(self) -> tuple[int, int]:
        """Return (total_bytes, used_bytes) of the database file."""
        with self._lock:
            page_size = self._conn.execute("PRAGMA page_size").fetchone()[0]
            page_count = self._conn.execute("PRAGMA page_count").fetchone()[0]
            free_pages = self._conn.execute("PRAGMA freelist_count").fetchone()[0]
        total = page_size * page_count
        return total, total - page_size * free_pages

    def compact(self):
        with self._lock:
            self._conn.execute("VACUUM")

    def close(self):
        with self._lock:
            self._conn.close()

    @staticmethod
    def delete_file(path: str) -> bool:
        """Delete a store file and its journal. Returns True if anything was removed."""
        removed = False
        for candidate in (path, path + "-journal", path + "-wal", path + "-shm"):
            try:
                os.remove(candidate)
                removed = True
            except FileNotFoundError:
                continue
        return removed

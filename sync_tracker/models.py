"""Log event model, diagnostic levels and object schemas."""

import datetime
import uuid
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Optional


class LogLevel(IntEnum):
    """Diagnostic levels emitted by the sync client (higher is more severe)."""

    ALL = 0
    TRACE = 1
    DEBUG = 2
    DETAIL = 3
    INFO = 4
    WARN = 5
    ERROR = 6
    FATAL = 7
    OFF = 8


def parse_log_level(value) -> LogLevel:
    """Accept a LogLevel, an int, or a case-insensitive level name."""
    if isinstance(value, LogLevel):
        return value
    if isinstance(value, int):
        return LogLevel(value)
    name = str(value).strip().upper()
    if name == "WARNING":
        name = "WARN"
    try:
        return LogLevel[name]
    except KeyError:
        raise ValueError(f"Unknown log level: {value!r}") from None


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


@dataclass(frozen=True)
class LogEvent:
    target_app_id: str
    severity: int
    session_id: str
    message: str
    user_id: Optional[str] = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    timestamp: datetime.datetime = field(default_factory=_utcnow)


def create_log_event(
    target_app_id: str,
    severity: int,
    session_id: str,
    message: str,
    user_id: Optional[str] = None,
) -> LogEvent:
    """Factory function that creates a LogEvent stamped with the current time."""
    return LogEvent(
        target_app_id=target_app_id,
        severity=int(severity),
        session_id=session_id,
        message=message,
        user_id=user_id,
    )


def event_to_record(event: LogEvent) -> dict:
    """Convert a LogEvent to the persisted LogEntry record shape."""
    record = {
        "_id": event.id,
        "appId": event.target_app_id,
        "logLevel": event.severity,
        "logSessionId": event.session_id,
        "message": event.message,
        "timestamp": event.timestamp.isoformat(),
    }
    if event.user_id is not None:
        record["userId"] = event.user_id
    return record


@dataclass(frozen=True)
class ObjectSchema:
    name: str
    properties: dict = field(default_factory=dict)
    primary_key: str = "_id"
    embedded: bool = False
    asymmetric: bool = False

    def required_properties(self) -> list[str]:
        return [
            prop for prop, kind in self.properties.items()
            if not kind.endswith("?")
        ]

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "properties": dict(self.properties),
            "primaryKey": self.primary_key,
            "embedded": self.embedded,
            "asymmetric": self.asymmetric,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ObjectSchema":
        return cls(
            name=data["name"],
            properties=dict(data.get("properties", {})),
            primary_key=data.get("primaryKey", "_id"),
            embedded=bool(data.get("embedded", False)),
            asymmetric=bool(data.get("asymmetric", False)),
        )


LOG_ENTRY_SCHEMA = ObjectSchema(
    name="LogEntry",
    properties={
        "_id": "string",
        "appId": "string",
        "logLevel": "int",
        "logSessionId": "string",
        "message": "string",
        "timestamp": "date",
        "userId": "string?",
    },
    primary_key="_id",
    asymmetric=True,
)

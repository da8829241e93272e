"""Credentials, authenticated users and the on-disk current-user cache."""

import json
import logging
import os
import time
from dataclasses import dataclass, asdict, field

import jwt

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Credentials:
    provider: str
    payload: dict = field(default_factory=dict)

    @classmethod
    def api_key(cls, key: str) -> "Credentials":
        return cls(provider="api-key", payload={"key": key})

    @classmethod
    def email_password(cls, username: str, password: str) -> "Credentials":
        return cls(
            provider="local-userpass",
            payload={"username": username, "password": password},
        )

    @classmethod
    def anonymous(cls) -> "Credentials":
        return cls(provider="anon-user")


@dataclass
class User:
    id: str
    access_token: str
    refresh_token: str
    provider: str = ""

    @property
    def is_logged_in(self) -> bool:
        return bool(self.refresh_token)


def token_expired(token: str, now: float | None = None) -> bool:
    """Return True when the token's ``exp`` claim is in the past.

    The signature is NOT verified. This only decides whether a cached user is
    worth reusing; the backend still accepts or rejects the token. A token
    that cannot be decoded counts as expired.
    """
    try:
        claims = jwt.decode(
            token,
            options={"verify_signature": False, "verify_exp": False},
        )
    except jwt.InvalidTokenError:
        return True

    exp = claims.get("exp")
    if exp is None:
        return False
    current = time.time() if now is None else now
    return current >= float(exp)


class UserCache:
    """Persists the current user of one app as JSON under the data directory."""

    FILENAME = "user.json"

    def __init__(self, directory: str):
        self._path = os.path.join(directory, self.FILENAME)

    @property
    def path(self) -> str:
        return self._path

    def load(self) -> User | None:
        try:
            with open(self._path, "r", encoding="utf-8") as f:
                data = json.load(f)
            return User(**data)
        except FileNotFoundError:
            return None
        except (json.JSONDecodeError, TypeError) as exc:
            logger.warning("Ignoring unreadable user cache %s: %s", self._path, exc)
            return None

    def save(self, user: User):
        os.makedirs(os.path.dirname(self._path), exist_ok=True)
        tmp_path = self._path + ".tmp"
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(asdict(user), f)
        os.replace(tmp_path, self._path)

    def clear(self):
        try:
            os.remove(self._path)
        except FileNotFoundError:
            pass

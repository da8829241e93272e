"""Configuration module: frozen dataclass loaded from YAML, env vars and CLI args."""

import argparse
import logging
import os
from dataclasses import dataclass, fields

import yaml

from sync_tracker.auth import Credentials
from sync_tracker.errors import ConfigError
from sync_tracker.models import parse_log_level

logger = logging.getLogger(__name__)


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ("true", "1", "yes")


@dataclass(frozen=True)
class TrackerConfig:
    app_id: str = ""
    base_url: str = "http://localhost:8080"
    log_app_id: str = ""
    log_api_key: str = ""
    log_level: str = "info"
    username: str = ""
    password: str = ""
    api_key: str = ""
    batch_size: int = 5
    clean: bool = False
    data_dir: str = "./sync_data"
    shutdown_delay: float = 5.0
    max_retries: int = 3

    @property
    def remote_logging(self) -> bool:
        return bool(self.log_app_id and self.log_api_key)


# env var -> (field, converter)
_ENV_VARS = {
    "SYNC_APP_ID": ("app_id", str),
    "SYNC_BASE_URL": ("base_url", str),
    "LOG_APP_ID": ("log_app_id", str),
    "LOG_API_KEY": ("log_api_key", str),
    "LOG_LEVEL": ("log_level", str),
    "SYNC_USER": ("username", str),
    "SYNC_PASSWORD": ("password", str),
    "SYNC_API_KEY": ("api_key", str),
    "BATCH_SIZE": ("batch_size", int),
    "CLEAN": ("clean", _parse_bool),
    "DATA_DIR": ("data_dir", str),
    "SHUTDOWN_DELAY": ("shutdown_delay", float),
    "MAX_RETRIES": ("max_retries", int),
}


def load_yaml_config(path: str | None) -> dict:
    """Load config values from a YAML file. Returns empty dict if no path."""
    if not path:
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except FileNotFoundError:
        logger.warning("Config file %s not found, using defaults", path)
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a mapping")

    known = {f.name for f in fields(TrackerConfig)}
    unknown = sorted(set(data) - known)
    if unknown:
        logger.warning("Ignoring unknown config keys in %s: %s", path, ", ".join(unknown))
    logger.info("Loaded YAML config from %s", path)
    return {key: value for key, value in data.items() if key in known}


def build_parser() -> argparse.ArgumentParser:
    """Build the CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="sync-tracker",
        description="Log in to a sync app, subscribe to its classes and report object counts.",
    )
    parser.add_argument("--config", default=None, help="YAML config file")
    parser.add_argument("--app-id", "--appId", dest="app_id", default=None,
                        help="Id of the sync app to track")
    parser.add_argument("--base-url", dest="base_url", default=None,
                        help="Sync backend base URL")
    parser.add_argument("--log-app-id", dest="log_app_id", default=None,
                        help="Id of the app receiving remote log entries")
    parser.add_argument("--log-api-key", dest="log_api_key", default=None,
                        help="API key for the remote logging app")
    parser.add_argument("--log-level", "--logLevel", dest="log_level", default=None,
                        help="Diagnostic level forwarded to the remote log (e.g. info, debug)")
    parser.add_argument("--user", dest="username", default=None,
                        help="Email of an email/password user")
    parser.add_argument("--password", default=None)
    parser.add_argument("--api-key", "--apiKey", dest="api_key", default=None,
                        help="User API key")
    parser.add_argument("--batch-size", dest="batch_size", type=int, default=None,
                        help="Log entries per remote write")
    parser.add_argument("--data-dir", dest="data_dir", default=None,
                        help="Directory for local stores and cached users")
    parser.add_argument("--shutdown-delay", dest="shutdown_delay", type=float, default=None,
                        help="Seconds to wait before shutting down")
    parser.add_argument("--clean", action="store_true", default=None,
                        help="Log out and delete the local store before opening it")
    return parser


def load_config(argv=None) -> TrackerConfig:
    """Build TrackerConfig from defaults <- YAML file <- env vars <- CLI args.

    Pass argv for testability; when None, argparse reads sys.argv.
    """
    args = build_parser().parse_args(argv)

    values: dict = load_yaml_config(args.config or os.environ.get("CONFIG_PATH"))

    for env_name, (field_name, convert) in _ENV_VARS.items():
        raw = os.environ.get(env_name)
        if raw is not None:
            try:
                values[field_name] = convert(raw)
            except ValueError as exc:
                raise ConfigError(f"Invalid value for {env_name}: {raw!r}") from exc

    for field_name in (f.name for f in fields(TrackerConfig)):
        cli_value = getattr(args, field_name, None)
        if cli_value is not None:
            values[field_name] = cli_value

    config = TrackerConfig(**values)

    if not config.app_id:
        raise ConfigError(
            "App ID is undefined - please pass it in the command line '--app-id=xxxx-yyyy'"
        )
    if config.batch_size < 1:
        raise ConfigError(f"batch_size must be at least 1, got {config.batch_size}")
    try:
        parse_log_level(config.log_level)
    except ValueError as exc:
        raise ConfigError(f"Invalid log level: {config.log_level!r}") from exc
    return config


def select_credentials(config: TrackerConfig) -> Credentials:
    """Pick email/password, then API key, then anonymous credentials."""
    if config.username:
        return Credentials.email_password(config.username, config.password)
    if config.api_key:
        return Credentials.api_key(config.api_key)
    return Credentials.anonymous()

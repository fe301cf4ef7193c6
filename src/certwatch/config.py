"""
Configuration dataclasses for the certwatch system.

This module defines all configuration structures used throughout the system
(feed endpoint, storage backend, logging, API bind address, notifiers) and
the loaders that build them from the environment or a JSON file. Configuration
is read once at startup and never mutated afterwards.
"""

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from .enums import LogLevel, StorageBackend
from .exceptions import ConfigError


DEFAULT_STREAM_URL = "wss://certstream.calidog.io/"
DEFAULT_DB_PATH = Path("monitor.db")


@dataclass(frozen=True)
class StreamConfig:
    """Certificate-transparency feed settings."""

    url: str = DEFAULT_STREAM_URL
    retry_delay_seconds: float = 5.0


@dataclass(frozen=True)
class StorageConfig:
    """Storage backend selection and connection parameters."""

    backend: str = StorageBackend.EMBEDDED.value  # 'embedded' or 'remote'
    embedded_path: Path = DEFAULT_DB_PATH
    open_timeout_seconds: float = 1.0
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_password: Optional[str] = None
    redis_db: int = 0
    watch_key: str = "watch_domains"
    match_channel: str = "domains_found"


@dataclass(frozen=True)
class LoggingConfig:
    """Logging configuration."""

    level: str = "info"
    output_format: str = "text"  # 'json', 'text', 'both'


@dataclass(frozen=True)
class ApiConfig:
    """HTTP API bind address."""

    host: str = "0.0.0.0"
    port: int = 9000


@dataclass(frozen=True)
class RetryConfig:
    """Retry behavior for notifier delivery."""

    max_retries: int = 3
    base_delay_seconds: float = 1.0
    max_delay_seconds: float = 60.0


@dataclass(frozen=True)
class NotificationConfig:
    """Optional match notifiers. Unset fields disable the notifier."""

    log_path: Optional[Path] = None
    redis_channel: Optional[str] = None
    webhook_url: Optional[str] = None
    webhook_headers: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class SystemConfig:
    """Main system configuration combining all sub-configurations."""

    stream: StreamConfig = field(default_factory=StreamConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    api: ApiConfig = field(default_factory=ApiConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    notifications: NotificationConfig = field(default_factory=NotificationConfig)
    stats_interval_seconds: float = 60.0


def create_default_config() -> SystemConfig:
    """Create a configuration with all defaults."""
    return validate_config(SystemConfig())


def validate_config(config: SystemConfig) -> SystemConfig:
    """
    Check configuration values that the dataclasses cannot enforce.

    Returns:
        The same configuration

    Raises:
        ConfigError: If any value is invalid
    """
    if not config.stream.url:
        raise ConfigError(code="missing_value", message="Stream URL is required")

    if not config.stream.url.startswith(("ws://", "wss://")):
        raise ConfigError(
            code="invalid_value",
            message="Stream URL must use ws:// or wss://",
            details={"url": config.stream.url},
        )

    if config.stream.retry_delay_seconds < 0:
        raise ConfigError(
            code="invalid_value",
            message="Stream retry delay cannot be negative",
            details={"retry_delay_seconds": config.stream.retry_delay_seconds},
        )

    backends = [backend.value for backend in StorageBackend]
    if config.storage.backend not in backends:
        raise ConfigError(
            code="invalid_value",
            message=f"Storage backend must be one of {backends}",
            details={"backend": config.storage.backend},
        )

    levels = [level.value for level in LogLevel]
    if config.logging.level not in levels:
        raise ConfigError(
            code="invalid_value",
            message=f"Log level must be one of {levels}",
            details={"level": config.logging.level},
        )

    if config.logging.output_format not in ("json", "text", "both"):
        raise ConfigError(
            code="invalid_value",
            message="Log format must be 'json', 'text' or 'both'",
            details={"output_format": config.logging.output_format},
        )

    if not 0 <= config.api.port <= 65535:
        raise ConfigError(
            code="invalid_value",
            message="API port out of range",
            details={"port": config.api.port},
        )

    if config.stats_interval_seconds <= 0:
        raise ConfigError(
            code="invalid_value",
            message="Stats interval must be positive",
            details={"stats_interval_seconds": config.stats_interval_seconds},
        )

    return config


def parse_bind_address(value: str) -> ApiConfig:
    """
    Parse an API bind address of the form 'host:port' or ':port'.

    Raises:
        ConfigError: If the address cannot be parsed
    """
    host, sep, port = value.strip().rpartition(":")
    if not sep:
        raise ConfigError(
            code="invalid_value",
            message="API bind address must be 'host:port' or ':port'",
            details={"bind": value},
        )
    try:
        port_number = int(port)
    except ValueError as e:
        raise ConfigError(
            code="invalid_value",
            message=f"Invalid API port: {port!r}",
            details={"bind": value},
        ) from e
    return ApiConfig(host=host or "0.0.0.0", port=port_number)


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ConfigError(
            code="invalid_value",
            message=f"{name} must be an integer",
            details={"name": name, "value": raw},
        ) from e


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ConfigError(
            code="invalid_value",
            message=f"{name} must be a number",
            details={"name": name, "value": raw},
        ) from e


def load_config_from_env(dotenv_path: Optional[Path] = None) -> SystemConfig:
    """
    Load configuration from environment variables.

    Values from a .env file are loaded first; variables already set in the
    environment take precedence.

    Raises:
        ConfigError: If a value is invalid
    """
    load_dotenv(dotenv_path=dotenv_path)

    api = ApiConfig()
    bind = os.getenv("API_BIND")
    if bind:
        api = parse_bind_address(bind)

    log_path = os.getenv("NOTIFY_LOG_PATH")

    config = SystemConfig(
        stream=StreamConfig(
            url=os.getenv("STREAM_URL") or DEFAULT_STREAM_URL,
            retry_delay_seconds=_float_env("STREAM_RETRY_DELAY", 5.0),
        ),
        storage=StorageConfig(
            backend=(os.getenv("STORAGE_BACKEND") or StorageBackend.EMBEDDED.value).lower(),
            embedded_path=Path(os.getenv("EMBEDDED_DB_PATH") or DEFAULT_DB_PATH),
            redis_host=os.getenv("REDIS_HOST") or "localhost",
            redis_port=_int_env("REDIS_PORT", 6379),
            redis_password=os.getenv("REDIS_PASSWORD") or None,
            redis_db=_int_env("REDIS_DB", 0),
        ),
        logging=LoggingConfig(
            level=(os.getenv("LOG_LEVEL") or "info").lower(),
            output_format=(os.getenv("LOG_FORMAT") or "text").lower(),
        ),
        api=api,
        notifications=NotificationConfig(
            log_path=Path(log_path) if log_path else None,
            redis_channel=os.getenv("NOTIFY_REDIS_CHANNEL") or None,
            webhook_url=os.getenv("NOTIFY_WEBHOOK_URL") or None,
        ),
        stats_interval_seconds=_float_env("STATS_INTERVAL", 60.0),
    )
    return validate_config(config)


def load_config_from_file(config_path: Path) -> SystemConfig:
    """
    Load configuration from a JSON file.

    Args:
        config_path: Path to the configuration file

    Returns:
        SystemConfig built from the file, defaults filling missing keys

    Raises:
        ConfigError: If the file cannot be read or holds invalid values
    """
    try:
        with open(config_path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError as e:
        raise ConfigError(
            code="not_found",
            message=f"Configuration file not found: {config_path}",
            details={"path": str(config_path)},
        ) from e
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigError(
            code="parse_error",
            message=f"Failed to read configuration: {e}",
            details={"path": str(config_path)},
        ) from e

    if not isinstance(data, dict):
        raise ConfigError(
            code="parse_error",
            message="Configuration root must be a JSON object",
            details={"path": str(config_path)},
        )

    try:
        stream_data = data.get("stream", {})
        stream = StreamConfig(
            url=stream_data.get("url", DEFAULT_STREAM_URL),
            retry_delay_seconds=float(stream_data.get("retry_delay_seconds", 5.0)),
        )

        storage_data = data.get("storage", {})
        storage = StorageConfig(
            backend=storage_data.get("backend", StorageBackend.EMBEDDED.value),
            embedded_path=Path(storage_data.get("embedded_path", str(DEFAULT_DB_PATH))),
            open_timeout_seconds=float(storage_data.get("open_timeout_seconds", 1.0)),
            redis_host=storage_data.get("redis_host", "localhost"),
            redis_port=int(storage_data.get("redis_port", 6379)),
            redis_password=storage_data.get("redis_password"),
            redis_db=int(storage_data.get("redis_db", 0)),
            watch_key=storage_data.get("watch_key", "watch_domains"),
            match_channel=storage_data.get("match_channel", "domains_found"),
        )

        logging_data = data.get("logging", {})
        logging_config = LoggingConfig(
            level=logging_data.get("level", "info"),
            output_format=logging_data.get("output_format", "text"),
        )

        api_data = data.get("api", {})
        api = ApiConfig(
            host=api_data.get("host", "0.0.0.0"),
            port=int(api_data.get("port", 9000)),
        )

        retry_data = data.get("retry", {})
        retry = RetryConfig(
            max_retries=int(retry_data.get("max_retries", 3)),
            base_delay_seconds=float(retry_data.get("base_delay_seconds", 1.0)),
            max_delay_seconds=float(retry_data.get("max_delay_seconds", 60.0)),
        )

        notifications_data = data.get("notifications", {})
        log_path = notifications_data.get("log_path")
        notifications = NotificationConfig(
            log_path=Path(log_path) if log_path else None,
            redis_channel=notifications_data.get("redis_channel"),
            webhook_url=notifications_data.get("webhook_url"),
            webhook_headers=dict(notifications_data.get("webhook_headers", {})),
        )

        config = SystemConfig(
            stream=stream,
            storage=storage,
            logging=logging_config,
            api=api,
            retry=retry,
            notifications=notifications,
            stats_interval_seconds=float(data.get("stats_interval_seconds", 60.0)),
        )
    except (AttributeError, TypeError, ValueError) as e:
        raise ConfigError(
            code="invalid_value",
            message=f"Invalid configuration value: {e}",
            details={"path": str(config_path)},
        ) from e

    return validate_config(config)


def config_to_dict(config: SystemConfig) -> dict:
    """Convert a configuration to its JSON file form."""
    notifications = config.notifications
    return {
        "stream": {
            "url": config.stream.url,
            "retry_delay_seconds": config.stream.retry_delay_seconds,
        },
        "storage": {
            "backend": config.storage.backend,
            "embedded_path": str(config.storage.embedded_path),
            "open_timeout_seconds": config.storage.open_timeout_seconds,
            "redis_host": config.storage.redis_host,
            "redis_port": config.storage.redis_port,
            "redis_password": config.storage.redis_password,
            "redis_db": config.storage.redis_db,
            "watch_key": config.storage.watch_key,
            "match_channel": config.storage.match_channel,
        },
        "logging": {
            "level": config.logging.level,
            "output_format": config.logging.output_format,
        },
        "api": {
            "host": config.api.host,
            "port": config.api.port,
        },
        "retry": {
            "max_retries": config.retry.max_retries,
            "base_delay_seconds": config.retry.base_delay_seconds,
            "max_delay_seconds": config.retry.max_delay_seconds,
        },
        "notifications": {
            "log_path": str(notifications.log_path) if notifications.log_path else None,
            "redis_channel": notifications.redis_channel,
            "webhook_url": notifications.webhook_url,
            "webhook_headers": dict(notifications.webhook_headers),
        },
        "stats_interval_seconds": config.stats_interval_seconds,
    }


def save_config_to_file(config: SystemConfig, config_path: Path) -> None:
    """
    Save configuration to a JSON file.

    Raises:
        ConfigError: If the file cannot be written
    """
    try:
        config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(config_path, "w", encoding="utf-8") as f:
            json.dump(config_to_dict(config), f, indent=2, ensure_ascii=False)
    except OSError as e:
        raise ConfigError(
            code="io_error",
            message=f"Failed to write configuration: {e}",
            details={"path": str(config_path)},
        ) from e

"""
Certwatch - Certificate-transparency watcher for domains you own.

This package follows a public certificate-transparency stream, compares the
subject of every newly issued certificate against a watch-list of registrable
domains and records each hit, with a small HTTP API to manage the watch-list.
"""

__version__ = "0.1.0"

from certwatch.exceptions import (
    CertwatchError,
    StreamConnectionError,
    FrameDecodeError,
    DomainParseError,
    StorageError,
    SerializationError,
    ConfigError,
    NotificationError,
)
from certwatch.enums import (
    MessageType,
    Metric,
    StorageBackend,
    LogLevel,
    DomainParseErrorCode,
)
from certwatch.models import (
    Subject,
    LeafCert,
    EntryData,
    Entry,
    Match,
)
from certwatch.wire import (
    decode_frame,
    encode_entry,
    entry_from_dict,
    entry_to_dict,
)
from certwatch.counter import Counter
from certwatch.domain_resolver import DomainResolver
from certwatch.audit_logger import AuditLogger, LogEntry
from certwatch.config import (
    StreamConfig,
    StorageConfig,
    LoggingConfig,
    ApiConfig,
    RetryConfig,
    NotificationConfig,
    SystemConfig,
    create_default_config,
    load_config_from_env,
    load_config_from_file,
    save_config_to_file,
)
from certwatch.storage import (
    Storage,
    EmbeddedStorage,
    RemoteStorage,
    MatchKeyGenerator,
    create_storage,
)
from certwatch.stream import CertStreamSource
from certwatch.notifications import (
    NotificationResult,
    MatchNotifier,
    LogFileNotifier,
    RedisNotifier,
    WebhookNotifier,
    NotificationRouter,
)
from certwatch.worker import MatchWorker
from certwatch.api import ApiServer, start_api_server
from certwatch.service import run_service

__all__ = [
    # Exceptions
    "CertwatchError",
    "StreamConnectionError",
    "FrameDecodeError",
    "DomainParseError",
    "StorageError",
    "SerializationError",
    "ConfigError",
    "NotificationError",
    # Enums
    "MessageType",
    "Metric",
    "StorageBackend",
    "LogLevel",
    "DomainParseErrorCode",
    # Models
    "Subject",
    "LeafCert",
    "EntryData",
    "Entry",
    "Match",
    # Wire format
    "decode_frame",
    "encode_entry",
    "entry_from_dict",
    "entry_to_dict",
    # Counter
    "Counter",
    # Domain Resolver
    "DomainResolver",
    # Audit Logger
    "AuditLogger",
    "LogEntry",
    # Configuration
    "StreamConfig",
    "StorageConfig",
    "LoggingConfig",
    "ApiConfig",
    "RetryConfig",
    "NotificationConfig",
    "SystemConfig",
    "create_default_config",
    "load_config_from_env",
    "load_config_from_file",
    "save_config_to_file",
    # Storage
    "Storage",
    "EmbeddedStorage",
    "RemoteStorage",
    "MatchKeyGenerator",
    "create_storage",
    # Stream
    "CertStreamSource",
    # Notifications
    "NotificationResult",
    "MatchNotifier",
    "LogFileNotifier",
    "RedisNotifier",
    "WebhookNotifier",
    "NotificationRouter",
    # Worker
    "MatchWorker",
    # API
    "ApiServer",
    "start_api_server",
    # Service
    "run_service",
]

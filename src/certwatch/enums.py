"""
Enumeration types for the certwatch system.

These enums provide type-safe constants for feed message kinds, counter
names, storage backends and logging options throughout the system.
"""

from enum import Enum


class MessageType(Enum):
    """Kind of frame received from the certificate-transparency feed."""

    CERTIFICATE_UPDATE = "certificate_update"
    HEARTBEAT = "heartbeat"


class Metric(Enum):
    """Names of the processing counters."""

    CONSUMED = "consumed"
    STREAM_ERRORS = "stream_errors"
    STORAGE_ERRORS = "storage_errors"
    MATCHED = "matched"
    TLD_ERRORS = "tld_errors"
    JSON_ERROR = "json_error"
    NOTIFY_ERRORS = "notify_errors"


class StorageBackend(Enum):
    """Available storage backends."""

    EMBEDDED = "embedded"
    REMOTE = "remote"


class LogLevel(Enum):
    """Logging severity levels."""

    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"

    @property
    def severity(self) -> int:
        """Rank of the level; members are declared from least to most severe."""
        return list(LogLevel).index(self)


class DomainParseErrorCode(Enum):
    """Error codes for domain resolution failures."""

    EMPTY_INPUT = "empty_input"
    WILDCARD = "wildcard"
    FORBIDDEN_CHARS = "forbidden_chars"
    IDNA_ERROR = "idna_error"
    INVALID_LENGTH = "invalid_length"
    IP_ADDRESS = "ip_address"
    NO_REGISTRABLE_DOMAIN = "no_registrable_domain"
    NOT_REGISTRABLE = "not_registrable"

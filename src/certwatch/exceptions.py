"""
Exception classes for the certwatch system.

All exceptions inherit from CertwatchError and provide structured
error information with codes, messages, and optional details.
"""

from typing import Optional


class CertwatchError(Exception):
    """Base exception for all certwatch errors."""

    def __init__(
        self,
        code: str,
        message: str,
        details: Optional[dict] = None,
    ) -> None:
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code!r}, message={self.message!r})"

    def to_dict(self) -> dict:
        """Convert exception to dictionary for serialization."""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


class StreamConnectionError(CertwatchError):
    """Raised when the certificate feed is unreachable or the connection drops."""

    pass


class FrameDecodeError(CertwatchError):
    """
    Raised when a feed frame or a stored record is not a well-formed entry.

    Errors about stored records carry the history key of the bad record.
    """

    @property
    def key(self) -> Optional[str]:
        return self.details.get("key")

    def at_key(self, key: str) -> "FrameDecodeError":
        """Attach the history key of the stored record that failed to decode."""
        self.details["key"] = key
        return self


class DomainParseError(CertwatchError):
    """Raised when a hostname has no resolvable registrable domain."""

    @property
    def raw_input(self) -> str:
        return self.details.get("raw_input", "")

    @property
    def suggestion(self) -> Optional[str]:
        """Registrable form of a rejected subdomain, if there is one."""
        return self.details.get("registrable_domain")


class StorageError(CertwatchError):
    """Raised when a storage backend is unavailable or a transaction fails."""

    pass


class SerializationError(CertwatchError):
    """Raised when an entry cannot be rendered to its wire form."""

    pass


class ConfigError(CertwatchError):
    """Raised when configuration values are missing or invalid."""

    pass


class NotificationError(CertwatchError):
    """Raised when match notification delivery fails."""

    pass

"""
Storage module for the watch-list and the match log.

Two interchangeable backends implement the Storage protocol:

- EmbeddedStorage keeps everything in one durable SQLite file. The
  ``monitoring`` namespace maps domain to the literal flag ``"1"``; the
  ``matches`` namespace holds one child namespace per domain named
  ``match_<domain>`` mapping a history key to a serialized entry. Every
  operation runs in its own transaction on its own connection.
- RemoteStorage keeps the watch-list in a Redis hash and publishes matches
  on a pub/sub channel instead of persisting them, so its match history is
  always empty. An empty result from it means "unknown", not "no matches".
"""

import sqlite3
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterator, Optional, Protocol, Union, runtime_checkable

import redis

from .audit_logger import AuditLogger
from .config import StorageConfig
from .domain_resolver import DomainResolver
from .enums import StorageBackend
from .exceptions import FrameDecodeError, StorageError
from .models import Entry, Match
from .wire import decode_stored


MONITORED_FLAG = "1"
MATCH_BUCKET_PREFIX = "match_"


def match_bucket(domain: str) -> str:
    """Name of the per-domain match namespace."""
    return f"{MATCH_BUCKET_PREFIX}{domain}"


@runtime_checkable
class Storage(Protocol):
    """Capability interface shared by all storage backends."""

    def monitor(self, domain: str) -> None:
        """Add a domain to the watch-list. Adding it twice is not an error."""
        ...

    def remove(self, domain: str) -> None:
        """Remove a domain and its match history. Absent domains are ignored."""
        ...

    def domains(self) -> set[str]:
        """Snapshot of the watch-list."""
        ...

    def is_monitored(self, entry: Entry) -> bool:
        """
        Resolve the entry's registrable domain, store it on the entry and
        report whether it is on the watch-list.

        Raises:
            DomainParseError: If the subject common name cannot be resolved
            StorageError: If the backend is unavailable
        """
        ...

    def record(self, match: Match) -> None:
        """Append a match to its domain's history."""
        ...

    def matches(self, domain: str) -> list[Entry]:
        """Match history for a domain in recorded order."""
        ...

    def all_matches(self) -> list[Entry]:
        """Match history across all domains."""
        ...

    def close(self) -> None:
        ...


class MatchKeyGenerator:
    """
    Produces strictly increasing, lexicographically sortable history keys.

    Keys are ``<nanoseconds:020d>-<sequence:06d>``. The sequence part breaks
    ties when the clock does not advance between two calls, and the clock
    part never goes backwards even if the system clock does.
    """

    def __init__(self, clock: Callable[[], int] = time.time_ns) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._last_ns = -1
        self._sequence = 0

    def next_key(self) -> str:
        with self._lock:
            now = self._clock()
            if now > self._last_ns:
                self._last_ns = now
                self._sequence = 0
            else:
                self._sequence += 1
            return f"{self._last_ns:020d}-{self._sequence:06d}"


@dataclass
class MatchHistory:
    """Decoded match history plus the records that failed to decode."""

    entries: list[Entry] = field(default_factory=list)
    errors: list[FrameDecodeError] = field(default_factory=list)


class EmbeddedStorage:
    """
    Storage backed by a single SQLite file.

    Writers take the database lock with BEGIN IMMEDIATE, so concurrent
    callers (the match worker and API handlers) are serialized by SQLite
    itself while readers proceed in parallel under WAL journaling.
    """

    def __init__(
        self,
        path: Union[str, Path],
        resolver: DomainResolver,
        logger: Optional[AuditLogger] = None,
        open_timeout_seconds: float = 1.0,
        key_generator: Optional[MatchKeyGenerator] = None,
    ) -> None:
        """
        Open (and if needed create) the store.

        Args:
            path: Database file path
            resolver: Resolver used by is_monitored
            logger: Optional audit logger
            open_timeout_seconds: How long to wait for the database lock
            key_generator: History key source (injectable for tests)

        Raises:
            StorageError: If the file cannot be opened or initialized
        """
        self._path = Path(path)
        self._resolver = resolver
        self._logger = logger
        self._open_timeout = open_timeout_seconds
        self._keys = key_generator or MatchKeyGenerator()
        self._initialize()

    @property
    def path(self) -> Path:
        return self._path

    def _initialize(self) -> None:
        try:
            conn = sqlite3.connect(
                str(self._path), timeout=self._open_timeout, isolation_level=None
            )
        except sqlite3.Error as e:
            raise StorageError(
                code="open_failed",
                message=f"Failed to open database: {e}",
                details={"path": str(self._path)},
            ) from e

        try:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute(
                "CREATE TABLE IF NOT EXISTS monitoring ("
                " domain TEXT PRIMARY KEY,"
                " flag TEXT NOT NULL)"
            )
            conn.execute(
                "CREATE TABLE IF NOT EXISTS matches ("
                " bucket TEXT NOT NULL,"
                " key TEXT NOT NULL,"
                " entry TEXT NOT NULL,"
                " PRIMARY KEY (bucket, key))"
            )
        except sqlite3.Error as e:
            raise StorageError(
                code="init_failed",
                message=f"Failed to initialize database: {e}",
                details={"path": str(self._path)},
            ) from e
        finally:
            conn.close()

    @contextmanager
    def _transaction(self, write: bool = False) -> Iterator[sqlite3.Connection]:
        try:
            conn = sqlite3.connect(
                str(self._path), timeout=self._open_timeout, isolation_level=None
            )
        except sqlite3.Error as e:
            raise StorageError(
                code="open_failed",
                message=f"Failed to open database: {e}",
                details={"path": str(self._path)},
            ) from e

        try:
            conn.execute("BEGIN IMMEDIATE" if write else "BEGIN")
            yield conn
            conn.execute("COMMIT")
        except sqlite3.Error as e:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise StorageError(
                code="transaction_failed",
                message=f"Storage transaction failed: {e}",
                details={"path": str(self._path)},
            ) from e
        except BaseException:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise
        finally:
            conn.close()

    def monitor(self, domain: str) -> None:
        with self._transaction(write=True) as conn:
            conn.execute(
                "INSERT OR REPLACE INTO monitoring (domain, flag) VALUES (?, ?)",
                (domain, MONITORED_FLAG),
            )
        self._log_debug("Domain added to watch-list", {"domain": domain})

    def remove(self, domain: str) -> None:
        with self._transaction(write=True) as conn:
            conn.execute("DELETE FROM monitoring WHERE domain = ?", (domain,))
            conn.execute("DELETE FROM matches WHERE bucket = ?", (match_bucket(domain),))
        self._log_debug("Domain removed from watch-list", {"domain": domain})

    def domains(self) -> set[str]:
        with self._transaction() as conn:
            rows = conn.execute("SELECT domain FROM monitoring").fetchall()
        return {row[0] for row in rows}

    def is_monitored(self, entry: Entry) -> bool:
        entry.domain = self._resolver.resolve(entry.common_name)
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT flag FROM monitoring WHERE domain = ?", (entry.domain,)
            ).fetchone()
        return row is not None and row[0] == MONITORED_FLAG

    def record(self, match: Match) -> None:
        if not match.domain:
            raise StorageError(
                code="missing_domain",
                message="Cannot record a match without a resolved domain",
                details={"cert_index": match.entry.data.cert_index},
            )
        key = self._keys.next_key()
        with self._transaction(write=True) as conn:
            conn.execute(
                "INSERT INTO matches (bucket, key, entry) VALUES (?, ?, ?)",
                (match_bucket(match.domain), key, match.entry_string),
            )

    def history(self, domain: str) -> MatchHistory:
        """
        Read a domain's history, collecting undecodable records as errors.

        A malformed record never hides the records around it.
        """
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT key, entry FROM matches WHERE bucket = ? ORDER BY key",
                (match_bucket(domain),),
            ).fetchall()
        return self._decode_rows(rows)

    def matches(self, domain: str) -> list[Entry]:
        history = self.history(domain)
        self._report_decode_errors(history, domain)
        return history.entries

    def all_matches(self) -> list[Entry]:
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT key, entry FROM matches ORDER BY bucket, key"
            ).fetchall()
        history = self._decode_rows(rows)
        self._report_decode_errors(history, None)
        return history.entries

    def close(self) -> None:
        # Connections are per operation; nothing is held open.
        pass

    def _decode_rows(self, rows: list) -> MatchHistory:
        history = MatchHistory()
        for key, raw in rows:
            try:
                history.entries.append(decode_stored(raw, key=key))
            except FrameDecodeError as e:
                history.errors.append(e)
        return history

    def _report_decode_errors(self, history: MatchHistory, domain: Optional[str]) -> None:
        if self._logger is None:
            return
        for error in history.errors:
            self._logger.log_error(
                component="EmbeddedStorage",
                message="Skipping malformed match record",
                error=error,
                additional_data={"domain": domain, "key": error.key},
            )

    def _log_debug(self, message: str, data: dict) -> None:
        if self._logger is not None:
            self._logger.debug("EmbeddedStorage", message, data)


class RemoteStorage:
    """
    Storage backed by Redis.

    The watch-list is a hash; matches are published on a channel for an
    external subscriber and are not kept, so matches() is always empty.
    """

    def __init__(
        self,
        client: redis.Redis,
        resolver: DomainResolver,
        logger: Optional[AuditLogger] = None,
        watch_key: str = "watch_domains",
        match_channel: str = "domains_found",
    ) -> None:
        self._client = client
        self._resolver = resolver
        self._logger = logger
        self._watch_key = watch_key
        self._match_channel = match_channel

    @contextmanager
    def _round_trip(self, operation: str) -> Iterator[None]:
        try:
            yield
        except redis.RedisError as e:
            raise StorageError(
                code="redis_error",
                message=f"Redis {operation} failed: {e}",
                details={"operation": operation},
            ) from e

    def monitor(self, domain: str) -> None:
        with self._round_trip("monitor"):
            self._client.hset(self._watch_key, domain, MONITORED_FLAG)

    def remove(self, domain: str) -> None:
        with self._round_trip("remove"):
            self._client.hdel(self._watch_key, domain)

    def domains(self) -> set[str]:
        with self._round_trip("domains"):
            keys = self._client.hkeys(self._watch_key)
        return {key.decode("utf-8") if isinstance(key, bytes) else key for key in keys}

    def is_monitored(self, entry: Entry) -> bool:
        entry.domain = self._resolver.resolve(entry.common_name)
        with self._round_trip("is_monitored"):
            return bool(self._client.hexists(self._watch_key, entry.domain))

    def record(self, match: Match) -> None:
        with self._round_trip("record"):
            self._client.publish(self._match_channel, match.entry_string)

    def matches(self, domain: str) -> list[Entry]:
        return []

    def all_matches(self) -> list[Entry]:
        return []

    def close(self) -> None:
        with self._round_trip("close"):
            self._client.close()


def create_redis_client(config: StorageConfig) -> redis.Redis:
    """Build a Redis client from storage configuration."""
    return redis.Redis(
        host=config.redis_host,
        port=config.redis_port,
        password=config.redis_password,
        db=config.redis_db,
        socket_connect_timeout=config.open_timeout_seconds,
    )


def create_storage(
    config: StorageConfig,
    resolver: DomainResolver,
    logger: Optional[AuditLogger] = None,
    redis_client: Optional[redis.Redis] = None,
) -> Storage:
    """
    Construct the configured storage backend.

    The remote backend is pinged once so an unreachable server fails at
    startup rather than on the first entry.

    Raises:
        StorageError: If the backend cannot be opened or reached
    """
    backend = StorageBackend(config.backend)

    if backend is StorageBackend.EMBEDDED:
        storage: Storage = EmbeddedStorage(
            path=config.embedded_path,
            resolver=resolver,
            logger=logger,
            open_timeout_seconds=config.open_timeout_seconds,
        )
    else:
        client = redis_client or create_redis_client(config)
        try:
            client.ping()
        except redis.RedisError as e:
            raise StorageError(
                code="connect_failed",
                message=f"Failed to reach Redis: {e}",
                details={"host": config.redis_host, "port": config.redis_port},
            ) from e
        storage = RemoteStorage(
            client=client,
            resolver=resolver,
            logger=logger,
            watch_key=config.watch_key,
            match_channel=config.match_channel,
        )

    if logger is not None:
        logger.info(
            "Storage",
            "Storage backend ready",
            {"backend": backend.value},
        )
    return storage

"""
Match notification module for the certwatch system.

Provides notifiers that forward recorded matches to external systems (an
append-only log file, a Redis pub/sub channel, an HTTP webhook) and a router
that delivers each match to every registered notifier with retry logic.
"""

import asyncio
from abc import abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Protocol, runtime_checkable

import httpx
import redis

from .audit_logger import AuditLogger
from .config import NotificationConfig, RetryConfig
from .enums import LogLevel
from .models import Match


@dataclass
class NotificationResult:
    """Result of delivering one match to one notifier."""

    notifier: str
    success: bool
    error: Optional[str] = None
    attempts: int = 1


@runtime_checkable
class MatchNotifier(Protocol):
    """Protocol defining the interface for match notifiers."""

    @abstractmethod
    async def send(self, match: Match) -> bool:
        """
        Deliver a match.

        Returns:
            True if delivery was successful, False otherwise
        """
        ...

    @abstractmethod
    def get_name(self) -> str:
        ...


class LogFileNotifier:
    """Appends each match's serialized entry as one line to a file."""

    def __init__(self, path: Path) -> None:
        self._path = Path(path)

    async def send(self, match: Match) -> bool:
        await asyncio.to_thread(self._append, match.entry_string)
        return True

    def _append(self, line: str) -> None:
        with open(self._path, "a", encoding="utf-8") as f:
            f.write(line + "\n")

    def get_name(self) -> str:
        return "log_file"


class RedisNotifier:
    """Publishes each match's serialized entry on a Redis channel."""

    def __init__(self, client: redis.Redis, channel: str) -> None:
        self._client = client
        self._channel = channel

    async def send(self, match: Match) -> bool:
        await asyncio.to_thread(self._client.publish, self._channel, match.entry_string)
        return True

    def get_name(self) -> str:
        return "redis"


class WebhookNotifier:
    """Posts each match's serialized entry to an HTTP endpoint."""

    def __init__(
        self,
        url: str,
        headers: Optional[dict[str, str]] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """
        Initialize the webhook notifier.

        Args:
            url: Endpoint receiving the POST
            headers: Extra request headers
            timeout: Request timeout in seconds
            transport: Optional httpx transport (for tests)
        """
        self._url = url
        self._headers = dict(headers or {})
        self._timeout = timeout
        self._transport = transport

    async def send(self, match: Match) -> bool:
        headers = {"Content-Type": "application/json"}
        headers.update(self._headers)

        async with httpx.AsyncClient(transport=self._transport) as client:
            try:
                response = await client.post(
                    self._url,
                    content=match.entry_string.encode("utf-8"),
                    headers=headers,
                    timeout=self._timeout,
                )
            except httpx.HTTPError:
                return False
        return 200 <= response.status_code < 300

    def get_name(self) -> str:
        return "webhook"


@dataclass
class RetryAttempt:
    """Record of a single failed delivery attempt."""

    attempt_number: int
    error: str
    timestamp: str


class NotificationRouter:
    """
    Routes matches to registered notifiers with retry logic.

    Each notifier gets up to ``max_retries + 1`` attempts with exponential
    backoff; a notifier that still fails is logged with every attempt.
    """

    def __init__(
        self,
        retry_config: RetryConfig,
        logger: Optional[AuditLogger] = None,
    ) -> None:
        self._notifiers: list[MatchNotifier] = []
        self._retry_config = retry_config
        self._logger = logger

    def register(self, notifier: MatchNotifier) -> None:
        self._notifiers.append(notifier)

    @property
    def notifiers(self) -> list[MatchNotifier]:
        return self._notifiers.copy()

    def __len__(self) -> int:
        return len(self._notifiers)

    async def notify(self, match: Match) -> list[NotificationResult]:
        """
        Deliver a match to every notifier.

        Returns:
            One NotificationResult per notifier
        """
        results = []
        for notifier in self._notifiers:
            results.append(await self._send_with_retry(notifier, match))
        return results

    async def _send_with_retry(
        self, notifier: MatchNotifier, match: Match
    ) -> NotificationResult:
        name = notifier.get_name()
        max_attempts = self._retry_config.max_retries + 1
        attempts = 0
        retry_attempts: list[RetryAttempt] = []
        last_error: Optional[str] = None

        while attempts < max_attempts:
            attempts += 1
            try:
                if await notifier.send(match):
                    return NotificationResult(notifier=name, success=True, attempts=attempts)
                last_error = "Notifier returned failure"
            except Exception as e:
                last_error = str(e) or type(e).__name__

            retry_attempts.append(
                RetryAttempt(
                    attempt_number=attempts,
                    error=last_error,
                    timestamp=datetime.now(timezone.utc).isoformat(),
                )
            )

            # Don't delay after the last attempt
            if attempts < max_attempts:
                await asyncio.sleep(self._calculate_delay(attempts - 1))

        self._log_all_retries_failed(name, match, retry_attempts)
        return NotificationResult(
            notifier=name, success=False, error=last_error, attempts=attempts
        )

    def _calculate_delay(self, attempt: int) -> float:
        delay = self._retry_config.base_delay_seconds * (2 ** attempt)
        return min(delay, self._retry_config.max_delay_seconds)

    def _log_all_retries_failed(
        self,
        notifier_name: str,
        match: Match,
        retry_attempts: list[RetryAttempt],
    ) -> None:
        if self._logger is None:
            return

        self._logger.log(
            level=LogLevel.ERROR,
            component="NotificationRouter",
            message=f"All delivery attempts failed for notifier '{notifier_name}'",
            data={
                "notifier": notifier_name,
                "domain": match.domain,
                "cert_index": match.entry.data.cert_index,
                "total_attempts": len(retry_attempts),
                "attempts": [
                    {
                        "attempt": attempt.attempt_number,
                        "error": attempt.error,
                        "timestamp": attempt.timestamp,
                    }
                    for attempt in retry_attempts
                ],
            },
        )


def create_notification_router(
    config: NotificationConfig,
    retry_config: RetryConfig,
    logger: Optional[AuditLogger] = None,
    redis_client: Optional[redis.Redis] = None,
) -> NotificationRouter:
    """
    Build a router with a notifier for every configured target.

    A Redis channel is only used when a Redis client is available.
    """
    router = NotificationRouter(retry_config=retry_config, logger=logger)

    if config.log_path is not None:
        router.register(LogFileNotifier(config.log_path))

    if config.redis_channel and redis_client is not None:
        router.register(RedisNotifier(redis_client, config.redis_channel))

    if config.webhook_url:
        router.register(WebhookNotifier(config.webhook_url, headers=config.webhook_headers))

    if logger is not None and len(router):
        logger.info(
            "NotificationRouter",
            "Match notifiers registered",
            {"notifiers": [n.get_name() for n in router.notifiers]},
        )
    return router

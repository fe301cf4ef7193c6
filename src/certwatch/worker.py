"""
Match worker: the control loop of the certwatch pipeline.

Consumes entries and errors from the stream source, checks every entry
against the watch-list, records matches and keeps the processing counters.
Per-entry failures are counted and logged; they never end the loop.
"""

import asyncio
from typing import Optional

from .audit_logger import AuditLogger
from .counter import Counter
from .enums import LogLevel, Metric
from .exceptions import CertwatchError, DomainParseError, SerializationError, StorageError
from .models import Entry, Match
from .notifications import NotificationRouter
from .storage import Storage
from .stream import CertStreamSource
from .wire import encode_entry


class MatchWorker:
    """
    Waits on the next entry, the next stream error, the stats tick and the
    stop event at once and handles whichever is ready first.
    """

    COMPONENT = "MatchWorker"

    def __init__(
        self,
        storage: Storage,
        counter: Counter,
        source: CertStreamSource,
        logger: Optional[AuditLogger] = None,
        router: Optional[NotificationRouter] = None,
        stats_interval_seconds: float = 60.0,
    ) -> None:
        """
        Initialize the worker.

        Args:
            storage: Watch-list and match log
            counter: Processing statistics (the worker is its only writer)
            source: Stream source providing the entry and error queues
            logger: Optional audit logger
            router: Optional notifier fan-out for recorded matches
            stats_interval_seconds: Period of the statistics log line
        """
        self._storage = storage
        self._counter = counter
        self._source = source
        self._logger = logger
        self._router = router
        self._stats_interval = stats_interval_seconds
        self._notifications: set[asyncio.Task] = set()

    async def run(self, stop_event: Optional[asyncio.Event] = None) -> None:
        """
        Run the loop until the stop event is set or the task is cancelled.

        Args:
            stop_event: Optional event that ends the loop when set
        """
        entry_task: Optional[asyncio.Task] = None
        error_task: Optional[asyncio.Task] = None
        tick_task: Optional[asyncio.Task] = None
        stop_task = asyncio.ensure_future(stop_event.wait()) if stop_event else None

        self._log_info("Match worker started", {"stats_interval_seconds": self._stats_interval})
        try:
            while True:
                if entry_task is None:
                    entry_task = asyncio.ensure_future(self._source.entries.get())
                if error_task is None:
                    error_task = asyncio.ensure_future(self._source.errors.get())
                if tick_task is None:
                    tick_task = asyncio.ensure_future(asyncio.sleep(self._stats_interval))

                waiters = {entry_task, error_task, tick_task}
                if stop_task is not None:
                    waiters.add(stop_task)

                done, _ = await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)

                # An entry or error already taken off its queue is handled
                # even when the stop event fired in the same wakeup
                if error_task in done:
                    self.handle_stream_error(error_task.result())
                    error_task = None

                if entry_task in done:
                    await self.process_entry(entry_task.result())
                    entry_task = None

                if tick_task in done:
                    self.report_stats()
                    tick_task = None

                if stop_task is not None and stop_task in done:
                    self._log_info("Match worker stopping", self._counter.snapshot())
                    return
        finally:
            for task in (entry_task, error_task, tick_task, stop_task):
                if task is not None and not task.done():
                    task.cancel()
            for task in list(self._notifications):
                task.cancel()

    async def process_entry(self, entry: Entry) -> Optional[Match]:
        """
        Check one entry against the watch-list and record it on a hit.

        Returns:
            The recorded Match, or None if the entry did not match or failed
        """
        self._counter.increment(Metric.CONSUMED)

        try:
            monitored = await asyncio.to_thread(self._storage.is_monitored, entry)
        except DomainParseError as e:
            self._counter.increment(Metric.TLD_ERRORS)
            self._log_failure("Could not resolve subject domain", e, entry, debug=True)
            return None
        except StorageError as e:
            self._counter.increment(Metric.STORAGE_ERRORS)
            self._log_failure("Watch-list lookup failed", e, entry)
            return None

        if not monitored:
            return None

        self._counter.increment(Metric.MATCHED)
        if self._logger is not None:
            self._logger.debug(
                self.COMPONENT,
                "Found match",
                {"domain": entry.domain, "all_domains": entry.data.leaf_cert.all_domains},
            )

        try:
            entry_string = encode_entry(entry)
        except SerializationError as e:
            # The match is still recorded, with an empty payload
            self._counter.increment(Metric.JSON_ERROR)
            self._log_failure("Could not serialize match", e, entry)
            entry_string = ""

        match = Match(entry=entry, entry_string=entry_string)

        try:
            await asyncio.to_thread(self._storage.record, match)
        except StorageError as e:
            self._counter.increment(Metric.STORAGE_ERRORS)
            self._log_failure("Could not record match", e, entry)

        if self._router is not None and len(self._router):
            task = asyncio.ensure_future(self._dispatch(match))
            self._notifications.add(task)
            task.add_done_callback(self._notifications.discard)

        return match

    def handle_stream_error(self, error: CertwatchError) -> None:
        """Count an error reported by the stream source; it recovers on its own."""
        self._counter.increment(Metric.STREAM_ERRORS)
        if self._logger is not None:
            self._logger.log_error(
                component=self.COMPONENT,
                message="Stream error",
                error=error,
                level=LogLevel.WARN,
            )

    def report_stats(self) -> dict[str, int]:
        """Log the current counter snapshot. Counters are not reset."""
        snapshot = self._counter.snapshot()
        self._log_info("Processing statistics", snapshot)
        return snapshot

    async def wait_for_notifications(self) -> None:
        """Wait until all in-flight notifier deliveries have finished."""
        if self._notifications:
            await asyncio.gather(*list(self._notifications), return_exceptions=True)

    async def _dispatch(self, match: Match) -> None:
        results = await self._router.notify(match)
        for result in results:
            if not result.success:
                self._counter.increment(Metric.NOTIFY_ERRORS)

    def _log_failure(
        self, message: str, error: Exception, entry: Entry, debug: bool = False
    ) -> None:
        if self._logger is None:
            return
        self._logger.log_error(
            component=self.COMPONENT,
            message=message,
            error=error,
            additional_data={
                "cert_index": entry.data.cert_index,
                "common_name": entry.common_name,
            },
            level=LogLevel.DEBUG if debug else LogLevel.WARN,
        )

    def _log_info(self, message: str, data: dict) -> None:
        if self._logger is not None:
            self._logger.info(self.COMPONENT, message, data)

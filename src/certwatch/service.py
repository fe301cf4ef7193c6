"""
Process wiring for the certwatch service.

Builds every component once from configuration, runs the stream source and
the match worker as asyncio tasks next to the threaded API server, and
stops them all when SIGINT or SIGTERM arrives.
"""

import asyncio
import signal
from typing import Optional, TextIO

import redis

from .api import start_api_server
from .audit_logger import AuditLogger
from .config import LoggingConfig, SystemConfig
from .counter import Counter
from .domain_resolver import DomainResolver
from .exceptions import StorageError
from .notifications import create_notification_router
from .storage import create_redis_client, create_storage
from .stream import CertStreamSource
from .worker import MatchWorker


COMPONENT = "Service"


def build_logger(config: LoggingConfig, output_stream: Optional[TextIO] = None) -> AuditLogger:
    """Create the process-wide logger from logging configuration."""
    return AuditLogger(
        output_format=config.output_format,
        output_stream=output_stream,
        level=config.level,
    )


def _install_signal_handlers(stop: asyncio.Event) -> list[int]:
    loop = asyncio.get_running_loop()
    installed = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except (NotImplementedError, RuntimeError):
            # Not supported on this platform or outside the main thread
            continue
        installed.append(sig)
    return installed


def _remove_signal_handlers(installed: list[int]) -> None:
    loop = asyncio.get_running_loop()
    for sig in installed:
        loop.remove_signal_handler(sig)


async def run_service(
    config: SystemConfig,
    stop_event: Optional[asyncio.Event] = None,
    logger: Optional[AuditLogger] = None,
) -> int:
    """
    Run the pipeline and API server until stopped.

    Args:
        config: System configuration
        stop_event: Optional external stop signal; SIGINT/SIGTERM also set it
        logger: Optional logger (built from config when omitted)

    Returns:
        Process exit code: 0 after a clean stop, 1 if startup failed
    """
    logger = logger or build_logger(config.logging)
    logger.info(COMPONENT, "--- Starting ---", {"storage_backend": config.storage.backend})

    resolver = DomainResolver()
    try:
        storage = create_storage(config.storage, resolver, logger)
    except StorageError as e:
        logger.log_error(COMPONENT, "Storage initialization failed", error=e)
        return 1

    notify_client: Optional[redis.Redis] = None
    if config.notifications.redis_channel:
        notify_client = create_redis_client(config.storage)

    counter = Counter()
    router = create_notification_router(
        config.notifications, config.retry, logger, redis_client=notify_client
    )
    source = CertStreamSource(
        endpoint=config.stream.url,
        logger=logger,
        retry_delay_seconds=config.stream.retry_delay_seconds,
    )
    worker = MatchWorker(
        storage=storage,
        counter=counter,
        source=source,
        logger=logger,
        router=router,
        stats_interval_seconds=config.stats_interval_seconds,
    )

    try:
        server, _ = start_api_server(config.api, storage, counter, resolver, logger)
    except OSError as e:
        logger.log_error(
            COMPONENT,
            "Could not bind API server",
            error=e,
            additional_data={"host": config.api.host, "port": config.api.port},
        )
        storage.close()
        return 1

    stop = stop_event or asyncio.Event()
    installed = _install_signal_handlers(stop)
    tasks = [
        asyncio.create_task(source.run(stop), name="stream-source"),
        asyncio.create_task(worker.run(stop), name="match-worker"),
    ]

    try:
        await asyncio.gather(*tasks)
    finally:
        for task in tasks:
            task.cancel()
        _remove_signal_handlers(installed)
        server.shutdown()
        server.server_close()
        storage.close()
        if notify_client is not None:
            notify_client.close()
        logger.info(COMPONENT, "--- Stopped ---", counter.snapshot())

    return 0

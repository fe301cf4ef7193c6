"""
Certificate-transparency stream source.

Maintains a websocket connection to a certstream-compatible feed, decodes
each frame into an Entry and hands it to the consumer through a bounded
queue. Heartbeat frames are dropped. Failures are reported on a separate
error queue and never end the source: it reconnects until stopped.
"""

import asyncio
import threading
from typing import Any, Awaitable, Callable, Optional, Protocol, Union

import websocket

from .audit_logger import AuditLogger
from .exceptions import CertwatchError, FrameDecodeError, StreamConnectionError
from .models import Entry
from .wire import decode_frame


class FeedConnection(Protocol):
    """The subset of websocket.WebSocket used by the stream source."""

    def recv(self) -> Union[str, bytes]:
        ...

    def close(self) -> None:
        """Close handshake; may wait for the peer's close frame."""
        ...

    def abort(self) -> None:
        """Shut the socket down at once, waking any thread blocked in recv."""
        ...


CONNECT_TIMEOUT_SECONDS = 10.0


def open_websocket(endpoint: str, timeout: float = CONNECT_TIMEOUT_SECONDS) -> FeedConnection:
    """
    Dial the feed with websocket-client. Blocks; run it in a thread.

    The timeout bounds the dial only; reads on the open connection block
    until a frame arrives.
    """
    conn = websocket.create_connection(endpoint, timeout=timeout)
    conn.settimeout(None)
    return conn


class PendingDial:
    """
    One dial attempt running in a worker thread.

    A thread cannot be interrupted, so a source that stops waiting abandons
    the attempt instead; whichever side finishes second discards the
    connection, which is therefore never left open.
    """

    def __init__(
        self,
        connect: Callable[[str], FeedConnection],
        endpoint: str,
        discard: Callable[[FeedConnection], None],
    ) -> None:
        self._connect = connect
        self._endpoint = endpoint
        self._discard = discard
        self._lock = threading.Lock()
        self._abandoned = False
        self._conn: Optional[FeedConnection] = None

    def run(self) -> Optional[FeedConnection]:
        """Dial (blocking). Returns None if the attempt was abandoned meanwhile."""
        conn = self._connect(self._endpoint)
        with self._lock:
            if not self._abandoned:
                self._conn = conn
                return conn
        self._discard(conn)
        return None

    def abandon(self) -> None:
        with self._lock:
            self._abandoned = True
            conn, self._conn = self._conn, None
        if conn is not None:
            self._discard(conn)


class CertStreamSource:
    """
    Reconnecting producer of feed entries.

    Both output queues hold at most one item, so a slow consumer blocks the
    source instead of frames being dropped or buffered.

    Reconnect policy:
    - Dial failure: report it, wait the retry delay, dial again
    - Decode failure or connection loss: report it and redial immediately,
      unless the connection never produced a frame, in which case the retry
      delay applies first
    """

    COMPONENT = "CertStreamSource"

    def __init__(
        self,
        endpoint: str,
        logger: Optional[AuditLogger] = None,
        retry_delay_seconds: float = 5.0,
        connect: Callable[[str], FeedConnection] = open_websocket,
        queue_size: int = 1,
    ) -> None:
        """
        Initialize the stream source.

        Args:
            endpoint: Feed URL (ws:// or wss://)
            logger: Optional audit logger
            retry_delay_seconds: Fixed delay before redialing after a failure
            connect: Blocking dial function returning a connection
            queue_size: Capacity of the entry and error queues
        """
        self._endpoint = endpoint
        self._logger = logger
        self._retry_delay = retry_delay_seconds
        self._connect = connect
        self._stop: Optional[asyncio.Event] = None
        self._connections = 0
        self.entries: asyncio.Queue[Entry] = asyncio.Queue(maxsize=queue_size)
        self.errors: asyncio.Queue[CertwatchError] = asyncio.Queue(maxsize=queue_size)

    @property
    def endpoint(self) -> str:
        return self._endpoint

    @property
    def connections(self) -> int:
        """Number of connections established so far."""
        return self._connections

    async def run(self, stop_event: Optional[asyncio.Event] = None) -> None:
        """
        Produce entries until the stop event is set or the task is cancelled.

        Args:
            stop_event: Optional event that ends the source when set
        """
        self._stop = stop_event

        while not self._stopped():
            conn = await self._open()
            if conn is None:
                await self._pause()
                continue

            produced = await self._consume(conn)
            if not produced and not self._stopped():
                await self._pause()

        self._log("info", "Stream source stopped", {"endpoint": self._endpoint})

    def _stopped(self) -> bool:
        return self._stop is not None and self._stop.is_set()

    async def _until_stopped(self, aw: Awaitable[Any]) -> tuple[bool, Any]:
        """
        Await aw unless the stop event fires first.

        Returns:
            (True, result) if aw finished, (False, None) if stopped first
        """
        task = asyncio.ensure_future(aw)
        if self._stop is None:
            return True, await task

        stopper = asyncio.ensure_future(self._stop.wait())
        try:
            done, _ = await asyncio.wait(
                {task, stopper}, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            stopper.cancel()
            if not task.done():
                task.cancel()

        if task in done:
            return True, task.result()
        return False, None

    async def _open(self) -> Optional[FeedConnection]:
        self._log("info", "Connecting to certificate feed", {"endpoint": self._endpoint})
        dial = PendingDial(self._connect, self._endpoint, self._discard)
        try:
            completed, conn = await self._until_stopped(asyncio.to_thread(dial.run))
        except asyncio.CancelledError:
            await asyncio.to_thread(dial.abandon)
            raise
        except (websocket.WebSocketException, OSError) as e:
            await self._emit_error(
                StreamConnectionError(
                    code="connect_failed",
                    message=(
                        f"Error connecting to certstream, reconnecting in "
                        f"{self._retry_delay:g}s: {e}"
                    ),
                    details={"endpoint": self._endpoint, "cause": type(e).__name__},
                )
            )
            return None

        if not completed:
            await asyncio.to_thread(dial.abandon)
            return None

        self._connections += 1
        self._log("info", "Connected to certificate feed", {"endpoint": self._endpoint})
        return conn

    async def _consume(self, conn: FeedConnection) -> bool:
        """
        Read frames until the connection fails or the source is stopped, then
        close it off the event loop.

        Returns:
            True if at least one frame was read from this connection
        """
        try:
            produced = await self._read_frames(conn)
        except BaseException:
            self._abort(conn)
            await asyncio.to_thread(self._close, conn)
            raise

        if self._stopped():
            # A recv thread may still be blocked on this socket
            self._abort(conn)
        await asyncio.to_thread(self._close, conn)
        return produced

    async def _read_frames(self, conn: FeedConnection) -> bool:
        produced = False
        while not self._stopped():
            try:
                completed, raw = await self._until_stopped(asyncio.to_thread(conn.recv))
            except (websocket.WebSocketException, OSError) as e:
                await self._emit_error(
                    StreamConnectionError(
                        code="connection_lost",
                        message=f"Connection to certstream lost: {e}",
                        details={"endpoint": self._endpoint, "cause": type(e).__name__},
                    )
                )
                return produced

            if not completed:
                return produced

            if not raw:
                await self._emit_error(
                    StreamConnectionError(
                        code="connection_closed",
                        message="Certstream closed the connection",
                        details={"endpoint": self._endpoint},
                    )
                )
                return produced

            try:
                entry = decode_frame(raw)
            except FrameDecodeError as e:
                await self._emit_error(e)
                return produced

            produced = True
            if entry.is_heartbeat:
                continue

            completed, _ = await self._until_stopped(self.entries.put(entry))
            if not completed:
                return produced

        return produced

    async def _emit_error(self, error: CertwatchError) -> None:
        self._log("debug", error.message, {"error_code": error.code, **error.details})
        await self._until_stopped(self.errors.put(error))

    async def _pause(self) -> None:
        if self._stopped():
            return
        await self._until_stopped(asyncio.sleep(self._retry_delay))

    def _close(self, conn: FeedConnection) -> None:
        """Close handshake. Blocking; never call it on the event loop."""
        try:
            conn.close()
        except (websocket.WebSocketException, OSError) as e:
            self._log("debug", "Error while closing feed connection", {"error_message": str(e)})

    def _abort(self, conn: FeedConnection) -> None:
        try:
            conn.abort()
        except (websocket.WebSocketException, OSError) as e:
            self._log("debug", "Error while aborting feed connection", {"error_message": str(e)})

    def _discard(self, conn: FeedConnection) -> None:
        # After an abort the close handshake fails at once instead of waiting
        self._log("debug", "Discarding connection dialed after stop", {"endpoint": self._endpoint})
        self._abort(conn)
        self._close(conn)

    def _log(self, level: str, message: str, data: dict) -> None:
        if self._logger is not None:
            getattr(self._logger, level)(self.COMPONENT, message, data)

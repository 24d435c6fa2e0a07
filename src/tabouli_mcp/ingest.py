"""Continuous ingestion of the device's unsolicited log stream.

The log line is read on its own thread, one byte at a time, for as long as
the ingestor runs. Read failures never end the loop: a disconnected log
port simply stops producing bytes until it comes back or the ingestor is
stopped.
"""

from __future__ import annotations

import logging
import threading
from queue import Empty, Full, Queue
from typing import Callable

from .errors import ChannelIOError, ChannelTimeoutError, NotOpenError
from .protocol.framing import ByteChannel

logger = logging.getLogger(__name__)

DEFAULT_QUEUE_SIZE = 65536
DEFAULT_RETRY_INTERVAL_S = 0.1

ByteSink = Callable[[int], None]


class LogIngestor:
    """Reads a log channel forever and hands every byte to a sink.

    With no ``sink``, bytes are pushed onto a bounded queue that the
    presentation layer drains with :meth:`drain`. When the queue is full
    new bytes are dropped and counted in :attr:`dropped`.

    Usage::

        ingestor = LogIngestor(log_channel)
        ingestor.start()
        ...
        text = ingestor.drain().decode("utf-8", errors="replace")
        ingestor.stop()
    """

    def __init__(
        self,
        channel: ByteChannel,
        sink: ByteSink | None = None,
        maxsize: int = DEFAULT_QUEUE_SIZE,
        retry_interval: float = DEFAULT_RETRY_INTERVAL_S,
    ) -> None:
        self._channel = channel
        self._sink = sink
        self._queue: Queue[int] = Queue(maxsize=maxsize)
        self._retry_interval = retry_interval
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self.dropped = 0

    @property
    def channel(self) -> ByteChannel:
        return self._channel

    @property
    def is_alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Run :meth:`run_forever` on a daemon thread."""
        if self.is_alive:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self.run_forever, name="log-ingestor", daemon=True
        )
        self._thread.start()

    def stop(self, timeout: float | None = None) -> None:
        """Ask the loop to exit and wait for the thread to finish.

        The loop checks for the stop request between reads, so this returns
        within roughly one channel read timeout.
        """
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            if not self._thread.is_alive():
                self._thread = None

    def run_forever(self) -> None:
        """Read and deliver bytes until :meth:`stop` is called."""
        logger.info("Log ingestion started")
        while not self._stop_event.is_set():
            try:
                value = self._channel.read_byte()
            except ChannelTimeoutError:
                continue
            except (ChannelIOError, NotOpenError) as e:
                logger.debug("Log read failed, retrying: %s", e)
                self._stop_event.wait(self._retry_interval)
                continue
            self._deliver(value)
        logger.info("Log ingestion stopped")

    def _deliver(self, value: int) -> None:
        if self._sink is None:
            try:
                self._queue.put_nowait(value)
            except Full:
                self.dropped += 1
            return

        try:
            self._sink(value)
        except Exception as e:
            logger.warning("Log sink raised %s: %s", type(e).__name__, e)

    def drain(self, max_bytes: int | None = None) -> bytes:
        """Return queued bytes without blocking, oldest first."""
        out = bytearray()
        while max_bytes is None or len(out) < max_bytes:
            try:
                out.append(self._queue.get_nowait())
            except Empty:
                break
        return bytes(out)

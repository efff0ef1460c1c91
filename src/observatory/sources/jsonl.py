from __future__ import annotations

"""
Proxy for an external line-oriented feed of JSON observations.

A background reader thread parses each line (one object, or an array of
objects) into :class:`DataPoint` instances and parks them in a bounded
queue; the streaming service drains that queue on every tick.
"""

import json
import logging
import threading
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from queue import Empty, Full, Queue
from typing import Any, Callable, List, Optional

from ..core.errors import SourceError
from ..core.models import DataPoint

logger = logging.getLogger(__name__)

DEFAULT_QUEUE_SIZE = 10_000
DEFAULT_MAX_BATCH = 1_000

StreamFactory = Callable[[], Iterable[str]]


def _offer_queue(queue: Queue, item: object) -> None:
    """Best-effort put that drops the oldest entry when the queue is full."""
    try:
        queue.put_nowait(item)
    except Full:
        try:
            queue.get_nowait()
        except Empty:
            pass
        queue.put_nowait(item)


def parse_record(record: Any) -> List[DataPoint]:
    """Turn one decoded JSON value into points, skipping invalid entries."""
    items = record if isinstance(record, list) else [record]
    points: List[DataPoint] = []
    for item in items:
        if not isinstance(item, Mapping):
            logger.debug("Skipping non-object JSON payload: %r", item)
            continue
        try:
            points.append(DataPoint.from_mapping(item))
        except ValueError as exc:
            logger.warning("Dropping invalid observation %r (%s)", item, exc)
    return points


def reader_loop(
    stream: Iterable[str],
    sink: Callable[[DataPoint], None],
    *,
    stop_event: Optional[threading.Event] = None,
) -> int:
    """
    Read JSON lines from ``stream`` and hand each decoded point to ``sink``.

    Stops when the stream is exhausted or ``stop_event`` is set. Returns the
    number of points delivered.
    """
    delivered = 0
    for raw_line in stream:
        if stop_event is not None and stop_event.is_set():
            break

        line = raw_line.strip()
        if not line:
            continue

        try:
            record = json.loads(line)
        except json.JSONDecodeError as exc:
            logger.warning("Dropping malformed JSON line: %s (%s)", line, exc)
            continue

        for point in parse_record(record):
            sink(point)
            delivered += 1
    return delivered


@dataclass
class ReaderHandle:
    thread: threading.Thread
    stop_event: threading.Event
    finished: threading.Event

    def stop(self, *, join: bool = False, timeout: Optional[float] = None) -> None:
        self.stop_event.set()
        if join:
            self.thread.join(timeout)

    def is_alive(self) -> bool:
        return self.thread.is_alive()


class JsonLinesSource:
    """
    External feed source reading JSON lines produced by ``stream_factory``.

    Calling the factory happens in :meth:`open`, so a failing transport makes
    ``connect()`` fail. Once the stream ends (or the reader dies) and the
    queue is drained, :meth:`read_batch` raises :class:`SourceError`, which
    the service reports as a transport loss.
    """

    def __init__(
        self,
        stream_factory: StreamFactory,
        *,
        queue_size: int = DEFAULT_QUEUE_SIZE,
        max_batch: int = DEFAULT_MAX_BATCH,
        thread_name: Optional[str] = None,
    ) -> None:
        self._stream_factory = stream_factory
        self._queue: Queue[DataPoint] = Queue(maxsize=max(1, int(queue_size)))
        self._max_batch = max(1, int(max_batch))
        self._thread_name = thread_name or "ObservatoryJsonReader"
        self._handle: Optional[ReaderHandle] = None
        self._error: Optional[BaseException] = None

    def open(self) -> None:
        if self._handle is not None and self._handle.is_alive():
            return
        stream = self._stream_factory()
        stop_event = threading.Event()
        finished = threading.Event()
        self._error = None

        def _target() -> None:
            try:
                count = reader_loop(stream, lambda point: _offer_queue(self._queue, point), stop_event=stop_event)
                logger.info("JSON feed ended after %d points", count)
            except Exception as exc:
                logger.exception("JSON feed reader failed")
                self._error = exc
            finally:
                finished.set()

        thread = threading.Thread(target=_target, name=self._thread_name, daemon=True)
        self._handle = ReaderHandle(thread=thread, stop_event=stop_event, finished=finished)
        thread.start()

    def close(self) -> None:
        handle, self._handle = self._handle, None
        if handle is not None:
            handle.stop()

    def read_batch(self, count: int, profile: object = None) -> List[DataPoint]:
        """Drain queued points; ``count`` and ``profile`` do not shape an external feed."""
        handle = self._handle
        if handle is None:
            raise SourceError("source is not open")
        batch: List[DataPoint] = []
        while len(batch) < self._max_batch:
            try:
                batch.append(self._queue.get_nowait())
            except Empty:
                break
        if not batch and handle.finished.is_set():
            reason = f"reader failed: {self._error}" if self._error else "stream ended"
            raise SourceError(reason)
        return batch

    @property
    def queued(self) -> int:
        return self._queue.qsize()


__all__ = ["JsonLinesSource", "ReaderHandle", "parse_record", "reader_loop"]

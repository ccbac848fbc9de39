"""ffmpeg progress parsing and progress delivery.

ffmpeg run with ``-progress pipe:1`` prints blocks of ``key=value`` lines.
Only ``out_time_ms`` matters here; despite its name the value is in
microseconds.  Every other key is ignored so newer ffmpeg builds that add
keys never break parsing.
"""

import logging
import queue
import threading
from typing import Iterator, List, Optional

logger = logging.getLogger(__name__)

_OUT_TIME_PREFIX = "out_time_ms="


def parse_progress_line(line: str) -> Optional[float]:
    """Return elapsed output seconds for an ``out_time_ms=`` line, else None."""
    line = line.strip()
    if not line.startswith(_OUT_TIME_PREFIX):
        return None
    value = line[len(_OUT_TIME_PREFIX):]
    try:
        micros = float(value)
    except ValueError:
        # "N/A" before the first frame is encoded
        return None
    if micros < 0:
        return None
    return micros / 1_000_000


class ProgressTracker:
    """Turns elapsed seconds into a clamped, non-decreasing fraction.

    A zero or unknown *duration* means progress can't be computed; the
    tracker then reports 0.0 until :meth:`finish`.
    """

    def __init__(self, duration: Optional[float]) -> None:
        self._duration = duration if duration and duration > 0 else 0.0
        self._fraction = 0.0

    @property
    def fraction(self) -> float:
        return self._fraction

    @property
    def known(self) -> bool:
        return self._duration > 0

    def update(self, elapsed_seconds: float) -> float:
        if self._duration > 0:
            raw = min(1.0, max(0.0, elapsed_seconds / self._duration))
            if raw > self._fraction:
                self._fraction = raw
        return self._fraction

    def finish(self) -> float:
        self._fraction = 1.0
        return self._fraction


_CLOSED = object()


class ProgressChannel:
    """Thread-safe hand-off of progress fractions from a job to a consumer.

    The producer (the export thread) calls :meth:`publish` and finally
    :meth:`close`; the consumer decides where and when to drain, either
    with :meth:`drain` (non-blocking) or by iterating until closed.
    Published values never regress.
    """

    def __init__(self) -> None:
        self._queue: "queue.Queue[object]" = queue.Queue()
        self._lock = threading.Lock()
        self._last = 0.0
        self._closed = False

    @property
    def latest(self) -> float:
        return self._last

    @property
    def closed(self) -> bool:
        return self._closed

    def publish(self, fraction: float) -> None:
        """Queue *fraction* (clamped to [0, 1]) unless it would regress."""
        fraction = min(1.0, max(0.0, float(fraction)))
        with self._lock:
            if self._closed:
                return
            if fraction < self._last:
                return
            self._last = fraction
            self._queue.put(fraction)

    # channel objects double as plain progress callbacks
    __call__ = publish

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._queue.put(_CLOSED)

    def drain(self) -> List[float]:
        """Return everything published so far without blocking."""
        items: List[float] = []
        while True:
            try:
                item = self._queue.get_nowait()
            except queue.Empty:
                break
            if item is _CLOSED:
                # keep the sentinel for iterators still waiting
                self._queue.put(_CLOSED)
                break
            items.append(item)  # type: ignore[arg-type]
        return items

    def __iter__(self) -> Iterator[float]:
        while True:
            item = self._queue.get()
            if item is _CLOSED:
                self._queue.put(_CLOSED)
                return
            yield item  # type: ignore[misc]

"""
ldapaudit Progress Delivery

Hands TestProgress snapshots to a progress sink.

Sequential runs call the sink directly. Parallel runs go through
ProgressDispatcher: workers enqueue snapshots and a single background
thread delivers them in queue order, so a slow sink never holds up a
worker or the admission loop.
"""

from __future__ import annotations

import threading
from queue import Queue
from typing import Any, Callable, Optional

import attrs
import structlog

from ldapaudit.core.types import TestProgress

logger = structlog.get_logger()

ProgressSink = Callable[[TestProgress], None]

_STOP = object()


def deliver_progress(
    sink: Optional[ProgressSink],
    progress: TestProgress,
    log: Any = logger,
) -> None:
    """Call the sink, logging and dropping any exception it raises."""
    if sink is None:
        return
    try:
        sink(progress)
    except Exception as e:
        log.warning(
            "progress_sink_error",
            test=progress.current_test_name,
            error=str(e),
        )


@attrs.define
class ProgressDispatcher:
    """
    Deliver progress snapshots from a background thread.

    Example:
        with ProgressDispatcher(sink=print_progress) as dispatcher:
            dispatcher.submit(snapshot)
        # submitted snapshots have been delivered here, unless the sink
        # is still stuck after close_timeout seconds
    """

    sink: Optional[ProgressSink] = None

    # Upper bound on waiting for queued snapshots when the block exits
    close_timeout: float = 5.0

    _queue: Queue = attrs.Factory(Queue)
    _thread: Optional[threading.Thread] = None
    _logger: Any = attrs.Factory(lambda: structlog.get_logger())

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start the delivery thread."""
        if self._thread is not None:
            return

        self._thread = threading.Thread(
            target=self._delivery_loop,
            name="ProgressDispatcher",
            daemon=True,
        )
        self._thread.start()

    def submit(self, progress: TestProgress) -> None:
        """Queue a snapshot for delivery. Never blocks."""
        if self.sink is None:
            return
        self._queue.put_nowait(progress)

    def close(self, timeout: Optional[float] = None) -> None:
        """Deliver everything already queued, then stop the thread."""
        if self._thread is None:
            return

        self._queue.put_nowait(_STOP)
        self._thread.join(timeout=timeout)
        if self._thread.is_alive():
            self._logger.warning("progress_dispatcher_still_running", pending=self._queue.qsize())
        self._thread = None

    def __enter__(self) -> ProgressDispatcher:
        self.start()
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close(timeout=self.close_timeout)

    def _delivery_loop(self) -> None:
        while True:
            item = self._queue.get()
            if item is _STOP:
                break
            deliver_progress(self.sink, item, self._logger)

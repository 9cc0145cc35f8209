"""Change debouncing for File Distributor.

Collects change events from the watcher, keeps only the latest event per
relative path, and hands the batch to a handler once no new change has
arrived for the configured quiet period.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Sequence

from file_distributor.models import ChangeEvent

logger = logging.getLogger(__name__)

BatchHandler = Callable[[Sequence[ChangeEvent]], None]


class ChangeDebouncer:
    """Coalesce bursts of change events into one batch per quiet period.

    Safe to call :meth:`submit` from any number of threads.  The batch
    handler runs on the timer thread; exceptions it raises are logged and
    do not stop the debouncer.

    Usage:
        debouncer = ChangeDebouncer(on_batch_ready, debounce_delay_ms=5000)
        debouncer.submit(event)
        ...
        debouncer.shutdown()
    """

    def __init__(self, on_batch_ready: BatchHandler, debounce_delay_ms: int = 5000):
        self._on_batch_ready = on_batch_ready
        self._delay = max(0, debounce_delay_ms) / 1000.0
        # relative_path -> ChangeEvent, in first-seen order
        self._pending: dict[str, ChangeEvent] = {}
        # Guards _pending, _timer and _generation so re-arming and firing
        # can never interleave.
        self._lock = threading.Lock()
        self._idle = threading.Condition(self._lock)
        self._in_flight = 0  # handlers currently running
        self._timer: threading.Timer | None = None
        self._generation = 0
        self._closed = False

    @property
    def debounce_delay_ms(self) -> int:
        return int(self._delay * 1000)

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    @property
    def is_closed(self) -> bool:
        return self._closed

    def submit(self, event: ChangeEvent) -> None:
        """Queue *event* and push the quiet-period deadline forward."""
        with self._lock:
            if self._closed:
                logger.debug("Debouncer closed; dropping %s", event)
                return
            existing = self._pending.get(event.relative_path)
            if existing is not None:
                event = existing.merged_with(event)
            self._pending[event.relative_path] = event
            count = len(self._pending)
            self._rearm()
        logger.debug("Queued change: %s, pending: %d", event, count)

    def flush_now(self) -> int:
        """Drain the pending set immediately on the calling thread.

        Returns the number of events handed to the handler.
        """
        with self._lock:
            self._cancel_timer()
            batch = self._drain()
            if batch:
                self._in_flight += 1
        if batch:
            self._dispatch(batch)
        return len(batch)

    def shutdown(self) -> None:
        """Disarm the deadline and refuse further submissions.

        A handler already running on the timer thread is left to finish;
        use :meth:`wait_idle` to wait for it.
        """
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._cancel_timer()
        logger.debug("Debouncer shut down.")

    def wait_idle(self, timeout: float | None = None) -> bool:
        """Block until no batch handler is running.

        Returns False if *timeout* expired first.  Must not be called
        from inside the batch handler.
        """
        with self._lock:
            return self._idle.wait_for(lambda: self._in_flight == 0, timeout)

    # ---- internals (call with _lock held) ----

    def _rearm(self) -> None:
        self._cancel_timer()
        self._generation += 1
        timer = threading.Timer(self._delay, self._on_deadline, args=(self._generation,))
        timer.daemon = True
        timer.name = "ChangeDebouncer"
        self._timer = timer
        timer.start()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _drain(self) -> list[ChangeEvent]:
        batch = list(self._pending.values())
        self._pending.clear()
        return batch

    # ---- timer thread ----

    def _on_deadline(self, generation: int) -> None:
        with self._lock:
            # A submit re-armed after this timer was scheduled; the newer
            # timer owns the flush.
            if generation != self._generation or self._closed:
                return
            self._timer = None
            batch = self._drain()
            if batch:
                self._in_flight += 1
        if not batch:
            return
        self._dispatch(batch)

    def _dispatch(self, batch: list[ChangeEvent]) -> None:
        logger.info("Debounce complete. Processing %d file change(s)", len(batch))
        try:
            self._on_batch_ready(batch)
        except Exception:
            logger.exception("Error processing batch of %d changes", len(batch))
        finally:
            with self._lock:
                self._in_flight -= 1
                self._idle.notify_all()

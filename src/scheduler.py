"""Fixed-interval cycle scheduler.

Runs one callable per tick on a single worker thread. Cycles never overlap:
a cycle that outlasts the interval causes the ticks it overran to be skipped.
"""

import logging
import threading
import time
from typing import Callable, Optional


logger = logging.getLogger(__name__)


class CycleScheduler:
    """Cancellable fixed-rate ticker with single-flight execution.

    Ticks are anchored to the start time (start + n * interval) so that slow
    cycles do not accumulate drift.
    """

    def __init__(
        self,
        interval_seconds: float,
        cycle_fn: Callable[[], None],
        cancel_event: Optional[threading.Event] = None,
        name: str = "scheduler",
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the scheduler.

        Args:
            interval_seconds: Time between ticks
            cycle_fn: Callable executed once per tick
            cancel_event: Event that stops the scheduler when set; a private
                event is created if omitted
            name: Thread name, also used in log messages
            clock: Monotonic time source
        """
        if interval_seconds <= 0:
            raise ValueError(f"interval_seconds must be > 0, got {interval_seconds!r}")
        self._interval = interval_seconds
        self._cycle_fn = cycle_fn
        self._cancel_event = cancel_event or threading.Event()
        self._name = name
        self._clock = clock
        self._thread: Optional[threading.Thread] = None
        self._in_cycle = False
        self.ticks = 0
        self.skipped_ticks = 0

    @property
    def cancel_event(self) -> threading.Event:
        return self._cancel_event

    @property
    def in_cycle(self) -> bool:
        return self._in_cycle

    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> "CycleScheduler":
        """Start the worker thread. The first tick fires one interval from now."""
        if self._thread is not None:
            raise RuntimeError(f"{self._name} already started")
        self._thread = threading.Thread(target=self._run, name=self._name, daemon=True)
        self._thread.start()
        logger.info(f"Started {self._name} with interval {self._interval}s")
        return self

    def stop(self, timeout: Optional[float] = None) -> bool:
        """Stop firing ticks and wait for an in-flight cycle to finish.

        Args:
            timeout: Maximum seconds to wait for the worker thread

        Returns:
            True if the worker thread has exited
        """
        self._cancel_event.set()
        if self._thread is None:
            return True
        self._thread.join(timeout=timeout)
        stopped = not self._thread.is_alive()
        if not stopped:
            logger.warning(f"{self._name} did not stop within timeout")
        return stopped

    def _run(self) -> None:
        next_tick = self._clock() + self._interval

        while not self._cancel_event.wait(timeout=max(0.0, next_tick - self._clock())):
            self.ticks += 1
            self._in_cycle = True
            try:
                self._cycle_fn()
            except Exception:
                logger.exception(f"Unhandled exception in {self._name} cycle")
            finally:
                self._in_cycle = False

            next_tick += self._interval
            now = self._clock()
            if now >= next_tick:
                missed = int((now - next_tick) // self._interval) + 1
                self.skipped_ticks += missed
                next_tick += missed * self._interval
                logger.warning(
                    f"{self._name} cycle overran the interval, "
                    f"skipping {missed} tick(s)"
                )

        logger.info(f"{self._name} stopped after {self.ticks} tick(s)")

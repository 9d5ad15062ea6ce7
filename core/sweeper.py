"""Periodic Sweeper - background expiry loop

Runs a sweep callback every `interval` seconds on a daemon thread.
Used by ContextResolver (stale conversations) and ConfirmationGate
(expired confirmations).

INVARIANT: Must NEVER break the caller. A failing sweep is logged and
the loop continues.
"""

import logging
import threading
from typing import Callable, Optional


class PeriodicSweeper:
    """Cancellable interval loop with explicit start/stop."""

    def __init__(self, name: str, interval: float, sweep: Callable[[], int]):
        self.name = name
        self.interval = interval
        self._sweep = sweep
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self):
        """Start the sweep loop (no-op when already running)."""
        if self.running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, name=f"sweeper-{self.name}", daemon=True)
        self._thread.start()
        logging.info(f"PeriodicSweeper[{self.name}] started (every {self.interval}s)")

    def stop(self, timeout: float = 2.0):
        """Stop the loop and wait for the thread to exit."""
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=timeout)
            self._thread = None
        logging.info(f"PeriodicSweeper[{self.name}] stopped")

    def _loop(self):
        # Event.wait doubles as an interruptible sleep
        while not self._stop_event.wait(self.interval):
            try:
                removed = self._sweep()
                if removed:
                    logging.debug(f"PeriodicSweeper[{self.name}] removed {removed} expired entries")
            except Exception as e:
                logging.debug(f"PeriodicSweeper[{self.name}] sweep failed: {e}")

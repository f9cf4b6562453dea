"""Interval timer running its callback on a background thread."""

import logging
import threading
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class RepeatingTimer:
    """Calls `callback` every `interval` seconds until cancelled."""

    def __init__(self, interval: float, callback: Callable[[], None], name: str = "RepeatingTimer"):
        self.interval = interval
        self.callback = callback
        self.name = name
        self.stop_event = threading.Event()
        self.thread: Optional[threading.Thread] = None

    @property
    def is_running(self) -> bool:
        return self.thread is not None and self.thread.is_alive() and not self.stop_event.is_set()

    def start(self) -> None:
        if self.is_running:
            return
        self.stop_event.clear()
        self.thread = threading.Thread(target=self._run, daemon=True)
        self.thread.name = self.name
        self.thread.start()
        logger.debug(f"Timer {self.name} armed: every {self.interval}s")

    def cancel(self, timeout: float = 2.0) -> None:
        """Stop future ticks and wait for a tick in progress to finish.

        Safe to call from inside the callback; the join is skipped then.
        """
        self.stop_event.set()
        thread = self.thread
        if thread and thread.is_alive() and thread is not threading.current_thread():
            thread.join(timeout=timeout)
            if thread.is_alive():
                logger.warning(f"Timer {self.name} did not stop cleanly")
        logger.debug(f"Timer {self.name} cancelled")

    def _run(self) -> None:
        while not self.stop_event.wait(self.interval):
            try:
                self.callback()
            except Exception as e:
                logger.error(f"Unhandled exception in timer {self.name}: {e}", exc_info=True)

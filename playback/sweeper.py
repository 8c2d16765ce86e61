"""
Session Expiry Sweeper

Runs the expiry sweep on a fixed interval in a background thread. The sweep
itself lives on PlaybackService (sweep_expired_sessions) and is safe to run
concurrently with itself and with request handlers; this class only
schedules it.
"""

import threading
from typing import Callable, Optional

from utils.logger import logger


class SessionSweeper:
    """
    Periodic background sweep.

    Usage:
        sweeper = SessionSweeper(service.sweep_expired_sessions, interval=60)
        sweeper.start()
        ...
        sweeper.stop()
    """

    def __init__(self, sweep: Callable[[], int], interval: float = 60):
        self._sweep = sweep
        self.interval = interval
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()
        self.runs = 0
        self.last_expired = 0

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        with self._lock:
            if self.is_running:
                return
            self._stop_event.clear()
            self._thread = threading.Thread(
                target=self._run,
                name="session-sweeper",
                daemon=True,
            )
            self._thread.start()
        logger.info(f"Session sweeper started (interval={self.interval}s)")

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        """Signal the loop to exit and wait for the current run to finish"""
        with self._lock:
            thread = self._thread
            self._stop_event.set()
            self._thread = None
        if thread is not None:
            thread.join(timeout)
            logger.info("Session sweeper stopped")

    def run_once(self) -> int:
        """Run a single sweep now. Returns the number of sessions expired"""
        expired = self._sweep()
        self.runs += 1
        self.last_expired = expired
        return expired

    def _run(self) -> None:
        # wait() returns True once stop() is called
        while not self._stop_event.wait(self.interval):
            try:
                self.run_once()
            except Exception as e:
                logger.exception(f"Session sweep failed: {e}")

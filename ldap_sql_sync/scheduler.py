"""
Fixed-interval scheduling of sync passes.

Passes never overlap: a tick that fires while a pass is still running is
skipped. Shutdown signals are observed between passes, so a running pass
always finishes its transaction.
"""

import signal
import logging
import threading
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


class SyncScheduler:
    """Runs a sync pass every ``interval`` seconds until stopped."""

    def __init__(self, run_pass: Callable[[], Any], interval: float,
                 shutdown_event: Optional[threading.Event] = None):
        """
        Initialize scheduler.

        Args:
            run_pass: Callable performing one sync pass
            interval: Seconds between the start of two ticks
            shutdown_event: Event signalling shutdown, created if not given
        """
        if interval <= 0:
            raise ValueError(f"Interval must be positive, got {interval}")

        self.run_pass = run_pass
        self.interval = interval
        self.shutdown_event = shutdown_event or threading.Event()
        self._pass_lock = threading.Lock()
        self.ticks_run = 0
        self.ticks_skipped = 0

    def install_signal_handlers(self):
        """Stop the loop on SIGINT and SIGTERM."""
        for signum in (signal.SIGINT, signal.SIGTERM):
            signal.signal(signum, self._handle_signal)

    def _handle_signal(self, signum, frame):
        logger.info(f"Received shutdown signal {signal.Signals(signum).name}")
        self.stop()

    def stop(self):
        self.shutdown_event.set()

    @property
    def stopped(self) -> bool:
        return self.shutdown_event.is_set()

    def tick(self) -> bool:
        """
        Run one pass unless another pass is still in progress.

        Returns:
            True if a pass was run, False if the tick was skipped
        """
        if not self._pass_lock.acquire(blocking=False):
            self.ticks_skipped += 1
            logger.warning("Previous sync pass still running, skipping this tick")
            return False

        try:
            self.run_pass()
        except Exception as e:
            logger.error(f"Sync pass failed: {e}")
        finally:
            self._pass_lock.release()

        self.ticks_run += 1
        return True

    def run_forever(self):
        """Wait one interval, run a pass, repeat until shutdown."""
        logger.info(f"Scheduling sync every {self.interval:g} seconds")

        while not self.shutdown_event.wait(self.interval):
            self.tick()

        logger.info("Scheduler stopped")

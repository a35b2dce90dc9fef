"""
=============================================================================
METRICS SAMPLER
=============================================================================

Debug-mode helper that logs the listener's open-connection count on a
fixed period.

    t=0          t=interval     t=2*interval
     │                │               │
   start()         sample          sample    ...   stop()
                (first one                          │
                 after a full                       └── thread exits
                 period)                                within one wait()

The sampler only READS a count through a callable, so connection handling
has no idea it exists. It runs in its own daemon thread and swallows its
own failures (after logging them): a broken sampler must never take a
connection down with it.

=============================================================================
"""

import logging
import threading
from typing import Callable, Optional

from .registry import MetricsSnapshot


logger = logging.getLogger(__name__)


class MetricsSampler(threading.Thread):
    """
    Periodically sample a MetricsSnapshot and emit it.

    Usage:
        sampler = MetricsSampler(registry.snapshot, interval=2.0)
        sampler.start()
        ...
        sampler.stop()
    """

    def __init__(
        self,
        source: Callable[[], MetricsSnapshot],
        interval: float = 2.0,
        on_sample: Optional[Callable[[MetricsSnapshot], None]] = None,
    ):
        """
        Args:
            source: Returns the current snapshot.
            interval: Seconds between samples, and before the first one.
            on_sample: Extra sink for each snapshot (tests, exporters).
        """
        super().__init__(name="MetricsSampler", daemon=True)

        if interval <= 0:
            raise ValueError("interval must be > 0")

        self.source = source
        self.interval = interval
        self.on_sample = on_sample
        self._stop_event = threading.Event()

        self.samples_taken = 0

    def run(self):
        logger.debug(f"Metrics sampler started (every {self.interval}s)")

        # wait() returns True as soon as stop() is called, so shutdown
        # never has to sit out a full interval.
        while not self._stop_event.wait(self.interval):
            try:
                self.sample()
            except Exception as e:
                logger.exception(f"Metrics sample failed: {e}")

        logger.debug("Metrics sampler stopped")

    def sample(self) -> MetricsSnapshot:
        """Take and emit one sample."""
        snapshot = self.source()
        self.samples_taken += 1

        logger.debug(f"open connections: {snapshot.open_connections}")

        if self.on_sample is not None:
            self.on_sample(snapshot)
        return snapshot

    def stop(self, timeout: Optional[float] = None):
        """Signal the sampler to stop and wait for the thread to exit."""
        self._stop_event.set()
        if self.is_alive() and threading.current_thread() is not self:
            self.join(timeout)

    @property
    def stopped(self) -> bool:
        return self._stop_event.is_set()

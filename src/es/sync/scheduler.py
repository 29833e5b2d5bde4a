"""Timer trigger: run the sync pipeline on a fixed interval in a background thread."""

from __future__ import annotations

import logging
import threading

from es.ledger.models import SyncTrigger
from es.orders.client import DEFAULT_LOOKBACK_MINUTES, SyncWindow
from es.sync.runner import SyncPipeline, SyncResult

logger = logging.getLogger(__name__)


class IntervalScheduler:
    """Fire a lookback sync every ``interval_minutes``.

    Failures are logged and the loop keeps going. The timer waits for the
    run-lock, so a manual run in progress delays the tick instead of
    skipping it.
    """

    def __init__(
        self,
        pipeline: SyncPipeline,
        interval_minutes: int = 15,
        lookback_minutes: int = DEFAULT_LOOKBACK_MINUTES,
    ) -> None:
        if interval_minutes <= 0:
            raise ValueError("interval_minutes must be positive")
        self.pipeline = pipeline
        self.interval_seconds = interval_minutes * 60
        self.lookback_minutes = lookback_minutes
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def run_once(self) -> SyncResult | None:
        """Run one timer-triggered sync; returns None if it failed."""
        try:
            window = SyncWindow.lookback(self.lookback_minutes)
            return self.pipeline.run(window, trigger=SyncTrigger.TIMER, wait=True)
        except Exception:
            logger.exception("Scheduled sync failed")
            return None

    def _loop(self) -> None:
        logger.info(
            "Scheduler started: every %d second(s), %d minute lookback",
            self.interval_seconds,
            self.lookback_minutes,
        )
        while not self._stop.wait(self.interval_seconds):
            self.run_once()
        logger.info("Scheduler stopped")

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="sync-scheduler", daemon=True)
        self._thread.start()

    def stop(self, timeout: float | None = 30.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

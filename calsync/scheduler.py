from __future__ import annotations

import logging
import threading
from typing import Optional

from calsync.config_manager import ConfigManager
from calsync.sync_engine import SyncEngine


logger = logging.getLogger(__name__)

MIN_INTERVAL_SECONDS = 30


class SyncScheduler:
    """Runs a pass at startup, then one per configured interval or on demand."""

    def __init__(self, sync_engine: SyncEngine, config_manager: ConfigManager) -> None:
        self.sync_engine = sync_engine
        self.config_manager = config_manager
        self._worker: Optional[threading.Thread] = None
        self._shutdown = threading.Event()
        self._wake = threading.Event()

    @property
    def running(self) -> bool:
        return self._worker is not None and self._worker.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._shutdown.clear()
        self._worker = threading.Thread(target=self._run_forever, name="calsync-scheduler", daemon=True)
        self._worker.start()
        logger.info("Scheduler started")

    def stop(self, timeout: float = 5) -> None:
        self._shutdown.set()
        self._wake.set()
        if self._worker is not None:
            self._worker.join(timeout=timeout)
            logger.info("Scheduler stopped")

    def trigger_manual(self) -> None:
        logger.info("Manual sync requested")
        self._wake.set()

    def _interval_seconds(self) -> int:
        config = self.config_manager.load()
        return max(MIN_INTERVAL_SECONDS, int(config.sync.interval_seconds))

    def _wait_for_trigger(self) -> str | None:
        interval = self._interval_seconds()
        logger.info("Next sync in %d seconds...", interval)
        woken = self._wake.wait(timeout=interval)
        self._wake.clear()
        if self._shutdown.is_set():
            return None
        return "manual" if woken else "scheduled"

    def _run_forever(self) -> None:
        trigger: str | None = "startup"
        while trigger is not None:
            self.sync_engine.run_once(trigger=trigger)
            trigger = self._wait_for_trigger()

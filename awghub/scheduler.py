import asyncio
import logging
import threading
from typing import Optional

from awghub.config import HubConfig
from awghub.logging.logger import DataLogger
from awghub.models import AggregationResult, CollectionState
from awghub.period_aggregator import MODE_INCREMENTAL
from awghub.pipeline import run_aggregation

log = logging.getLogger(__name__)


class AggregationScheduler:
    """
    Periodic trigger for the aggregation pipeline.

    Runs are serialized by a single-flight lock shared with on-demand runs
    (e.g. from the API): a tick that finds a run in progress is skipped
    rather than queued. The CollectionState lives here and is handed to
    every run.
    """

    def __init__(self, store: DataLogger, cfg: HubConfig, state: Optional[CollectionState] = None):
        self.store = store
        self.cfg = cfg
        self.state = state or CollectionState()
        self._lock = threading.Lock()
        self._stopped = False

    @property
    def running(self) -> bool:
        return self._lock.locked()

    def run_once(self, mode: str = MODE_INCREMENTAL, machine_id: Optional[str] = None) -> Optional[AggregationResult]:
        """Run the pipeline unless a run is already in progress; returns None when skipped."""
        if not self._lock.acquire(blocking=False):
            log.info("Aggregation already in progress, skipping")
            return None
        try:
            return run_aggregation(self.store, self.cfg, mode=mode, machine_id=machine_id, state=self.state)
        finally:
            self._lock.release()

    async def run(self):
        """Loop forever, one incremental run every `interval_minutes`."""
        interval_secs = self.cfg.aggregation.interval_minutes * 60
        log.info(f"Aggregation scheduler started (every {self.cfg.aggregation.interval_minutes} min)")
        while not self._stopped:
            try:
                result = await asyncio.to_thread(self.run_once, MODE_INCREMENTAL)
                if result is not None and not result.succeeded:
                    failed = [r.machine_id for r in result.results if r.status == "error"]
                    log.warning(f"Aggregation tick finished with failed machines: {', '.join(failed)}")
            except Exception as e:
                log.error(f"Aggregation tick failed: {e}", exc_info=True)
            if self._stopped:
                break
            await asyncio.sleep(interval_secs)
        log.info("Aggregation scheduler stopped")

    def stop(self):
        """Let the loop finish its current tick and exit."""
        self._stopped = True

"""
Entry point of an aggregation run over one or all machines.
"""

import logging
from datetime import datetime
from typing import Optional

from awghub.config import HubConfig
from awghub.event_detector import EventTracker
from awghub.logging.logger import DataLogger
from awghub.models import AggregationResult, CollectionState, MachineResult
from awghub.period_aggregator import MODE_INCREMENTAL, MODES, PeriodAggregator
from awghub.timezone_utils import now_utc, to_utc

log = logging.getLogger(__name__)


def run_aggregation(store: DataLogger, cfg: HubConfig, mode: str = MODE_INCREMENTAL,
                    machine_id: Optional[str] = None, state: Optional[CollectionState] = None,
                    now: Optional[datetime] = None) -> AggregationResult:
    """
    Track new events and recompute summaries for each machine.

    Machines are processed one after another; a failure is recorded in the
    machine's result and does not stop the others. Omitting `machine_id`
    processes every known machine.
    """
    if mode not in MODES:
        raise ValueError(f"Unknown aggregation mode: {mode}")
    now = to_utc(now) if now is not None else now_utc()
    if state is None:
        state = CollectionState()

    machine_ids = [machine_id] if machine_id else store.list_machines()
    tracker = EventTracker(store, cfg.detection)
    aggregator = PeriodAggregator(store, cfg)
    result = AggregationResult(mode=mode)

    log.info(f"Starting {mode} aggregation for {len(machine_ids)} machine(s)")
    for mid in machine_ids:
        try:
            tracked = tracker.track(mid, state, now=now)
            summaries = aggregator.aggregate(mid, mode, now=now)
            total = store.get_machine_total(mid)
            buckets = {}
            for s in summaries:
                buckets[s.period] = buckets.get(s.period, 0) + 1
            result.results.append(MachineResult(mid, "success", {
                "events_recorded": len(tracked.events),
                "invalid_rows": tracked.invalid_rows,
                "summaries_updated": len(summaries),
                "buckets": buckets,
                "total_production_liters": total.total_production_liters if total else 0.0,
            }))
            log.info(f"Aggregated {mid}: {len(summaries)} summaries, {len(tracked.events)} new event(s)")
        except Exception as e:
            log.error(f"Aggregation failed for machine {mid}: {e}", exc_info=True)
            result.results.append(MachineResult(mid, "error", str(e)))

    failed = sum(1 for r in result.results if r.status == "error")
    log.info(f"{mode.capitalize()} aggregation finished: {result.machines_processed} processed, {failed} failed")
    return result

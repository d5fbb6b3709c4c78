"""
Per-machine aggregation of events and status into day/week/month/year summaries.
"""

import logging
import math
from datetime import date, datetime, timedelta
from typing import List, Optional

from awghub.config import HubConfig
from awghub.logging.logger import DataLogger
from awghub.models import (
    EVENT_DRAINAGE,
    EVENT_PRODUCTION,
    MachineProductionTotal,
    PeriodSummary,
    parse_snapshots,
)
from awghub.periods import PERIOD_WEEK, PERIODS, iso_week, period_bounds, period_start
from awghub.status_classifier import StatusClassifier
from awghub.timezone_utils import now_utc, to_utc

log = logging.getLogger(__name__)

MODE_INCREMENTAL = "incremental"
MODE_BACKFILL = "backfill"
MODES = (MODE_INCREMENTAL, MODE_BACKFILL)


class PeriodAggregator:
    """Recomputes the summary buckets touched by recent events and the machine's lifetime total."""

    def __init__(self, store: DataLogger, cfg: Optional[HubConfig] = None):
        self.store = store
        self.cfg = cfg or HubConfig()
        self.classifier = StatusClassifier(self.cfg.status)

    def aggregate(self, machine_id: str, mode: str = MODE_INCREMENTAL,
                  now: Optional[datetime] = None) -> List[PeriodSummary]:
        if mode not in MODES:
            raise ValueError(f"Unknown aggregation mode: {mode}")
        now = to_utc(now) if now is not None else now_utc()

        since = self.resolve_since(machine_id, mode, now)
        events = self.store.get_events(machine_id, start=since) if since is not None else []
        log.info(f"Aggregating {machine_id} ({mode}) since "
                 f"{since.isoformat() if since else 'beginning'}: {len(events)} event(s)")

        summaries: List[PeriodSummary] = []
        for period in PERIODS:
            starts = sorted({period_start(e.timestamp_utc, period) for e in events})
            for start in starts:
                summary = self.compute_bucket(machine_id, period, start, now)
                self.store.upsert_period_summary(summary)
                summaries.append(summary)

        self.update_total(machine_id, now)
        return summaries

    def resolve_since(self, machine_id: str, mode: str, now: datetime) -> Optional[datetime]:
        """
        Lower bound of the events that decide which buckets to recompute.

        Backfill starts at the machine's earliest event. Incremental starts at
        the aggregation watermark, or the lookback window when there is none.
        """
        if mode == MODE_BACKFILL:
            return self.store.get_earliest_event_time(machine_id)
        total = self.store.get_machine_total(machine_id)
        if total is not None and total.last_event_time is not None:
            return total.last_event_time
        return now - timedelta(hours=self.cfg.aggregation.incremental_lookback_hours)

    def compute_bucket(self, machine_id: str, period: str, start: date,
                       now: Optional[datetime] = None) -> PeriodSummary:
        """Build the summary of one bucket from all of its events and raw snapshots."""
        span_start, span_end = period_bounds(start, period)

        events = self.store.get_events(machine_id, start=span_start, end=span_end)
        production = [e for e in events if e.event_type == EVENT_PRODUCTION]
        drainage_count = sum(1 for e in events if e.event_type == EVENT_DRAINAGE)

        rows = self.store.get_snapshot_rows(machine_id, start=span_start, end=span_end)
        snapshots, errors = parse_snapshots(rows)
        if errors:
            log.warning(f"{len(errors)} invalid snapshot row(s) skipped for {machine_id} {period} {start}")
        status = self.classifier.classify(snapshots, span_start, span_end, now=now)

        week_year = week_number = None
        if period == PERIOD_WEEK:
            week_year, week_number = iso_week(start)

        return PeriodSummary(
            machine_id=machine_id,
            period=period,
            period_start=start,
            total_production_liters=math.fsum(e.production_liters for e in production),
            production_events_count=len(production),
            drainage_events_count=drainage_count,
            status=status,
            first_event_time=events[0].timestamp_utc if events else None,
            last_event_time=events[-1].timestamp_utc if events else None,
            week_year=week_year,
            week_number=week_number,
        )

    def update_total(self, machine_id: str, now: datetime) -> MachineProductionTotal:
        """Write the lifetime production total and advance the aggregation watermark."""
        previous = self.store.get_machine_total(machine_id)
        lifetime = self.store.get_lifetime_production(machine_id)
        latest = self.store.get_latest_event(machine_id)

        if previous is not None and lifetime < previous.total_production_liters - 1e-9:
            log.warning(f"Lifetime production for {machine_id} decreased from "
                        f"{previous.total_production_liters:.3f}L to {lifetime:.3f}L; events were removed from the store")

        total = MachineProductionTotal(
            machine_id=machine_id,
            total_production_liters=lifetime,
            last_production_event_id=latest.id if latest else None,
            last_event_time=latest.timestamp_utc if latest else None,
            last_updated=now,
        )
        self.store.upsert_machine_total(total)
        return total

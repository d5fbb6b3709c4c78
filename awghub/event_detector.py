"""
Production / drainage event detection from consecutive water-level readings.

EventDetector is a pure classifier over snapshot pairs. EventTracker is the
polling job that walks new snapshots from the store through the detector and
persists the resulting events.
"""

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple

from awghub.config import DetectionConfig
from awghub.logging.logger import DataLogger
from awghub.models import (
    EVENT_DRAINAGE,
    EVENT_PRODUCTION,
    CollectionState,
    ProductionEvent,
    RawSnapshot,
    parse_snapshots,
)
from awghub.timezone_utils import now_utc, to_utc

log = logging.getLogger(__name__)

OUTCOME_PRODUCTION = "production"
OUTCOME_DRAINAGE = "drainage"
OUTCOME_NO_CHANGE = "no_change"
OUTCOME_UNREALISTIC_RATE = "unrealistic_rate"
OUTCOME_MISSING_LEVEL = "missing_level"
OUTCOME_STALE = "stale"

# Level readings are floats; 5.2 - 5.0 is not exactly 0.2
LEVEL_TOLERANCE = 1e-9


class EventDetector:
    def __init__(self, cfg: Optional[DetectionConfig] = None):
        self.cfg = cfg or DetectionConfig()

    def is_drainage(self, previous_level: float, current_level: float) -> bool:
        """Large absolute drop, or a drop of more than half the previous level."""
        decrease = previous_level - current_level
        if decrease > self.cfg.drainage_min_liters:
            return True
        if previous_level > 0:
            pct_decrease = decrease / previous_level * 100
            return pct_decrease > self.cfg.drainage_min_pct
        return False

    def is_valid_production(self, diff: float, time_diff_minutes: float) -> bool:
        max_expected = self.cfg.max_production_rate_l_per_min * time_diff_minutes
        return self._rose(diff) and diff <= max_expected + LEVEL_TOLERANCE

    def _rose(self, diff: float) -> bool:
        return diff > self.cfg.min_production_liters + LEVEL_TOLERANCE

    def classify(self, previous: RawSnapshot, current: RawSnapshot) -> Tuple[str, Optional[ProductionEvent]]:
        """
        Classify one transition.

        Returns the outcome name and the event, if the transition produced one.
        Drainage is checked before production so a pair never yields both.
        """
        if previous.water_level_liters is None or current.water_level_liters is None:
            return OUTCOME_MISSING_LEVEL, None

        prev_level = previous.water_level_liters
        cur_level = current.water_level_liters

        if self.is_drainage(prev_level, cur_level):
            return OUTCOME_DRAINAGE, self._event(current, EVENT_DRAINAGE, prev_level, cur_level)

        diff = cur_level - prev_level
        time_diff_minutes = (current.timestamp_utc - previous.timestamp_utc).total_seconds() / 60.0
        if self.is_valid_production(diff, time_diff_minutes):
            return OUTCOME_PRODUCTION, self._event(current, EVENT_PRODUCTION, prev_level, cur_level)

        if self._rose(diff):
            # Level rose faster than the machine can physically produce
            return OUTCOME_UNREALISTIC_RATE, None
        return OUTCOME_NO_CHANGE, None

    def detect(self, previous: RawSnapshot, current: RawSnapshot) -> Optional[ProductionEvent]:
        return self.classify(previous, current)[1]

    def is_fresh(self, snapshot: RawSnapshot, now: datetime) -> bool:
        age = to_utc(now) - snapshot.timestamp_utc
        return age <= timedelta(minutes=self.cfg.max_snapshot_age_minutes)

    @staticmethod
    def _event(current: RawSnapshot, event_type: str, prev_level: float, cur_level: float) -> ProductionEvent:
        return ProductionEvent(
            machine_id=current.machine_id,
            timestamp_utc=current.timestamp_utc,
            event_type=event_type,
            production_liters=cur_level - prev_level,
            previous_level=prev_level,
            current_level=cur_level,
        )


@dataclass
class TrackResult:
    machine_id: str
    events: List[ProductionEvent] = field(default_factory=list)
    outcomes: Dict[str, int] = field(default_factory=dict)
    invalid_rows: int = 0

    def to_dict(self) -> Dict[str, object]:
        return {
            "machine_id": self.machine_id,
            "events_recorded": len(self.events),
            "outcomes": dict(self.outcomes),
            "invalid_rows": self.invalid_rows,
        }


class EventTracker:
    """Detects events in snapshots that arrived since the last poll and stores them."""

    def __init__(self, store: DataLogger, cfg: Optional[DetectionConfig] = None):
        self.store = store
        self.detector = EventDetector(cfg)

    def track(self, machine_id: str, state: CollectionState, now: Optional[datetime] = None) -> TrackResult:
        now = to_utc(now) if now is not None else now_utc()
        result = TrackResult(machine_id=machine_id)

        watermark = state.last_fetched_timestamp.get(machine_id)
        if watermark is None:
            # Nothing older than the freshness window can yield an event
            cutoff = now - timedelta(minutes=self.detector.cfg.max_snapshot_age_minutes)
        else:
            cutoff = watermark

        rows = self.store.get_snapshot_rows_after(machine_id, cutoff)
        if not rows:
            log.debug(f"No new snapshots for {machine_id} since {cutoff.isoformat()}")
            return result

        previous_row = self.store.get_last_snapshot_row_before(machine_id, cutoff)
        if previous_row is not None:
            rows = [previous_row] + rows

        snapshots, errors = parse_snapshots(rows)
        result.invalid_rows = len(errors)
        outcomes: Counter = Counter()

        for previous, current in zip(snapshots, snapshots[1:]):
            if current.timestamp_utc <= cutoff:
                continue
            # Both ends of a pair must be fresh
            if not (self.detector.is_fresh(previous, now) and self.detector.is_fresh(current, now)):
                outcomes[OUTCOME_STALE] += 1
                continue

            outcome, event = self.detector.classify(previous, current)
            outcomes[outcome] += 1

            if outcome == OUTCOME_UNREALISTIC_RATE:
                minutes = (current.timestamp_utc - previous.timestamp_utc).total_seconds() / 60.0
                diff = current.water_level_liters - previous.water_level_liters
                log.warning(f"Unrealistic production rate for {machine_id}: {diff:.2f}L in {minutes:.0f} minutes")
            if event is None:
                continue

            if event.key in state.known_keys:
                log.debug(f"Event for {machine_id} at {event.timestamp_utc.isoformat()} already recorded")
                continue
            event_id = self.store.upsert_event(event)
            state.known_keys.add(event.key)
            result.events.append(event.model_copy(update={"id": event_id}))
            if event.event_type == EVENT_DRAINAGE:
                log.info(f"Drainage event for {machine_id}: {abs(event.production_liters):.2f}L removed")
            else:
                log.info(f"Water production for {machine_id}: {event.production_liters:.2f}L")

        if outcomes[OUTCOME_STALE]:
            log.warning(f"Skipped {outcomes[OUTCOME_STALE]} stale snapshot(s) for {machine_id} "
                        f"(older than {self.detector.cfg.max_snapshot_age_minutes} minutes)")

        if snapshots:
            newest = snapshots[-1].timestamp_utc
            if watermark is None or newest > watermark:
                state.last_fetched_timestamp[machine_id] = newest

        state.forget_keys(machine_id, cutoff)

        result.outcomes = dict(outcomes)
        return result

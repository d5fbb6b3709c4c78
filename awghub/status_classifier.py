"""
Status classification of a machine over a time window.

Every second of the window is attributed to exactly one state:
- full_water:   the record reports a full tank
- producing:    the record reports water production or a running compressor
- idle:         any other record
- disconnected: time before the first record, and the unexplained part of
                gaps longer than the gap threshold

Each record covers the time until the next record. A gap above the threshold
gives one nominal sampling interval to the record's state and the remainder
to disconnected. The last record runs to the effective end of the window.
"""

import logging
from datetime import datetime
from typing import Iterable, List, Optional

import numpy as np
import pandas as pd

from awghub.config import StatusConfig
from awghub.models import RawSnapshot, StatusPercentages
from awghub.timezone_utils import now_utc, to_utc

log = logging.getLogger(__name__)

STATE_PRODUCING = "producing"
STATE_IDLE = "idle"
STATE_FULL_WATER = "full_water"
STATE_DISCONNECTED = "disconnected"


def record_state(snapshot: RawSnapshot) -> str:
    """State of a single record: full tank wins over production, production over idle."""
    if snapshot.full_tank:
        return STATE_FULL_WATER
    if snapshot.producing_water or snapshot.compressor_on:
        return STATE_PRODUCING
    return STATE_IDLE


class StatusClassifier:
    def __init__(self, cfg: Optional[StatusConfig] = None):
        self.cfg = cfg or StatusConfig()

    def classify(self, records: Iterable[RawSnapshot], window_start: datetime, window_end: datetime,
                 now: Optional[datetime] = None) -> StatusPercentages:
        window_start = to_utc(window_start)
        window_end = to_utc(window_end)
        if window_end <= window_start:
            return StatusPercentages.empty()

        now = to_utc(now) if now is not None else now_utc()
        effective_end = min(window_end, now)
        if effective_end <= window_start:
            return StatusPercentages.empty()

        in_window = [r for r in records if window_start <= r.timestamp_utc < effective_end]
        if not in_window:
            return StatusPercentages.empty()

        seconds = self.state_seconds(in_window, window_start, effective_end)
        total = (effective_end - window_start).total_seconds()
        return StatusPercentages.from_unrounded({k: v / total * 100.0 for k, v in seconds.items()})

    def state_seconds(self, records: List[RawSnapshot], window_start: datetime,
                      effective_end: datetime) -> dict:
        """Seconds attributed to each state; records must lie inside [window_start, effective_end)."""
        df = pd.DataFrame({
            'offset_secs': [(r.timestamp_utc - window_start).total_seconds() for r in records],
            'state': [record_state(r) for r in records],
        })
        df = df.sort_values('offset_secs', kind='mergesort').reset_index(drop=True)

        end_secs = (effective_end - window_start).total_seconds()
        df['gap_secs'] = df['offset_secs'].shift(-1).fillna(end_secs) - df['offset_secs']

        threshold_secs = self.cfg.gap_threshold_minutes * 60.0
        interval_secs = self.cfg.sampling_interval_secs
        is_gap = np.array(df['gap_secs'] > threshold_secs, dtype=bool)
        is_gap[-1] = False  # last record runs to the end of the window

        df['state_secs'] = np.where(is_gap, interval_secs, df['gap_secs'])
        df['disconnected_secs'] = np.where(is_gap, df['gap_secs'] - interval_secs, 0.0)

        by_state = df.groupby('state')['state_secs'].sum()
        leading_secs = float(df['offset_secs'].iloc[0])

        seconds = {
            STATE_PRODUCING: float(by_state.get(STATE_PRODUCING, 0.0)),
            STATE_IDLE: float(by_state.get(STATE_IDLE, 0.0)),
            STATE_FULL_WATER: float(by_state.get(STATE_FULL_WATER, 0.0)),
            STATE_DISCONNECTED: float(df['disconnected_secs'].sum()) + leading_secs,
        }
        log.debug(f"Status seconds over {len(df)} records: {seconds}")
        return seconds

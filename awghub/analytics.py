"""
Read side of the pipeline: chart series built from stored summaries.
"""

import logging
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from awghub.config import HubConfig
from awghub.logging.logger import DataLogger
from awghub.models import StatusPoint, parse_snapshots
from awghub.periods import (
    PERIOD_DAY,
    PERIOD_MONTH,
    PERIOD_WEEK,
    PERIOD_YEAR,
    period_bounds,
    period_label,
)
from awghub.rollup import monthly_from_weekly, weekly_from_daily, yearly_from_monthly
from awghub.status_classifier import StatusClassifier
from awghub.timezone_utils import now_utc, to_utc

log = logging.getLogger(__name__)

_SERIES = (
    ("daily", PERIOD_DAY, "daily_points"),
    ("weekly", PERIOD_WEEK, "weekly_points"),
    ("monthly", PERIOD_MONTH, "monthly_points"),
    ("yearly", PERIOD_YEAR, "yearly_points"),
)


def _status_entry(period: str, start: date, status) -> Dict[str, Any]:
    return {"label": period_label(start, period), "period_start": start.isoformat(), **status.as_dict()}


class ProductionAnalytics:
    def __init__(self, store: DataLogger, cfg: Optional[HubConfig] = None):
        self.store = store
        self.cfg = cfg or HubConfig()
        self.classifier = StatusClassifier(self.cfg.status)

    def _limit(self, attr: str) -> int:
        return getattr(self.cfg.analytics, attr)

    def get_production_analytics(self, machine_id: str) -> Dict[str, Any]:
        """Most recent production per granularity (chronological) and the lifetime total."""
        result: Dict[str, Any] = {"machine_id": machine_id}
        for name, period, limit_attr in _SERIES:
            rows = self.store.get_period_summaries(machine_id, period, limit=self._limit(limit_attr))
            result[name] = [
                {
                    "label": period_label(s.period_start, period),
                    "period_start": s.period_start.isoformat(),
                    "production": s.total_production_liters,
                    "production_events": s.production_events_count,
                    "drainage_events": s.drainage_events_count,
                }
                for s in rows
            ]
        total = self.store.get_machine_total(machine_id)
        result["total_all_time_production"] = total.total_production_liters if total else 0.0
        return result

    def get_status_analytics(self, machine_id: str) -> Dict[str, Any]:
        """
        Stored status percentages per granularity, plus the weekly/monthly/yearly
        series re-derived from the stored daily rows by averaging.

        The derived series lets clients compare the averaged approximation
        against the buckets recomputed from raw snapshots.
        """
        result: Dict[str, Any] = {"machine_id": machine_id}
        for name, period, limit_attr in _SERIES:
            rows = self.store.get_period_summaries(machine_id, period, limit=self._limit(limit_attr))
            result[name] = [_status_entry(period, s.period_start, s.status) for s in rows]

        daily = [StatusPoint(s.period_start, s.status)
                 for s in self.store.get_period_summaries(machine_id, PERIOD_DAY)]
        weekly = weekly_from_daily(daily)
        monthly = monthly_from_weekly(weekly)
        yearly = yearly_from_monthly(monthly)
        result["derived"] = {
            "weekly": self._tail(weekly, PERIOD_WEEK, "weekly_points"),
            "monthly": self._tail(monthly, PERIOD_MONTH, "monthly_points"),
            "yearly": self._tail(yearly, PERIOD_YEAR, "yearly_points"),
        }
        return result

    def _tail(self, points: List[StatusPoint], period: str, limit_attr: str) -> List[Dict[str, Any]]:
        return [_status_entry(period, p.period_start, p.status) for p in points[-self._limit(limit_attr):]]

    def get_live_status(self, machine_id: str, day: Optional[date] = None,
                        now: Optional[datetime] = None) -> Dict[str, Any]:
        """Classify a UTC day straight from raw snapshots, up to `now` for the current day."""
        now = to_utc(now) if now is not None else now_utc()
        if day is None:
            day = now.date()
        start, end = period_bounds(day, PERIOD_DAY)
        snapshots, errors = parse_snapshots(self.store.get_snapshot_rows(machine_id, start=start, end=end))
        status = self.classifier.classify(snapshots, start, end, now=now)
        return {
            "machine_id": machine_id,
            "date": day.isoformat(),
            "records": len(snapshots),
            "invalid_records": len(errors),
            **status.as_dict(),
        }

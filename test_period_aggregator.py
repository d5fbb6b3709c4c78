"""
Unit tests for period bucket aggregation and machine totals
"""

from datetime import date, datetime, timezone

import pytest

from awghub.config import HubConfig
from awghub.errors import StorageWriteError
from awghub.logging.logger import DataLogger
from awghub.models import ProductionEvent, RawSnapshot
from awghub.period_aggregator import PeriodAggregator
from awghub.periods import PERIODS

MACHINE = "AWG-1"


def ts(day, hour, minute=0):
    return datetime(2025, 3, day, hour, minute, tzinfo=timezone.utc)


def event(when, event_type, liters, prev=5.0):
    return ProductionEvent(
        machine_id=MACHINE, timestamp_utc=when, event_type=event_type,
        production_liters=liters, previous_level=prev, current_level=prev + liters,
    )


def populate(store):
    store.insert_snapshots([
        RawSnapshot(machine_id=MACHINE, timestamp_utc=ts(3, 8), water_level_liters=5.0, producing_water=True),
        RawSnapshot(machine_id=MACHINE, timestamp_utc=ts(5, 9), water_level_liters=1.0),
    ])
    store.upsert_event(event(ts(3, 8, 10), "production", 0.3))
    store.upsert_event(event(ts(3, 8, 20), "drainage", -4.3, prev=5.3))
    store.upsert_event(event(ts(5, 9, 10), "production", 0.2, prev=1.0))


def all_summaries(store):
    return {p: store.get_period_summaries(MACHINE, p) for p in PERIODS}


@pytest.fixture
def cfg():
    return HubConfig()


@pytest.fixture
def store(tmp_path):
    store = DataLogger(str(tmp_path / "awg.db"))
    populate(store)
    return store


class TestBackfill:

    def test_creates_buckets_with_events(self, store, cfg):
        summaries = PeriodAggregator(store, cfg).aggregate(MACHINE, "backfill", now=ts(10, 0))

        assert len(summaries) == 5
        days = store.get_period_summaries(MACHINE, "day")
        assert [s.period_start for s in days] == [date(2025, 3, 3), date(2025, 3, 5)]
        assert days[0].total_production_liters == pytest.approx(0.3)
        assert days[0].production_events_count == 1
        assert days[0].drainage_events_count == 1
        assert days[0].first_event_time == ts(3, 8, 10)
        assert days[0].last_event_time == ts(3, 8, 20)

        weeks = store.get_period_summaries(MACHINE, "week")
        assert len(weeks) == 1
        assert weeks[0].period_start == date(2025, 3, 3)
        assert (weeks[0].week_year, weeks[0].week_number) == (2025, 10)
        assert weeks[0].total_production_liters == pytest.approx(0.5)
        assert weeks[0].production_events_count == 2

        assert store.get_period_summaries(MACHINE, "month")[0].period_start == date(2025, 3, 1)
        assert store.get_period_summaries(MACHINE, "year")[0].period_start == date(2025, 1, 1)

    def test_status_from_raw_snapshots(self, store, cfg):
        PeriodAggregator(store, cfg).aggregate(MACHINE, "backfill", now=ts(10, 0))

        day = store.get_period_summaries(MACHINE, "day")[0]
        # 08:00 producing record runs to midnight; earlier time is disconnected
        assert day.status.producing == 67.0
        assert day.status.disconnected == 33.0
        assert day.status.total == 100.0

    def test_machine_total(self, store, cfg):
        PeriodAggregator(store, cfg).aggregate(MACHINE, "backfill", now=ts(10, 0))

        total = store.get_machine_total(MACHINE)
        latest = store.get_events(MACHINE)[-1]
        assert total.total_production_liters == pytest.approx(0.5)
        assert total.last_production_event_id == latest.id
        assert total.last_event_time == ts(5, 9, 10)
        assert total.last_updated == ts(10, 0)

    def test_idempotent(self, store, cfg):
        aggregator = PeriodAggregator(store, cfg)
        aggregator.aggregate(MACHINE, "backfill", now=ts(10, 0))
        first = all_summaries(store)

        aggregator.aggregate(MACHINE, "backfill", now=ts(10, 0))

        assert all_summaries(store) == first

    def test_no_events(self, tmp_path, cfg):
        store = DataLogger(str(tmp_path / "empty.db"))

        assert PeriodAggregator(store, cfg).aggregate(MACHINE, "backfill", now=ts(10, 0)) == []
        assert store.get_machine_total(MACHINE).total_production_liters == 0.0


class TestIncremental:

    def test_lookback_without_watermark(self, store, cfg):
        summaries = PeriodAggregator(store, cfg).aggregate(MACHINE, "incremental", now=ts(5, 12))

        assert {(s.period, s.period_start) for s in summaries} == {
            ("day", date(2025, 3, 5)),
            ("week", date(2025, 3, 3)),
            ("month", date(2025, 3, 1)),
            ("year", date(2025, 1, 1)),
        }
        # Week counts come from every event in the week, not just the recent ones
        week = store.get_period_summaries(MACHINE, "week")[0]
        assert week.production_events_count == 2
        assert week.drainage_events_count == 1

    def test_converges_with_backfill(self, store, cfg, tmp_path):
        reference = DataLogger(str(tmp_path / "reference.db"))
        populate(reference)
        now = ts(5, 12)

        PeriodAggregator(store, cfg).aggregate(MACHINE, "incremental", now=now)
        PeriodAggregator(reference, cfg).aggregate(MACHINE, "backfill", now=now)

        incremental = all_summaries(store)
        backfill = all_summaries(reference)
        for period in PERIODS:
            backfill_by_start = {s.period_start: s for s in backfill[period]}
            for summary in incremental[period]:
                assert summary == backfill_by_start[summary.period_start]

    def test_watermark_picks_up_new_events(self, store, cfg):
        aggregator = PeriodAggregator(store, cfg)
        aggregator.aggregate(MACHINE, "backfill", now=ts(10, 0))
        before = store.get_machine_total(MACHINE).total_production_liters

        store.upsert_event(event(ts(6, 7), "production", 0.4, prev=1.2))
        summaries = aggregator.aggregate(MACHINE, "incremental", now=ts(10, 0))

        assert ("day", date(2025, 3, 6)) in {(s.period, s.period_start) for s in summaries}
        week = store.get_period_summaries(MACHINE, "week")[0]
        assert week.total_production_liters == pytest.approx(0.9)
        after = store.get_machine_total(MACHINE).total_production_liters
        assert after >= before
        assert after == pytest.approx(0.9)
        assert store.get_machine_total(MACHINE).last_event_time == ts(6, 7)


class TestErrors:

    def test_unknown_mode(self, store, cfg):
        with pytest.raises(ValueError):
            PeriodAggregator(store, cfg).aggregate(MACHINE, "full")

    def test_write_failure_propagates(self, store, cfg, monkeypatch):
        def failing_upsert(summary):
            raise StorageWriteError("disk full")

        monkeypatch.setattr(store, "upsert_period_summary", failing_upsert)

        with pytest.raises(StorageWriteError):
            PeriodAggregator(store, cfg).aggregate(MACHINE, "backfill", now=ts(10, 0))
        assert store.get_machine_total(MACHINE) is None

    def test_bucket_span_excludes_neighbours(self, store, cfg):
        summary = PeriodAggregator(store, cfg).compute_bucket(MACHINE, "day", date(2025, 3, 4), now=ts(10, 0))

        assert summary.production_events_count == 0
        assert summary.total_production_liters == 0.0
        assert summary.first_event_time is None
        assert summary.status.disconnected == 100.0

"""
Tests for the SQLite store
"""

from datetime import datetime, timedelta, timezone

import pytest

from awghub.logging.logger import DataLogger
from awghub.models import ProductionEvent, RawSnapshot

T0 = datetime(2025, 3, 5, 8, 0, tzinfo=timezone.utc)


@pytest.fixture
def store(tmp_path):
    return DataLogger(str(tmp_path / "nested" / "awg.db"))


def event(minutes, event_type="production", liters=0.2):
    return ProductionEvent(
        machine_id="AWG-1", timestamp_utc=T0 + timedelta(minutes=minutes), event_type=event_type,
        production_liters=liters, previous_level=5.0, current_level=5.0 + liters,
    )


class TestMachines:

    def test_registered_and_reporting_machines(self, store):
        store.add_machine("AWG-2", "Warehouse")
        store.insert_snapshot({"machine_id": "AWG-1", "timestamp_utc": "2025-03-05T08:00:00Z"})

        assert store.list_machines() == ["AWG-1", "AWG-2"]
        assert store.get_machines() == [
            {"machine_id": "AWG-1", "name": None},
            {"machine_id": "AWG-2", "name": "Warehouse"},
        ]

    def test_reregistering_keeps_name(self, store):
        store.add_machine("AWG-1", "Roof")
        store.add_machine("AWG-1")

        assert store.get_machines() == [{"machine_id": "AWG-1", "name": "Roof"}]


class TestSnapshots:

    def test_range_queries(self, store):
        store.insert_snapshots([
            RawSnapshot(machine_id="AWG-1", timestamp_utc=T0 + timedelta(minutes=m), water_level_liters=float(m))
            for m in (0, 10, 20)
        ])

        rows = store.get_snapshot_rows("AWG-1", start=T0, end=T0 + timedelta(minutes=20))
        assert [r["water_level_l"] for r in rows] == [0.0, 10.0]
        after = store.get_snapshot_rows_after("AWG-1", T0 + timedelta(minutes=10))
        assert [r["water_level_l"] for r in after] == [20.0]
        before = store.get_last_snapshot_row_before("AWG-1", T0 + timedelta(minutes=10))
        assert before["water_level_l"] == 10.0
        assert store.get_last_snapshot_row_before("AWG-1", T0 - timedelta(minutes=1)) is None
        assert store.get_earliest_snapshot_time("AWG-1") == T0
        assert store.get_earliest_snapshot_time("AWG-9") is None

    def test_same_timestamp_replaces(self, store):
        store.insert_snapshot(RawSnapshot(machine_id="AWG-1", timestamp_utc=T0, water_level_liters=1.0))
        store.insert_snapshot(RawSnapshot(machine_id="AWG-1", timestamp_utc=T0, water_level_liters=2.0))

        rows = store.get_snapshot_rows("AWG-1")
        assert len(rows) == 1
        assert rows[0]["water_level_l"] == 2.0


class TestEvents:

    def test_upsert_keeps_id(self, store):
        first = store.upsert_event(event(0, liters=0.2))
        again = store.upsert_event(event(0, liters=0.3))

        assert first == again
        events = store.get_events("AWG-1")
        assert len(events) == 1
        assert events[0].production_liters == pytest.approx(0.3)

    def test_queries(self, store):
        store.upsert_event(event(0, liters=0.2))
        store.upsert_event(event(10, event_type="drainage", liters=-4.0))
        store.upsert_event(event(20, liters=0.1))

        assert len(store.get_events("AWG-1", event_type="drainage")) == 1
        assert len(store.get_events("AWG-1", start=T0 + timedelta(minutes=10))) == 2
        assert store.get_earliest_event_time("AWG-1") == T0
        assert store.get_latest_event("AWG-1").timestamp_utc == T0 + timedelta(minutes=20)
        assert store.get_lifetime_production("AWG-1") == pytest.approx(0.3)
        assert store.get_lifetime_production("AWG-9") == 0.0

import sqlite3
import os
import logging
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from awghub.errors import DataSourceError, StorageWriteError
from awghub.models import MachineProductionTotal, PeriodSummary, ProductionEvent, RawSnapshot, StatusPercentages
from awghub.timezone_utils import ensure_utc, format_utc_for_db, now_utc

log = logging.getLogger(__name__)

_SNAPSHOT_COLUMNS = "machine_id, timestamp_utc, water_level_l, producing_water, compressor_on, full_tank"
_EVENT_COLUMNS = "id, machine_id, timestamp_utc, event_type, production_liters, previous_level, current_level"
_SUMMARY_COLUMNS = (
    "machine_id, period, period_start, total_production_liters, production_events_count, "
    "drainage_events_count, producing_pct, idle_pct, full_water_pct, disconnected_pct, "
    "first_event_time, last_event_time, week_year, week_number"
)


def _db_time(value: Union[str, datetime]) -> str:
    return format_utc_for_db(ensure_utc(value))


def _opt_db_time(value: Optional[datetime]) -> Optional[str]:
    return _db_time(value) if value is not None else None


class DataLogger:
    """
    SQLite store for AWG telemetry snapshots, production events and
    aggregated summaries.

    Read methods raise DataSourceError and write methods raise
    StorageWriteError when the underlying query fails.
    """

    def __init__(self, path: str = None):
        if path is None:
            base = os.path.expanduser("~/.awghub")   # inside user home
            os.makedirs(base, exist_ok=True)
            path = os.path.join(base, "awghub.db")
        else:
            path = os.path.expanduser(path)
            parent = os.path.dirname(path)
            if parent:
                os.makedirs(parent, exist_ok=True)
        self.path = path
        self._init()

    def _connect(self) -> sqlite3.Connection:
        con = sqlite3.connect(self.path)
        con.row_factory = sqlite3.Row
        return con

    def _init(self):
        log.info(f"Initializing database at: {self.path}")
        con = sqlite3.connect(self.path)
        try:
            cur = con.cursor()
            cur.execute("""
                CREATE TABLE IF NOT EXISTS machines (
                    machine_id TEXT PRIMARY KEY,
                    name TEXT,
                    created_at TEXT NOT NULL
                )
            """)
            cur.execute("""
                CREATE TABLE IF NOT EXISTS raw_machine_data (
                    machine_id TEXT NOT NULL,
                    timestamp_utc TEXT NOT NULL,
                    water_level_l REAL,
                    producing_water INTEGER NOT NULL DEFAULT 0,
                    compressor_on INTEGER NOT NULL DEFAULT 0,
                    full_tank INTEGER NOT NULL DEFAULT 0,
                    PRIMARY KEY (machine_id, timestamp_utc)
                )
            """)
            cur.execute("""
                CREATE TABLE IF NOT EXISTS water_production_events (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    machine_id TEXT NOT NULL,
                    timestamp_utc TEXT NOT NULL,
                    event_type TEXT NOT NULL CHECK (event_type IN ('production', 'drainage')),
                    production_liters REAL NOT NULL,
                    previous_level REAL NOT NULL,
                    current_level REAL NOT NULL,
                    UNIQUE (machine_id, timestamp_utc)
                )
            """)
            cur.execute("""
                CREATE TABLE IF NOT EXISTS production_summary (
                    machine_id TEXT NOT NULL,
                    period TEXT NOT NULL CHECK (period IN ('day', 'week', 'month', 'year')),
                    period_start TEXT NOT NULL,
                    total_production_liters REAL NOT NULL DEFAULT 0,
                    production_events_count INTEGER NOT NULL DEFAULT 0,
                    drainage_events_count INTEGER NOT NULL DEFAULT 0,
                    producing_pct REAL NOT NULL DEFAULT 0,
                    idle_pct REAL NOT NULL DEFAULT 0,
                    full_water_pct REAL NOT NULL DEFAULT 0,
                    disconnected_pct REAL NOT NULL DEFAULT 100,
                    first_event_time TEXT,
                    last_event_time TEXT,
                    week_year INTEGER,
                    week_number INTEGER,
                    PRIMARY KEY (machine_id, period, period_start)
                )
            """)
            cur.execute("""
                CREATE TABLE IF NOT EXISTS machine_production_totals (
                    machine_id TEXT PRIMARY KEY,
                    total_production_liters REAL NOT NULL DEFAULT 0,
                    last_production_event_id INTEGER,
                    last_event_time TEXT,
                    last_updated TEXT NOT NULL
                )
            """)
            cur.execute("CREATE INDEX IF NOT EXISTS idx_events_machine_ts ON water_production_events(machine_id, timestamp_utc)")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_summary_machine_period ON production_summary(machine_id, period, period_start)")
            con.commit()
        finally:
            con.close()

    # ------------------------------------------------------------------ machines

    def add_machine(self, machine_id: str, name: Optional[str] = None):
        """Register a machine; re-registering keeps the existing name unless a new one is given."""
        con = self._connect()
        try:
            con.execute(
                "INSERT INTO machines(machine_id, name, created_at) VALUES(?,?,?)\n"
                "ON CONFLICT(machine_id) DO UPDATE SET name=COALESCE(excluded.name, machines.name)",
                (machine_id, name, now_utc().isoformat())
            )
            con.commit()
        except sqlite3.Error as e:
            log.error(f"Failed to register machine {machine_id}: {e}")
            raise StorageWriteError(f"Failed to register machine {machine_id}: {e}") from e
        finally:
            con.close()

    def list_machines(self) -> List[str]:
        """Ids of every known machine: registered ones plus any that have reported telemetry."""
        con = self._connect()
        try:
            rows = con.execute("""
                SELECT machine_id FROM machines
                UNION
                SELECT DISTINCT machine_id FROM raw_machine_data
                ORDER BY machine_id
            """).fetchall()
            return [row[0] for row in rows]
        except sqlite3.Error as e:
            raise DataSourceError(f"Failed to list machines: {e}") from e
        finally:
            con.close()

    def get_machines(self) -> List[Dict[str, Any]]:
        con = self._connect()
        try:
            rows = con.execute("""
                SELECT ids.machine_id, m.name
                FROM (SELECT machine_id FROM machines UNION SELECT DISTINCT machine_id FROM raw_machine_data) ids
                LEFT JOIN machines m ON m.machine_id = ids.machine_id
                ORDER BY ids.machine_id
            """).fetchall()
            return [{"machine_id": row[0], "name": row[1]} for row in rows]
        except sqlite3.Error as e:
            raise DataSourceError(f"Failed to list machines: {e}") from e
        finally:
            con.close()

    # ----------------------------------------------------------------- snapshots

    def insert_snapshot(self, snapshot: Union[RawSnapshot, Mapping[str, Any]]):
        self.insert_snapshots([snapshot])

    def insert_snapshots(self, snapshots: Iterable[Union[RawSnapshot, Mapping[str, Any]]]) -> int:
        """Store telemetry snapshots (INSERT OR REPLACE on machine id and timestamp)."""
        rows = []
        for snap in snapshots:
            if not isinstance(snap, RawSnapshot):
                snap = RawSnapshot.model_validate(dict(snap))
            rows.append((
                snap.machine_id,
                format_utc_for_db(snap.timestamp_utc),
                snap.water_level_liters,
                int(snap.producing_water),
                int(snap.compressor_on),
                int(snap.full_tank),
            ))
        if not rows:
            return 0
        con = self._connect()
        try:
            con.executemany(
                f"INSERT OR REPLACE INTO raw_machine_data ({_SNAPSHOT_COLUMNS}) VALUES (?,?,?,?,?,?)",
                rows
            )
            con.commit()
            log.debug(f"Inserted {len(rows)} snapshots")
            return len(rows)
        except sqlite3.Error as e:
            log.error(f"Failed to insert snapshots: {e}")
            raise StorageWriteError(f"Failed to insert snapshots: {e}") from e
        finally:
            con.close()

    def get_snapshot_rows(self, machine_id: str, start: Optional[datetime] = None,
                          end: Optional[datetime] = None) -> List[Dict[str, Any]]:
        """
        Raw snapshot rows for a machine in [start, end), ascending by timestamp.

        Rows are returned unvalidated; callers pass them through parse_snapshots.
        """
        sql = f"SELECT {_SNAPSHOT_COLUMNS} FROM raw_machine_data WHERE machine_id = ?"
        params: List[Any] = [machine_id]
        if start is not None:
            sql += " AND timestamp_utc >= ?"
            params.append(_db_time(start))
        if end is not None:
            sql += " AND timestamp_utc < ?"
            params.append(_db_time(end))
        sql += " ORDER BY timestamp_utc ASC"
        con = self._connect()
        try:
            return [dict(row) for row in con.execute(sql, params).fetchall()]
        except sqlite3.Error as e:
            raise DataSourceError(f"Failed to read snapshots for {machine_id}: {e}") from e
        finally:
            con.close()

    def get_snapshot_rows_after(self, machine_id: str, after: datetime) -> List[Dict[str, Any]]:
        """Snapshot rows strictly newer than `after`, ascending."""
        con = self._connect()
        try:
            rows = con.execute(
                f"SELECT {_SNAPSHOT_COLUMNS} FROM raw_machine_data "
                "WHERE machine_id = ? AND timestamp_utc > ? ORDER BY timestamp_utc ASC",
                (machine_id, _db_time(after))
            ).fetchall()
            return [dict(row) for row in rows]
        except sqlite3.Error as e:
            raise DataSourceError(f"Failed to read snapshots for {machine_id}: {e}") from e
        finally:
            con.close()

    def get_last_snapshot_row_before(self, machine_id: str, before: datetime) -> Optional[Dict[str, Any]]:
        """The newest snapshot row at or before `before`, if any."""
        con = self._connect()
        try:
            row = con.execute(
                f"SELECT {_SNAPSHOT_COLUMNS} FROM raw_machine_data "
                "WHERE machine_id = ? AND timestamp_utc <= ? ORDER BY timestamp_utc DESC LIMIT 1",
                (machine_id, _db_time(before))
            ).fetchone()
            return dict(row) if row else None
        except sqlite3.Error as e:
            raise DataSourceError(f"Failed to read snapshots for {machine_id}: {e}") from e
        finally:
            con.close()

    def get_earliest_snapshot_time(self, machine_id: str) -> Optional[datetime]:
        return self._scalar_time(
            "SELECT MIN(timestamp_utc) FROM raw_machine_data WHERE machine_id = ?", machine_id)

    # -------------------------------------------------------------------- events

    def upsert_event(self, event: ProductionEvent) -> int:
        """
        Insert or update an event keyed on (machine_id, timestamp_utc).

        The row id stays stable on conflict. Returns the id.
        """
        ts = format_utc_for_db(event.timestamp_utc)
        con = self._connect()
        try:
            cur = con.cursor()
            cur.execute("""
                INSERT INTO water_production_events
                (machine_id, timestamp_utc, event_type, production_liters, previous_level, current_level)
                VALUES (?,?,?,?,?,?)
                ON CONFLICT(machine_id, timestamp_utc) DO UPDATE SET
                    event_type = excluded.event_type,
                    production_liters = excluded.production_liters,
                    previous_level = excluded.previous_level,
                    current_level = excluded.current_level
            """, (event.machine_id, ts, event.event_type, event.production_liters,
                  event.previous_level, event.current_level))
            event_id = cur.execute(
                "SELECT id FROM water_production_events WHERE machine_id = ? AND timestamp_utc = ?",
                (event.machine_id, ts)
            ).fetchone()[0]
            con.commit()
            log.debug(f"Upserted {event.event_type} event {event_id} for {event.machine_id} at {ts}")
            return event_id
        except sqlite3.Error as e:
            log.error(f"Failed to upsert event for {event.machine_id} at {ts}: {e}")
            raise StorageWriteError(f"Failed to upsert event for {event.machine_id}: {e}") from e
        finally:
            con.close()

    def get_events(self, machine_id: str, start: Optional[datetime] = None, end: Optional[datetime] = None,
                   event_type: Optional[str] = None) -> List[ProductionEvent]:
        """Events for a machine in [start, end), ascending by timestamp."""
        sql = f"SELECT {_EVENT_COLUMNS} FROM water_production_events WHERE machine_id = ?"
        params: List[Any] = [machine_id]
        if start is not None:
            sql += " AND timestamp_utc >= ?"
            params.append(_db_time(start))
        if end is not None:
            sql += " AND timestamp_utc < ?"
            params.append(_db_time(end))
        if event_type is not None:
            sql += " AND event_type = ?"
            params.append(event_type)
        sql += " ORDER BY timestamp_utc ASC, id ASC"
        con = self._connect()
        try:
            rows = con.execute(sql, params).fetchall()
        except sqlite3.Error as e:
            raise DataSourceError(f"Failed to read events for {machine_id}: {e}") from e
        finally:
            con.close()
        return [ProductionEvent.model_validate(dict(row)) for row in rows]

    def get_earliest_event_time(self, machine_id: str) -> Optional[datetime]:
        return self._scalar_time(
            "SELECT MIN(timestamp_utc) FROM water_production_events WHERE machine_id = ?", machine_id)

    def get_latest_event(self, machine_id: str) -> Optional[ProductionEvent]:
        con = self._connect()
        try:
            row = con.execute(
                f"SELECT {_EVENT_COLUMNS} FROM water_production_events "
                "WHERE machine_id = ? ORDER BY timestamp_utc DESC, id DESC LIMIT 1",
                (machine_id,)
            ).fetchone()
        except sqlite3.Error as e:
            raise DataSourceError(f"Failed to read events for {machine_id}: {e}") from e
        finally:
            con.close()
        return ProductionEvent.model_validate(dict(row)) if row else None

    def get_lifetime_production(self, machine_id: str) -> float:
        """Sum of all production events (drainage excluded)."""
        con = self._connect()
        try:
            row = con.execute(
                "SELECT COALESCE(SUM(production_liters), 0) FROM water_production_events "
                "WHERE machine_id = ? AND event_type = 'production'",
                (machine_id,)
            ).fetchone()
            return float(row[0])
        except sqlite3.Error as e:
            raise DataSourceError(f"Failed to sum production for {machine_id}: {e}") from e
        finally:
            con.close()

    # ----------------------------------------------------------------- summaries

    def upsert_period_summary(self, summary: PeriodSummary):
        """Create or overwrite the summary row for (machine_id, period, period_start)."""
        s = summary.status
        con = self._connect()
        try:
            con.execute(f"""
                INSERT INTO production_summary ({_SUMMARY_COLUMNS})
                VALUES (?,?,?,?,?,?,?,?,?,?,?,?,?,?)
                ON CONFLICT(machine_id, period, period_start) DO UPDATE SET
                    total_production_liters = excluded.total_production_liters,
                    production_events_count = excluded.production_events_count,
                    drainage_events_count = excluded.drainage_events_count,
                    producing_pct = excluded.producing_pct,
                    idle_pct = excluded.idle_pct,
                    full_water_pct = excluded.full_water_pct,
                    disconnected_pct = excluded.disconnected_pct,
                    first_event_time = excluded.first_event_time,
                    last_event_time = excluded.last_event_time,
                    week_year = excluded.week_year,
                    week_number = excluded.week_number
            """, (
                summary.machine_id, summary.period, summary.period_start.isoformat(),
                summary.total_production_liters, summary.production_events_count,
                summary.drainage_events_count, s.producing, s.idle, s.full_water, s.disconnected,
                _opt_db_time(summary.first_event_time), _opt_db_time(summary.last_event_time),
                summary.week_year, summary.week_number,
            ))
            con.commit()
            log.debug(f"Upserted {summary.period} summary for {summary.machine_id} starting {summary.period_start}")
        except sqlite3.Error as e:
            log.error(f"Failed to upsert {summary.period} summary for {summary.machine_id}: {e}")
            raise StorageWriteError(
                f"Failed to upsert {summary.period} summary for {summary.machine_id} "
                f"starting {summary.period_start}: {e}"
            ) from e
        finally:
            con.close()

    def get_period_summaries(self, machine_id: str, period: str, start: Optional[date] = None,
                             end: Optional[date] = None, limit: Optional[int] = None) -> List[PeriodSummary]:
        """
        Stored summaries of one granularity, ascending by period_start.

        With `limit`, the most recent `limit` rows are returned (still ascending).
        """
        sql = f"SELECT {_SUMMARY_COLUMNS} FROM production_summary WHERE machine_id = ? AND period = ?"
        params: List[Any] = [machine_id, period]
        if start is not None:
            sql += " AND period_start >= ?"
            params.append(start.isoformat())
        if end is not None:
            sql += " AND period_start < ?"
            params.append(end.isoformat())
        sql += " ORDER BY period_start DESC"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(int(limit))
        con = self._connect()
        try:
            rows = con.execute(sql, params).fetchall()
        except sqlite3.Error as e:
            raise DataSourceError(f"Failed to read {period} summaries for {machine_id}: {e}") from e
        finally:
            con.close()
        return [self._row_to_summary(row) for row in reversed(rows)]

    @staticmethod
    def _row_to_summary(row: sqlite3.Row) -> PeriodSummary:
        return PeriodSummary(
            machine_id=row["machine_id"],
            period=row["period"],
            period_start=date.fromisoformat(row["period_start"]),
            total_production_liters=row["total_production_liters"],
            production_events_count=row["production_events_count"],
            drainage_events_count=row["drainage_events_count"],
            status=StatusPercentages(
                producing=row["producing_pct"],
                idle=row["idle_pct"],
                full_water=row["full_water_pct"],
                disconnected=row["disconnected_pct"],
            ),
            first_event_time=row["first_event_time"],
            last_event_time=row["last_event_time"],
            week_year=row["week_year"],
            week_number=row["week_number"],
        )

    # -------------------------------------------------------------------- totals

    def upsert_machine_total(self, total: MachineProductionTotal):
        last_updated = total.last_updated or now_utc()
        con = self._connect()
        try:
            con.execute("""
                INSERT INTO machine_production_totals
                (machine_id, total_production_liters, last_production_event_id, last_event_time, last_updated)
                VALUES (?,?,?,?,?)
                ON CONFLICT(machine_id) DO UPDATE SET
                    total_production_liters = excluded.total_production_liters,
                    last_production_event_id = excluded.last_production_event_id,
                    last_event_time = excluded.last_event_time,
                    last_updated = excluded.last_updated
            """, (
                total.machine_id, total.total_production_liters, total.last_production_event_id,
                _opt_db_time(total.last_event_time), _db_time(last_updated),
            ))
            con.commit()
            log.debug(f"Upserted production total for {total.machine_id}: {total.total_production_liters:.3f} L")
        except sqlite3.Error as e:
            log.error(f"Failed to upsert production total for {total.machine_id}: {e}")
            raise StorageWriteError(f"Failed to upsert production total for {total.machine_id}: {e}") from e
        finally:
            con.close()

    def get_machine_total(self, machine_id: str) -> Optional[MachineProductionTotal]:
        con = self._connect()
        try:
            row = con.execute(
                "SELECT machine_id, total_production_liters, last_production_event_id, last_event_time, last_updated "
                "FROM machine_production_totals WHERE machine_id = ?",
                (machine_id,)
            ).fetchone()
        except sqlite3.Error as e:
            raise DataSourceError(f"Failed to read production total for {machine_id}: {e}") from e
        finally:
            con.close()
        return MachineProductionTotal.model_validate(dict(row)) if row else None

    # ------------------------------------------------------------------- helpers

    def _scalar_time(self, sql: str, machine_id: str) -> Optional[datetime]:
        con = self._connect()
        try:
            row = con.execute(sql, (machine_id,)).fetchone()
        except sqlite3.Error as e:
            raise DataSourceError(f"Query failed for {machine_id}: {e}") from e
        finally:
            con.close()
        return ensure_utc(row[0]) if row and row[0] else None

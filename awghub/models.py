import logging
import math
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Literal, Mapping, Optional, Set, Tuple

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import SnapshotValidationError
from .timezone_utils import ensure_utc, format_utc_for_db

log = logging.getLogger(__name__)

EVENT_PRODUCTION = "production"
EVENT_DRAINAGE = "drainage"
EventType = Literal["production", "drainage"]

PeriodType = Literal["day", "week", "month", "year"]

# Tie-break order for the rounding correction
STATUS_FIELDS = ("producing", "idle", "full_water", "disconnected")

_TRUE_STRINGS = {"1", "true", "yes", "on"}
_FALSE_STRINGS = {"0", "false", "no", "off", ""}


def _coerce_flag(value: Any) -> bool:
    """Status flags arrive as bools, 0/1 integers or strings depending on the device firmware."""
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        v = value.strip().lower()
        if v in _TRUE_STRINGS:
            return True
        if v in _FALSE_STRINGS:
            return False
    raise ValueError(f"invalid status flag: {value!r}")


class RawSnapshot(BaseModel):
    """One point-in-time telemetry reading of an AWG machine."""
    model_config = ConfigDict(frozen=True)

    machine_id: str = Field(min_length=1)
    timestamp_utc: datetime
    water_level_liters: Optional[float] = Field(
        default=None,
        validation_alias=AliasChoices("water_level_liters", "water_level_l", "water_level"),
    )
    producing_water: bool = False
    compressor_on: bool = False
    full_tank: bool = False

    @field_validator("timestamp_utc", mode="before")
    @classmethod
    def _parse_timestamp(cls, v: Any) -> datetime:
        if not isinstance(v, (str, datetime)):
            raise ValueError(f"timestamp must be an ISO string or datetime, got {v!r}")
        return ensure_utc(v)

    @field_validator("water_level_liters")
    @classmethod
    def _check_level(cls, v: Optional[float]) -> Optional[float]:
        if v is None:
            return None
        if not math.isfinite(v):
            raise ValueError("water level must be finite")
        if v < 0:
            raise ValueError("water level must not be negative")
        return v

    @field_validator("producing_water", "compressor_on", "full_tank", mode="before")
    @classmethod
    def _parse_flag(cls, v: Any) -> bool:
        return _coerce_flag(v)


def parse_snapshot(row: Mapping[str, Any]) -> RawSnapshot:
    """Validate a store row into a RawSnapshot, raising SnapshotValidationError."""
    try:
        return RawSnapshot.model_validate(dict(row))
    except (ValidationError, ValueError, TypeError) as e:
        raise SnapshotValidationError(f"Invalid snapshot row: {e}", row=row) from e


def parse_snapshots(rows: Iterable[Mapping[str, Any]]) -> Tuple[List[RawSnapshot], List[SnapshotValidationError]]:
    """
    Parse a batch of rows, skipping invalid ones.

    Returns the valid snapshots sorted by timestamp and the errors for the
    skipped rows.
    """
    snapshots: List[RawSnapshot] = []
    errors: List[SnapshotValidationError] = []
    for row in rows:
        try:
            snapshots.append(parse_snapshot(row))
        except SnapshotValidationError as e:
            log.warning(f"Skipping invalid snapshot row for machine {row.get('machine_id')!r}: {e}")
            errors.append(e)
    snapshots.sort(key=lambda s: s.timestamp_utc)
    return snapshots, errors


class ProductionEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: Optional[int] = None
    machine_id: str
    timestamp_utc: datetime
    event_type: EventType
    production_liters: float  # signed level change, negative for drainage
    previous_level: float
    current_level: float

    @field_validator("timestamp_utc", mode="before")
    @classmethod
    def _parse_timestamp(cls, v: Any) -> datetime:
        return ensure_utc(v)

    @property
    def key(self) -> Tuple[str, str]:
        return (self.machine_id, format_utc_for_db(self.timestamp_utc))


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def correct_rounding(values: Dict[str, int]) -> Dict[str, int]:
    """
    Force integer percentages to sum to exactly 100.

    The difference is applied to the largest state; ties go to the first
    state in STATUS_FIELDS order.
    """
    result = {k: int(values.get(k, 0)) for k in STATUS_FIELDS}
    total = sum(result.values())
    if total == 0:
        return {"producing": 0, "idle": 0, "full_water": 0, "disconnected": 100}
    diff = 100 - total
    if diff != 0:
        largest = max(STATUS_FIELDS, key=lambda k: result[k])
        result[largest] += diff
    return result


class StatusPercentages(BaseModel):
    model_config = ConfigDict(frozen=True)

    producing: float = Field(default=0.0, ge=0)
    idle: float = Field(default=0.0, ge=0)
    full_water: float = Field(default=0.0, ge=0)
    disconnected: float = Field(default=0.0, ge=0)

    @classmethod
    def empty(cls) -> "StatusPercentages":
        """No-data convention: the whole window counts as disconnected."""
        return cls(disconnected=100.0)

    @classmethod
    def from_unrounded(cls, values: Mapping[str, float]) -> "StatusPercentages":
        """Round raw shares half-up and apply the sum-to-100 correction."""
        raw = {k: max(float(values.get(k, 0.0)), 0.0) for k in STATUS_FIELDS}
        total = sum(raw.values())
        if total <= 0:
            return cls.empty()
        if not math.isclose(total, 100.0):
            raw = {k: v * 100.0 / total for k, v in raw.items()}
        rounded = correct_rounding({k: round_half_up(v) for k, v in raw.items()})
        return cls(**{k: float(v) for k, v in rounded.items()})

    @property
    def total(self) -> float:
        return self.producing + self.idle + self.full_water + self.disconnected

    def as_dict(self) -> Dict[str, float]:
        return {k: getattr(self, k) for k in STATUS_FIELDS}


@dataclass(frozen=True)
class StatusPoint:
    """A status classification for one bucket, the input of the rollup."""
    period_start: date
    status: StatusPercentages


class PeriodSummary(BaseModel):
    machine_id: str
    period: PeriodType
    period_start: date
    total_production_liters: float = 0.0
    production_events_count: int = Field(default=0, ge=0)
    drainage_events_count: int = Field(default=0, ge=0)
    status: StatusPercentages = Field(default_factory=StatusPercentages.empty)
    first_event_time: Optional[datetime] = None
    last_event_time: Optional[datetime] = None
    week_year: Optional[int] = None
    week_number: Optional[int] = None

    @field_validator("first_event_time", "last_event_time", mode="before")
    @classmethod
    def _parse_times(cls, v: Any) -> Optional[datetime]:
        return ensure_utc(v)

    @property
    def key(self) -> Tuple[str, str, date]:
        return (self.machine_id, self.period, self.period_start)


class MachineProductionTotal(BaseModel):
    machine_id: str
    total_production_liters: float = 0.0
    last_production_event_id: Optional[int] = None
    last_event_time: Optional[datetime] = None
    last_updated: Optional[datetime] = None

    @field_validator("last_event_time", "last_updated", mode="before")
    @classmethod
    def _parse_times(cls, v: Any) -> Optional[datetime]:
        return ensure_utc(v)


@dataclass
class CollectionState:
    """Polling state owned by the caller and carried from one run to the next."""
    last_fetched_timestamp: Dict[str, datetime] = field(default_factory=dict)
    known_keys: Set[Tuple[str, str]] = field(default_factory=set)

    def forget_keys(self, machine_id: str, before: datetime):
        """Drop keys of events at or before `before`; polling never returns to them."""
        bound = format_utc_for_db(before)
        self.known_keys = {k for k in self.known_keys if k[0] != machine_id or k[1] > bound}


@dataclass
class MachineResult:
    machine_id: str
    status: str  # "success" | "error"
    detail: Any = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"machine_id": self.machine_id, "status": self.status}
        if self.status == "success":
            out["result"] = self.detail
        else:
            out["error"] = self.detail
        return out


@dataclass
class AggregationResult:
    mode: str
    results: List[MachineResult] = field(default_factory=list)

    @property
    def machines_processed(self) -> int:
        return len(self.results)

    @property
    def succeeded(self) -> bool:
        return all(r.status == "success" for r in self.results)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "mode": self.mode,
            "machines_processed": self.machines_processed,
            "results": [r.to_dict() for r in self.results],
        }

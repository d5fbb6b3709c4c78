from typing import List, Optional
from pydantic import BaseModel, Field, model_validator


class MachineConfig(BaseModel):
    id: str = Field(min_length=1, description="Machine identifier as reported by the device")
    name: Optional[str] = None


class DetectionConfig(BaseModel):
    """Thresholds used to turn consecutive water-level readings into events."""
    drainage_min_liters: float = Field(default=3.0, ge=0.0, description="Absolute decrease that counts as a drainage")
    drainage_min_pct: float = Field(default=50.0, ge=0.0, le=100.0, description="Relative decrease (percent of previous level) that counts as a drainage")
    min_production_liters: float = Field(default=0.05, ge=0.0, description="Smallest increase reported as production")
    max_production_rate_l_per_min: float = Field(default=0.05, gt=0.0, description="Physical maximum production rate; faster increases are rejected")
    max_snapshot_age_minutes: float = Field(default=120, gt=0, description="Snapshots older than this are not used to infer events")


class StatusConfig(BaseModel):
    sampling_interval_secs: float = Field(default=10.0, gt=0.0, description="Nominal telemetry cadence")
    gap_threshold_minutes: float = Field(default=0.5, gt=0.0, description="Gaps longer than this are partly counted as disconnected")

    @model_validator(mode='after')
    def validate_gap_threshold(self):
        if self.sampling_interval_secs / 60.0 > self.gap_threshold_minutes:
            raise ValueError(
                f"sampling_interval_secs ({self.sampling_interval_secs}) must not exceed "
                f"gap_threshold_minutes ({self.gap_threshold_minutes} min)"
            )
        return self


class AggregationConfig(BaseModel):
    enabled: bool = Field(default=True, description="Run the periodic incremental aggregation")
    interval_minutes: int = Field(default=15, ge=1, le=1440, description="Scheduler cadence")
    incremental_lookback_hours: int = Field(default=24, ge=1, description="Window used when a machine has no aggregation watermark")


class AnalyticsConfig(BaseModel):
    daily_points: int = Field(default=7, ge=1)
    weekly_points: int = Field(default=4, ge=1)
    monthly_points: int = Field(default=3, ge=1)
    yearly_points: int = Field(default=2, ge=1)


class ApiConfig(BaseModel):
    enabled: bool = True
    host: str = "0.0.0.0"
    port: int = Field(default=8000, ge=1, le=65535)


class LoggingConfig(BaseModel):
    level: str = "INFO"  # DEBUG, INFO, WARNING, ERROR, CRITICAL
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class HubConfig(BaseModel):
    db_path: str = "~/.awghub/awghub.db"
    machines: List[MachineConfig] = Field(default_factory=list)

    detection: DetectionConfig = DetectionConfig()
    status: StatusConfig = StatusConfig()
    aggregation: AggregationConfig = AggregationConfig()
    analytics: AnalyticsConfig = AnalyticsConfig()
    api: ApiConfig = ApiConfig()
    logging: LoggingConfig = LoggingConfig()

    @model_validator(mode='after')
    def validate_unique_machines(self):
        ids = [m.id for m in self.machines]
        duplicates = sorted({i for i in ids if ids.count(i) > 1})
        if duplicates:
            raise ValueError(f"Duplicate machine ids: {', '.join(duplicates)}")
        return self

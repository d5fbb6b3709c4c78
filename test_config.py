"""
Unit tests for configuration classes
Tests the Pydantic models and validation
"""

import pytest
from pydantic import ValidationError

from awghub.config import (
    MachineConfig, DetectionConfig, StatusConfig, AggregationConfig,
    AnalyticsConfig, ApiConfig, LoggingConfig, HubConfig
)


class TestDetectionConfig:
    """Test event detection thresholds"""

    def test_default_values(self):
        config = DetectionConfig()

        assert config.drainage_min_liters == 3.0
        assert config.drainage_min_pct == 50.0
        assert config.min_production_liters == 0.05
        assert config.max_production_rate_l_per_min == 0.05
        assert config.max_snapshot_age_minutes == 120

    def test_custom_values(self):
        config = DetectionConfig(
            drainage_min_liters=5.0,
            drainage_min_pct=40.0,
            max_production_rate_l_per_min=0.2
        )

        assert config.drainage_min_liters == 5.0
        assert config.drainage_min_pct == 40.0
        assert config.max_production_rate_l_per_min == 0.2

    def test_rate_must_be_positive(self):
        with pytest.raises(ValidationError):
            DetectionConfig(max_production_rate_l_per_min=0)

    def test_pct_bounds(self):
        with pytest.raises(ValidationError):
            DetectionConfig(drainage_min_pct=150)


class TestStatusConfig:
    """Test status classification settings"""

    def test_default_values(self):
        config = StatusConfig()

        assert config.sampling_interval_secs == 10.0
        assert config.gap_threshold_minutes == 0.5

    def test_interval_longer_than_gap_threshold_rejected(self):
        """One sampling interval must fit inside the gap threshold"""
        with pytest.raises(ValidationError):
            StatusConfig(sampling_interval_secs=60, gap_threshold_minutes=0.5)

    def test_interval_equal_to_gap_threshold_allowed(self):
        config = StatusConfig(sampling_interval_secs=30, gap_threshold_minutes=0.5)
        assert config.sampling_interval_secs == 30


class TestAggregationConfig:

    def test_default_values(self):
        config = AggregationConfig()

        assert config.enabled is True
        assert config.interval_minutes == 15
        assert config.incremental_lookback_hours == 24

    def test_interval_validation(self):
        with pytest.raises(ValidationError):
            AggregationConfig(interval_minutes=0)


class TestAnalyticsConfig:

    def test_default_values(self):
        config = AnalyticsConfig()

        assert (config.daily_points, config.weekly_points, config.monthly_points, config.yearly_points) == (7, 4, 3, 2)


class TestHubConfig:
    """Test the top-level configuration"""

    def test_buckets_have_no_timezone_setting(self):
        config = HubConfig(**{"timezone": "Asia/Karachi"})

        assert "timezone" not in HubConfig.model_fields
        assert not hasattr(config, "timezone")

    def test_minimal_config(self):
        config = HubConfig()

        assert config.machines == []
        assert isinstance(config.detection, DetectionConfig)
        assert isinstance(config.status, StatusConfig)
        assert isinstance(config.api, ApiConfig)
        assert isinstance(config.logging, LoggingConfig)

    def test_full_config(self):
        config = HubConfig(
            db_path="/tmp/awg.db",
            machines=[{"id": "AWG-1", "name": "Roof"}, {"id": "AWG-2"}],
            detection={"drainage_min_liters": 4.0},
            api={"port": 9000},
        )

        assert config.db_path == "/tmp/awg.db"
        assert config.machines[0] == MachineConfig(id="AWG-1", name="Roof")
        assert config.machines[1].name is None
        assert config.detection.drainage_min_liters == 4.0
        assert config.detection.drainage_min_pct == 50.0
        assert config.api.port == 9000

    def test_duplicate_machine_ids_rejected(self):
        with pytest.raises(ValidationError):
            HubConfig(machines=[{"id": "AWG-1"}, {"id": "AWG-1"}])

    def test_empty_machine_id_rejected(self):
        with pytest.raises(ValidationError):
            HubConfig(machines=[{"id": ""}])

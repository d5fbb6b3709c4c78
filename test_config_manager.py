"""
Unit tests for ConfigurationManager
Tests loading config.yaml and registering machines with the store
"""

import pytest
import yaml
from unittest.mock import Mock
from pydantic import ValidationError

from awghub.config_manager import ConfigurationManager
from awghub.config import HubConfig
from awghub.logging.logger import DataLogger
from awghub.main import _resolve_config_path


class TestConfigurationManager:
    """Test ConfigurationManager functionality"""

    @pytest.fixture
    def mock_db_logger(self):
        """Create a mock database logger"""
        mock_logger = Mock(spec=DataLogger)
        mock_logger.path = "/tmp/test.db"
        return mock_logger

    @pytest.fixture
    def config_file(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(yaml.safe_dump({
            "db_path": str(tmp_path / "awg.db"),
            "machines": [{"id": "AWG-1", "name": "Roof"}, {"id": "AWG-2"}],
            "detection": {"drainage_min_liters": 4.0},
            "aggregation": {"interval_minutes": 5},
        }))
        return path

    def test_load_from_file(self, config_file):
        manager = ConfigurationManager(str(config_file))
        config = manager.load_config()

        assert isinstance(config, HubConfig)
        assert [m.id for m in config.machines] == ["AWG-1", "AWG-2"]
        assert config.detection.drainage_min_liters == 4.0
        assert config.aggregation.interval_minutes == 5
        assert config.status.gap_threshold_minutes == 0.5

    def test_missing_file(self, tmp_path):
        manager = ConfigurationManager(str(tmp_path / "missing.yaml"))
        with pytest.raises(FileNotFoundError):
            manager.load_config()

    def test_empty_file_uses_defaults(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("")
        config = ConfigurationManager(str(path)).load_config()

        assert config == HubConfig()

    def test_invalid_values(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(yaml.safe_dump({"status": {"sampling_interval_secs": 120}}))
        with pytest.raises(ValidationError):
            ConfigurationManager(str(path)).load_config()

    def test_seeds_machines(self, config_file, mock_db_logger):
        manager = ConfigurationManager(str(config_file), mock_db_logger)
        manager.load_config()

        mock_db_logger.add_machine.assert_any_call("AWG-1", "Roof")
        mock_db_logger.add_machine.assert_any_call("AWG-2", None)
        assert mock_db_logger.add_machine.call_count == 2

    def test_seeds_real_store(self, config_file, tmp_path):
        store = DataLogger(str(tmp_path / "seed.db"))
        ConfigurationManager(str(config_file), store).load_config()
        ConfigurationManager(str(config_file), store).load_config()

        assert store.list_machines() == ["AWG-1", "AWG-2"]


class TestResolveConfigPath:

    def test_cli_path_wins(self, tmp_path, monkeypatch):
        monkeypatch.setenv("AWGHUB_CONFIG", str(tmp_path / "env.yaml"))
        assert _resolve_config_path(str(tmp_path / "cli.yaml")) == (tmp_path / "cli.yaml").resolve()

    def test_env_path(self, tmp_path, monkeypatch):
        monkeypatch.setenv("AWGHUB_CONFIG", str(tmp_path / "env.yaml"))
        assert _resolve_config_path(None) == (tmp_path / "env.yaml").resolve()

    def test_default_path(self, monkeypatch):
        monkeypatch.delenv("AWGHUB_CONFIG", raising=False)
        path = _resolve_config_path(None)
        assert path.name == "config.yaml"
        assert (path.parent / "awghub").is_dir()

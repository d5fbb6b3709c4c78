"""
Configuration Manager for AWG Hub

Loads config.yaml into a HubConfig and seeds the configured machines into
the store so that aggregation runs without an explicit machine id cover them.
"""

import yaml
import logging
from pathlib import Path
from awghub.logging.logger import DataLogger
from awghub.config import HubConfig

log = logging.getLogger(__name__)


class ConfigurationManager:
    """Loads configuration from file and registers machines with the store."""

    def __init__(self, config_path: str = "config.yaml", db_logger: DataLogger = None):
        self.config_path = Path(config_path)
        self.db_logger = db_logger

    def load_config(self) -> HubConfig:
        log.info(f"Loading configuration from {self.config_path}")
        config = self._load_from_file()

        if self.db_logger:
            self.seed_machines(config)

        return config

    def _load_from_file(self) -> HubConfig:
        """Load configuration from config.yaml file."""
        if not self.config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {self.config_path}")

        with open(self.config_path, 'r') as f:
            config_dict = yaml.safe_load(f)

        if config_dict is None:
            log.warning(f"Configuration file {self.config_path} is empty, using defaults")
            config_dict = {}
        elif not isinstance(config_dict, dict):
            raise ValueError(f"Configuration root must be a mapping, got {type(config_dict).__name__}")

        return HubConfig(**config_dict)

    def seed_machines(self, config: HubConfig):
        for machine in config.machines:
            self.db_logger.add_machine(machine.id, machine.name)
        if config.machines:
            log.info(f"Registered {len(config.machines)} configured machine(s)")

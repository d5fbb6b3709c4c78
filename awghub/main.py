import os
import sys
import json
import argparse
import asyncio
import logging
from pathlib import Path
from typing import Optional, Tuple

from awghub.config import HubConfig
from awghub.config_manager import ConfigurationManager
from awghub.logging.logger import DataLogger

log = logging.getLogger(__name__)


def _resolve_config_path(cli_path: Optional[str]) -> Path:
    """
    Resolve config path with the following precedence:
    1) CLI: --config /path/to/config.yaml
    2) ENV: AWGHUB_CONFIG=/path/to/config.yaml
    3) Default: <project_root>/config.yaml  (parent of the 'awghub' package dir)
    """
    if cli_path:
        return Path(cli_path).expanduser().resolve()

    env = os.getenv("AWGHUB_CONFIG")
    if env:
        return Path(env).expanduser().resolve()

    # project root = parent of this package directory
    return Path(__file__).resolve().parents[1] / "config.yaml"


def configure_logging(cfg: HubConfig) -> None:
    """Root level and a single stdout handler, as configured."""
    log_config = cfg.logging
    log_level = getattr(logging, log_config.level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    if not root_logger.handlers:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(log_level)
        console_handler.setFormatter(logging.Formatter(log_config.format))
        root_logger.addHandler(console_handler)

    logging.getLogger("awghub").setLevel(log_level)
    # Per-request access lines drown out the pipeline logs
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    log.debug(f"Logging configured - Level: {log_config.level}")


def load_config(path) -> Tuple[HubConfig, DataLogger]:
    """Load config.yaml, open the store it points at and register the configured machines."""
    config_manager = ConfigurationManager(str(Path(path).expanduser().resolve()))
    cfg = config_manager.load_config()
    store = DataLogger(cfg.db_path)
    config_manager.db_logger = store
    config_manager.seed_machines(cfg)
    return cfg, store


async def aserve(cfg: HubConfig, store: DataLogger) -> None:
    from awghub.api_server import create_api, start_api_in_background
    from awghub.scheduler import AggregationScheduler

    scheduler = AggregationScheduler(store, cfg)
    if cfg.api.enabled:
        start_api_in_background(create_api(store, cfg, scheduler), cfg.api.host, cfg.api.port)
    if cfg.aggregation.enabled:
        try:
            await scheduler.run()
        finally:
            scheduler.stop()
    else:
        log.info("Periodic aggregation disabled; serving API only")
        while True:
            await asyncio.sleep(3600)


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="AWG Hub production aggregation")
    parser.add_argument(
        "--config",
        help="Path to config.yaml (overrides AWGHUB_CONFIG and default).",
        required=False,
    )
    sub = parser.add_subparsers(dest="command", required=True)

    run_p = sub.add_parser("run", help="Run one aggregation pass and print the result as JSON")
    run_p.add_argument("--mode", choices=["incremental", "backfill"], default="incremental")
    run_p.add_argument("--machine-id", default=None, help="Only process this machine")

    sub.add_parser("serve", help="Start the HTTP API and the periodic aggregation scheduler")

    args = parser.parse_args(argv)

    cfg, store = load_config(_resolve_config_path(args.config))
    configure_logging(cfg)

    if args.command == "run":
        from awghub.pipeline import run_aggregation
        result = run_aggregation(store, cfg, mode=args.mode, machine_id=args.machine_id)
        print(json.dumps(result.to_dict(), indent=2, default=str))
        return 0 if result.succeeded else 1

    try:
        asyncio.run(aserve(cfg, store))
    except KeyboardInterrupt:
        log.info("Application interrupted by user")
    return 0


if __name__ == "__main__":
    sys.exit(main())

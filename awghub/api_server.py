import threading
import logging
from datetime import date
from typing import Any, Dict, Literal, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel
import uvicorn

from awghub.analytics import ProductionAnalytics
from awghub.config import HubConfig
from awghub.errors import AwgHubError
from awghub.logging.logger import DataLogger
from awghub.scheduler import AggregationScheduler
from awghub.timezone_utils import now_utc_iso

log = logging.getLogger(__name__)


class AggregationRequest(BaseModel):
    mode: Literal["incremental", "backfill"] = "incremental"
    machine_id: Optional[str] = None


def create_api(store: DataLogger, cfg: HubConfig, scheduler: Optional[AggregationScheduler] = None) -> FastAPI:
    """
    Create a FastAPI app over the store.

    On-demand aggregation runs share the scheduler's single-flight lock, so
    they never overlap a periodic run.
    """
    app = FastAPI(title="AWG Hub API")
    scheduler = scheduler or AggregationScheduler(store, cfg)
    analytics = ProductionAnalytics(store, cfg)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def log_requests(request, call_next):
        log.debug(f"API request: {request.method} {request.url}")
        try:
            response = await call_next(request)
            log.debug(f"API response: {response.status_code}")
            return response
        except Exception as e:
            log.error(f"API request failed: {e}", exc_info=True)
            raise

    def _known(machine_id: str) -> bool:
        return machine_id in store.list_machines()

    @app.get("/api/health")
    def api_health() -> Dict[str, Any]:
        return {"status": "ok", "message": "API server is running", "timestamp": now_utc_iso()}

    @app.get("/api/machines")
    def api_machines() -> Dict[str, Any]:
        try:
            return {"status": "ok", "machines": store.get_machines()}
        except AwgHubError as e:
            log.error(f"Error listing machines: {e}", exc_info=True)
            return {"status": "error", "error": str(e)}

    @app.post("/api/aggregation/run")
    def api_run_aggregation(req: AggregationRequest) -> Dict[str, Any]:
        """Trigger an aggregation run for one machine or all of them."""
        try:
            result = scheduler.run_once(mode=req.mode, machine_id=req.machine_id)
        except AwgHubError as e:
            log.error(f"Aggregation run failed: {e}", exc_info=True)
            return {"status": "error", "error": str(e)}
        if result is None:
            return {"status": "skipped", "message": "Aggregation already in progress"}
        return {"status": "ok", **result.to_dict()}

    @app.get("/api/machines/{machine_id}/production")
    def api_production(machine_id: str) -> Dict[str, Any]:
        try:
            if not _known(machine_id):
                return {"status": "error", "error": f"Unknown machine: {machine_id}"}
            return {"status": "ok", **analytics.get_production_analytics(machine_id)}
        except AwgHubError as e:
            log.error(f"Error getting production for {machine_id}: {e}", exc_info=True)
            return {"status": "error", "error": str(e)}

    @app.get("/api/machines/{machine_id}/status")
    def api_status(machine_id: str) -> Dict[str, Any]:
        try:
            if not _known(machine_id):
                return {"status": "error", "error": f"Unknown machine: {machine_id}"}
            return {"status": "ok", **analytics.get_status_analytics(machine_id)}
        except AwgHubError as e:
            log.error(f"Error getting status for {machine_id}: {e}", exc_info=True)
            return {"status": "error", "error": str(e)}

    @app.get("/api/machines/{machine_id}/status/live")
    def api_live_status(machine_id: str, date: Optional[str] = None) -> Dict[str, Any]:
        """Status of one UTC day (YYYY-MM-DD, default today) classified from raw snapshots."""
        try:
            day = _parse_date(date) if date else None
        except ValueError:
            return {"status": "error", "error": f"Invalid date: {date}"}
        try:
            if not _known(machine_id):
                return {"status": "error", "error": f"Unknown machine: {machine_id}"}
            return {"status": "ok", **analytics.get_live_status(machine_id, day)}
        except AwgHubError as e:
            log.error(f"Error getting live status for {machine_id}: {e}", exc_info=True)
            return {"status": "error", "error": str(e)}

    return app


def _parse_date(value: str) -> date:
    return date.fromisoformat(value)


def start_api_in_background(fastapi_app: FastAPI, host: str, port: int) -> None:
    """Start a uvicorn server in a background daemon thread."""
    try:
        config = uvicorn.Config(
            fastapi_app,
            host=host,
            port=port,
            log_level="info",
            access_log=True,
            use_colors=False,
            log_config=None  # Keep the application's logging configuration
        )
        server = uvicorn.Server(config)
        thread = threading.Thread(target=server.run, daemon=True)
        thread.start()
        log.info(f"API server thread started on {host}:{port}")
    except Exception as e:
        log.error(f"Error starting API server: {e}", exc_info=True)

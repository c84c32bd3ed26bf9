"""
FastAPI application for webcert-check's monitoring mode.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Optional

from fastapi import FastAPI, HTTPException
from fastapi.responses import JSONResponse, PlainTextResponse

from webcert_check import __version__
from webcert_check.config import Config
from webcert_check.logger import get_logger
from webcert_check.metrics import MetricsCollector
from webcert_check.monitor import ProbeMonitor


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    """Lifespan handler that suppresses CancelledError during shutdown."""
    logger = get_logger("api")
    logger.info("webcert-check API started")
    try:
        yield
    except asyncio.CancelledError:
        pass
    logger.info("webcert-check API shutting down")


def create_app(
    monitor: ProbeMonitor,
    metrics: MetricsCollector,
    config: Config,
    lifespan_override: Optional[Any] = None,
) -> FastAPI:
    """
    Create and configure FastAPI application.

    Args:
        monitor: Probe monitor instance
        metrics: Metrics collector instance
        config: Configuration instance

    Returns:
        Configured FastAPI application
    """
    app = FastAPI(
        title="webcert-check",
        description="TLS certificate expiry exporter",
        version=__version__,
        lifespan=lifespan_override or lifespan,
    )

    logger = get_logger("api")

    @app.get("/metrics", response_class=PlainTextResponse)
    async def get_metrics() -> PlainTextResponse:
        try:
            metrics_data: str = metrics.get_metrics()
            return PlainTextResponse(content=metrics_data, media_type=metrics.get_content_type())
        except Exception as e:
            logger.error(f"Failed to generate metrics: {e}")
            raise HTTPException(status_code=500, detail="Failed to generate metrics") from e

    @app.get("/healthz", response_class=JSONResponse)
    async def get_health() -> JSONResponse:
        try:
            monitor_health = await monitor.get_health_status()
            metrics_health = metrics.get_registry_status()

            health_status = {
                **monitor_health,
                **metrics_health,
                "status": "healthy",
                "version": __version__,
                "metrics_listener": f"{config.bind_address}:{config.port}",
            }

            return JSONResponse(content=health_status)
        except Exception as e:
            logger.error(f"Failed to get health status: {e}")
            return JSONResponse(content={"status": "error", "error": str(e)}, status_code=500)

    @app.get("/probe", response_class=JSONResponse)
    async def trigger_probe() -> JSONResponse:
        try:
            logger.info("Manual probe triggered via API")
            outcome = await monitor.probe_once()
            return JSONResponse(content=outcome.to_dict())
        except Exception as e:
            logger.error(f"Manual probe failed: {e}")
            raise HTTPException(status_code=500, detail=f"Probe failed: {e}") from e

    return app

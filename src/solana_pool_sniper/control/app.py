"""HTTP control surface for starting and stopping monitoring."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, Awaitable, Callable, Dict, Optional

from fastapi import FastAPI, HTTPException, status
from fastapi.responses import PlainTextResponse

from ..monitoring.logger import get_logger
from ..monitoring.metrics import METRICS

logger = get_logger(__name__)


def create_control_app(
    subscriber,
    orchestrator,
    *,
    on_shutdown: Optional[Callable[[], Awaitable[None]]] = None,
) -> FastAPI:
    @asynccontextmanager
    async def lifespan(_: FastAPI):
        yield
        if subscriber.session is not None:
            await subscriber.stop()
        await orchestrator.drain()
        if on_shutdown is not None:
            await on_shutdown()

    app = FastAPI(title="Solana Pool Sniper", version="1.0.0", lifespan=lifespan)

    @app.post("/api/monitor/start", status_code=status.HTTP_202_ACCEPTED)
    async def start_monitoring() -> Dict[str, str]:
        try:
            message = await subscriber.start()
        except Exception as exc:  # noqa: BLE001 - surfaced to the caller as 503
            logger.error("Failed to start monitoring: %s", exc)
            raise HTTPException(status_code=503, detail=f"Failed to start monitoring: {exc}") from exc
        return {"status": message}

    @app.post("/api/monitor/stop", status_code=status.HTTP_202_ACCEPTED)
    async def stop_monitoring() -> Dict[str, str]:
        return {"status": await subscriber.stop()}

    @app.get("/api/monitor/status")
    async def monitor_status() -> Dict[str, Any]:
        return {"monitor": subscriber.status(), "pipelines": orchestrator.status()}

    @app.get("/health")
    async def healthcheck() -> Dict[str, str]:
        return {"status": "ok"}

    @app.get("/metrics", response_class=PlainTextResponse)
    async def prometheus_metrics() -> str:
        return METRICS.export_prometheus()

    return app


__all__ = ["create_control_app"]

from __future__ import annotations

import asyncio

from httpx import ASGITransport, AsyncClient

from solana_pool_sniper.config.settings import MonitorConfig, TradingConfig
from solana_pool_sniper.control import create_control_app
from solana_pool_sniper.execution.orchestrator import SwapOrchestrator
from solana_pool_sniper.ingestion.decoder import TransactionDecoder
from solana_pool_sniper.ingestion.screening import LiquidityBurnChecker, TokenValidator
from solana_pool_sniper.ingestion.subscriber import STATUS_ALREADY_RUNNING, STATUS_STARTED, STATUS_STOPPED, LogSubscriber
from solana_pool_sniper.monitoring.metrics import METRICS


class UnusedExecutor:
    async def swap(self, pool, cfg) -> str:  # pragma: no cover - never reached
        raise AssertionError("no swaps expected")


class FailingLedger:
    async def subscribe(self, program_id, callback):
        raise ConnectionError("websocket refused")


def _app(ledger):
    orchestrator = SwapOrchestrator(UnusedExecutor(), ledger, TradingConfig(), "payer")
    subscriber = LogSubscriber(
        ledger,
        TransactionDecoder(ledger),
        TokenValidator(ledger),
        LiquidityBurnChecker(ledger),
        orchestrator,
        MonitorConfig(),
    )
    return create_control_app(subscriber, orchestrator), subscriber


def test_start_stop_status_routes(ledger) -> None:
    app, subscriber = _app(ledger)

    async def scenario():
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            started = await client.post("/api/monitor/start")
            again = await client.post("/api/monitor/start")
            status = await client.get("/api/monitor/status")
            stopped = await client.post("/api/monitor/stop")
        return started, again, status, stopped

    started, again, status, stopped = asyncio.run(scenario())

    assert started.status_code == 202
    assert started.json() == {"status": STATUS_STARTED}
    assert again.json() == {"status": STATUS_ALREADY_RUNNING}
    body = status.json()
    assert body["monitor"]["active"] is True
    assert body["pipelines"] == {"in_flight": 0, "recent": []}
    assert stopped.status_code == 202
    assert stopped.json() == {"status": STATUS_STOPPED}
    assert subscriber.session is None
    assert len(ledger.subscriptions) == 1


def test_start_failure_is_reported() -> None:
    app, subscriber = _app(FailingLedger())

    async def scenario():
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            return await client.post("/api/monitor/start")

    response = asyncio.run(scenario())
    assert response.status_code == 503
    assert subscriber.session is None


def test_health_and_metrics(ledger) -> None:
    app, _ = _app(ledger)
    METRICS.increment("monitor.discoveries")

    async def scenario():
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            return await client.get("/health"), await client.get("/metrics")

    health, metrics = asyncio.run(scenario())
    assert health.json() == {"status": "ok"}
    assert "monitor_discoveries" in metrics.text

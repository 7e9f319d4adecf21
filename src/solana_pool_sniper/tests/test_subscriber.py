from __future__ import annotations

import asyncio
import threading

from conftest import INIT_LOG, TARGET_MINT, build_init_transaction, mint_account
from solana_pool_sniper.config.settings import MonitorConfig
from solana_pool_sniper.ingestion.decoder import TransactionDecoder
from solana_pool_sniper.ingestion.screening import LiquidityBurnChecker, TokenValidator
from solana_pool_sniper.ingestion.subscriber import (
    STATUS_ALREADY_RUNNING,
    STATUS_NOT_RUNNING,
    STATUS_STARTED,
    STATUS_STOPPED,
    LogSubscriber,
    SeenSignatures,
)
from solana_pool_sniper.models.schemas import LogNotification
from solana_pool_sniper.monitoring.metrics import METRICS


class RecordingOrchestrator:
    def __init__(self) -> None:
        self.dispatched = []

    def dispatch(self, pool):
        self.dispatched.append(pool)


class CountingDecoder(TransactionDecoder):
    def __init__(self, client) -> None:
        super().__init__(client)
        self.calls = 0

    async def fetch_pool_descriptor(self, signature: str):
        self.calls += 1
        return await super().fetch_pool_descriptor(signature)


def _subscriber(ledger, *, burn_check: bool = False, capacity: int = 100):
    orchestrator = RecordingOrchestrator()
    decoder = CountingDecoder(ledger)
    subscriber = LogSubscriber(
        ledger,
        decoder,
        TokenValidator(ledger),
        LiquidityBurnChecker(ledger),
        orchestrator,
        MonitorConfig(burn_check_enabled=burn_check, dedup_capacity=capacity),
    )
    return subscriber, decoder, orchestrator


def _notification(signature: str = "sig", logs=(INIT_LOG,), err=None) -> LogNotification:
    return LogNotification(signature=signature, logs=tuple(logs), err=err)


def test_seen_signatures_is_bounded_fifo() -> None:
    seen = SeenSignatures(capacity=2)
    assert seen.add("a") is True
    assert seen.add("a") is False
    seen.add("b")
    seen.add("c")
    assert "a" not in seen
    assert len(seen) == 2
    assert seen.add("a") is True


def test_seen_signatures_admits_once_across_threads() -> None:
    seen = SeenSignatures(capacity=100)
    results = []

    def worker() -> None:
        results.append(seen.add("same"))

    threads = [threading.Thread(target=worker) for _ in range(16)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    assert results.count(True) == 1


def test_duplicate_notifications_decode_once(ledger) -> None:
    ledger.transactions["sig"] = build_init_transaction()
    ledger.accounts[TARGET_MINT] = mint_account()
    subscriber, decoder, orchestrator = _subscriber(ledger)

    async def scenario() -> None:
        await subscriber.start()
        await asyncio.gather(*(subscriber.handle_logs(_notification()) for _ in range(5)))

    asyncio.run(scenario())
    assert decoder.calls == 1
    assert len(orchestrator.dispatched) == 1
    assert subscriber.discovered == 1
    assert METRICS.get("monitor.duplicates") == 4


def test_notifications_without_marker_or_with_error_are_skipped(ledger) -> None:
    subscriber, decoder, orchestrator = _subscriber(ledger)

    async def scenario() -> None:
        await subscriber.start()
        await subscriber.handle_logs(_notification("plain", logs=("Program log: swap",)))
        await subscriber.handle_logs(_notification("failed", err={"InstructionError": [0, "Custom"]}))

    asyncio.run(scenario())
    assert decoder.calls == 0
    assert ledger.fetch_calls == []
    assert orchestrator.dispatched == []


def test_invalid_token_never_reaches_buy(ledger) -> None:
    ledger.transactions["sig"] = build_init_transaction()
    ledger.accounts[TARGET_MINT] = mint_account(freeze_authority="Freeze1111111111111111111111111111111111111")
    subscriber, _, orchestrator = _subscriber(ledger)

    async def scenario() -> None:
        await subscriber.start()
        await subscriber.handle_logs(_notification())

    asyncio.run(scenario())
    assert orchestrator.dispatched == []
    assert subscriber.discovered == 0
    assert METRICS.get("monitor.rejected.token") == 1


def test_burn_check_only_when_enabled(ledger) -> None:
    ledger.transactions["sig"] = build_init_transaction()
    ledger.accounts[TARGET_MINT] = mint_account()
    pool_lp_mint = build_init_transaction()["transaction"]["message"]["instructions"][1]["accounts"][7]
    ledger.supplies[pool_lp_mint] = 1_000

    enabled, _, enabled_orchestrator = _subscriber(ledger, burn_check=True)
    disabled, _, disabled_orchestrator = _subscriber(ledger, burn_check=False)

    async def scenario() -> None:
        await enabled.start()
        await disabled.start()
        await enabled.handle_logs(_notification())
        await disabled.handle_logs(_notification())

    asyncio.run(scenario())
    assert enabled_orchestrator.dispatched == []
    assert len(disabled_orchestrator.dispatched) == 1


def test_decode_failures_are_dropped(ledger) -> None:
    subscriber, decoder, orchestrator = _subscriber(ledger)

    async def scenario() -> None:
        await subscriber.start()
        await subscriber.handle_logs(_notification("missing-tx"))

    asyncio.run(scenario())
    assert decoder.calls == 1
    assert orchestrator.dispatched == []
    assert METRICS.get("monitor.decode_errors.transaction_not_found") == 1


def test_start_is_single_session_and_stop_deregisters(ledger) -> None:
    subscriber, _, _ = _subscriber(ledger)

    async def scenario():
        first = await subscriber.start()
        second = await subscriber.start()
        stopped = await subscriber.stop()
        again = await subscriber.stop()
        return first, second, stopped, again

    first, second, stopped, again = asyncio.run(scenario())
    assert (first, second, stopped, again) == (
        STATUS_STARTED,
        STATUS_ALREADY_RUNNING,
        STATUS_STOPPED,
        STATUS_NOT_RUNNING,
    )
    assert len(ledger.subscriptions) == 1
    assert ledger.unsubscribed == ledger.subscriptions
    assert subscriber.session is None


def test_restart_opens_fresh_dedup_set(ledger) -> None:
    ledger.transactions["sig"] = build_init_transaction()
    ledger.accounts[TARGET_MINT] = mint_account()
    subscriber, decoder, _ = _subscriber(ledger)

    async def scenario() -> None:
        await subscriber.start()
        await subscriber.handle_logs(_notification())
        await subscriber.stop()
        await subscriber.handle_logs(_notification("late"))
        await subscriber.start()
        await subscriber.handle_logs(_notification())

    asyncio.run(scenario())
    assert decoder.calls == 2

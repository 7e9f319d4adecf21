"""Per-pool buy → settle → sell pipeline."""

from __future__ import annotations

import asyncio
from collections import deque
from decimal import Decimal, InvalidOperation
from typing import Any, Awaitable, Callable, Deque, Dict, List, Mapping, Optional, Set

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    retry_if_exception_type,
    stop_after_attempt,
    wait_incrementing,
)

from ..config.settings import TradingConfig
from ..models.schemas import PipelineRun, PipelineStage, PoolDescriptor, SwapConfig
from ..monitoring.logger import correlation_scope, get_logger
from ..monitoring.metrics import METRICS
from .swap_builder import SwapBroadcastError, SwapBuildError

Sleep = Callable[[float], Awaitable[None]]


class SettlementError(RuntimeError):
    """Raised when the purchased balance cannot be read from the buy receipt."""


class RetriesExhausted(RuntimeError):
    """Raised when every sell attempt failed."""

    def __init__(self, pool_id: str, attempts: int) -> None:
        super().__init__(f"Sell for pool {pool_id} failed after {attempts} attempts")
        self.pool_id = pool_id
        self.attempts = attempts


def received_balance(tx: Mapping[str, Any], owner: str, mint: str) -> Optional[Decimal]:
    """Owner's post-transaction UI balance of ``mint``, or ``None`` if absent."""

    for balance in (tx.get("meta") or {}).get("postTokenBalances") or []:
        if balance.get("owner") != owner or balance.get("mint") != mint:
            continue
        ui = balance.get("uiTokenAmount") or {}
        raw = ui.get("uiAmountString")
        if raw is None and ui.get("amount") is not None:
            return Decimal(str(ui["amount"])).scaleb(-int(ui.get("decimals", 0)))
        try:
            return Decimal(str(raw))
        except InvalidOperation:
            return None
    return None


class SwapOrchestrator:
    """Runs one independent pipeline task per validated pool.

    The orchestrator keeps a reference to every in-flight task so that
    ``drain()`` can wait for them at shutdown; ``stop()`` on the subscriber
    never touches them. When ``trading.serialize_settlement`` is set, the
    post-buy balance read is performed under a shared lock.
    """

    def __init__(
        self,
        executor,
        client,
        trading: TradingConfig,
        payer: str,
        *,
        sleep: Sleep = asyncio.sleep,
        history_size: int = 100,
    ) -> None:
        self._executor = executor
        self._client = client
        self._trading = trading
        self._payer = payer
        self._sleep = sleep
        self._tasks: Set[asyncio.Task] = set()
        self._history: Deque[PipelineRun] = deque(maxlen=history_size)
        self._settlement_lock: Optional[asyncio.Lock] = (
            asyncio.Lock() if trading.serialize_settlement else None
        )
        self._logger = get_logger(__name__)

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    def recent_runs(self) -> List[PipelineRun]:
        return list(self._history)

    def dispatch(self, pool: PoolDescriptor) -> asyncio.Task:
        task = asyncio.create_task(self.run(pool), name=f"pipeline-{pool.id}")
        self._tasks.add(task)
        task.add_done_callback(self._pipeline_finished)
        METRICS.gauge("pipeline.in_flight", len(self._tasks))
        return task

    def _pipeline_finished(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        METRICS.gauge("pipeline.in_flight", len(self._tasks))

    async def drain(self) -> None:
        if self._tasks:
            self._logger.info("Waiting for %d in-flight pipelines", len(self._tasks))
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        METRICS.gauge("pipeline.in_flight", 0)

    async def run(self, pool: PoolDescriptor) -> PipelineRun:
        run = PipelineRun(pool=pool)
        with correlation_scope(pool.id):
            try:
                await self._execute(run)
            except Exception as exc:  # noqa: BLE001 - failures end this pipeline only
                run.fail(exc)
                METRICS.increment("pipeline.failed")
                self._logger.error("Pipeline for pool %s failed: %s", pool.id, run.error)
            else:
                METRICS.increment("pipeline.done")
        if run.finished_at is not None:
            METRICS.observe("pipeline.duration_seconds", (run.finished_at - run.started_at).total_seconds())
        self._history.append(run)
        return run

    async def _execute(self, run: PipelineRun) -> None:
        pool = run.pool
        target_mint, _ = pool.target_mint()

        run.advance(PipelineStage.BUYING)
        self._logger.info("The token purchase has started for %s", target_mint)
        run.buy_signature = await self._executor.swap(pool, self._buy_config(pool))

        run.advance(PipelineStage.AWAITING_SETTLEMENT)
        await self._sleep(self._trading.settle_seconds)
        if self._settlement_lock is not None:
            async with self._settlement_lock:
                amount = await self._read_received(run.buy_signature, target_mint)
        else:
            amount = await self._read_received(run.buy_signature, target_mint)
        run.received_amount = amount
        self._logger.info("New token found, balance: %s. The token selling has started...", amount)

        run.advance(PipelineStage.SELLING)
        run.sell_signature = await self._sell(run, self._sell_config(pool, amount))
        run.advance(PipelineStage.DONE)
        self._logger.info("Pipeline for pool %s done (sell %s)", pool.id, run.sell_signature)

    def _buy_config(self, pool: PoolDescriptor) -> SwapConfig:
        t = self._trading
        return SwapConfig.buy(
            pool,
            spend_mint=t.spend_mint,
            spend_decimals=t.spend_decimals,
            spend_amount=t.spend_amount,
            direction=t.direction,
            max_lamports=t.max_lamports,
            max_retries=t.max_retries,
        )

    def _sell_config(self, pool: PoolDescriptor, amount: Decimal) -> SwapConfig:
        t = self._trading
        return SwapConfig.sell(
            pool,
            amount=amount,
            spend_mint=t.spend_mint,
            spend_decimals=t.spend_decimals,
            direction=t.direction,
            max_lamports=t.max_lamports,
            max_retries=t.max_retries,
        )

    async def _read_received(self, signature: str, mint: str) -> Decimal:
        try:
            tx = await self._client.fetch_transaction(signature)
        except Exception as exc:  # noqa: BLE001
            raise SettlementError(f"Could not fetch buy transaction {signature}: {exc}") from exc
        if not tx:
            raise SettlementError(f"Buy transaction {signature} not found")
        amount = received_balance(tx, self._payer, mint)
        if amount is None or amount <= 0:
            raise SettlementError(f"No {mint} balance for {self._payer} after {signature}")
        return amount

    async def _sell(self, run: PipelineRun, cfg: SwapConfig) -> str:
        base = self._trading.sell_retry_base_seconds
        max_attempts = self._trading.sell_max_attempts
        retrying = AsyncRetrying(
            stop=stop_after_attempt(max_attempts),
            wait=wait_incrementing(start=base, increment=base),
            retry=retry_if_exception_type((SwapBuildError, SwapBroadcastError)),
            sleep=self._sleep,
            before_sleep=self._log_sell_retry,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    run.sell_attempts += 1
                    METRICS.increment("pipeline.sell_attempts")
                    return await self._executor.swap(run.pool, cfg)
        except RetryError as exc:
            last = exc.last_attempt.exception()
            raise RetriesExhausted(run.pool.id, run.sell_attempts) from last
        raise RetriesExhausted(run.pool.id, run.sell_attempts)

    def _log_sell_retry(self, state: RetryCallState) -> None:
        outcome = state.outcome
        error = outcome.exception() if outcome is not None else None
        delay = state.next_action.sleep if state.next_action is not None else 0.0
        self._logger.warning(
            "Selling error on #%d attempt, retrying in %.1fs: %s", state.attempt_number, delay, error
        )

    def status(self) -> Dict[str, Any]:
        return {
            "in_flight": self.in_flight,
            "recent": [
                {
                    "pool": run.pool.id,
                    "stage": run.stage.value,
                    "sell_attempts": run.sell_attempts,
                    "error": run.error,
                }
                for run in self._history
            ],
        }


__all__ = ["RetriesExhausted", "SettlementError", "SwapOrchestrator", "received_balance"]

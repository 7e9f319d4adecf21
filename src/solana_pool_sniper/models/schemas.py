"""Data models shared by discovery, screening, and execution."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import ROUND_DOWN, Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from ..utils.constants import (
    OPENBOOK_MARKET_VERSION,
    RAYDIUM_AMM_V4_VERSION,
    SOL_MINT,
    SYSTEM_PROGRAM_ID,
    utc_now,
)


class SwapDirection(str, Enum):
    """Which side of the swap is fixed."""

    EXACT_IN = "in"
    EXACT_OUT = "out"


class PipelineStage(str, Enum):
    """Lifecycle of one pool's buy/sell run."""

    DISCOVERED = "discovered"
    BUYING = "buying"
    AWAITING_SETTLEMENT = "awaiting_settlement"
    SELLING = "selling"
    DONE = "done"
    FAILED = "failed"


@dataclass(slots=True, frozen=True)
class LpInitLog:
    """Fields Raydium logs when a pool is initialised."""

    nonce: int
    open_time: int
    init_pc_amount: int
    init_coin_amount: int


@dataclass(slots=True, frozen=True)
class MarketState:
    """OpenBook market accounts required to swap against a pool."""

    market_id: str
    authority: str
    base_vault: str
    quote_vault: str
    bids: str
    asks: str
    event_queue: str


@dataclass(slots=True, frozen=True)
class PoolInfo:
    """Everything recoverable from the pool initialisation transaction alone."""

    id: str
    program_id: str
    base_mint: str
    quote_mint: str
    lp_mint: str
    base_decimals: int
    quote_decimals: int
    lp_decimals: int
    authority: str
    open_orders: str
    target_orders: str
    base_vault: str
    quote_vault: str
    lp_vault: str
    market_program_id: str
    market_id: str
    base_reserve: int
    quote_reserve: int
    lp_reserve: int
    open_time: int


@dataclass(slots=True, frozen=True)
class PoolDescriptor:
    """Complete pool keys for a freshly initialised Raydium v4 pool."""

    id: str
    program_id: str
    base_mint: str
    quote_mint: str
    lp_mint: str
    base_decimals: int
    quote_decimals: int
    lp_decimals: int
    authority: str
    open_orders: str
    target_orders: str
    base_vault: str
    quote_vault: str
    lp_vault: str
    market_program_id: str
    market_id: str
    market_authority: str
    market_base_vault: str
    market_quote_vault: str
    market_bids: str
    market_asks: str
    market_event_queue: str
    base_reserve: int
    quote_reserve: int
    lp_reserve: int
    open_time: int
    withdraw_queue: str = SYSTEM_PROGRAM_ID
    version: int = RAYDIUM_AMM_V4_VERSION
    market_version: int = OPENBOOK_MARKET_VERSION

    @classmethod
    def assemble(cls, info: PoolInfo, market: MarketState) -> "PoolDescriptor":
        if market.market_id != info.market_id:
            raise ValueError(
                f"Market state {market.market_id} does not belong to pool market {info.market_id}"
            )
        return cls(
            id=info.id,
            program_id=info.program_id,
            base_mint=info.base_mint,
            quote_mint=info.quote_mint,
            lp_mint=info.lp_mint,
            base_decimals=info.base_decimals,
            quote_decimals=info.quote_decimals,
            lp_decimals=info.lp_decimals,
            authority=info.authority,
            open_orders=info.open_orders,
            target_orders=info.target_orders,
            base_vault=info.base_vault,
            quote_vault=info.quote_vault,
            lp_vault=info.lp_vault,
            market_program_id=info.market_program_id,
            market_id=info.market_id,
            market_authority=market.authority,
            market_base_vault=market.base_vault,
            market_quote_vault=market.quote_vault,
            market_bids=market.bids,
            market_asks=market.asks,
            market_event_queue=market.event_queue,
            base_reserve=info.base_reserve,
            quote_reserve=info.quote_reserve,
            lp_reserve=info.lp_reserve,
            open_time=info.open_time,
        )

    def target_mint(self) -> Tuple[str, int]:
        """Return the non-native mint of the pair and its decimals."""

        if self.base_mint != SOL_MINT:
            return self.base_mint, self.base_decimals
        return self.quote_mint, self.quote_decimals

    def summary(self) -> Dict[str, Any]:
        return {
            "pool": self.id,
            "base_mint": self.base_mint,
            "quote_mint": self.quote_mint,
            "lp_mint": self.lp_mint,
            "base_reserve": self.base_reserve,
            "quote_reserve": self.quote_reserve,
            "open_time": self.open_time,
        }


@dataclass(slots=True, frozen=True)
class SwapConfig:
    """One leg of a trade."""

    input_mint: str
    input_decimals: int
    output_mint: str
    output_decimals: int
    amount_in: Decimal
    direction: SwapDirection = SwapDirection.EXACT_IN
    max_lamports: int = 0
    max_retries: int = 0

    @classmethod
    def buy(
        cls,
        pool: PoolDescriptor,
        *,
        spend_mint: str,
        spend_decimals: int,
        spend_amount: Decimal,
        direction: SwapDirection,
        max_lamports: int,
        max_retries: int,
    ) -> "SwapConfig":
        target_mint, target_decimals = pool.target_mint()
        return cls(
            input_mint=spend_mint,
            input_decimals=spend_decimals,
            output_mint=target_mint,
            output_decimals=target_decimals,
            amount_in=spend_amount,
            direction=direction,
            max_lamports=max_lamports,
            max_retries=max_retries,
        )

    @classmethod
    def sell(
        cls,
        pool: PoolDescriptor,
        *,
        amount: Decimal,
        spend_mint: str,
        spend_decimals: int,
        direction: SwapDirection,
        max_lamports: int,
        max_retries: int,
    ) -> "SwapConfig":
        target_mint, target_decimals = pool.target_mint()
        return cls(
            input_mint=target_mint,
            input_decimals=target_decimals,
            output_mint=spend_mint,
            output_decimals=spend_decimals,
            amount_in=amount,
            direction=direction,
            max_lamports=max_lamports,
            max_retries=max_retries,
        )

    def raw_amount_in(self) -> int:
        return int(self.amount_in.scaleb(self.input_decimals).to_integral_value(rounding=ROUND_DOWN))


@dataclass(slots=True, frozen=True)
class LogNotification:
    """A single logsSubscribe notification."""

    signature: str
    logs: Tuple[str, ...]
    err: Optional[Any] = None
    slot: Optional[int] = None


@dataclass(slots=True)
class PipelineRun:
    """State of one pool's buy → settle → sell run."""

    pool: PoolDescriptor
    stage: PipelineStage = PipelineStage.DISCOVERED
    history: List[PipelineStage] = field(default_factory=lambda: [PipelineStage.DISCOVERED])
    sell_attempts: int = 0
    buy_signature: Optional[str] = None
    sell_signature: Optional[str] = None
    received_amount: Optional[Decimal] = None
    error: Optional[str] = None
    started_at: datetime = field(default_factory=utc_now)
    finished_at: Optional[datetime] = None

    def advance(self, stage: PipelineStage) -> None:
        if self.stage in (PipelineStage.DONE, PipelineStage.FAILED):
            raise RuntimeError(f"Pipeline for {self.pool.id} already finished as {self.stage.value}")
        if stage in self.history:
            raise RuntimeError(f"Pipeline stage {stage.value} cannot be revisited")
        self.stage = stage
        self.history.append(stage)
        if stage in (PipelineStage.DONE, PipelineStage.FAILED):
            self.finished_at = utc_now()

    def fail(self, error: BaseException) -> None:
        self.error = f"{type(error).__name__}: {error}"
        self.advance(PipelineStage.FAILED)

    @property
    def succeeded(self) -> bool:
        return self.stage == PipelineStage.DONE


__all__ = [
    "LogNotification",
    "LpInitLog",
    "MarketState",
    "PipelineRun",
    "PipelineStage",
    "PoolDescriptor",
    "PoolInfo",
    "SwapConfig",
    "SwapDirection",
]

from __future__ import annotations

from typing import Any, Dict, List, Optional

import pytest

from solana_pool_sniper.models.schemas import MarketState, PoolDescriptor
from solana_pool_sniper.monitoring.metrics import METRICS
from solana_pool_sniper.utils.constants import RAYDIUM_AMM_V4_PROGRAM_ID, SOL_MINT, TOKEN_PROGRAM_ID

TARGET_MINT = "7GCihgDB8fe6KNjn2MYtkzZcRjQy3t9GHdC8uHYmW2hr"
PAYER = "4Nd1mBQtrMJVYVfKf2PJy9NZUZdTAsp7D4xWLs4gDB4T"
MARKET_PROGRAM = "srmqPvymJeFKQ4zGQed1GFppgkRHL9kaELCbyksJtPX"

# Init instruction account list, positions as the AMM v4 program lays them out.
INIT_ACCOUNTS = [
    TOKEN_PROGRAM_ID,  # 0
    "ATokenGPvbdGVxr1b2hvZbsiqW5xWH25efTNsLJA8knL",  # 1
    "11111111111111111111111111111111",  # 2
    "SysvarRent111111111111111111111111111111111",  # 3
    "PoolId1111111111111111111111111111111111111",  # 4
    "5Q544fKrFoe6tsEbD7S8EmxGTJYAKtTVhAW5Q5pge4j1",  # 5
    "OpenOrders111111111111111111111111111111111",  # 6
    "LpMint11111111111111111111111111111111111111",  # 7
    TARGET_MINT,  # 8
    SOL_MINT,  # 9
    "BaseVau1t111111111111111111111111111111111",  # 10
    "QuoteVau1t11111111111111111111111111111111",  # 11
    "TargetAcc111111111111111111111111111111111",  # 12
    "TargetOrders1111111111111111111111111111111",  # 13
    "Config1111111111111111111111111111111111111",  # 14
    MARKET_PROGRAM,  # 15
    "Market1111111111111111111111111111111111111",  # 16
    PAYER,  # 17
]

INIT_LOG = (
    "Program log: initialize2: InitializeInstruction2 { nonce: 254, open_time: 1700000000, "
    "init_pc_amount: 5000000000, init_coin_amount: 7000000000000 }"
)


def _parsed(program_id: str, kind: str, info: Dict[str, Any]) -> Dict[str, Any]:
    return {"programId": program_id, "program": "spl-token", "parsed": {"type": kind, "info": info}}


def build_init_transaction(inner: Optional[List[Dict[str, Any]]] = None) -> Dict[str, Any]:
    lp_mint = INIT_ACCOUNTS[7]
    if inner is None:
        inner = [
            _parsed(TOKEN_PROGRAM_ID, "initializeMint", {"mint": lp_mint, "decimals": 9}),
            _parsed(
                TOKEN_PROGRAM_ID,
                "transfer",
                {"source": "PayerBase", "destination": INIT_ACCOUNTS[10], "amount": "7000000000000"},
            ),
            _parsed(
                TOKEN_PROGRAM_ID,
                "transfer",
                {"source": "PayerQuote", "destination": INIT_ACCOUNTS[11], "amount": "5000000000"},
            ),
            _parsed(
                TOKEN_PROGRAM_ID,
                "mintTo",
                {"mint": lp_mint, "account": "LpVau1t111111111111111111111111111111111", "amount": "187082869338"},
            ),
        ]
    return {
        "slot": 250_000_000,
        "transaction": {
            "signatures": ["sig-init"],
            "message": {
                "instructions": [
                    {"programId": "ComputeBudget111111111111111111111111111111", "accounts": [], "data": "3"},
                    {"programId": RAYDIUM_AMM_V4_PROGRAM_ID, "accounts": list(INIT_ACCOUNTS), "data": "x"},
                ],
            },
        },
        "meta": {
            "err": None,
            "innerInstructions": [{"index": 1, "instructions": inner}],
            "logMessages": [
                f"Program {RAYDIUM_AMM_V4_PROGRAM_ID} invoke [1]",
                INIT_LOG,
                f"Program {RAYDIUM_AMM_V4_PROGRAM_ID} success",
            ],
            "preTokenBalances": [
                {
                    "accountIndex": 3,
                    "mint": SOL_MINT,
                    "owner": PAYER,
                    "uiTokenAmount": {"amount": "5000000000", "decimals": 9, "uiAmountString": "5"},
                },
                {
                    "accountIndex": 4,
                    "mint": TARGET_MINT,
                    "owner": PAYER,
                    "uiTokenAmount": {"amount": "7000000000000", "decimals": 6, "uiAmountString": "7000000"},
                },
            ],
            "postTokenBalances": [],
        },
    }


def make_market_state(market_id: str = INIT_ACCOUNTS[16]) -> MarketState:
    return MarketState(
        market_id=market_id,
        authority="MarketAuth111111111111111111111111111111111",
        base_vault="MarketBase11111111111111111111111111111111",
        quote_vault="MarketQuote1111111111111111111111111111111",
        bids="Bids111111111111111111111111111111111111111",
        asks="Asks111111111111111111111111111111111111111",
        event_queue="EventQ11111111111111111111111111111111111",
    )


def make_pool(pool_id: str = "PoolId1111111111111111111111111111111111111", **overrides) -> PoolDescriptor:
    fields: Dict[str, Any] = dict(
        id=pool_id,
        program_id=RAYDIUM_AMM_V4_PROGRAM_ID,
        base_mint=TARGET_MINT,
        quote_mint=SOL_MINT,
        lp_mint=INIT_ACCOUNTS[7],
        base_decimals=6,
        quote_decimals=9,
        lp_decimals=9,
        authority=INIT_ACCOUNTS[5],
        open_orders=INIT_ACCOUNTS[6],
        target_orders=INIT_ACCOUNTS[13],
        base_vault=INIT_ACCOUNTS[10],
        quote_vault=INIT_ACCOUNTS[11],
        lp_vault="LpVau1t111111111111111111111111111111111",
        market_program_id=MARKET_PROGRAM,
        market_id=INIT_ACCOUNTS[16],
        market_authority="MarketAuth111111111111111111111111111111111",
        market_base_vault="MarketBase11111111111111111111111111111111",
        market_quote_vault="MarketQuote1111111111111111111111111111111",
        market_bids="Bids111111111111111111111111111111111111111",
        market_asks="Asks111111111111111111111111111111111111111",
        market_event_queue="EventQ11111111111111111111111111111111111",
        base_reserve=7_000_000_000_000,
        quote_reserve=5_000_000_000,
        lp_reserve=187_082_869_338,
        open_time=1_700_000_000,
    )
    fields.update(overrides)
    return PoolDescriptor(**fields)


def mint_account(
    *,
    freeze_authority: Optional[str] = None,
    mint_authority: Optional[str] = None,
    initialized: bool = True,
    owner: str = TOKEN_PROGRAM_ID,
) -> Dict[str, Any]:
    return {
        "owner": owner,
        "lamports": 1461600,
        "executable": False,
        "data": {
            "program": "spl-token",
            "space": 82,
            "parsed": {
                "type": "mint",
                "info": {
                    "decimals": 6,
                    "freezeAuthority": freeze_authority,
                    "mintAuthority": mint_authority,
                    "isInitialized": initialized,
                    "supply": "1000000000000000",
                },
            },
        },
    }


def buy_receipt(amount: str = "1234.5", *, owner: str = PAYER, mint: str = TARGET_MINT) -> Dict[str, Any]:
    return {
        "meta": {
            "err": None,
            "postTokenBalances": [
                {
                    "mint": SOL_MINT,
                    "owner": owner,
                    "uiTokenAmount": {"amount": "0", "decimals": 9, "uiAmountString": "0"},
                },
                {
                    "mint": mint,
                    "owner": owner,
                    "uiTokenAmount": {"amount": "1234500000", "decimals": 6, "uiAmountString": amount},
                },
            ],
        }
    }


class FakeLedger:
    """In-memory stand-in for :class:`LedgerClient`."""

    def __init__(self) -> None:
        self.transactions: Dict[str, Any] = {}
        self.accounts: Dict[str, Any] = {}
        self.supplies: Dict[str, Any] = {}
        self.markets: Dict[str, MarketState] = {}
        self.fetch_calls: List[str] = []
        self.subscriptions: List[Any] = []
        self.unsubscribed: List[Any] = []

    async def subscribe(self, program_id, callback):
        handle = {"program_id": program_id, "callback": callback}
        self.subscriptions.append(handle)
        return handle

    async def unsubscribe(self, handle) -> None:
        self.unsubscribed.append(handle)

    async def fetch_parsed_transaction(self, signature: str):
        self.fetch_calls.append(signature)
        return self.transactions.get(signature)

    async def fetch_transaction(self, signature: str):
        return self.transactions.get(signature)

    async def fetch_parsed_account(self, address: str):
        value = self.accounts.get(address)
        if isinstance(value, Exception):
            raise value
        return value

    async def fetch_token_supply(self, mint: str) -> int:
        value = self.supplies.get(mint, 0)
        if isinstance(value, Exception):
            raise value
        return value

    async def fetch_market_state(self, market_id: str, market_program_id: str) -> MarketState:
        return self.markets.get(market_id) or make_market_state(market_id)

    async def close(self) -> None:
        return None


@pytest.fixture()
def ledger() -> FakeLedger:
    return FakeLedger()


@pytest.fixture(autouse=True)
def _reset_metrics():
    METRICS.reset()
    yield
    METRICS.reset()

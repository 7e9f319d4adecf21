"""Recover Raydium v4 pool keys from a pool initialisation transaction.

The decoder works on the ``jsonParsed`` transaction shape returned by
``getTransaction``. Account roles are read positionally from the AMM init
instruction through :data:`AMM_V4_INIT_ACCOUNTS`; reserves, the LP vault and
LP decimals come from the token-program inner instructions the init emits.
Decoding is all-or-nothing: every lookup happens before a :class:`PoolInfo`
is built.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple

from ..models.schemas import PoolDescriptor, PoolInfo
from ..monitoring.logger import get_logger
from ..utils.constants import (
    LP_INIT_LOG_MARKER,
    RAYDIUM_AMM_V4_PROGRAM_ID,
    RAYDIUM_AMM_V4_VERSION,
    SOL_DECIMALS,
    SOL_MINT,
    TOKEN_PROGRAM_ID,
)
from .log_parser import MalformedLogFragment, find_log_entry, parse_lp_init_log

_INIT_MINT_TYPES = frozenset({"initializeMint", "initializeMint2"})
_TRANSFER_TYPES = frozenset({"transfer", "transferChecked"})


@dataclass(slots=True, frozen=True)
class InitAccountLayout:
    """Positions of each role in the AMM init instruction's account list."""

    version: int
    pool_id: int
    authority: int
    open_orders: int
    lp_mint: int
    base_mint: int
    quote_mint: int
    base_vault: int
    quote_vault: int
    target_orders: int
    market_program_id: int
    market_id: int

    @property
    def min_accounts(self) -> int:
        return (
            max(
                self.pool_id,
                self.authority,
                self.open_orders,
                self.lp_mint,
                self.base_mint,
                self.quote_mint,
                self.base_vault,
                self.quote_vault,
                self.target_orders,
                self.market_program_id,
                self.market_id,
            )
            + 1
        )


AMM_V4_INIT_ACCOUNTS = InitAccountLayout(
    version=RAYDIUM_AMM_V4_VERSION,
    pool_id=4,
    authority=5,
    open_orders=6,
    lp_mint=7,
    base_mint=8,
    quote_mint=9,
    base_vault=10,
    quote_vault=11,
    target_orders=13,
    market_program_id=15,
    market_id=16,
)

INIT_ACCOUNT_LAYOUTS: Dict[int, InitAccountLayout] = {
    AMM_V4_INIT_ACCOUNTS.version: AMM_V4_INIT_ACCOUNTS,
}


class DecodeFailure(str, Enum):
    NO_INIT_INSTRUCTION = "no_init_instruction"
    SHORT_ACCOUNT_LIST = "short_account_list"
    MISSING_LP_MINT_INIT = "missing_lp_mint_init"
    MISSING_LP_MINT_TO = "missing_lp_mint_to"
    MISSING_BASE_TRANSFER = "missing_base_transfer"
    MISSING_QUOTE_TRANSFER = "missing_quote_transfer"
    MISSING_LOG_ENTRY = "missing_log_entry"
    MALFORMED_LOG = "malformed_log"
    MISSING_DECIMALS = "missing_decimals"
    TRANSACTION_NOT_FOUND = "transaction_not_found"


class DecodeError(Exception):
    """Raised when a transaction cannot be turned into pool keys."""

    def __init__(self, reason: DecodeFailure, detail: str = "") -> None:
        message = reason.value if not detail else f"{reason.value}: {detail}"
        super().__init__(message)
        self.reason = reason


def _message(tx: Mapping[str, Any]) -> Mapping[str, Any]:
    return (tx.get("transaction") or {}).get("message") or {}


def _meta(tx: Mapping[str, Any]) -> Mapping[str, Any]:
    return tx.get("meta") or {}


def _account_key(entry: Any) -> str:
    # jsonParsed account lists hold strings; some providers wrap them as {"pubkey": ...}.
    if isinstance(entry, Mapping):
        return str(entry.get("pubkey"))
    return str(entry)


def _iter_inner_parsed(tx: Mapping[str, Any]) -> Iterator[Tuple[str, str, Mapping[str, Any]]]:
    for group in _meta(tx).get("innerInstructions") or []:
        for instruction in group.get("instructions") or []:
            parsed = instruction.get("parsed")
            if not isinstance(parsed, Mapping):
                continue
            yield instruction.get("programId", ""), parsed.get("type", ""), parsed.get("info") or {}


def find_instruction_by_program(
    tx: Mapping[str, Any], program_id: str
) -> Optional[Mapping[str, Any]]:
    for instruction in _message(tx).get("instructions") or []:
        if instruction.get("programId") == program_id:
            return instruction
    return None


def find_initialize_mint(tx: Mapping[str, Any], mint: str) -> Optional[Mapping[str, Any]]:
    for _, kind, info in _iter_inner_parsed(tx):
        if kind in _INIT_MINT_TYPES and info.get("mint") == mint:
            return info
    return None


def find_mint_to(tx: Mapping[str, Any], mint: str) -> Optional[Mapping[str, Any]]:
    for _, kind, info in _iter_inner_parsed(tx):
        if kind == "mintTo" and info.get("mint") == mint:
            return info
    return None


def find_transfer_to(
    tx: Mapping[str, Any], destination: str, program_id: str = TOKEN_PROGRAM_ID
) -> Optional[Mapping[str, Any]]:
    for instruction_program, kind, info in _iter_inner_parsed(tx):
        if instruction_program != program_id:
            continue
        if kind in _TRANSFER_TYPES and info.get("destination") == destination:
            return info
    return None


def _transfer_amount(info: Mapping[str, Any]) -> int:
    if "amount" in info:
        return int(info["amount"])
    # transferChecked reports the raw amount under tokenAmount.
    return int((info.get("tokenAmount") or {}).get("amount", 0))


def resolve_pair_decimals(
    base_mint: str, pre_token_balances: Sequence[Mapping[str, Any]]
) -> Tuple[int, int]:
    """Return ``(base_decimals, quote_decimals)``.

    The native side is always 9. The other side is read from the first
    pre-balance entry whose mint is not native.
    """

    other: Optional[int] = None
    for balance in pre_token_balances:
        if balance.get("mint") == SOL_MINT:
            continue
        decimals = (balance.get("uiTokenAmount") or {}).get("decimals")
        if isinstance(decimals, int):
            other = decimals
            break
    if other is None:
        raise DecodeError(DecodeFailure.MISSING_DECIMALS, "no non-native preTokenBalances entry")
    if base_mint == SOL_MINT:
        return SOL_DECIMALS, other
    return other, SOL_DECIMALS


def parse_pool_info(
    tx: Mapping[str, Any],
    *,
    program_id: str = RAYDIUM_AMM_V4_PROGRAM_ID,
    layout: InitAccountLayout = AMM_V4_INIT_ACCOUNTS,
) -> PoolInfo:
    """Build :class:`PoolInfo` from a ``jsonParsed`` init transaction."""

    init = find_instruction_by_program(tx, program_id)
    if init is None:
        raise DecodeError(DecodeFailure.NO_INIT_INSTRUCTION, program_id)
    accounts: List[str] = [_account_key(entry) for entry in init.get("accounts") or []]
    if len(accounts) < layout.min_accounts:
        raise DecodeError(
            DecodeFailure.SHORT_ACCOUNT_LIST,
            f"{len(accounts)} accounts, layout v{layout.version} needs {layout.min_accounts}",
        )

    lp_mint = accounts[layout.lp_mint]
    base_mint = accounts[layout.base_mint]
    quote_mint = accounts[layout.quote_mint]
    base_vault = accounts[layout.base_vault]
    quote_vault = accounts[layout.quote_vault]

    lp_init = find_initialize_mint(tx, lp_mint)
    if lp_init is None:
        raise DecodeError(DecodeFailure.MISSING_LP_MINT_INIT, lp_mint)
    lp_mint_to = find_mint_to(tx, lp_mint)
    if lp_mint_to is None:
        raise DecodeError(DecodeFailure.MISSING_LP_MINT_TO, lp_mint)
    base_transfer = find_transfer_to(tx, base_vault)
    if base_transfer is None:
        raise DecodeError(DecodeFailure.MISSING_BASE_TRANSFER, base_vault)
    quote_transfer = find_transfer_to(tx, quote_vault)
    if quote_transfer is None:
        raise DecodeError(DecodeFailure.MISSING_QUOTE_TRANSFER, quote_vault)

    meta = _meta(tx)
    entry = find_log_entry(LP_INIT_LOG_MARKER, meta.get("logMessages") or [])
    if entry is None:
        raise DecodeError(DecodeFailure.MISSING_LOG_ENTRY, LP_INIT_LOG_MARKER)
    try:
        init_log = parse_lp_init_log(entry)
    except MalformedLogFragment as exc:
        raise DecodeError(DecodeFailure.MALFORMED_LOG, str(exc)) from exc

    base_decimals, quote_decimals = resolve_pair_decimals(base_mint, meta.get("preTokenBalances") or [])

    return PoolInfo(
        id=accounts[layout.pool_id],
        program_id=program_id,
        base_mint=base_mint,
        quote_mint=quote_mint,
        lp_mint=lp_mint,
        base_decimals=base_decimals,
        quote_decimals=quote_decimals,
        lp_decimals=int(lp_init.get("decimals", 0)),
        authority=accounts[layout.authority],
        open_orders=accounts[layout.open_orders],
        target_orders=accounts[layout.target_orders],
        base_vault=base_vault,
        quote_vault=quote_vault,
        lp_vault=str(lp_mint_to.get("account")),
        market_program_id=accounts[layout.market_program_id],
        market_id=accounts[layout.market_id],
        base_reserve=_transfer_amount(base_transfer),
        quote_reserve=_transfer_amount(quote_transfer),
        lp_reserve=int(lp_mint_to.get("amount", 0)),
        open_time=init_log.open_time,
    )


class TransactionDecoder:
    """Turns pool initialisation transactions into :class:`PoolDescriptor` objects."""

    def __init__(
        self,
        client,
        program_id: str = RAYDIUM_AMM_V4_PROGRAM_ID,
        *,
        version: int = RAYDIUM_AMM_V4_VERSION,
    ) -> None:
        if version not in INIT_ACCOUNT_LAYOUTS:
            raise ValueError(f"No init account layout registered for AMM version {version}")
        self._client = client
        self._program_id = program_id
        self._layout = INIT_ACCOUNT_LAYOUTS[version]
        self._logger = get_logger(__name__)

    @property
    def program_id(self) -> str:
        return self._program_id

    def parse_pool_info(self, tx: Mapping[str, Any]) -> PoolInfo:
        return parse_pool_info(tx, program_id=self._program_id, layout=self._layout)

    async def decode(self, tx: Mapping[str, Any]) -> PoolDescriptor:
        info = self.parse_pool_info(tx)
        market = await self._client.fetch_market_state(info.market_id, info.market_program_id)
        descriptor = PoolDescriptor.assemble(info, market)
        self._logger.debug("Decoded pool %s (market %s)", descriptor.id, descriptor.market_id)
        return descriptor

    async def fetch_pool_descriptor(self, signature: str) -> PoolDescriptor:
        tx = await self._client.fetch_parsed_transaction(signature)
        if not tx:
            raise DecodeError(DecodeFailure.TRANSACTION_NOT_FOUND, signature)
        return await self.decode(tx)


__all__ = [
    "AMM_V4_INIT_ACCOUNTS",
    "DecodeError",
    "DecodeFailure",
    "INIT_ACCOUNT_LAYOUTS",
    "InitAccountLayout",
    "TransactionDecoder",
    "find_initialize_mint",
    "find_instruction_by_program",
    "find_mint_to",
    "find_transfer_to",
    "parse_pool_info",
    "resolve_pair_decimals",
]

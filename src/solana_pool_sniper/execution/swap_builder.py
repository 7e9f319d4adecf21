"""Raydium AMM v4 swap transactions.

One swap transaction carries, in order: a compute unit price, idempotent
creation of the payer's associated token accounts, a wSOL wrap when SOL is
spent, the AMM swap itself, and a close of the wSOL account so lamports come
back to the payer. The minimum output is a single raw unit; no pricing is
done here.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import List

from solders.compute_budget import set_compute_unit_price
from solders.hash import Hash
from solders.instruction import AccountMeta, Instruction
from solders.message import MessageV0
from solders.pubkey import Pubkey
from solders.system_program import TransferParams, transfer
from solders.transaction import VersionedTransaction
from spl.token.constants import TOKEN_PROGRAM_ID
from spl.token.instructions import (
    close_account,
    create_idempotent_associated_token_account,
    get_associated_token_address,
    sync_native,
)
from spl.token.models import CloseAccountParams, SyncNativeParams

from ..models.schemas import PoolDescriptor, SwapConfig, SwapDirection
from ..monitoring.logger import get_logger
from ..monitoring.metrics import METRICS
from ..utils.constants import SOL_MINT
from .wallet import Wallet

RAYDIUM_AMM_AUTHORITY = Pubkey.from_string("5Q544fKrFoe6tsEbD7S8EmxGTJYAKtTVhAW5Q5pge4j1")
SWAP_BASE_IN = 9
SWAP_BASE_OUT = 11
MIN_AMOUNT_OUT = 1


class SwapBuildError(RuntimeError):
    """Raised when a swap transaction cannot be assembled or signed."""


class SwapBroadcastError(RuntimeError):
    """Raised when a signed swap is rejected or never confirms."""


@dataclass(slots=True, frozen=True)
class SignedSwap:
    transaction: VersionedTransaction
    blockhash: Hash
    last_valid_block_height: int

    def serialize(self) -> bytes:
        return bytes(self.transaction)


def swap_instruction_data(direction: SwapDirection, amount: int, limit: int = MIN_AMOUNT_OUT) -> bytes:
    """``swapBaseIn``: (amount_in, min_out). ``swapBaseOut``: (max_in, amount_out)."""

    discriminator = SWAP_BASE_IN if direction == SwapDirection.EXACT_IN else SWAP_BASE_OUT
    return struct.pack("<BQQ", discriminator, amount, limit)


def build_swap_instruction(
    pool: PoolDescriptor,
    *,
    owner: Pubkey,
    source: Pubkey,
    destination: Pubkey,
    data: bytes,
) -> Instruction:
    def key(value: str) -> Pubkey:
        return Pubkey.from_string(value)

    accounts = [
        AccountMeta(TOKEN_PROGRAM_ID, is_signer=False, is_writable=False),
        AccountMeta(key(pool.id), is_signer=False, is_writable=True),
        AccountMeta(RAYDIUM_AMM_AUTHORITY, is_signer=False, is_writable=False),
        AccountMeta(key(pool.open_orders), is_signer=False, is_writable=True),
        AccountMeta(key(pool.target_orders), is_signer=False, is_writable=True),
        AccountMeta(key(pool.base_vault), is_signer=False, is_writable=True),
        AccountMeta(key(pool.quote_vault), is_signer=False, is_writable=True),
        AccountMeta(key(pool.market_program_id), is_signer=False, is_writable=False),
        AccountMeta(key(pool.market_id), is_signer=False, is_writable=True),
        AccountMeta(key(pool.market_bids), is_signer=False, is_writable=True),
        AccountMeta(key(pool.market_asks), is_signer=False, is_writable=True),
        AccountMeta(key(pool.market_event_queue), is_signer=False, is_writable=True),
        AccountMeta(key(pool.market_base_vault), is_signer=False, is_writable=True),
        AccountMeta(key(pool.market_quote_vault), is_signer=False, is_writable=True),
        AccountMeta(key(pool.market_authority), is_signer=False, is_writable=False),
        AccountMeta(source, is_signer=False, is_writable=True),
        AccountMeta(destination, is_signer=False, is_writable=True),
        AccountMeta(owner, is_signer=True, is_writable=False),
    ]
    return Instruction(key(pool.program_id), data, accounts)


class RaydiumSwapBuilder:
    """Assembles and signs v0 swap transactions for the payer wallet."""

    def __init__(self, client, wallet: Wallet) -> None:
        self._client = client
        self._wallet = wallet
        self._logger = get_logger(__name__)

    def instructions(self, pool: PoolDescriptor, cfg: SwapConfig) -> List[Instruction]:
        owner = self._wallet.public_key
        input_mint = Pubkey.from_string(cfg.input_mint)
        output_mint = Pubkey.from_string(cfg.output_mint)
        source = get_associated_token_address(owner, input_mint)
        destination = get_associated_token_address(owner, output_mint)
        amount = cfg.raw_amount_in()
        if amount <= 0:
            raise SwapBuildError(f"Swap amount {cfg.amount_in} rounds to zero raw units")

        ixs: List[Instruction] = []
        if cfg.max_lamports:
            ixs.append(set_compute_unit_price(cfg.max_lamports))
        ixs.append(create_idempotent_associated_token_account(owner, owner, input_mint))
        if cfg.input_mint == SOL_MINT:
            ixs.append(transfer(TransferParams(from_pubkey=owner, to_pubkey=source, lamports=amount)))
            ixs.append(sync_native(SyncNativeParams(program_id=TOKEN_PROGRAM_ID, account=source)))
        ixs.append(create_idempotent_associated_token_account(owner, owner, output_mint))
        ixs.append(
            build_swap_instruction(
                pool,
                owner=owner,
                source=source,
                destination=destination,
                data=swap_instruction_data(cfg.direction, amount),
            )
        )
        wrapped_accounts: List[Pubkey] = []
        if cfg.input_mint == SOL_MINT:
            wrapped_accounts.append(source)
        if cfg.output_mint == SOL_MINT:
            wrapped_accounts.append(destination)
        for wrapped in wrapped_accounts:
            ixs.append(
                close_account(
                    CloseAccountParams(program_id=TOKEN_PROGRAM_ID, account=wrapped, dest=owner, owner=owner)
                )
            )
        return ixs

    async def build(self, pool: PoolDescriptor, cfg: SwapConfig) -> SignedSwap:
        instructions = self.instructions(pool, cfg)
        blockhash, last_valid_block_height = await self._client.latest_blockhash()
        message = MessageV0.try_compile(
            payer=self._wallet.public_key,
            instructions=instructions,
            address_lookup_table_accounts=[],
            recent_blockhash=blockhash,
        )
        transaction = VersionedTransaction(message, [self._wallet.keypair])
        return SignedSwap(
            transaction=transaction,
            blockhash=blockhash,
            last_valid_block_height=last_valid_block_height,
        )


class SwapExecutor:
    """Builds, broadcasts and confirms one swap leg."""

    def __init__(self, builder: RaydiumSwapBuilder, client) -> None:
        self._builder = builder
        self._client = client
        self._logger = get_logger(__name__)

    async def swap(self, pool: PoolDescriptor, cfg: SwapConfig) -> str:
        try:
            signed = await self._builder.build(pool, cfg)
        except SwapBuildError:
            METRICS.increment("swap.build_failures")
            raise
        except Exception as exc:  # noqa: BLE001 - any assembly failure is a build failure
            METRICS.increment("swap.build_failures")
            raise SwapBuildError(f"Failed to build swap for pool {pool.id}: {exc}") from exc

        try:
            signature = await self._client.send_raw_transaction(signed.serialize(), max_retries=cfg.max_retries)
            await self._client.confirm_transaction(
                signature, last_valid_block_height=signed.last_valid_block_height
            )
        except Exception as exc:  # noqa: BLE001
            METRICS.increment("swap.broadcast_failures")
            raise SwapBroadcastError(f"Swap for pool {pool.id} did not confirm: {exc}") from exc

        METRICS.increment("swap.confirmed")
        self._logger.info("Transaction has been confirmed https://solscan.io/tx/%s", signature)
        return signature


__all__ = [
    "MIN_AMOUNT_OUT",
    "RAYDIUM_AMM_AUTHORITY",
    "RaydiumSwapBuilder",
    "SignedSwap",
    "SwapBroadcastError",
    "SwapBuildError",
    "SwapExecutor",
    "build_swap_instruction",
    "swap_instruction_data",
]

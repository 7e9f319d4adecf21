"""OpenBook (Serum v3) market state decoding."""

from __future__ import annotations

from construct import Bytes, Int64ul, Padding, Struct
from solders.pubkey import Pubkey

from ..models.schemas import MarketState

MARKET_STATE_LAYOUT_V3 = Struct(
    Padding(5),
    "account_flags" / Bytes(8),
    "own_address" / Bytes(32),
    "vault_signer_nonce" / Int64ul,
    "base_mint" / Bytes(32),
    "quote_mint" / Bytes(32),
    "base_vault" / Bytes(32),
    "base_deposits_total" / Int64ul,
    "base_fees_accrued" / Int64ul,
    "quote_vault" / Bytes(32),
    "quote_deposits_total" / Int64ul,
    "quote_fees_accrued" / Int64ul,
    "quote_dust_threshold" / Int64ul,
    "request_queue" / Bytes(32),
    "event_queue" / Bytes(32),
    "bids" / Bytes(32),
    "asks" / Bytes(32),
    "base_lot_size" / Int64ul,
    "quote_lot_size" / Int64ul,
    "fee_rate_bps" / Int64ul,
    "referrer_rebates_accrued" / Int64ul,
    Padding(7),
)

MARKET_STATE_V3_SIZE = MARKET_STATE_LAYOUT_V3.sizeof()


class MarketDecodeError(ValueError):
    """Raised when account data does not look like a v3 market."""


def derive_market_authority(market_id: str, market_program_id: str, nonce: int) -> str:
    """Vault signer PDA: seeds are the market address and the u64 LE nonce."""

    address = Pubkey.create_program_address(
        [bytes(Pubkey.from_string(market_id)), nonce.to_bytes(8, byteorder="little")],
        Pubkey.from_string(market_program_id),
    )
    return str(address)


def decode_market_state(market_id: str, market_program_id: str, data: bytes) -> MarketState:
    if len(data) < MARKET_STATE_V3_SIZE:
        raise MarketDecodeError(
            f"Market account {market_id} holds {len(data)} bytes, expected {MARKET_STATE_V3_SIZE}"
        )
    parsed = MARKET_STATE_LAYOUT_V3.parse(data)
    own_address = str(Pubkey.from_bytes(parsed.own_address))
    if own_address != market_id:
        raise MarketDecodeError(f"Market account {market_id} reports own address {own_address}")

    def key(raw: bytes) -> str:
        return str(Pubkey.from_bytes(raw))

    return MarketState(
        market_id=market_id,
        authority=derive_market_authority(market_id, market_program_id, parsed.vault_signer_nonce),
        base_vault=key(parsed.base_vault),
        quote_vault=key(parsed.quote_vault),
        bids=key(parsed.bids),
        asks=key(parsed.asks),
        event_queue=key(parsed.event_queue),
    )


__all__ = [
    "MARKET_STATE_LAYOUT_V3",
    "MARKET_STATE_V3_SIZE",
    "MarketDecodeError",
    "decode_market_state",
    "derive_market_authority",
]

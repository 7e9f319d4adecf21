"""Shared on-chain constants for Raydium pool discovery and trading."""

from datetime import datetime, timezone


def utc_now() -> datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


# Wrapped SOL; decides decimal assignment and buy/sell direction.
SOL_MINT = "So11111111111111111111111111111111111111112"
SOL_DECIMALS = 9

RAYDIUM_AMM_V4_PROGRAM_ID = "675kPX9MHTjS2zt1qfr1NYHuzeLXfQM9H24wFSUt1Mp8"
RAYDIUM_AMM_V4_VERSION = 4
OPENBOOK_MARKET_VERSION = 3

TOKEN_PROGRAM_ID = "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA"
TOKEN_2022_PROGRAM_ID = "TokenzQdBNbLqP5VEhdkAS6EPFLC1PHnBqCXEpPxuEb"
KNOWN_TOKEN_PROGRAM_IDS = frozenset({TOKEN_PROGRAM_ID, TOKEN_2022_PROGRAM_ID})

SYSTEM_PROGRAM_ID = "11111111111111111111111111111111"

# Raydium writes this key into the initialize2 log line.
LP_INIT_LOG_MARKER = "init_pc_amount"

# JSON-RPC "invalid params" code, returned for a mint account that does not exist.
ACCOUNT_NOT_FOUND_CODE = -32602

__all__ = [
    "ACCOUNT_NOT_FOUND_CODE",
    "KNOWN_TOKEN_PROGRAM_IDS",
    "LP_INIT_LOG_MARKER",
    "OPENBOOK_MARKET_VERSION",
    "RAYDIUM_AMM_V4_PROGRAM_ID",
    "RAYDIUM_AMM_V4_VERSION",
    "SOL_DECIMALS",
    "SOL_MINT",
    "SYSTEM_PROGRAM_ID",
    "TOKEN_2022_PROGRAM_ID",
    "TOKEN_PROGRAM_ID",
    "utc_now",
]

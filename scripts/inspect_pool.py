"""Decode and screen one pool initialisation transaction without trading."""

from __future__ import annotations

import argparse
import asyncio
import json
from dataclasses import asdict

from solana_pool_sniper.config.settings import get_app_config
from solana_pool_sniper.execution.ledger_client import LedgerClient
from solana_pool_sniper.ingestion.decoder import DecodeError, TransactionDecoder
from solana_pool_sniper.ingestion.screening import LiquidityBurnChecker, TokenValidator
from solana_pool_sniper.monitoring import bootstrap_observability
from solana_pool_sniper.monitoring.logger import get_logger

logger = get_logger(__name__)


async def inspect(signature: str) -> int:
    config = get_app_config()
    client = LedgerClient(config.rpc)
    try:
        decoder = TransactionDecoder(client, config.monitor.pool_program_id)
        try:
            pool = await decoder.fetch_pool_descriptor(signature)
        except DecodeError as exc:
            logger.error("Decode failed (%s): %s", exc.reason.value, exc)
            return 1
        target_mint, _ = pool.target_mint()
        report = {
            "pool": asdict(pool),
            "target_mint": target_mint,
            "token_valid": await TokenValidator(client).is_valid(target_mint),
            "lp_burned": await LiquidityBurnChecker(client).is_burned(pool.lp_mint),
        }
        print(json.dumps(report, indent=2))
        return 0
    finally:
        await client.close()


def main() -> None:
    parser = argparse.ArgumentParser(description="Inspect a Raydium v4 pool initialisation transaction")
    parser.add_argument("signature", help="Signature of the pool initialisation transaction")
    args = parser.parse_args()
    bootstrap_observability()
    raise SystemExit(asyncio.run(inspect(args.signature)))


if __name__ == "__main__":
    main()

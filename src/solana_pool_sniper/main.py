"""Entrypoint for the Raydium pool sniper."""

from __future__ import annotations

import argparse
import asyncio
from dataclasses import dataclass
from typing import Optional, Sequence

import uvicorn

from .config.settings import AppConfig, ConfigurationError, MonitoringConfig, get_app_config, validate_runtime
from .control import create_control_app
from .execution.ledger_client import LedgerClient
from .execution.orchestrator import SwapOrchestrator
from .execution.swap_builder import RaydiumSwapBuilder, SwapExecutor
from .execution.wallet import Wallet, load_wallet
from .ingestion.decoder import TransactionDecoder
from .ingestion.screening import LiquidityBurnChecker, TokenValidator
from .ingestion.subscriber import LogSubscriber
from .monitoring import bootstrap_observability
from .monitoring.logger import get_logger

logger = get_logger(__name__)


@dataclass(slots=True)
class Runtime:
    config: AppConfig
    wallet: Wallet
    client: LedgerClient
    decoder: TransactionDecoder
    validator: TokenValidator
    burn_checker: LiquidityBurnChecker
    executor: SwapExecutor
    orchestrator: SwapOrchestrator
    subscriber: LogSubscriber


def build_runtime(config: AppConfig) -> Runtime:
    """Wire every component from leaves to the subscriber."""

    validate_runtime(config)
    wallet = load_wallet(config.wallet)
    client = LedgerClient(config.rpc)
    decoder = TransactionDecoder(client, config.monitor.pool_program_id)
    validator = TokenValidator(client)
    burn_checker = LiquidityBurnChecker(client)
    executor = SwapExecutor(RaydiumSwapBuilder(client, wallet), client)
    orchestrator = SwapOrchestrator(executor, client, config.trading, wallet.address)
    subscriber = LogSubscriber(client, decoder, validator, burn_checker, orchestrator, config.monitor)
    logger.info(
        "Runtime ready: payer %s, program %s, burn check %s",
        wallet.address,
        config.monitor.pool_program_id,
        "on" if config.monitor.burn_check_enabled else "off",
    )
    return Runtime(
        config=config,
        wallet=wallet,
        client=client,
        decoder=decoder,
        validator=validator,
        burn_checker=burn_checker,
        executor=executor,
        orchestrator=orchestrator,
        subscriber=subscriber,
    )


async def run_monitor(runtime: Runtime) -> None:
    """Monitor until cancelled, then let in-flight pipelines finish."""

    await runtime.subscriber.start()
    try:
        await asyncio.Event().wait()
    finally:
        await runtime.subscriber.stop()
        await runtime.orchestrator.drain()
        await runtime.client.close()


def serve(runtime: Runtime, host: Optional[str] = None, port: Optional[int] = None) -> None:
    config = runtime.config
    app = create_control_app(runtime.subscriber, runtime.orchestrator, on_shutdown=runtime.client.close)
    uvicorn.run(
        app,
        host=host or config.control.host,
        port=port or config.control.port,
        log_level=config.monitoring.log_level.lower(),
    )


def main(argv: Optional[Sequence[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="Snipe newly initialised Raydium AMM v4 pools")
    parser.add_argument("--log-level", help="Override the configured log level")
    subparsers = parser.add_subparsers(dest="command")
    serve_parser = subparsers.add_parser("serve", help="Run the HTTP control API (default)")
    serve_parser.add_argument("--host", help="Override control API host")
    serve_parser.add_argument("--port", type=int, help="Override control API port")
    subparsers.add_parser("monitor", help="Start monitoring immediately without the HTTP API")
    args = parser.parse_args(argv)

    config = get_app_config()
    if args.log_level:
        try:
            monitoring = MonitoringConfig(log_level=args.log_level)
        except ValueError as exc:
            parser.error(str(exc))
        config = config.model_copy(update={"monitoring": monitoring})
    bootstrap_observability(config)

    try:
        runtime = build_runtime(config)
    except ConfigurationError as exc:
        parser.exit(2, f"Configuration error: {exc}\n")

    if args.command == "monitor":
        try:
            asyncio.run(run_monitor(runtime))
        except KeyboardInterrupt:
            logger.info("Interrupted, monitoring stopped")
        return
    serve(runtime, getattr(args, "host", None), getattr(args, "port", None))


if __name__ == "__main__":
    main()

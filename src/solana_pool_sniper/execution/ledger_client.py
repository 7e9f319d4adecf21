"""Async Solana RPC + websocket wrapper used by discovery, screening, and swaps."""

from __future__ import annotations

import asyncio
import base64
import json
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Set, Tuple

from solana.exceptions import SolanaRpcException
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Commitment
from solana.rpc.core import RPCException, TransactionExpiredBlockheightExceededError, UnconfirmedTxError
from solana.rpc.models import TxOpts
from solana.rpc.websocket_api import connect
from solders.hash import Hash
from solders.pubkey import Pubkey
from solders.rpc.config import RpcTransactionLogsFilterMentions
from solders.rpc.errors import InvalidParamsMessage
from solders.rpc.responses import LogsNotification, SubscriptionResult
from solders.signature import Signature

from ..config.settings import RPCConfig
from ..ingestion.market import decode_market_state
from ..models.schemas import LogNotification, MarketState
from ..monitoring.logger import get_logger
from ..monitoring.metrics import METRICS
from ..utils.constants import ACCOUNT_NOT_FOUND_CODE

LogCallback = Callable[[LogNotification], Awaitable[None]]


class RpcError(RuntimeError):
    """Raised when an RPC call fails; ``code`` carries the JSON-RPC error code if known."""

    def __init__(self, method: str, message: str, *, code: Optional[int] = None) -> None:
        suffix = f" (code {code})" if code is not None else ""
        super().__init__(f"{method} failed: {message}{suffix}")
        self.method = method
        self.code = code

    @property
    def is_not_found(self) -> bool:
        return self.code == ACCOUNT_NOT_FOUND_CODE


def _rpc_error_code(error: Any) -> Optional[int]:
    if isinstance(error, InvalidParamsMessage):
        return ACCOUNT_NOT_FOUND_CODE
    code = getattr(error, "code", None)
    return code if isinstance(code, int) else None


@dataclass(slots=True)
class LogSubscription:
    """Handle for an active logsSubscribe stream."""

    program_id: str
    task: Optional[asyncio.Task] = None
    subscription_id: Optional[int] = None
    websocket: Any = None

    @property
    def active(self) -> bool:
        return self.task is not None and not self.task.done()


class LedgerClient:
    """Thin async facade over :class:`AsyncClient` returning JSON-shaped payloads."""

    def __init__(
        self,
        config: RPCConfig,
        *,
        client: Optional[AsyncClient] = None,
        reconnect_delay: float = 2.0,
    ) -> None:
        self._config = config
        self._commitment = Commitment(config.commitment)
        self._client = client or AsyncClient(
            str(config.http_url), commitment=self._commitment, timeout=config.request_timeout
        )
        self._ws_url = config.websocket_url()
        self._reconnect_delay = reconnect_delay
        self._handler_tasks: Set[asyncio.Task] = set()
        self._logger = get_logger(__name__)

    async def close(self) -> None:
        await self._client.close()

    async def _call(self, method_name: str, *args, **kwargs) -> Dict[str, Any]:
        method = getattr(self._client, method_name)
        try:
            response = await method(*args, **kwargs)
        except RPCException as exc:
            error = exc.args[0] if exc.args else exc
            METRICS.increment(f"rpc.{method_name}.errors")
            raise RpcError(method_name, str(error), code=_rpc_error_code(error)) from exc
        except SolanaRpcException as exc:
            METRICS.increment(f"rpc.{method_name}.errors")
            raise RpcError(method_name, str(exc)) from exc
        payload = json.loads(response.to_json())
        error = payload.get("error")
        if error:
            METRICS.increment(f"rpc.{method_name}.errors")
            raise RpcError(method_name, str(error.get("message")), code=error.get("code"))
        return payload

    async def fetch_parsed_transaction(self, signature: str) -> Optional[Dict[str, Any]]:
        payload = await self._call(
            "get_transaction",
            Signature.from_string(signature),
            encoding="jsonParsed",
            commitment=self._commitment,
            max_supported_transaction_version=0,
        )
        return payload.get("result")

    async def fetch_transaction(self, signature: str) -> Optional[Dict[str, Any]]:
        """Plain ``json`` encoding; enough for token balance reads."""

        payload = await self._call(
            "get_transaction",
            Signature.from_string(signature),
            encoding="json",
            commitment=self._commitment,
            max_supported_transaction_version=0,
        )
        return payload.get("result")

    async def fetch_parsed_account(self, address: str) -> Optional[Dict[str, Any]]:
        payload = await self._call(
            "get_account_info_json_parsed", Pubkey.from_string(address), commitment=self._commitment
        )
        return (payload.get("result") or {}).get("value")

    async def fetch_token_supply(self, mint: str) -> int:
        payload = await self._call("get_token_supply", Pubkey.from_string(mint), commitment=self._commitment)
        value = (payload.get("result") or {}).get("value") or {}
        return int(value.get("amount", 0))

    async def fetch_account_data(self, address: str) -> Optional[bytes]:
        payload = await self._call(
            "get_account_info", Pubkey.from_string(address), commitment=self._commitment, encoding="base64"
        )
        value = (payload.get("result") or {}).get("value")
        if not value:
            return None
        data = value.get("data")
        if isinstance(data, list):
            data = data[0]
        return base64.b64decode(data)

    async def fetch_market_state(self, market_id: str, market_program_id: str) -> MarketState:
        data = await self.fetch_account_data(market_id)
        if data is None:
            raise RpcError("get_account_info", f"market account {market_id} not found")
        return decode_market_state(market_id, market_program_id, data)

    async def latest_blockhash(self) -> Tuple[Hash, int]:
        try:
            response = await self._client.get_latest_blockhash(self._commitment)
        except (RPCException, SolanaRpcException) as exc:
            raise RpcError("get_latest_blockhash", str(exc)) from exc
        return response.value.blockhash, response.value.last_valid_block_height

    async def send_raw_transaction(self, raw: bytes, *, max_retries: Optional[int] = None) -> str:
        opts = TxOpts(skip_preflight=True, preflight_commitment=self._commitment, max_retries=max_retries)
        try:
            response = await self._client.send_raw_transaction(raw, opts=opts)
        except (RPCException, SolanaRpcException) as exc:
            raise RpcError("send_raw_transaction", str(exc)) from exc
        return str(response.value)

    async def confirm_transaction(self, signature: str, *, last_valid_block_height: int) -> None:
        try:
            response = await self._client.confirm_transaction(
                Signature.from_string(signature),
                self._commitment,
                last_valid_block_height=last_valid_block_height,
            )
        except (
            RPCException,
            SolanaRpcException,
            TransactionExpiredBlockheightExceededError,
            UnconfirmedTxError,
        ) as exc:
            raise RpcError("confirm_transaction", str(exc)) from exc
        status = response.value[0] if response.value else None
        if status is None:
            raise RpcError("confirm_transaction", f"no status returned for {signature}")
        if status.err is not None:
            raise RpcError("confirm_transaction", f"transaction {signature} failed: {status.err}")

    async def subscribe(self, program_id: str, callback: LogCallback) -> LogSubscription:
        subscription = LogSubscription(program_id=program_id)
        subscription.task = asyncio.create_task(self._stream_logs(subscription, callback))
        self._logger.info("Log subscription requested for program %s", program_id)
        return subscription

    async def unsubscribe(self, subscription: LogSubscription) -> None:
        websocket = subscription.websocket
        if websocket is not None and subscription.subscription_id is not None:
            try:
                await websocket.logs_unsubscribe(subscription.subscription_id)
            except Exception as exc:  # noqa: BLE001 - the stream is torn down regardless
                self._logger.debug("logs_unsubscribe failed: %s", exc)
        if subscription.task is not None and not subscription.task.done():
            subscription.task.cancel()
        subscription.websocket = None
        subscription.subscription_id = None

    async def _stream_logs(self, subscription: LogSubscription, callback: LogCallback) -> None:
        program = Pubkey.from_string(subscription.program_id)
        while True:
            try:
                async with connect(self._ws_url) as websocket:
                    await websocket.logs_subscribe(
                        RpcTransactionLogsFilterMentions(program), commitment=self._commitment
                    )
                    subscription.websocket = websocket
                    self._logger.info("Log subscription established on %s", self._ws_url)
                    async for messages in websocket:
                        for message in messages:
                            if isinstance(message, SubscriptionResult):
                                subscription.subscription_id = message.result
                                continue
                            if isinstance(message, LogsNotification):
                                self._dispatch(callback, self._to_notification(message))
            except asyncio.CancelledError:
                raise
            except Exception as exc:  # noqa: BLE001 - reconnect on any transport failure
                METRICS.increment("rpc.websocket.reconnects")
                self._logger.warning(
                    "Log subscription dropped: %s; reconnecting in %.1fs", exc, self._reconnect_delay
                )
            finally:
                subscription.websocket = None
            await asyncio.sleep(self._reconnect_delay)

    def _to_notification(self, message: LogsNotification) -> LogNotification:
        value = message.result.value
        return LogNotification(
            signature=str(value.signature),
            logs=tuple(value.logs or ()),
            err=value.err,
            slot=message.result.context.slot,
        )

    def _dispatch(self, callback: LogCallback, notification: LogNotification) -> None:
        # Handlers overlap: the next notification is read while earlier ones are still running.
        task = asyncio.create_task(callback(notification))
        self._handler_tasks.add(task)
        task.add_done_callback(self._handler_finished)

    def _handler_finished(self, task: asyncio.Task) -> None:
        self._handler_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self._logger.error("Log handler raised: %s", exc, exc_info=exc)


__all__ = ["LedgerClient", "LogCallback", "LogSubscription", "RpcError"]

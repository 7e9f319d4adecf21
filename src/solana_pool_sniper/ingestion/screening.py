"""Rug-pull screens applied to a freshly discovered pool."""

from __future__ import annotations

from typing import Any, Mapping, Optional

from ..execution.ledger_client import RpcError
from ..monitoring.logger import get_logger
from ..monitoring.metrics import METRICS
from ..utils.constants import KNOWN_TOKEN_PROGRAM_IDS


def _mint_info(account: Mapping[str, Any]) -> Optional[Mapping[str, Any]]:
    data = account.get("data")
    if not isinstance(data, Mapping):
        return None
    parsed = data.get("parsed")
    if not isinstance(parsed, Mapping):
        return None
    info = parsed.get("info")
    return info if isinstance(info, Mapping) else None


class TokenValidator:
    """Fail-closed screen over a mint's parsed account."""

    def __init__(self, client) -> None:
        self._client = client
        self._logger = get_logger(__name__)

    async def is_valid(self, mint: str) -> bool:
        try:
            account = await self._client.fetch_parsed_account(mint)
        except Exception as exc:  # noqa: BLE001 - any read failure rejects the mint
            self._logger.warning("Mint account fetch failed for %s: %s", mint, exc)
            METRICS.increment("screening.mint_fetch_failures")
            return False
        if not account:
            self._logger.warning("Mint account %s not found", mint)
            return False

        info = _mint_info(account)
        if info is None:
            self._logger.info("Mint %s has no parsed mint data", mint)
            return False
        reasons = []
        if info.get("freezeAuthority") is not None:
            reasons.append("freeze authority set")
        if info.get("mintAuthority") is not None:
            reasons.append("mint authority set")
        if info.get("isInitialized") is not True:
            reasons.append("not initialized")
        if account.get("owner") not in KNOWN_TOKEN_PROGRAM_IDS:
            reasons.append(f"owned by {account.get('owner')}")
        if reasons:
            self._logger.info("Mint %s rejected: %s", mint, ", ".join(reasons))
            return False
        return True


class LiquidityBurnChecker:
    """Reports whether an LP mint's supply is burned.

    A missing mint account counts as burned. Any other failure is logged and
    reported as not burned.
    """

    def __init__(self, client) -> None:
        self._client = client
        self._logger = get_logger(__name__)

    async def is_burned(self, lp_mint: str) -> bool:
        try:
            supply = await self._client.fetch_token_supply(lp_mint)
        except RpcError as exc:
            if exc.is_not_found:
                return True
            self._logger.warning("LP supply check failed for %s: %s", lp_mint, exc)
            METRICS.increment("screening.burn_check_failures")
            return False
        except Exception as exc:  # noqa: BLE001
            self._logger.warning("LP supply check failed for %s: %s", lp_mint, exc)
            METRICS.increment("screening.burn_check_failures")
            return False
        return supply == 0


__all__ = ["LiquidityBurnChecker", "TokenValidator"]

"""Raydium log subscription: dedup, pre-filter, decode, screen, dispatch."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from cachetools import FIFOCache

from ..config.settings import MonitorConfig
from ..models.schemas import LogNotification
from ..monitoring.logger import correlation_scope, get_logger
from ..monitoring.metrics import METRICS
from ..utils.constants import LP_INIT_LOG_MARKER, utc_now
from .decoder import DecodeError
from .log_parser import find_log_entry

STATUS_STARTED = "Token Monitor Service started"
STATUS_ALREADY_RUNNING = "Token Monitor Service already running"
STATUS_STOPPED = "Token Monitor Service stopped"
STATUS_NOT_RUNNING = "Token Monitor Service is not running"


class SeenSignatures:
    """Bounded set of processed signatures, oldest evicted first."""

    def __init__(self, capacity: int = 10_000) -> None:
        self._cache: FIFOCache = FIFOCache(maxsize=capacity)
        self._lock = threading.Lock()

    def add(self, signature: str) -> bool:
        """Record ``signature``; ``True`` only the first time it is seen."""

        with self._lock:
            if signature in self._cache:
                return False
            self._cache[signature] = True
            return True

    def __contains__(self, signature: object) -> bool:
        with self._lock:
            return signature in self._cache

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)

    @property
    def capacity(self) -> int:
        return int(self._cache.maxsize)


@dataclass(slots=True)
class MonitoringSession:
    handle: Any
    seen: SeenSignatures
    started_at: datetime = field(default_factory=utc_now)
    discovered: int = 0
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def record_discovery(self) -> int:
        with self._lock:
            self.discovered += 1
            return self.discovered


class LogSubscriber:
    """Owns the monitoring session and runs each notification through the screens."""

    def __init__(
        self,
        client,
        decoder,
        validator,
        burn_checker,
        orchestrator,
        config: MonitorConfig,
    ) -> None:
        self._client = client
        self._decoder = decoder
        self._validator = validator
        self._burn_checker = burn_checker
        self._orchestrator = orchestrator
        self._config = config
        self._session: Optional[MonitoringSession] = None
        self._logger = get_logger(__name__)

    @property
    def session(self) -> Optional[MonitoringSession]:
        return self._session

    @property
    def discovered(self) -> int:
        return self._session.discovered if self._session is not None else 0

    async def start(self) -> str:
        if self._session is not None:
            self._logger.info("Monitoring already active since %s", self._session.started_at.isoformat())
            return STATUS_ALREADY_RUNNING
        # The session exists before the stream so early notifications find the dedup set.
        session = MonitoringSession(handle=None, seen=SeenSignatures(self._config.dedup_capacity))
        self._session = session
        try:
            session.handle = await self._client.subscribe(self._config.pool_program_id, self.handle_logs)
        except Exception:
            self._session = None
            raise
        METRICS.gauge("monitor.active", 1)
        self._logger.info("Token Monitor Service started, waiting new pools...")
        return STATUS_STARTED

    async def stop(self) -> str:
        session = self._session
        if session is None:
            return STATUS_NOT_RUNNING
        self._session = None
        await self._client.unsubscribe(session.handle)
        METRICS.gauge("monitor.active", 0)
        self._logger.info(
            "Monitoring service stopped after %d pools, waiting for current sales to finish...",
            session.discovered,
        )
        return STATUS_STOPPED

    async def handle_logs(self, notification: LogNotification) -> None:
        session = self._session
        if session is None:
            return
        METRICS.increment("monitor.notifications")
        if not session.seen.add(notification.signature):
            METRICS.increment("monitor.duplicates")
            return
        if notification.err is not None:
            return
        if find_log_entry(LP_INIT_LOG_MARKER, notification.logs) is None:
            return

        with correlation_scope(notification.signature):
            await self._process(session, notification.signature)

    async def _process(self, session: MonitoringSession, signature: str) -> None:
        try:
            pool = await self._decoder.fetch_pool_descriptor(signature)
        except DecodeError as exc:
            METRICS.increment(f"monitor.decode_errors.{exc.reason.value}")
            self._logger.warning("PoolKeys fetch error for %s: %s", signature, exc)
            return
        except Exception as exc:  # noqa: BLE001 - one bad transaction never stops the stream
            METRICS.increment("monitor.decode_errors.unexpected")
            self._logger.warning("PoolKeys fetch error for %s: %s", signature, exc)
            return

        target_mint, _ = pool.target_mint()
        if not await self._validator.is_valid(target_mint):
            METRICS.increment("monitor.rejected.token")
            self._logger.info(
                "Token %s is not valid (freezeAuthority, mintAuthority, is not initialized, etc.)",
                target_mint,
            )
            return
        if self._config.burn_check_enabled and not await self._burn_checker.is_burned(pool.lp_mint):
            METRICS.increment("monitor.rejected.lp_not_burned")
            self._logger.info("LP of pool %s is not burned", pool.id)
            return

        count = session.record_discovery()
        METRICS.increment("monitor.discoveries")
        self._logger.info("#%d new valid pool has been found: %s", count, pool.summary())
        self._orchestrator.dispatch(pool)

    def status(self) -> Dict[str, Any]:
        session = self._session
        if session is None:
            return {"active": False, "discovered": 0}
        return {
            "active": True,
            "started_at": session.started_at.isoformat(),
            "discovered": session.discovered,
            "seen": len(session.seen),
            "burn_check_enabled": self._config.burn_check_enabled,
        }


__all__ = [
    "LogSubscriber",
    "MonitoringSession",
    "STATUS_ALREADY_RUNNING",
    "STATUS_NOT_RUNNING",
    "STATUS_STARTED",
    "STATUS_STOPPED",
    "SeenSignatures",
]

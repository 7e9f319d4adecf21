"""Monitoring package exports and helpers."""

from __future__ import annotations

from typing import Optional

from ..config.settings import AppConfig, get_app_config
from .logger import configure_logging
from .metrics import METRICS


def bootstrap_observability(config: Optional[AppConfig] = None) -> None:
    """Configure logging for the process and publish static gauges."""

    app_config = config or get_app_config()
    configure_logging(app_config.monitoring)
    METRICS.gauge("monitor.burn_check_enabled", 1.0 if app_config.monitor.burn_check_enabled else 0.0)
    METRICS.gauge("trading.sell_max_attempts", app_config.trading.sell_max_attempts)


__all__ = ["bootstrap_observability", "METRICS"]

"""Configuration management for the pool sniper."""

from __future__ import annotations

import os
import tomllib
from decimal import Decimal
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, cast

from pydantic import AnyHttpUrl, BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from solders.pubkey import Pubkey

from ..models.schemas import SwapDirection
from ..utils.constants import RAYDIUM_AMM_V4_PROGRAM_ID, SOL_DECIMALS, SOL_MINT

DEFAULT_CONFIG_FILE = Path("config/app.toml")
CONFIG_FILE_ENV_VAR = "APP_CONFIG_FILE"
PROFILE_ENV_VAR = "BOT_PROFILE"


class ConfigurationError(ValueError):
    """Raised when the configuration cannot support a monitoring session."""


def _resolve_config_path() -> Path:
    env_value = os.getenv(CONFIG_FILE_ENV_VAR)
    if env_value:
        candidate = Path(env_value)
        if not candidate.is_absolute():
            candidate = Path.cwd() / candidate
        return candidate
    return Path.cwd() / DEFAULT_CONFIG_FILE


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    result: Dict[str, Any] = {**base}
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(cast(Dict[str, Any], result[key]), value)
        else:
            result[key] = value
    return result


def _select_profile(data: Dict[str, Any]) -> Dict[str, Any]:
    if not data:
        return {}
    base_section = cast(Dict[str, Any], data.get("default", {}))
    requested = (os.getenv(PROFILE_ENV_VAR) or "default").lower()
    if requested != "default" and isinstance(data.get(requested), dict):
        return _deep_merge(base_section, cast(Dict[str, Any], data[requested]))
    if base_section:
        return base_section
    # Flat files without profiles are used as-is.
    return {key: value for key, value in data.items() if isinstance(value, dict)}


def _load_toml_config() -> Tuple[Dict[str, Any], Optional[Path]]:
    path = _resolve_config_path()
    if not path.exists():
        return {}, None
    with path.open("rb") as handle:
        payload = tomllib.load(handle)
    return _select_profile(payload), path


def _validate_pubkey(value: str) -> str:
    try:
        Pubkey.from_string(value)
    except Exception as exc:  # noqa: BLE001 - solders raises its own parse errors
        raise ValueError(f"'{value}' is not a valid base58 public key") from exc
    return value


class RPCConfig(BaseModel):
    """RPC endpoints used for reads, broadcasts, and the log subscription."""

    http_url: AnyHttpUrl = Field(default="https://api.mainnet-beta.solana.com", validate_default=True)
    ws_url: Optional[str] = None
    request_timeout: float = Field(default=12.0, ge=1.0, le=60.0)
    commitment: str = Field(default="confirmed")

    @field_validator("request_timeout", mode="before")
    @classmethod
    def _parse_request_timeout(cls, value) -> float:
        if isinstance(value, str):
            return float(value)
        return value

    @field_validator("ws_url")
    @classmethod
    def _check_ws_scheme(cls, value: Optional[str]) -> Optional[str]:
        if value and not value.startswith(("ws://", "wss://")):
            raise ValueError("ws_url must use the ws:// or wss:// scheme")
        return value

    def websocket_url(self) -> str:
        if self.ws_url:
            return self.ws_url
        http = str(self.http_url)
        return http.replace("https://", "wss://", 1).replace("http://", "ws://", 1)


class MonitorConfig(BaseModel):
    """Log monitoring and screening switches."""

    pool_program_id: str = Field(default=RAYDIUM_AMM_V4_PROGRAM_ID)
    burn_check_enabled: bool = False
    dedup_capacity: int = Field(default=10_000, ge=16)

    @field_validator("pool_program_id")
    @classmethod
    def _check_program_id(cls, value: str) -> str:
        return _validate_pubkey(value)


class TradingConfig(BaseModel):
    """Buy/sell leg templates and the sell retry policy."""

    spend_mint: str = Field(default=SOL_MINT)
    spend_decimals: int = Field(default=SOL_DECIMALS, ge=0, le=255)
    spend_amount: Decimal = Field(default=Decimal("0.01"), gt=0)
    max_lamports: int = Field(default=100_000, ge=0)
    max_retries: int = Field(default=10, ge=0)
    direction: SwapDirection = SwapDirection.EXACT_IN
    settle_seconds: float = Field(default=10.0, ge=0.0)
    sell_max_attempts: int = Field(default=5, ge=1, le=50)
    sell_retry_base_seconds: float = Field(default=3.0, ge=0.0)
    serialize_settlement: bool = False

    @field_validator("spend_mint")
    @classmethod
    def _check_spend_mint(cls, value: str) -> str:
        return _validate_pubkey(value)


class WalletConfig(BaseModel):
    """Payer keypair configuration."""

    private_key: Optional[str] = None
    keypair_path: Optional[Path] = None


class MonitoringConfig(BaseModel):
    """Logging configuration."""

    log_level: str = Field(default="INFO")

    @field_validator("log_level")
    @classmethod
    def _check_level(cls, value: str) -> str:
        upper = value.upper()
        if upper not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unsupported log level '{value}'")
        return upper


class ControlConfig(BaseModel):
    """HTTP control surface binding."""

    host: str = Field(default="127.0.0.1")
    port: int = Field(default=8000, ge=1, le=65535)


class AppConfig(BaseSettings):
    """Aggregated application configuration."""

    rpc: RPCConfig = Field(default_factory=RPCConfig)
    monitor: MonitorConfig = Field(default_factory=MonitorConfig)
    trading: TradingConfig = Field(default_factory=TradingConfig)
    wallet: WalletConfig = Field(default_factory=WalletConfig)
    monitoring: MonitoringConfig = Field(default_factory=MonitoringConfig)
    control: ControlConfig = Field(default_factory=ControlConfig)
    config_file: Optional[Path] = None

    model_config = SettingsConfigDict(
        env_file=".env",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        def file_settings(_: Optional[BaseSettings] = None) -> Dict[str, Any]:
            payload, path = _load_toml_config()
            if path is not None:
                payload = {**payload, "config_file": path}
            return payload

        # Environment variables win over static config file defaults.
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            file_settings,
            file_secret_settings,
        )

    @model_validator(mode="after")
    def _check_trading_template(self) -> "AppConfig":
        if self.trading.spend_mint == SOL_MINT and self.trading.spend_decimals != SOL_DECIMALS:
            raise ValueError("spend_decimals must be 9 when spending wrapped SOL")
        return self


def validate_runtime(config: AppConfig) -> None:
    """Fail before monitoring starts when the session could not trade."""

    wallet = config.wallet
    if not wallet.private_key and not wallet.keypair_path:
        raise ConfigurationError(
            "No payer wallet configured; set WALLET__PRIVATE_KEY or WALLET__KEYPAIR_PATH"
        )
    if wallet.keypair_path and not Path(wallet.keypair_path).expanduser().exists():
        raise ConfigurationError(f"Keypair file {wallet.keypair_path} does not exist")


@lru_cache(maxsize=1)
def get_app_config() -> AppConfig:
    """Create a cached application configuration object."""

    return AppConfig()


__all__ = [
    "AppConfig",
    "ConfigurationError",
    "ControlConfig",
    "MonitorConfig",
    "MonitoringConfig",
    "RPCConfig",
    "TradingConfig",
    "WalletConfig",
    "get_app_config",
    "validate_runtime",
]

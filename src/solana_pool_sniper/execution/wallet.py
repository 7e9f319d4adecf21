"""Payer keypair loading."""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import base58
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from ..config.settings import ConfigurationError, WalletConfig


@dataclass(slots=True)
class Wallet:
    """Wrapper around the payer keypair."""

    keypair: Keypair

    @property
    def public_key(self) -> Pubkey:
        return self.keypair.pubkey()

    @property
    def address(self) -> str:
        return str(self.keypair.pubkey())


def load_wallet(config: WalletConfig) -> Wallet:
    """Load the payer from a base58 secret or a Solana CLI keypair file."""

    secret_key: Optional[bytes] = None
    if config.private_key:
        try:
            secret_key = base58.b58decode(config.private_key)
        except ValueError as exc:
            raise ConfigurationError("wallet.private_key is not valid base58") from exc
    elif config.keypair_path:
        path = Path(config.keypair_path).expanduser()
        with path.open("r", encoding="utf-8") as fh:
            data = json.load(fh)
        if isinstance(data, list):
            secret_key = bytes(data)
    if secret_key is None:
        raise ConfigurationError("Wallet configuration error - set wallet.private_key or wallet.keypair_path")
    if len(secret_key) != 64:
        raise ConfigurationError(f"Wallet secret must be 64 bytes, got {len(secret_key)}")
    return Wallet(keypair=Keypair.from_bytes(secret_key))


__all__ = ["Wallet", "load_wallet"]

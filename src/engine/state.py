"""Persisted slice of the trader session."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path
from typing import Any

DEFAULT_PAIR = "RSA/USDT"


@dataclass
class ConnectedWallet:
    address: str
    public_key: str = ""
    balances: dict[str, Decimal] = field(default_factory=dict)
    network: str = "rsa"

    def to_payload(self) -> dict[str, Any]:
        return {
            "address": self.address,
            "publicKey": self.public_key,
            "balances": {asset: str(value) for asset, value in self.balances.items()},
            "network": self.network,
        }

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "ConnectedWallet":
        return cls(
            address=payload["address"],
            public_key=payload.get("publicKey", ""),
            balances={
                asset: Decimal(str(value))
                for asset, value in payload.get("balances", {}).items()
            },
            network=payload.get("network", "rsa"),
        )


@dataclass
class SessionState:
    """Only these fields survive a restart; everything else is re-fetched."""

    current_pair: str = DEFAULT_PAIR
    wallet: ConnectedWallet | None = None
    is_connected: bool = False

    def to_payload(self) -> dict[str, Any]:
        return {
            "currentPair": self.current_pair,
            "wallet": self.wallet.to_payload() if self.wallet else None,
            "isConnected": self.is_connected,
        }

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "SessionState":
        wallet = payload.get("wallet")
        return cls(
            current_pair=payload.get("currentPair", DEFAULT_PAIR),
            wallet=ConnectedWallet.from_payload(wallet) if wallet else None,
            is_connected=bool(payload.get("isConnected", False)),
        )

    def save(self, path: str | Path) -> None:
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        payload = self.to_payload()
        target.write_text(
            json.dumps(payload, indent=2, sort_keys=True), encoding="utf-8"
        )

    @classmethod
    def load(cls, path: str | Path) -> "SessionState":
        target = Path(path)
        if not target.exists():
            return cls()
        payload = json.loads(target.read_text(encoding="utf-8"))
        return cls.from_payload(payload)

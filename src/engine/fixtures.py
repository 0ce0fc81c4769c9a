"""Demo datasets shown when the backend cannot be reached."""

from __future__ import annotations

from typing import Any

from engine.entity_store import MODEL_BY_MODULE
from rsa_client.models import Entity
from rsa_client.schemas import Module

RSA_FIXED_PRICE = "0.85"

_FULL_VISIBILITY = {
    "wallets": True,
    "contracts": True,
    "trading": True,
    "transactions": True,
}

MOCK_ASSETS: list[dict[str, Any]] = [
    {
        "id": "1",
        "symbol": "RSA",
        "name": "RSA Chain",
        "icon": "🔗",
        "decimals": 18,
        "type": "crypto",
        "price": RSA_FIXED_PRICE,
        "status": "active",
        "issuer": "native",
        "syncWithDex": True,
        "visibilitySettings": _FULL_VISIBILITY,
        "metadata": {
            "website": "https://rsachain.com",
            "explorer": "https://explorer.rsachain.com",
            "marketCap": 125000000,
            "volume24h": 5200000,
            "change24h": "2.5",
        },
    },
    {
        "id": "2",
        "symbol": "ETH",
        "name": "Ethereum",
        "icon": "Ξ",
        "decimals": 18,
        "type": "crypto",
        "price": "3500.75",
        "status": "active",
        "contractAddress": "0x0000000000000000000000000000000000000000",
        "syncWithDex": True,
        "visibilitySettings": _FULL_VISIBILITY,
        "metadata": {
            "website": "https://ethereum.org",
            "explorer": "https://etherscan.io",
            "marketCap": 420000000000,
            "volume24h": 15000000000,
            "change24h": "-1.2",
        },
    },
    {
        "id": "3",
        "symbol": "BTC",
        "name": "Bitcoin",
        "icon": "₿",
        "decimals": 8,
        "type": "crypto",
        "price": "65000.50",
        "status": "active",
        "syncWithDex": True,
        "visibilitySettings": _FULL_VISIBILITY,
        "metadata": {
            "website": "https://bitcoin.org",
            "explorer": "https://blockstream.info",
            "marketCap": 1280000000000,
            "volume24h": 28000000000,
            "change24h": "3.7",
        },
    },
    {
        "id": "4",
        "symbol": "USDT",
        "name": "Tether USD",
        "icon": "💵",
        "decimals": 6,
        "type": "token",
        "price": "1.00",
        "status": "active",
        "contractAddress": "0xdAC17F958D2ee523a2206206994597C13D831ec7",
        "syncWithDex": True,
        "visibilitySettings": _FULL_VISIBILITY,
        "metadata": {
            "website": "https://tether.to",
            "marketCap": 95000000000,
            "volume24h": 45000000000,
            "change24h": "0.1",
        },
    },
]

MOCK_TRADING_PAIRS: list[dict[str, Any]] = [
    {
        "symbol": "RSA/USDT",
        "baseAsset": "RSA",
        "quoteAsset": "USDT",
        "price": RSA_FIXED_PRICE,
        "change24h": "2.5",
        "volume24h": 5200000,
        "high24h": "0.92",
        "low24h": "0.78",
    },
    {
        "symbol": "ETH/USDT",
        "baseAsset": "ETH",
        "quoteAsset": "USDT",
        "price": "3500.75",
        "change24h": "-1.2",
        "volume24h": 15000000000,
        "high24h": "3620.00",
        "low24h": "3480.50",
    },
    {
        "symbol": "BTC/USDT",
        "baseAsset": "BTC",
        "quoteAsset": "USDT",
        "price": "65000.50",
        "change24h": "3.7",
        "volume24h": 28000000000,
        "high24h": "67200.00",
        "low24h": "63800.00",
    },
    {
        "symbol": "ETH/RSA",
        "baseAsset": "ETH",
        "quoteAsset": "RSA",
        "price": "4118.24",
        "change24h": "-3.5",
        "volume24h": 2800000,
        "high24h": "4353.00",
        "low24h": "4000.00",
    },
    {
        "symbol": "BTC/RSA",
        "baseAsset": "BTC",
        "quoteAsset": "RSA",
        "price": "76471.18",
        "change24h": "1.2",
        "volume24h": 8900000,
        "high24h": "79000.00",
        "low24h": "74000.00",
    },
    {
        "symbol": "ETH/BTC",
        "baseAsset": "ETH",
        "quoteAsset": "BTC",
        "price": "0.0538",
        "change24h": "-4.8",
        "volume24h": 1200000,
        "high24h": "0.0562",
        "low24h": "0.0535",
    },
]

MOCK_WALLETS: list[dict[str, Any]] = [
    {
        "id": "1",
        "address": "0x1234567890abcdef1234567890abcdef12345678",
        "userId": "admin",
        "status": "active",
        "balance": {"RSA": "1000.0", "USDT": "5000.0", "BTC": "0.5", "ETH": "2.5"},
        "totalValue": "7500.0",
    }
]

MOCK_TRANSACTIONS: list[dict[str, Any]] = [
    {
        "id": "1",
        "from": "0x1234567890abcdef1234567890abcdef12345678",
        "to": "0xabcdef1234567890abcdef1234567890abcdef12",
        "amount": "100",
        "asset": "RSA",
        "status": "pending",
        "type": "transfer",
        "gasUsed": 21000,
        "gasPrice": 20000000000,
    }
]

MOCK_CONTRACTS: list[dict[str, Any]] = [
    {
        "id": "1",
        "name": "RSA Token Contract",
        "address": "0x1234567890abcdef1234567890abcdef12345678",
        "type": "ERC20",
        "status": "active",
        "balance": {"RSA": "1000000", "USDT": "50000", "BTC": "10", "ETH": "100"},
    }
]

FIXTURES: dict[Module, list[dict[str, Any]]] = {
    Module.ASSETS: MOCK_ASSETS,
    Module.TRADING_PAIRS: MOCK_TRADING_PAIRS,
    Module.WALLETS: MOCK_WALLETS,
    Module.CONTRACTS: MOCK_CONTRACTS,
    Module.TRANSACTIONS: MOCK_TRANSACTIONS,
}


def fixture_for(module: Module) -> list[Entity]:
    """Return fresh model instances of the demo dataset for ``module``."""
    model = MODEL_BY_MODULE[module]
    return [model.model_validate(item) for item in FIXTURES[module]]

"""Backend endpoints shared by the admin panel and trader frontend clients."""

import os

DEFAULT_DEX_URL = "http://localhost:8001"
DEFAULT_ADMIN_API_URL = "http://localhost:8001"
DEFAULT_TIMEOUT_SEC = 10.0

HEALTH = "/health"
LOGIN = "/auth/login"
LOGOUT = "/auth/logout"
VERIFY = "/auth/profile"

ASSETS = "/api/admin/assets"
ASSETS_SYNC_ALL = "/api/admin/assets/sync-all"
WALLETS = "/api/admin/wallets"
TRANSACTIONS = "/api/admin/transactions"
CONTRACTS = "/api/admin/contracts"
TX_RECALL = "/api/admin/tx-recall"
SYNC_STATUS = "/api/admin/sync-status"

DEV_ADMIN_ASSETS = "/api/dev/admin/assets"
PRICES = "/api/prices"
MARKET_ORDERBOOK = "/api/markets/{base}/{quote}/orderbook"
MARKET_TRADES = "/api/markets/{base}/{quote}/trades"


def default_dex_url() -> str:
    """Return the DEX backend URL, honouring ``RSA_DEX_URL``."""
    return os.getenv("RSA_DEX_URL") or DEFAULT_DEX_URL


def default_admin_api_url() -> str:
    return os.getenv("RSA_ADMIN_API_URL") or DEFAULT_ADMIN_API_URL

"""Trader-side market cache: assets, pairs, orders, trades and the orderbook."""

from __future__ import annotations

import logging
import random
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Callable, Iterable, Mapping

from pydantic import ValidationError

from engine.entity_store import EntityStore
from engine.fixtures import RSA_FIXED_PRICE, fixture_for
from engine.publisher import StatusPublisher
from engine.state import DEFAULT_PAIR, ConnectedWallet, SessionState
from rsa_client.async_rest import AsyncRestClient
from rsa_client.models import (
    Asset,
    Order,
    Orderbook,
    OrderbookLevel,
    Trade,
    TradingPair,
    Transaction,
)
from rsa_client.schemas import Module

LOGGER = logging.getLogger("rsa_dex_sync.trading")

DEMO_DATA_WARNING = "Using demo data - Admin API not available"
RECENT_TRADES_LIMIT = 100
TRANSACTIONS_LIMIT = 500
ORDERBOOK_DEPTH = 10
DEMO_TRADE_COUNT = 20
FALLBACK_PRICE = Decimal("100")
PAIR_BASES = ("RSA", "USDT", "BTC")

# Backend price feed symbols for assets that are not priced locally.
PRICE_FEED_SYMBOLS = {"BTC": "rBTC", "ETH": "rETH"}


def generate_trading_pairs(assets: Iterable[Asset]) -> list[TradingPair]:
    """Quote every asset against each base asset that is present."""
    assets = list(assets)
    by_symbol = {asset.symbol: asset for asset in assets}
    pairs: list[TradingPair] = []
    for base_symbol in PAIR_BASES:
        base = by_symbol.get(base_symbol)
        if base is None or not base.price:
            continue
        for asset in assets:
            if asset.symbol == base_symbol:
                continue
            price = asset.price / base.price
            pairs.append(
                TradingPair(
                    symbol=f"{asset.symbol}/{base_symbol}",
                    base_asset=asset.symbol,
                    quote_asset=base_symbol,
                    price=price,
                    change_24h=asset.change_24h - base.change_24h,
                    volume_24h=asset.volume_24h + base.volume_24h,
                    high_24h=price * Decimal("1.05"),
                    low_24h=price * Decimal("0.95"),
                )
            )
    return pairs


def _price_update(
    asset: Asset, prices: Mapping[str, Any] | None
) -> dict[str, Any] | None:
    if asset.symbol == "RSA":
        return {
            "price": Decimal(RSA_FIXED_PRICE),
            "change24h": asset.metadata.change_24h or Decimal("2.5"),
        }
    if prices is None:
        return None
    if asset.symbol == "USDT":
        return {"price": Decimal("1.0"), "change24h": Decimal("0.1")}
    feed = prices.get(PRICE_FEED_SYMBOLS.get(asset.symbol, ""))
    if not isinstance(feed, Mapping) or feed.get("usd") is None:
        return None
    try:
        price = Decimal(str(feed["usd"]))
        change = Decimal(str(feed.get("change_24h") or 0))
    except InvalidOperation:
        LOGGER.warning("Ignoring malformed %s price: %r", asset.symbol, feed)
        return None
    if not price.is_finite():
        return None
    return {"price": price, "change24h": change}


class TradingStore:
    """Trader view composed over an :class:`EntityStore`.

    Assets and trading pairs live in the shared entity store; orders, trades,
    the orderbook and the connected wallet are local to the trader session.
    Only :class:`SessionState` is persisted.
    """

    def __init__(
        self,
        client: AsyncRestClient,
        store: EntityStore | None = None,
        *,
        rng: random.Random | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.client = client
        self.store = store or EntityStore()
        self.publisher: StatusPublisher[str] = StatusPublisher("trading-store")
        self._rng = rng or random.Random()
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self.current_pair = DEFAULT_PAIR
        self.wallet: ConnectedWallet | None = None
        self.is_connected = False
        self.user_orders: list[Order] = []
        self.recent_trades: list[Trade] = []
        self.transactions: list[Transaction] = []
        self.orderbook = Orderbook()
        self.loading = False
        self.error: str | None = None
        self.store.assets.set(fixture_for(Module.ASSETS))
        self.store.trading_pairs.set(fixture_for(Module.TRADING_PAIRS))

    @property
    def assets(self) -> tuple[Asset, ...]:
        return self.store.assets.get()

    @property
    def trading_pairs(self) -> tuple[TradingPair, ...]:
        return self.store.trading_pairs.get()

    def subscribe(self, listener: Callable[[str], None]) -> Callable[[], None]:
        return self.publisher.subscribe(listener)

    def close(self) -> None:
        """Stop accepting writes and drop listeners; safe to call twice."""
        self.store.close()
        self.publisher.clear()

    # Session

    def set_current_pair(self, pair: str) -> None:
        self.current_pair = pair
        self._changed("current_pair")

    def set_wallet(self, wallet: ConnectedWallet | None) -> None:
        self.wallet = wallet
        self._changed("wallet")

    def set_connected(self, connected: bool) -> None:
        self.is_connected = connected
        self._changed("is_connected")

    def update_balance(self, asset: str, balance: Decimal) -> None:
        if self.wallet is None:
            return
        balances = dict(self.wallet.balances)
        balances[asset] = Decimal(str(balance))
        self.wallet = ConnectedWallet(
            address=self.wallet.address,
            public_key=self.wallet.public_key,
            balances=balances,
            network=self.wallet.network,
        )
        self._changed("wallet")

    def session_state(self) -> SessionState:
        return SessionState(
            current_pair=self.current_pair,
            wallet=self.wallet,
            is_connected=self.is_connected,
        )

    def persist(self, path: str | Path) -> None:
        self.session_state().save(path)

    def restore(self, path: str | Path) -> None:
        state = SessionState.load(path)
        self.current_pair = state.current_pair
        self.wallet = state.wallet
        self.is_connected = state.is_connected
        self._changed("session")

    # Orders and trades

    def add_order(
        self,
        pair: str,
        side: str,
        order_type: str,
        amount: Decimal,
        price: Decimal | None = None,
    ) -> Order:
        now = self._clock()
        millis = int(now.timestamp() * 1000)
        order = Order(
            id=f"order_{millis}_{uuid.uuid4().hex[:9]}",
            pair=pair,
            side=side,
            type=order_type,
            amount=amount,
            price=price,
            filled=Decimal("0"),
            status="pending",
            timestamp=now.isoformat(),
        )
        self.user_orders.append(order)
        self._changed("user_orders")
        return order

    def update_order(self, order_id: str, updates: Mapping[str, Any]) -> None:
        self.user_orders = [
            order.model_copy(update=dict(updates)) if order.id == order_id else order
            for order in self.user_orders
        ]
        self._changed("user_orders")

    def cancel_order(self, order_id: str) -> None:
        self.update_order(order_id, {"status": "cancelled"})

    def add_trade(self, trade: Trade) -> None:
        self.recent_trades = [trade, *self.recent_trades][:RECENT_TRADES_LIMIT]
        self._changed("recent_trades")

    def add_transaction(self, transaction: Transaction) -> None:
        self.transactions = [transaction, *self.transactions][:TRANSACTIONS_LIMIT]
        self._changed("transactions")

    def update_orderbook(self, pair: str, orderbook: Orderbook) -> bool:
        """Apply ``orderbook`` only when it belongs to the current pair."""
        if pair != self.current_pair:
            LOGGER.debug(
                "Dropping orderbook for %s (current %s)", pair, self.current_pair
            )
            return False
        self.orderbook = orderbook
        self._changed("orderbook")
        return True

    # Sync

    async def sync_assets_from_admin(self) -> None:
        self.loading = True
        self.error = None
        try:
            response = await self.client.get_admin_assets()
            assets: list[Asset] | None = None
            if response.success and response.is_list:
                try:
                    assets = [Asset.model_validate(item) for item in response.items]
                except ValidationError as exc:
                    LOGGER.warning("Admin assets failed validation: %s", exc)
            else:
                LOGGER.warning("Failed to sync assets from admin: %s", response.error)

            if assets is None:
                self.store.assets.set(fixture_for(Module.ASSETS))
                self.store.trading_pairs.set(fixture_for(Module.TRADING_PAIRS))
                self.error = DEMO_DATA_WARNING
            else:
                tradable = [asset for asset in assets if asset.tradable]
                self.store.assets.set(tradable)
                self.store.trading_pairs.set(generate_trading_pairs(tradable))
                LOGGER.info("Loaded %s tradable assets from admin", len(tradable))
        finally:
            self.loading = False
            self._changed("assets")

    async def sync_prices(self) -> None:
        self.apply_prices(await self.fetch_prices())

    async def fetch_prices(self) -> Mapping[str, Any] | None:
        """Read the backend price feed without touching the store."""
        response = await self.client.get_prices()
        prices = response.field("prices") if response.success else None
        if not isinstance(prices, Mapping):
            LOGGER.warning("Backend price feed unavailable: %s", response.error)
            return None
        return prices

    def apply_prices(self, prices: Mapping[str, Any] | None) -> None:
        if not self.store.is_alive:
            return
        updated: list[Asset] = []
        for asset in self.assets:
            update = _price_update(asset, prices)
            if update is None:
                updated.append(asset)
                continue
            metadata = asset.metadata.model_copy(
                update={"change_24h": update["change24h"]}
            )
            updated.append(
                asset.model_copy(update={"price": update["price"], "metadata": metadata})
            )
        self.store.assets.set(updated)

        by_symbol = {asset.symbol: asset for asset in updated}
        repriced: list[TradingPair] = []
        for pair in self.trading_pairs:
            base = by_symbol.get(pair.base_asset)
            quote = by_symbol.get(pair.quote_asset)
            if base is None or quote is None or not quote.price:
                repriced.append(pair)
                continue
            repriced.append(
                pair.model_copy(
                    update={
                        "price": base.price / quote.price,
                        "change_24h": base.change_24h - quote.change_24h,
                    }
                )
            )
        self.store.trading_pairs.set(repriced)
        self._changed("prices")

    async def fetch_orderbook(self, pair: str) -> Orderbook:
        response = await self.client.get_orderbook(pair)
        orderbook: Orderbook | None = None
        if response.success and isinstance(response.data, dict):
            try:
                orderbook = Orderbook.model_validate(response.data)
            except ValidationError as exc:
                LOGGER.warning("Invalid orderbook for %s: %s", pair, exc)
        if orderbook is None:
            orderbook = self._demo_orderbook(pair)
        self.update_orderbook(pair, orderbook)
        return orderbook

    async def fetch_recent_trades(self, pair: str) -> list[Trade]:
        response = await self.client.get_trades(pair)
        trades: list[Trade] | None = None
        if response.success and response.is_list:
            try:
                trades = [Trade.model_validate(item) for item in response.items]
            except ValidationError as exc:
                LOGGER.warning("Invalid trades for %s: %s", pair, exc)
        if trades is None:
            trades = self._demo_trades(pair)
        self.recent_trades = trades[:RECENT_TRADES_LIMIT]
        self._changed("recent_trades")
        return self.recent_trades

    def _pair_price(self, pair: str) -> Decimal:
        entry = self.store.trading_pairs.get_item(pair)
        if entry is None or not entry.price:
            return FALLBACK_PRICE
        return entry.price

    def _demo_orderbook(self, pair: str) -> Orderbook:
        price = self._pair_price(pair)

        def level(offset: Decimal) -> OrderbookLevel:
            amount = Decimal(str(round(self._rng.random() * 100 + 10, 8)))
            return OrderbookLevel(price=price * (1 + offset), amount=amount)

        steps = [Decimal("0.001") * (i + 1) for i in range(ORDERBOOK_DEPTH)]
        return Orderbook(
            bids=[level(-step) for step in steps],
            asks=[level(step) for step in steps],
        )

    def _demo_trades(self, pair: str) -> list[Trade]:
        price = self._pair_price(pair)
        now = self._clock()
        millis = int(now.timestamp() * 1000)
        trades = []
        for i in range(DEMO_TRADE_COUNT):
            jitter = Decimal(str(round((self._rng.random() - 0.5) * 0.02, 8)))
            trades.append(
                Trade(
                    id=f"trade_{millis}_{i}",
                    pair=pair,
                    side="buy" if self._rng.random() > 0.5 else "sell",
                    amount=Decimal(str(round(self._rng.random() * 10 + 0.1, 8))),
                    price=price * (1 + jitter),
                    timestamp=(now - timedelta(minutes=i)).isoformat(),
                )
            )
        return trades

    def _changed(self, name: str) -> None:
        self.publisher.notify(name)

"""Shared data models for the RSA DEX sync client.

Pydantic-based models mirroring the JSON the admin and DEX backends emit.
Monetary values are kept as ``Decimal``; camelCase wire names are accepted
through aliases and emitted again by :meth:`Entity.to_payload`.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict, Field, field_validator

from rsa_client.schemas import SyncState


class Entity(BaseModel):
    """Base for every keyed entity held by an entity store."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="allow")

    key_field: ClassVar[str] = "id"

    sync_status: SyncState = Field(SyncState.NOT_SYNCED, alias="syncStatus")

    @field_validator("sync_status", mode="before")
    @classmethod
    def normalize_sync_status(cls, v: Any) -> Any:
        if isinstance(v, SyncState):
            return v
        try:
            return SyncState(v)
        except ValueError:
            return SyncState.NOT_SYNCED

    @property
    def key(self) -> str:
        return str(getattr(self, self.key_field))

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    def patched(self, patch: dict[str, Any]) -> Entity:
        """Return a validated copy with ``patch`` merged over this entity.

        Patch keys may use either the wire alias or the attribute name.
        """
        aliases = {
            info.alias: name
            for name, info in type(self).model_fields.items()
            if info.alias
        }
        merged = self.model_dump()
        for key, value in patch.items():
            merged[aliases.get(key, key)] = value
        return type(self).model_validate(merged)


class VisibilitySettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    wallets: bool = True
    contracts: bool = True
    trading: bool = True
    transactions: bool = True


class AssetMetadata(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="allow")

    website: str | None = None
    explorer: str | None = None
    market_cap: Decimal | None = Field(None, alias="marketCap")
    volume_24h: Decimal | None = Field(None, alias="volume24h")
    change_24h: Decimal | None = Field(None, alias="change24h")


class Asset(Entity):
    id: str
    symbol: str
    name: str = ""
    icon: str = ""
    decimals: int = 18
    type: str = "crypto"
    price: Decimal = Decimal("0")
    status: str = "active"
    contract_address: str | None = Field(None, alias="contractAddress")
    issuer: str | None = None
    sync_with_dex: bool = Field(True, alias="syncWithDex")
    visibility_settings: VisibilitySettings = Field(
        default_factory=VisibilitySettings, alias="visibilitySettings"
    )
    metadata: AssetMetadata = Field(default_factory=AssetMetadata)

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v: Any) -> str:
        return str(v)

    @field_validator("sync_with_dex", mode="before")
    @classmethod
    def default_sync_with_dex(cls, v: Any) -> bool:
        return True if v is None else bool(v)

    @field_validator("visibility_settings", mode="before")
    @classmethod
    def default_visibility(cls, v: Any) -> Any:
        return VisibilitySettings() if v is None else v

    @property
    def change_24h(self) -> Decimal:
        return self.metadata.change_24h or Decimal("0")

    @property
    def volume_24h(self) -> Decimal:
        return self.metadata.volume_24h or Decimal("0")

    @property
    def tradable(self) -> bool:
        return self.status == "active" and self.visibility_settings.trading


class TradingPair(Entity):
    key_field: ClassVar[str] = "symbol"

    symbol: str
    base_asset: str = Field(..., alias="baseAsset")
    quote_asset: str = Field(..., alias="quoteAsset")
    price: Decimal = Decimal("0")
    change_24h: Decimal = Field(Decimal("0"), alias="change24h")
    volume_24h: Decimal = Field(Decimal("0"), alias="volume24h")
    high_24h: Decimal = Field(Decimal("0"), alias="high24h")
    low_24h: Decimal = Field(Decimal("0"), alias="low24h")


class Wallet(Entity):
    id: str
    address: str
    user_id: str | None = Field(None, alias="userId")
    status: str = "active"
    balance: dict[str, Decimal] = Field(default_factory=dict)
    total_value: Decimal | None = Field(None, alias="totalValue")
    network: str | None = None
    created_at: str | None = Field(None, alias="createdAt")

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v: Any) -> str:
        return str(v)

    @field_validator("balance", mode="before")
    @classmethod
    def default_balance(cls, v: Any) -> Any:
        return {} if v is None else v


class Transaction(Entity):
    id: str
    type: str = "transfer"
    asset: str
    amount: Decimal
    status: str = "pending"
    hash: str | None = None
    from_address: str | None = Field(None, alias="from")
    to_address: str | None = Field(None, alias="to")
    created_at: str | None = Field(None, alias="createdAt")
    gas_used: int | None = Field(None, alias="gasUsed")
    gas_price: int | None = Field(None, alias="gasPrice")

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v: Any) -> str:
        return str(v)


class Contract(Entity):
    id: str
    name: str = ""
    address: str
    type: str = ""
    status: str = "active"
    balance: dict[str, Decimal] = Field(default_factory=dict)
    created_at: str | None = Field(None, alias="createdAt")

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v: Any) -> str:
        return str(v)

    @field_validator("balance", mode="before")
    @classmethod
    def default_balance(cls, v: Any) -> Any:
        return {} if v is None else v


class Order(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    pair: str
    side: str
    type: str
    amount: Decimal
    price: Decimal | None = None
    filled: Decimal = Decimal("0")
    status: str = "pending"
    timestamp: str
    user_id: str | None = Field(None, alias="userId")


class Trade(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    pair: str
    side: str
    amount: Decimal
    price: Decimal
    timestamp: str
    order_id: str | None = Field(None, alias="orderId")


class OrderbookLevel(BaseModel):
    model_config = ConfigDict(frozen=True)

    price: Decimal
    amount: Decimal


class Orderbook(BaseModel):
    model_config = ConfigDict(frozen=True)

    bids: list[OrderbookLevel] = Field(default_factory=list)
    asks: list[OrderbookLevel] = Field(default_factory=list)


class SyncResult(BaseModel):
    """Outcome of one sync operation."""

    model_config = ConfigDict(frozen=True)

    success: bool
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    synced_count: int = 0
    total_count: int = 0

    @classmethod
    def ok(
        cls,
        synced_count: int = 0,
        total_count: int = 0,
        warnings: list[str] | None = None,
    ) -> SyncResult:
        return cls(
            success=True,
            synced_count=synced_count,
            total_count=total_count,
            warnings=list(warnings or []),
        )

    @classmethod
    def failed(cls, error: str | None, total_count: int = 0) -> SyncResult:
        return cls(
            success=False,
            errors=[error or "Unknown error"],
            synced_count=0,
            total_count=total_count,
        )

    def with_warning(self, warning: str) -> SyncResult:
        return self.model_copy(update={"warnings": [*self.warnings, warning]})

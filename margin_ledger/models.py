"""Data models — all frozen (immutable).

Cross references between accounts, open-orders records and markets are
string identifiers resolved from snapshots, never object references.
"""
from __future__ import annotations

from dataclasses import dataclass, replace
from decimal import Decimal
from enum import Enum

from . import fixed
from .errors import UnknownAssetError, UnknownMarketError

# ---------------------------------------------------------------------------
# Closed enums
# ---------------------------------------------------------------------------


class Side(str, Enum):
    BUY = "buy"
    SELL = "sell"


class OrderType(str, Enum):
    LIMIT = "limit"
    IOC = "ioc"
    POST_ONLY = "post_only"


class SelfTradeBehavior(str, Enum):
    DECREMENT_TAKE = "decrement_take"
    CANCEL_PROVIDE = "cancel_provide"


class AccountHealth(str, Enum):
    HEALTHY = "healthy"
    LIQUIDATABLE = "liquidatable"
    INSOLVENT = "insolvent"


# ---------------------------------------------------------------------------
# Group
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Asset:
    """One token slot of a group."""

    symbol: str
    mint: str
    decimals: int


@dataclass(frozen=True)
class InterestIndex:
    """Per-asset borrow/deposit indexes (raw fixed-point) and last accrual time."""

    borrow: int = fixed.ONE
    deposit: int = fixed.ONE
    last_update: int = 0


@dataclass(frozen=True)
class MarketRef:
    """Venue market pairing a tradable asset with the quote asset."""

    market_id: str
    base_lot_size: int = 1
    quote_lot_size: int = 1


@dataclass(frozen=True)
class GroupState:
    """Group-wide state shared by every account of a deployment."""

    group_id: str
    assets: tuple[Asset, ...]
    indexes: tuple[InterestIndex, ...]
    markets: tuple[MarketRef, ...]
    oracles: tuple[str, ...]
    vault_balances: tuple[int, ...]
    total_deposits: tuple[int, ...]
    total_borrows: tuple[int, ...]
    maint_coll_ratio: Decimal
    init_coll_ratio: Decimal
    borrow_limits: tuple[int, ...]
    signer: str = ""

    @property
    def num_assets(self) -> int:
        return len(self.assets)

    @property
    def num_markets(self) -> int:
        return len(self.assets) - 1

    @property
    def quote_index(self) -> int:
        return len(self.assets) - 1

    def get_asset_index(self, key: str) -> int:
        """Resolve a symbol or mint to its asset slot."""
        for i, asset in enumerate(self.assets):
            if key in (asset.symbol, asset.mint):
                return i
        raise UnknownAssetError(f"Asset '{key}' does not belong to group {self.group_id}")

    def check_asset_index(self, index: int) -> None:
        if not 0 <= index < self.num_assets:
            raise UnknownAssetError(f"Asset index {index} out of range")

    def get_market_index(self, market_id: str) -> int:
        for i, market in enumerate(self.markets):
            if market.market_id == market_id:
                return i
        raise UnknownMarketError(
            f"Market '{market_id}' does not belong to group {self.group_id}"
        )

    def check_market_index(self, index: int) -> None:
        if not 0 <= index < self.num_markets:
            raise UnknownMarketError(f"Market index {index} out of range")

    def native_total_deposit(self, index: int) -> int:
        return fixed.shares_to_native(
            self.total_deposits[index], self.indexes[index].deposit
        )

    def native_total_borrow(self, index: int) -> int:
        return fixed.shares_to_native(
            self.total_borrows[index], self.indexes[index].borrow
        )


# ---------------------------------------------------------------------------
# Accounts and venue records
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AccountState:
    """A trader's margin account, in index-denominated shares."""

    account_id: str
    group_id: str
    owner: str
    deposits: tuple[int, ...]
    borrows: tuple[int, ...]
    open_orders: tuple[str | None, ...]

    @classmethod
    def empty(
        cls, account_id: str, group: GroupState, owner: str
    ) -> AccountState:
        n = group.num_assets
        return cls(
            account_id=account_id,
            group_id=group.group_id,
            owner=owner,
            deposits=(0,) * n,
            borrows=(0,) * n,
            open_orders=(None,) * group.num_markets,
        )

    def native_deposit(self, group: GroupState, index: int) -> int:
        return fixed.shares_to_native(self.deposits[index], group.indexes[index].deposit)

    def native_borrow(self, group: GroupState, index: int) -> int:
        return fixed.shares_to_native(self.borrows[index], group.indexes[index].borrow)

    def ui_deposit(self, group: GroupState, index: int) -> Decimal:
        return fixed.native_to_ui(
            self.native_deposit(group, index), group.assets[index].decimals
        )

    def ui_borrow(self, group: GroupState, index: int) -> Decimal:
        return fixed.native_to_ui(
            self.native_borrow(group, index), group.assets[index].decimals
        )

    def with_open_orders(self, market_index: int, open_orders_id: str) -> AccountState:
        refs = list(self.open_orders)
        refs[market_index] = open_orders_id
        return replace(self, open_orders=tuple(refs))


@dataclass(frozen=True)
class OpenOrdersBalances:
    """Venue-held balances of one account on one market (native units)."""

    open_orders_id: str
    market_id: str
    owner: str
    base_free: int = 0
    base_total: int = 0
    quote_free: int = 0
    quote_total: int = 0

    @property
    def has_unsettled(self) -> bool:
        return self.base_free > 0 or self.quote_free > 0


@dataclass(frozen=True)
class Order:
    """A resting order on the venue."""

    order_id: str
    market_id: str
    open_orders_id: str
    side: Side
    price: Decimal
    size: int
    order_type: OrderType = OrderType.LIMIT
    client_id: int | None = None


# ---------------------------------------------------------------------------
# Valuation
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PriceVector:
    """One price per asset; the last (quote) entry is always 1."""

    prices: tuple[Decimal, ...]
    fetched_at: float = 0.0

    def __getitem__(self, index: int) -> Decimal:
        return self.prices[index]

    def __len__(self) -> int:
        return len(self.prices)


@dataclass(frozen=True)
class Valuation:
    """Scored health of one account at one price vector."""

    account_id: str
    assets: tuple[int, ...]
    liabilities: tuple[int, ...]
    assets_value: Decimal
    liabilities_value: Decimal
    collateral_ratio: Decimal | None

    @property
    def has_liabilities(self) -> bool:
        return self.liabilities_value > 0

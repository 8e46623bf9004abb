"""Pure valuation functions — no I/O."""
from __future__ import annotations

import time
from collections.abc import Mapping, Sequence
from decimal import Decimal

from . import fixed
from .errors import StalePriceError
from .models import (
    AccountHealth,
    AccountState,
    GroupState,
    OpenOrdersBalances,
    PriceVector,
    Valuation,
)

OpenOrdersSet = Sequence["OpenOrdersBalances | None"] | None


def build_price_vector(
    group: GroupState,
    prices: Mapping[str, Decimal | float],
    fetched_at: float | None = None,
) -> PriceVector:
    """Order oracle prices by asset slot; the quote asset is priced at 1.

    Raises:
        StalePriceError: if any tradable asset has no positive price.
    """
    vector: list[Decimal] = []
    missing: list[str] = []
    for asset in group.assets[: group.num_markets]:
        raw = prices.get(asset.symbol)
        price = Decimal(str(raw)) if raw is not None else Decimal(0)
        if price <= 0:
            missing.append(asset.symbol)
        vector.append(price)
    if missing:
        raise StalePriceError(missing)
    vector.append(Decimal(1))
    return PriceVector(
        prices=tuple(vector),
        fetched_at=time.time() if fetched_at is None else fetched_at,
    )


def account_assets(
    group: GroupState, account: AccountState, open_orders: OpenOrdersSet = None
) -> tuple[int, ...]:
    """Native assets per slot: deposits plus everything held on the venue.

    Base totals count toward their market's asset; quote totals of every
    market count toward the quote asset.
    """
    assets = [account.native_deposit(group, i) for i in range(group.num_assets)]
    if open_orders is not None:
        for market_index, oo in enumerate(open_orders):
            if oo is None:
                continue
            assets[market_index] += oo.base_total
            assets[group.quote_index] += oo.quote_total
    return tuple(assets)


def account_liabilities(group: GroupState, account: AccountState) -> tuple[int, ...]:
    return tuple(account.native_borrow(group, i) for i in range(group.num_assets))


def value_of(group: GroupState, amounts: Sequence[int], prices: PriceVector) -> Decimal:
    """Sum of UI amounts times prices."""
    total = Decimal(0)
    for i, native in enumerate(amounts):
        total += fixed.native_to_ui(native, group.assets[i].decimals) * prices[i]
    return total


def value_account(
    group: GroupState,
    account: AccountState,
    prices: PriceVector,
    open_orders: OpenOrdersSet = None,
) -> Valuation:
    """Score one account. The ratio is None when there are no liabilities."""
    assets = account_assets(group, account, open_orders)
    liabilities = account_liabilities(group, account)
    assets_value = value_of(group, assets, prices)
    liabilities_value = value_of(group, liabilities, prices)
    ratio = assets_value / liabilities_value if liabilities_value > 0 else None
    return Valuation(
        account_id=account.account_id,
        assets=assets,
        liabilities=liabilities,
        assets_value=assets_value,
        liabilities_value=liabilities_value,
        collateral_ratio=ratio,
    )


def classify(valuation: Valuation, group: GroupState) -> AccountHealth:
    """Healthy at or above maintenance; insolvent below 1; liquidatable otherwise."""
    ratio = valuation.collateral_ratio
    if ratio is None or ratio >= group.maint_coll_ratio:
        return AccountHealth.HEALTHY
    if ratio < 1:
        return AccountHealth.INSOLVENT
    return AccountHealth.LIQUIDATABLE


def meets_init_ratio(valuation: Valuation, group: GroupState) -> bool:
    ratio = valuation.collateral_ratio
    return ratio is None or ratio >= group.init_coll_ratio


def liquidation_deposit(
    group: GroupState, valuation: Valuation, margin: Decimal = Decimal("1.01")
) -> int:
    """Native quote amount lifting the account to the initiation ratio, times ``margin``."""
    shortfall = valuation.liabilities_value * group.init_coll_ratio - valuation.assets_value
    if shortfall <= 0:
        return 0
    quote = group.assets[group.quote_index]
    return fixed.ui_to_native(shortfall * margin, quote.decimals)


def format_ratio(ratio: Decimal | None) -> str:
    return "n/a" if ratio is None else f"{ratio:.4f}"

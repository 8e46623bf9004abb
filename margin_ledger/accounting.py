"""Pure ledger state transitions.

Every function takes the current GroupState/AccountState snapshots and
returns the next ones, or raises without side effects. Indexes must already
be accrued by the caller (see :func:`margin_ledger.interest.accrue_group`).
"""
from __future__ import annotations

from dataclasses import replace

from . import fixed
from .errors import (
    BorrowLimitError,
    CollateralRatioError,
    InsufficientFundsError,
    InvariantViolation,
    LiquidationUnderfundedError,
    NotLiquidatableError,
)
from .models import AccountHealth, AccountState, GroupState, PriceVector
from .valuation import OpenOrdersSet, classify, meets_init_ratio, value_account

State = tuple[GroupState, AccountState]


def _set(values: tuple[int, ...], index: int, value: int) -> tuple[int, ...]:
    if value < 0:
        raise InvariantViolation(f"Negative ledger balance at slot {index}: {value}")
    items = list(values)
    items[index] = value
    return tuple(items)


def _check_quantity(quantity: int) -> None:
    if quantity < 0:
        raise InvariantViolation(f"Negative quantity: {quantity}")


# ---------------------------------------------------------------------------
# Share bookkeeping
# ---------------------------------------------------------------------------


def _add_deposit(group: GroupState, account: AccountState, i: int, native: int) -> State:
    shares = fixed.native_to_shares(native, group.indexes[i].deposit)
    group = replace(group, total_deposits=_set(group.total_deposits, i, group.total_deposits[i] + shares))
    account = replace(account, deposits=_set(account.deposits, i, account.deposits[i] + shares))
    return group, account


def _remove_deposit(group: GroupState, account: AccountState, i: int, native: int) -> State:
    if native == account.native_deposit(group, i):
        shares = account.deposits[i]
    else:
        shares = min(
            fixed.native_to_shares(native, group.indexes[i].deposit), account.deposits[i]
        )
    group = replace(group, total_deposits=_set(group.total_deposits, i, group.total_deposits[i] - shares))
    account = replace(account, deposits=_set(account.deposits, i, account.deposits[i] - shares))
    return group, account


def _add_borrow(group: GroupState, account: AccountState, i: int, native: int) -> State:
    shares = fixed.native_to_shares(native, group.indexes[i].borrow)
    group = replace(group, total_borrows=_set(group.total_borrows, i, group.total_borrows[i] + shares))
    account = replace(account, borrows=_set(account.borrows, i, account.borrows[i] + shares))
    return group, account


def _remove_borrow(group: GroupState, account: AccountState, i: int, native: int) -> State:
    if native == account.native_borrow(group, i):
        shares = account.borrows[i]
    else:
        shares = min(
            fixed.native_to_shares(native, group.indexes[i].borrow), account.borrows[i]
        )
    group = replace(group, total_borrows=_set(group.total_borrows, i, group.total_borrows[i] - shares))
    account = replace(account, borrows=_set(account.borrows, i, account.borrows[i] - shares))
    return group, account


def _move_vault(group: GroupState, i: int, delta: int) -> GroupState:
    balance = group.vault_balances[i] + delta
    if balance < 0:
        raise InsufficientFundsError(
            f"Vault for {group.assets[i].symbol} holds {group.vault_balances[i]}, "
            f"cannot release {-delta}"
        )
    return replace(group, vault_balances=_set(group.vault_balances, i, balance))


def _check_borrow_limit(group: GroupState, account: AccountState, i: int) -> None:
    borrowed = account.native_borrow(group, i)
    if borrowed > group.borrow_limits[i]:
        raise BorrowLimitError(
            f"Borrow of {borrowed} {group.assets[i].symbol} exceeds limit "
            f"{group.borrow_limits[i]}"
        )


def _check_init_ratio(
    group: GroupState,
    account: AccountState,
    prices: PriceVector,
    open_orders: OpenOrdersSet,
) -> None:
    valuation = value_account(group, account, prices, open_orders)
    if not meets_init_ratio(valuation, group):
        raise CollateralRatioError(
            f"Collateral ratio {valuation.collateral_ratio} below initiation "
            f"ratio {group.init_coll_ratio}"
        )


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------


def deposit(group: GroupState, account: AccountState, i: int, quantity: int) -> State:
    """Credit ``quantity`` native units of asset ``i`` to the account and vault."""
    group.check_asset_index(i)
    _check_quantity(quantity)
    group, account = _add_deposit(group, account, i, quantity)
    return _move_vault(group, i, quantity), account


def withdraw(
    group: GroupState,
    account: AccountState,
    i: int,
    quantity: int,
    prices: PriceVector,
    open_orders: OpenOrdersSet = None,
) -> State:
    """Debit a deposit; the account must stay above the initiation ratio."""
    group.check_asset_index(i)
    _check_quantity(quantity)
    available = account.native_deposit(group, i)
    if quantity > available:
        raise InsufficientFundsError(
            f"Withdraw of {quantity} {group.assets[i].symbol} exceeds deposit {available}"
        )
    group, account = _remove_deposit(group, account, i, quantity)
    group = _move_vault(group, i, -quantity)
    _check_init_ratio(group, account, prices, open_orders)
    return group, account


def borrow(
    group: GroupState,
    account: AccountState,
    i: int,
    quantity: int,
    prices: PriceVector,
    open_orders: OpenOrdersSet = None,
) -> State:
    """Borrow against collateral. Borrowed funds stay in the account as a deposit."""
    group.check_asset_index(i)
    _check_quantity(quantity)
    group, account = _add_borrow(group, account, i, quantity)
    group, account = _add_deposit(group, account, i, quantity)
    _check_borrow_limit(group, account, i)
    _check_init_ratio(group, account, prices, open_orders)
    return group, account


def settle_borrow(group: GroupState, account: AccountState, i: int, quantity: int) -> State:
    """Offset up to ``quantity`` of debt with deposits of the same asset."""
    group.check_asset_index(i)
    _check_quantity(quantity)
    amount = min(quantity, account.native_deposit(group, i), account.native_borrow(group, i))
    if amount == 0:
        return group, account
    group, account = _remove_deposit(group, account, i, amount)
    return _remove_borrow(group, account, i, amount)


def settle_all_borrows(group: GroupState, account: AccountState) -> State:
    for i in range(group.num_assets):
        group, account = settle_borrow(group, account, i, account.native_borrow(group, i))
    return group, account


def liquidate(
    group: GroupState,
    account: AccountState,
    liquidator: str,
    quantities: tuple[int, ...],
    prices: PriceVector,
    open_orders: OpenOrdersSet = None,
) -> State:
    """Deposit the liquidator's funds and hand the account over to the liquidator.

    Raises:
        NotLiquidatableError: the account is at or above maintenance.
        LiquidationUnderfundedError: the deposits leave it below initiation.
    """
    if len(quantities) != group.num_assets:
        raise InvariantViolation(
            f"Expected {group.num_assets} deposit quantities, got {len(quantities)}"
        )
    before = value_account(group, account, prices, open_orders)
    if classify(before, group) is AccountHealth.HEALTHY:
        raise NotLiquidatableError(
            f"Account {account.account_id} is not liquidatable "
            f"(ratio {before.collateral_ratio})"
        )

    for i, quantity in enumerate(quantities):
        if quantity:
            group, account = deposit(group, account, i, quantity)

    after = value_account(group, account, prices, open_orders)
    if not meets_init_ratio(after, group):
        raise LiquidationUnderfundedError(
            f"Liquidation deposits leave account {account.account_id} at ratio "
            f"{after.collateral_ratio}, below {group.init_coll_ratio}"
        )
    return group, replace(account, owner=liquidator)


def reserve_for_order(
    group: GroupState,
    account: AccountState,
    i: int,
    quantity: int,
    prices: PriceVector,
    open_orders: OpenOrdersSet = None,
) -> State:
    """Move ``quantity`` of asset ``i`` out of the ledger towards the venue.

    A shortfall against the deposit is borrowed first, subject to the borrow
    limit and the initiation ratio.
    """
    _check_quantity(quantity)
    shortfall = quantity - account.native_deposit(group, i)
    if shortfall > 0:
        group, account = borrow(group, account, i, shortfall, prices, open_orders)
    group, account = _remove_deposit(group, account, i, quantity)
    return _move_vault(group, i, -quantity), account


def credit_settlement(
    group: GroupState,
    account: AccountState,
    base_index: int,
    base_quantity: int,
    quote_quantity: int,
) -> State:
    """Credit venue proceeds and net them against same-asset debt."""
    quote_index = group.quote_index
    if base_quantity:
        group, account = deposit(group, account, base_index, base_quantity)
        group, account = settle_borrow(
            group, account, base_index, account.native_borrow(group, base_index)
        )
    if quote_quantity:
        group, account = deposit(group, account, quote_index, quote_quantity)
        group, account = settle_borrow(
            group, account, quote_index, account.native_borrow(group, quote_index)
        )
    return group, account

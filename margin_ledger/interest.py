"""Utilization-based interest rates and index accrual."""
from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from decimal import Decimal

from . import fixed
from .errors import InvariantViolation
from .models import GroupState, InterestIndex

logger = logging.getLogger(__name__)

SECONDS_PER_YEAR = 365 * 24 * 60 * 60


@dataclass(frozen=True)
class RateModel:
    """Piecewise-linear borrow-rate curve with a single kink."""

    optimal_util: Decimal = Decimal("0.7")
    optimal_rate: Decimal = Decimal("0.1")
    max_rate: Decimal = Decimal("1")


DEFAULT_RATE_MODEL = RateModel()


def utilization(total_deposits: int, total_borrows: int) -> Decimal | None:
    """Borrowed share of deposits, or None when there are no deposits."""
    if total_deposits <= 0:
        return None
    return Decimal(total_borrows) / Decimal(total_deposits)


def borrow_rate(util: Decimal | None, model: RateModel = DEFAULT_RATE_MODEL) -> Decimal:
    """Yearly borrow rate for a utilization.

    Below the kink: ``optimal_rate * util / optimal_util``.
    Above the kink: ``optimal_rate + (max_rate - optimal_rate) *
    (util - optimal_util) / (1 - optimal_util)``.
    Undefined or over-100% utilization saturates at ``max_rate``.
    """
    if util is None or util >= 1:
        return model.max_rate
    if util <= model.optimal_util:
        return model.optimal_rate * util / model.optimal_util
    extra = (model.max_rate - model.optimal_rate) * (util - model.optimal_util)
    return model.optimal_rate + extra / (1 - model.optimal_util)


def deposit_rate(util: Decimal | None, model: RateModel = DEFAULT_RATE_MODEL) -> Decimal:
    """Yearly deposit rate: what borrowers pay, spread over all deposits."""
    if util is None:
        return Decimal(0)
    return borrow_rate(util, model) * min(util, Decimal(1))


def current_rates(
    group: GroupState, index: int, model: RateModel = DEFAULT_RATE_MODEL
) -> tuple[Decimal, Decimal]:
    """(borrow_rate, deposit_rate) for an asset at the group's current totals."""
    util = utilization(group.native_total_deposit(index), group.native_total_borrow(index))
    return borrow_rate(util, model), deposit_rate(util, model)


def accrue_index(
    index: InterestIndex,
    total_deposits: int,
    total_borrows: int,
    now: int,
    model: RateModel = DEFAULT_RATE_MODEL,
) -> InterestIndex:
    """Bring one index current to ``now``. Never decreases either index."""
    if now <= index.last_update:
        return index

    elapsed = Decimal(now - index.last_update)
    util = utilization(total_deposits, total_borrows)
    borrow_growth = borrow_rate(util, model) * elapsed / SECONDS_PER_YEAR
    deposit_growth = deposit_rate(util, model) * elapsed / SECONDS_PER_YEAR

    new_index = InterestIndex(
        borrow=index.borrow + fixed.mul_decimal(index.borrow, borrow_growth),
        deposit=index.deposit + fixed.mul_decimal(index.deposit, deposit_growth),
        last_update=now,
    )
    check_index_monotonic(index, new_index)
    return new_index


def accrue_group(
    group: GroupState, now: int, model: RateModel = DEFAULT_RATE_MODEL
) -> GroupState:
    """Accrue every asset's index of a group."""
    indexes = tuple(
        accrue_index(
            group.indexes[i],
            group.native_total_deposit(i),
            group.native_total_borrow(i),
            now,
            model,
        )
        for i in range(group.num_assets)
    )
    return replace(group, indexes=indexes)


def check_index_monotonic(old: InterestIndex, new: InterestIndex) -> None:
    if new.borrow < old.borrow or new.deposit < old.deposit:
        raise InvariantViolation(
            f"Interest index decreased: borrow {old.borrow} -> {new.borrow}, "
            f"deposit {old.deposit} -> {new.deposit}"
        )


def check_group_indexes(old: GroupState, new: GroupState) -> None:
    """Raise if any index of ``new`` is below the matching index of ``old``."""
    for i, (before, after) in enumerate(zip(old.indexes, new.indexes)):
        try:
            check_index_monotonic(before, after)
        except InvariantViolation as e:
            logger.error("Asset %s: %s", new.assets[i].symbol, e)
            raise

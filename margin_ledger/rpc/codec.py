"""JSON payload codec for the remote ledger.

Integers (native amounts, raw U64F64 shares and indexes) travel as decimal
strings so no JSON implementation can round them; ratios and prices travel
as decimal strings parsed with :class:`~decimal.Decimal`.
"""
from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any

from ..errors import DecodeError, InvariantViolation
from ..models import (
    AccountState,
    Asset,
    GroupState,
    InterestIndex,
    MarketRef,
    OpenOrdersBalances,
    Order,
    OrderType,
    SelfTradeBehavior,
    Side,
)


def _field(raw: dict[str, Any], key: str) -> Any:
    try:
        return raw[key]
    except (KeyError, TypeError):
        raise DecodeError(f"Missing field '{key}'") from None


def _int(value: Any, name: str) -> int:
    try:
        result = int(value)
    except (TypeError, ValueError):
        raise DecodeError(f"Field '{name}' is not an integer: {value!r}") from None
    if result < 0:
        raise InvariantViolation(f"Field '{name}' is negative: {result}")
    return result


def _ints(values: Any, name: str) -> tuple[int, ...]:
    if not isinstance(values, list):
        raise DecodeError(f"Field '{name}' is not a list")
    return tuple(_int(v, name) for v in values)


def _decimal(value: Any, name: str) -> Decimal:
    try:
        return Decimal(str(value))
    except InvalidOperation:
        raise DecodeError(f"Field '{name}' is not a number: {value!r}") from None


def _enum(enum_cls: type, value: Any, name: str) -> Any:
    try:
        return enum_cls(value)
    except ValueError:
        raise DecodeError(f"Unknown {name}: {value!r}") from None


# ---------------------------------------------------------------------------
# Decoders
# ---------------------------------------------------------------------------


def parse_group(raw: dict[str, Any]) -> GroupState:
    assets = tuple(
        Asset(
            symbol=_field(a, "symbol"),
            mint=_field(a, "mint"),
            decimals=_int(_field(a, "decimals"), "decimals"),
        )
        for a in _field(raw, "assets")
    )
    indexes = tuple(
        InterestIndex(
            borrow=_int(_field(ix, "borrow"), "borrow_index"),
            deposit=_int(_field(ix, "deposit"), "deposit_index"),
            last_update=_int(_field(ix, "last_update"), "last_update"),
        )
        for ix in _field(raw, "indexes")
    )
    markets = tuple(
        MarketRef(
            market_id=_field(m, "market_id"),
            base_lot_size=_int(m.get("base_lot_size", 1), "base_lot_size"),
            quote_lot_size=_int(m.get("quote_lot_size", 1), "quote_lot_size"),
        )
        for m in _field(raw, "markets")
    )
    group = GroupState(
        group_id=_field(raw, "group_id"),
        assets=assets,
        indexes=indexes,
        markets=markets,
        oracles=tuple(_field(raw, "oracles")),
        vault_balances=_ints(_field(raw, "vault_balances"), "vault_balances"),
        total_deposits=_ints(_field(raw, "total_deposits"), "total_deposits"),
        total_borrows=_ints(_field(raw, "total_borrows"), "total_borrows"),
        maint_coll_ratio=_decimal(_field(raw, "maint_coll_ratio"), "maint_coll_ratio"),
        init_coll_ratio=_decimal(_field(raw, "init_coll_ratio"), "init_coll_ratio"),
        borrow_limits=_ints(_field(raw, "borrow_limits"), "borrow_limits"),
        signer=raw.get("signer", ""),
    )
    n = group.num_assets
    per_asset = {
        "indexes": group.indexes,
        "vault_balances": group.vault_balances,
        "total_deposits": group.total_deposits,
        "total_borrows": group.total_borrows,
        "borrow_limits": group.borrow_limits,
    }
    for name, values in per_asset.items():
        if len(values) != n:
            raise DecodeError(f"Group field '{name}' has {len(values)} entries, expected {n}")
    if len(group.markets) != n - 1 or len(group.oracles) != n - 1:
        raise DecodeError(f"Group must have {n - 1} markets and oracles")
    return group


def parse_account(raw: dict[str, Any]) -> AccountState:
    deposits = _ints(_field(raw, "deposits"), "deposits")
    borrows = _ints(_field(raw, "borrows"), "borrows")
    if len(deposits) != len(borrows):
        raise DecodeError("Account deposits and borrows differ in length")
    return AccountState(
        account_id=_field(raw, "account_id"),
        group_id=_field(raw, "group_id"),
        owner=_field(raw, "owner"),
        deposits=deposits,
        borrows=borrows,
        open_orders=tuple(_field(raw, "open_orders")),
    )


def parse_open_orders(raw: dict[str, Any]) -> OpenOrdersBalances:
    balances = OpenOrdersBalances(
        open_orders_id=_field(raw, "open_orders_id"),
        market_id=_field(raw, "market_id"),
        owner=_field(raw, "owner"),
        base_free=_int(raw.get("base_free", 0), "base_free"),
        base_total=_int(raw.get("base_total", 0), "base_total"),
        quote_free=_int(raw.get("quote_free", 0), "quote_free"),
        quote_total=_int(raw.get("quote_total", 0), "quote_total"),
    )
    if balances.base_free > balances.base_total or balances.quote_free > balances.quote_total:
        raise InvariantViolation(
            f"Open orders {balances.open_orders_id} has free balance above total"
        )
    return balances


def parse_order(raw: dict[str, Any]) -> Order:
    client_id = raw.get("client_id")
    return Order(
        order_id=str(_field(raw, "order_id")),
        market_id=_field(raw, "market_id"),
        open_orders_id=_field(raw, "open_orders_id"),
        side=_enum(Side, _field(raw, "side"), "side"),
        price=_decimal(_field(raw, "price"), "price"),
        size=_int(_field(raw, "size"), "size"),
        order_type=_enum(OrderType, raw.get("order_type", "limit"), "order type"),
        client_id=None if client_id is None else int(client_id),
    )


def parse_signature(raw: Any) -> str:
    if isinstance(raw, str):
        return raw
    return str(_field(raw, "signature"))


# ---------------------------------------------------------------------------
# Encoders
# ---------------------------------------------------------------------------


def encode_quantity(quantity: int) -> str:
    if quantity < 0:
        raise InvariantViolation(f"Negative quantity: {quantity}")
    return str(quantity)


def encode_quantities(quantities: tuple[int, ...] | list[int]) -> list[str]:
    return [encode_quantity(q) for q in quantities]


def encode_order(
    side: Side,
    price: Decimal,
    size: int,
    order_type: OrderType,
    client_id: int | None,
    self_trade_behavior: SelfTradeBehavior = SelfTradeBehavior.DECREMENT_TAKE,
) -> dict[str, Any]:
    return {
        "side": side.value,
        "price": str(price),
        "size": encode_quantity(size),
        "order_type": order_type.value,
        "client_id": client_id,
        "self_trade_behavior": self_trade_behavior.value,
    }

"""JSON-RPC client for a remote margin ledger, with endpoint fallback."""
from __future__ import annotations

import asyncio
import logging
import ssl
from decimal import Decimal
from typing import Any

import aiohttp
import certifi

from ..config import LedgerConfig
from ..errors import RpcTransportError, error_from_kind
from ..models import (
    AccountState,
    GroupState,
    OpenOrdersBalances,
    Order,
    OrderType,
    SelfTradeBehavior,
    Side,
)
from . import codec

logger = logging.getLogger(__name__)

_TRANSPORT_ERRORS = (aiohttp.ClientError, asyncio.TimeoutError, OSError, ValueError)


class RpcLedgerClient:
    """Remote ledger client.

    Reads fall back across endpoints. Writes go to the current endpoint only:
    a write that timed out may still have been applied, so it is never
    replayed against another node here; the caller re-reads state and retries.
    """

    def __init__(self, config: LedgerConfig) -> None:
        self.group_id = config.group_id
        self.endpoints = list(config.rpc_endpoints)
        self.timeout = config.rpc_timeout
        self.current_rpc_index = 0
        self._request_id = 0

    def _payload(self, method: str, params: list[Any]) -> dict[str, Any]:
        self._request_id += 1
        return {"jsonrpc": "2.0", "id": self._request_id, "method": method, "params": params}

    async def _post(self, rpc_url: str, payload: dict[str, Any]) -> dict[str, Any]:
        ssl_context = ssl.create_default_context(cafile=certifi.where())
        connector = aiohttp.TCPConnector(ssl=ssl_context)
        async with aiohttp.ClientSession(connector=connector) as session:
            async with session.post(
                rpc_url,
                json=payload,
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            ) as response:
                return await response.json()

    @staticmethod
    def _unwrap(result: dict[str, Any]) -> Any:
        """Return the ``result`` member or raise the ledger's typed rejection."""
        if "error" in result:
            error = result["error"] or {}
            data = error.get("data") or {}
            kind = data.get("kind", "LedgerError") if isinstance(data, dict) else "LedgerError"
            raise error_from_kind(kind, error.get("message", str(error)))
        return result.get("result")

    async def rpc_call(self, method: str, params: list[Any]) -> Any:
        """Make a read call with fallback to alternative endpoints."""
        payload = self._payload(method, params)

        last_error: Exception | None = None
        for attempt in range(len(self.endpoints)):
            rpc_index = (self.current_rpc_index + attempt) % len(self.endpoints)
            rpc_url = self.endpoints[rpc_index]

            try:
                result = await self._post(rpc_url, payload)
            except _TRANSPORT_ERRORS as e:
                last_error = e
                logger.warning("RPC endpoint %s failed: %s", rpc_url, e)
                if attempt < len(self.endpoints) - 1:
                    logger.info("Trying next endpoint...")
                continue

            if rpc_index != self.current_rpc_index:
                logger.info("Switched to RPC endpoint: %s", rpc_url)
                self.current_rpc_index = rpc_index
            return self._unwrap(result)

        raise RpcTransportError(f"All RPC endpoints failed. Last error: {last_error}")

    async def rpc_send(self, method: str, params: list[Any]) -> Any:
        """Submit a write to the current endpoint only."""
        rpc_url = self.endpoints[self.current_rpc_index]
        try:
            result = await self._post(rpc_url, self._payload(method, params))
        except _TRANSPORT_ERRORS as e:
            logger.warning("RPC write %s to %s failed: %s", method, rpc_url, e)
            raise RpcTransportError(f"{method} failed on {rpc_url}: {e}") from e
        return self._unwrap(result)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_group(self) -> GroupState:
        return codec.parse_group(await self.rpc_call("margin_getGroup", [self.group_id]))

    async def get_account(self, account_id: str) -> AccountState:
        return codec.parse_account(await self.rpc_call("margin_getAccount", [account_id]))

    async def get_accounts_for_group(self) -> list[AccountState]:
        result = await self.rpc_call("margin_getAccountsForGroup", [self.group_id])
        return [codec.parse_account(a) for a in result or []]

    async def get_accounts_for_owner(self, owner: str) -> list[AccountState]:
        result = await self.rpc_call("margin_getAccountsForOwner", [self.group_id, owner])
        return [codec.parse_account(a) for a in result or []]

    async def get_open_orders(
        self, account: AccountState
    ) -> list[OpenOrdersBalances | None]:
        ids = [oo for oo in account.open_orders if oo is not None]
        if not ids:
            return [None] * len(account.open_orders)
        result = await self.rpc_call("margin_getOpenOrders", [ids])
        by_id = {}
        for raw in result or []:
            balances = codec.parse_open_orders(raw)
            by_id[balances.open_orders_id] = balances
        return [by_id.get(oo) if oo is not None else None for oo in account.open_orders]

    async def get_orders(self, account: AccountState, market_index: int) -> list[Order]:
        oo_id = account.open_orders[market_index]
        if oo_id is None:
            return []
        result = await self.rpc_call("margin_getOrders", [oo_id])
        return [codec.parse_order(o) for o in result or []]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def deposit(
        self, account_id: str, depositor: str, asset_index: int, quantity: int
    ) -> str:
        result = await self.rpc_send(
            "margin_deposit",
            [self.group_id, account_id, depositor, asset_index, codec.encode_quantity(quantity)],
        )
        return codec.parse_signature(result)

    async def withdraw(
        self, account_id: str, owner: str, asset_index: int, quantity: int
    ) -> str:
        result = await self.rpc_send(
            "margin_withdraw",
            [self.group_id, account_id, owner, asset_index, codec.encode_quantity(quantity)],
        )
        return codec.parse_signature(result)

    async def borrow(
        self, account_id: str, owner: str, asset_index: int, quantity: int
    ) -> str:
        result = await self.rpc_send(
            "margin_borrow",
            [self.group_id, account_id, owner, asset_index, codec.encode_quantity(quantity)],
        )
        return codec.parse_signature(result)

    async def settle_borrow(
        self, account_id: str, owner: str, asset_index: int, quantity: int
    ) -> str:
        result = await self.rpc_send(
            "margin_settleBorrow",
            [self.group_id, account_id, owner, asset_index, codec.encode_quantity(quantity)],
        )
        return codec.parse_signature(result)

    async def liquidate(
        self, account_id: str, liquidator: str, deposit_quantities: tuple[int, ...]
    ) -> str:
        result = await self.rpc_send(
            "margin_liquidate",
            [self.group_id, account_id, liquidator, codec.encode_quantities(deposit_quantities)],
        )
        return codec.parse_signature(result)

    async def place_order(
        self,
        account_id: str,
        owner: str,
        market_index: int,
        side: Side,
        price: Decimal,
        size: int,
        order_type: OrderType = OrderType.LIMIT,
        client_id: int | None = None,
        self_trade_behavior: SelfTradeBehavior = SelfTradeBehavior.DECREMENT_TAKE,
    ) -> str:
        result = await self.rpc_send(
            "margin_placeOrder",
            [
                self.group_id,
                account_id,
                owner,
                market_index,
                codec.encode_order(
                    side, price, size, order_type, client_id, self_trade_behavior
                ),
            ],
        )
        return codec.parse_signature(result)

    async def cancel_order(
        self, account_id: str, owner: str, market_index: int, order_id: str
    ) -> str:
        result = await self.rpc_send(
            "margin_cancelOrder", [self.group_id, account_id, owner, market_index, order_id]
        )
        return codec.parse_signature(result)

    async def cancel_all_by_market(
        self, account_id: str, owner: str, market_index: int
    ) -> int:
        result = await self.rpc_send(
            "margin_cancelAllByMarket", [self.group_id, account_id, owner, market_index]
        )
        return int((result or {}).get("cancelled", 0))

    async def settle_funds(self, account_id: str, owner: str, market_index: int) -> str:
        result = await self.rpc_send(
            "margin_settleFunds", [self.group_id, account_id, owner, market_index]
        )
        return codec.parse_signature(result)

"""Liquidation coordinator — scans a group, liquidates and drains accounts."""
from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum

from .. import fixed
from ..config import AppConfig, GroupConfig
from ..errors import (
    ConfigurationError,
    InvariantViolation,
    LedgerError,
    NotLiquidatableError,
)
from ..interest import check_group_indexes, current_rates
from ..interfaces.ledger import LedgerClient
from ..interfaces.notifier import Notifier
from ..interfaces.price_oracle import PriceOracle
from ..models import (
    AccountHealth,
    AccountState,
    GroupState,
    OpenOrdersBalances,
    PriceVector,
    Valuation,
)
from ..notifications import TelegramNotifier
from ..oracles import PythOracle, StaticOracle
from ..retry import RetryPolicy
from ..rpc import RpcLedgerClient
from ..valuation import (
    build_price_vector,
    classify,
    format_ratio,
    liquidation_deposit,
    value_account,
)
from .drain import DrainResult, Drainer, needs_drain

logger = logging.getLogger(__name__)


class Outcome(str, Enum):
    HEALTHY = "healthy"
    LIQUIDATED = "liquidated"
    DRAIN_IN_PROGRESS = "drain_in_progress"
    INSOLVENT = "insolvent"
    ERROR = "error"
    QUARANTINED = "quarantined"


@dataclass(frozen=True)
class AccountReport:
    account_id: str
    owner: str
    collateral_ratio: Decimal | None
    outcome: Outcome
    health: AccountHealth | None = None
    detail: str = ""


@dataclass(frozen=True)
class CycleReport:
    started_at: float
    accounts: tuple[AccountReport, ...] = ()
    skipped: str = ""

    def count(self, outcome: Outcome) -> int:
        return sum(1 for r in self.accounts if r.outcome is outcome)

    @property
    def outcomes(self) -> dict[Outcome, int]:
        return {o: self.count(o) for o in Outcome if self.count(o)}


@dataclass
class _Snapshot:
    group: GroupState
    account: AccountState
    open_orders: list[OpenOrdersBalances | None]
    prices: PriceVector
    valuation: Valuation = field(init=False)

    def __post_init__(self) -> None:
        self.valuation = value_account(self.group, self.account, self.prices, self.open_orders)


def verify_group(expected: GroupConfig, group: GroupState) -> None:
    """Raise ConfigurationError unless the ledger's group matches the configured assets."""
    if len(expected.assets) != group.num_assets:
        raise ConfigurationError(
            f"Configured {len(expected.assets)} assets but group {group.group_id} "
            f"has {group.num_assets}"
        )
    for i, (want, have) in enumerate(zip(expected.assets, group.assets)):
        if want.symbol != have.symbol:
            raise ConfigurationError(
                f"Asset slot {i}: configured '{want.symbol}', ledger has '{have.symbol}'"
            )
        if want.mint and want.mint != have.mint:
            raise ConfigurationError(
                f"Asset '{want.symbol}': configured mint {want.mint}, ledger has {have.mint}"
            )
        if want.decimals != have.decimals:
            raise ConfigurationError(
                f"Asset '{want.symbol}': configured {want.decimals} decimals, "
                f"ledger has {have.decimals}"
            )


class LiquidationCoordinator:
    """Scan loop: evaluate every account, liquidate and drain the unhealthy ones."""

    def __init__(
        self,
        config: AppConfig,
        ledger: LedgerClient | None = None,
        oracle: PriceOracle | None = None,
        notifiers: list[Notifier] | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._config = config
        self._settings = config.liquidator
        self._owner = config.liquidator.owner
        self._policy: RetryPolicy = config.retry.policy()
        self._clock = clock

        if ledger is None:
            ledger = RpcLedgerClient(config.ledger)
        self._ledger = ledger

        if oracle is None:
            oracle = self._build_oracle(config)
        self._oracle = oracle

        if notifiers is None:
            notifiers = []
            if config.notifications.telegram.enabled:
                notifiers.append(TelegramNotifier(config.notifications.telegram))
        self._notifiers = notifiers

        self._drainer = Drainer(
            ledger,
            oracle,
            self._owner,
            self._policy,
            sell_discount=self._settings.sell_discount,
            buy_premium=self._settings.buy_premium,
            withdraw_buffer=self._settings.withdraw_buffer,
        )
        self._last_group: GroupState | None = None
        self._quarantined: dict[str, str] = {}
        # accounts this process liquidated; drained even when resume_owned_drains is off
        self._liquidated: set[str] = set()

    @staticmethod
    def _build_oracle(config: AppConfig) -> PriceOracle:
        provider = config.price_oracle.provider
        if provider == "pyth":
            return PythOracle(config.price_oracle.pyth, config.price_oracle.max_price_age_seconds)
        if provider == "static":
            return StaticOracle(config.price_oracle.static_prices)
        raise ConfigurationError(f"Unknown price oracle provider '{provider}'")

    @property
    def quarantined(self) -> dict[str, str]:
        return dict(self._quarantined)

    # ------------------------------------------------------------------
    # Notification dispatch
    # ------------------------------------------------------------------

    async def _send_log(self, message: str, silent: bool = True) -> None:
        for notifier in self._notifiers:
            try:
                await notifier.send_log(message, silent=silent)
            except Exception as e:
                logger.error("Notifier send_log failed: %s", e)

    async def _send_alert(self, message: str, subject: str = "") -> None:
        for notifier in self._notifiers:
            try:
                await notifier.send_alert(message, subject=subject)
            except Exception as e:
                logger.error("Notifier send_alert failed: %s", e)

    @staticmethod
    def _now_str() -> str:
        return datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def startup(self) -> GroupState:
        """Check the ledger's group against the configured assets.

        Raises:
            ConfigurationError: on any mismatch.
        """
        group = await self._policy.run("fetch group", self._ledger.get_group)
        verify_group(self._config.group, group)
        self._last_group = group
        logger.info(
            "Group %s: %s, maint %s, init %s",
            group.group_id,
            ", ".join(a.symbol for a in group.assets),
            group.maint_coll_ratio,
            group.init_coll_ratio,
        )
        return group

    async def _fetch_prices(self, group: GroupState) -> PriceVector:
        symbols = [a.symbol for a in group.assets[: group.num_markets]]

        async def fetch() -> PriceVector:
            return build_price_vector(group, await self._oracle.fetch_prices(symbols))

        return await self._policy.run("fetch prices", fetch)

    async def _snapshot(self, account_id: str) -> _Snapshot:
        group = await self._ledger.get_group()
        account = await self._ledger.get_account(account_id)
        open_orders = await self._ledger.get_open_orders(account)
        prices = await self._fetch_prices(group)
        return _Snapshot(group, account, open_orders, prices)

    # ------------------------------------------------------------------
    # Per-account processing
    # ------------------------------------------------------------------

    async def _liquidate(self, account_id: str) -> Valuation | None:
        """Liquidate from freshly read state; None if no longer liquidatable.

        Returns the valuation the liquidation was computed from. When an
        earlier attempt's write landed but its reply was lost, the account
        already belongs to us and that attempt's valuation is returned.
        """
        submitted: Valuation | None = None

        async def attempt() -> Valuation | None:
            nonlocal submitted
            snap = await self._snapshot(account_id)
            if snap.account.owner == self._owner:
                if submitted is not None:
                    logger.info("Liquidation of %s already applied", account_id)
                return submitted
            health = classify(snap.valuation, snap.group)
            if health is AccountHealth.HEALTHY:
                return None
            if health is AccountHealth.INSOLVENT and not self._settings.liquidate_insolvent:
                return None

            amount = liquidation_deposit(
                snap.group, snap.valuation, self._settings.liquidation_margin
            )
            quantities = [0] * snap.group.num_assets
            quantities[snap.group.quote_index] = amount
            submitted = snap.valuation
            await self._ledger.liquidate(account_id, self._owner, tuple(quantities))
            return snap.valuation

        policy = self._policy.with_retryable(NotLiquidatableError)
        return await policy.run(f"liquidate {account_id}", attempt)

    async def _drain(self, account_id: str, ratio: Decimal | None, liquidated: bool) -> AccountReport:
        result: DrainResult = await self._drainer.drain(account_id)
        if liquidated:
            outcome = Outcome.LIQUIDATED if result.flat else Outcome.DRAIN_IN_PROGRESS
        else:
            outcome = Outcome.HEALTHY if result.flat else Outcome.DRAIN_IN_PROGRESS
        detail = "drained" if result.flat else "drain in progress"
        if result.withdrawn:
            detail += f", withdrew {result.withdrawn}"
        return AccountReport(account_id, self._owner, ratio, outcome, detail=detail)

    async def process_account(
        self,
        group: GroupState,
        account: AccountState,
        open_orders: list[OpenOrdersBalances | None],
        prices: PriceVector,
    ) -> AccountReport:
        valuation = value_account(group, account, prices, open_orders)
        ratio = valuation.collateral_ratio
        health = classify(valuation, group)

        if account.owner == self._owner:
            resumable = (
                self._settings.resume_owned_drains or account.account_id in self._liquidated
            )
            if resumable and needs_drain(group, account, open_orders):
                report = await self._drain(account.account_id, ratio, liquidated=False)
                return AccountReport(
                    report.account_id, report.owner, ratio, report.outcome, health, report.detail
                )
            return AccountReport(account.account_id, account.owner, ratio, Outcome.HEALTHY, health)

        if health is AccountHealth.HEALTHY:
            return AccountReport(account.account_id, account.owner, ratio, Outcome.HEALTHY, health)

        if health is AccountHealth.INSOLVENT:
            logger.error(
                "Account %s is insolvent: assets $%.2f < liabilities $%.2f (ratio %s)",
                account.account_id,
                valuation.assets_value,
                valuation.liabilities_value,
                format_ratio(ratio),
            )
            await self._send_alert(
                f"Account {account.account_id} (owner {account.owner}) is insolvent.\n"
                f"Assets: ${valuation.assets_value:,.2f}\n"
                f"Liabilities: ${valuation.liabilities_value:,.2f}\n"
                f"Collateral ratio: {format_ratio(ratio)}\n"
                f"{self._now_str()} UTC",
                subject="INSOLVENT ACCOUNT",
            )
            if not self._settings.liquidate_insolvent:
                return AccountReport(
                    account.account_id, account.owner, ratio, Outcome.INSOLVENT, health
                )
        elif health is not AccountHealth.LIQUIDATABLE:
            raise ValueError(f"Unknown account health: {health!r}")

        liquidated = await self._liquidate(account.account_id)
        if liquidated is None:
            logger.info("Account %s no longer liquidatable after refresh", account.account_id)
            return AccountReport(
                account.account_id,
                account.owner,
                ratio,
                Outcome.HEALTHY,
                health,
                "no longer liquidatable",
            )

        self._liquidated.add(account.account_id)
        await self._send_alert(
            f"Liquidated account {account.account_id} (owner {account.owner}).\n"
            f"Collateral ratio: {format_ratio(liquidated.collateral_ratio)}\n"
            f"Assets: ${liquidated.assets_value:,.2f}\n"
            f"Liabilities: ${liquidated.liabilities_value:,.2f}\n"
            f"{self._now_str()} UTC",
            subject="Liquidation",
        )
        report = await self._drain(account.account_id, ratio, liquidated=True)
        return AccountReport(
            report.account_id, account.owner, ratio, report.outcome, health, report.detail
        )

    # ------------------------------------------------------------------
    # Cycle
    # ------------------------------------------------------------------

    async def _quarantine(self, account_id: str, error: InvariantViolation) -> None:
        self._quarantined[account_id] = str(error)
        logger.critical("Quarantined account %s: %s", account_id, error)
        await self._send_alert(
            f"Account {account_id} quarantined: {error}\n"
            f"Manual intervention required.\n"
            f"{self._now_str()} UTC",
            subject="INVARIANT VIOLATION",
        )

    async def run_cycle(self) -> CycleReport:
        """Evaluate every account of the group once."""
        started = self._clock()

        group = await self._policy.run("fetch group", self._ledger.get_group)
        if self._last_group is not None:
            try:
                check_group_indexes(self._last_group, group)
            except InvariantViolation as e:
                await self._send_alert(
                    f"Group {group.group_id}: {e}\nCycle skipped.", subject="INVARIANT VIOLATION"
                )
                return CycleReport(started, skipped=str(e))
        self._last_group = group

        accounts = await self._policy.run("fetch accounts", self._ledger.get_accounts_for_group)
        open_orders = await asyncio.gather(
            *(self._ledger.get_open_orders(account) for account in accounts)
        )
        try:
            prices = await self._fetch_prices(group)
        except LedgerError as e:
            logger.error("Cycle skipped, no usable prices: %s", e)
            return CycleReport(started, skipped=str(e))

        reports: list[AccountReport] = []
        for account, oo in zip(accounts, open_orders):
            if account.account_id in self._quarantined:
                report = AccountReport(
                    account.account_id,
                    account.owner,
                    None,
                    Outcome.QUARANTINED,
                    detail=self._quarantined[account.account_id],
                )
            else:
                try:
                    report = await self.process_account(group, account, oo, prices)
                except InvariantViolation as e:
                    await self._quarantine(account.account_id, e)
                    report = AccountReport(
                        account.account_id, account.owner, None, Outcome.QUARANTINED, detail=str(e)
                    )
                except (LedgerError, asyncio.TimeoutError) as e:
                    logger.error("Account %s aborted: %s", account.account_id, str(e) or type(e).__name__)
                    report = AccountReport(
                        account.account_id,
                        account.owner,
                        None,
                        Outcome.ERROR,
                        detail=f"{type(e).__name__}: {e}",
                    )

            logger.info(
                "Account %s owner=%s ratio=%s outcome=%s%s",
                report.account_id,
                report.owner,
                format_ratio(report.collateral_ratio),
                report.outcome.value,
                f" ({report.detail})" if report.detail else "",
            )
            reports.append(report)

        cycle = CycleReport(started, tuple(reports))
        await self._send_log(self._build_summary(group, cycle))
        return cycle

    def _build_summary(self, group: GroupState, cycle: CycleReport) -> str:
        counts = ", ".join(f"{o.value}: {n}" for o, n in cycle.outcomes.items()) or "no accounts"
        return (
            f"Scan of group {group.group_id}\n"
            f"\n"
            f"Accounts: {len(cycle.accounts)}\n"
            f"{counts}\n"
            f"\n"
            f"{self._now_str()} UTC"
        )

    async def build_report(self) -> str:
        """Every account's valuation and each asset's current rates; takes no action."""
        group = await self._ledger.get_group()
        accounts = await self._ledger.get_accounts_for_group()
        open_orders = await asyncio.gather(*(self._ledger.get_open_orders(a) for a in accounts))
        prices = await self._fetch_prices(group)

        lines = [f"Group {group.group_id}", ""]
        for i, asset in enumerate(group.assets):
            borrow, deposit = current_rates(group, i)
            lines.append(
                f"{asset.symbol}: price ${prices[i]:,.4f} · "
                f"deposits {fixed.native_to_ui(group.native_total_deposit(i), asset.decimals)} · "
                f"borrows {fixed.native_to_ui(group.native_total_borrow(i), asset.decimals)} · "
                f"borrow {borrow:.2%} · deposit {deposit:.2%}"
            )
        lines.append("")
        for account, oo in zip(accounts, open_orders):
            valuation = value_account(group, account, prices, oo)
            health = classify(valuation, group)
            lines.append(
                f"{account.account_id} ({account.owner}): "
                f"assets ${valuation.assets_value:,.2f} · "
                f"liabilities ${valuation.liabilities_value:,.2f} · "
                f"ratio {format_ratio(valuation.collateral_ratio)} · {health.value}"
            )
        return "\n".join(lines)

    async def run_forever(
        self, interval_seconds: int | None = None, stop: asyncio.Event | None = None
    ) -> None:
        """Run scan cycles until ``stop`` is set."""
        interval = interval_seconds or self._settings.scan_interval_seconds
        stop = stop or asyncio.Event()
        logger.info("Starting liquidation loop (scanning every %d seconds)", interval)

        while not stop.is_set():
            try:
                await self.run_cycle()
                wait = interval
            except Exception as e:
                logger.error("Error in liquidation loop: %s", e)
                wait = max(interval, 60)
            try:
                await asyncio.wait_for(stop.wait(), timeout=wait)
            except asyncio.TimeoutError:
                pass

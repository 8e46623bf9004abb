"""Service modules"""
from .coordinator import AccountReport, CycleReport, LiquidationCoordinator, Outcome
from .drain import Drainer, DrainResult, DrainStep, plan_rebalance

__all__ = [
    "AccountReport",
    "CycleReport",
    "Drainer",
    "DrainResult",
    "DrainStep",
    "LiquidationCoordinator",
    "Outcome",
    "plan_rebalance",
]

"""Margin ledger accounting and liquidation engine."""

__version__ = "0.1.0"

"""Protocol interfaces for the margin ledger and its liquidator."""
from .ledger import LedgerClient
from .notifier import Notifier
from .price_oracle import PriceOracle
from .venue import Venue

__all__ = ["LedgerClient", "Notifier", "PriceOracle", "Venue"]

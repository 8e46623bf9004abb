"""In-memory ledger and venue."""
from .ledger import PaperLedger
from .venue import PaperVenue, VenueMarket

__all__ = ["PaperLedger", "PaperVenue", "VenueMarket"]

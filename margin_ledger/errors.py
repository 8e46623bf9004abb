"""Error taxonomy shared by the ledger, its clients and the liquidator."""
from __future__ import annotations


class LedgerError(Exception):
    """Base class for every error raised by margin_ledger."""

    kind = "LedgerError"


# ---------------------------------------------------------------------------
# Transient: retried in place with freshly fetched state
# ---------------------------------------------------------------------------


class TransientError(LedgerError):
    kind = "Transient"


class RpcTransportError(TransientError):
    kind = "RpcTransport"


class DecodeError(TransientError):
    """A ledger response was missing fields or malformed."""

    kind = "Decode"


class StalePriceError(TransientError):
    """A price was missing, non-positive or older than the allowed age."""

    kind = "StalePrice"

    def __init__(self, symbols: list[str] | tuple[str, ...]) -> None:
        self.symbols = tuple(symbols)
        super().__init__(f"Missing or stale prices for: {', '.join(self.symbols)}")


class OrdersStillOpenError(TransientError):
    kind = "OrdersStillOpen"


# ---------------------------------------------------------------------------
# Recoverable per account: abort this account, retry next scan
# ---------------------------------------------------------------------------


class AccountError(LedgerError):
    kind = "Account"


class InsufficientFundsError(AccountError):
    kind = "InsufficientFunds"


class CollateralRatioError(AccountError):
    """Resulting collateral ratio would be below the initiation ratio."""

    kind = "CollateralRatioLimit"


class BorrowLimitError(AccountError):
    kind = "BorrowLimitExceeded"


class NotLiquidatableError(AccountError):
    kind = "NotLiquidatable"


class LiquidationUnderfundedError(AccountError):
    kind = "LiquidationUnderfunded"


class InvalidOwnerError(AccountError):
    kind = "InvalidOwner"


class SizeTooSmallError(AccountError):
    kind = "SizeTooSmall"


class InvalidPriceError(AccountError):
    kind = "InvalidPrice"


class UnknownAccountError(AccountError):
    kind = "UnknownAccount"


class UnknownOrderError(AccountError):
    kind = "UnknownOrder"


# ---------------------------------------------------------------------------
# Invariant violations: never coerced, surfaced for manual intervention
# ---------------------------------------------------------------------------


class InvariantViolation(LedgerError):
    kind = "InvariantViolation"


# ---------------------------------------------------------------------------
# Configuration / setup: fatal at startup
# ---------------------------------------------------------------------------


class ConfigurationError(LedgerError, ValueError):
    kind = "Configuration"


class UnknownAssetError(ConfigurationError):
    kind = "UnknownAsset"


class UnknownMarketError(ConfigurationError):
    kind = "UnknownMarket"


def _all_subclasses(cls: type[LedgerError]) -> list[type[LedgerError]]:
    found: list[type[LedgerError]] = []
    for sub in cls.__subclasses__():
        found.append(sub)
        found.extend(_all_subclasses(sub))
    return found


ERRORS_BY_KIND: dict[str, type[LedgerError]] = {
    cls.kind: cls for cls in [LedgerError, *_all_subclasses(LedgerError)]
}


def error_from_kind(kind: str, message: str) -> LedgerError:
    """Rebuild a typed error from the ``kind`` carried by a remote ledger."""
    cls = ERRORS_BY_KIND.get(kind, LedgerError)
    if cls is StalePriceError:
        return StalePriceError([message])
    return cls(message)

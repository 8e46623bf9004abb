"""Remote ledger over JSON-RPC."""
from .client import RpcLedgerClient

__all__ = ["RpcLedgerClient"]

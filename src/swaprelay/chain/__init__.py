"""Settlement ledger access (JSON-RPC and ERC-20 encoding)."""

from swaprelay.chain.rpc import LedgerClient, TxReceipt

__all__ = ["LedgerClient", "TxReceipt"]

"""
Ledger boundary: JSON-RPC client, result types and wallet signers.
"""

from fhevm_session.ledger.client import (
    LedgerClient,
    LogEntry,
    LogFilter,
    TransactionReceipt,
    TransactionRequest,
)
from fhevm_session.ledger.jsonrpc_client import EthJsonRpcClient
from fhevm_session.ledger.signer import LocalAccountSigner, NodeAccountSigner, WalletSigner

__all__ = [
    "EthJsonRpcClient",
    "LedgerClient",
    "LocalAccountSigner",
    "LogEntry",
    "LogFilter",
    "NodeAccountSigner",
    "TransactionReceipt",
    "TransactionRequest",
    "WalletSigner",
]

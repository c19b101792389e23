"""
Ledger client protocol — the network boundary to the chain.

Defines the interface the session layer depends on, not a concrete
implementation. This keeps the resolver, submission coordinator and
record indexer testable without a node.

Concrete implementations:
    - EthJsonRpcClient (JSON-RPC over an HttpTransport)
    - FakeLedger (tests)

Result types are frozen dataclasses with plain Python values: integers
for quantities, 0x-prefixed lowercase hex strings for hashes and data,
checksummed strings for addresses.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

# =========================================================================
# Result types
# =========================================================================


@dataclass(frozen=True)
class LogEntry:
    """One event log emitted by a contract.

    Attributes:
        address: Emitting contract address.
        topics: Indexed topics; topics[0] is the event signature hash.
        data: ABI-encoded non-indexed event arguments (0x-hex).
        block_number: Height of the block containing the log.
        transaction_hash: Hash of the emitting transaction.
        log_index: Position of the log within its block.
    """

    address: str
    topics: tuple[str, ...]
    data: str
    block_number: int
    transaction_hash: str
    log_index: int = 0


@dataclass(frozen=True)
class TransactionReceipt:
    """Mined transaction outcome.

    Attributes:
        transaction_hash: Hash of the mined transaction.
        block_number: Height of the including block.
        status: 1 on success, 0 on revert.
        gas_used: Gas consumed.
        logs: Logs emitted by the transaction.
        confirmations: Blocks on top of (and including) the including
            block at the time the receipt was accepted. 0 if unknown.
    """

    transaction_hash: str
    block_number: int
    status: int
    gas_used: int = 0
    logs: tuple[LogEntry, ...] = ()
    confirmations: int = 0

    @property
    def succeeded(self) -> bool:
        return self.status == 1


@dataclass(frozen=True)
class LogFilter:
    """Parameters for eth_getLogs.

    ``topics`` entries may be None to match any value at that position.
    """

    address: str | None = None
    topics: tuple[str | None, ...] = ()
    from_block: int | str = 0
    to_block: int | str = "latest"

    def to_params(self) -> dict[str, Any]:
        params: dict[str, Any] = {
            "fromBlock": _block_tag(self.from_block),
            "toBlock": _block_tag(self.to_block),
            "topics": list(self.topics),
        }
        if self.address is not None:
            params["address"] = self.address
        return params


def _block_tag(value: int | str) -> str:
    if isinstance(value, int):
        return hex(value)
    return value


@dataclass(frozen=True)
class TransactionRequest:
    """Unsigned contract call built by the submission layer."""

    to: str
    data: str
    value: int = 0
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"to": self.to, "data": self.data, "value": self.value}
        result.update(self.extra)
        return result


# =========================================================================
# Protocol
# =========================================================================


@runtime_checkable
class LedgerClient(Protocol):
    """Interface for ledger reads and raw transaction submission.

    Implementations raise JsonRpcError for node-reported errors and let
    transport exceptions propagate. Callers classify both.
    """

    async def chain_id(self) -> int:
        """Chain identity of the connected network."""
        ...

    async def block_number(self) -> int:
        """Height of the latest block."""
        ...

    async def get_logs(self, log_filter: LogFilter) -> list[LogEntry]:
        """Event logs matching the filter, in ledger order."""
        ...

    async def get_transaction_receipt(self, tx_hash: str) -> TransactionReceipt | None:
        """Receipt for a mined transaction, or None while pending."""
        ...

    async def send_raw_transaction(self, raw_tx_hex: str) -> str:
        """Broadcast a signed transaction and return its hash."""
        ...

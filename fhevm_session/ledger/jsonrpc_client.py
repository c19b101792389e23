"""
Ethereum JSON-RPC client — real network implementation of LedgerClient.

Translates JSON-RPC responses into LogEntry / TransactionReceipt values.
Uses an injectable transport (HttpTransport) so the HTTP layer can be
swapped for test fakes without changing parsing logic.

No retry loops. No secrets. No contract logic beyond response parsing.

Response handling:
    - Success: {"jsonrpc": "2.0", "id": n, "result": ...}
    - Error:   {"jsonrpc": "2.0", "id": n, "error": {"code", "message", "data"}}
      -> JsonRpcError
    - Quantities are 0x-hex strings and are decoded to int.
"""

from __future__ import annotations

import logging
from typing import Any

from fhevm_session.errors import JsonRpcError
from fhevm_session.ledger.client import LogEntry, LogFilter, TransactionReceipt
from fhevm_session.transport import HttpTransport, HttpxTransport, jsonrpc_request

logger = logging.getLogger("fhevm_session.ledger")


class EthJsonRpcClient:
    """Ethereum JSON-RPC client implementing the LedgerClient protocol.

    Besides the protocol methods it exposes the handful of calls wallet
    signers need (nonce, gas, node-managed signing).

    Args:
        url: JSON-RPC endpoint URL (e.g. "http://localhost:8545").
        transport: Injectable transport. Defaults to HttpxTransport.
    """

    def __init__(self, url: str, transport: HttpTransport | None = None) -> None:
        self._url = url
        self._transport = transport or HttpxTransport()

    @property
    def url(self) -> str:
        """The JSON-RPC endpoint URL."""
        return self._url

    async def request(self, method: str, params: list[Any] | None = None) -> Any:
        """Send one JSON-RPC call and return its ``result``.

        Raises:
            JsonRpcError: If the response carries an ``error`` member.
            Exception: Transport failures propagate unchanged.
        """
        payload = jsonrpc_request(method, params)
        logger.debug("-> %s id=%s", method, payload["id"])
        response = await self._transport.post_json(self._url, payload)
        return _unwrap(response)

    # -----------------------------------------------------------------
    # LedgerClient protocol methods
    # -----------------------------------------------------------------

    async def chain_id(self) -> int:
        return _quantity(await self.request("eth_chainId"))

    async def block_number(self) -> int:
        return _quantity(await self.request("eth_blockNumber"))

    async def get_logs(self, log_filter: LogFilter) -> list[LogEntry]:
        raw = await self.request("eth_getLogs", [log_filter.to_params()])
        return [_parse_log(item) for item in raw or []]

    async def get_transaction_receipt(self, tx_hash: str) -> TransactionReceipt | None:
        raw = await self.request("eth_getTransactionReceipt", [tx_hash])
        if raw is None:
            return None
        return _parse_receipt(raw)

    async def send_raw_transaction(self, raw_tx_hex: str) -> str:
        return str(await self.request("eth_sendRawTransaction", [raw_tx_hex]))

    # -----------------------------------------------------------------
    # Signer support
    # -----------------------------------------------------------------

    async def accounts(self) -> list[str]:
        return list(await self.request("eth_accounts") or [])

    async def get_transaction_count(self, address: str, block: str = "pending") -> int:
        return _quantity(await self.request("eth_getTransactionCount", [address, block]))

    async def gas_price(self) -> int:
        return _quantity(await self.request("eth_gasPrice"))

    async def estimate_gas(self, tx: dict[str, Any]) -> int:
        return _quantity(await self.request("eth_estimateGas", [_hexify_tx(tx)]))

    async def send_transaction(self, tx: dict[str, Any]) -> str:
        """eth_sendTransaction for node- or wallet-managed accounts."""
        return str(await self.request("eth_sendTransaction", [_hexify_tx(tx)]))

    async def sign_typed_data_v4(self, address: str, typed_data_json: str) -> str:
        return str(await self.request("eth_signTypedData_v4", [address, typed_data_json]))


# =====================================================================
# Response parsing (pure functions, no I/O)
# =====================================================================


def _unwrap(response: Any) -> Any:
    if not isinstance(response, dict):
        raise JsonRpcError(-32700, f"malformed JSON-RPC response: {response!r}")
    error = response.get("error")
    if error is not None:
        if isinstance(error, dict):
            raise JsonRpcError(
                int(error.get("code", -32603)),
                str(error.get("message", "unknown error")),
                error.get("data"),
            )
        raise JsonRpcError(-32603, str(error))
    return response.get("result")


def _quantity(value: Any) -> int:
    """Decode a JSON-RPC quantity ("0x1a" or int) to int."""
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        return int(value, 16) if value.startswith(("0x", "0X")) else int(value)
    raise ValueError(f"not a JSON-RPC quantity: {value!r}")


def _hexify_tx(tx: dict[str, Any]) -> dict[str, Any]:
    """Encode integer fields of a tx dict as JSON-RPC quantities."""
    return {key: hex(value) if isinstance(value, int) else value for key, value in tx.items()}


def _parse_log(raw: dict[str, Any]) -> LogEntry:
    return LogEntry(
        address=raw["address"],
        topics=tuple(t.lower() for t in raw.get("topics", [])),
        data=raw.get("data", "0x"),
        block_number=_quantity(raw["blockNumber"]),
        transaction_hash=raw["transactionHash"],
        log_index=_quantity(raw.get("logIndex", 0)),
    )


def _parse_receipt(raw: dict[str, Any]) -> TransactionReceipt:
    # Pre-Byzantium receipts have no status; treat them as success.
    status = raw.get("status")
    return TransactionReceipt(
        transaction_hash=raw["transactionHash"],
        block_number=_quantity(raw["blockNumber"]),
        status=_quantity(status) if status is not None else 1,
        gas_used=_quantity(raw.get("gasUsed", 0)),
        logs=tuple(_parse_log(item) for item in raw.get("logs", [])),
    )

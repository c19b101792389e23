"""
Wallet signer protocol — the secrets boundary.

The session layer never sees private keys. It hands an unsigned
TransactionRequest (or a typed-data statement) to a signer and gets
back a transaction hash (or a signature).

Concrete implementations:
    - LocalAccountSigner (key held in-process via eth-account; dev/test
      networks and headless clients)
    - NodeAccountSigner (account managed by the node or a wallet behind
      JSON-RPC; user prompts may suspend indefinitely)
    - FakeSigner (tests)

User rejection surfaces as SignerDeclined. Everything else propagates
for the caller to classify.
"""

from __future__ import annotations

import json
from typing import Any, Protocol, runtime_checkable

from eth_account import Account
from eth_account.signers.local import LocalAccount

from fhevm_session.eip712 import full_typed_data
from fhevm_session.errors import (
    USER_REJECTED_CODE,
    JsonRpcError,
    NetworkUnavailable,
    SignerDeclined,
)
from fhevm_session.ledger.client import TransactionRequest
from fhevm_session.ledger.jsonrpc_client import EthJsonRpcClient

# Headroom over eth_estimateGas, in percent.
GAS_HEADROOM_PCT = 20


@runtime_checkable
class WalletSigner(Protocol):
    """Interface for transaction and typed-data signing."""

    async def get_address(self) -> str:
        """Checksummed address of the signing identity."""
        ...

    async def send_transaction(self, tx: TransactionRequest) -> str:
        """Sign and broadcast a transaction; return its hash.

        Raises:
            SignerDeclined: If the user rejected the prompt.
        """
        ...

    async def sign_typed_data(
        self,
        domain: dict[str, Any],
        types: dict[str, list[dict[str, str]]],
        message: dict[str, Any],
    ) -> str:
        """EIP-712 signature (0x-hex) over ``message``.

        ``types`` excludes EIP712Domain, matching ethers' signTypedData.

        Raises:
            SignerDeclined: If the user rejected the prompt.
        """
        ...


class LocalAccountSigner:
    """Signer holding a secp256k1 key in process memory.

    Fills nonce, gas, gas price and chain id from the ledger before
    signing, then broadcasts the raw transaction.
    """

    def __init__(self, account: LocalAccount, ledger: EthJsonRpcClient) -> None:
        self._account = account
        self._ledger = ledger

    @classmethod
    def from_key(cls, private_key: str | bytes, ledger: EthJsonRpcClient) -> "LocalAccountSigner":
        return cls(Account.from_key(private_key), ledger)

    async def get_address(self) -> str:
        return self._account.address

    async def send_transaction(self, tx: TransactionRequest) -> str:
        tx_dict = tx.to_dict()
        estimate_input = {"from": self._account.address, **tx_dict}
        gas = await self._ledger.estimate_gas(estimate_input)
        tx_dict.update(
            {
                "nonce": await self._ledger.get_transaction_count(self._account.address),
                "gas": gas + gas * GAS_HEADROOM_PCT // 100,
                "gasPrice": await self._ledger.gas_price(),
                "chainId": await self._ledger.chain_id(),
            }
        )
        signed = self._account.sign_transaction(tx_dict)
        return await self._ledger.send_raw_transaction("0x" + bytes(signed.raw_transaction).hex())

    async def sign_typed_data(
        self,
        domain: dict[str, Any],
        types: dict[str, list[dict[str, str]]],
        message: dict[str, Any],
    ) -> str:
        signed = self._account.sign_typed_data(domain, types, message)
        return "0x" + bytes(signed.signature).hex()


class NodeAccountSigner:
    """Signer for an account managed behind JSON-RPC (node or wallet).

    Args:
        ledger: JSON-RPC client of the node or wallet provider.
        address: Account to act as. If None, the first entry of
            eth_accounts is used.
    """

    def __init__(self, ledger: EthJsonRpcClient, address: str | None = None) -> None:
        self._ledger = ledger
        self._address = address

    async def get_address(self) -> str:
        if self._address is None:
            accounts = await self._ledger.accounts()
            if not accounts:
                raise NetworkUnavailable("provider exposes no accounts")
            self._address = accounts[0]
        return self._address

    async def send_transaction(self, tx: TransactionRequest) -> str:
        address = await self.get_address()
        try:
            return await self._ledger.send_transaction({"from": address, **tx.to_dict()})
        except JsonRpcError as exc:
            if exc.code == USER_REJECTED_CODE:
                raise SignerDeclined(exc.message) from exc
            raise

    async def sign_typed_data(
        self,
        domain: dict[str, Any],
        types: dict[str, list[dict[str, str]]],
        message: dict[str, Any],
    ) -> str:
        address = await self.get_address()
        payload = json.dumps(full_typed_data(domain, types, message))
        try:
            return await self._ledger.sign_typed_data_v4(address, payload)
        except JsonRpcError as exc:
            if exc.code == USER_REJECTED_CODE:
                raise SignerDeclined(exc.message) from exc
            raise

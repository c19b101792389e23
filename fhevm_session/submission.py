"""
Transaction submission — send a contract call and wait for confirmation.

Three entry points share one pipeline:

    submit(payload, contract, signer)         submitResult(handle, proof)
    start_run(contract, signer, client_ts)    startRun(clientTimestampMs)
    mint_proof(contract, signer, uri)         mintProof(metadataUri)

Pipeline:
    1. signer.send_transaction(call) -> tx hash
    2. poll get_transaction_receipt until mined
    3. status 0 -> TransactionReverted (with tx hash)
    4. poll block_number until ``confirmations`` blocks include the tx

Failures are classified with classify_rpc_error() so signer rejection,
network failure and on-chain revert stay distinguishable. Nothing is
retried: a resubmission needs a freshly encoded payload.

A wallet prompt cannot be withdrawn once dispatched. The cancellation
signal is checked before sending and before each poll, so a cancelled
call may still leave a broadcast transaction behind.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace

from fhevm_session.backend.base import EncryptedPayload
from fhevm_session.contract import mint_proof_call, start_run_call, submit_result_call
from fhevm_session.errors import (
    Cancelled,
    ConfirmationTimeout,
    FhevmSessionError,
    TransactionReverted,
    classify_rpc_error,
)
from fhevm_session.ledger.client import LedgerClient, TransactionReceipt, TransactionRequest
from fhevm_session.ledger.signer import WalletSigner

logger = logging.getLogger("fhevm_session.submission")


class SubmissionCoordinator:
    """Sends contract calls and tracks them to confirmation.

    Args:
        ledger: Connection used for receipt and block-height polling.
        confirmations: Blocks (including the mining block) to wait for.
        poll_interval: Seconds between polls.
        timeout: Seconds before ConfirmationTimeout.
    """

    def __init__(
        self,
        ledger: LedgerClient,
        *,
        confirmations: int = 1,
        poll_interval: float = 1.0,
        timeout: float = 120.0,
    ) -> None:
        if confirmations < 1:
            raise ValueError(f"confirmations must be >= 1, got: {confirmations}")
        self._ledger = ledger
        self._confirmations = confirmations
        self._poll_interval = poll_interval
        self._timeout = timeout
        self._lock = asyncio.Lock()

    async def submit(
        self,
        payload: EncryptedPayload,
        contract_address: str,
        signer: WalletSigner,
        *,
        signal: asyncio.Event | None = None,
    ) -> TransactionReceipt:
        """Submit an encoded result and wait for confirmation.

        Raises:
            ValueError: If the payload does not carry exactly one handle.
            SignerDeclined, NetworkUnavailable, LedgerRejected,
            TransactionReverted, ConfirmationTimeout, Cancelled.
        """
        if len(payload.handles) != 1:
            raise ValueError(f"expected exactly one handle, got {len(payload.handles)}")
        call = submit_result_call(contract_address, payload.handles[0], payload.input_proof)
        return await self._send_and_wait(call, signer, signal)

    async def start_run(
        self,
        contract_address: str,
        signer: WalletSigner,
        client_timestamp_ms: int,
        *,
        signal: asyncio.Event | None = None,
    ) -> TransactionReceipt:
        call = start_run_call(contract_address, client_timestamp_ms)
        return await self._send_and_wait(call, signer, signal)

    async def mint_proof(
        self,
        contract_address: str,
        signer: WalletSigner,
        metadata_uri: str,
        *,
        signal: asyncio.Event | None = None,
    ) -> TransactionReceipt:
        call = mint_proof_call(contract_address, metadata_uri)
        return await self._send_and_wait(call, signer, signal)

    # -----------------------------------------------------------------
    # Pipeline
    # -----------------------------------------------------------------

    async def _send_and_wait(
        self,
        call: TransactionRequest,
        signer: WalletSigner,
        signal: asyncio.Event | None,
    ) -> TransactionReceipt:
        async with self._lock:
            _check(signal)
            try:
                tx_hash = await signer.send_transaction(call)
            except Exception as exc:
                error = classify_rpc_error(exc)
                if error is exc:
                    raise
                raise error from exc
            logger.info("transaction sent: %s -> %s", tx_hash, call.to)
            return await self._wait_for_confirmation(tx_hash, signal)

    async def _wait_for_confirmation(self, tx_hash: str, signal: asyncio.Event | None) -> TransactionReceipt:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._timeout

        receipt: TransactionReceipt | None = None
        while True:
            _check(signal)
            try:
                if receipt is None:
                    receipt = await self._ledger.get_transaction_receipt(tx_hash)
                    if receipt is not None and not receipt.succeeded:
                        raise TransactionReverted(
                            f"transaction reverted in block {receipt.block_number}",
                            tx_hash=tx_hash,
                        )
                if receipt is not None:
                    head = await self._ledger.block_number()
                    depth = head - receipt.block_number + 1
                    if depth >= self._confirmations:
                        confirmed = replace(receipt, confirmations=depth)
                        logger.info(
                            "transaction confirmed: %s block=%d confirmations=%d",
                            tx_hash,
                            receipt.block_number,
                            depth,
                        )
                        return confirmed
            except FhevmSessionError:
                raise
            except Exception as exc:
                raise classify_rpc_error(exc) from exc

            if loop.time() >= deadline:
                state = "pending" if receipt is None else "awaiting confirmations"
                raise ConfirmationTimeout(
                    f"transaction {tx_hash} still {state} after {self._timeout}s",
                    tx_hash=tx_hash,
                )
            await asyncio.sleep(self._poll_interval)


def _check(signal: asyncio.Event | None) -> None:
    if signal is not None and signal.is_set():
        raise Cancelled("submission cancelled by caller")


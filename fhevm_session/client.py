"""
Client facade — the explicit owner of the process's single session.

FhevmClient wires every component from one FhevmSettings:

    provisioner  SessionProvisioner   (network -> backend -> session)
    encoder      InputEncoder
    submission   SubmissionCoordinator
    decryption   DecryptionAuthorizationManager
    indexer      RecordIndexer
    cache        ClearValueCache

and exposes the application-level flows:

    connect()                 provision (or reuse) the session
    submit_result(value_ms)   encode + submitResult + confirm
    start_run()               startRun(now_ms) + confirm
    mint_proof(uri)           mintProof(uri) + confirm
    list_records()            history, merged with cached clear values
    reveal_records(records)   decrypt uncached handles in one batch

Invalidation triggers:
    network_changed(chain_id) and account_changed(address) drop the
    session and the clear-value cache. The next flow provisions anew.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Callable, Sequence

from fhevm_session.backend.base import EncryptedPayload, HandleContractPair
from fhevm_session.config import FhevmSettings
from fhevm_session.decryption import DecryptionAuthorizationManager
from fhevm_session.encoder import InputEncoder
from fhevm_session.ledger.client import LedgerClient, TransactionReceipt
from fhevm_session.ledger.jsonrpc_client import EthJsonRpcClient
from fhevm_session.ledger.signer import NodeAccountSigner, WalletSigner
from fhevm_session.provisioner import SessionProvisioner
from fhevm_session.records import ClearValueCache, Record, RecordIndexer, reveal_records
from fhevm_session.session import Session
from fhevm_session.submission import SubmissionCoordinator
from fhevm_session.transport import HttpTransport, HttpxTransport

logger = logging.getLogger("fhevm_session.client")


@dataclass(frozen=True)
class SubmittedResult:
    """Outcome of submit_result(): what was sent and how it landed."""

    payload: EncryptedPayload
    receipt: TransactionReceipt

    @property
    def handle(self) -> str:
        return self.payload.handle_hexes[0]


class FhevmClient:
    """High-level client for one ledger connection and one wallet.

    Args:
        settings: Process settings. Defaults to FhevmSettings().
        ledger: Ledger connection. Defaults to EthJsonRpcClient(rpc_url).
        signer: Wallet signer. Defaults to NodeAccountSigner on the
            default JSON-RPC ledger.
        transport: HTTP transport shared by all components.
        provisioner: Override the SessionProvisioner (tests).
        clock: Unix-seconds clock.
    """

    def __init__(
        self,
        settings: FhevmSettings | None = None,
        *,
        ledger: LedgerClient | None = None,
        signer: WalletSigner | None = None,
        transport: HttpTransport | None = None,
        provisioner: SessionProvisioner | None = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self._settings = settings or FhevmSettings()
        self._clock = clock or time.time
        transport = transport or HttpxTransport(timeout=self._settings.http_timeout)

        if ledger is None:
            ledger = EthJsonRpcClient(self._settings.rpc_url, transport)
        if signer is None:
            if not isinstance(ledger, EthJsonRpcClient):
                raise ValueError("a signer is required when a custom ledger is supplied")
            signer = NodeAccountSigner(ledger)
        self._ledger = ledger
        self._signer = signer

        self.provisioner = provisioner or SessionProvisioner(
            ledger, self._settings, transport=transport, clock=self._clock
        )
        self.encoder = InputEncoder()
        self.submission = SubmissionCoordinator(
            ledger,
            confirmations=self._settings.confirmations,
            poll_interval=self._settings.receipt_poll_interval,
            timeout=self._settings.receipt_timeout,
        )
        self.decryption = DecryptionAuthorizationManager(
            duration_days=self._settings.decryption_duration_days, clock=self._clock
        )
        self.indexer = RecordIndexer(ledger)
        self.cache = ClearValueCache()

    @property
    def settings(self) -> FhevmSettings:
        return self._settings

    @property
    def signer(self) -> WalletSigner:
        return self._signer

    @property
    def session(self) -> Session | None:
        return self.provisioner.session

    # -----------------------------------------------------------------
    # Session
    # -----------------------------------------------------------------

    async def connect(self, *, signal: asyncio.Event | None = None) -> Session:
        return await self.provisioner.provision(signal=signal)

    async def contract_address(self) -> str:
        """Application contract deployed on the session's network."""
        session = await self.connect()
        return self._settings.contract_address_for(session.network.network_id)

    def network_changed(self, chain_id: int) -> None:
        self._invalidate(f"network changed to {chain_id}")

    def account_changed(self, address: str, signer: WalletSigner | None = None) -> None:
        """Drop session state for the old account, optionally swapping signers."""
        if signer is not None:
            self._signer = signer
        self._invalidate(f"account changed to {address}")

    def _invalidate(self, reason: str) -> None:
        self.provisioner.invalidate(reason)
        self.cache.clear()

    # -----------------------------------------------------------------
    # Transactions
    # -----------------------------------------------------------------

    async def submit_result(self, value_ms: int, *, signal: asyncio.Event | None = None) -> SubmittedResult:
        """Encrypt ``value_ms`` and submit it to the application contract."""
        session = await self.connect(signal=signal)
        contract = self._settings.contract_address_for(session.network.network_id)
        user = await self._signer.get_address()
        payload = await self.encoder.encode(session, value_ms, contract, user)
        receipt = await self.submission.submit(payload, contract, self._signer, signal=signal)
        return SubmittedResult(payload=payload, receipt=receipt)

    async def start_run(
        self,
        client_timestamp_ms: int | None = None,
        *,
        signal: asyncio.Event | None = None,
    ) -> TransactionReceipt:
        if client_timestamp_ms is None:
            client_timestamp_ms = int(self._clock() * 1000)
        contract = await self.contract_address()
        return await self.submission.start_run(contract, self._signer, client_timestamp_ms, signal=signal)

    async def mint_proof(self, metadata_uri: str, *, signal: asyncio.Event | None = None) -> TransactionReceipt:
        contract = await self.contract_address()
        return await self.submission.mint_proof(contract, self._signer, metadata_uri, signal=signal)

    # -----------------------------------------------------------------
    # Records
    # -----------------------------------------------------------------

    async def list_records(self) -> list[Record]:
        contract = await self.contract_address()
        user = await self._signer.get_address()
        return self.cache.merge(await self.indexer.list_records(contract, user))

    async def reveal_records(
        self,
        records: Sequence[Record] | None = None,
        *,
        signal: asyncio.Event | None = None,
    ) -> list[Record]:
        if records is None:
            records = await self.list_records()
        return await reveal_records(
            records,
            session=await self.connect(signal=signal),
            manager=self.decryption,
            signer=self._signer,
            cache=self.cache,
            signal=signal,
        )

    async def decrypt(
        self,
        handles: Sequence[HandleContractPair],
        *,
        strict: bool = False,
        signal: asyncio.Event | None = None,
    ) -> dict[str, int]:
        """Decrypt arbitrary handles; results are added to the cache."""
        session = await self.connect(signal=signal)
        values = await self.decryption.request_decryption(
            session, handles, self._signer, strict=strict, signal=signal
        )
        self.cache.update(values)
        return values

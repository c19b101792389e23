"""
Submission history — ledger event scan and clear-value reconciliation.

RecordIndexer rebuilds a submitter's history from ResultSubmitted logs:

    filter: address = contract,
            topics  = [topic0(event), address_topic(submitter)],
            blocks  = 0 .. latest

and returns Records most recent first (block height, then log index,
descending). The scan covers the full history on every call; there is
no cursor.

ClearValueCache holds ``handle -> plaintext`` for the process lifetime.
A value is set at most once per handle. reveal_records() decrypts only
the handles the cache lacks, in one batched authorization.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, replace
from typing import Iterable, Mapping, Sequence

from fhevm_session.backend.base import HandleContractPair
from fhevm_session.contract import (
    RESULT_SUBMITTED_SIGNATURE,
    address_topic,
    decode_result_submitted,
    event_topic,
)
from fhevm_session.decryption import DecryptionAuthorizationManager
from fhevm_session.errors import FhevmSessionError, classify_rpc_error
from fhevm_session.ledger.client import LedgerClient, LogFilter
from fhevm_session.ledger.signer import WalletSigner
from fhevm_session.session import Session

logger = logging.getLogger("fhevm_session.records")


@dataclass(frozen=True)
class Record:
    """One historical submission.

    Attributes:
        handle: Ciphertext handle (lowercase 0x-hex).
        timestamp: Submission timestamp from the event (unix seconds).
        transaction_hash: Submitting transaction.
        block_number: Block height of the submission.
        log_index: Position of the event within its block.
        contract_address: Contract that emitted the event.
        clear_value: Decrypted plaintext, once revealed.
    """

    handle: str
    timestamp: int
    transaction_hash: str
    block_number: int
    log_index: int = 0
    contract_address: str = ""
    clear_value: int | None = None

    @property
    def clear_seconds(self) -> float | None:
        """Decrypted millisecond value in seconds, or None."""
        if self.clear_value is None:
            return None
        return self.clear_value / 1000

    def with_clear_value(self, value: int) -> "Record":
        return replace(self, clear_value=value)


class RecordIndexer:
    """Scans the ledger for a submitter's records."""

    def __init__(self, ledger: LedgerClient) -> None:
        self._ledger = ledger

    async def list_records(
        self,
        contract_address: str,
        submitter_address: str,
        event_signature: str = RESULT_SUBMITTED_SIGNATURE,
    ) -> list[Record]:
        """All of ``submitter_address``'s records, most recent first.

        Logs that fail to decode are skipped with a warning.

        Raises:
            NetworkUnavailable, LedgerRejected: If the log query fails.
        """
        log_filter = LogFilter(
            address=contract_address,
            topics=(event_topic(event_signature), address_topic(submitter_address)),
            from_block=0,
            to_block="latest",
        )
        try:
            logs = await self._ledger.get_logs(log_filter)
        except FhevmSessionError:
            raise
        except Exception as exc:
            raise classify_rpc_error(exc) from exc

        records: list[Record] = []
        for log in logs:
            try:
                event = decode_result_submitted(log)
            except ValueError as exc:
                logger.warning("skipping undecodable log in tx %s: %s", log.transaction_hash, exc)
                continue
            records.append(
                Record(
                    handle=event.handle.lower(),
                    timestamp=event.timestamp,
                    transaction_hash=log.transaction_hash,
                    block_number=log.block_number,
                    log_index=log.log_index,
                    contract_address=log.address,
                )
            )

        records.sort(key=lambda r: (r.block_number, r.log_index), reverse=True)
        logger.debug("indexed %d record(s) for %s", len(records), submitter_address)
        return records


class ClearValueCache:
    """Process-lifetime ``handle -> plaintext`` map, set at most once."""

    def __init__(self) -> None:
        self._values: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._values)

    def __contains__(self, handle: object) -> bool:
        return isinstance(handle, str) and handle.lower() in self._values

    def get(self, handle: str) -> int | None:
        return self._values.get(handle.lower())

    def put(self, handle: str, value: int) -> int:
        """Store ``value`` unless the handle is cached; return the cached value."""
        return self._values.setdefault(handle.lower(), value)

    def missing(self, handles: Iterable[str]) -> list[str]:
        """Handles without a cached value, deduplicated, input order."""
        result: dict[str, None] = {}
        for handle in handles:
            key = handle.lower()
            if key not in self._values:
                result.setdefault(key, None)
        return list(result)

    def merge(self, records: Sequence[Record]) -> list[Record]:
        """Records with clear_value filled from the cache where known."""
        merged = []
        for record in records:
            value = self.get(record.handle)
            merged.append(record if value is None else record.with_clear_value(value))
        return merged

    def update(self, values: Mapping[str, int]) -> None:
        for handle, value in values.items():
            self.put(handle, value)

    def clear(self) -> None:
        self._values.clear()


async def reveal_records(
    records: Sequence[Record],
    *,
    session: Session | None,
    manager: DecryptionAuthorizationManager,
    signer: WalletSigner,
    cache: ClearValueCache,
    signal: asyncio.Event | None = None,
) -> list[Record]:
    """Fill in clear values, decrypting only uncached handles.

    All uncached handles go into one request_decryption() call, so at
    most one signature prompt is shown. Records whose handle was not
    authorized keep ``clear_value = None``.
    """
    pending = cache.missing(record.handle for record in records)
    if pending:
        contract_of = {record.handle.lower(): record.contract_address for record in records}
        pairs = [HandleContractPair(handle, contract_of[handle]) for handle in pending]
        decrypted = await manager.request_decryption(session, pairs, signer, signal=signal)
        cache.update(decrypted)
        logger.debug("revealed %d of %d uncached handle(s)", len(decrypted), len(pending))
    return cache.merge(records)

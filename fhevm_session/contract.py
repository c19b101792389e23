"""
Application contract surface — calldata builders and event decoding.

Only the call signatures and the submission event shape matter here:

    submitResult(bytes32 inputHandle, bytes inputProof)
    startRun(uint64 clientTimestampMs)
    mintProof(string metadataUri)

    event ResultSubmitted(address indexed player, bytes32 inputHandle, uint64 timestamp)

Everything in this module is pure: no I/O, no signing.
"""

from __future__ import annotations

from dataclasses import dataclass

from eth_abi import decode, encode
from eth_abi.exceptions import DecodingError
from eth_utils import function_signature_to_4byte_selector, keccak, to_checksum_address

from fhevm_session.ledger.client import LogEntry, TransactionRequest

SUBMIT_RESULT_SIGNATURE = "submitResult(bytes32,bytes)"
START_RUN_SIGNATURE = "startRun(uint64)"
MINT_PROOF_SIGNATURE = "mintProof(string)"
RESULT_SUBMITTED_SIGNATURE = "ResultSubmitted(address,bytes32,uint64)"

UINT64_MAX = 2**64 - 1


def event_topic(signature: str) -> str:
    """topic0 for an event signature: keccak256 of its canonical text."""
    return "0x" + keccak(text=signature).hex()


def address_topic(address: str) -> str:
    """An address left-padded to 32 bytes, as used for indexed topics."""
    raw = bytes.fromhex(to_checksum_address(address)[2:])
    return "0x" + raw.rjust(32, b"\x00").hex()


def _calldata(signature: str, arg_types: list[str], args: list[object]) -> str:
    selector = function_signature_to_4byte_selector(signature)
    return "0x" + (selector + encode(arg_types, args)).hex()


def _as_bytes32(handle: bytes | str) -> bytes:
    raw = bytes.fromhex(handle[2:] if handle.startswith("0x") else handle) if isinstance(handle, str) else bytes(handle)
    if len(raw) != 32:
        raise ValueError(f"handle must be 32 bytes, got {len(raw)}")
    return raw


# =========================================================================
# Calls
# =========================================================================


def submit_result_call(contract_address: str, handle: bytes | str, proof: bytes) -> TransactionRequest:
    """Call invoking the result-submission entry point."""
    return TransactionRequest(
        to=to_checksum_address(contract_address),
        data=_calldata(SUBMIT_RESULT_SIGNATURE, ["bytes32", "bytes"], [_as_bytes32(handle), bytes(proof)]),
    )


def start_run_call(contract_address: str, client_timestamp_ms: int) -> TransactionRequest:
    if not 0 <= client_timestamp_ms <= UINT64_MAX:
        raise ValueError(f"client_timestamp_ms out of uint64 range: {client_timestamp_ms}")
    return TransactionRequest(
        to=to_checksum_address(contract_address),
        data=_calldata(START_RUN_SIGNATURE, ["uint64"], [client_timestamp_ms]),
    )


def mint_proof_call(contract_address: str, metadata_uri: str) -> TransactionRequest:
    if not metadata_uri:
        raise ValueError("metadata_uri must be non-empty")
    return TransactionRequest(
        to=to_checksum_address(contract_address),
        data=_calldata(MINT_PROOF_SIGNATURE, ["string"], [metadata_uri]),
    )


# =========================================================================
# Events
# =========================================================================


@dataclass(frozen=True)
class ResultSubmitted:
    """Decoded ResultSubmitted event."""

    player: str
    handle: str
    timestamp: int


def decode_result_submitted(log: LogEntry) -> ResultSubmitted:
    """Decode a ResultSubmitted log entry.

    Raises:
        ValueError: If the log is not a ResultSubmitted event.
    """
    if not log.topics or log.topics[0].lower() != event_topic(RESULT_SUBMITTED_SIGNATURE):
        raise ValueError("log is not a ResultSubmitted event")
    if len(log.topics) < 2:
        raise ValueError("ResultSubmitted log is missing the indexed player topic")

    player = to_checksum_address("0x" + log.topics[1][-40:])
    try:
        data = bytes.fromhex(log.data[2:] if log.data.startswith("0x") else log.data)
        handle, timestamp = decode(["bytes32", "uint64"], data)
    except DecodingError as exc:
        raise ValueError(f"malformed ResultSubmitted data: {exc}") from exc
    return ResultSubmitted(player=player, handle="0x" + bytes(handle).hex(), timestamp=int(timestamp))

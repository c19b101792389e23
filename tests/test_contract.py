"""
Tests for contract calldata builders and ResultSubmitted decoding.

Test plan:
- event_topic matches keccak of the canonical signature
- address_topic left-pads to 32 bytes
- submit_result_call: selector, ABI-encoded (bytes32, bytes), checksummed
  target, accepts bytes and hex handles, rejects wrong length
- start_run_call / mint_proof_call: selector and args, range and
  empty-uri checks
- decode_result_submitted: player from indexed topic, handle and
  timestamp from data, wrong topic rejected
"""

import pytest
from eth_abi import decode, encode
from eth_utils import function_signature_to_4byte_selector, keccak

from fakes import CONTRACT_X, USER_ADDRESS

from fhevm_session.contract import (
    MINT_PROOF_SIGNATURE,
    RESULT_SUBMITTED_SIGNATURE,
    START_RUN_SIGNATURE,
    SUBMIT_RESULT_SIGNATURE,
    UINT64_MAX,
    address_topic,
    decode_result_submitted,
    event_topic,
    mint_proof_call,
    start_run_call,
    submit_result_call,
)
from fhevm_session.ledger.client import LogEntry

HANDLE = bytes(range(32))


def _selector(signature: str) -> str:
    return "0x" + function_signature_to_4byte_selector(signature).hex()


def _args(data: str, signature: str) -> bytes:
    assert data.startswith(_selector(signature))
    return bytes.fromhex(data[10:])


class TestTopics:
    def test_event_topic(self) -> None:
        assert event_topic(RESULT_SUBMITTED_SIGNATURE) == "0x" + keccak(text=RESULT_SUBMITTED_SIGNATURE).hex()

    def test_address_topic(self) -> None:
        topic = address_topic(USER_ADDRESS.lower())
        assert len(topic) == 66
        assert topic == "0x" + "00" * 12 + USER_ADDRESS[2:].lower()


class TestCalls:
    def test_submit_result(self) -> None:
        call = submit_result_call(CONTRACT_X.lower(), HANDLE, b"\x01\x02")
        assert call.to == CONTRACT_X
        handle, proof = decode(["bytes32", "bytes"], _args(call.data, SUBMIT_RESULT_SIGNATURE))
        assert handle == HANDLE
        assert proof == b"\x01\x02"

    def test_submit_result_hex_handle(self) -> None:
        by_bytes = submit_result_call(CONTRACT_X, HANDLE, b"")
        by_hex = submit_result_call(CONTRACT_X, "0x" + HANDLE.hex(), b"")
        assert by_bytes == by_hex

    def test_submit_result_bad_handle(self) -> None:
        with pytest.raises(ValueError, match="32 bytes"):
            submit_result_call(CONTRACT_X, b"\x00" * 31, b"")

    def test_start_run(self) -> None:
        call = start_run_call(CONTRACT_X, 1_700_000_000_123)
        (timestamp,) = decode(["uint64"], _args(call.data, START_RUN_SIGNATURE))
        assert timestamp == 1_700_000_000_123

    def test_start_run_range(self) -> None:
        with pytest.raises(ValueError):
            start_run_call(CONTRACT_X, UINT64_MAX + 1)

    def test_mint_proof(self) -> None:
        call = mint_proof_call(CONTRACT_X, "ipfs://proof/1")
        (uri,) = decode(["string"], _args(call.data, MINT_PROOF_SIGNATURE))
        assert uri == "ipfs://proof/1"

    def test_mint_proof_empty_uri(self) -> None:
        with pytest.raises(ValueError):
            mint_proof_call(CONTRACT_X, "")

    def test_value_defaults_to_zero(self) -> None:
        assert submit_result_call(CONTRACT_X, HANDLE, b"").to_dict()["value"] == 0


class TestDecodeResultSubmitted:
    def _log(self, topics: tuple[str, ...]) -> LogEntry:
        return LogEntry(
            address=CONTRACT_X,
            topics=topics,
            data="0x" + encode(["bytes32", "uint64"], [HANDLE, 1_700_000_000]).hex(),
            block_number=5,
            transaction_hash="0x" + "aa" * 32,
        )

    def test_decodes(self) -> None:
        log = self._log((event_topic(RESULT_SUBMITTED_SIGNATURE), address_topic(USER_ADDRESS)))
        event = decode_result_submitted(log)
        assert event.player == USER_ADDRESS
        assert event.handle == "0x" + HANDLE.hex()
        assert event.timestamp == 1_700_000_000

    def test_wrong_topic(self) -> None:
        log = self._log((event_topic("Other(address)"), address_topic(USER_ADDRESS)))
        with pytest.raises(ValueError, match="not a ResultSubmitted"):
            decode_result_submitted(log)

    def test_missing_player_topic(self) -> None:
        log = self._log((event_topic(RESULT_SUBMITTED_SIGNATURE),))
        with pytest.raises(ValueError, match="player"):
            decode_result_submitted(log)

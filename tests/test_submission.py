"""
Tests for SubmissionCoordinator.

FakeLedger executes submitResult calldata and emits ResultSubmitted, so
the end-to-end submission scenario runs without a node.

Test plan:
- Scenario: encode 12345 for a contract and submitter -> one handle,
  one ResultSubmitted event carrying that handle with the submitter as
  indexed topic
- Payload with more than one handle rejected before sending
- Failure kinds stay distinct: signer declined (4001), network failure,
  revert at estimation, revert on chain (with tx hash), ledger rejection
- Confirmation: pending receipts polled, waits for N confirmations,
  times out with ConfirmationTimeout
- Cancellation before sending sends nothing
- start_run / mint_proof calldata
"""

import asyncio

import httpx
import pytest
from eth_abi import decode
from eth_utils import function_signature_to_4byte_selector

from fakes import CONTRACT_X, USER_ADDRESS, FakeLedger, FakeSigner, local_session

from fhevm_session.backend.base import EncryptedPayload
from fhevm_session.contract import (
    MINT_PROOF_SIGNATURE,
    START_RUN_SIGNATURE,
    address_topic,
    decode_result_submitted,
)
from fhevm_session.encoder import InputEncoder
from fhevm_session.errors import (
    Cancelled,
    ConfirmationTimeout,
    JsonRpcError,
    LedgerRejected,
    NetworkUnavailable,
    SignerDeclined,
    TransactionReverted,
)
from fhevm_session.submission import SubmissionCoordinator


async def _payload(value: int = 12345) -> EncryptedPayload:
    return await InputEncoder().encode(local_session(), value, CONTRACT_X, USER_ADDRESS)


def _coordinator(ledger: FakeLedger, **kwargs) -> SubmissionCoordinator:
    kwargs.setdefault("poll_interval", 0)
    return SubmissionCoordinator(ledger, **kwargs)


class TestSubmitScenario:
    @pytest.mark.asyncio
    async def test_emits_one_result_submitted(self) -> None:
        ledger = FakeLedger()
        signer = FakeSigner(ledger=ledger)
        payload = await _payload(12345)
        assert len(payload.handles) == 1

        receipt = await _coordinator(ledger).submit(payload, CONTRACT_X, signer)

        assert receipt.succeeded
        assert receipt.confirmations >= 1
        assert len(receipt.logs) == 1
        log = receipt.logs[0]
        assert log.topics[1] == address_topic(USER_ADDRESS)
        event = decode_result_submitted(log)
        assert event.handle == payload.handle_hexes[0]
        assert event.player == USER_ADDRESS

    @pytest.mark.asyncio
    async def test_call_targets_contract(self) -> None:
        ledger = FakeLedger()
        signer = FakeSigner(ledger=ledger)
        await _coordinator(ledger).submit(await _payload(), CONTRACT_X.lower(), signer)
        assert signer.sent[0].to == CONTRACT_X

    @pytest.mark.asyncio
    async def test_multiple_handles_rejected(self) -> None:
        session = local_session()
        builder = session.instance.create_encrypted_input(CONTRACT_X, USER_ADDRESS)
        payload = await builder.add64(1).add64(2).encrypt()
        signer = FakeSigner(ledger=FakeLedger())
        with pytest.raises(ValueError, match="exactly one handle"):
            await _coordinator(FakeLedger()).submit(payload, CONTRACT_X, signer)
        assert signer.sent == []


class TestFailureKinds:
    @pytest.mark.asyncio
    async def test_signer_declined(self) -> None:
        signer = FakeSigner(send_error=JsonRpcError(4001, "User rejected the request."))
        with pytest.raises(SignerDeclined) as exc_info:
            await _coordinator(FakeLedger()).submit(await _payload(), CONTRACT_X, signer)
        assert isinstance(exc_info.value.__cause__, JsonRpcError)

    @pytest.mark.asyncio
    async def test_signer_declined_passthrough(self) -> None:
        signer = FakeSigner(send_error=SignerDeclined("no"))
        with pytest.raises(SignerDeclined, match="no"):
            await _coordinator(FakeLedger()).submit(await _payload(), CONTRACT_X, signer)

    @pytest.mark.asyncio
    async def test_network_failure(self) -> None:
        signer = FakeSigner(send_error=httpx.ConnectError("refused"))
        with pytest.raises(NetworkUnavailable):
            await _coordinator(FakeLedger()).submit(await _payload(), CONTRACT_X, signer)

    @pytest.mark.asyncio
    async def test_revert_at_estimation(self) -> None:
        signer = FakeSigner(send_error=JsonRpcError(3, "execution reverted: run not started"))
        with pytest.raises(TransactionReverted, match="run not started") as exc_info:
            await _coordinator(FakeLedger()).submit(await _payload(), CONTRACT_X, signer)
        assert exc_info.value.tx_hash is None

    @pytest.mark.asyncio
    async def test_revert_on_chain(self) -> None:
        ledger = FakeLedger()
        ledger.revert_next = True
        signer = FakeSigner(ledger=ledger)
        with pytest.raises(TransactionReverted) as exc_info:
            await _coordinator(ledger).submit(await _payload(), CONTRACT_X, signer)
        assert exc_info.value.tx_hash is not None
        assert exc_info.value.tx_hash in ledger.receipts
        assert ledger.logs == []

    @pytest.mark.asyncio
    async def test_ledger_rejected(self) -> None:
        signer = FakeSigner(send_error=JsonRpcError(-32000, "nonce too low"))
        with pytest.raises(LedgerRejected):
            await _coordinator(FakeLedger()).submit(await _payload(), CONTRACT_X, signer)

    @pytest.mark.asyncio
    async def test_receipt_poll_failure(self) -> None:
        ledger = FakeLedger()
        ledger.receipt_error = httpx.ReadTimeout("slow node")
        with pytest.raises(NetworkUnavailable):
            await _coordinator(ledger).submit(await _payload(), CONTRACT_X, FakeSigner(ledger=ledger))


class TestConfirmation:
    @pytest.mark.asyncio
    async def test_pending_receipts_polled(self) -> None:
        ledger = FakeLedger(pending_polls=3)
        receipt = await _coordinator(ledger).submit(await _payload(), CONTRACT_X, FakeSigner(ledger=ledger))
        assert receipt.succeeded

    @pytest.mark.asyncio
    async def test_waits_for_confirmations(self) -> None:
        ledger = FakeLedger(advance_per_poll=1)
        coordinator = _coordinator(ledger, confirmations=3)
        receipt = await coordinator.submit(await _payload(), CONTRACT_X, FakeSigner(ledger=ledger))
        assert receipt.confirmations >= 3

    @pytest.mark.asyncio
    async def test_timeout(self) -> None:
        ledger = FakeLedger(pending_polls=10_000)
        coordinator = _coordinator(ledger, poll_interval=0.01, timeout=0.05)
        with pytest.raises(ConfirmationTimeout) as exc_info:
            await coordinator.submit(await _payload(), CONTRACT_X, FakeSigner(ledger=ledger))
        assert exc_info.value.tx_hash in ledger.receipts

    @pytest.mark.asyncio
    async def test_timeout_waiting_for_depth(self) -> None:
        ledger = FakeLedger()
        coordinator = _coordinator(ledger, confirmations=5, poll_interval=0.01, timeout=0.05)
        with pytest.raises(ConfirmationTimeout, match="awaiting confirmations"):
            await coordinator.submit(await _payload(), CONTRACT_X, FakeSigner(ledger=ledger))

    def test_confirmations_positive(self) -> None:
        with pytest.raises(ValueError):
            SubmissionCoordinator(FakeLedger(), confirmations=0)


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancel_before_send(self) -> None:
        signal = asyncio.Event()
        signal.set()
        signer = FakeSigner(ledger=FakeLedger())
        with pytest.raises(Cancelled):
            await _coordinator(FakeLedger()).submit(await _payload(), CONTRACT_X, signer, signal=signal)
        assert signer.sent == []


class TestOtherEntryPoints:
    @pytest.mark.asyncio
    async def test_start_run(self) -> None:
        ledger = FakeLedger()
        signer = FakeSigner(ledger=ledger)
        receipt = await _coordinator(ledger).start_run(CONTRACT_X, signer, 1_700_000_000_000)
        assert receipt.succeeded

        data = signer.sent[0].data
        assert data.startswith("0x" + function_signature_to_4byte_selector(START_RUN_SIGNATURE).hex())
        assert decode(["uint64"], bytes.fromhex(data[10:])) == (1_700_000_000_000,)
        assert ledger.logs == []

    @pytest.mark.asyncio
    async def test_mint_proof(self) -> None:
        ledger = FakeLedger()
        signer = FakeSigner(ledger=ledger)
        await _coordinator(ledger).mint_proof(CONTRACT_X, signer, "ipfs://proof/42")

        data = signer.sent[0].data
        assert data.startswith("0x" + function_signature_to_4byte_selector(MINT_PROOF_SIGNATURE).hex())
        assert decode(["string"], bytes.fromhex(data[10:])) == ("ipfs://proof/42",)

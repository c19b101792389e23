"""
Tests for DecryptionAuthorizationManager.

Local backend with real signatures; a spy instance records every
ephemeral key pair it hands out.

Test plan:
- Round trip: encode then decrypt returns the original value
- Fresh ephemeral key per call; every key discarded on success and on
  failure
- Statement: distinct contracts in first-seen order, configured window,
  start = now; bound_contracts override
- Scenario: handles for contracts X (bound) and Y (unbound) -> only X
  returned
- bound_contracts override deduplicated in first-seen order; an empty
  override rejected before any key is generated
- Response reconciliation: handles the backend adds are dropped,
  omitted handles logged; strict mode raises Unauthorized
- Empty request -> {}, no signature prompt
- InvalidSession, SignerDeclined, Cancelled
- AuthorizationGrant.covers / expires_at
"""

import asyncio
import logging

import pytest

from fakes import (
    CONTRACT_X,
    CONTRACT_Y,
    LOCAL_CHAIN_ID,
    LOCAL_URL,
    METADATA,
    NOW,
    OTHER_ADDRESS,
    USER_ADDRESS,
    FakeSigner,
    fixed_clock,
)

from fhevm_session.backend.base import HandleContractPair, generate_keypair
from fhevm_session.backend.local import LocalFhevmInstance, LocalMetadata
from fhevm_session.decryption import (
    AuthorizationGrant,
    DecryptionAuthorizationManager,
    distinct_contracts,
)
from fhevm_session.encoder import InputEncoder
from fhevm_session.errors import Cancelled, InvalidSession, SignerDeclined, Unauthorized
from fhevm_session.network import NetworkInfo
from fhevm_session.session import Session


class SpyInstance(LocalFhevmInstance):
    """Local instance that records key pairs and can inject extra results."""

    def __init__(self, extra: dict[str, int] | None = None) -> None:
        super().__init__(LOCAL_URL, LOCAL_CHAIN_ID, LocalMetadata.from_dict(METADATA), clock=fixed_clock())
        self.keypairs = []
        self.extra = dict(extra or {})
        self.requests: list[dict] = []

    def generate_keypair(self):
        keypair = super().generate_keypair()
        self.keypairs.append(keypair)
        return keypair

    async def user_decrypt(self, pairs, keypair, signature, contract_addresses, user_address, start, days):
        self.requests.append(
            {"pairs": list(pairs), "contracts": list(contract_addresses), "start": start, "days": days}
        )
        result = await super().user_decrypt(
            pairs, keypair, signature, contract_addresses, user_address, start, days
        )
        result.update(self.extra)
        return result


def _session(instance: SpyInstance | None = None) -> Session:
    instance = instance or SpyInstance()
    return Session(instance, NetworkInfo(network_id=LOCAL_CHAIN_ID, is_local_backend=True))


def _manager(**kwargs) -> DecryptionAuthorizationManager:
    kwargs.setdefault("clock", fixed_clock())
    return DecryptionAuthorizationManager(**kwargs)


async def _handle(session: Session, value: int, contract: str = CONTRACT_X, user: str = USER_ADDRESS) -> str:
    payload = await InputEncoder().encode(session, value, contract, user)
    return payload.handle_hexes[0]


class TestRoundTrip:
    @pytest.mark.asyncio
    async def test_decrypts_original_value(self) -> None:
        session = _session()
        handle = await _handle(session, 12345)
        result = await _manager().request_decryption(
            session, [HandleContractPair(handle, CONTRACT_X)], FakeSigner()
        )
        assert result == {handle: 12345}

    @pytest.mark.asyncio
    async def test_batch_across_contracts_one_prompt(self) -> None:
        session = _session()
        x = await _handle(session, 1, CONTRACT_X)
        y = await _handle(session, 2, CONTRACT_Y)
        signer = FakeSigner()
        result = await _manager().request_decryption(
            session, [HandleContractPair(x, CONTRACT_X), HandleContractPair(y, CONTRACT_Y)], signer
        )
        assert result == {x: 1, y: 2}
        assert len(signer.signed) == 1


class TestEphemeralKeys:
    @pytest.mark.asyncio
    async def test_fresh_key_per_call(self) -> None:
        instance = SpyInstance()
        session = _session(instance)
        handle = await _handle(session, 5)
        manager = _manager()
        signer = FakeSigner()
        pairs = [HandleContractPair(handle, CONTRACT_X)]
        await manager.request_decryption(session, pairs, signer)
        await manager.request_decryption(session, pairs, signer)

        keys = [signed["message"]["publicKey"] for signed in signer.signed]
        assert len(keys) == 2
        assert keys[0] != keys[1]
        assert instance.keypairs[0].public_key != instance.keypairs[1].public_key

    @pytest.mark.asyncio
    async def test_key_discarded_on_success(self) -> None:
        instance = SpyInstance()
        session = _session(instance)
        handle = await _handle(session, 5)
        await _manager().request_decryption(session, [HandleContractPair(handle, CONTRACT_X)], FakeSigner())
        assert instance.keypairs[0].discarded

    @pytest.mark.asyncio
    async def test_key_discarded_on_failure(self) -> None:
        instance = SpyInstance()
        session = _session(instance)
        signer = FakeSigner(sign_error=SignerDeclined("user said no"))
        with pytest.raises(SignerDeclined):
            await _manager().request_decryption(session, [HandleContractPair("0x" + "00" * 32, CONTRACT_X)], signer)
        assert instance.keypairs[0].discarded

    @pytest.mark.asyncio
    async def test_concurrent_calls_use_distinct_keys(self) -> None:
        instance = SpyInstance()
        session = _session(instance)
        handle = await _handle(session, 5)
        manager = _manager()
        pairs = [HandleContractPair(handle, CONTRACT_X)]
        await asyncio.gather(
            manager.request_decryption(session, pairs, FakeSigner()),
            manager.request_decryption(session, pairs, FakeSigner()),
        )
        assert len({kp.public_key for kp in instance.keypairs}) == 2
        assert all(kp.discarded for kp in instance.keypairs)


class TestStatement:
    @pytest.mark.asyncio
    async def test_distinct_contracts_first_seen(self) -> None:
        instance = SpyInstance()
        session = _session(instance)
        pairs = [
            HandleContractPair("0x" + "01" * 32, CONTRACT_Y),
            HandleContractPair("0x" + "02" * 32, CONTRACT_X.lower()),
            HandleContractPair("0x" + "03" * 32, CONTRACT_Y),
        ]
        signer = FakeSigner()
        await _manager().request_decryption(session, pairs, signer)
        assert signer.signed[0]["message"]["contractAddresses"] == [CONTRACT_Y, CONTRACT_X]
        assert len(instance.requests[0]["pairs"]) == 3

    @pytest.mark.asyncio
    async def test_window_from_config(self) -> None:
        signer = FakeSigner()
        await _manager(duration_days=7).request_decryption(
            _session(), [HandleContractPair("0x" + "01" * 32, CONTRACT_X)], signer
        )
        message = signer.signed[0]["message"]
        assert message["durationDays"] == 7
        assert message["startTimestamp"] == int(NOW)

    def test_default_window(self) -> None:
        assert DecryptionAuthorizationManager().duration_days == 365

    def test_window_positive(self) -> None:
        with pytest.raises(ValueError):
            DecryptionAuthorizationManager(duration_days=0)

    def test_distinct_contracts_helper(self) -> None:
        pairs = [HandleContractPair("0x01", CONTRACT_X), HandleContractPair("0x02", CONTRACT_X.lower())]
        assert distinct_contracts(pairs) == [CONTRACT_X]


class TestAuthorizationScope:
    @pytest.mark.asyncio
    async def test_unbound_contract_absent(self) -> None:
        session = _session()
        x = await _handle(session, 111, CONTRACT_X)
        y = await _handle(session, 222, CONTRACT_Y)
        signer = FakeSigner()

        result = await _manager().request_decryption(
            session,
            [HandleContractPair(x, CONTRACT_X), HandleContractPair(y, CONTRACT_Y)],
            signer,
            bound_contracts=[CONTRACT_X],
        )
        assert result == {x: 111}
        assert signer.signed[0]["message"]["contractAddresses"] == [CONTRACT_X]

    @pytest.mark.asyncio
    async def test_bound_contracts_deduplicated(self) -> None:
        session = _session()
        x = await _handle(session, 111, CONTRACT_X)
        signer = FakeSigner()
        result = await _manager().request_decryption(
            session,
            [HandleContractPair(x, CONTRACT_X)],
            signer,
            bound_contracts=[CONTRACT_X.lower(), CONTRACT_Y, CONTRACT_X],
        )
        assert result == {x: 111}
        assert signer.signed[0]["message"]["contractAddresses"] == [CONTRACT_X, CONTRACT_Y]

    @pytest.mark.asyncio
    async def test_empty_bound_contracts_rejected(self) -> None:
        instance = SpyInstance()
        signer = FakeSigner()
        with pytest.raises(ValueError, match="bound_contracts"):
            await _manager().request_decryption(
                _session(instance),
                [HandleContractPair("0x" + "01" * 32, CONTRACT_X)],
                signer,
                bound_contracts=[],
            )
        assert instance.keypairs == []
        assert signer.signed == []

    @pytest.mark.asyncio
    async def test_unrequested_handles_dropped(self) -> None:
        stray = "0x" + "ff" * 32
        instance = SpyInstance(extra={stray: 9})
        session = _session(instance)
        handle = await _handle(session, 5)
        result = await _manager().request_decryption(session, [HandleContractPair(handle, CONTRACT_X)], FakeSigner())
        assert result == {handle: 5}

    @pytest.mark.asyncio
    async def test_backend_result_for_unbound_contract_dropped(self) -> None:
        y = "0x" + "ee" * 32
        instance = SpyInstance(extra={y: 9})
        result = await _manager().request_decryption(
            _session(instance),
            [HandleContractPair(y, CONTRACT_Y)],
            FakeSigner(),
            bound_contracts=[CONTRACT_X],
        )
        assert result == {}

    @pytest.mark.asyncio
    async def test_other_owner_omitted_and_logged(self, caplog: pytest.LogCaptureFixture) -> None:
        session = _session()
        theirs = await _handle(session, 5, user=OTHER_ADDRESS)
        with caplog.at_level(logging.WARNING, logger="fhevm_session.decryption"):
            result = await _manager().request_decryption(
                session, [HandleContractPair(theirs, CONTRACT_X)], FakeSigner()
            )
        assert result == {}
        assert theirs in caplog.text

    @pytest.mark.asyncio
    async def test_strict_raises_unauthorized(self) -> None:
        session = _session()
        mine = await _handle(session, 1)
        theirs = await _handle(session, 2, user=OTHER_ADDRESS)
        with pytest.raises(Unauthorized) as exc_info:
            await _manager().request_decryption(
                session,
                [HandleContractPair(mine, CONTRACT_X), HandleContractPair(theirs, CONTRACT_X)],
                FakeSigner(),
                strict=True,
            )
        assert exc_info.value.handles == (theirs,)


class TestPreconditions:
    @pytest.mark.asyncio
    async def test_empty_request(self) -> None:
        signer = FakeSigner()
        assert await _manager().request_decryption(_session(), [], signer) == {}
        assert signer.signed == []

    @pytest.mark.asyncio
    async def test_invalid_session(self) -> None:
        session = _session()
        session.invalidate("account changed")
        with pytest.raises(InvalidSession):
            await _manager().request_decryption(session, [HandleContractPair("0x01", CONTRACT_X)], FakeSigner())

    @pytest.mark.asyncio
    async def test_cancelled_before_prompt(self) -> None:
        instance = SpyInstance()
        signal = asyncio.Event()
        signal.set()
        signer = FakeSigner()
        with pytest.raises(Cancelled):
            await _manager().request_decryption(
                _session(instance), [HandleContractPair("0x" + "01" * 32, CONTRACT_X)], signer, signal=signal
            )
        assert signer.signed == []
        assert instance.keypairs[0].discarded


class TestAuthorizationGrant:
    def _grant(self) -> AuthorizationGrant:
        keypair = generate_keypair()
        instance = SpyInstance()
        typed = instance.create_eip712(keypair.public_key, [CONTRACT_X], 1000, 2)
        return AuthorizationGrant(
            keypair=keypair,
            typed_data=typed,
            signature="0x",
            validity_start=1000,
            validity_duration_days=2,
            bound_contracts=frozenset({CONTRACT_X}),
        )

    def test_expires_at(self) -> None:
        assert self._grant().expires_at == 1000 + 2 * 86400

    def test_covers(self) -> None:
        grant = self._grant()
        assert grant.covers(HandleContractPair("0x01", CONTRACT_X.lower()), 1000)
        assert not grant.covers(HandleContractPair("0x01", CONTRACT_Y), 1000)
        assert not grant.covers(HandleContractPair("0x01", CONTRACT_X), 999)
        assert not grant.covers(HandleContractPair("0x01", CONTRACT_X), grant.expires_at)

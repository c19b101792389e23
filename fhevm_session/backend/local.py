"""
Local deterministic backend for development networks.

Constructed synchronously from the metadata the local node reports
(``fhevm_relayer_metadata``); no client library is fetched.

Ciphertexts are simulated: each encrypted input derives its handles from
a keccak digest over (ACL address, chain id, contract, user, values,
input sequence number) and records the cleartext together with its
owning contract and user. user_decrypt() applies the same checks the
production backend does:

    - the typed-data signature recovers to ``user_address``
    - the current time is inside [start, start + days)
    - each handle's owning contract is listed in the statement
    - each handle is owned by ``user_address``

Handles failing a check are omitted from the result.
"""

from __future__ import annotations

import itertools
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Sequence

from eth_utils import keccak, to_checksum_address

from fhevm_session.backend.base import (
    EncryptedPayload,
    EphemeralKeypair,
    HandleContractPair,
    build_handle,
    generate_keypair,
    pack_input_proof,
)
from fhevm_session.canonical_json import canonical_json_bytes
from fhevm_session.contract import UINT64_MAX
from fhevm_session.eip712 import TypedData, build_user_decrypt_typed_data, recover_signer
from fhevm_session.errors import BackendRequestFailure

logger = logging.getLogger("fhevm_session.backend.local")

LOCAL_BACKEND = "local"
SECONDS_PER_DAY = 86400


@dataclass(frozen=True)
class LocalMetadata:
    """Coprocessor contract addresses reported by the local node."""

    acl_address: str
    input_verifier_address: str
    kms_verifier_address: str

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "LocalMetadata":
        return cls(
            acl_address=to_checksum_address(data["ACLAddress"]),
            input_verifier_address=to_checksum_address(data["InputVerifierAddress"]),
            kms_verifier_address=to_checksum_address(data["KMSVerifierAddress"]),
        )


@dataclass(frozen=True)
class _StoredCiphertext:
    value: int
    contract_address: str
    owner: str


class LocalEncryptedInput:
    def __init__(self, instance: "LocalFhevmInstance", contract_address: str, user_address: str) -> None:
        self._instance = instance
        self._contract_address = to_checksum_address(contract_address)
        self._user_address = to_checksum_address(user_address)
        self._values: list[int] = []

    def add64(self, value: int) -> "LocalEncryptedInput":
        if not 0 <= value <= UINT64_MAX:
            raise ValueError(f"value out of uint64 range: {value}")
        self._values.append(value)
        return self

    async def encrypt(self) -> EncryptedPayload:
        if not self._values:
            raise ValueError("no values added to encrypted input")
        return self._instance._encrypt(self._values, self._contract_address, self._user_address)


class LocalFhevmInstance:
    """Deterministic FhevmInstance backed by an in-process ciphertext table.

    Args:
        rpc_url: Endpoint of the local node that supplied the metadata.
        chain_id: Chain id of the local network.
        metadata: Addresses from ``fhevm_relayer_metadata``.
        clock: Returns unix seconds. Inject for tests.
    """

    def __init__(
        self,
        rpc_url: str,
        chain_id: int,
        metadata: LocalMetadata,
        *,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self._rpc_url = rpc_url
        self._chain_id = chain_id
        self._metadata = metadata
        self._clock = clock or time.time
        self._sequence = itertools.count()
        self._store: dict[str, _StoredCiphertext] = {}

    @property
    def backend(self) -> str:
        return LOCAL_BACKEND

    @property
    def chain_id(self) -> int:
        return self._chain_id

    @property
    def rpc_url(self) -> str:
        return self._rpc_url

    @property
    def metadata(self) -> LocalMetadata:
        return self._metadata

    def create_encrypted_input(self, contract_address: str, user_address: str) -> LocalEncryptedInput:
        return LocalEncryptedInput(self, contract_address, user_address)

    def generate_keypair(self) -> EphemeralKeypair:
        return generate_keypair()

    def create_eip712(
        self,
        public_key: str,
        contract_addresses: Sequence[str],
        start_timestamp: int,
        duration_days: int,
    ) -> TypedData:
        return build_user_decrypt_typed_data(
            public_key,
            contract_addresses,
            start_timestamp,
            duration_days,
            chain_id=self._chain_id,
            verifying_contract=self._metadata.kms_verifier_address,
        )

    async def user_decrypt(
        self,
        pairs: Sequence[HandleContractPair],
        keypair: EphemeralKeypair,
        signature: str,
        contract_addresses: Sequence[str],
        user_address: str,
        start_timestamp: int,
        duration_days: int,
    ) -> dict[str, int]:
        typed = self.create_eip712(keypair.public_key, contract_addresses, start_timestamp, duration_days)
        user = to_checksum_address(user_address)
        try:
            signer = recover_signer(typed, signature)
        except Exception as exc:
            raise BackendRequestFailure(f"invalid authorization signature: {exc}") from exc
        if signer != user:
            raise BackendRequestFailure("authorization signature does not match user address")

        now = self._clock()
        if not start_timestamp <= now < start_timestamp + duration_days * SECONDS_PER_DAY:
            logger.debug("authorization window closed; omitting %d handle(s)", len(pairs))
            return {}

        bound = {to_checksum_address(address) for address in contract_addresses}
        result: dict[str, int] = {}
        for pair in pairs:
            handle = pair.handle.lower()
            contract = to_checksum_address(pair.contract_address)
            stored = self._store.get(handle)
            if stored is None or contract not in bound:
                continue
            if stored.contract_address != contract or stored.owner != user:
                continue
            result[handle] = stored.value
        return result

    def _encrypt(self, values: Sequence[int], contract_address: str, user_address: str) -> EncryptedPayload:
        sequence = next(self._sequence)
        digest = keccak(
            canonical_json_bytes(
                {
                    "acl": self._metadata.acl_address,
                    "chainId": self._chain_id,
                    "contract": contract_address,
                    "sequence": sequence,
                    "user": user_address,
                    "values": list(values),
                }
            )
        )
        handles = []
        for index, value in enumerate(values):
            handle = build_handle(keccak(digest + bytes([index])), index, self._chain_id)
            self._store["0x" + handle.hex()] = _StoredCiphertext(value, contract_address, user_address)
            handles.append(handle)

        attestation = keccak(bytes.fromhex(self._metadata.input_verifier_address[2:]) + digest)
        proof = pack_input_proof(handles, [attestation])
        logger.debug("local input #%d encrypted: %d handle(s)", sequence, len(handles))
        return EncryptedPayload(
            handles=tuple(handles),
            input_proof=proof,
            contract_address=contract_address,
            user_address=user_address,
        )

"""
Encryption backend interface — what a session ("instance") can do.

The homomorphic math is opaque to this package. A backend instance
exposes exactly the capabilities the session layer orchestrates:

    - create_encrypted_input(contract, user) -> EncryptedInput builder
    - generate_keypair() -> EphemeralKeypair
    - create_eip712(public_key, contracts, start, days) -> TypedData
    - user_decrypt(pairs, keypair, signature, ...) -> {handle: plaintext}

Two implementations:
    - LocalFhevmInstance (deterministic, no client-library fetch; test networks)
    - RelayerFhevmInstance (remote relayer service; production networks)

The ciphertext engine behind the relayer variant is a separate
protocol (CiphertextEngine) so the FHE math can be supplied by an
external library.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol, Sequence, runtime_checkable

from cryptography.hazmat.primitives.asymmetric.x25519 import X25519PrivateKey
from cryptography.hazmat.primitives.serialization import (
    Encoding,
    NoEncryption,
    PrivateFormat,
    PublicFormat,
)

from fhevm_session.eip712 import TypedData

# FHE type tag for 64-bit unsigned integers in a handle's type byte.
EUINT64_TYPE = 5
HANDLE_VERSION = 0
HANDLE_SIZE = 32


# =========================================================================
# Value types
# =========================================================================


@dataclass(frozen=True)
class EncryptedPayload:
    """Submittable ciphertext bundle.

    Attributes:
        handles: One 32-byte handle per encrypted value, in input order.
        input_proof: Validity proof binding the handles to one contract
            and one submitter.
        contract_address: Contract the payload is bound to.
        user_address: Submitter the payload is bound to.
    """

    handles: tuple[bytes, ...]
    input_proof: bytes
    contract_address: str
    user_address: str

    def __post_init__(self) -> None:
        if not self.handles:
            raise ValueError("payload must carry at least one handle")
        for handle in self.handles:
            if len(handle) != HANDLE_SIZE:
                raise ValueError(f"handle must be {HANDLE_SIZE} bytes, got {len(handle)}")

    @property
    def handle_hexes(self) -> tuple[str, ...]:
        return tuple("0x" + h.hex() for h in self.handles)


@dataclass(frozen=True)
class HandleContractPair:
    """A ciphertext handle and the contract that owns it."""

    handle: str
    contract_address: str

    def to_dict(self) -> dict[str, str]:
        return {"handle": self.handle, "contractAddress": self.contract_address}


@dataclass
class EphemeralKeypair:
    """Per-call X25519 key pair for decryption re-encryption.

    The private half lives in a bytearray so discard() can zero it in
    place. It is never serialized, logged or persisted.
    """

    public_key: str
    _private_key: bytearray = field(repr=False)
    _discarded: bool = field(default=False, repr=False)

    @property
    def private_key(self) -> bytes:
        if self._discarded:
            raise RuntimeError("ephemeral private key already discarded")
        return bytes(self._private_key)

    @property
    def discarded(self) -> bool:
        return self._discarded

    def discard(self) -> None:
        for i in range(len(self._private_key)):
            self._private_key[i] = 0
        self._discarded = True


def generate_keypair() -> EphemeralKeypair:
    """Fresh X25519 key pair. Public key is 0x-hex of the raw 32 bytes."""
    private = X25519PrivateKey.generate()
    public_raw = private.public_key().public_bytes(Encoding.Raw, PublicFormat.Raw)
    private_raw = private.private_bytes(Encoding.Raw, PrivateFormat.Raw, NoEncryption())
    return EphemeralKeypair(public_key="0x" + public_raw.hex(), _private_key=bytearray(private_raw))


def build_handle(digest: bytes, index: int, chain_id: int, fhe_type: int = EUINT64_TYPE) -> bytes:
    """Lay out a 32-byte handle.

    bytes 0..20 digest prefix, 21 index, 22..29 chain id (big-endian),
    30 FHE type, 31 version.
    """
    if not 0 <= index <= 255:
        raise ValueError(f"handle index out of range: {index}")
    return (
        digest[:21]
        + bytes([index])
        + chain_id.to_bytes(8, "big")
        + bytes([fhe_type, HANDLE_VERSION])
    )


def pack_input_proof(handles: Sequence[bytes], signatures: Sequence[bytes], extra_data: bytes = b"\x00") -> bytes:
    """numHandles || numSigners || handles || signatures || extraData."""
    if len(handles) > 255 or len(signatures) > 255:
        raise ValueError("too many handles or signatures for an input proof")
    return bytes([len(handles), len(signatures)]) + b"".join(handles) + b"".join(signatures) + extra_data


# =========================================================================
# Protocols
# =========================================================================


@runtime_checkable
class EncryptedInput(Protocol):
    """Builder for one encrypted input bound to (contract, user)."""

    def add64(self, value: int) -> "EncryptedInput":
        ...

    async def encrypt(self) -> EncryptedPayload:
        """Encrypt all added values. Complete payload or exception."""
        ...


@runtime_checkable
class FhevmInstance(Protocol):
    """An initialized encryption backend bound to one network."""

    @property
    def backend(self) -> str:
        """"local" or "relayer"."""
        ...

    @property
    def chain_id(self) -> int:
        ...

    def create_encrypted_input(self, contract_address: str, user_address: str) -> EncryptedInput:
        ...

    def generate_keypair(self) -> EphemeralKeypair:
        ...

    def create_eip712(
        self,
        public_key: str,
        contract_addresses: Sequence[str],
        start_timestamp: int,
        duration_days: int,
    ) -> TypedData:
        ...

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
        """Plaintexts for the handles the backend accepts.

        Handles failing ownership, contract binding or validity checks
        are omitted, not reported individually.
        """
        ...


@runtime_checkable
class CiphertextEngine(Protocol):
    """External FHE math used by the relayer backend.

    Implementations wrap a real FHE library; this package never
    reimplements ciphertext algebra.
    """

    def initialize(self, public_key: bytes, params: dict[str, Any]) -> None:
        """One-time setup with the network's public key material."""
        ...

    def encrypt_u64(
        self,
        values: Sequence[int],
        contract_address: str,
        user_address: str,
        acl_address: str,
        chain_id: int,
    ) -> bytes:
        """Ciphertext with its proof of knowledge, ready for input-proof."""
        ...

    def decrypt_shares(
        self,
        shares: Sequence[dict[str, Any]],
        handles: Sequence[str],
        private_key: bytes,
        public_key: str,
    ) -> dict[str, int]:
        """Combine re-encrypted shares into plaintexts keyed by handle."""
        ...

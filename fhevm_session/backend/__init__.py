"""
Encryption backends.

    - ``LocalFhevmInstance`` — deterministic, built from local node metadata.
    - ``RelayerSDKLoader`` / ``RelayerSDK`` / ``RelayerFhevmInstance`` —
      remote relayer service.
    - ``FhevmInstance``, ``EncryptedInput``, ``CiphertextEngine`` — protocols.
"""

from fhevm_session.backend.base import (
    CiphertextEngine,
    EncryptedInput,
    EncryptedPayload,
    EphemeralKeypair,
    FhevmInstance,
    HandleContractPair,
    generate_keypair,
)
from fhevm_session.backend.loader import RelayerSDKLoader, resolve_engine
from fhevm_session.backend.local import LOCAL_BACKEND, LocalFhevmInstance, LocalMetadata
from fhevm_session.backend.relayer import RELAYER_BACKEND, RelayerFhevmInstance, RelayerSDK

__all__ = [
    "CiphertextEngine",
    "EncryptedInput",
    "EncryptedPayload",
    "EphemeralKeypair",
    "FhevmInstance",
    "HandleContractPair",
    "LOCAL_BACKEND",
    "LocalFhevmInstance",
    "LocalMetadata",
    "RELAYER_BACKEND",
    "RelayerFhevmInstance",
    "RelayerSDK",
    "RelayerSDKLoader",
    "generate_keypair",
    "resolve_engine",
]

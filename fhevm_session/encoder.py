"""
Input encoding — plaintext to a submittable ciphertext bundle.

encode() binds one 64-bit unsigned value to exactly one contract and
one submitter. Both addresses are passed to the backend unmodified
(apart from checksumming); the backend embeds them in the proof, so a
payload encoded for contract A cannot be submitted against contract B.

Encoding is atomic: a complete EncryptedPayload or an exception, never
a partial result. Calls on one encoder are serialized.
"""

from __future__ import annotations

import asyncio
import logging

from eth_utils import is_address

from fhevm_session.backend.base import EncryptedPayload
from fhevm_session.contract import UINT64_MAX
from fhevm_session.errors import BackendRequestFailure, FhevmSessionError
from fhevm_session.session import Session, require_ready

logger = logging.getLogger("fhevm_session.encoder")


class InputEncoder:
    """Encodes plaintext values through the active session."""

    def __init__(self) -> None:
        self._lock = asyncio.Lock()

    async def encode(
        self,
        session: Session | None,
        value: int,
        contract_address: str,
        submitter_address: str,
    ) -> EncryptedPayload:
        """Encrypt ``value`` for ``contract_address`` / ``submitter_address``.

        Raises:
            InvalidSession: If ``session`` is missing or not ready.
            ValueError: If ``value`` is outside uint64 or an address is
                malformed.
            BackendRequestFailure: If the backend fails to encrypt.
        """
        ready = require_ready(session)
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValueError(f"value must be an int, got {type(value).__name__}")
        if not 0 <= value <= UINT64_MAX:
            raise ValueError(f"value out of uint64 range: {value}")
        for name, address in (("contract_address", contract_address), ("submitter_address", submitter_address)):
            if not is_address(address):
                raise ValueError(f"{name} is not a valid address: {address!r}")

        async with self._lock:
            builder = ready.instance.create_encrypted_input(contract_address, submitter_address)
            builder.add64(value)
            try:
                payload = await builder.encrypt()
            except FhevmSessionError:
                raise
            except Exception as exc:
                raise BackendRequestFailure(f"encryption failed: {exc}") from exc

        logger.debug(
            "encoded value for contract=%s submitter=%s handles=%s",
            payload.contract_address,
            payload.user_address,
            payload.handle_hexes,
        )
        return payload

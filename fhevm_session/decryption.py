"""
Decryption authorization — ephemeral keys, signed grants, batched exchange.

One request_decryption() call:

    1. generate a fresh ephemeral key pair (never reused across calls)
    2. validity_start = now, validity_duration_days = configured window
    3. build the typed authorization statement over
       (public key, distinct contracts, start, duration)
    4. have the wallet sign it (may wait indefinitely on the user)
    5. send signature + statement parameters + public key + every handle
       to the backend in one batched exchange
    6. keep only requested handles whose contract is bound by the grant

Handles the backend does not return are "not authorized": logged, and
either left out of the mapping or, with ``strict=True``, raised as
Unauthorized. A transport or backend failure is raised as such and is
never confused with absence.

The ephemeral private key is discarded on every exit path. Caching of
decrypted values belongs to the caller (see records.ClearValueCache).
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Callable, Iterable, Sequence

from eth_utils import to_checksum_address

from fhevm_session.backend.base import EphemeralKeypair, HandleContractPair
from fhevm_session.config import DEFAULT_DECRYPTION_DURATION_DAYS
from fhevm_session.eip712 import TypedData
from fhevm_session.errors import (
    Cancelled,
    FhevmSessionError,
    Unauthorized,
    classify_rpc_error,
)
from fhevm_session.ledger.signer import WalletSigner
from fhevm_session.session import Session, require_ready

logger = logging.getLogger("fhevm_session.decryption")

SECONDS_PER_DAY = 86400


@dataclass
class AuthorizationGrant:
    """A signed, time-boxed permission to decrypt handles.

    Lives only for the duration of one request_decryption() call.

    Attributes:
        keypair: Ephemeral key pair; its private half is discarded when
            the call resolves.
        typed_data: The statement that was signed.
        signature: Wallet signature over ``typed_data``.
        validity_start: Unix seconds.
        validity_duration_days: Window length in days.
        bound_contracts: Contracts whose handles the grant covers.
    """

    keypair: EphemeralKeypair
    typed_data: TypedData
    signature: str
    validity_start: int
    validity_duration_days: int
    bound_contracts: frozenset[str]

    @property
    def expires_at(self) -> int:
        return self.validity_start + self.validity_duration_days * SECONDS_PER_DAY

    def covers(self, pair: HandleContractPair, now: float) -> bool:
        """Whether ``pair`` is within this grant's contracts and window."""
        return (
            to_checksum_address(pair.contract_address) in self.bound_contracts
            and self.validity_start <= now < self.expires_at
        )


def distinct_contracts(pairs: Iterable[HandleContractPair]) -> list[str]:
    """Checksummed contract addresses of ``pairs``, first-seen order."""
    return _distinct_addresses(pair.contract_address for pair in pairs)


def _distinct_addresses(addresses: Iterable[str]) -> list[str]:
    seen: dict[str, None] = {}
    for address in addresses:
        seen.setdefault(to_checksum_address(address), None)
    return list(seen)


class DecryptionAuthorizationManager:
    """Exchanges signed grants for plaintexts.

    Args:
        duration_days: Authorization window. Longer windows mean fewer
            prompts if the statement is reused by a backend, but a leaked
            ephemeral key stays usable for that long.
        clock: Returns unix seconds. Inject for tests.
    """

    def __init__(
        self,
        *,
        duration_days: int = DEFAULT_DECRYPTION_DURATION_DAYS,
        clock: Callable[[], float] | None = None,
    ) -> None:
        if duration_days <= 0:
            raise ValueError(f"duration_days must be positive, got: {duration_days}")
        self._duration_days = duration_days
        self._clock = clock or time.time
        self._lock = asyncio.Lock()

    @property
    def duration_days(self) -> int:
        return self._duration_days

    async def request_decryption(
        self,
        session: Session | None,
        handles: Sequence[HandleContractPair],
        signer: WalletSigner,
        *,
        bound_contracts: Sequence[str] | None = None,
        strict: bool = False,
        signal: asyncio.Event | None = None,
    ) -> dict[str, int]:
        """Decrypt ``handles`` with one signed authorization.

        Args:
            session: Ready session.
            handles: Handles with their owning contracts. All are sent.
            signer: Wallet of the identity that owns the handles.
            bound_contracts: Contracts to bind the grant to. Defaults to
                the distinct contracts referenced by ``handles``.
            strict: Raise Unauthorized instead of omitting handles.
            signal: Checked before signing and before the exchange.

        Returns:
            Lowercase 0x-hex handle -> plaintext, for authorized handles
            only.

        Raises:
            InvalidSession, SignerDeclined, BackendRequestFailure,
            Cancelled, Unauthorized (strict only).
            ValueError: If ``bound_contracts`` is given but empty.
        """
        ready = require_ready(session)
        if not handles:
            return {}

        if bound_contracts is None:
            contracts = distinct_contracts(handles)
        else:
            contracts = _distinct_addresses(bound_contracts)
            if not contracts:
                raise ValueError("bound_contracts must name at least one contract")

        async with self._lock:
            keypair = ready.instance.generate_keypair()
            try:
                grant = await self._authorize(ready, keypair, contracts, signer, signal)
                _check(signal)
                user_address = await signer.get_address()
                response = await ready.instance.user_decrypt(
                    list(handles),
                    keypair,
                    grant.signature,
                    list(contracts),
                    user_address,
                    grant.validity_start,
                    grant.validity_duration_days,
                )
                now = self._clock()
            finally:
                keypair.discard()

        return self._reconcile(handles, response, grant, now, strict)

    async def _authorize(
        self,
        session: Session,
        keypair: EphemeralKeypair,
        contracts: list[str],
        signer: WalletSigner,
        signal: asyncio.Event | None,
    ) -> AuthorizationGrant:
        start = int(self._clock())
        typed = session.instance.create_eip712(keypair.public_key, contracts, start, self._duration_days)
        _check(signal)
        try:
            signature = await signer.sign_typed_data(typed.domain, typed.signing_types(), typed.message)
        except FhevmSessionError:
            raise
        except Exception as exc:
            raise classify_rpc_error(exc) from exc
        logger.debug(
            "decryption grant signed: public_key=%s contracts=%s window=%dd",
            keypair.public_key,
            contracts,
            self._duration_days,
        )
        return AuthorizationGrant(
            keypair=keypair,
            typed_data=typed,
            signature=signature,
            validity_start=start,
            validity_duration_days=self._duration_days,
            bound_contracts=frozenset(contracts),
        )

    def _reconcile(
        self,
        requested: Sequence[HandleContractPair],
        response: dict[str, int],
        grant: AuthorizationGrant,
        now: float,
        strict: bool,
    ) -> dict[str, int]:
        returned = {handle.lower(): value for handle, value in response.items()}
        result: dict[str, int] = {}
        omitted: list[str] = []
        for pair in requested:
            handle = pair.handle.lower()
            if handle in returned and grant.covers(pair, now):
                result[handle] = int(returned[handle])
            elif handle not in result:
                omitted.append(handle)

        if omitted:
            logger.warning("%d handle(s) not authorized for decryption: %s", len(omitted), omitted)
            if strict:
                raise Unauthorized(omitted)
        return result


def _check(signal: asyncio.Event | None) -> None:
    if signal is not None and signal.is_set():
        raise Cancelled("decryption cancelled by caller")

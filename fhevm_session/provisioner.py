"""
Session provisioning — the status state machine that yields a Session.

One provision() call is one attempt:

    idle -> resolving-network -> creating-session -> ready          (local)
    idle -> resolving-network -> backend-loading
         -> backend-initializing -> creating-session -> ready       (remote)

Any failing step moves the attempt to ``error`` and raises the taxonomy
error for that step, with ``step`` set to the status it failed in and
the original exception chained. There is no automatic retry; the caller
calls provision() again.

Cancellation:
    provision(signal=event) checks ``event.is_set()`` at every
    transition boundary. A set signal ends the attempt with Cancelled
    instead of ready. invalidate() during an attempt has the same
    effect, since the session being built is already stale; the stale
    attempt no longer owns the status, which returns to idle.

Concurrency policy (join):
    Only one current attempt runs per provisioner. A provision() call
    made while it is in flight awaits that attempt and receives its result
    or its exception; its own ``signal`` is ignored. A call made after a
    successful attempt returns the still-valid session without
    re-provisioning.

Observers:
    Listeners registered with add_listener() are called synchronously
    with each new status. They are informational only: an exception
    raised by a listener is logged and does not affect the attempt.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable

from fhevm_session.backend.base import FhevmInstance
from fhevm_session.backend.loader import RelayerSDKLoader
from fhevm_session.backend.local import LocalFhevmInstance
from fhevm_session.config import FhevmSettings
from fhevm_session.errors import (
    BackendInitFailure,
    BackendLoadFailure,
    Cancelled,
    FhevmSessionError,
    NetworkUnavailable,
)
from fhevm_session.ledger.client import LedgerClient
from fhevm_session.network import NetworkInfo, NetworkResolver
from fhevm_session.session import Session, SessionStatus, can_transition
from fhevm_session.transport import HttpTransport, HttpxTransport

logger = logging.getLogger("fhevm_session.provisioner")

StatusListener = Callable[[SessionStatus], None]

# Error class used when a non-taxonomy exception escapes a step.
_STEP_ERRORS: dict[SessionStatus, type[FhevmSessionError]] = {
    SessionStatus.IDLE: NetworkUnavailable,
    SessionStatus.RESOLVING_NETWORK: NetworkUnavailable,
    SessionStatus.BACKEND_LOADING: BackendLoadFailure,
    SessionStatus.BACKEND_INITIALIZING: BackendInitFailure,
    SessionStatus.CREATING_SESSION: BackendInitFailure,
}


class SessionProvisioner:
    """Owns the process's single Session and the attempt that builds it.

    Args:
        ledger: Connection the session is bound to.
        settings: Local-network map, relayer config and engine.
        resolver: Override the NetworkResolver (tests).
        loader: Override the RelayerSDKLoader (tests).
        transport: HTTP transport shared by the default resolver/loader.
        clock: Unix-seconds clock handed to local instances.
    """

    def __init__(
        self,
        ledger: LedgerClient,
        settings: FhevmSettings | None = None,
        *,
        resolver: NetworkResolver | None = None,
        loader: RelayerSDKLoader | None = None,
        transport: HttpTransport | None = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self._ledger = ledger
        self._settings = settings or FhevmSettings()
        transport = transport or HttpxTransport(timeout=self._settings.http_timeout)
        self._resolver = resolver or NetworkResolver(
            ledger, self._settings.local_networks, transport
        )
        self._loader = loader or RelayerSDKLoader(
            self._settings.relayer.keyurl, self._settings.engine, transport
        )
        self._clock = clock or time.time

        self._status = SessionStatus.IDLE
        self._history: list[SessionStatus] = [SessionStatus.IDLE]
        self._session: Session | None = None
        self._last_error: FhevmSessionError | None = None
        self._inflight: asyncio.Future[Session] | None = None
        self._generation = 0
        self._listeners: list[StatusListener] = []

    # -----------------------------------------------------------------
    # Observation
    # -----------------------------------------------------------------

    @property
    def status(self) -> SessionStatus:
        return self._status

    @property
    def history(self) -> tuple[SessionStatus, ...]:
        """Statuses of the current (or last) attempt, in order."""
        return tuple(self._history)

    @property
    def session(self) -> Session | None:
        return self._session

    @property
    def last_error(self) -> FhevmSessionError | None:
        return self._last_error

    def add_listener(self, listener: StatusListener) -> Callable[[], None]:
        """Register a status listener. Returns a function that removes it."""
        self._listeners.append(listener)
        return lambda: self.remove_listener(listener)

    def remove_listener(self, listener: StatusListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    # -----------------------------------------------------------------
    # Provisioning
    # -----------------------------------------------------------------

    async def provision(self, *, signal: asyncio.Event | None = None) -> Session:
        """Provision (or join, or reuse) the session.

        Raises:
            Cancelled: If ``signal`` was set or the provisioner was
                invalidated before the attempt reached ready.
            NetworkUnavailable, BackendLoadFailure, BackendInitFailure:
                On failure of the corresponding step.
        """
        if self._inflight is not None and not self._inflight.done():
            logger.debug("joining in-flight provisioning attempt")
            return await asyncio.shield(self._inflight)

        if self._session is not None and self._status is SessionStatus.READY:
            return self._session

        self._inflight = asyncio.ensure_future(self._attempt(signal, self._generation))
        return await asyncio.shield(self._inflight)

    def invalidate(self, reason: str) -> None:
        """Drop the current session (network or account changed).

        An in-flight attempt will end with Cancelled for the callers
        already awaiting it. It is detached, so the next provision()
        starts a new attempt instead of joining the stale one.
        """
        self._generation += 1
        if self._session is not None:
            self._session.invalidate(reason)
            logger.info("session %d invalidated: %s", self._session.id, reason)
            self._session = None
        self._inflight = None
        self._status = SessionStatus.IDLE
        self._history = [SessionStatus.IDLE]
        self._notify(SessionStatus.IDLE)

    async def _attempt(self, signal: asyncio.Event | None, generation: int) -> Session:
        if generation == self._generation:
            self._status = SessionStatus.IDLE
            self._history = [SessionStatus.IDLE]
            self._last_error = None
        reached = SessionStatus.IDLE

        def check() -> None:
            if signal is not None and signal.is_set():
                raise Cancelled("provisioning cancelled by caller")
            if generation != self._generation:
                raise Cancelled("provisioning superseded by invalidation")

        def advance(target: SessionStatus) -> None:
            nonlocal reached
            self._transition(target)
            reached = target

        try:
            check()
            advance(SessionStatus.RESOLVING_NETWORK)
            network = await self._resolver.resolve()
            check()

            if network.is_local_backend:
                advance(SessionStatus.CREATING_SESSION)
                instance: FhevmInstance = self._create_local_instance(network)
            else:
                advance(SessionStatus.BACKEND_LOADING)
                sdk = await self._loader.load()
                check()
                advance(SessionStatus.BACKEND_INITIALIZING)
                await sdk.init_sdk()
                check()
                advance(SessionStatus.CREATING_SESSION)
                instance = await sdk.create_instance(self._settings.relayer, self._ledger)
            check()

            session = Session(instance, network)
            self._session = session
            advance(SessionStatus.READY)
            logger.info(
                "session %d ready: backend=%s network=%d",
                session.id,
                instance.backend,
                network.network_id,
            )
            return session
        except FhevmSessionError as exc:
            if exc.step is None:
                exc.step = str(reached)
            self._fail(exc, generation)
            raise
        except Exception as exc:
            error = _STEP_ERRORS[reached](f"{type(exc).__name__}: {exc}", step=str(reached))
            self._fail(error, generation)
            raise error from exc

    def _create_local_instance(self, network: NetworkInfo) -> LocalFhevmInstance:
        if network.metadata is None or network.backend_endpoint is None:
            raise BackendInitFailure("local backend selected without metadata")
        return LocalFhevmInstance(
            network.backend_endpoint,
            network.network_id,
            network.metadata,
            clock=self._clock,
        )

    def _transition(self, target: SessionStatus) -> None:
        if not can_transition(self._status, target):
            raise RuntimeError(f"illegal status transition {self._status} -> {target}")
        self._status = target
        self._history.append(target)
        logger.info("provisioning status: %s", target)
        self._notify(target)

    def _fail(self, error: FhevmSessionError, generation: int) -> None:
        if generation != self._generation:
            # Superseded attempts no longer own the status.
            logger.debug("superseded provisioning attempt ended at %s: %s", error.step, error.detail)
            return
        self._last_error = error
        logger.warning("provisioning failed at %s: %s", error.step, error.detail)
        self._transition(SessionStatus.ERROR)

    def _notify(self, status: SessionStatus) -> None:
        for listener in list(self._listeners):
            try:
                listener(status)
            except Exception:
                logger.warning("status listener %r failed", listener, exc_info=True)

"""
Session model and provisioning status.

A Session is the ready-to-use encryption context ("instance") for one
network connection. It is created by SessionProvisioner, owned by
whoever holds the provisioner, and invalidated on network or account
change. Once invalidated it never becomes ready again; a new
provisioning attempt produces a new Session.

Status transitions (per provisioning attempt):

    idle -> resolving-network
    resolving-network -> creating-session        (local backend)
    resolving-network -> backend-loading         (remote backend)
    backend-loading -> backend-initializing
    backend-initializing -> creating-session
    creating-session -> ready
    any non-terminal -> error                    (terminal for the attempt)

idle -> error happens when an attempt is cancelled before it starts.
"""

from __future__ import annotations

import itertools
from enum import StrEnum

from fhevm_session.backend.base import FhevmInstance
from fhevm_session.errors import InvalidSession
from fhevm_session.network import NetworkInfo


class SessionStatus(StrEnum):
    IDLE = "idle"
    RESOLVING_NETWORK = "resolving-network"
    BACKEND_LOADING = "backend-loading"
    BACKEND_INITIALIZING = "backend-initializing"
    CREATING_SESSION = "creating-session"
    READY = "ready"
    ERROR = "error"


_TRANSITIONS: dict[SessionStatus, frozenset[SessionStatus]] = {
    SessionStatus.IDLE: frozenset({SessionStatus.RESOLVING_NETWORK, SessionStatus.ERROR}),
    SessionStatus.RESOLVING_NETWORK: frozenset(
        {SessionStatus.CREATING_SESSION, SessionStatus.BACKEND_LOADING, SessionStatus.ERROR}
    ),
    SessionStatus.BACKEND_LOADING: frozenset(
        {SessionStatus.BACKEND_INITIALIZING, SessionStatus.ERROR}
    ),
    SessionStatus.BACKEND_INITIALIZING: frozenset(
        {SessionStatus.CREATING_SESSION, SessionStatus.ERROR}
    ),
    SessionStatus.CREATING_SESSION: frozenset({SessionStatus.READY, SessionStatus.ERROR}),
    SessionStatus.READY: frozenset(),
    SessionStatus.ERROR: frozenset(),
}


def can_transition(current: SessionStatus, target: SessionStatus) -> bool:
    """Whether ``current -> target`` is allowed within one attempt."""
    return target in _TRANSITIONS[current]


_session_ids = itertools.count(1)


class Session:
    """An initialized encryption backend bound to one network.

    Args:
        instance: The backend instance.
        network: Resolution result the instance was built for.
    """

    def __init__(self, instance: FhevmInstance, network: NetworkInfo) -> None:
        self._id = next(_session_ids)
        self._instance = instance
        self._network = network
        self._invalidated_reason: str | None = None

    def __repr__(self) -> str:
        return (
            f"Session(id={self._id}, backend={self._instance.backend!r}, "
            f"network={self._network.network_id}, status={self.status})"
        )

    @property
    def id(self) -> int:
        return self._id

    @property
    def instance(self) -> FhevmInstance:
        return self._instance

    @property
    def network(self) -> NetworkInfo:
        return self._network

    @property
    def status(self) -> SessionStatus:
        if self._invalidated_reason is not None:
            return SessionStatus.IDLE
        return SessionStatus.READY

    @property
    def invalidated_reason(self) -> str | None:
        return self._invalidated_reason

    def invalidate(self, reason: str) -> None:
        if self._invalidated_reason is None:
            self._invalidated_reason = reason


def require_ready(session: Session | None) -> Session:
    """Return ``session`` if it is ready, else raise InvalidSession."""
    if session is None:
        raise InvalidSession("no session; provision one first")
    if session.status is not SessionStatus.READY:
        raise InvalidSession(
            f"session {session.id} is {session.status} ({session.invalidated_reason})"
        )
    return session

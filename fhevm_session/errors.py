"""
Error taxonomy for the encrypted session layer.

Every failure a caller can observe is one of a small set of kinds.
Callers branch on ``kind`` (or the exception class) to pick a message
and on ``retry`` to decide whether trying again makes sense.

Kinds and retry hints:
    - NETWORK_UNAVAILABLE     after delay  (no provider, node unreachable)
    - BACKEND_LOAD_FAILURE    after delay  (relayer client library unreachable/malformed)
    - BACKEND_INIT_FAILURE    after delay  (one-time initialization failed)
    - BACKEND_REQUEST_FAILURE after delay  (relayer rejected a request)
    - INVALID_SESSION         never        (operation outside the ready state)
    - SIGNER_DECLINED         immediate    (user rejected a prompt)
    - TRANSACTION_REVERTED    never        (on-chain rejection)
    - LEDGER_REJECTED         after delay  (node refused the request)
    - CONFIRMATION_TIMEOUT    after delay  (tx not confirmed in time)
    - CANCELLED               immediate    (caller aborted)
    - UNAUTHORIZED            never        (handle omitted from decryption)

The classify_* helpers are pure: they turn raw transport / JSON-RPC
failures into the taxonomy and never perform I/O.
"""

from __future__ import annotations

from collections.abc import Iterable
from enum import StrEnum

# EIP-1193 "user rejected request"
USER_REJECTED_CODE = 4001

# geth / hardhat revert code for eth_call and eth_estimateGas
EXECUTION_REVERTED_CODE = 3


class ErrorKind(StrEnum):
    """Stable, machine-readable failure categories."""

    NETWORK_UNAVAILABLE = "NETWORK_UNAVAILABLE"
    BACKEND_LOAD_FAILURE = "BACKEND_LOAD_FAILURE"
    BACKEND_INIT_FAILURE = "BACKEND_INIT_FAILURE"
    BACKEND_REQUEST_FAILURE = "BACKEND_REQUEST_FAILURE"
    INVALID_SESSION = "INVALID_SESSION"
    SIGNER_DECLINED = "SIGNER_DECLINED"
    TRANSACTION_REVERTED = "TRANSACTION_REVERTED"
    LEDGER_REJECTED = "LEDGER_REJECTED"
    CONFIRMATION_TIMEOUT = "CONFIRMATION_TIMEOUT"
    CANCELLED = "CANCELLED"
    UNAUTHORIZED = "UNAUTHORIZED"


class RetryHint(StrEnum):
    """Whether retrying the failed operation is meaningful."""

    IMMEDIATE = "IMMEDIATE"
    AFTER_DELAY = "AFTER_DELAY"
    NEVER = "NEVER"


# =========================================================================
# Exceptions
# =========================================================================


class FhevmSessionError(Exception):
    """Base class for all user-visible failures.

    Attributes:
        kind: Stable failure category.
        retry: Retry hint for the caller.
        detail: Human-readable detail. Never contains key material.
        step: Provisioning status name where the failure originated,
            or None outside provisioning.
    """

    kind: ErrorKind = ErrorKind.NETWORK_UNAVAILABLE
    retry: RetryHint = RetryHint.AFTER_DELAY

    def __init__(self, detail: str = "", *, step: str | None = None) -> None:
        self.detail = detail
        self.step = step
        super().__init__(detail or self.kind.value)

    def __str__(self) -> str:
        base = self.detail or self.kind.value
        if self.step is not None:
            return f"[{self.step}] {base}"
        return base

    def to_dict(self) -> dict[str, object]:
        result: dict[str, object] = {
            "kind": str(self.kind),
            "retry": str(self.retry),
        }
        if self.detail:
            result["detail"] = self.detail
        if self.step is not None:
            result["step"] = self.step
        return result


class NetworkUnavailable(FhevmSessionError):
    kind = ErrorKind.NETWORK_UNAVAILABLE
    retry = RetryHint.AFTER_DELAY


class BackendLoadFailure(FhevmSessionError):
    kind = ErrorKind.BACKEND_LOAD_FAILURE
    retry = RetryHint.AFTER_DELAY


class BackendInitFailure(FhevmSessionError):
    kind = ErrorKind.BACKEND_INIT_FAILURE
    retry = RetryHint.AFTER_DELAY


class BackendRequestFailure(FhevmSessionError):
    kind = ErrorKind.BACKEND_REQUEST_FAILURE
    retry = RetryHint.AFTER_DELAY


class InvalidSession(FhevmSessionError):
    kind = ErrorKind.INVALID_SESSION
    retry = RetryHint.NEVER


class SignerDeclined(FhevmSessionError):
    kind = ErrorKind.SIGNER_DECLINED
    retry = RetryHint.IMMEDIATE


class TransactionReverted(FhevmSessionError):
    """On-chain rejection. ``tx_hash`` is set when the tx was mined."""

    kind = ErrorKind.TRANSACTION_REVERTED
    retry = RetryHint.NEVER

    def __init__(
        self,
        detail: str = "",
        *,
        tx_hash: str | None = None,
        step: str | None = None,
    ) -> None:
        self.tx_hash = tx_hash
        super().__init__(detail, step=step)


class LedgerRejected(FhevmSessionError):
    kind = ErrorKind.LEDGER_REJECTED
    retry = RetryHint.AFTER_DELAY


class ConfirmationTimeout(FhevmSessionError):
    kind = ErrorKind.CONFIRMATION_TIMEOUT
    retry = RetryHint.AFTER_DELAY

    def __init__(self, detail: str = "", *, tx_hash: str | None = None) -> None:
        self.tx_hash = tx_hash
        super().__init__(detail)


class Cancelled(FhevmSessionError):
    kind = ErrorKind.CANCELLED
    retry = RetryHint.IMMEDIATE


class Unauthorized(FhevmSessionError):
    """One or more handles were omitted from a decryption response."""

    kind = ErrorKind.UNAUTHORIZED
    retry = RetryHint.NEVER

    def __init__(self, handles: Iterable[str]) -> None:
        self.handles = tuple(handles)
        super().__init__(f"not authorized to decrypt: {', '.join(self.handles)}")


class JsonRpcError(Exception):
    """A JSON-RPC ``error`` envelope returned by a node or wallet.

    Internal: components classify it with classify_rpc_error() before
    it reaches a caller.
    """

    def __init__(self, code: int, message: str, data: object = None) -> None:
        self.code = code
        self.message = message
        self.data = data
        super().__init__(f"JSON-RPC error {code}: {message}")


# =========================================================================
# Classification (pure)
# =========================================================================


def _is_transport_error(exc: BaseException) -> bool:
    import httpx

    return isinstance(exc, (httpx.TransportError, httpx.HTTPStatusError, OSError))


def classify_rpc_error(exc: BaseException) -> FhevmSessionError:
    """Map a raw ledger/wallet failure to the error taxonomy.

    Args:
        exc: Exception raised by a transport, JSON-RPC client or signer.

    Returns:
        A FhevmSessionError instance. Taxonomy errors pass through
        unchanged. The caller chains the original with ``from exc``.
    """
    if isinstance(exc, FhevmSessionError):
        return exc

    if isinstance(exc, JsonRpcError):
        if exc.code == USER_REJECTED_CODE:
            return SignerDeclined(exc.message)
        if exc.code == EXECUTION_REVERTED_CODE or "revert" in exc.message.lower():
            return TransactionReverted(exc.message)
        return LedgerRejected(f"code={exc.code}; {exc.message}")

    if _is_transport_error(exc):
        return NetworkUnavailable(f"{type(exc).__name__}: {exc}")

    return LedgerRejected(f"{type(exc).__name__}: {exc}")

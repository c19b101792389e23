"""
fhevm-session: Client-side encrypted session and authorization layer.

Every encrypted value is:
- encoded through a ready session
- bound to one contract and one submitter
- submitted and confirmed on the ledger
- decrypted only under a signed, time-boxed grant

Nothing is persisted beyond the client process.
"""

__version__ = "0.1.0"

from fhevm_session.backend import (
    EncryptedPayload,
    EphemeralKeypair,
    FhevmInstance,
    HandleContractPair,
    LocalFhevmInstance,
    RelayerFhevmInstance,
)
from fhevm_session.client import FhevmClient, SubmittedResult
from fhevm_session.config import FhevmSettings, RelayerConfig
from fhevm_session.decryption import AuthorizationGrant, DecryptionAuthorizationManager
from fhevm_session.encoder import InputEncoder
from fhevm_session.errors import (
    BackendInitFailure,
    BackendLoadFailure,
    BackendRequestFailure,
    Cancelled,
    ConfirmationTimeout,
    ErrorKind,
    FhevmSessionError,
    InvalidSession,
    LedgerRejected,
    NetworkUnavailable,
    RetryHint,
    SignerDeclined,
    TransactionReverted,
    Unauthorized,
)
from fhevm_session.ledger import (
    EthJsonRpcClient,
    LocalAccountSigner,
    NodeAccountSigner,
    TransactionReceipt,
    WalletSigner,
)
from fhevm_session.network import NetworkInfo, NetworkResolver
from fhevm_session.provisioner import SessionProvisioner
from fhevm_session.records import ClearValueCache, Record, RecordIndexer, reveal_records
from fhevm_session.session import Session, SessionStatus
from fhevm_session.submission import SubmissionCoordinator

__all__ = [
    "AuthorizationGrant",
    "BackendInitFailure",
    "BackendLoadFailure",
    "BackendRequestFailure",
    "Cancelled",
    "ClearValueCache",
    "ConfirmationTimeout",
    "DecryptionAuthorizationManager",
    "EncryptedPayload",
    "EphemeralKeypair",
    "ErrorKind",
    "EthJsonRpcClient",
    "FhevmClient",
    "FhevmInstance",
    "FhevmSessionError",
    "FhevmSettings",
    "HandleContractPair",
    "InputEncoder",
    "InvalidSession",
    "LedgerRejected",
    "LocalAccountSigner",
    "LocalFhevmInstance",
    "NetworkInfo",
    "NetworkResolver",
    "NetworkUnavailable",
    "NodeAccountSigner",
    "Record",
    "RecordIndexer",
    "RelayerConfig",
    "RelayerFhevmInstance",
    "RetryHint",
    "Session",
    "SessionProvisioner",
    "SessionStatus",
    "SignerDeclined",
    "SubmissionCoordinator",
    "SubmittedResult",
    "TransactionReceipt",
    "TransactionReverted",
    "Unauthorized",
    "WalletSigner",
    "__version__",
    "reveal_records",
]

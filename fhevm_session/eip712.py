"""
Typed-data authorization statement for user decryption.

Builds the EIP-712 statement a user signs to let the backend re-encrypt
ciphertext handles under an ephemeral public key:

    UserDecryptRequestVerification(
        bytes publicKey,
        address[] contractAddresses,
        uint256 startTimestamp,
        uint256 durationDays,
        bytes extraData)

    domain = {name: "Decryption", version: "1", chainId, verifyingContract}

The builder is pure and deterministic: identical inputs always produce
an identical statement, so the backend can rebuild and verify it.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Sequence

from eth_account import Account
from eth_account.messages import encode_typed_data
from eth_utils import to_checksum_address

DOMAIN_NAME = "Decryption"
DOMAIN_VERSION = "1"
USER_DECRYPT_PRIMARY_TYPE = "UserDecryptRequestVerification"
DEFAULT_EXTRA_DATA = "0x00"

EIP712_DOMAIN_FIELDS: tuple[tuple[str, str], ...] = (
    ("name", "string"),
    ("version", "string"),
    ("chainId", "uint256"),
    ("verifyingContract", "address"),
    ("salt", "bytes32"),
)

USER_DECRYPT_TYPES: dict[str, list[dict[str, str]]] = {
    USER_DECRYPT_PRIMARY_TYPE: [
        {"name": "publicKey", "type": "bytes"},
        {"name": "contractAddresses", "type": "address[]"},
        {"name": "startTimestamp", "type": "uint256"},
        {"name": "durationDays", "type": "uint256"},
        {"name": "extraData", "type": "bytes"},
    ],
}


@dataclass(frozen=True)
class TypedData:
    """An EIP-712 statement split the way wallets expect it."""

    domain: dict[str, Any]
    types: dict[str, list[dict[str, str]]]
    primary_type: str
    message: dict[str, Any]

    def signing_types(self) -> dict[str, list[dict[str, str]]]:
        """Types without EIP712Domain (ethers/eth-account convention)."""
        return {name: fields for name, fields in self.types.items() if name != "EIP712Domain"}

    def to_dict(self) -> dict[str, Any]:
        """Full eth_signTypedData_v4 payload."""
        return full_typed_data(self.domain, self.signing_types(), self.message, self.primary_type)


def _hex(value: str) -> str:
    return value if value.startswith("0x") else "0x" + value


def build_user_decrypt_typed_data(
    public_key: str,
    contract_addresses: Sequence[str],
    start_timestamp: int,
    duration_days: int,
    *,
    chain_id: int,
    verifying_contract: str,
    extra_data: str = DEFAULT_EXTRA_DATA,
) -> TypedData:
    """Build the decryption authorization statement.

    Args:
        public_key: Ephemeral public key (hex, with or without 0x).
        contract_addresses: Distinct contracts the grant is bound to, in
            caller order.
        start_timestamp: Unix seconds when validity starts.
        duration_days: Validity window in days.
        chain_id: Chain id of the domain (the decryption gateway chain).
        verifying_contract: Decryption verifier contract address.
        extra_data: Opaque extra bytes (hex). Default "0x00".

    Raises:
        ValueError: If no contract is given, a contract repeats, or the
            window is not positive.
    """
    if not contract_addresses:
        raise ValueError("contract_addresses must be non-empty")
    if duration_days <= 0:
        raise ValueError(f"duration_days must be positive, got: {duration_days}")
    if start_timestamp < 0:
        raise ValueError(f"start_timestamp must be >= 0, got: {start_timestamp}")

    contracts = [to_checksum_address(address) for address in contract_addresses]
    if len(set(contracts)) != len(contracts):
        raise ValueError("contract_addresses must be distinct")

    domain = {
        "name": DOMAIN_NAME,
        "version": DOMAIN_VERSION,
        "chainId": chain_id,
        "verifyingContract": to_checksum_address(verifying_contract),
    }
    message = {
        "publicKey": _hex(public_key),
        "contractAddresses": contracts,
        "startTimestamp": int(start_timestamp),
        "durationDays": int(duration_days),
        "extraData": _hex(extra_data),
    }
    types = {"EIP712Domain": _domain_fields(domain), **USER_DECRYPT_TYPES}
    return TypedData(
        domain=domain,
        types=types,
        primary_type=USER_DECRYPT_PRIMARY_TYPE,
        message=message,
    )


def _domain_fields(domain: dict[str, Any]) -> list[dict[str, str]]:
    return [{"name": name, "type": kind} for name, kind in EIP712_DOMAIN_FIELDS if name in domain]


def full_typed_data(
    domain: dict[str, Any],
    types: dict[str, list[dict[str, str]]],
    message: dict[str, Any],
    primary_type: str | None = None,
) -> dict[str, Any]:
    """Assemble an eth_signTypedData_v4 payload from its parts.

    If primary_type is None, the first type not referenced by another
    type is used.
    """
    signing = {name: fields for name, fields in types.items() if name != "EIP712Domain"}
    if primary_type is None:
        referenced = {
            field["type"].rstrip("[]") for fields in signing.values() for field in fields
        }
        primary_type = next(name for name in signing if name not in referenced)
    return {
        "types": {"EIP712Domain": _domain_fields(domain), **signing},
        "primaryType": primary_type,
        "domain": domain,
        "message": message,
    }


def recover_signer(typed_data: TypedData, signature: str) -> str:
    """Recover the checksummed address that signed ``typed_data``."""
    signable = encode_typed_data(
        typed_data.domain, typed_data.signing_types(), typed_data.message
    )
    return Account.recover_message(signable, signature=signature)

"""
Configuration — validated settings for the session layer.

Settings come from keyword arguments or from ``FHEVM_*`` environment
variables via FhevmSettings.from_env():

    FHEVM_RPC_URL                    JSON-RPC endpoint of the ledger
    FHEVM_LOCAL_NETWORKS             "31337=http://localhost:8545,..."
    FHEVM_RELAYER_URL                overrides relayer.relayer_url
    FHEVM_ENGINE                     "package.module:factory" ciphertext engine
    FHEVM_CONTRACTS                  "11155111=0x...,31337=0x..."
    FHEVM_DECRYPTION_DURATION_DAYS   authorization window (1..365)
    FHEVM_CONFIRMATIONS              confirmations to wait for (>= 1)
    FHEVM_RECEIPT_POLL_INTERVAL      seconds between receipt polls
    FHEVM_RECEIPT_TIMEOUT            seconds before giving up on a receipt
    FHEVM_HTTP_TIMEOUT               per-request HTTP timeout

Security note:
    decryption_duration_days bounds how long a signed authorization stays
    valid. A long window means fewer signature prompts, but a leaked
    ephemeral private key stays usable for that long.
"""

from __future__ import annotations

import logging
import os
from typing import Mapping

from eth_utils import is_address, to_checksum_address
from pydantic import BaseModel, ConfigDict, Field, field_validator

from fhevm_session.errors import NetworkUnavailable

logger = logging.getLogger("fhevm_session.config")

LOCAL_CHAIN_ID = 31337
SEPOLIA_CHAIN_ID = 11155111
DEFAULT_LOCAL_RPC_URL = "http://localhost:8545"
DEFAULT_DECRYPTION_DURATION_DAYS = 365


def _checksum(value: str) -> str:
    if not is_address(value):
        raise ValueError(f"not a valid address: {value!r}")
    return to_checksum_address(value)


class RelayerConfig(BaseModel):
    """Fixed configuration of the production network family.

    Defaults are the Sepolia deployment of the coprocessor contracts.
    """

    model_config = ConfigDict(frozen=True, validate_default=True)

    chain_id: int = SEPOLIA_CHAIN_ID
    gateway_chain_id: int = 55815
    acl_contract_address: str = "0x687820221192c5b662b25367f70076a37bc79b6c"
    kms_contract_address: str = "0x1364cbbf2cdf5032c47d8226a6f6fbd2afcdacac"
    input_verifier_contract_address: str = "0xbc91f3dad1a5f19f8390c400196e58073b6a0bc4"
    verifying_contract_address_decryption: str = "0xb6e160b1ff80d67bfe90a85ee06ce0a2613607d1"
    verifying_contract_address_input_verification: str = "0x7048c39f048125eda9d678aebadfb22f7900a29f"
    relayer_url: str = "https://relayer.testnet.zama.cloud"

    @field_validator(
        "acl_contract_address",
        "kms_contract_address",
        "input_verifier_contract_address",
        "verifying_contract_address_decryption",
        "verifying_contract_address_input_verification",
    )
    @classmethod
    def _validate_address(cls, value: str) -> str:
        return _checksum(value)

    @field_validator("relayer_url")
    @classmethod
    def _strip_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @property
    def keyurl(self) -> str:
        return f"{self.relayer_url}/v1/keyurl"


class FhevmSettings(BaseModel):
    """Validated, immutable settings for one client process."""

    model_config = ConfigDict(frozen=True)

    rpc_url: str = DEFAULT_LOCAL_RPC_URL
    local_networks: dict[int, str] = Field(
        default_factory=lambda: {LOCAL_CHAIN_ID: DEFAULT_LOCAL_RPC_URL}
    )
    relayer: RelayerConfig = Field(default_factory=RelayerConfig)
    engine: str | None = None
    contracts: dict[int, str] = Field(default_factory=dict)
    decryption_duration_days: int = Field(
        default=DEFAULT_DECRYPTION_DURATION_DAYS, ge=1, le=365
    )
    confirmations: int = Field(default=1, ge=1)
    receipt_poll_interval: float = Field(default=1.0, gt=0)
    receipt_timeout: float = Field(default=120.0, gt=0)
    http_timeout: float = Field(default=30.0, gt=0)

    @field_validator("contracts")
    @classmethod
    def _validate_contracts(cls, value: dict[int, str]) -> dict[int, str]:
        return {chain_id: _checksum(address) for chain_id, address in value.items()}

    @field_validator("engine")
    @classmethod
    def _validate_engine(cls, value: str | None) -> str | None:
        if value is not None and ":" not in value:
            raise ValueError(f"engine must be 'module:attribute', got: {value!r}")
        return value

    def contract_address_for(self, chain_id: int) -> str:
        """Deployment address of the application contract on a network.

        Raises:
            NetworkUnavailable: If nothing is deployed on that network.
        """
        address = self.contracts.get(chain_id)
        if address is None:
            raise NetworkUnavailable(f"no contract deployment for network {chain_id}")
        return address

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "FhevmSettings":
        """Build settings from FHEVM_* environment variables.

        Unset variables fall back to the field defaults.
        """
        env = os.environ if environ is None else environ
        kwargs: dict[str, object] = {}

        if "FHEVM_RPC_URL" in env:
            kwargs["rpc_url"] = env["FHEVM_RPC_URL"]
        if "FHEVM_LOCAL_NETWORKS" in env:
            kwargs["local_networks"] = parse_chain_map(env["FHEVM_LOCAL_NETWORKS"])
        if "FHEVM_RELAYER_URL" in env:
            kwargs["relayer"] = RelayerConfig(relayer_url=env["FHEVM_RELAYER_URL"])
        if "FHEVM_ENGINE" in env:
            kwargs["engine"] = env["FHEVM_ENGINE"]
        if "FHEVM_CONTRACTS" in env:
            kwargs["contracts"] = parse_chain_map(env["FHEVM_CONTRACTS"])
        for name, field in (
            ("FHEVM_DECRYPTION_DURATION_DAYS", "decryption_duration_days"),
            ("FHEVM_CONFIRMATIONS", "confirmations"),
        ):
            if name in env:
                kwargs[field] = int(env[name])
        for name, field in (
            ("FHEVM_RECEIPT_POLL_INTERVAL", "receipt_poll_interval"),
            ("FHEVM_RECEIPT_TIMEOUT", "receipt_timeout"),
            ("FHEVM_HTTP_TIMEOUT", "http_timeout"),
        ):
            if name in env:
                kwargs[field] = float(env[name])

        settings = cls(**kwargs)  # type: ignore[arg-type]
        logger.debug(
            "Loaded settings: rpc_url=%s local_networks=%s contracts=%s",
            settings.rpc_url,
            sorted(settings.local_networks),
            sorted(settings.contracts),
        )
        return settings


def parse_chain_map(raw: str) -> dict[int, str]:
    """Parse ``"31337=http://localhost:8545,11155111=..."`` into a dict.

    Raises:
        ValueError: On an entry without ``=`` or a non-integer chain id.
    """
    result: dict[int, str] = {}
    for entry in raw.split(","):
        entry = entry.strip()
        if not entry:
            continue
        chain_id, sep, value = entry.partition("=")
        if not sep or not value.strip():
            raise ValueError(f"expected 'chainId=value', got: {entry!r}")
        result[int(chain_id.strip())] = value.strip()
    return result

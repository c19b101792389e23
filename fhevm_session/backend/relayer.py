"""
Remote relayer backend for production networks.

Three stages, each driven by the session provisioner:

    1. load        RelayerSDKLoader.load() -> RelayerSDK      (loader.py)
    2. initialize  RelayerSDK.init_sdk()                      (one-time, idempotent)
    3. create      RelayerSDK.create_instance(config, ledger) -> RelayerFhevmInstance

The instance talks to the relayer over HTTP:

    POST {relayer_url}/v1/input-proof   ciphertext -> handles + signatures
    POST {relayer_url}/v1/user-decrypt  signed statement -> re-encrypted shares

Ciphertext production and share decryption are delegated to the
CiphertextEngine. Responses are schema-validated before use; transport
and validation failures surface as BackendRequestFailure.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Sequence

import jsonschema  # type: ignore[import-untyped]
from eth_utils import to_checksum_address

from fhevm_session.backend.base import (
    CiphertextEngine,
    EncryptedPayload,
    EphemeralKeypair,
    HandleContractPair,
    generate_keypair,
    pack_input_proof,
)
from fhevm_session.config import RelayerConfig
from fhevm_session.contract import UINT64_MAX
from fhevm_session.eip712 import DEFAULT_EXTRA_DATA, TypedData, build_user_decrypt_typed_data
from fhevm_session.errors import BackendInitFailure, BackendRequestFailure
from fhevm_session.ledger.client import LedgerClient
from fhevm_session.schema import INPUT_PROOF_SCHEMA, USER_DECRYPT_SCHEMA, validate
from fhevm_session.transport import HttpTransport

logger = logging.getLogger("fhevm_session.backend.relayer")

RELAYER_BACKEND = "relayer"


def _strip0x(value: str) -> str:
    return value[2:] if value.startswith("0x") else value


def _from_hex(value: str) -> bytes:
    return bytes.fromhex(_strip0x(value))


class RelayerSDK:
    """The loaded relayer client library.

    Args:
        manifest: Validated ``/v1/keyurl`` response.
        engine: Ciphertext engine for the FHE math.
        transport: HTTP transport for key download and relayer calls.
    """

    def __init__(self, manifest: dict[str, Any], engine: CiphertextEngine, transport: HttpTransport) -> None:
        self._manifest = manifest
        self._engine = engine
        self._transport = transport
        self._initialized = False
        self._init_lock = asyncio.Lock()

    @property
    def initialized(self) -> bool:
        return self._initialized

    @property
    def public_key_id(self) -> str:
        return str(self._manifest["response"]["fhe_key_info"][0]["fhe_public_key"]["data_id"])

    async def init_sdk(self) -> None:
        """Download the network public key and initialize the engine.

        Runs once per SDK object; later calls return immediately.

        Raises:
            BackendInitFailure: On download or engine failure.
        """
        async with self._init_lock:
            if self._initialized:
                return
            key_info = self._manifest["response"]["fhe_key_info"][0]["fhe_public_key"]
            params = dict(self._manifest["response"].get("crs") or {})
            try:
                public_key = await self._transport.get_bytes(key_info["urls"][0])
                self._engine.initialize(public_key, params)
            except Exception as exc:
                raise BackendInitFailure(f"relayer SDK initialization failed: {exc}") from exc
            self._initialized = True
            logger.info("relayer SDK initialized (public key %s)", self.public_key_id)

    async def create_instance(self, config: RelayerConfig, ledger: LedgerClient) -> "RelayerFhevmInstance":
        """Bind an instance to the caller's network connection.

        Raises:
            BackendInitFailure: If init_sdk() has not completed or the
                connected network is not the one ``config`` describes.
        """
        if not self._initialized:
            raise BackendInitFailure("relayer SDK used before init_sdk()")
        chain_id = await ledger.chain_id()
        if chain_id != config.chain_id:
            raise BackendInitFailure(
                f"connected network {chain_id} does not match relayer config {config.chain_id}"
            )
        return RelayerFhevmInstance(config, self._engine, self._transport)


class RelayerEncryptedInput:
    def __init__(self, instance: "RelayerFhevmInstance", contract_address: str, user_address: str) -> None:
        self._instance = instance
        self._contract_address = to_checksum_address(contract_address)
        self._user_address = to_checksum_address(user_address)
        self._values: list[int] = []

    def add64(self, value: int) -> "RelayerEncryptedInput":
        if not 0 <= value <= UINT64_MAX:
            raise ValueError(f"value out of uint64 range: {value}")
        self._values.append(value)
        return self

    async def encrypt(self) -> EncryptedPayload:
        if not self._values:
            raise ValueError("no values added to encrypted input")
        return await self._instance._encrypt(self._values, self._contract_address, self._user_address)


class RelayerFhevmInstance:
    """FhevmInstance backed by the remote relayer service."""

    def __init__(self, config: RelayerConfig, engine: CiphertextEngine, transport: HttpTransport) -> None:
        self._config = config
        self._engine = engine
        self._transport = transport

    @property
    def backend(self) -> str:
        return RELAYER_BACKEND

    @property
    def chain_id(self) -> int:
        return self._config.chain_id

    @property
    def config(self) -> RelayerConfig:
        return self._config

    def create_encrypted_input(self, contract_address: str, user_address: str) -> RelayerEncryptedInput:
        return RelayerEncryptedInput(self, contract_address, user_address)

    def generate_keypair(self) -> EphemeralKeypair:
        return generate_keypair()

    def create_eip712(
        self,
        public_key: str,
        contract_addresses: Sequence[str],
        start_timestamp: int,
        duration_days: int,
    ) -> TypedData:
        return build_user_decrypt_typed_data(
            public_key,
            contract_addresses,
            start_timestamp,
            duration_days,
            chain_id=self._config.gateway_chain_id,
            verifying_contract=self._config.verifying_contract_address_decryption,
        )

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
        body = {
            "handleContractPairs": [pair.to_dict() for pair in pairs],
            "requestValidity": {
                "startTimestamp": str(start_timestamp),
                "durationDays": str(duration_days),
            },
            "contractsChainId": str(self._config.chain_id),
            "contractAddresses": [to_checksum_address(a) for a in contract_addresses],
            "userAddress": to_checksum_address(user_address),
            "signature": _strip0x(signature),
            "publicKey": _strip0x(keypair.public_key),
            "extraData": DEFAULT_EXTRA_DATA,
        }
        response = await self._post("user-decrypt", body, USER_DECRYPT_SCHEMA)
        shares = response["response"]
        if not shares:
            return {}
        handles = [pair.handle.lower() for pair in pairs]
        decrypted = await asyncio.to_thread(
            self._engine.decrypt_shares, shares, handles, keypair.private_key, keypair.public_key
        )
        return {handle.lower(): int(value) for handle, value in decrypted.items()}

    async def _encrypt(self, values: Sequence[int], contract_address: str, user_address: str) -> EncryptedPayload:
        ciphertext = await asyncio.to_thread(
            self._engine.encrypt_u64,
            values,
            contract_address,
            user_address,
            self._config.acl_contract_address,
            self._config.chain_id,
        )
        body = {
            "contractAddress": contract_address,
            "userAddress": user_address,
            "ciphertextWithInputVerification": ciphertext.hex(),
            "contractChainId": hex(self._config.chain_id),
            "extraData": DEFAULT_EXTRA_DATA,
        }
        response = await self._post("input-proof", body, INPUT_PROOF_SCHEMA)
        handles = tuple(_from_hex(h) for h in response["response"]["handles"])
        signatures = [_from_hex(s) for s in response["response"]["signatures"]]
        if len(handles) != len(values):
            raise BackendRequestFailure(
                f"relayer returned {len(handles)} handle(s) for {len(values)} value(s)"
            )
        try:
            return EncryptedPayload(
                handles=handles,
                input_proof=pack_input_proof(handles, signatures),
                contract_address=contract_address,
                user_address=user_address,
            )
        except ValueError as exc:
            raise BackendRequestFailure(f"malformed input-proof response: {exc}") from exc

    async def _post(self, endpoint: str, body: dict[str, Any], schema: dict[str, Any]) -> dict[str, Any]:
        url = f"{self._config.relayer_url}/v1/{endpoint}"
        try:
            response = await self._transport.post_json(url, body)
        except Exception as exc:
            raise BackendRequestFailure(f"{endpoint} request failed: {exc}") from exc
        try:
            validate(response, schema)
        except jsonschema.ValidationError as exc:
            raise BackendRequestFailure(f"malformed {endpoint} response: {exc.message}") from exc
        return response

"""
JSON schemas for backend responses.

Everything the encryption backend sends back is validated here before
it is trusted. Validation failures raise jsonschema.ValidationError;
callers translate them into the error taxonomy at their own boundary.
"""

from __future__ import annotations

from typing import Any, Dict

import jsonschema  # type: ignore[import-untyped]

_HEX_ADDRESS = {"type": "string", "pattern": "^0x[0-9a-fA-F]{40}$"}
_HEX_BYTES = {"type": "string", "pattern": "^(0x)?[0-9a-fA-F]*$"}

# Result object of the local node's ``fhevm_relayer_metadata`` call.
LOCAL_METADATA_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "required": ["ACLAddress", "InputVerifierAddress", "KMSVerifierAddress"],
    "properties": {
        "ACLAddress": _HEX_ADDRESS,
        "InputVerifierAddress": _HEX_ADDRESS,
        "KMSVerifierAddress": _HEX_ADDRESS,
    },
}

# ``GET /v1/keyurl``: the relayer client library manifest.
KEYURL_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "required": ["response"],
    "properties": {
        "response": {
            "type": "object",
            "required": ["fhe_key_info"],
            "properties": {
                "fhe_key_info": {
                    "type": "array",
                    "minItems": 1,
                    "items": {
                        "type": "object",
                        "required": ["fhe_public_key"],
                        "properties": {
                            "fhe_public_key": {
                                "type": "object",
                                "required": ["data_id", "urls"],
                                "properties": {
                                    "data_id": {"type": "string"},
                                    "urls": {
                                        "type": "array",
                                        "minItems": 1,
                                        "items": {"type": "string"},
                                    },
                                },
                            },
                        },
                    },
                },
                "crs": {"type": "object"},
            },
        },
    },
}

# ``POST /v1/input-proof``
INPUT_PROOF_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "required": ["response"],
    "properties": {
        "response": {
            "type": "object",
            "required": ["handles", "signatures"],
            "properties": {
                "handles": {"type": "array", "minItems": 1, "items": _HEX_BYTES},
                "signatures": {"type": "array", "items": _HEX_BYTES},
            },
        },
    },
}

# ``POST /v1/user-decrypt``
USER_DECRYPT_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "required": ["response"],
    "properties": {
        "response": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["payload", "signature"],
                "properties": {
                    "payload": {"type": "string"},
                    "signature": {"type": "string"},
                },
            },
        },
    },
}


def validate(instance: Any, schema: Dict[str, Any]) -> None:
    jsonschema.validate(instance=instance, schema=schema)


def is_valid(instance: Any, schema: Dict[str, Any]) -> bool:
    """Boolean form of validate() for best-effort probes."""
    return jsonschema.Draft7Validator(schema).is_valid(instance)

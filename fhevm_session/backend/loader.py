"""
Relayer client library loader.

Loading has two parts, and a failure in either is a BackendLoadFailure:

    - fetch the relayer manifest (``GET {relayer_url}/v1/keyurl``) and
      validate it against KEYURL_SCHEMA
    - resolve the ciphertext engine: an injected instance, or a
      ``"package.module:attribute"`` reference imported on demand (the
      attribute may be an engine or a zero-argument factory)

A successfully loaded SDK is cached on the loader; later load() calls
return it without touching the network.
"""

from __future__ import annotations

import importlib
import logging

import jsonschema  # type: ignore[import-untyped]

from fhevm_session.backend.base import CiphertextEngine
from fhevm_session.backend.relayer import RelayerSDK
from fhevm_session.errors import BackendLoadFailure
from fhevm_session.schema import KEYURL_SCHEMA, validate
from fhevm_session.transport import HttpTransport, HttpxTransport

logger = logging.getLogger("fhevm_session.backend.loader")


def resolve_engine(reference: str) -> CiphertextEngine:
    """Import ``"module:attribute"`` and return a CiphertextEngine.

    Raises:
        BackendLoadFailure: If the module or attribute cannot be
            resolved, or the result is not a CiphertextEngine.
    """
    module_name, _, attribute = reference.partition(":")
    try:
        module = importlib.import_module(module_name)
        target = getattr(module, attribute)
    except (ImportError, AttributeError) as exc:
        raise BackendLoadFailure(f"cannot load ciphertext engine {reference!r}: {exc}") from exc

    # Classes satisfy the runtime protocol check too; instantiate them.
    if isinstance(target, type) or not isinstance(target, CiphertextEngine):
        if not callable(target):
            raise BackendLoadFailure(f"{reference!r} is not a ciphertext engine")
        engine = target()
    else:
        engine = target
    if not isinstance(engine, CiphertextEngine):
        raise BackendLoadFailure(f"{reference!r} is not a ciphertext engine")
    return engine


class RelayerSDKLoader:
    """Fetches and caches the relayer client library.

    Args:
        keyurl: Manifest URL (``RelayerConfig.keyurl``).
        engine: Engine instance, or a "module:attribute" reference.
        transport: HTTP transport. Defaults to HttpxTransport.
    """

    def __init__(
        self,
        keyurl: str,
        engine: CiphertextEngine | str | None,
        transport: HttpTransport | None = None,
    ) -> None:
        self._keyurl = keyurl
        self._engine = engine
        self._transport = transport or HttpxTransport()
        self._sdk: RelayerSDK | None = None

    @property
    def loaded(self) -> bool:
        return self._sdk is not None

    async def load(self) -> RelayerSDK:
        if self._sdk is not None:
            return self._sdk

        try:
            manifest = await self._transport.get_json(self._keyurl)
        except Exception as exc:
            raise BackendLoadFailure(f"failed to fetch relayer manifest from {self._keyurl}: {exc}") from exc
        try:
            validate(manifest, KEYURL_SCHEMA)
        except jsonschema.ValidationError as exc:
            raise BackendLoadFailure(f"malformed relayer manifest: {exc.message}") from exc

        if self._engine is None:
            raise BackendLoadFailure("no ciphertext engine configured for the relayer backend")
        engine = resolve_engine(self._engine) if isinstance(self._engine, str) else self._engine

        self._sdk = RelayerSDK(manifest, engine, self._transport)
        logger.debug("relayer SDK loaded from %s", self._keyurl)
        return self._sdk

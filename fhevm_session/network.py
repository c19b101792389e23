"""
Network resolution — which encryption backend applies to the connection.

Queries the chain identity, looks it up in the configured local-network
map, and for mapped networks probes the endpoint with a JSON-RPC
``fhevm_relayer_metadata`` request. Only a schema-valid metadata result
makes the network local.

The probe is a single best-effort attempt. Any probe failure (network
error, JSON-RPC error, malformed result) downgrades to "not local" so
the caller takes the remote backend path. A failing chain-identity query
is fatal: it means there is no usable provider.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Mapping

from fhevm_session.backend.local import LocalMetadata
from fhevm_session.errors import NetworkUnavailable
from fhevm_session.ledger.client import LedgerClient
from fhevm_session.schema import LOCAL_METADATA_SCHEMA, is_valid
from fhevm_session.transport import HttpTransport, HttpxTransport, jsonrpc_request

logger = logging.getLogger("fhevm_session.network")

METADATA_METHOD = "fhevm_relayer_metadata"


@dataclass(frozen=True)
class NetworkInfo:
    """Outcome of network resolution.

    Attributes:
        network_id: Chain id of the connected network.
        is_local_backend: True only when the network is in the local map
            and the metadata probe succeeded.
        backend_endpoint: Local backend URL for mapped networks, else None.
        metadata: Probe result when is_local_backend is True.
    """

    network_id: int
    is_local_backend: bool
    backend_endpoint: str | None = None
    metadata: LocalMetadata | None = None


class NetworkResolver:
    """Decides between the local and the remote backend.

    Args:
        ledger: Connection whose chain identity is queried.
        local_networks: Chain id -> local backend endpoint.
        transport: HTTP transport for the metadata probe.
    """

    def __init__(
        self,
        ledger: LedgerClient,
        local_networks: Mapping[int, str],
        transport: HttpTransport | None = None,
    ) -> None:
        self._ledger = ledger
        self._local_networks = dict(local_networks)
        self._transport = transport or HttpxTransport()

    async def resolve(self) -> NetworkInfo:
        """Resolve the backend variant for the current connection.

        Raises:
            NetworkUnavailable: If the chain identity cannot be queried.
        """
        try:
            network_id = await self._ledger.chain_id()
        except Exception as exc:
            raise NetworkUnavailable(f"chain identity query failed: {exc}") from exc

        endpoint = self._local_networks.get(network_id)
        if endpoint is None:
            logger.debug("network %d is not a local network", network_id)
            return NetworkInfo(network_id=network_id, is_local_backend=False)

        metadata = await self.probe(endpoint)
        return NetworkInfo(
            network_id=network_id,
            is_local_backend=metadata is not None,
            backend_endpoint=endpoint,
            metadata=metadata,
        )

    async def probe(self, endpoint: str) -> LocalMetadata | None:
        """Ask ``endpoint`` for local backend metadata; None on any failure."""
        try:
            response = await self._transport.post_json(endpoint, jsonrpc_request(METADATA_METHOD))
        except Exception as exc:
            logger.debug("metadata probe to %s failed: %s", endpoint, exc)
            return None

        result = response.get("result") if isinstance(response, dict) else None
        if not is_valid(result, LOCAL_METADATA_SCHEMA):
            logger.debug("metadata probe to %s returned no usable metadata", endpoint)
            return None
        return LocalMetadata.from_dict(result)

"""Node HTTP client — status, network info, layers, accounts, activations.

Provides an async, read-only client for the node's JSON gateway:
- GET  /v1/node/status — sync progress (public)
- GET  /v1/network/info — network constants (public)
- GET  /v1/layers/<n> — layer, blocks, transactions and rewards (public)
- POST /v1/accounts — account snapshots at a layer (public)
- GET  /v1/activations?layer=<n> — activations received in a layer (private)

Every failure (transport error, timeout, non-2xx) surfaces as a transient
:class:`~explorer_collector.errors.NodeError`.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import httpx

from explorer_collector.errors.collector_errors import NodeError
from explorer_collector.node.models import (
    AccountState,
    Activation,
    LayerBundle,
    NetworkInfo,
    NodeStatus,
)

if TYPE_CHECKING:
    from explorer_collector.config.settings import NodeConfig


class NodeClient:
    """Async HTTP client for the node's public and private APIs.

    Usage::

        node = NodeClient(config.node)
        await node.connect()
        try:
            status = await node.get_status()
            bundle = await node.get_layer(status.top_layer)
        finally:
            await node.close()
    """

    def __init__(self, config: NodeConfig) -> None:
        """Initialize the node client.

        Args:
            config: Node configuration (addresses, timeout).
        """
        self._config = config
        self._public: httpx.AsyncClient | None = None
        self._private: httpx.AsyncClient | None = None

    async def connect(self) -> None:  # noqa: ASYNC910
        """Create the underlying HTTP clients."""
        headers = {"Accept": "application/json"}
        self._public = httpx.AsyncClient(
            base_url=self._config.url(self._config.public_address),
            headers=headers,
            timeout=self._config.timeout,
        )
        self._private = httpx.AsyncClient(
            base_url=self._config.url(self._config.private_address),
            headers=headers,
            timeout=self._config.timeout,
        )

    async def close(self) -> None:
        """Close the underlying HTTP clients."""
        if self._public is not None:
            await self._public.aclose()
            self._public = None
        if self._private is not None:
            await self._private.aclose()
            self._private = None

    @property
    def is_connected(self) -> bool:
        """Check if the HTTP clients are active."""
        return self._public is not None and self._private is not None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def get_status(self) -> NodeStatus:
        """Return the node's sync progress."""
        data = await self._request(self._ensure_public(), "GET", "/v1/node/status")
        return NodeStatus.from_dict(data)

    async def get_network_info(self) -> NetworkInfo:
        """Return the network constants (layers per epoch, HRP, genesis)."""
        data = await self._request(self._ensure_public(), "GET", "/v1/network/info")
        info = NetworkInfo.from_dict(data)
        if info.layers_per_epoch <= 0:
            raise NodeError("node returned invalid network info: layersPerEpoch must be > 0")
        return info

    async def get_layer(self, number: int) -> LayerBundle:
        """Fetch a layer with its blocks, transactions and rewards.

        Args:
            number: Layer number.

        Raises:
            NodeError: On transport/API errors or a mismatched layer number.
        """
        data = await self._request(self._ensure_public(), "GET", f"/v1/layers/{number}")
        bundle = LayerBundle.from_dict(data)
        if bundle.layer.number != number:
            msg = f"node returned layer {bundle.layer.number} for request {number}"
            raise NodeError(msg)
        return bundle

    async def get_accounts(self, addresses: list[str], *, layer: int) -> list[AccountState]:
        """Fetch account snapshots for *addresses* as of *layer*."""
        if not addresses:
            return []
        data = await self._request(
            self._ensure_public(),
            "POST",
            "/v1/accounts",
            json={"addresses": addresses, "layer": layer},
        )
        return [AccountState.from_dict(a, layer=layer) for a in data.get("accounts", [])]

    async def get_activations(self, layer: int) -> list[Activation]:
        """Fetch the activations received in *layer* (private API)."""
        data = await self._request(
            self._ensure_private(),
            "GET",
            "/v1/activations",
            params={"layer": layer},
        )
        return [Activation.from_dict(a) for a in data.get("activations", [])]

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _ensure_public(self) -> httpx.AsyncClient:
        if self._public is None:
            msg = "Node client not connected. Call connect() first."
            raise NodeError(msg, status_code=500)
        return self._public

    def _ensure_private(self) -> httpx.AsyncClient:
        if self._private is None:
            msg = "Node client not connected. Call connect() first."
            raise NodeError(msg, status_code=500)
        return self._private

    async def _request(
        self,
        client: httpx.AsyncClient,
        method: str,
        path: str,
        **kwargs: Any,
    ) -> dict[str, Any]:
        """Send a request and return the decoded JSON object."""
        try:
            response = await client.request(method, path, **kwargs)
        except httpx.TimeoutException as exc:
            raise NodeError(f"node {method} {path} timed out: {exc}", status_code=504) from exc
        except httpx.HTTPError as exc:
            raise NodeError(f"node {method} {path} failed: {exc}") from exc

        if response.status_code != 200:
            self._raise_for_status(response, f"{method} {path}")

        try:
            data = response.json()
        except ValueError as exc:
            raise NodeError(f"node {method} {path} returned invalid JSON") from exc
        if not isinstance(data, dict):
            raise NodeError(f"node {method} {path} returned a non-object body")
        return data

    @staticmethod
    def _raise_for_status(response: httpx.Response, operation: str) -> None:
        """Raise a NodeError from a non-2xx response."""
        status = response.status_code
        try:
            body = response.json()
            detail = body.get("message", response.text) if isinstance(body, dict) else body
        except Exception:  # noqa: BLE001
            detail = response.text

        message = f"node {operation} failed ({status}): {detail}"
        raise NodeError(message, status_code=status)

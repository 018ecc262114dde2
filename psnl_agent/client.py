"""Proxmox VE API client - reads and writes guest configuration."""
import logging
from typing import Any, Dict, Optional

import httpx

from psnl_agent.errors import RemoteError

logger = logging.getLogger(__name__)


class ProxmoxClient:
    """Authenticated client for one Proxmox server (API token auth)."""

    def __init__(
        self,
        url: str,
        token_id: str,
        secret: str,
        timeout: float = 30,
        verify_ssl: bool = True,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = url.rstrip("/")
        self.token_id = token_id
        self._secret = secret
        self.timeout = timeout
        self.verify_ssl = verify_ssl
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @classmethod
    def from_config(cls, server, timeout: float = 30, **kwargs) -> "ProxmoxClient":
        return cls(server.url, server.token_id, server.secret, timeout=timeout, verify_ssl=server.verify_ssl, **kwargs)

    def __repr__(self) -> str:
        return f"ProxmoxClient(url={self.url!r}, token_id={self.token_id!r})"

    def _headers(self) -> dict:
        return {
            "Content-Type": "application/json",
            "Authorization": f"PVEAPIToken={self.token_id}={self._secret}",
        }

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.url,
                timeout=self.timeout,
                verify=self.verify_ssl,
                transport=self._transport,
            )
        return self._client

    @staticmethod
    def config_path(node: str, guest_type: str, guest_id: int) -> str:
        return f"/api2/json/nodes/{node}/{guest_type}/{guest_id}/config"

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        client = await self._get_client()
        try:
            resp = await client.request(method, path, headers=self._headers(), **kwargs)
        except httpx.HTTPError as e:
            raise RemoteError(f"{method} {self.url}{path} failed: {type(e).__name__}", detail=str(e)) from e

        if not resp.is_success:
            raise RemoteError(
                f"{method} {self.url}{path} returned {resp.status_code} {resp.reason_phrase}",
                status_code=resp.status_code,
                detail=resp.text[:500] or None,
            )
        try:
            return resp.json()
        except ValueError as e:
            raise RemoteError(
                f"{method} {self.url}{path} returned a non-JSON body",
                status_code=resp.status_code,
            ) from e

    async def read_config(self, node: str, guest_type: str, guest_id: int) -> Dict[str, Any]:
        """Fetch the guest config. Returns the ``data`` mapping (net0, net1, ...)."""
        body = await self._request("GET", self.config_path(node, guest_type, guest_id))
        data = body.get("data") if isinstance(body, dict) else None
        return data or {}

    async def write_config(self, node: str, guest_type: str, guest_id: int, patch: Dict[str, str]) -> bool:
        """PUT a partial config. True when Proxmox acknowledges with ``data: null``."""
        body = await self._request("PUT", self.config_path(node, guest_type, guest_id), json=patch)
        if not isinstance(body, dict) or "data" not in body:
            logger.debug("Write response for %s/%s/%s has no data field: %r", node, guest_type, guest_id, body)
            return False
        if body["data"] is not None:
            logger.debug("Unexpected write response for %s/%s/%s: %r", node, guest_type, guest_id, body["data"])
        return body["data"] is None

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "ProxmoxClient":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

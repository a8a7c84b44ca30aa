"""Chain Gateway: network access used from inside providers.

Each request opens a short-lived ``httpx.AsyncClient`` so providers hold no
sockets between calls and can be dropped from the connection cache without
cleanup. Tests inject an ``httpx.MockTransport`` through ``transport``.
"""

from __future__ import annotations

import itertools
import logging
from typing import Any

import httpx

from agent_vault.errors import ConnectionError, GatewayError

logger = logging.getLogger("agent_vault.wallet.gateway")

_USER_AGENT = "agent-vault/0.1"


class HttpGateway:
    """Base for HTTP-backed gateways.

    Parameters
    ----------
    url:
        Endpoint root, e.g. ``https://rpc.polkadot.io``.
    timeout:
        Per-request timeout in seconds.
    transport:
        Optional ``httpx`` transport (``httpx.MockTransport`` in tests).
    """

    def __init__(
        self,
        url: str,
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.url = url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.timeout,
            transport=self._transport,
            headers={"User-Agent": _USER_AGENT},
        )


class JsonRpcGateway(HttpGateway):
    """JSON-RPC 2.0 over HTTP POST (Substrate and Ethereum nodes)."""

    _ids = itertools.count(1)

    async def call(self, method: str, params: list | None = None) -> Any:
        """Invoke *method* and return its ``result``.

        Raises ``ConnectionError`` when the node is unreachable and
        ``GatewayError`` when it answers with an error object.
        """
        body = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params or [],
        }
        try:
            async with self._client() as client:
                resp = await client.post(self.url, json=body)
                resp.raise_for_status()
                data = resp.json()
        except httpx.HTTPStatusError as exc:
            raise GatewayError(
                f"{method} failed: HTTP {exc.response.status_code} from {self.url}"
            ) from exc
        except (httpx.HTTPError, ValueError) as exc:
            raise ConnectionError(f"{method} failed: cannot reach {self.url}: {exc}") from exc

        if data.get("error"):
            err = data["error"]
            message = err.get("message", err) if isinstance(err, dict) else err
            raise GatewayError(f"{method} failed: {message}")
        logger.debug(f"RPC {method} -> ok")
        return data.get("result")


class RestGateway(HttpGateway):
    """Plain HTTP GET APIs (ICP ledger API)."""

    async def get(self, path: str, params: dict | None = None) -> httpx.Response:
        """GET ``{url}/{path}``; 404 is returned to the caller, other errors raise."""
        target = f"{self.url}/{path.lstrip('/')}"
        try:
            async with self._client() as client:
                resp = await client.get(target, params=params)
        except httpx.HTTPError as exc:
            raise ConnectionError(f"GET {target} failed: {exc}") from exc
        if resp.status_code >= 400 and resp.status_code != 404:
            raise GatewayError(f"GET {target} failed: HTTP {resp.status_code}")
        return resp

"""JSON-RPC reads routed through the endpoint manager."""

import logging
from decimal import Decimal
from typing import Any, Optional

import httpx

from solrelay.endpoints.manager import EndpointManager
from solrelay.errors import NetworkError, ProtocolError

logger = logging.getLogger(__name__)

LAMPORTS_PER_SOL = Decimal(10**9)


class RpcClient:
    """Solana JSON-RPC client with per-request endpoint failover.

    Transport and HTTP failures count against the endpoint and the request
    moves on to an endpoint it has not tried yet. A JSON-RPC error object
    means the endpoint answered, so it is raised as ProtocolError without
    failover.
    """

    def __init__(
        self,
        manager: EndpointManager,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.manager = manager
        self.timeout = timeout
        self._transport = transport
        self._request_id = 0

    async def request(self, method: str, params: Optional[list] = None) -> Any:
        """Send a JSON-RPC request.

        Raises:
            ProtocolError: If the endpoint returned a JSON-RPC error
            NetworkError: If every attempted endpoint failed
        """
        attempts = max(len(self.manager.active_endpoints), 1)
        last_error: Optional[Exception] = None
        tried: set[str] = set()

        for _ in range(attempts):
            endpoint = self.manager.select_endpoint(exclude=tried)
            tried.add(endpoint.id)
            self._request_id += 1
            payload = {
                "jsonrpc": "2.0",
                "id": self._request_id,
                "method": method,
                "params": params or [],
            }

            try:
                async with httpx.AsyncClient(
                    timeout=self.timeout, transport=self._transport
                ) as client:
                    response = await client.post(endpoint.url, json=payload)
                if response.status_code != 200:
                    raise NetworkError(
                        f"HTTP {response.status_code} from {endpoint.name}",
                        status_code=response.status_code,
                    )
                data = response.json()
            except (httpx.HTTPError, NetworkError, ValueError) as e:
                logger.warning(f"RPC {method} failed on {endpoint.name}: {e}")
                self.manager.mark_failure(endpoint)
                last_error = e
                continue

            self.manager.mark_success(endpoint)

            if not isinstance(data, dict):
                raise ProtocolError(f"RPC {method} returned a non-object response")
            if data.get("error"):
                error = data["error"]
                message = error.get("message") if isinstance(error, dict) else str(error)
                raise ProtocolError(f"RPC {method} error", details=message)

            return data.get("result")

        raise NetworkError(f"All RPC endpoints failed for {method}: {last_error}")

    async def get_balance(self, address: str) -> Decimal:
        """Get SOL balance for an address."""
        result = await self.request("getBalance", [address])
        try:
            lamports = result["value"]
        except (TypeError, KeyError):
            raise ProtocolError("Unexpected getBalance response", details=str(result))
        return Decimal(lamports) / LAMPORTS_PER_SOL

    async def get_slot(self) -> int:
        """Get the current slot."""
        result = await self.request("getSlot")
        if not isinstance(result, int):
            raise ProtocolError("Unexpected getSlot response", details=str(result))
        return result

"""
JSON-RPC client for the upstream ledger node.

Only two calls are needed: eth_getLogs over a block range (filtered by the
explored contract and event topic) and eth_blockNumber for the chain head.
Every failure is raised as an UpstreamError so the page request can report a
single retryable failure.
"""

import logging
from typing import Optional

import httpx

from message_explorer.metrics import record_upstream_call

logger = logging.getLogger(__name__)


class UpstreamError(Exception):
    """Transient upstream failure: network, rate limiting, or a bad response."""


class MalformedLogError(UpstreamError):
    """A log entry is missing fields or carries unparseable values."""


def to_hex_block(block: int) -> str:
    """Hex block tag for eth_getLogs. Blocks below genesis clamp to 0x0."""
    return hex(max(0, block))


class UpstreamLogSource:
    """
    Queries an EVM JSON-RPC node for the explored event.

    Args:
        rpc_url: Node endpoint
        contract_address: Emitting contract
        event_topic: topic0 of the event
        timeout_s: Per-request timeout in seconds
        client: Optional pre-built httpx.AsyncClient (tests pass one backed by
            httpx.MockTransport). A client created here is closed by aclose().
    """

    def __init__(
        self,
        rpc_url: str,
        contract_address: str,
        event_topic: str,
        timeout_s: float = 20.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.rpc_url = rpc_url
        self.contract_address = contract_address
        self.event_topic = event_topic
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout_s))
        self._request_id = 0

    async def _call(self, method: str, params: list):
        self._request_id += 1
        payload = {"jsonrpc": "2.0", "id": self._request_id, "method": method, "params": params}

        try:
            response = await self.client.post(self.rpc_url, json=payload)
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPStatusError as e:
            record_upstream_call(method, ok=False)
            logger.warning(f"{method} failed with HTTP {e.response.status_code}")
            raise UpstreamError(f"{method}: HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            record_upstream_call(method, ok=False)
            logger.warning(f"{method} transport error: {e!r}")
            raise UpstreamError(f"{method}: {e!r}") from e
        except ValueError as e:
            record_upstream_call(method, ok=False)
            raise UpstreamError(f"{method}: response is not JSON") from e

        if not isinstance(body, dict):
            record_upstream_call(method, ok=False)
            raise UpstreamError(f"{method}: unexpected response {body!r}")
        if "error" in body:
            record_upstream_call(method, ok=False)
            error = body["error"]
            logger.warning(f"{method} returned RPC error: {error!r}")
            if isinstance(error, dict):
                raise UpstreamError(f"{method}: RPC error {error.get('code')} {error.get('message')}")
            raise UpstreamError(f"{method}: RPC error {error!r}")
        if "result" not in body:
            record_upstream_call(method, ok=False)
            raise UpstreamError(f"{method}: response has no result")

        record_upstream_call(method, ok=True)
        return body["result"]

    async def query_logs(self, from_block: int, to_block: int) -> list[dict]:
        """
        Return raw logs for blocks from_block..to_block (both inclusive), ascending.
        """
        params = [{
            "fromBlock": to_hex_block(from_block),
            "toBlock": to_hex_block(to_block),
            "address": self.contract_address,
            "topics": [self.event_topic],
        }]
        logger.debug(f"eth_getLogs {from_block}..{to_block}")
        result = await self._call("eth_getLogs", params)

        if result is None:
            return []
        if not isinstance(result, list):
            raise UpstreamError(f"eth_getLogs: expected a list, got {type(result).__name__}")
        return result

    async def current_block_height(self) -> int:
        result = await self._call("eth_blockNumber", [])
        try:
            return int(result, 16)
        except (TypeError, ValueError) as e:
            raise UpstreamError(f"eth_blockNumber: bad block number {result!r}") from e

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()

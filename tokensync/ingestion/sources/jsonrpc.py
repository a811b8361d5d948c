from itertools import count
from typing import Any, List, Optional, Sequence, Tuple, Union

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from tokensync.core.errors import RateLimitError, RpcError
from tokensync.core.logging_config import get_logger

logger = get_logger("jsonrpc")

# Node-specific codes that mean "slow down" rather than "bad request"
RATE_LIMIT_CODES = {429, -32005, -32029}


def _error_from(payload: dict) -> RpcError:
    error = payload.get("error") or {}
    code = error.get("code")
    message = error.get("message", "unknown JSON-RPC error")
    if code in RATE_LIMIT_CODES:
        return RateLimitError(message, code)
    return RpcError(message, code)


class JsonRpcTransport:
    """Shared JSON-RPC 2.0 plumbing for the Solana and EVM clients."""

    def __init__(self, timeout: float, http_client: Optional[httpx.AsyncClient] = None):
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=timeout)
        self._ids = count(1)

    # Only rate limits are retried here; other failures go to the caller's fallback
    @retry(
        retry=retry_if_exception_type(RateLimitError),
        stop=stop_after_attempt(5),
        wait=wait_exponential(multiplier=1, min=4, max=10),
        reraise=True,
    )
    async def _post(self, url: str, payload: Union[dict, list]) -> Any:
        response = await self._client.post(url, json=payload)
        if response.status_code == 429:
            raise RateLimitError("HTTP 429 from RPC endpoint", 429)
        response.raise_for_status()
        try:
            return response.json()
        except ValueError as e:
            raise RpcError(f"Invalid JSON from RPC endpoint: {e}") from e

    async def call(self, url: str, method: str, params: list) -> Any:
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        body = await self._post(url, payload)
        if not isinstance(body, dict):
            raise RpcError(f"Unexpected {method} response shape")
        if "error" in body:
            raise _error_from(body)
        return body.get("result")

    async def batch(self, url: str, calls: Sequence[Tuple[str, list]]) -> List[Union[Any, RpcError]]:
        """
        Sends several calls in one HTTP request. Results come back in call order;
        a per-call error is returned in place as an RpcError instance.
        """
        if not calls:
            return []
        ids = [next(self._ids) for _ in calls]
        payload = [
            {"jsonrpc": "2.0", "id": call_id, "method": method, "params": params}
            for call_id, (method, params) in zip(ids, calls)
        ]
        body = await self._post(url, payload)
        if not isinstance(body, list):
            if isinstance(body, dict) and "error" in body:
                raise _error_from(body)
            raise RpcError("Unexpected batch response shape")

        by_id = {item.get("id"): item for item in body if isinstance(item, dict)}
        results: List[Union[Any, RpcError]] = []
        for call_id in ids:
            item = by_id.get(call_id)
            if item is None:
                results.append(RpcError(f"Missing response for request {call_id}"))
            elif "error" in item:
                results.append(_error_from(item))
            else:
                results.append(item.get("result"))
        return results

    async def aclose(self):
        if self._owns_client:
            await self._client.aclose()

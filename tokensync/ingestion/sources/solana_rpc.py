"""
Solana JSON-RPC client with two interchangeable endpoints.

A failed call, or a call that comes back empty, swaps to the other endpoint and
is retried exactly once. The endpoint choice lives on an `EndpointTriage`
instance, so clients built for separate runs never affect each other.
"""
from typing import Any, Awaitable, Callable, List, Optional, Sequence

import httpx
from pydantic import ValidationError

from tokensync.core.config import get_settings
from tokensync.core.errors import RpcError
from tokensync.core.logging_config import get_logger
from tokensync.ingestion.sources.jsonrpc import JsonRpcTransport
from tokensync.schemas.chain import SolanaTransaction

logger = get_logger("solana_rpc")


class EndpointTriage:
    def __init__(self, urls: Sequence[str]):
        if not urls:
            raise ValueError("At least one RPC endpoint is required")
        self.urls = list(urls)
        self._index = 0

    @property
    def current_index(self) -> int:
        return self._index

    def url(self, index: int) -> str:
        return self.urls[index]

    def swap_from(self, failed_index: int) -> int:
        """
        Moves off `failed_index`. If another caller already swapped away from it,
        the current endpoint is kept.
        """
        if self._index == failed_index:
            self._index = (failed_index + 1) % len(self.urls)
            logger.warning("rpc_endpoint_swapped", failed=self.urls[failed_index], current=self.urls[self._index])
        return self._index


class SolanaRpcClient:
    def __init__(
        self,
        primary_url: Optional[str] = None,
        fallback_url: Optional[str] = None,
        timeout: Optional[float] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        commitment: str = "confirmed",
    ):
        settings = get_settings()
        self.triage = EndpointTriage([
            primary_url or settings.SOLANA_PRIMARY_RPC_URL,
            fallback_url or settings.SOLANA_FALLBACK_RPC_URL,
        ])
        self.commitment = commitment
        self.transport = JsonRpcTransport(timeout or settings.HTTP_TIMEOUT, http_client)

    def _transaction_params(self, signature: str) -> list:
        return [
            signature,
            {"commitment": self.commitment, "encoding": "json", "maxSupportedTransactionVersion": 0},
        ]

    async def _with_failover(self, method: str, send: Callable[[str], Awaitable[Any]], is_empty: Callable[[Any], bool]):
        index = self.triage.current_index
        try:
            result = await send(self.triage.url(index))
            if not is_empty(result):
                return result
            logger.warning("rpc_empty_result", method=method, endpoint=self.triage.url(index))
        except (RpcError, httpx.HTTPError) as e:
            logger.warning("rpc_call_failed", method=method, endpoint=self.triage.url(index), error=str(e))

        index = self.triage.swap_from(index)
        return await send(self.triage.url(index))

    @staticmethod
    def _parse(signature: str, raw: Any) -> Optional[SolanaTransaction]:
        if raw is None or isinstance(raw, RpcError):
            if isinstance(raw, RpcError):
                logger.warning("transaction_fetch_error", signature=signature, error=str(raw))
            return None
        try:
            return SolanaTransaction.model_validate(raw)
        except ValidationError as e:
            logger.warning("transaction_parse_error", signature=signature, error=str(e))
            return None

    async def get_transaction(self, signature: str) -> Optional[SolanaTransaction]:
        async def send(url):
            return await self.transport.call(url, "getTransaction", self._transaction_params(signature))

        raw = await self._with_failover("getTransaction", send, lambda r: r is None)
        return self._parse(signature, raw)

    async def get_transactions_batch(self, signatures: Sequence[str]) -> List[Optional[SolanaTransaction]]:
        """One entry per signature, None where the node had no transaction."""
        if not signatures:
            return []
        calls = [("getTransaction", self._transaction_params(s)) for s in signatures]

        async def send(url):
            return await self.transport.batch(url, calls)

        def is_empty(results):
            return not results or all(r is None or isinstance(r, RpcError) for r in results)

        raw_results = await self._with_failover("getTransaction[batch]", send, is_empty)
        return [self._parse(sig, raw) for sig, raw in zip(signatures, raw_results)]

    async def aclose(self):
        await self.transport.aclose()

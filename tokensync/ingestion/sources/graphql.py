"""
GraphQL transport for the event source (bitquery).

The transport never raises: any transport, HTTP or GraphQL-level failure is
logged and reported as an empty result so callers degrade to "no data".
"""
from typing import Any, Dict, List, Optional

import httpx

from tokensync.core.config import get_settings
from tokensync.core.logging_config import get_logger

logger = get_logger("graphql")


def extract_rows(data: Dict[str, Any], *path: str) -> List[Any]:
    """Walks `path` into a response dict, returning [] if anything along the way is missing."""
    node: Any = data
    for key in path:
        if not isinstance(node, dict):
            return []
        node = node.get(key)
    return node if isinstance(node, list) else []


class GraphQLClient:
    def __init__(
        self,
        url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        settings = get_settings()
        self.url = url or settings.BITQUERY_URL
        self.api_key = api_key if api_key is not None else settings.BITQUERY_API_KEY
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=timeout or settings.HTTP_TIMEOUT)

    async def execute(self, query: str, variables: Dict[str, Any]) -> Dict[str, Any]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["X-API-KEY"] = self.api_key

        try:
            response = await self._client.post(
                self.url, json={"query": query, "variables": variables}, headers=headers
            )
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPStatusError as e:
            logger.error("graphql_http_error", status_code=e.response.status_code, error=str(e))
            return {}
        except httpx.RequestError as e:
            logger.error("graphql_request_error", error=str(e))
            return {}
        except ValueError as e:
            logger.error("graphql_invalid_json", error=str(e))
            return {}

        if not isinstance(body, dict):
            logger.error("graphql_unexpected_body", body_type=type(body).__name__)
            return {}
        if body.get("errors"):
            logger.error("graphql_errors", errors=body["errors"], variables=variables)
            return {}

        data = body.get("data")
        return data if isinstance(data, dict) else {}

    async def aclose(self):
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        await self.aclose()

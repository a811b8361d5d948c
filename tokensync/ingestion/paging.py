"""
Offset pagination over the event-source GraphQL API.
"""
import asyncio
from typing import Any, Callable, Dict, List, Optional

from tokensync.core.config import get_settings
from tokensync.core.logging_config import get_logger
from tokensync.ingestion.sources.graphql import GraphQLClient

logger = get_logger("paged_query")


class PagedQueryClient:
    def __init__(
        self,
        graphql: GraphQLClient,
        page_limit: Optional[int] = None,
        delay_seconds: Optional[float] = None,
        max_pages: Optional[int] = None,
    ):
        settings = get_settings()
        self.graphql = graphql
        self.page_limit = page_limit or settings.BITQUERY_PAGE_LIMIT
        self.delay_seconds = settings.BITQUERY_TIMEOUT_BETWEEN_CALLS if delay_seconds is None else delay_seconds
        self.max_pages = max_pages or settings.BITQUERY_MAX_PAGES

    async def execute(self, query: str, variables: Dict[str, Any]) -> Dict[str, Any]:
        """Single unpaged call, followed by the same rate-limit delay as a page."""
        data = await self.graphql.execute(query, variables)
        if self.delay_seconds:
            await asyncio.sleep(self.delay_seconds)
        return data

    async def fetch_all_pages(
        self,
        query: str,
        variables: Dict[str, Any],
        extract_rows: Callable[[Dict[str, Any]], List[Any]],
    ) -> List[Any]:
        """
        Runs `query` with `limit`/`offset` until a page comes back shorter than
        the limit, and returns every row in page order.

        A failed call yields an empty page, which ends the sequence: results can
        be truncated but never raise.
        """
        rows: List[Any] = []
        offset = 0
        max_offset = self.page_limit * self.max_pages

        while offset < max_offset:
            page_variables = {**variables, "limit": self.page_limit, "offset": offset}
            data = await self.execute(query, page_variables)
            page = extract_rows(data)
            rows.extend(page)
            logger.info("page_fetched", offset=offset, rows=len(page), total=len(rows))

            if len(page) < self.page_limit:
                break
            offset += self.page_limit
        else:
            logger.warning("page_ceiling_reached", max_offset=max_offset, total=len(rows))

        return rows

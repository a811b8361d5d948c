import asyncio
from datetime import datetime
from typing import List, Optional

from tokensync.core.config import get_settings
from tokensync.core.dates import iter_days, to_iso8601
from tokensync.core.errors import UnsupportedChainError
from tokensync.core.logging_config import get_logger
from tokensync.ingestion.resolvers import BalanceResolver
from tokensync.schemas.tracked import TokenBalanceDate

logger = get_logger("balance_series")


class DailyBalanceSeriesBuilder:
    """
    Resolves one balance per day boundary from `earliest` to `latest` inclusive.
    Each day is seeded with the last successfully resolved balance; a day that
    fails is logged and left out, and the next day starts from the same seed.
    """

    def __init__(self, resolver: BalanceResolver, day_delay: Optional[float] = None):
        self.resolver = resolver
        self.day_delay = get_settings().BITQUERY_TIMEOUT_BETWEEN_CALLS if day_delay is None else day_delay
        self.skipped_days = 0

    async def build(
        self,
        account: str,
        owner: Optional[str],
        mint: str,
        chain: str,
        earliest: datetime,
        latest: datetime,
        previous_balance: Optional[int] = 0,
        previous_end_date: Optional[datetime] = None,
        decimals: int = 0,
    ) -> List[TokenBalanceDate]:
        if chain not in self.resolver.resolvers:
            raise UnsupportedChainError(chain)

        series: List[TokenBalanceDate] = []
        balance = previous_balance
        balance_date = previous_end_date

        for day in iter_days(earliest, latest):
            try:
                resolved = await self.resolver.resolve_balance(
                    account, owner, mint, day, balance, chain,
                    decimals=decimals, previous_end_date=balance_date,
                )
            except Exception as e:
                logger.error("balance_day_failed", account=account, day=to_iso8601(day), error=str(e))
                resolved = None

            if resolved is None:
                self.skipped_days += 1
                logger.warning("balance_day_skipped", account=account, day=to_iso8601(day))
            else:
                series.append(TokenBalanceDate(date=day, balance=resolved))
                balance = resolved
                balance_date = day
                logger.info("balance_resolved", account=account, day=to_iso8601(day), balance=resolved)

            if self.day_delay:
                await asyncio.sleep(self.day_delay)

        return series

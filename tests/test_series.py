from datetime import datetime, timezone

import pytest

from tokensync.core.errors import UnsupportedChainError
from tokensync.ingestion.series import DailyBalanceSeriesBuilder


def day(d):
    return datetime(2022, 6, d, tzinfo=timezone.utc)


class ScriptedResolver:
    """Returns a fixed outcome per day; an Exception instance is raised instead."""

    def __init__(self, outcomes):
        self.outcomes = outcomes
        self.resolvers = {"solana": object()}
        self.calls = []

    async def resolve_balance(self, account, owner, mint, end_date_exclusive, previous_balance, chain, decimals=0, previous_end_date=None):
        self.calls.append((end_date_exclusive, previous_balance, previous_end_date))
        outcome = self.outcomes[end_date_exclusive]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


@pytest.mark.asyncio
async def test_failed_day_is_a_gap_and_next_day_reuses_the_same_seed():
    resolver = ScriptedResolver({day(1): 10, day(2): RuntimeError("bitquery timeout"), day(3): 25})
    builder = DailyBalanceSeriesBuilder(resolver, day_delay=0)

    series = await builder.build("acct", "owner", "mint", "solana", day(1), day(3), previous_balance=0, previous_end_date=datetime(2022, 1, 1, tzinfo=timezone.utc))

    assert [(p.date, p.balance) for p in series] == [(day(1), 10), (day(3), 25)]
    assert builder.skipped_days == 1
    # Day 3 is seeded from day 1, the last day that resolved
    assert resolver.calls[2] == (day(3), 10, day(1))


@pytest.mark.asyncio
async def test_unresolved_day_is_skipped_like_a_failure():
    resolver = ScriptedResolver({day(1): None, day(2): 7})
    builder = DailyBalanceSeriesBuilder(resolver, day_delay=0)

    series = await builder.build("acct", None, "mint", "solana", day(1), day(2), previous_balance=3)

    assert [(p.date, p.balance) for p in series] == [(day(2), 7)]
    assert resolver.calls[1][1] == 3


@pytest.mark.asyncio
async def test_seeds_only_flow_forward():
    resolver = ScriptedResolver({day(1): 5, day(2): 5, day(3): 9})
    builder = DailyBalanceSeriesBuilder(resolver, day_delay=0)

    await builder.build("acct", None, "mint", "solana", day(1), day(3), previous_balance=1)

    seeds = [(end, seed) for end, seed, _ in resolver.calls]
    assert seeds == [(day(1), 1), (day(2), 5), (day(3), 5)]


@pytest.mark.asyncio
async def test_single_day_range():
    resolver = ScriptedResolver({day(4): 1})
    builder = DailyBalanceSeriesBuilder(resolver, day_delay=0)

    series = await builder.build("acct", None, "mint", "solana", day(4), day(4))

    assert len(series) == 1


@pytest.mark.asyncio
async def test_unknown_chain_is_rejected_up_front():
    builder = DailyBalanceSeriesBuilder(ScriptedResolver({}), day_delay=0)

    with pytest.raises(UnsupportedChainError):
        await builder.build("acct", None, "mint", "tron", day(1), day(2))

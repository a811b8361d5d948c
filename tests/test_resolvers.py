from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest

from tokensync.core.errors import RpcError, UnsupportedChainError
from tokensync.ingestion import queries
from tokensync.ingestion.paging import PagedQueryClient
from tokensync.ingestion.resolvers import BalanceResolver, EthereumBalanceResolver, SolanaBalanceResolver
from tokensync.schemas.chain import SolanaTransaction
from stub_data import MINT, FakeGraphQL, solana_transaction, solana_transfer

END = datetime(2022, 6, 1, tzinfo=timezone.utc)
OWNER = "ownerAAAAA"
ACCOUNT = "tokenaccountAAAAA"


def latest_row(signature, timestamp):
    return {"solana": {"transfers": [
        {"transaction": {"signature": signature, "success": True}, "block": {"timestamp": {"iso8601": timestamp}}}
    ]}}


def paged(handler):
    graphql = FakeGraphQL(handler)
    return graphql, PagedQueryClient(graphql, page_limit=2, delay_seconds=0)


def receiver_is_later(query, variables):
    if query == queries.SOLANA_LATEST_TRANSFER_FROM_SENDER:
        return latest_row("sigSender", "2022-05-31T00:01:00Z")
    if query == queries.SOLANA_LATEST_TRANSFER_TO_RECEIVER:
        return latest_row("sigReceiver", "2022-05-31T00:02:00Z")
    return None


def tx_with_balance(signature, amount):
    return SolanaTransaction.model_validate(
        solana_transaction(signature, [OWNER, ACCOUNT], [(1, OWNER, amount)])
    )


@pytest.mark.asyncio
async def test_picks_the_chronologically_later_transfer():
    graphql, client = paged(receiver_is_later)
    rpc = AsyncMock()
    rpc.get_transaction.side_effect = lambda sig: tx_with_balance(sig, {"sigSender": 100, "sigReceiver": 500}[sig])
    resolver = SolanaBalanceResolver(client, rpc)

    balance = await resolver.resolve_balance(ACCOUNT, OWNER, MINT, END, previous_balance=0)

    assert balance == 500
    rpc.get_transaction.assert_awaited_once_with("sigReceiver")


@pytest.mark.asyncio
async def test_queries_with_inclusive_boundary_one_millisecond_before_end():
    graphql, client = paged(receiver_is_later)
    rpc = AsyncMock()
    rpc.get_transaction.return_value = tx_with_balance("sigReceiver", 500)
    resolver = SolanaBalanceResolver(client, rpc)

    await resolver.resolve_balance(ACCOUNT, OWNER, MINT, END, previous_balance=0)

    assert [v["before"] for _, v in graphql.calls] == ["2022-05-31T23:59:59.999Z"] * 2
    assert all(v["address"] == OWNER and v["limit"] == 1 for _, v in graphql.calls)


@pytest.mark.asyncio
async def test_no_activity_returns_previous_balance():
    graphql, client = paged(lambda q, v: None)
    rpc = AsyncMock()
    resolver = SolanaBalanceResolver(client, rpc)

    assert await resolver.resolve_balance(ACCOUNT, OWNER, MINT, END, previous_balance=42) == 42
    rpc.get_transaction.assert_not_awaited()


@pytest.mark.asyncio
async def test_failed_lookup_falls_back_to_delta_accumulation():
    def handler(query, variables):
        if query in (queries.SOLANA_LATEST_TRANSFER_FROM_SENDER, queries.SOLANA_LATEST_TRANSFER_TO_RECEIVER):
            return receiver_is_later(query, variables)
        if variables["offset"] > 0:
            return None
        if query == queries.SOLANA_TRANSFERS_FOR_SENDER:
            return {"solana": {"transfers": [
                solana_transfer("out1", (OWNER, ACCOUNT), ("ownerBBBBB", "tokenaccountBBBBB"), 300, "2022-05-31T01:00:00Z"),
            ]}}
        if query == queries.SOLANA_TRANSFERS_FOR_RECEIVER:
            return {"solana": {"transfers": [
                solana_transfer("in1", ("ownerBBBBB", "tokenaccountBBBBB"), (OWNER, ACCOUNT), 1000, "2022-05-31T02:00:00Z"),
                solana_transfer("in2", ("ownerCCCCC", "tokenaccountCCCCC"), (OWNER, ACCOUNT), 250, "2022-05-31T03:00:00Z", "mint"),
            ]}}
        return None

    graphql, client = paged(handler)
    rpc = AsyncMock()
    rpc.get_transaction.return_value = None
    resolver = SolanaBalanceResolver(client, rpc)

    balance = await resolver.resolve_balance(
        ACCOUNT, OWNER, MINT, END, previous_balance=5000,
        previous_end_date=datetime(2022, 5, 31, tzinfo=timezone.utc),
    )

    assert balance == 5000 + 1000 + 250 - 300
    window_calls = [v for q, v in graphql.calls if q == queries.SOLANA_TRANSFERS_FOR_SENDER]
    assert window_calls[0]["start"] == "2022-05-31T00:00:00.000Z"
    assert window_calls[0]["end"] == "2022-05-31T23:59:59.999Z"


@pytest.mark.asyncio
async def test_failed_lookup_without_previous_balance_is_unresolved():
    graphql, client = paged(receiver_is_later)
    rpc = AsyncMock()
    rpc.get_transaction.side_effect = RpcError("node unavailable")
    resolver = SolanaBalanceResolver(client, rpc)

    assert await resolver.resolve_balance(ACCOUNT, OWNER, MINT, END, previous_balance=None) is None


def eth_latest(tx_hash, height, timestamp):
    return {"ethereum": {"transfers": [
        {"transaction": {"hash": tx_hash}, "block": {"height": height, "timestamp": {"iso8601": timestamp}}}
    ]}}


def eth_transfer(tx_hash, sender, receiver, amount, height, timestamp):
    return {
        "amount": amount,
        "sender": {"address": sender},
        "receiver": {"address": receiver},
        "transaction": {"hash": tx_hash},
        "block": {"height": height, "timestamp": {"iso8601": timestamp}},
    }


@pytest.mark.asyncio
async def test_ethereum_uses_balance_at_block_of_later_transfer():
    def handler(query, variables):
        if query == queries.ETHEREUM_LATEST_TRANSFER_FROM_SENDER:
            return eth_latest("0xsent", 100, "2022-05-31T00:01:00Z")
        if query == queries.ETHEREUM_LATEST_TRANSFER_TO_RECEIVER:
            return eth_latest("0xreceived", 105, "2022-05-31T00:02:00Z")
        return None

    graphql, client = paged(handler)
    rpc = AsyncMock()
    rpc.get_balance_at_block.return_value = 7_000_000
    resolver = EthereumBalanceResolver(client, rpc)

    balance = await resolver.resolve_balance("0xpool", None, "0xtoken", END, previous_balance=0, decimals=6)

    assert balance == 7_000_000
    rpc.get_balance_at_block.assert_awaited_once_with("0xtoken", "0xpool", 105)


@pytest.mark.asyncio
async def test_ethereum_fallback_scales_decimal_amounts():
    def handler(query, variables):
        if query == queries.ETHEREUM_LATEST_TRANSFER_TO_RECEIVER:
            return eth_latest("0xreceived", 105, "2022-05-31T00:02:00Z")
        if variables.get("offset"):
            return None
        if query == queries.ETHEREUM_TRANSFERS_FOR_RECEIVER:
            return {"ethereum": {"transfers": [
                eth_transfer("0xa", "0xother", "0xpool", "1.5", 101, "2022-05-31T00:01:00Z"),
                eth_transfer("0xb", "0xother", "0xpool", "0.25", 105, "2022-05-31T00:02:00Z"),
            ]}}
        if query == queries.ETHEREUM_TRANSFERS_FOR_SENDER:
            return {"ethereum": {"transfers": [
                eth_transfer("0xc", "0xpool", "0xother", "0.5", 103, "2022-05-31T00:01:30Z"),
            ]}}
        return None

    graphql, client = paged(handler)
    rpc = AsyncMock()
    rpc.get_balance_at_block.side_effect = RpcError("header not found")
    resolver = EthereumBalanceResolver(client, rpc)

    balance = await resolver.resolve_balance("0xpool", None, "0xtoken", END, previous_balance=2_000_000, decimals=6)

    assert balance == 2_000_000 + 1_500_000 + 250_000 - 500_000


@pytest.mark.asyncio
async def test_dispatcher_rejects_unknown_chain():
    resolver = BalanceResolver({"solana": AsyncMock()})

    with pytest.raises(UnsupportedChainError):
        await resolver.resolve_balance(ACCOUNT, OWNER, MINT, END, 0, "bitcoin")

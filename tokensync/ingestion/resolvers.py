"""
Point-in-time balance resolution for a single account.

The event source tells us which transfer last touched the account before a day
boundary; the chain tells us the balance right after that transfer. When the
chain lookup fails, the balance is rebuilt from the previous known balance and
the transfers the event source reports in between.
"""
from datetime import datetime
from typing import Dict, List, Optional

import httpx

from tokensync.core.amounts import to_base_units
from tokensync.core.dates import BOUNDARY_EPSILON, ONE_DAY, to_iso8601
from tokensync.core.errors import RpcError, UnsupportedChainError
from tokensync.core.logging_config import get_logger
from tokensync.ingestion import queries
from tokensync.ingestion.paging import PagedQueryClient
from tokensync.ingestion.solana_balances import find_token_balance
from tokensync.ingestion.sources.evm_rpc import EvmRpcClient
from tokensync.ingestion.sources.graphql import extract_rows
from tokensync.ingestion.sources.solana_rpc import SolanaRpcClient
from tokensync.schemas.bitquery import (
    EthereumTransfer,
    LatestEthereumTransfer,
    LatestSolanaTransfer,
    SolanaTransfer,
)
from tokensync.services.drift_detection import parse_rows

logger = get_logger("balance_resolver")

COUNTED_SOLANA_TRANSFER_TYPES = {"transfer", "mint", "burn"}


class ChainBalanceResolver:
    chain = ""

    def __init__(self, paged: PagedQueryClient):
        self.paged = paged

    async def latest_transfer(self, account: str, owner: Optional[str], mint: str, end_inclusive: datetime):
        raise NotImplementedError

    async def authoritative_balance(self, transfer, account: str, owner: Optional[str], mint: str) -> Optional[int]:
        raise NotImplementedError

    async def window_deltas(
        self, account: str, owner: Optional[str], mint: str, start: datetime, end_inclusive: datetime, decimals: int
    ) -> tuple:
        """(incoming, outgoing) base-unit totals for the account within the window."""
        raise NotImplementedError

    async def resolve_balance(
        self,
        account: str,
        owner: Optional[str],
        mint: str,
        end_date_exclusive: datetime,
        previous_balance: Optional[int],
        decimals: int = 0,
        previous_end_date: Optional[datetime] = None,
    ) -> Optional[int]:
        """
        Balance of `account` at `end_date_exclusive`.

        Returns `previous_balance` when nothing touched the account before the
        boundary, and None when no value can be established.
        """
        end_inclusive = end_date_exclusive - BOUNDARY_EPSILON

        latest = await self.latest_transfer(account, owner, mint, end_inclusive)
        if latest is None:
            return previous_balance

        try:
            balance = await self.authoritative_balance(latest, account, owner, mint)
        except (RpcError, httpx.HTTPError) as e:
            logger.warning("authoritative_balance_failed", chain=self.chain, account=account, error=str(e))
            balance = None
        if balance is not None:
            return balance

        if previous_balance is None:
            logger.error("balance_unresolved", chain=self.chain, account=account, end_date=to_iso8601(end_date_exclusive))
            return None

        window_start = previous_end_date or (end_date_exclusive - ONE_DAY)
        incoming, outgoing = await self.window_deltas(account, owner, mint, window_start, end_inclusive, decimals)
        logger.warning(
            "balance_from_deltas",
            chain=self.chain,
            account=account,
            previous_balance=previous_balance,
            incoming=incoming,
            outgoing=outgoing,
        )
        return previous_balance + incoming - outgoing


class SolanaBalanceResolver(ChainBalanceResolver):
    chain = "solana"

    def __init__(self, paged: PagedQueryClient, rpc: SolanaRpcClient):
        super().__init__(paged)
        self.rpc = rpc

    async def latest_transfer(self, account, owner, mint, end_inclusive):
        variables = {"limit": 1, "offset": 0, "mint": mint, "address": owner or account, "before": to_iso8601(end_inclusive)}
        candidates: List[LatestSolanaTransfer] = []
        for query in (queries.SOLANA_LATEST_TRANSFER_FROM_SENDER, queries.SOLANA_LATEST_TRANSFER_TO_RECEIVER):
            data = await self.paged.execute(query, variables)
            candidates += parse_rows(LatestSolanaTransfer, extract_rows(data, "solana", "transfers")[:1], "bitquery_solana_latest")
        if not candidates:
            return None
        return max(candidates, key=lambda t: t.timestamp)

    async def authoritative_balance(self, transfer, account, owner, mint):
        signature = transfer.transaction.signature
        tx = await self.rpc.get_transaction(signature)
        if tx is None:
            logger.warning("transaction_not_found", signature=signature)
            return None
        return find_token_balance(tx, owner or account, mint, signature)

    async def window_deltas(self, account, owner, mint, start, end_inclusive, decimals):
        variables = {"mint": mint, "address": owner or account, "start": to_iso8601(start), "end": to_iso8601(end_inclusive)}
        outgoing_rows = await self.paged.fetch_all_pages(
            queries.SOLANA_TRANSFERS_FOR_SENDER, variables, lambda d: extract_rows(d, "solana", "transfers")
        )
        incoming_rows = await self.paged.fetch_all_pages(
            queries.SOLANA_TRANSFERS_FOR_RECEIVER, variables, lambda d: extract_rows(d, "solana", "transfers")
        )

        def total(rows, side):
            amount = 0
            for transfer in parse_rows(SolanaTransfer, rows, "bitquery_solana_transfers"):
                if transfer.transfer_type not in COUNTED_SOLANA_TRANSFER_TYPES:
                    continue
                party = getattr(transfer, side)
                # Only count the token account we are resolving when the source names it
                if party.mint_account and party.mint_account != account:
                    continue
                # Solana amounts arrive in base units
                amount += int(transfer.amount)
            return amount

        return total(incoming_rows, "receiver"), total(outgoing_rows, "sender")


class EthereumBalanceResolver(ChainBalanceResolver):
    chain = "ethereum"

    def __init__(self, paged: PagedQueryClient, rpc: EvmRpcClient, network: str = "ethereum"):
        super().__init__(paged)
        self.rpc = rpc
        self.network = network

    async def latest_transfer(self, account, owner, mint, end_inclusive):
        variables = {
            "network": self.network, "limit": 1, "offset": 0,
            "token": mint, "address": account, "before": to_iso8601(end_inclusive),
        }
        candidates: List[LatestEthereumTransfer] = []
        for query in (queries.ETHEREUM_LATEST_TRANSFER_FROM_SENDER, queries.ETHEREUM_LATEST_TRANSFER_TO_RECEIVER):
            data = await self.paged.execute(query, variables)
            candidates += parse_rows(LatestEthereumTransfer, extract_rows(data, "ethereum", "transfers")[:1], "bitquery_ethereum_latest")
        if not candidates:
            return None
        return max(candidates, key=lambda t: t.timestamp)

    async def authoritative_balance(self, transfer, account, owner, mint):
        if transfer.block.height is None:
            return None
        return await self.rpc.get_balance_at_block(mint, account, transfer.block.height)

    async def window_deltas(self, account, owner, mint, start, end_inclusive, decimals):
        variables = {
            "network": self.network, "token": mint, "address": account,
            "start": to_iso8601(start), "end": to_iso8601(end_inclusive),
        }
        outgoing_rows = await self.paged.fetch_all_pages(
            queries.ETHEREUM_TRANSFERS_FOR_SENDER, variables, lambda d: extract_rows(d, "ethereum", "transfers")
        )
        incoming_rows = await self.paged.fetch_all_pages(
            queries.ETHEREUM_TRANSFERS_FOR_RECEIVER, variables, lambda d: extract_rows(d, "ethereum", "transfers")
        )

        def total(rows):
            return sum(
                to_base_units(t.amount, decimals)
                for t in parse_rows(EthereumTransfer, rows, "bitquery_ethereum_transfers")
            )

        return total(incoming_rows), total(outgoing_rows)


class BalanceResolver:
    """Routes a balance lookup to the resolver for the entity's chain."""

    def __init__(self, resolvers: Dict[str, ChainBalanceResolver]):
        self.resolvers = resolvers

    @classmethod
    def for_clients(cls, paged: PagedQueryClient, solana_rpc: SolanaRpcClient, evm_rpc: EvmRpcClient):
        return cls({
            "solana": SolanaBalanceResolver(paged, solana_rpc),
            "ethereum": EthereumBalanceResolver(paged, evm_rpc),
        })

    async def resolve_balance(
        self,
        account: str,
        owner: Optional[str],
        mint: str,
        end_date_exclusive: datetime,
        previous_balance: Optional[int],
        chain: str,
        decimals: int = 0,
        previous_end_date: Optional[datetime] = None,
    ) -> Optional[int]:
        resolver = self.resolvers.get(chain)
        if resolver is None:
            raise UnsupportedChainError(chain)
        return await resolver.resolve_balance(
            account, owner, mint, end_date_exclusive, previous_balance,
            decimals=decimals, previous_end_date=previous_end_date,
        )

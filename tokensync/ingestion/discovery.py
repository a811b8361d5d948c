"""
Per-day account discovery: every account that moved a token inside a time
window, with its transfers and a best-effort balance at the end of the window.
"""
from datetime import datetime
from typing import Dict, List, Optional

from tokensync.core.amounts import to_base_units
from tokensync.core.config import get_settings
from tokensync.core.dates import BOUNDARY_EPSILON, to_iso8601
from tokensync.core.logging_config import get_logger
from tokensync.ingestion import queries
from tokensync.ingestion.paging import PagedQueryClient
from tokensync.ingestion.solana_balances import SolanaBalanceFetcher
from tokensync.ingestion.sources.evm_rpc import EvmRpcClient
from tokensync.ingestion.sources.graphql import extract_rows
from tokensync.schemas.bitquery import EthereumTransfer, SolanaTransfer
from tokensync.schemas.tracked import AccountTransactionInfo, TrackedTokenAccountInfo
from tokensync.services.drift_detection import parse_rows

logger = get_logger("discovery")


def _signed_events(info: TrackedTokenAccountInfo) -> list:
    events = [(t.transaction_datetime, t.hash, t.amount) for t in info.incoming_transactions.values()]
    events += [(t.transaction_datetime, t.hash, -t.amount) for t in info.outgoing_transactions.values()]
    events.sort(key=lambda e: e[0])
    return events


def reconcile_balance(
    info: TrackedTokenAccountInfo,
    known_balances: Dict[str, int],
    previous_balance: Optional[int],
) -> Optional[int]:
    """
    Balance at the end of the window for one account.

    `known_balances` maps transaction hash to the on-chain post balance. The
    latest transaction with a known balance anchors the result and later
    transfers are applied on top of it. Without an anchor, all of the window's
    transfers are applied to `previous_balance`.
    """
    events = _signed_events(info)

    anchor = None
    for index in range(len(events) - 1, -1, -1):
        if events[index][1] in known_balances:
            anchor = index
            break

    if anchor is None:
        if previous_balance is None:
            return None
        return previous_balance + sum(delta for _, _, delta in events)

    anchor_hash = events[anchor][1]
    return known_balances[anchor_hash] + sum(
        delta for _, tx_hash, delta in events[anchor + 1:] if tx_hash != anchor_hash
    )


class SolanaDiscovery:
    chain = "solana"

    def __init__(self, paged: PagedQueryClient, fetcher: SolanaBalanceFetcher, retry_limit: Optional[int] = None):
        self.paged = paged
        self.fetcher = fetcher
        self.retry_limit = get_settings().SOLANA_BALANCE_RETRY_LIMIT if retry_limit is None else retry_limit

    async def discover(
        self,
        mint: str,
        decimals: int,
        start: datetime,
        end_exclusive: datetime,
        previous_balances: Optional[Dict[str, int]] = None,
    ) -> List[TrackedTokenAccountInfo]:
        previous_balances = previous_balances or {}
        variables = {"mint": mint, "start": to_iso8601(start), "end": to_iso8601(end_exclusive - BOUNDARY_EPSILON)}
        rows = await self.paged.fetch_all_pages(
            queries.SOLANA_TRANSFERS_FOR_MINT, variables, lambda d: extract_rows(d, "solana", "transfers")
        )
        transfers = [
            t for t in parse_rows(SolanaTransfer, rows, "bitquery_solana_transfers")
            if t.transfer_type == "transfer" and t.transaction.success
        ]

        accounts: Dict[str, TrackedTokenAccountInfo] = {}
        for transfer in transfers:
            signature = transfer.transaction.signature
            for party, incoming in ((transfer.sender, False), (transfer.receiver, True)):
                if not party.mint_account:
                    logger.warning("transfer_without_token_account", signature=signature, owner=party.address)
                    continue
                account = accounts.setdefault(
                    party.mint_account,
                    TrackedTokenAccountInfo(address=party.mint_account, owner_address=party.address),
                )
                target = account.incoming_transactions if incoming else account.outgoing_transactions
                target[signature] = AccountTransactionInfo(
                    hash=signature,
                    transaction_datetime=transfer.timestamp,
                    amount=int(transfer.amount),
                )

        hash_to_owners: Dict[str, List[str]] = {}
        for account in accounts.values():
            for signature in {**account.incoming_transactions, **account.outgoing_transactions}:
                owners = hash_to_owners.setdefault(signature, [])
                if account.owner_address not in owners:
                    owners.append(account.owner_address)

        onchain = await self.fetcher.get_multiple_balances(hash_to_owners, mint, self.retry_limit)

        for account in accounts.values():
            known = {sig: by_owner[account.owner_address] for sig, by_owner in onchain.items() if account.owner_address in by_owner}
            account.approximate_minimum_balance = reconcile_balance(
                account, known, previous_balances.get(account.address)
            )
            if account.approximate_minimum_balance is None:
                logger.warning("account_balance_unknown", mint=mint, account=account.address)

        logger.info("solana_discovery_complete", mint=mint, start=variables["start"], transfers=len(transfers), accounts=len(accounts))
        return list(accounts.values())


class EthereumDiscovery:
    chain = "ethereum"

    def __init__(self, paged: PagedQueryClient, rpc: EvmRpcClient, network: str = "ethereum"):
        self.paged = paged
        self.rpc = rpc
        self.network = network

    async def discover(
        self,
        mint: str,
        decimals: int,
        start: datetime,
        end_exclusive: datetime,
        previous_balances: Optional[Dict[str, int]] = None,
    ) -> List[TrackedTokenAccountInfo]:
        previous_balances = previous_balances or {}
        variables = {
            "network": self.network,
            "token": mint,
            "start": to_iso8601(start),
            "end": to_iso8601(end_exclusive - BOUNDARY_EPSILON),
        }
        rows = await self.paged.fetch_all_pages(
            queries.ETHEREUM_TRANSFERS_FOR_TOKEN, variables, lambda d: extract_rows(d, "ethereum", "transfers")
        )
        transfers = parse_rows(EthereumTransfer, rows, "bitquery_ethereum_transfers")

        accounts: Dict[str, TrackedTokenAccountInfo] = {}
        address_to_block: Dict[str, int] = {}
        for transfer in transfers:
            tx_hash = transfer.transaction.hash
            amount = to_base_units(transfer.amount, decimals)
            for party, incoming in ((transfer.sender, False), (transfer.receiver, True)):
                account = accounts.setdefault(party.address, TrackedTokenAccountInfo(address=party.address))
                target = account.incoming_transactions if incoming else account.outgoing_transactions
                target[tx_hash] = AccountTransactionInfo(
                    hash=tx_hash, transaction_datetime=transfer.timestamp, amount=amount
                )
                if transfer.block.height is not None:
                    address_to_block[party.address] = max(address_to_block.get(party.address, 0), transfer.block.height)

        onchain = await self.rpc.get_balances_at_blocks(mint, address_to_block)

        for address, account in accounts.items():
            if address in onchain:
                account.approximate_minimum_balance = onchain[address]
            else:
                account.approximate_minimum_balance = reconcile_balance(account, {}, previous_balances.get(address))
                if account.approximate_minimum_balance is None:
                    logger.warning("account_balance_unknown", token=mint, account=address)

        logger.info("ethereum_discovery_complete", token=mint, start=variables["start"], transfers=len(transfers), accounts=len(accounts))
        return list(accounts.values())

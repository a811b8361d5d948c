"""
Post-transaction token balances for many Solana transactions at once.
"""
import asyncio
from typing import Dict, List, Optional, Sequence

import httpx

from tokensync.core.config import get_settings
from tokensync.core.errors import RpcError
from tokensync.core.logging_config import get_logger
from tokensync.ingestion.sources.solana_rpc import SolanaRpcClient
from tokensync.schemas.chain import SolanaTransaction

logger = get_logger("solana_balances")


def find_token_balance(tx: SolanaTransaction, owner: str, mint: str, signature: str = "") -> Optional[int]:
    """
    Post balance of `mint` held by `owner` after `tx`.

    Entries are matched on the declared owner, or on the owner's position in
    the account-key list: the event source sometimes reports a closed token
    account's address where the owner should be.
    """
    try:
        owner_index = tx.account_keys.index(owner)
    except ValueError:
        owner_index = -1

    matches = [
        b for b in tx.post_token_balances
        if b.mint == mint and (b.owner == owner or b.account_index == owner_index)
    ]
    if not matches:
        logger.error("token_balance_not_found", signature=signature, owner=owner, mint=mint)
        return None
    if len(matches) > 1:
        logger.warning("ambiguous_token_balance", signature=signature, owner=owner, mint=mint, matches=len(matches))
    return int(matches[0].ui_token_amount.amount)


class SolanaBalanceFetcher:
    def __init__(self, rpc: SolanaRpcClient, chunk_size: Optional[int] = None, chunk_delay: Optional[float] = None):
        settings = get_settings()
        self.rpc = rpc
        self.chunk_size = chunk_size or settings.SOLANA_TX_CHUNK_SIZE
        self.chunk_delay = settings.SOLANA_TIMEOUT_BETWEEN_CHUNKS if chunk_delay is None else chunk_delay

    async def _fetch_transactions(self, signatures: Sequence[str]) -> Dict[str, Optional[SolanaTransaction]]:
        transactions = {}
        for i in range(0, len(signatures), self.chunk_size):
            chunk = signatures[i:i + self.chunk_size]
            try:
                results = await self.rpc.get_transactions_batch(chunk)
            except (RpcError, httpx.HTTPError) as e:
                # Both endpoints failed; the chunk stays pending for the next pass
                logger.warning("transaction_chunk_failed", count=len(chunk), first=chunk[0], error=str(e))
                results = [None] * len(chunk)
            transactions.update(zip(chunk, results))
            if i + self.chunk_size < len(signatures) and self.chunk_delay:
                await asyncio.sleep(self.chunk_delay)
        return transactions

    async def get_multiple_balances(
        self,
        tx_hash_to_owners: Dict[str, List[str]],
        mint: str,
        retry_limit: Optional[int] = None,
    ) -> Dict[str, Dict[str, int]]:
        """
        {signature: {owner: balance}} for every transaction the RPC returned.
        A returned transaction with no balance for any owner maps to `{}`.

        Signatures the node did not return are retried, up to `retry_limit`
        extra passes. Signatures that never resolve are absent from the result.
        """
        if retry_limit is None:
            retry_limit = get_settings().SOLANA_BALANCE_RETRY_LIMIT

        results: Dict[str, Dict[str, int]] = {}
        pending = dict(tx_hash_to_owners)

        for attempt in range(retry_limit + 1):
            if not pending:
                break
            if attempt:
                logger.info("retrying_missing_transactions", attempt=attempt, count=len(pending))

            transactions = await self._fetch_transactions(list(pending))
            missing = {}
            for signature, owners in pending.items():
                tx = transactions.get(signature)
                if tx is None:
                    missing[signature] = owners
                    continue
                by_owner = results.setdefault(signature, {})
                for owner in owners:
                    balance = find_token_balance(tx, owner, mint, signature)
                    if balance is not None:
                        by_owner[owner] = balance
            pending = missing

        if pending:
            logger.warning("transactions_unresolved", count=len(pending), signatures=sorted(pending)[:20])
        return results

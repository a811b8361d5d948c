"""
Event-log ingestion for EVM contracts, resumable from the highest stored block.
"""
from typing import List, Optional, Sequence

from tokensync.core.errors import BlockRangeError
from tokensync.core.logging_config import get_logger
from tokensync.db.models import ContractEvent
from tokensync.db.storage import MergeStrategy, open_storage
from tokensync.ingestion.pipeline import run_recorded_job
from tokensync.ingestion.sources.evm_rpc import EvmRpcClient
from tokensync.schemas.chain import hex_to_int

logger = get_logger("contract_events")

EVENTS_JOB = "contract_events"


async def resolve_from_block(contract_addresses: Sequence[str], to_block: int, from_block: Optional[int], chunk_size: Optional[int] = None) -> int:
    if from_block is not None:
        if from_block > to_block:
            raise BlockRangeError(f"From block {from_block} is after to block {to_block}")
        return from_block

    async with open_storage(chunk_size) as storage:
        last_block = await storage.max_contract_event_block(contract_addresses)
    if last_block is None:
        return 0
    if last_block > to_block:
        raise BlockRangeError(
            "To block is less than the most recently fetched block. Specify to and from blocks explicitly."
        )
    # The last block may have been partially stored; re-reading it is harmless.
    return last_block


async def sync_contract_events(
    rpc: EvmRpcClient,
    contract_addresses: Sequence[str],
    to_block: int,
    from_block: Optional[int] = None,
    topics: Optional[List[Optional[str]]] = None,
    chunk_size: Optional[int] = None,
) -> int:
    """
    Stores every log emitted by `contract_addresses` in [from_block, to_block],
    together with the gas used and status of the emitting transaction.
    """
    start = await resolve_from_block(contract_addresses, to_block, from_block, chunk_size)

    async def job():
        logs = []
        for address in contract_addresses:
            logs += await rpc.get_past_events(address, start, to_block, topics)
        receipts = await rpc.get_transaction_receipts([log.transaction_hash for log in logs])

        rows = []
        for log in logs:
            receipt = receipts.get(log.transaction_hash)
            rows.append({
                "contract_address": log.address.lower(),
                "block_number": hex_to_int(log.block_number),
                "transaction_hash": log.transaction_hash,
                "log_index": hex_to_int(log.log_index),
                "topics": log.topics,
                "data": log.data,
                "gas_used": hex_to_int(receipt.gas_used) if receipt else None,
                "status": hex_to_int(receipt.status) if receipt else None,
            })

        async with open_storage(chunk_size) as storage:
            written = await storage.upsert(
                ContractEvent,
                rows,
                conflict_columns=["transaction_hash", "log_index"],
                strategy=MergeStrategy.IGNORE,
            )
        logger.info("contract_events_stored", contracts=len(contract_addresses), from_block=start, to_block=to_block, events=written)
        return written

    return await run_recorded_job(EVENTS_JOB, job)

import pytest
from sqlalchemy.future import select

from tokensync.core import database
from tokensync.core.errors import BlockRangeError
from tokensync.db.models import ContractEvent, SyncRun
from tokensync.ingestion.contract_events import resolve_from_block, sync_contract_events
from tokensync.schemas.chain import EvmLog, EvmReceipt

CONTRACT = "0xAbCdEf0000000000000000000000000000000001"
TRANSFER_TOPIC = "0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef"


def log(block, tx_hash, index):
    return EvmLog.model_validate({
        "address": CONTRACT,
        "topics": [TRANSFER_TOPIC],
        "data": "0x" + "00" * 31 + "2a",
        "blockNumber": hex(block),
        "transactionHash": tx_hash,
        "logIndex": hex(index),
    })


class FakeEvmRpc:
    def __init__(self, logs):
        self.logs = logs
        self.event_requests = []

    async def get_past_events(self, address, from_block, to_block, topics=None):
        self.event_requests.append((address, from_block, to_block))
        return [l for l in self.logs if from_block <= int(l.block_number, 16) <= to_block]

    async def get_transaction_receipts(self, tx_hashes):
        return {
            h: EvmReceipt.model_validate({"transactionHash": h, "blockNumber": "0x1", "gasUsed": "0x5208", "status": "0x1"})
            for h in tx_hashes
            if h != "0xnoreceipt"
        }


async def stored_events():
    async with database.AsyncSessionLocal() as session:
        result = await session.execute(select(ContractEvent).order_by(ContractEvent.block_number, ContractEvent.log_index))
        return result.scalars().all()


@pytest.mark.asyncio
async def test_events_are_stored_with_receipt_details():
    rpc = FakeEvmRpc([log(10, "0xaa", 0), log(10, "0xaa", 1), log(12, "0xnoreceipt", 0)])

    written = await sync_contract_events(rpc, [CONTRACT], to_block=20)

    assert written == 3
    events = await stored_events()
    assert [(e.block_number, e.log_index) for e in events] == [(10, 0), (10, 1), (12, 0)]
    assert events[0].contract_address == CONTRACT.lower()
    assert events[0].gas_used == 21000
    assert events[0].status == 1
    assert events[0].topics == [TRANSFER_TOPIC]
    assert events[2].gas_used is None
    # Nothing stored yet, so the scan starts at genesis
    assert rpc.event_requests == [(CONTRACT, 0, 20)]


@pytest.mark.asyncio
async def test_rerun_resumes_from_highest_stored_block_without_duplicates():
    rpc = FakeEvmRpc([log(10, "0xaa", 0), log(12, "0xbb", 0)])
    await sync_contract_events(rpc, [CONTRACT], to_block=12)

    rpc.logs.append(log(15, "0xcc", 3))
    await sync_contract_events(rpc, [CONTRACT], to_block=20)

    assert rpc.event_requests[-1] == (CONTRACT, 12, 20)
    events = await stored_events()
    assert [e.transaction_hash for e in events] == ["0xaa", "0xbb", "0xcc"]


@pytest.mark.asyncio
async def test_to_block_behind_stored_events_is_rejected():
    await sync_contract_events(FakeEvmRpc([log(50, "0xaa", 0)]), [CONTRACT], to_block=60)

    with pytest.raises(BlockRangeError, match="Specify to and from blocks explicitly"):
        await resolve_from_block([CONTRACT], to_block=40, from_block=None)

    # Explicit bounds bypass the stored watermark
    assert await resolve_from_block([CONTRACT], to_block=40, from_block=30) == 30


@pytest.mark.asyncio
async def test_inverted_block_range_is_rejected():
    with pytest.raises(BlockRangeError):
        await sync_contract_events(FakeEvmRpc([]), [CONTRACT], to_block=5, from_block=9)

    async with database.AsyncSessionLocal() as session:
        assert (await session.execute(select(SyncRun))).scalars().all() == []

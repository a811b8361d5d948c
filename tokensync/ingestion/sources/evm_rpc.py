"""
EVM client: ERC20 balances at a pinned block through web3, receipts and event
logs over the shared JSON-RPC transport.
"""
import asyncio
from typing import Dict, Iterable, List, Optional, Sequence

import aiohttp
import httpx
from pydantic import ValidationError
from web3 import AsyncHTTPProvider, AsyncWeb3
from web3.exceptions import Web3Exception

from tokensync.core.config import get_settings
from tokensync.core.errors import RpcError
from tokensync.core.logging_config import get_logger
from tokensync.ingestion.sources.jsonrpc import JsonRpcTransport
from tokensync.schemas.chain import EvmLog, EvmReceipt, hex_to_int

logger = get_logger("evm_rpc")

ERC20_BALANCE_OF_ABI = [
    {
        "constant": True,
        "inputs": [{"name": "owner", "type": "address"}],
        "name": "balanceOf",
        "outputs": [{"name": "balance", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    }
]


class EvmRpcClient:
    def __init__(
        self,
        url: Optional[str] = None,
        timeout: Optional[float] = None,
        concurrency: Optional[int] = None,
        call_delay: Optional[float] = None,
        receipt_chunk_size: Optional[int] = None,
        log_block_span: Optional[int] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        web3: Optional[AsyncWeb3] = None,
    ):
        settings = get_settings()
        self.url = url or settings.ETHEREUM_RPC_URL
        timeout = timeout or settings.HTTP_TIMEOUT
        self.concurrency = concurrency or settings.EVM_BALANCE_CONCURRENCY
        self.call_delay = settings.EVM_TIMEOUT_BETWEEN_CALLS if call_delay is None else call_delay
        self.receipt_chunk_size = receipt_chunk_size or settings.EVM_RECEIPT_CHUNK_SIZE
        self.log_block_span = log_block_span or settings.EVM_LOG_BLOCK_SPAN
        self.transport = JsonRpcTransport(timeout, http_client)
        self._owns_web3 = web3 is None
        self.web3 = web3 or AsyncWeb3(
            AsyncHTTPProvider(self.url, request_kwargs={"timeout": aiohttp.ClientTimeout(total=timeout)})
        )
        self._contracts = {}

    async def block_number(self) -> int:
        return hex_to_int(await self.transport.call(self.url, "eth_blockNumber", []))

    def _token_contract(self, token: str):
        address = AsyncWeb3.to_checksum_address(token)
        if address not in self._contracts:
            self._contracts[address] = self.web3.eth.contract(address=address, abi=ERC20_BALANCE_OF_ABI)
        return self._contracts[address]

    async def get_balance_at_block(self, token: str, address: str, block: int) -> int:
        """ERC20 `balanceOf(address)` evaluated at `block`, in base units."""
        balance_of = self._token_contract(token).functions.balanceOf(AsyncWeb3.to_checksum_address(address))
        try:
            return await balance_of.call(block_identifier=block)
        except (Web3Exception, ValueError, aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise RpcError(f"balanceOf failed for {address} at block {block}: {e}") from e

    async def _settle_windows(self, items: List, size: int, worker) -> List:
        """
        Runs `worker` over `items` in windows of `size`, waiting `call_delay`
        between windows. Every call settles; failures come back as exceptions.
        """
        outcomes = []
        for i in range(0, len(items), size):
            window = items[i:i + size]
            outcomes.extend(await asyncio.gather(*(worker(item) for item in window), return_exceptions=True))
            if i + size < len(items) and self.call_delay:
                await asyncio.sleep(self.call_delay)
        return outcomes

    async def get_balances_at_blocks(self, token: str, address_to_block: Dict[str, int]) -> Dict[str, int]:
        """
        Balances for many (address, block) pairs. Failed lookups are logged and
        left out of the result; they never abort the batch.
        """
        pairs = list(address_to_block.items())
        outcomes = await self._settle_windows(
            pairs, self.concurrency, lambda pair: self.get_balance_at_block(token, pair[0], pair[1])
        )

        balances = {}
        for (address, block), outcome in zip(pairs, outcomes):
            if isinstance(outcome, Exception):
                logger.warning("balance_lookup_failed", token=token, address=address, block=block, error=str(outcome))
                continue
            balances[address] = outcome
        return balances

    async def get_transaction_receipt(self, tx_hash: str) -> Optional[EvmReceipt]:
        raw = await self.transport.call(self.url, "eth_getTransactionReceipt", [tx_hash])
        if raw is None:
            return None
        try:
            return EvmReceipt.model_validate(raw)
        except ValidationError as e:
            logger.warning("receipt_parse_error", tx_hash=tx_hash, error=str(e))
            return None

    async def get_transaction_receipts(self, tx_hashes: Sequence[str]) -> Dict[str, EvmReceipt]:
        hashes = list(dict.fromkeys(tx_hashes))
        outcomes = await self._settle_windows(hashes, self.receipt_chunk_size, self.get_transaction_receipt)

        receipts = {}
        for tx_hash, outcome in zip(hashes, outcomes):
            if isinstance(outcome, Exception):
                logger.warning("receipt_fetch_failed", tx_hash=tx_hash, error=str(outcome))
            elif outcome is None:
                logger.warning("receipt_not_found", tx_hash=tx_hash)
            else:
                receipts[tx_hash] = outcome
        return receipts

    def _block_spans(self, from_block: int, to_block: int) -> Iterable[tuple]:
        start = from_block
        while start <= to_block:
            end = min(start + self.log_block_span - 1, to_block)
            yield start, end
            start = end + 1

    async def get_past_events(
        self, address: str, from_block: int, to_block: int, topics: Optional[List[Optional[str]]] = None
    ) -> List[EvmLog]:
        """`eth_getLogs` for one contract over [from_block, to_block], split into bounded spans."""
        events = []
        for start, end in self._block_spans(from_block, to_block):
            log_filter = {"address": address, "fromBlock": hex(start), "toBlock": hex(end)}
            if topics:
                log_filter["topics"] = topics
            raw_logs = await self.transport.call(self.url, "eth_getLogs", [log_filter]) or []
            for raw in raw_logs:
                try:
                    log = EvmLog.model_validate(raw)
                except ValidationError as e:
                    logger.warning("log_parse_error", address=address, error=str(e))
                    continue
                if not log.removed:
                    events.append(log)
            logger.info("logs_fetched", address=address, from_block=start, to_block=end, count=len(raw_logs))
        return events

    async def aclose(self):
        await self.transport.aclose()
        if self._owns_web3:
            await self.web3.provider.disconnect()

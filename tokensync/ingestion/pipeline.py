"""
Drives the daily sync jobs: account discovery per tracked token and balance
series per liquidity pool.

Both jobs are resumable. Every write is an idempotent upsert, and the next run
starts from the latest stored day (the watermark), so an aborted backfill can
simply be run again.
"""
import asyncio
import time
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Sequence

from prometheus_client import Counter, Gauge, Histogram
from sqlalchemy.future import select

from tokensync.core import config
from tokensync.core.dates import ONE_DAY, iter_days, parse_day, to_iso8601, truncate_day
from tokensync.core.errors import ConfigurationError, InvalidDateRangeError
from tokensync.core.logging_config import get_logger
from tokensync.db.models import (
    AccountBalanceChange,
    AccountBalanceSnapshot,
    AccountTransaction,
    LiquidityPoolBalance,
    SyncRun,
    TrackedToken,
    TrackedTokenAccount,
)
from tokensync.db.storage import MergeStrategy, open_storage
from tokensync.ingestion.discovery import EthereumDiscovery, SolanaDiscovery
from tokensync.ingestion.paging import PagedQueryClient
from tokensync.ingestion.resolvers import BalanceResolver
from tokensync.ingestion.series import DailyBalanceSeriesBuilder
from tokensync.ingestion.solana_balances import SolanaBalanceFetcher
from tokensync.ingestion.sources.evm_rpc import EvmRpcClient
from tokensync.ingestion.sources.graphql import GraphQLClient
from tokensync.ingestion.sources.solana_rpc import SolanaRpcClient
from tokensync.schemas.tracked import TrackedTokenAccountInfo

logger = get_logger("sync_pipeline")
settings = config.get_settings()

# --- Metrics ---
SYNC_RECORDS_WRITTEN = Counter("sync_records_written_total", "Rows written by sync jobs", ["job"])
SYNC_RUN_DURATION = Histogram("sync_run_duration_seconds", "Sync job duration", ["job"])
SYNC_JOB_STATUS = Gauge("sync_job_status", "Sync job status (1=Success, 0=Fail)", ["job"])
SYNC_SKIPPED_DAYS = Counter("sync_skipped_days_total", "Days left without data by sync jobs", ["job"])

ACCOUNTS_JOB = "tracked_token_accounts"
BALANCES_JOB = "liquidity_pool_balances"

# --- Run bookkeeping ---

async def get_sync_run(session, job_name: str) -> SyncRun | None:
    result = await session.execute(select(SyncRun).where(SyncRun.job_name == job_name))
    return result.scalars().first()

async def update_sync_run(session, job_name: str, status: str, records: int, duration: int, error: str | None = None, target_date: datetime | None = None):
    SYNC_JOB_STATUS.labels(job=job_name).set(1 if status == "success" else 0)

    run = await get_sync_run(session, job_name)
    if run:
        run.last_status = status
        run.records_processed = records
        run.run_duration_ms = duration
        run.error_log = error
        run.last_target_date = target_date
    else:
        session.add(SyncRun(
            job_name=job_name,
            last_status=status,
            records_processed=records,
            run_duration_ms=duration,
            error_log=error,
            last_target_date=target_date,
        ))

async def run_recorded_job(job_name: str, job, target_date: datetime | None = None) -> int:
    """
    Awaits `job()` (which returns the number of rows written) and records the
    outcome in `sync_runs` and the job metrics. Failures are re-raised.
    """
    start_time = time.time()
    logger.info("sync_start", job=job_name, target_date=target_date and to_iso8601(target_date))
    try:
        written = await job()
    except Exception as e:
        duration_ms = int((time.time() - start_time) * 1000)
        logger.error("sync_failure", job=job_name, error=str(e))
        async with open_storage() as storage:
            await update_sync_run(storage.session, job_name, "failure", 0, duration_ms, error=str(e), target_date=target_date)
        raise

    duration_ms = int((time.time() - start_time) * 1000)
    async with open_storage() as storage:
        await update_sync_run(storage.session, job_name, "success", written, duration_ms, target_date=target_date)

    SYNC_RECORDS_WRITTEN.labels(job=job_name).inc(written)
    SYNC_RUN_DURATION.labels(job=job_name).observe(duration_ms / 1000.0)
    logger.info("sync_success", job=job_name, records=written, duration_ms=duration_ms)
    return written


class TrackedEntitySyncOrchestrator:
    def __init__(
        self,
        resolver: BalanceResolver,
        discoveries: Dict[str, object],
        series_builder: Optional[DailyBalanceSeriesBuilder] = None,
        chunk_size: Optional[int] = None,
    ):
        self.resolver = resolver
        self.discoveries = discoveries
        self.series_builder = series_builder or DailyBalanceSeriesBuilder(resolver)
        self.chunk_size = chunk_size

    @classmethod
    def from_clients(cls, paged: PagedQueryClient, solana_rpc: SolanaRpcClient, evm_rpc: EvmRpcClient, chunk_size: Optional[int] = None):
        resolver = BalanceResolver.for_clients(paged, solana_rpc, evm_rpc)
        discoveries = {
            "solana": SolanaDiscovery(paged, SolanaBalanceFetcher(solana_rpc)),
            "ethereum": EthereumDiscovery(paged, evm_rpc),
        }
        return cls(resolver, discoveries, chunk_size=chunk_size)

    # --- Discovery mode ---

    async def sync_accounts_for_end_date(self, end_date: str, force_one_day: bool = False, mint_id: Optional[int] = None) -> int:
        """
        Brings every tracked token (or only `mint_id`) up to `end_date`, one day
        at a time, starting the day after its latest stored snapshot. With
        `force_one_day`, or for a token with no snapshots, only `end_date` is synced.
        """
        last_end_date = parse_day(end_date)

        async with open_storage(self.chunk_size) as storage:
            tokens = await storage.list_tokens(mint_id)
        if mint_id is not None and not tokens:
            raise ConfigurationError(f"Unknown tracked token id {mint_id}")

        async def job():
            written = 0
            for token in tokens:
                try:
                    written += await self._sync_token(token, last_end_date, force_one_day)
                except Exception as e:
                    logger.error("token_sync_failed", token_id=token.id, mint=token.mint_address, error=str(e))
            return written

        return await run_recorded_job(ACCOUNTS_JOB, job, last_end_date)

    async def _sync_token(self, token: TrackedToken, last_end_date: datetime, force_one_day: bool) -> int:
        discovery = self.discoveries.get(token.chain)
        if discovery is None:
            logger.error("invalid_chain", token_id=token.id, chain=token.chain)
            return 0

        async with open_storage(self.chunk_size) as storage:
            balances_by_date = await storage.latest_balances_before(token.id, last_end_date)
            account_ids = await storage.account_ids_by_address(token.id)

        # Every day writes a snapshot for every known account, so the latest rows share one date.
        if len(balances_by_date) > 1:
            logger.error(
                "inconsistent_watermark",
                token_id=token.id,
                dates=sorted(to_iso8601(d) for d in balances_by_date),
            )
            return 0

        watermark = max(balances_by_date) if balances_by_date else None
        if watermark is not None and not force_one_day:
            current = truncate_day(watermark) + ONE_DAY
        else:
            current = last_end_date

        logger.info("token_sync_start", token_id=token.id, mint=token.mint_address, start=to_iso8601(current), end=to_iso8601(last_end_date))

        written = 0
        for day_end in iter_days(current, last_end_date):
            previous = self._carried_balances(balances_by_date, day_end)
            try:
                day_balances, rows, new_ids = await self._sync_token_day(token, discovery, account_ids, previous, day_end)
            except Exception as e:
                SYNC_SKIPPED_DAYS.labels(job=ACCOUNTS_JOB).inc()
                logger.error("token_day_failed", token_id=token.id, day=to_iso8601(day_end), error=str(e))
                continue
            account_ids.update(new_ids)
            balances_by_date[day_end] = day_balances
            written += rows
        return written

    @staticmethod
    def _carried_balances(balances_by_date: Dict[datetime, Dict[int, int]], day_end: datetime) -> Dict[int, int]:
        earlier = [d for d in balances_by_date if d < day_end]
        if not earlier:
            return {}
        return dict(balances_by_date[max(earlier)])

    async def _sync_token_day(
        self,
        token: TrackedToken,
        discovery,
        account_ids: Dict[str, int],
        previous_balances: Dict[int, int],
        day_end: datetime,
    ):
        """
        Discovers one day of activity and writes it in a single transaction.
        Returns (balances by account id, rows written, account ids seen).
        """
        day_start = day_end - ONE_DAY
        previous_by_address = {
            address: previous_balances[account_id]
            for address, account_id in account_ids.items()
            if account_id in previous_balances
        }
        infos: List[TrackedTokenAccountInfo] = await discovery.discover(
            token.mint_address, token.decimals, day_start, day_end, previous_by_address
        )

        async with open_storage(self.chunk_size) as storage:
            # 1. Accounts
            written = await storage.upsert(
                TrackedTokenAccount,
                [
                    {
                        "address": info.address,
                        "owner_address": info.owner_address,
                        "tracked_token_id": token.id,
                        "first_transaction_date": info.first_transaction_date or day_start,
                    }
                    for info in infos
                ],
                conflict_columns=["address", "tracked_token_id"],
                update_columns=["first_transaction_date"],
                only_if_earlier="first_transaction_date",
            )
            ids = await storage.account_ids_by_address(token.id, [info.address for info in infos])

            balances = dict(previous_balances)
            changed: Dict[int, int] = {}
            for info in infos:
                if info.approximate_minimum_balance is None:
                    continue
                account_id = ids.get(info.address)
                if account_id is None:
                    logger.error("account_id_missing", token_id=token.id, address=info.address)
                    continue
                if previous_balances.get(account_id) != info.approximate_minimum_balance:
                    changed[account_id] = info.approximate_minimum_balance
                balances[account_id] = info.approximate_minimum_balance

            # 2. Snapshot for every known account, carried forward where nothing happened
            written += await storage.upsert(
                AccountBalanceSnapshot,
                [
                    {"tracked_token_account_id": account_id, "datetime": day_end, "approximate_minimum_balance": str(balance)}
                    for account_id, balance in balances.items()
                ],
                conflict_columns=["tracked_token_account_id", "datetime"],
                strategy=MergeStrategy.OVERWRITE,
            )

            # 3. Changes, only where the balance moved
            written += await storage.upsert(
                AccountBalanceChange,
                [
                    {"tracked_token_account_id": account_id, "datetime": day_end, "approximate_minimum_balance": str(balance)}
                    for account_id, balance in changed.items()
                ],
                conflict_columns=["tracked_token_account_id", "datetime"],
                strategy=MergeStrategy.IGNORE,
            )

            # 4. Transactions
            transaction_rows = []
            for info in infos:
                account_id = ids.get(info.address)
                if account_id is None:
                    continue
                for transfer_in, transactions in ((True, info.incoming_transactions), (False, info.outgoing_transactions)):
                    for txn in transactions.values():
                        transaction_rows.append({
                            "tracked_token_account_id": account_id,
                            "datetime": day_end,
                            "transaction_datetime": txn.transaction_datetime,
                            "transaction_hash": txn.hash,
                            "amount": str(txn.amount),
                            "transfer_in": transfer_in,
                        })
            written += await storage.upsert(
                AccountTransaction,
                transaction_rows,
                conflict_columns=["tracked_token_account_id", "transaction_hash", "transfer_in"],
                strategy=MergeStrategy.IGNORE,
            )

        logger.info(
            "token_day_synced",
            token_id=token.id,
            day=to_iso8601(day_end),
            accounts=len(infos),
            changed=len(changed),
            transactions=len(transaction_rows),
        )
        return balances, written, ids

    # --- Balance-series mode ---

    async def sync_balances_for_date_range(self, earliest: str, latest: str, entity_ids: Optional[Sequence[int]] = None) -> int:
        start = parse_day(earliest)
        end = parse_day(latest)
        if end < start:
            raise InvalidDateRangeError(f"Invalid date range: {latest} is before {earliest}")

        async with open_storage(self.chunk_size) as storage:
            pools = await storage.list_pools(entity_ids)

        return await run_recorded_job(
            BALANCES_JOB, lambda: self._sync_pool_balances([(pool, start) for pool in pools], end), end
        )

    async def sync_balances_since_last_fetch(self, latest: str) -> int:
        """Extends every pool's series from the day after its latest stored balance up to `latest`."""
        end = parse_day(latest)
        history_start = parse_day(settings.BALANCE_HISTORY_START_DATE)

        async with open_storage(self.chunk_size) as storage:
            pools = await storage.list_pools()
            watermarks = await storage.pool_watermarks()

        starts = []
        for pool in pools:
            watermark = watermarks.get(pool.id)
            start = max(truncate_day(watermark) + ONE_DAY, history_start) if watermark else history_start
            starts.append((pool, start))

        return await run_recorded_job(BALANCES_JOB, lambda: self._sync_pool_balances(starts, end), end)

    async def _sync_pool_balances(self, pool_starts, end: datetime) -> int:
        history_start = parse_day(settings.BALANCE_HISTORY_START_DATE)
        written = 0
        for pool, start in pool_starts:
            if start > end:
                logger.info("pool_up_to_date", pool_id=pool.id, start=to_iso8601(start))
                continue
            token = pool.collateral_token
            skipped_before = self.series_builder.skipped_days
            try:
                async with open_storage(self.chunk_size) as storage:
                    seed = await storage.latest_pool_balance_before(pool.id, start)
                seed_date, seed_balance = seed or (history_start, 0)

                series = await self.series_builder.build(
                    pool.collateral_token_account,
                    pool.collateral_token_account_owner,
                    token.mint_address,
                    token.chain,
                    start,
                    end,
                    previous_balance=seed_balance,
                    previous_end_date=seed_date,
                    decimals=token.decimals,
                )

                async with open_storage(self.chunk_size) as storage:
                    written += await storage.upsert(
                        LiquidityPoolBalance,
                        [
                            {"liquidity_pool_id": pool.id, "datetime": point.date, "balance": str(point.balance)}
                            for point in series
                        ],
                        conflict_columns=["liquidity_pool_id", "datetime"],
                        strategy=MergeStrategy.OVERWRITE,
                    )
            except Exception as e:
                logger.error("pool_sync_failed", pool_id=pool.id, error=str(e))
            finally:
                skipped = self.series_builder.skipped_days - skipped_before
                if skipped:
                    SYNC_SKIPPED_DAYS.labels(job=BALANCES_JOB).inc(skipped)
        return written


@asynccontextmanager
async def default_orchestrator():
    """Orchestrator wired to the configured event source and RPC endpoints."""
    graphql = GraphQLClient()
    solana_rpc = SolanaRpcClient()
    evm_rpc = EvmRpcClient()
    try:
        yield TrackedEntitySyncOrchestrator.from_clients(PagedQueryClient(graphql), solana_rpc, evm_rpc)
    finally:
        await graphql.aclose()
        await solana_rpc.aclose()
        await evm_rpc.aclose()


async def sync_accounts_for_end_date(end_date: str, force_one_day: bool = False, mint_id: Optional[int] = None) -> int:
    async with default_orchestrator() as orchestrator:
        return await orchestrator.sync_accounts_for_end_date(end_date, force_one_day, mint_id)


async def sync_balances_for_date_range(earliest: str, latest: str, entity_ids: Optional[Sequence[int]] = None) -> int:
    async with default_orchestrator() as orchestrator:
        return await orchestrator.sync_balances_for_date_range(earliest, latest, entity_ids)


async def sync_balances_since_last_fetch(latest: str) -> int:
    async with default_orchestrator() as orchestrator:
        return await orchestrator.sync_balances_since_last_fetch(latest)


async def run_daily_sync(now: Optional[datetime] = None, orchestrator: Optional[TrackedEntitySyncOrchestrator] = None) -> Dict[str, int]:
    """
    The scheduled job: pool balances, then account discovery, both up to
    `now - SYNC_LAG_HOURS` so the event source has caught up with that day.
    """
    now = now or datetime.now(timezone.utc)
    target = truncate_day(now - timedelta(hours=settings.SYNC_LAG_HOURS)).strftime("%Y-%m-%d")
    logger.info("daily_sync_start", target=target)

    async def run(o):
        return {
            BALANCES_JOB: await o.sync_balances_since_last_fetch(target),
            ACCOUNTS_JOB: await o.sync_accounts_for_end_date(target, force_one_day=False),
        }

    if orchestrator is not None:
        return await run(orchestrator)
    async with default_orchestrator() as o:
        return await run(o)


if __name__ == "__main__":
    asyncio.run(run_daily_sync())

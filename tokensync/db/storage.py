"""
Storage adapter used by the sync jobs.

Every write goes through `SqlStorage.upsert`, which issues a dialect-specific
`INSERT .. ON CONFLICT` statement per chunk of rows. PostgreSQL is the
production target; SQLite is supported so the jobs can run against a local file.
"""
from contextlib import asynccontextmanager
from datetime import datetime
from enum import Enum
from typing import Dict, Iterable, List, Optional, Sequence

from sqlalchemy import and_, func
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy.orm import selectinload

from tokensync.core.config import get_settings
from tokensync.core.database import AsyncSessionLocal
from tokensync.core.dates import as_utc
from tokensync.core.logging_config import get_logger
from tokensync.db.models import (
    AccountBalanceSnapshot,
    ContractEvent,
    LiquidityPool,
    LiquidityPoolBalance,
    TrackedToken,
    TrackedTokenAccount,
)

logger = get_logger("storage")


class MergeStrategy(str, Enum):
    OVERWRITE = "overwrite"
    IGNORE = "ignore"


def chunked(items: Sequence, size: int) -> Iterable[Sequence]:
    for i in range(0, len(items), size):
        yield items[i:i + size]


class SqlStorage:
    def __init__(self, session: AsyncSession, chunk_size: Optional[int] = None):
        self.session = session
        self.chunk_size = chunk_size or get_settings().INSERT_CHUNK_SIZE

    @property
    def dialect(self) -> str:
        return self.session.bind.dialect.name

    def _insert(self, model):
        if self.dialect == "postgresql":
            return pg_insert(model)
        if self.dialect == "sqlite":
            return sqlite_insert(model)
        raise NotImplementedError(f"Upsert is not supported for dialect {self.dialect}")

    async def upsert(
        self,
        model,
        rows: List[dict],
        conflict_columns: List[str],
        strategy: MergeStrategy = MergeStrategy.OVERWRITE,
        update_columns: Optional[List[str]] = None,
        only_if_earlier: Optional[str] = None,
    ) -> int:
        """
        Inserts `rows` into `model`'s table, resolving conflicts on `conflict_columns`.

        OVERWRITE replaces `update_columns` (default: every non-key column present
        in the rows) with the incoming values. IGNORE keeps the stored row.
        `only_if_earlier` restricts an overwrite to rows where the incoming value of
        that column is lower than the stored one.
        Returns the number of rows submitted.
        """
        if not rows:
            return 0

        if update_columns is None:
            update_columns = [c for c in rows[0].keys() if c not in conflict_columns]

        table = model.__table__
        for chunk in chunked(rows, self.chunk_size):
            stmt = self._insert(model).values(list(chunk))
            if strategy == MergeStrategy.IGNORE or not update_columns:
                stmt = stmt.on_conflict_do_nothing(index_elements=conflict_columns)
            else:
                where = None
                if only_if_earlier:
                    where = table.c[only_if_earlier] > stmt.excluded[only_if_earlier]
                stmt = stmt.on_conflict_do_update(
                    index_elements=conflict_columns,
                    set_={col: stmt.excluded[col] for col in update_columns},
                    where=where,
                )
            await self.session.execute(stmt)

        logger.debug("rows_upserted", table=table.name, rows=len(rows), strategy=strategy.value)
        return len(rows)

    # --- Tracked tokens and accounts ---

    async def list_tokens(self, token_id: Optional[int] = None) -> List[TrackedToken]:
        query = select(TrackedToken).order_by(TrackedToken.id)
        if token_id is not None:
            query = query.where(TrackedToken.id == token_id)
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def account_ids_by_address(self, token_id: int, addresses: Optional[Sequence[str]] = None) -> Dict[str, int]:
        base = select(TrackedTokenAccount.address, TrackedTokenAccount.id).where(
            TrackedTokenAccount.tracked_token_id == token_id
        )
        if addresses is None:
            result = await self.session.execute(base)
            return {address: account_id for address, account_id in result.all()}

        ids = {}
        for chunk in chunked(list(addresses), self.chunk_size):
            result = await self.session.execute(base.where(TrackedTokenAccount.address.in_(chunk)))
            ids.update({address: account_id for address, account_id in result.all()})
        return ids

    async def latest_balances_before(self, token_id: int, before: datetime) -> Dict[datetime, Dict[int, int]]:
        """
        Most recent snapshot per account of `token_id` strictly before `before`,
        grouped by snapshot day: {day: {account_id: balance}}.
        """
        latest = (
            select(
                AccountBalanceSnapshot.tracked_token_account_id.label("account_id"),
                func.max(AccountBalanceSnapshot.datetime).label("max_datetime"),
            )
            .join(TrackedTokenAccount, TrackedTokenAccount.id == AccountBalanceSnapshot.tracked_token_account_id)
            .where(
                TrackedTokenAccount.tracked_token_id == token_id,
                AccountBalanceSnapshot.datetime < before,
            )
            .group_by(AccountBalanceSnapshot.tracked_token_account_id)
            .subquery()
        )
        query = select(
            AccountBalanceSnapshot.tracked_token_account_id,
            AccountBalanceSnapshot.datetime,
            AccountBalanceSnapshot.approximate_minimum_balance,
        ).join(
            latest,
            and_(
                AccountBalanceSnapshot.tracked_token_account_id == latest.c.account_id,
                AccountBalanceSnapshot.datetime == latest.c.max_datetime,
            ),
        )
        result = await self.session.execute(query)

        by_date: Dict[datetime, Dict[int, int]] = {}
        for account_id, day, balance in result.all():
            by_date.setdefault(as_utc(day), {})[account_id] = int(balance)
        return by_date

    async def snapshot_watermarks(self) -> Dict[int, datetime]:
        query = (
            select(TrackedTokenAccount.tracked_token_id, func.max(AccountBalanceSnapshot.datetime))
            .join(AccountBalanceSnapshot, AccountBalanceSnapshot.tracked_token_account_id == TrackedTokenAccount.id)
            .group_by(TrackedTokenAccount.tracked_token_id)
        )
        result = await self.session.execute(query)
        return {token_id: as_utc(day) for token_id, day in result.all()}

    # --- Liquidity pools ---

    async def list_pools(self, pool_ids: Optional[Sequence[int]] = None) -> List[LiquidityPool]:
        query = select(LiquidityPool).options(selectinload(LiquidityPool.collateral_token)).order_by(LiquidityPool.id)
        if pool_ids:
            query = query.where(LiquidityPool.id.in_(list(pool_ids)))
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def latest_pool_balance_before(self, pool_id: int, before: datetime) -> Optional[tuple]:
        query = (
            select(LiquidityPoolBalance.datetime, LiquidityPoolBalance.balance)
            .where(LiquidityPoolBalance.liquidity_pool_id == pool_id, LiquidityPoolBalance.datetime < before)
            .order_by(LiquidityPoolBalance.datetime.desc())
            .limit(1)
        )
        row = (await self.session.execute(query)).first()
        if row is None:
            return None
        return as_utc(row[0]), int(row[1])

    async def pool_watermarks(self) -> Dict[int, datetime]:
        query = select(
            LiquidityPoolBalance.liquidity_pool_id, func.max(LiquidityPoolBalance.datetime)
        ).group_by(LiquidityPoolBalance.liquidity_pool_id)
        result = await self.session.execute(query)
        return {pool_id: as_utc(day) for pool_id, day in result.all()}

    # --- Contract events ---

    async def max_contract_event_block(self, contract_addresses: Sequence[str]) -> Optional[int]:
        query = select(func.max(ContractEvent.block_number)).where(
            ContractEvent.contract_address.in_([a.lower() for a in contract_addresses])
        )
        return (await self.session.execute(query)).scalar()


@asynccontextmanager
async def open_storage(chunk_size: Optional[int] = None):
    """One storage transaction: committed on exit, rolled back on error."""
    async with AsyncSessionLocal() as session:
        try:
            yield SqlStorage(session, chunk_size)
            await session.commit()
        except Exception:
            await session.rollback()
            raise

import os

# Settings are read once per process, so the test environment is fixed before any tokensync import.
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./tokensync_test.db")
os.environ["BITQUERY_TIMEOUT_BETWEEN_CALLS"] = "0"
os.environ["SOLANA_TIMEOUT_BETWEEN_CHUNKS"] = "0"
os.environ["EVM_TIMEOUT_BETWEEN_CALLS"] = "0"
os.environ["STRICT_SCHEMA"] = "true"
os.environ["BALANCE_HISTORY_START_DATE"] = "2022-01-01"

import pytest
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession
from sqlalchemy.orm import sessionmaker
from tokensync.core import database
# Explicit import to ensure metadata is populated
from tokensync.db.models import Base

# Function-scoped engine on a throwaway SQLite file
@pytest.fixture(scope="function")
async def db_engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'tokensync.db'}", echo=False)
    yield engine
    await engine.dispose()

@pytest.fixture(scope="function", autouse=True)
async def setup_test_db(db_engine):
    # Snapshot global
    original_engine = database.db_manager._engine
    original_maker = database.db_manager._session_maker

    # Patch global
    database.db_manager._engine = db_engine
    database.db_manager._session_maker = sessionmaker(
        bind=db_engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
    )

    async with db_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield

    # Restore global
    database.db_manager._engine = original_engine
    database.db_manager._session_maker = original_maker

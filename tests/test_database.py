from sqlalchemy.future import select

from tokensync.core import database
from tokensync.core.database import Database, engine_options
from tokensync.db.init_db import init_db
from tokensync.db.models import TrackedToken


def test_postgres_engine_is_pooled_with_pre_ping():
    options = engine_options("postgresql+asyncpg://user:pw@localhost/tokensync")
    assert options["pool_pre_ping"] is True
    assert "pool_size" in options


def test_sqlite_engine_uses_defaults():
    options = engine_options("sqlite+aiosqlite:///./tokensync.db")
    assert "pool_pre_ping" not in options
    assert options["echo"] is False


async def test_init_db_reset_drops_existing_rows(tmp_path):
    db = Database(f"sqlite+aiosqlite:///{tmp_path / 'reset.db'}")
    original = database.db_manager
    database.db_manager = db
    try:
        await init_db()
        async with db.session_maker() as session:
            session.add(TrackedToken(mint_address="tokenmint00000", decimals=6, chain="solana"))
            await session.commit()

        await init_db(reset=True)
        async with db.session_maker() as session:
            assert (await session.execute(select(TrackedToken))).scalars().all() == []
    finally:
        database.db_manager = original
        await db.dispose()

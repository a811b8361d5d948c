from tokensync.core import database
from tokensync.core.logging_config import get_logger
from tokensync.db.models import Base

logger = get_logger("init_db")

async def init_db(reset: bool = False):
    async with database.db_manager.engine.begin() as conn:
        if reset:
            logger.warning("dropping_all_tables")
            await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

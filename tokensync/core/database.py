from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession
from sqlalchemy.orm import sessionmaker
from tokensync.core.config import get_settings

settings = get_settings()


def engine_options(url: str) -> dict:
    """Per-dialect engine arguments: pooled PostgreSQL, single-file SQLite."""
    options = {"echo": settings.DATABASE_ECHO}
    if make_url(url).get_backend_name() == "postgresql":
        options.update(pool_pre_ping=True, pool_size=5, max_overflow=10)
    return options


# Engine is created on first use so it binds to the running event loop
class Database:
    def __init__(self, url: str | None = None):
        self.url = url or settings.DATABASE_URL
        self._engine = None
        self._session_maker = None

    @property
    def engine(self):
        if self._engine is None:
            self._engine = create_async_engine(self.url, **engine_options(self.url))
        return self._engine

    @property
    def session_maker(self):
        if self._session_maker is None:
            self._session_maker = sessionmaker(
                bind=self.engine,
                class_=AsyncSession,
                expire_on_commit=False,
                autoflush=False,
            )
        return self._session_maker

    async def dispose(self):
        if self._engine is not None:
            await self._engine.dispose()
        self._engine = None
        self._session_maker = None

db_manager = Database()

async def get_db():
    async with db_manager.session_maker() as session:
        yield session

# Session outside a request: sync jobs, CLI
def AsyncSessionLocal():
    return db_manager.session_maker()

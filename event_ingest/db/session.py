from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from event_ingest.config import settings


def create_engine_for_url(url: str, *, echo: bool = False) -> AsyncEngine:
    common_kwargs = {
        "echo": echo,
        "future": True,
    }

    # SQLite (especially aiosqlite) is not well-served by connection pooling.
    if url.startswith("sqlite"):
        return create_async_engine(url, poolclass=NullPool, **common_kwargs)

    # MySQL/Postgres: small pool, the tracking table sees a handful of writes per batch.
    return create_async_engine(
        url,
        pool_pre_ping=settings.DB_POOL_PRE_PING,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        **common_kwargs,
    )


engine = create_engine_for_url(settings.DATABASE_URL, echo=settings.DEBUG)

AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


async def get_db_session():
    async with AsyncSessionLocal() as session:
        yield session


async def create_all(bind: AsyncEngine = engine) -> None:
    from event_ingest.db.models import Base

    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

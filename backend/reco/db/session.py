from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from reco.core.config import settings

_SYNC_PREFIXES = ("postgresql://", "postgres://")


def async_database_url(url: str) -> str:
    """Point a plain Postgres URL at the asyncpg driver; other URLs pass through."""
    for prefix in _SYNC_PREFIXES:
        if url.startswith(prefix):
            return "postgresql+asyncpg://" + url[len(prefix):]
    return url


engine = create_async_engine(
    async_database_url(settings.DATABASE_URL),
    echo=settings.DATABASE_ECHO,
    pool_pre_ping=True,
    pool_size=settings.DATABASE_POOL_SIZE,
    max_overflow=settings.DATABASE_MAX_OVERFLOW,
    # pooled connections (pgbouncer/supavisor) cannot reuse prepared statements
    connect_args={"statement_cache_size": 0},
)

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)

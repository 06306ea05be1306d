from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from auction_service.core.config import settings


def create_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    """Create an async engine, tuning the pool for PostgreSQL"""
    if database_url.startswith("sqlite"):
        # SQLite serializes writers itself and has no server-side pool to protect
        return create_async_engine(database_url, echo=echo, future=True)

    return create_async_engine(
        database_url,
        echo=echo,
        future=True,
        pool_use_lifo=True,  # Use LIFO to reuse recent connections
        pool_size=20,
        max_overflow=30,
        pool_recycle=120,
        pool_timeout=10,  # Fail fast if pool exhausted
        pool_pre_ping=True,
        connect_args={
            "server_settings": {
                "timezone": "UTC",  # Force PostgreSQL to use UTC timezone
                "application_name": "auction_bidding_service",
            },
            "command_timeout": 30,
            "timeout": 15,  # Connection establishment timeout
        },
    )


def create_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


engine = create_engine(settings.DATABASE_URL)

AsyncSessionLocal = create_session_factory(engine)


class Base(DeclarativeBase):
    """All ORM models base class"""

    pass


async def init_db(bind: AsyncEngine | None = None) -> None:
    """Initialize database, create all tables"""
    async with (bind or engine).begin() as conn:
        # Import all models to ensure they are registered
        from auction_service.models import Auction, Bid  # noqa: F401

        await conn.run_sync(Base.metadata.create_all)


async def close_db(bind: AsyncEngine | None = None) -> None:
    """Close database connection"""
    await (bind or engine).dispose()

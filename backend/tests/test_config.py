from datetime import datetime, timedelta, timezone

from auction_service.core.clock import ManualClock, ensure_utc
from auction_service.core.config import Settings


def test_database_url_built_from_parts():
    config = Settings(
        POSTGRES_USER="bidder",
        POSTGRES_PASSWORD="secret",
        POSTGRES_HOST="db",
        POSTGRES_PORT=5433,
        POSTGRES_DB="auctions",
    )

    assert config.DATABASE_URL == "postgresql+asyncpg://bidder:secret@db:5433/auctions"


def test_database_url_override():
    config = Settings(DATABASE_URL_OVERRIDE="sqlite+aiosqlite:///./local.db")

    assert config.DATABASE_URL == "sqlite+aiosqlite:///./local.db"


def test_redis_url_with_password():
    config = Settings(REDIS_HOST="cache", REDIS_PASSWORD="pw", REDIS_DB=2)

    assert config.REDIS_URL == "redis://:pw@cache:6379/2"


def test_manual_clock_moves_only_when_told():
    start = datetime(2026, 1, 1)
    clock = ManualClock(start)

    assert clock.now() == start.replace(tzinfo=timezone.utc)
    assert clock.now() == clock.now()
    assert clock.advance(minutes=5) - clock.now() == timedelta(0)
    assert clock.advance(timedelta(hours=1)) == ensure_utc(start) + timedelta(
        hours=1, minutes=5
    )


def test_ensure_utc_converts_offsets():
    eastern = timezone(timedelta(hours=-5))

    converted = ensure_utc(datetime(2026, 1, 1, 7, 0, tzinfo=eastern))

    assert converted == datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
    assert converted.tzinfo is timezone.utc

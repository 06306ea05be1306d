#!/usr/bin/env python3
"""Initialize database tables and check the Redis connection."""
import asyncio

from auction_service.core.database import close_db, init_db
from auction_service.core.redis import redis_client


async def main():
    """Initialize database and test Redis connection."""
    print("Initializing database...")
    try:
        await init_db()
        print("✅ Database tables created successfully!")
    except Exception as e:
        print(f"❌ Database initialization failed: {e}")
        return
    finally:
        await close_db()

    print("\nTesting Redis connection...")
    await redis_client.connect()
    if await redis_client.ping():
        print("✅ Redis connection successful!")
    else:
        print("❌ Redis ping failed")
    await redis_client.disconnect()


if __name__ == "__main__":
    asyncio.run(main())

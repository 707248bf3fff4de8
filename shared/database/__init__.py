"""
Database Module
===============

Async clients for the RegWatch data stores.

Clients:
- PostgreSQL (asyncpg + SQLAlchemy): alerts, freshness, sync logs
- Redis (redis.asyncio): cross-process source leases

Usage:
    from shared.database import PostgresClient, redis_lock

    session_factory = PostgresClient.get_session_factory()
    async with session_factory() as session:
        ...
"""

from shared.database.postgres import (
    Base,
    PostgresClient,
)
from shared.database.redis import (
    RedisClient,
    redis_lock,
)


__all__ = [
    # PostgreSQL
    "PostgresClient",
    "Base",
    # Redis
    "RedisClient",
    "redis_lock",
]

"""
Database Configuration
======================

Connections for the API process and the retention worker:
- PostgreSQL (claims, votes, aggregates) via an asyncpg pool
- Redis (shared admission windows), optional

Both are built from Settings so .env, docker-compose and the process
environment resolve the same way everywhere.
"""
import logging
from dataclasses import dataclass
from typing import Optional

import asyncpg
import redis.asyncio as redis

from .settings import Settings, get_settings

logger = logging.getLogger(__name__)


@dataclass
class PostgresConfig:
    dsn: str
    min_size: int = 2
    max_size: int = 10
    command_timeout: float = 30.0

    @classmethod
    def from_settings(cls, settings: Settings, min_size: int = 2, max_size: int = 10) -> 'PostgresConfig':
        return cls(dsn=settings.database_url, min_size=min_size, max_size=max_size)


@dataclass
class RedisConfig:
    """
    Shared admission store connection.

    The socket timeout matches the admission store timeout so a hung Redis
    fails over to the local store instead of stalling requests.
    """
    url: str
    socket_timeout: float = 0.05

    @classmethod
    def from_settings(cls, settings: Settings) -> Optional['RedisConfig']:
        """None when REDIS_URL is unset (local admission store only)"""
        if not settings.redis_url:
            return None
        return cls(url=settings.redis_url, socket_timeout=settings.admission_store_timeout_ms / 1000)


async def create_postgres_pool(
    settings: Optional[Settings] = None,
    min_size: int = 2,
    max_size: int = 10,
) -> asyncpg.Pool:
    config = PostgresConfig.from_settings(settings or get_settings(), min_size=min_size, max_size=max_size)
    pool = await asyncpg.create_pool(
        dsn=config.dsn,
        min_size=config.min_size,
        max_size=config.max_size,
        command_timeout=config.command_timeout,
    )
    logger.info(f"PostgreSQL pool ready (min={config.min_size}, max={config.max_size})")
    return pool


def create_redis_client(settings: Optional[Settings] = None):
    """Redis client for the shared admission store, or None if not configured"""
    config = RedisConfig.from_settings(settings or get_settings())
    if config is None:
        logger.info("REDIS_URL not configured - admission uses local store")
        return None

    return redis.from_url(
        config.url,
        decode_responses=True,
        socket_timeout=config.socket_timeout,
        socket_connect_timeout=config.socket_timeout,
    )

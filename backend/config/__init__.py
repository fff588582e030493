"""
Configuration module for settings, policy tables and service connections.
"""
from .settings import Settings, get_settings
from .database import (
    PostgresConfig,
    RedisConfig,
    create_postgres_pool,
    create_redis_client,
)

__all__ = [
    'Settings',
    'get_settings',
    'PostgresConfig',
    'RedisConfig',
    'create_postgres_pool',
    'create_redis_client',
]

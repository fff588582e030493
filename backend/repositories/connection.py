"""
Connection helper shared by the repositories

Repository methods take an optional `conn` so a caller holding a transaction
(the consensus recompute) can run several repository calls inside it. Without
one, a connection is borrowed from the pool for the single call.
"""
from contextlib import asynccontextmanager

import asyncpg


@asynccontextmanager
async def use_connection(pool: asyncpg.Pool, conn=None):
    if conn is not None:
        yield conn
        return
    async with pool.acquire() as acquired:
        yield acquired


def affected_rows(status: str) -> int:
    """Row count from an asyncpg command tag like 'DELETE 3' / 'UPDATE 1'"""
    try:
        return int(status.split()[-1])
    except (AttributeError, ValueError, IndexError):
        return 0

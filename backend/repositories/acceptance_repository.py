"""
Acceptance Repository - PostgreSQL storage for derived acceptance aggregates

Storage: PostgreSQL (acceptance_aggregates table, PK (provider_key, plan_key))

Aggregates are only written by the consensus recompute, which runs inside
pair_transaction(): a transaction holding a per-pair advisory lock, so two
API instances recomputing the same pair queue up instead of interleaving.
"""
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import List, Optional, Tuple

import asyncpg

from models.domain.verification import AcceptanceAggregate
from repositories.connection import affected_rows, use_connection

logger = logging.getLogger(__name__)

AGGREGATE_COLUMNS = """
    provider_key, plan_key, status, confidence_score, confidence_level,
    verification_count, agreement_ratio, accepted_count, rejected_count,
    last_verified_at, expires_at, updated_at
"""


class AcceptanceRepository:
    """
    Repository for AcceptanceAggregate domain model
    """

    def __init__(self, db_pool: asyncpg.Pool):
        self.db_pool = db_pool

    @staticmethod
    def _row_to_aggregate(row) -> AcceptanceAggregate:
        return AcceptanceAggregate(
            provider_key=row['provider_key'],
            plan_key=row['plan_key'],
            status=row['status'],
            confidence_score=row['confidence_score'],
            confidence_level=row['confidence_level'],
            verification_count=row['verification_count'],
            agreement_ratio=row['agreement_ratio'],
            accepted_count=row['accepted_count'],
            rejected_count=row['rejected_count'],
            last_verified_at=row['last_verified_at'],
            expires_at=row['expires_at'],
            updated_at=row['updated_at'],
        )

    @asynccontextmanager
    async def pair_transaction(self, provider_key: str, plan_key: str):
        """
        Transaction serialized per (provider, plan) across processes.

        The advisory lock is released automatically at commit/rollback.
        """
        async with self.db_pool.acquire() as conn:
            async with conn.transaction():
                await conn.execute(
                    "SELECT pg_advisory_xact_lock(hashtextextended($1, 0))",
                    f"{provider_key}\x1f{plan_key}",
                )
                yield conn

    # =========================================================================
    # READ OPERATIONS
    # =========================================================================

    async def get(self, provider_key: str, plan_key: str, conn=None) -> Optional[AcceptanceAggregate]:
        async with use_connection(self.db_pool, conn) as c:
            row = await c.fetchrow(f"""
                SELECT {AGGREGATE_COLUMNS} FROM acceptance_aggregates
                WHERE provider_key = $1 AND plan_key = $2
            """, provider_key, plan_key)
        return self._row_to_aggregate(row) if row else None

    async def list_pairs(
        self,
        after: Optional[Tuple[str, str]] = None,
        limit: int = 100,
        conn=None,
    ) -> List[Tuple[str, str]]:
        """Keyset-paginated (provider_key, plan_key) pairs in key order"""
        async with use_connection(self.db_pool, conn) as c:
            if after is None:
                rows = await c.fetch("""
                    SELECT provider_key, plan_key FROM acceptance_aggregates
                    ORDER BY provider_key, plan_key
                    LIMIT $1
                """, limit)
            else:
                rows = await c.fetch("""
                    SELECT provider_key, plan_key FROM acceptance_aggregates
                    WHERE (provider_key, plan_key) > ($1, $2)
                    ORDER BY provider_key, plan_key
                    LIMIT $3
                """, after[0], after[1], limit)
        return [(row['provider_key'], row['plan_key']) for row in rows]

    async def stats(self, now: datetime, conn=None) -> dict:
        async with use_connection(self.db_pool, conn) as c:
            row = await c.fetchrow("""
                SELECT
                    COUNT(*) AS total,
                    COUNT(*) FILTER (WHERE expires_at <= $1) AS expired,
                    COUNT(*) FILTER (WHERE expires_at > $1 AND expires_at <= $2) AS expiring_7d,
                    COUNT(*) FILTER (WHERE expires_at > $1 AND expires_at <= $3) AS expiring_30d
                FROM acceptance_aggregates
            """, now, now + timedelta(days=7), now + timedelta(days=30))
        return dict(row)

    # =========================================================================
    # WRITE OPERATIONS
    # =========================================================================

    async def upsert(self, aggregate: AcceptanceAggregate, conn=None) -> AcceptanceAggregate:
        async with use_connection(self.db_pool, conn) as c:
            row = await c.fetchrow("""
                INSERT INTO acceptance_aggregates (
                    provider_key, plan_key, status, confidence_score, confidence_level,
                    verification_count, agreement_ratio, accepted_count, rejected_count,
                    last_verified_at, expires_at, updated_at
                )
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, NOW())
                ON CONFLICT (provider_key, plan_key) DO UPDATE SET
                    status = EXCLUDED.status,
                    confidence_score = EXCLUDED.confidence_score,
                    confidence_level = EXCLUDED.confidence_level,
                    verification_count = EXCLUDED.verification_count,
                    agreement_ratio = EXCLUDED.agreement_ratio,
                    accepted_count = EXCLUDED.accepted_count,
                    rejected_count = EXCLUDED.rejected_count,
                    last_verified_at = EXCLUDED.last_verified_at,
                    expires_at = EXCLUDED.expires_at,
                    updated_at = NOW()
                RETURNING updated_at
            """,
                aggregate.provider_key,
                aggregate.plan_key,
                aggregate.status.value,
                aggregate.confidence_score,
                aggregate.confidence_level.value,
                aggregate.verification_count,
                aggregate.agreement_ratio,
                aggregate.accepted_count,
                aggregate.rejected_count,
                aggregate.last_verified_at,
                aggregate.expires_at,
            )
        aggregate.updated_at = row['updated_at']
        return aggregate

    async def delete(self, provider_key: str, plan_key: str, conn=None) -> bool:
        async with use_connection(self.db_pool, conn) as c:
            result = await c.execute("""
                DELETE FROM acceptance_aggregates
                WHERE provider_key = $1 AND plan_key = $2
            """, provider_key, plan_key)
        deleted = affected_rows(result) > 0
        if deleted:
            logger.info(f"Deleted aggregate {provider_key}/{plan_key} (no live claims)")
        return deleted

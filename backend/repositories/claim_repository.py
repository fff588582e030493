"""
Claim Repository - PostgreSQL storage for verification claims

Storage: PostgreSQL (verification_claims table, votes cascade on delete)

Only live claims (expires_at > now) are ever read for scoring. Expired rows
stay until the retention job deletes them.

ID format: vc_xxxxxxxx (11 chars)
"""
import logging
from datetime import datetime, timedelta
from typing import List, Optional, Tuple

import asyncpg

from models.domain.verification import ClaimStatus, Provenance, VerificationClaim
from repositories.connection import affected_rows, use_connection

logger = logging.getLogger(__name__)

CLAIM_COLUMNS = """
    id, identity, contact_identity, provider_key, plan_key, accepted,
    provenance, status, notes, upvotes, downvotes, submitted_at, expires_at
"""


class ClaimRepository:
    """
    Repository for VerificationClaim domain model
    """

    def __init__(self, db_pool: asyncpg.Pool):
        self.db_pool = db_pool

    @staticmethod
    def _row_to_claim(row) -> VerificationClaim:
        return VerificationClaim(
            id=row['id'],
            identity=row['identity'],
            contact_identity=row['contact_identity'],
            provider_key=row['provider_key'],
            plan_key=row['plan_key'],
            accepted=row['accepted'],
            provenance=row['provenance'],
            status=row['status'],
            notes=row['notes'],
            upvotes=row['upvotes'],
            downvotes=row['downvotes'],
            submitted_at=row['submitted_at'],
            expires_at=row['expires_at'],
        )

    # =========================================================================
    # CREATE OPERATION
    # =========================================================================

    async def create(self, claim: VerificationClaim, conn=None) -> VerificationClaim:
        """
        Insert a claim. identity, submitted_at and expires_at are written in the
        same statement, so a claim is never stored without them.
        """
        if claim.submitted_at is None or claim.expires_at is None:
            raise ValueError("Claim must carry submitted_at and expires_at before insert")

        async with use_connection(self.db_pool, conn) as c:
            await c.execute(f"""
                INSERT INTO verification_claims ({CLAIM_COLUMNS})
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13)
            """,
                claim.id,
                claim.identity,
                claim.contact_identity,
                claim.provider_key,
                claim.plan_key,
                claim.accepted,
                claim.provenance.value,
                claim.status.value,
                claim.notes,
                claim.upvotes,
                claim.downvotes,
                claim.submitted_at,
                claim.expires_at,
            )

        logger.info(
            f"Created claim {claim.id} for {claim.provider_key}/{claim.plan_key} "
            f"(accepted={claim.accepted}, provenance={claim.provenance.value})"
        )
        return claim

    # =========================================================================
    # READ OPERATIONS
    # =========================================================================

    async def get_by_id(self, claim_id: str, conn=None) -> Optional[VerificationClaim]:
        async with use_connection(self.db_pool, conn) as c:
            row = await c.fetchrow(f"""
                SELECT {CLAIM_COLUMNS} FROM verification_claims WHERE id = $1
            """, claim_id)
        return self._row_to_claim(row) if row else None

    async def get_live_for_pair(
        self,
        provider_key: str,
        plan_key: str,
        now: datetime,
        conn=None,
    ) -> List[VerificationClaim]:
        """Non-expired claims for a pair, oldest first"""
        async with use_connection(self.db_pool, conn) as c:
            rows = await c.fetch(f"""
                SELECT {CLAIM_COLUMNS} FROM verification_claims
                WHERE provider_key = $1 AND plan_key = $2 AND expires_at > $3
                ORDER BY submitted_at ASC, id ASC
            """, provider_key, plan_key, now)
        return [self._row_to_claim(row) for row in rows]

    async def list_live_for_pair(
        self,
        provider_key: str,
        plan_key: str,
        now: datetime,
        limit: int = 50,
        conn=None,
    ) -> List[VerificationClaim]:
        """Non-expired claims for a pair, newest first (public listing)"""
        async with use_connection(self.db_pool, conn) as c:
            rows = await c.fetch(f"""
                SELECT {CLAIM_COLUMNS} FROM verification_claims
                WHERE provider_key = $1 AND plan_key = $2 AND expires_at > $3
                ORDER BY submitted_at DESC, id DESC
                LIMIT $4
            """, provider_key, plan_key, now, limit)
        return [self._row_to_claim(row) for row in rows]

    async def list_recent(
        self,
        now: datetime,
        limit: int = 20,
        provider_key: Optional[str] = None,
        plan_key: Optional[str] = None,
        conn=None,
    ) -> List[VerificationClaim]:
        """Most recent live claims, optionally filtered by provider and/or plan"""
        async with use_connection(self.db_pool, conn) as c:
            rows = await c.fetch(f"""
                SELECT {CLAIM_COLUMNS} FROM verification_claims
                WHERE expires_at > $1
                  AND ($2::text IS NULL OR provider_key = $2)
                  AND ($3::text IS NULL OR plan_key = $3)
                ORDER BY submitted_at DESC, id DESC
                LIMIT $4
            """, now, provider_key, plan_key, limit)
        return [self._row_to_claim(row) for row in rows]

    async def has_any_for_pair(self, provider_key: str, plan_key: str, conn=None) -> bool:
        async with use_connection(self.db_pool, conn) as c:
            return await c.fetchval("""
                SELECT EXISTS (
                    SELECT 1 FROM verification_claims
                    WHERE provider_key = $1 AND plan_key = $2
                )
            """, provider_key, plan_key)

    async def get_latest_from(
        self,
        provider_key: str,
        plan_key: str,
        identity: Optional[str] = None,
        contact_identity: Optional[str] = None,
        conn=None,
    ) -> Optional[VerificationClaim]:
        """
        Most recent claim for the pair from one identity axis.

        Exactly one of identity / contact_identity must be given.
        """
        if (identity is None) == (contact_identity is None):
            raise ValueError("Pass exactly one of identity or contact_identity")

        column = 'identity' if identity is not None else 'contact_identity'
        value = identity if identity is not None else contact_identity

        async with use_connection(self.db_pool, conn) as c:
            row = await c.fetchrow(f"""
                SELECT {CLAIM_COLUMNS} FROM verification_claims
                WHERE provider_key = $1 AND plan_key = $2 AND {column} = $3
                ORDER BY submitted_at DESC
                LIMIT 1
            """, provider_key, plan_key, value)
        return self._row_to_claim(row) if row else None

    async def find_expired(self, now: datetime, limit: int, conn=None) -> List[Tuple[str, str, str]]:
        """(id, provider_key, plan_key) of up to `limit` expired claims"""
        async with use_connection(self.db_pool, conn) as c:
            rows = await c.fetch("""
                SELECT id, provider_key, plan_key FROM verification_claims
                WHERE expires_at <= $1
                ORDER BY expires_at ASC, id ASC
                LIMIT $2
            """, now, limit)
        return [(row['id'], row['provider_key'], row['plan_key']) for row in rows]

    async def count_expired(self, now: datetime, conn=None) -> int:
        async with use_connection(self.db_pool, conn) as c:
            return await c.fetchval("""
                SELECT COUNT(*) FROM verification_claims WHERE expires_at <= $1
            """, now)

    async def stats(self, now: datetime, conn=None) -> dict:
        """Counts for expiration / retention reporting"""
        async with use_connection(self.db_pool, conn) as c:
            row = await c.fetchrow("""
                SELECT
                    COUNT(*) AS total,
                    COUNT(*) FILTER (WHERE expires_at <= $1) AS expired,
                    COUNT(*) FILTER (WHERE expires_at > $1 AND expires_at <= $2) AS expiring_7d,
                    COUNT(*) FILTER (WHERE expires_at > $1 AND expires_at <= $3) AS expiring_30d,
                    MIN(submitted_at) AS oldest,
                    MAX(submitted_at) AS newest
                FROM verification_claims
            """, now, now + timedelta(days=7), now + timedelta(days=30))
        return dict(row)

    async def verification_stats(self, now: datetime, conn=None) -> dict:
        """Public counts: totals, last 24h, and live claims by status and provenance"""
        async with use_connection(self.db_pool, conn) as c:
            row = await c.fetchrow("""
                SELECT
                    COUNT(*) AS total,
                    COUNT(*) FILTER (WHERE expires_at > $1) AS live,
                    COUNT(*) FILTER (WHERE expires_at > $1 AND accepted) AS accepted,
                    COUNT(*) FILTER (WHERE expires_at > $1 AND NOT accepted) AS rejected,
                    COUNT(*) FILTER (WHERE submitted_at >= $2) AS recent_24h
                FROM verification_claims
            """, now, now - timedelta(hours=24))
            by_status = await c.fetch("""
                SELECT status, COUNT(*) AS n FROM verification_claims
                WHERE expires_at > $1 GROUP BY status
            """, now)
            by_provenance = await c.fetch("""
                SELECT provenance, COUNT(*) AS n FROM verification_claims
                WHERE expires_at > $1 GROUP BY provenance
            """, now)

        stats = dict(row)
        stats['by_status'] = {s.value: 0 for s in ClaimStatus}
        stats['by_status'].update({r['status']: r['n'] for r in by_status})
        stats['by_provenance'] = {p.value: 0 for p in Provenance}
        stats['by_provenance'].update({r['provenance']: r['n'] for r in by_provenance})
        return stats

    # =========================================================================
    # UPDATE OPERATIONS
    # =========================================================================

    async def update_status_for_pair(
        self,
        provider_key: str,
        plan_key: str,
        status: ClaimStatus,
        now: datetime,
        conn=None,
    ) -> int:
        """Stamp the pair's consensus status onto its live claims"""
        async with use_connection(self.db_pool, conn) as c:
            result = await c.execute("""
                UPDATE verification_claims SET status = $3
                WHERE provider_key = $1 AND plan_key = $2
                  AND expires_at > $4 AND status <> $3
            """, provider_key, plan_key, ClaimStatus(status).value, now)
        return affected_rows(result)

    # =========================================================================
    # DELETE OPERATION
    # =========================================================================

    async def delete_with_votes(self, claim_ids: List[str]) -> Tuple[int, int]:
        """
        Delete claims and their votes in one transaction.

        Returns:
            (claims_deleted, votes_deleted)
        """
        if not claim_ids:
            return 0, 0

        async with self.db_pool.acquire() as conn:
            async with conn.transaction():
                votes = await conn.execute("""
                    DELETE FROM verification_votes WHERE claim_id = ANY($1::varchar[])
                """, claim_ids)
                claims = await conn.execute("""
                    DELETE FROM verification_claims WHERE id = ANY($1::varchar[])
                """, claim_ids)

        return affected_rows(claims), affected_rows(votes)

"""
Vote Repository - PostgreSQL storage for claim votes

Storage: PostgreSQL (verification_votes table, PK (claim_id, voter_identity))

Each write also adjusts the denormalised upvotes/downvotes on the claim in
the same transaction, so tallies and rows never disagree.
"""
import logging
from typing import Optional, Tuple

import asyncpg

from models.domain.verification import VoteDirection, VoteRecord
from repositories.connection import affected_rows, use_connection

logger = logging.getLogger(__name__)


def _tally_delta(direction: VoteDirection, sign: int) -> Tuple[int, int]:
    if direction is VoteDirection.UP:
        return sign, 0
    return 0, sign


class VoteRepository:
    """
    Repository for VoteRecord domain model
    """

    def __init__(self, db_pool: asyncpg.Pool):
        self.db_pool = db_pool

    async def get(self, claim_id: str, voter_identity: str, conn=None) -> Optional[VoteRecord]:
        async with use_connection(self.db_pool, conn) as c:
            row = await c.fetchrow("""
                SELECT claim_id, voter_identity, direction, cast_at
                FROM verification_votes
                WHERE claim_id = $1 AND voter_identity = $2
            """, claim_id, voter_identity)
        if not row:
            return None
        return VoteRecord(
            claim_id=row['claim_id'],
            voter_identity=row['voter_identity'],
            direction=row['direction'],
            cast_at=row['cast_at'],
        )

    async def insert(self, vote: VoteRecord) -> Tuple[int, int]:
        """
        Record a first vote. Raises asyncpg.UniqueViolationError if the voter
        already has a vote on this claim.

        Returns:
            (upvotes, downvotes) on the claim after the write
        """
        up, down = _tally_delta(vote.direction, 1)
        async with self.db_pool.acquire() as conn:
            async with conn.transaction():
                await conn.execute("""
                    INSERT INTO verification_votes (claim_id, voter_identity, direction, cast_at)
                    VALUES ($1, $2, $3, $4)
                """, vote.claim_id, vote.voter_identity, vote.direction.value, vote.cast_at)
                row = await conn.fetchrow("""
                    UPDATE verification_claims
                    SET upvotes = upvotes + $2, downvotes = downvotes + $3
                    WHERE id = $1
                    RETURNING upvotes, downvotes
                """, vote.claim_id, up, down)

        return row['upvotes'], row['downvotes']

    async def replace(self, previous: VoteRecord, vote: VoteRecord) -> Optional[Tuple[int, int]]:
        """
        Swap a voter's vote: delete the old row, insert the new one and move
        the tally, all in one transaction.

        The delete only matches a row still holding `previous.direction`. If a
        concurrent request already swapped it, nothing is written.

        Returns:
            (upvotes, downvotes) on the claim after the write, or None when
            `previous` was stale
        """
        old_up, old_down = _tally_delta(previous.direction, -1)
        new_up, new_down = _tally_delta(vote.direction, 1)

        async with self.db_pool.acquire() as conn:
            async with conn.transaction():
                deleted = await conn.execute("""
                    DELETE FROM verification_votes
                    WHERE claim_id = $1 AND voter_identity = $2 AND direction = $3
                """, previous.claim_id, previous.voter_identity, previous.direction.value)
                if affected_rows(deleted) != 1:
                    logger.info(
                        f"Stale vote replace on {vote.claim_id}: "
                        f"{previous.direction.value} no longer current"
                    )
                    return None
                await conn.execute("""
                    INSERT INTO verification_votes (claim_id, voter_identity, direction, cast_at)
                    VALUES ($1, $2, $3, $4)
                """, vote.claim_id, vote.voter_identity, vote.direction.value, vote.cast_at)
                row = await conn.fetchrow("""
                    UPDATE verification_claims
                    SET upvotes = GREATEST(0, upvotes + $2),
                        downvotes = GREATEST(0, downvotes + $3)
                    WHERE id = $1
                    RETURNING upvotes, downvotes
                """, vote.claim_id, old_up + new_up, old_down + new_down)

        logger.debug(
            f"Replaced vote on {vote.claim_id}: {previous.direction.value} -> {vote.direction.value}"
        )
        return row['upvotes'], row['downvotes']

    async def count(self, conn=None) -> int:
        async with use_connection(self.db_pool, conn) as c:
            return await c.fetchval("SELECT COUNT(*) FROM verification_votes")

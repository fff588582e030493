"""
Vote Ledger - one vote per (claim, voter), changeable but never doubled

cast_vote():
- unknown or expired claim        -> ClaimNotFound
- same direction as existing vote -> DuplicateVote
- opposite direction              -> old row replaced, tallies moved
                                     (DuplicateVote if a concurrent request
                                     from the same voter got there first)
- no existing vote                -> row inserted, tally incremented

Tallies live on the claim row and are updated in the same transaction as the
vote row (see VoteRepository). After every applied vote the owning pair is
recomputed so agreement shows up in the aggregate immediately.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

import asyncpg

from models.domain.verification import (
    AcceptanceAggregate,
    VerificationClaim,
    VoteDirection,
    VoteRecord,
)
from services.confidence import agreement_ratio
from services.errors import ClaimNotFound, DuplicateVote
from utils.datetime_utils import ensure_utc, utc_now
from utils.id_generator import validate_id

logger = logging.getLogger(__name__)


@dataclass
class VoteOutcome:
    applied: bool
    changed: bool
    upvotes: int
    downvotes: int
    agreement_ratio: float
    claim: VerificationClaim
    aggregate: Optional[AcceptanceAggregate] = None


class VoteLedger:

    def __init__(self, claims, votes, consensus):
        """
        Args:
            claims: ClaimRepository
            votes: VoteRepository
            consensus: ConsensusEngine used to recompute the claim's pair
        """
        self.claims = claims
        self.votes = votes
        self.consensus = consensus

    async def cast_vote(
        self,
        claim_id: str,
        voter_identity: str,
        direction,
        now: Optional[datetime] = None,
    ) -> VoteOutcome:
        now = ensure_utc(now) if now is not None else utc_now()
        direction = VoteDirection(direction)

        claim = await self.claims.get_by_id(claim_id) if validate_id(claim_id) else None
        if claim is None or claim.is_expired(now):
            raise ClaimNotFound()

        vote = VoteRecord(
            claim_id=claim_id,
            voter_identity=voter_identity,
            direction=direction,
            cast_at=now,
        )

        existing = await self.votes.get(claim_id, voter_identity)
        if existing is not None and existing.direction == direction:
            raise DuplicateVote()

        # Concurrent votes from the same voter: the loser of the race gets
        # DuplicateVote, tallies only move for the winner
        try:
            if existing is not None:
                tallies = await self.votes.replace(existing, vote)
                if tallies is None:
                    raise DuplicateVote()
                changed = True
            else:
                tallies = await self.votes.insert(vote)
                changed = False
        except asyncpg.UniqueViolationError:
            raise DuplicateVote()
        upvotes, downvotes = tallies

        claim.upvotes = upvotes
        claim.downvotes = downvotes

        logger.info(
            f"[votes] {'Changed' if changed else 'Recorded'} {direction.value} on {claim_id} "
            f"(up={upvotes}, down={downvotes})"
        )

        aggregate = await self.consensus.recompute(claim.provider_key, claim.plan_key, now=now)

        return VoteOutcome(
            applied=True,
            changed=changed,
            upvotes=upvotes,
            downvotes=downvotes,
            agreement_ratio=agreement_ratio(upvotes, downvotes),
            claim=claim,
            aggregate=aggregate,
        )

"""
In-memory stand-ins for the PostgreSQL repositories and the bot-score gate.

The three fake repositories share one FakeStore so that deleting a claim
also deletes its votes and vote writes move the claim tallies, the same
way the real repositories do inside one transaction.
"""
from contextlib import asynccontextmanager
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple

import asyncpg

from api.dependencies import AppServices
from models.domain.verification import (
    AcceptanceAggregate,
    ClaimStatus,
    Provenance,
    VerificationClaim,
    VoteDirection,
    VoteRecord,
)
from services.abuse_gate import AbuseGate
from services.admission import AdmissionCounter
from services.admission_store import LocalAdmissionStore
from services.consensus import ConsensusEngine
from services.retention import RetentionService
from services.sybil_guard import SybilGuard
from services.verification_service import VerificationService
from services.vote_ledger import VoteLedger
from utils.datetime_utils import utc_now


@dataclass
class FakeStore:
    claims: Dict[str, VerificationClaim] = field(default_factory=dict)
    votes: Dict[Tuple[str, str], VoteRecord] = field(default_factory=dict)
    aggregates: Dict[Tuple[str, str], AcceptanceAggregate] = field(default_factory=dict)

    def add_claim(
        self,
        identity: str,
        provider_key: str,
        plan_key: str,
        accepted: bool = True,
        submitted_at: Optional[datetime] = None,
        provenance: Provenance = Provenance.COMMUNITY,
        contact_identity: Optional[str] = None,
        ttl_days: int = 180,
    ) -> VerificationClaim:
        claim = VerificationClaim.new(
            identity=identity,
            provider_key=provider_key,
            plan_key=plan_key,
            accepted=accepted,
            provenance=provenance,
            contact_identity=contact_identity,
            ttl_days=ttl_days,
            now=submitted_at or utc_now(),
        )
        self.claims[claim.id] = claim
        return claim


class FakeClaimRepository:

    def __init__(self, store: FakeStore):
        self.store = store
        self.fail_create: Optional[Exception] = None

    async def create(self, claim, conn=None):
        if self.fail_create is not None:
            raise self.fail_create
        if claim.submitted_at is None or claim.expires_at is None:
            raise ValueError("Claim must carry submitted_at and expires_at before insert")
        self.store.claims[claim.id] = replace(claim)
        return claim

    async def get_by_id(self, claim_id, conn=None):
        claim = self.store.claims.get(claim_id)
        return replace(claim) if claim else None

    async def get_live_for_pair(self, provider_key, plan_key, now, conn=None):
        live = [
            c for c in self.store.claims.values()
            if c.pair == (provider_key, plan_key) and c.expires_at > now
        ]
        return [replace(c) for c in sorted(live, key=lambda c: (c.submitted_at, c.id))]

    def _newest_first(self, claims):
        return [replace(c) for c in sorted(claims, key=lambda c: (c.submitted_at, c.id), reverse=True)]

    async def list_live_for_pair(self, provider_key, plan_key, now, limit=50, conn=None):
        live = [c for c in self.store.claims.values() if c.pair == (provider_key, plan_key) and c.expires_at > now]
        return self._newest_first(live)[:limit]

    async def list_recent(self, now, limit=20, provider_key=None, plan_key=None, conn=None):
        live = [
            c for c in self.store.claims.values()
            if c.expires_at > now
            and (provider_key is None or c.provider_key == provider_key)
            and (plan_key is None or c.plan_key == plan_key)
        ]
        return self._newest_first(live)[:limit]

    async def has_any_for_pair(self, provider_key, plan_key, conn=None):
        return any(c.pair == (provider_key, plan_key) for c in self.store.claims.values())

    async def get_latest_from(self, provider_key, plan_key, identity=None, contact_identity=None, conn=None):
        if (identity is None) == (contact_identity is None):
            raise ValueError("Pass exactly one of identity or contact_identity")
        matches = [
            c for c in self.store.claims.values()
            if c.pair == (provider_key, plan_key)
            and (c.identity == identity if identity is not None else c.contact_identity == contact_identity)
        ]
        if not matches:
            return None
        return replace(max(matches, key=lambda c: c.submitted_at))

    def _expired(self, now) -> List[VerificationClaim]:
        return sorted(
            (c for c in self.store.claims.values() if c.expires_at <= now),
            key=lambda c: (c.expires_at, c.id),
        )

    async def find_expired(self, now, limit, conn=None):
        return [(c.id, c.provider_key, c.plan_key) for c in self._expired(now)[:limit]]

    async def count_expired(self, now, conn=None):
        return len(self._expired(now))

    async def stats(self, now, conn=None):
        claims = list(self.store.claims.values())
        return {
            'total': len(claims),
            'expired': sum(1 for c in claims if c.expires_at <= now),
            'expiring_7d': sum(1 for c in claims if now < c.expires_at <= now + timedelta(days=7)),
            'expiring_30d': sum(1 for c in claims if now < c.expires_at <= now + timedelta(days=30)),
            'oldest': min((c.submitted_at for c in claims), default=None),
            'newest': max((c.submitted_at for c in claims), default=None),
        }

    async def verification_stats(self, now, conn=None):
        claims = list(self.store.claims.values())
        live = [c for c in claims if c.expires_at > now]
        by_status = {s.value: 0 for s in ClaimStatus}
        by_provenance = {p.value: 0 for p in Provenance}
        for claim in live:
            by_status[ClaimStatus(claim.status).value] += 1
            by_provenance[Provenance(claim.provenance).value] += 1
        return {
            'total': len(claims),
            'live': len(live),
            'accepted': sum(1 for c in live if c.accepted),
            'rejected': sum(1 for c in live if not c.accepted),
            'recent_24h': sum(1 for c in claims if c.submitted_at >= now - timedelta(hours=24)),
            'by_status': by_status,
            'by_provenance': by_provenance,
        }

    async def update_status_for_pair(self, provider_key, plan_key, status, now, conn=None):
        updated = 0
        for claim in self.store.claims.values():
            if claim.pair == (provider_key, plan_key) and claim.expires_at > now and claim.status != status:
                claim.status = ClaimStatus(status)
                updated += 1
        return updated

    async def delete_with_votes(self, claim_ids):
        ids = set(claim_ids)
        vote_keys = [key for key in self.store.votes if key[0] in ids]
        for key in vote_keys:
            del self.store.votes[key]
        claims = 0
        for claim_id in ids:
            if self.store.claims.pop(claim_id, None) is not None:
                claims += 1
        return claims, len(vote_keys)


class FakeVoteRepository:

    def __init__(self, store: FakeStore):
        self.store = store

    def _move_tally(self, claim_id, direction, sign):
        claim = self.store.claims[claim_id]
        if direction is VoteDirection.UP:
            claim.upvotes = max(0, claim.upvotes + sign)
        else:
            claim.downvotes = max(0, claim.downvotes + sign)
        return claim.upvotes, claim.downvotes

    async def get(self, claim_id, voter_identity, conn=None):
        vote = self.store.votes.get((claim_id, voter_identity))
        return replace(vote) if vote else None

    async def insert(self, vote):
        key = (vote.claim_id, vote.voter_identity)
        if key in self.store.votes:
            raise asyncpg.UniqueViolationError("duplicate key value violates unique constraint")
        self.store.votes[key] = replace(vote)
        return self._move_tally(vote.claim_id, vote.direction, 1)

    async def replace(self, previous, vote):
        key = (previous.claim_id, previous.voter_identity)
        current = self.store.votes.get(key)
        if current is None or current.direction is not previous.direction:
            return None
        del self.store.votes[key]
        self._move_tally(previous.claim_id, previous.direction, -1)
        self.store.votes[(vote.claim_id, vote.voter_identity)] = replace(vote)
        return self._move_tally(vote.claim_id, vote.direction, 1)

    async def count(self, conn=None):
        return len(self.store.votes)


class FakeAcceptanceRepository:

    def __init__(self, store: FakeStore):
        self.store = store
        self.transactions = 0

    @asynccontextmanager
    async def pair_transaction(self, provider_key, plan_key):
        self.transactions += 1
        yield None

    async def get(self, provider_key, plan_key, conn=None):
        aggregate = self.store.aggregates.get((provider_key, plan_key))
        return replace(aggregate, metadata={}) if aggregate else None

    async def list_pairs(self, after=None, limit=100, conn=None):
        keys = sorted(self.store.aggregates)
        if after is not None:
            keys = [k for k in keys if k > tuple(after)]
        return keys[:limit]

    async def stats(self, now, conn=None):
        aggregates = list(self.store.aggregates.values())
        return {
            'total': len(aggregates),
            'expired': sum(1 for a in aggregates if a.expires_at <= now),
            'expiring_7d': sum(1 for a in aggregates if now < a.expires_at <= now + timedelta(days=7)),
            'expiring_30d': sum(1 for a in aggregates if now < a.expires_at <= now + timedelta(days=30)),
        }

    async def upsert(self, aggregate, conn=None):
        aggregate.updated_at = utc_now()
        self.store.aggregates[(aggregate.provider_key, aggregate.plan_key)] = replace(aggregate, metadata={})
        return aggregate

    async def delete(self, provider_key, plan_key, conn=None):
        return self.store.aggregates.pop((provider_key, plan_key), None) is not None


class FakeAbuseGate(AbuseGate):
    """Returns a fixed score (None = provider unavailable)"""

    def __init__(self, score: Optional[float] = 0.9, enforcing: bool = True):
        self.score = score
        self.enforcing = enforcing
        self.calls = []

    async def evaluate(self, token, remote_ip=None):
        self.calls.append((token, remote_ip))
        return self.score


def build_services(
    store: FakeStore,
    abuse_gate: Optional[AbuseGate] = None,
    captcha_fail_mode: str = "open",
) -> AppServices:
    claims = FakeClaimRepository(store)
    votes = FakeVoteRepository(store)
    aggregates = FakeAcceptanceRepository(store)

    admission = AdmissionCounter(LocalAdmissionStore())
    abuse_gate = abuse_gate or FakeAbuseGate()
    consensus = ConsensusEngine(claims, aggregates)
    ledger = VoteLedger(claims, votes, consensus)

    return AppServices(
        verification=VerificationService(
            claims=claims,
            admission=admission,
            abuse_gate=abuse_gate,
            sybil=SybilGuard(claims),
            consensus=consensus,
            ledger=ledger,
            captcha_fail_mode=captcha_fail_mode,
        ),
        retention=RetentionService(claims, votes, aggregates, consensus),
        admission=admission,
        abuse_gate=abuse_gate,
    )

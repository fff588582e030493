"""
Verification Service - the submission and vote pipelines

submit_claim():
    1. admission ('submit' tier)           -> RateLimited
    2. honeypot                            -> synthetic success, nothing stored
    3. abuse gate                          -> AbuseRejected
         unavailable: stricter admission tier ('captcha_fallback'), or
         AbuseRejected when fail mode is 'closed'
    4. Sybil guard                         -> DuplicateSubmission
    5. persist claim                       -> PersistenceUnavailable
         4 and 5 run under the pair lock and one advisory transaction, so
         concurrent submissions from one identity cannot both pass 4
    6. consensus recompute of the pair
    7. SubmissionResult

vote():
    1. admission ('vote' tier)
    2. vote ledger (which recomputes the pair)

lookup():
    admission ('search' tier), then the stored aggregate (or the neutral one)
    and the live claims behind it, newest first.

recent() / stats():
    admission ('search' tier), then public claim listings and counts.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Tuple

import asyncpg

from config.policy import CAPTCHA_MIN_SCORE, SYBIL_WINDOW_DAYS, VERIFICATION_TTL_DAYS
from models.domain.verification import (
    AcceptanceAggregate,
    ClaimStatus,
    Provenance,
    VerificationClaim,
)
from services.abuse_gate import AbuseGate, honeypot_triggered
from services.admission import AdmissionCounter, AdmissionResult
from services.consensus import ConsensusEngine
from services.errors import AbuseRejected, PersistenceUnavailable
from services.sybil_guard import SybilGuard
from services.vote_ledger import VoteLedger, VoteOutcome
from utils.datetime_utils import ensure_utc, utc_now

logger = logging.getLogger(__name__)

HONEYPOT_CLAIM_ID = "submitted"
PAIR_CLAIM_LIMIT = 50
RECENT_CLAIM_LIMIT = 100

PERSISTENCE_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError)


@dataclass
class SubmissionResult:
    claim_id: str
    status: ClaimStatus
    aggregate: Optional[AcceptanceAggregate]
    admission: Optional[AdmissionResult] = None
    security_degraded: bool = False
    synthetic: bool = False


@dataclass
class VoteResult:
    outcome: VoteOutcome
    aggregate: AcceptanceAggregate
    admission: AdmissionResult


@dataclass
class LookupResult:
    aggregate: AcceptanceAggregate
    admission: AdmissionResult
    claims: List[VerificationClaim] = field(default_factory=list)

    @property
    def summary(self) -> dict:
        return {
            'total_verifications': len(self.claims),
            'total_upvotes': sum(c.upvotes for c in self.claims),
            'total_downvotes': sum(c.downvotes for c in self.claims),
        }


class VerificationService:

    def __init__(
        self,
        claims,
        admission: AdmissionCounter,
        abuse_gate: AbuseGate,
        sybil: SybilGuard,
        consensus: ConsensusEngine,
        ledger: VoteLedger,
        captcha_min_score: float = CAPTCHA_MIN_SCORE,
        captcha_fail_mode: str = "open",
        captcha_fallback_tier: str = "captcha_fallback",
        ttl_days: int = VERIFICATION_TTL_DAYS,
        sybil_window_days: int = SYBIL_WINDOW_DAYS,
    ):
        self.claims = claims
        self.admission = admission
        self.abuse_gate = abuse_gate
        self.sybil = sybil
        self.consensus = consensus
        self.ledger = ledger
        self.captcha_min_score = captcha_min_score
        self.captcha_fail_mode = captcha_fail_mode
        self.captcha_fallback_tier = captcha_fallback_tier
        self.ttl_days = ttl_days
        self.sybil_window_days = sybil_window_days

    @classmethod
    def from_settings(cls, settings, claims, admission, abuse_gate, sybil, consensus, ledger):
        return cls(
            claims=claims,
            admission=admission,
            abuse_gate=abuse_gate,
            sybil=sybil,
            consensus=consensus,
            ledger=ledger,
            captcha_min_score=settings.captcha_min_score,
            captcha_fail_mode=settings.captcha_fail_mode,
            captcha_fallback_tier=settings.captcha_fallback_tier,
            ttl_days=settings.verification_ttl_days,
            sybil_window_days=settings.sybil_window_days,
        )

    async def submit_claim(
        self,
        identity: str,
        provider_key: str,
        plan_key: str,
        accepted: bool,
        *,
        provenance: Provenance = Provenance.COMMUNITY,
        contact_identity: Optional[str] = None,
        notes: Optional[str] = None,
        captcha_token: Optional[str] = None,
        honeypot_value: Optional[str] = None,
        remote_ip: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> SubmissionResult:
        now = ensure_utc(now) if now is not None else utc_now()

        admission = await self.admission.enforce(identity, 'submit', now=now.timestamp())

        if honeypot_triggered(honeypot_value):
            logger.warning(
                f"[verify] Honeypot triggered for {provider_key}/{plan_key} "
                f"(identity={identity[:12]}…), returning synthetic success"
            )
            return SubmissionResult(
                claim_id=HONEYPOT_CLAIM_ID,
                status=ClaimStatus.PENDING,
                aggregate=None,
                admission=admission,
                synthetic=True,
            )

        security_degraded = await self._check_abuse_gate(identity, captcha_token, remote_ip, now)

        claim = VerificationClaim.new(
            identity=identity,
            provider_key=provider_key,
            plan_key=plan_key,
            accepted=accepted,
            provenance=provenance,
            contact_identity=contact_identity,
            notes=notes,
            ttl_days=self.ttl_days,
            now=now,
        )
        try:
            async with self.consensus.pair_guard(provider_key, plan_key) as conn:
                await self.sybil.ensure_unique(
                    identity, provider_key, plan_key, self.sybil_window_days,
                    contact_identity=contact_identity, now=now, conn=conn,
                )
                await self.claims.create(claim, conn=conn)
        except PERSISTENCE_ERRORS as e:
            logger.error(f"[verify] Failed to persist claim for {provider_key}/{plan_key}: {e}")
            raise PersistenceUnavailable() from e

        aggregate = await self.consensus.recompute(provider_key, plan_key, now=now)

        return SubmissionResult(
            claim_id=claim.id,
            status=aggregate.status,
            aggregate=aggregate,
            admission=admission,
            security_degraded=security_degraded or admission.degraded,
        )

    async def _check_abuse_gate(
        self,
        identity: str,
        token: Optional[str],
        remote_ip: Optional[str],
        now: datetime,
    ) -> bool:
        """
        Raise AbuseRejected for bots. Returns True when the decision was made
        in degraded mode (provider unavailable, fallback tier applied).
        """
        if self.abuse_gate.enforcing and not token:
            logger.warning(f"[verify] Missing bot-score token (identity={identity[:12]}…)")
            raise AbuseRejected()

        score = await self.abuse_gate.evaluate(token, remote_ip)

        if score is None:
            if self.captcha_fail_mode == "closed":
                logger.warning("[verify] Bot-score provider unavailable, failing closed")
                raise AbuseRejected()
            logger.warning(
                f"[verify] Bot-score provider unavailable, applying "
                f"'{self.captcha_fallback_tier}' admission tier"
            )
            await self.admission.enforce(identity, self.captcha_fallback_tier, now=now.timestamp())
            return True

        if score < self.captcha_min_score:
            logger.warning(
                f"[verify] Low bot score {score:.2f} < {self.captcha_min_score} "
                f"(identity={identity[:12]}…)"
            )
            raise AbuseRejected()

        return False

    async def vote(
        self,
        claim_id: str,
        voter_identity: str,
        direction,
        now: Optional[datetime] = None,
    ) -> VoteResult:
        now = ensure_utc(now) if now is not None else utc_now()
        admission = await self.admission.enforce(voter_identity, 'vote', now=now.timestamp())
        outcome = await self.ledger.cast_vote(claim_id, voter_identity, direction, now=now)
        return VoteResult(outcome=outcome, aggregate=outcome.aggregate, admission=admission)

    async def lookup(
        self,
        identity: str,
        provider_key: str,
        plan_key: str,
        now: Optional[datetime] = None,
    ) -> LookupResult:
        now = ensure_utc(now) if now is not None else utc_now()
        admission = await self.admission.enforce(identity, 'search', now=now.timestamp())
        aggregate = await self.consensus.get_aggregate(provider_key, plan_key, now=now)
        claims = await self.claims.list_live_for_pair(
            provider_key, plan_key, now, limit=PAIR_CLAIM_LIMIT,
        )
        return LookupResult(aggregate=aggregate, admission=admission, claims=claims)

    async def recent(
        self,
        identity: str,
        limit: int = 20,
        provider_key: Optional[str] = None,
        plan_key: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Tuple[List[VerificationClaim], AdmissionResult]:
        """Most recent live claims, optionally narrowed to a provider and/or plan"""
        now = ensure_utc(now) if now is not None else utc_now()
        admission = await self.admission.enforce(identity, 'search', now=now.timestamp())
        claims = await self.claims.list_recent(
            now,
            limit=max(1, min(limit, RECENT_CLAIM_LIMIT)),
            provider_key=provider_key,
            plan_key=plan_key,
        )
        return claims, admission

    async def stats(self, identity: str, now: Optional[datetime] = None) -> Tuple[dict, AdmissionResult]:
        now = ensure_utc(now) if now is not None else utc_now()
        admission = await self.admission.enforce(identity, 'search', now=now.timestamp())
        return await self.claims.verification_stats(now), admission

"""
Consensus Engine - derive the acceptance status of a (provider, plan) pair

The aggregate is never edited directly. Every change to the live claim set
(new claim, vote, expiry) calls recompute(), which rebuilds the aggregate
from scratch:

    live claims ──► inputs ──► confidence.score() ──► decide_status()
                                                          │
                         upsert aggregate ◄───────────────┘
                         stamp status onto live claims

Serialization per pair:
- in-process: KeyedLock (one asyncio.Lock per pair)
- across processes: pg_advisory_xact_lock inside
  AcceptanceRepository.pair_transaction()

Transient serialization failures / deadlocks are retried a few times.

Status rules:
- bar = verification_count >= 3 AND confidence_score >= 60
- bar AND majority ratio >= 2  -> CONFIRMED (accepts win) / REJECTED
- bar AND majority ratio < 2   -> CONFLICTING
- otherwise the previous decided status is kept; it never falls back to
  PENDING once it has left it
"""
import asyncio
import logging
import math
from contextlib import asynccontextmanager
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Awaitable, Callable, List, Optional

import asyncpg

from config.policy import (
    SPECIALTY_FRESHNESS_DAYS,
    MIN_CONFIDENCE_FOR_STATUS_CHANGE,
    MIN_MAJORITY_RATIO,
    MIN_VERIFICATIONS_FOR_CONSENSUS,
)
from models.domain.verification import (
    AcceptanceAggregate,
    ClaimStatus,
    Provenance,
    VerificationClaim,
)
from services import confidence
from services.keyed_lock import KeyedLock
from utils.datetime_utils import days_between, ensure_utc, utc_now

logger = logging.getLogger(__name__)

MAX_RECOMPUTE_ATTEMPTS = 3
RETRYABLE_ERRORS = (
    asyncpg.exceptions.SerializationError,
    asyncpg.exceptions.DeadlockDetectedError,
)

DECIDED_STATUSES = (ClaimStatus.CONFIRMED, ClaimStatus.REJECTED, ClaimStatus.CONFLICTING)

SpecialtyLookup = Callable[[str], Awaitable[Optional[str]]]


def majority_ratio(accepts: int, rejects: int) -> float:
    """
    Strength of the winning side: larger / smaller.

    inf when only one side has claims, 0.0 with no claims at all.
    """
    if accepts <= 0 and rejects <= 0:
        return 0.0
    if accepts <= 0 or rejects <= 0:
        return math.inf
    return max(accepts, rejects) / min(accepts, rejects)


def decide_status(
    previous: Optional[ClaimStatus],
    accepted_count: int,
    rejected_count: int,
    verification_count: int,
    confidence_score: int,
) -> ClaimStatus:
    """Pure status decision, see module docstring for the rules"""
    bar_met = (
        verification_count >= MIN_VERIFICATIONS_FOR_CONSENSUS
        and confidence_score >= MIN_CONFIDENCE_FOR_STATUS_CHANGE
    )
    if bar_met:
        if majority_ratio(accepted_count, rejected_count) >= MIN_MAJORITY_RATIO:
            return ClaimStatus.CONFIRMED if accepted_count > rejected_count else ClaimStatus.REJECTED
        return ClaimStatus.CONFLICTING

    if previous is not None and ClaimStatus(previous) in DECIDED_STATUSES:
        return ClaimStatus(previous)
    return ClaimStatus.PENDING


def strongest_provenance(claims: List[VerificationClaim]) -> Optional[Provenance]:
    """Most authoritative provenance among the claims"""
    if not claims:
        return None
    return max((c.provenance for c in claims), key=confidence.source_score)


def build_aggregate(
    provider_key: str,
    plan_key: str,
    claims: List[VerificationClaim],
    now: datetime,
    previous_status: Optional[ClaimStatus] = None,
    specialty: Optional[str] = None,
) -> AcceptanceAggregate:
    """
    Pure derivation of the aggregate from a live claim set.

    Inputs fed to the scorer:
        provenance          most authoritative live claim
        age_in_days         days since the newest live claim
        verification_count  number of live claims
        upvotes/downvotes   summed over live claims
    """
    if not claims:
        return AcceptanceAggregate.neutral(provider_key, plan_key)

    newest = max(ensure_utc(c.submitted_at) for c in claims)
    accepted_count = sum(1 for c in claims if c.accepted)
    rejected_count = len(claims) - accepted_count
    upvotes = sum(c.upvotes for c in claims)
    downvotes = sum(c.downvotes for c in claims)

    result = confidence.score(
        provenance=strongest_provenance(claims),
        age_in_days=days_between(newest, now),
        specialty=specialty,
        verification_count=len(claims),
        upvotes=upvotes,
        downvotes=downvotes,
    )

    status = decide_status(
        previous_status,
        accepted_count=accepted_count,
        rejected_count=rejected_count,
        verification_count=len(claims),
        confidence_score=result.score,
    )

    return AcceptanceAggregate(
        provider_key=provider_key,
        plan_key=plan_key,
        status=status,
        confidence_score=result.score,
        confidence_level=result.level,
        verification_count=len(claims),
        agreement_ratio=confidence.agreement_ratio(upvotes, downvotes),
        accepted_count=accepted_count,
        rejected_count=rejected_count,
        last_verified_at=newest,
        expires_at=max(ensure_utc(c.expires_at) for c in claims),
        metadata={
            **result.metadata,
            'factors': result.factors.as_dict(),
            'specialty': result.specialty.value,
            'freshness_threshold': result.freshness_threshold,
            'description': result.description,
        },
    )


def with_reader_metadata(
    aggregate: AcceptanceAggregate,
    now: datetime,
    specialty: Optional[str] = None,
) -> AcceptanceAggregate:
    """Copy of a stored aggregate with description and staleness as of `now`"""
    category = confidence.classify_specialty(specialty)
    threshold = SPECIALTY_FRESHNESS_DAYS[category]
    age_in_days = (
        days_between(aggregate.last_verified_at, now)
        if aggregate.last_verified_at is not None else None
    )
    return replace(aggregate, metadata={
        **(aggregate.metadata or {}),
        'age_in_days': age_in_days,
        **confidence.freshness(age_in_days, threshold),
        'specialty': category.value,
        'freshness_threshold': threshold,
        'description': confidence.describe_level(
            aggregate.confidence_level, aggregate.verification_count
        ),
    })


@dataclass
class RecomputeResult:
    aggregate: AcceptanceAggregate
    changed: bool
    previous_status: Optional[ClaimStatus] = None


class ConsensusEngine:
    """
    Owns every write to acceptance aggregates.

    Args:
        claims: ClaimRepository
        aggregates: AcceptanceRepository
        locks: KeyedLock shared by everything in this process that recomputes
        specialty_lookup: optional async provider_key -> specialty text
    """

    def __init__(
        self,
        claims,
        aggregates,
        locks: Optional[KeyedLock] = None,
        specialty_lookup: Optional[SpecialtyLookup] = None,
    ):
        self.claims = claims
        self.aggregates = aggregates
        self.locks = locks if locks is not None else KeyedLock()
        self.specialty_lookup = specialty_lookup

    async def get_aggregate(
        self,
        provider_key: str,
        plan_key: str,
        *,
        now: Optional[datetime] = None,
    ) -> AcceptanceAggregate:
        """
        Stored aggregate, or the neutral default for an unknown pair.

        Staleness and the level description depend on `now`, so they are
        derived here rather than read from storage.
        """
        now = ensure_utc(now) if now is not None else utc_now()
        aggregate = await self.aggregates.get(provider_key, plan_key)
        if aggregate is None:
            aggregate = AcceptanceAggregate.neutral(provider_key, plan_key)
        specialty = await self.specialty_for(provider_key)
        return with_reader_metadata(aggregate, now, specialty)

    @asynccontextmanager
    async def pair_guard(self, provider_key: str, plan_key: str):
        """
        Hold the pair's in-process lock and advisory transaction together.

        Yields the transaction connection. Read-then-insert sequences on the
        pair (Sybil check + claim insert) run inside it so concurrent requests
        see each other's rows. Do not call recompute() while holding it.
        """
        async with self.locks.hold((provider_key, plan_key)):
            async with self.aggregates.pair_transaction(provider_key, plan_key) as conn:
                yield conn

    async def recompute(
        self,
        provider_key: str,
        plan_key: str,
        *,
        now: Optional[datetime] = None,
    ) -> AcceptanceAggregate:
        result = await self.recompute_detailed(provider_key, plan_key, now=now)
        return result.aggregate

    async def recompute_detailed(
        self,
        provider_key: str,
        plan_key: str,
        *,
        now: Optional[datetime] = None,
    ) -> RecomputeResult:
        """Recompute under the pair lock, retrying transient DB conflicts"""
        now = ensure_utc(now) if now is not None else utc_now()
        specialty = await self.specialty_for(provider_key)

        async with self.locks.hold((provider_key, plan_key)):
            for attempt in range(1, MAX_RECOMPUTE_ATTEMPTS + 1):
                try:
                    return await self._recompute_locked(provider_key, plan_key, now, specialty)
                except RETRYABLE_ERRORS as e:
                    if attempt == MAX_RECOMPUTE_ATTEMPTS:
                        logger.error(
                            f"[consensus] Recompute {provider_key}/{plan_key} failed "
                            f"after {attempt} attempts: {e}"
                        )
                        raise
                    logger.warning(
                        f"[consensus] Recompute {provider_key}/{plan_key} conflict "
                        f"(attempt {attempt}): {e.__class__.__name__}, retrying"
                    )
                    await asyncio.sleep(0.05 * attempt)

    async def _recompute_locked(
        self,
        provider_key: str,
        plan_key: str,
        now: datetime,
        specialty: Optional[str],
    ) -> RecomputeResult:
        async with self.aggregates.pair_transaction(provider_key, plan_key) as conn:
            claims = await self.claims.get_live_for_pair(provider_key, plan_key, now, conn=conn)
            previous = await self.aggregates.get(provider_key, plan_key, conn=conn)
            previous_status = previous.status if previous else None

            if not claims:
                if previous is not None:
                    await self.aggregates.delete(provider_key, plan_key, conn=conn)
                return RecomputeResult(
                    aggregate=AcceptanceAggregate.neutral(provider_key, plan_key),
                    changed=previous is not None,
                    previous_status=previous_status,
                )

            aggregate = build_aggregate(
                provider_key, plan_key, claims, now,
                previous_status=previous_status,
                specialty=specialty,
            )

            changed = previous is None or not previous.same_outcome(aggregate)
            if changed:
                await self.aggregates.upsert(aggregate, conn=conn)
            else:
                aggregate.updated_at = previous.updated_at

            await self.claims.update_status_for_pair(
                provider_key, plan_key, aggregate.status, now, conn=conn
            )

        if previous_status is not None and previous_status != aggregate.status:
            logger.info(
                f"[consensus] {provider_key}/{plan_key}: {previous_status.value} -> "
                f"{aggregate.status.value} (score={aggregate.confidence_score}, "
                f"count={aggregate.verification_count})"
            )

        return RecomputeResult(aggregate=aggregate, changed=changed, previous_status=previous_status)

    async def specialty_for(self, provider_key: str) -> Optional[str]:
        if self.specialty_lookup is None:
            return None
        try:
            return await self.specialty_lookup(provider_key)
        except Exception as e:
            logger.warning(f"[consensus] Specialty lookup failed for {provider_key}: {e}")
            return None

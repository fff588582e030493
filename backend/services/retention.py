"""
Retention & Decay - periodic maintenance of the claim set

cleanup_expired():
    Deletes claims past expires_at (and their votes) in bounded batches, one
    transaction per batch, then recomputes every pair that lost claims.
    Running it twice in a row deletes nothing the second time.

recalculate_confidence():
    Walks every stored aggregate and recomputes it. Recency decays with
    time even when no claim changes, so scores drift down between runs.

Both accept dry_run=True to report what would happen without writing.
"""
import asyncio
import logging
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import List, Optional, Set, Tuple

from config.policy import VERIFICATION_TTL_DAYS
from services.consensus import ConsensusEngine, build_aggregate
from utils.datetime_utils import ensure_utc, utc_now

logger = logging.getLogger(__name__)

DEFAULT_CLEANUP_BATCH = 1000
DEFAULT_RECALC_BATCH = 100


@dataclass
class CleanupResult:
    dry_run: bool
    expired_found: int = 0
    claims_deleted: int = 0
    votes_deleted: int = 0
    batches: int = 0
    pairs_recomputed: int = 0
    errors: int = 0
    duration_ms: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class RecalculationResult:
    dry_run: bool
    processed: int = 0
    updated: int = 0
    unchanged: int = 0
    errors: int = 0
    duration_ms: int = 0
    error_pairs: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)


class RetentionService:

    def __init__(
        self,
        claims,
        votes,
        aggregates,
        consensus: ConsensusEngine,
        ttl_days: int = VERIFICATION_TTL_DAYS,
    ):
        self.claims = claims
        self.votes = votes
        self.aggregates = aggregates
        self.consensus = consensus
        self.ttl_days = ttl_days

    async def cleanup_expired(
        self,
        dry_run: bool = False,
        batch_size: int = DEFAULT_CLEANUP_BATCH,
        now: Optional[datetime] = None,
    ) -> CleanupResult:
        if batch_size <= 0:
            raise ValueError(f"batch_size must be positive, got {batch_size}")

        started = time.monotonic()
        now = ensure_utc(now) if now is not None else utc_now()
        result = CleanupResult(dry_run=dry_run)

        if dry_run:
            result.expired_found = await self.claims.count_expired(now)
            result.duration_ms = int((time.monotonic() - started) * 1000)
            logger.info(f"[retention] Dry run: {result.expired_found} expired claims would be deleted")
            return result

        affected: Set[Tuple[str, str]] = set()
        while True:
            expired = await self.claims.find_expired(now, batch_size)
            if not expired:
                break

            claims_deleted, votes_deleted = await self.claims.delete_with_votes(
                [claim_id for claim_id, _, _ in expired]
            )
            result.batches += 1
            result.expired_found += len(expired)
            result.claims_deleted += claims_deleted
            result.votes_deleted += votes_deleted
            affected.update((provider, plan) for _, provider, plan in expired)

            logger.debug(
                f"[retention] Batch {result.batches}: deleted {claims_deleted} claims, "
                f"{votes_deleted} votes"
            )
            if claims_deleted == 0 or len(expired) < batch_size:
                break
            await asyncio.sleep(0)

        for provider_key, plan_key in sorted(affected):
            try:
                await self.consensus.recompute(provider_key, plan_key, now=now)
                result.pairs_recomputed += 1
            except Exception as e:
                result.errors += 1
                logger.error(f"[retention] Recompute failed for {provider_key}/{plan_key}: {e}")
            await asyncio.sleep(0)

        result.duration_ms = int((time.monotonic() - started) * 1000)
        logger.info(
            f"[retention] Cleanup complete: {result.claims_deleted} claims, "
            f"{result.votes_deleted} votes deleted in {result.batches} batch(es), "
            f"{result.pairs_recomputed} pairs recomputed ({result.duration_ms}ms)"
        )
        return result

    async def recalculate_confidence(
        self,
        dry_run: bool = False,
        limit: Optional[int] = None,
        batch_size: int = DEFAULT_RECALC_BATCH,
        now: Optional[datetime] = None,
    ) -> RecalculationResult:
        if batch_size <= 0:
            raise ValueError(f"batch_size must be positive, got {batch_size}")

        started = time.monotonic()
        now = ensure_utc(now) if now is not None else utc_now()
        result = RecalculationResult(dry_run=dry_run)

        cursor: Optional[Tuple[str, str]] = None
        while limit is None or result.processed < limit:
            page_size = batch_size if limit is None else min(batch_size, limit - result.processed)
            pairs = await self.aggregates.list_pairs(after=cursor, limit=page_size)
            if not pairs:
                break

            for provider_key, plan_key in pairs:
                result.processed += 1
                try:
                    if dry_run:
                        changed = await self._would_change(provider_key, plan_key, now)
                    else:
                        recomputed = await self.consensus.recompute_detailed(
                            provider_key, plan_key, now=now
                        )
                        changed = recomputed.changed
                except Exception as e:
                    result.errors += 1
                    result.error_pairs.append(f"{provider_key}/{plan_key}")
                    logger.error(f"[retention] Recalculation failed for {provider_key}/{plan_key}: {e}")
                    continue

                if changed:
                    result.updated += 1
                else:
                    result.unchanged += 1

            cursor = pairs[-1]
            if len(pairs) < page_size:
                break
            await asyncio.sleep(0)

        result.duration_ms = int((time.monotonic() - started) * 1000)
        logger.info(
            f"[retention] Recalculated {result.processed} aggregates "
            f"(updated={result.updated}, unchanged={result.unchanged}, errors={result.errors}, "
            f"dry_run={dry_run}, {result.duration_ms}ms)"
        )
        return result

    async def _would_change(self, provider_key: str, plan_key: str, now: datetime) -> bool:
        stored = await self.aggregates.get(provider_key, plan_key)
        claims = await self.claims.get_live_for_pair(provider_key, plan_key, now)
        if stored is None:
            return bool(claims)
        if not claims:
            return True
        specialty = await self.consensus.specialty_for(provider_key)
        fresh = build_aggregate(
            provider_key, plan_key, claims, now,
            previous_status=stored.status, specialty=specialty,
        )
        return not stored.same_outcome(fresh)

    async def expiration_stats(self, now: Optional[datetime] = None) -> dict:
        now = ensure_utc(now) if now is not None else utc_now()
        claim_stats, aggregate_stats = await asyncio.gather(
            self.claims.stats(now),
            self.aggregates.stats(now),
        )
        return {
            'claims': {
                'total': claim_stats['total'],
                'expired': claim_stats['expired'],
                'expiring_within_7_days': claim_stats['expiring_7d'],
                'expiring_within_30_days': claim_stats['expiring_30d'],
            },
            'aggregates': {
                'total': aggregate_stats['total'],
                'expired': aggregate_stats['expired'],
                'expiring_within_7_days': aggregate_stats['expiring_7d'],
                'expiring_within_30_days': aggregate_stats['expiring_30d'],
            },
        }

    async def retention_stats(self, now: Optional[datetime] = None) -> dict:
        now = ensure_utc(now) if now is not None else utc_now()
        claim_stats, aggregate_stats, vote_total = await asyncio.gather(
            self.claims.stats(now),
            self.aggregates.stats(now),
            self.votes.count(),
        )
        return {
            'timestamp': now.isoformat(),
            'claims': {
                'total': claim_stats['total'],
                'expired': claim_stats['expired'],
                'expiring_within_7_days': claim_stats['expiring_7d'],
                'expiring_within_30_days': claim_stats['expiring_30d'],
                'oldest': _isoformat(claim_stats['oldest']),
                'newest': _isoformat(claim_stats['newest']),
                'retention_policy': f"{self.ttl_days} days from submission",
            },
            'aggregates': {
                'total': aggregate_stats['total'],
                'expiring_within_7_days': aggregate_stats['expiring_7d'],
                'expiring_within_30_days': aggregate_stats['expiring_30d'],
                'retention_policy': "Recomputed on change, deleted when no live claims remain",
            },
            'votes': {
                'total': vote_total,
                'retention_policy': "Deleted together with their claim",
            },
        }


def _isoformat(value) -> Optional[str]:
    value = ensure_utc(value)
    return value.isoformat() if value else None

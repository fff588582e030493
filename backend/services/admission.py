"""
Admission Counter - per-identity, per-tier sliding window rate limiting

Flow for check_and_increment(identity, tier):
1. Resolve the tier from the static table (unknown -> 'default')
2. Hit the primary store (Redis in multi-instance deployments) under a short
   timeout
3. On timeout / connection error: log StoreDegraded, answer from the local
   fallback store with the tighter 'degraded' tier and flag degraded=True

Admission never blocks all traffic because infrastructure is down, but the
caller always learns that the answer came from degraded mode.
"""
import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from redis.exceptions import RedisError

from config.policy import DEGRADED_TIER, RateLimitTier, get_tier
from services.admission_store import AdmissionStore, LocalAdmissionStore, window_key
from services.errors import RateLimited, StoreDegraded

logger = logging.getLogger(__name__)

STORE_FAILURES = (asyncio.TimeoutError, RedisError, ConnectionError, OSError)


@dataclass
class AdmissionResult:
    """Outcome of one admission check"""
    allowed: bool
    remaining: int
    reset_at: datetime
    limit: int
    tier: str
    degraded: bool = False


class AdmissionCounter:
    """
    Sliding window admission control over an injected AdmissionStore.

    Args:
        store: Primary store (RedisAdmissionStore or LocalAdmissionStore)
        fallback: Local store used in degraded mode (created if omitted)
        timeout_ms: Bound on each primary store call
        clock: Epoch-seconds clock, injectable for tests
    """

    def __init__(
        self,
        store: AdmissionStore,
        fallback: Optional[LocalAdmissionStore] = None,
        timeout_ms: int = 50,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        if fallback is None:
            fallback = store if isinstance(store, LocalAdmissionStore) else LocalAdmissionStore()
        self.fallback = fallback
        self.timeout = timeout_ms / 1000
        self.clock = clock
        self.degraded_hits = 0

    @property
    def is_shared(self) -> bool:
        return self.store is not self.fallback

    async def check_and_increment(
        self,
        identity: str,
        tier: str,
        now: Optional[float] = None,
    ) -> AdmissionResult:
        """Count this request against identity's window for tier"""
        now = now if now is not None else self.clock()
        limits = get_tier(tier)

        if self.is_shared:
            try:
                state = await asyncio.wait_for(
                    self.store.hit(window_key(limits.name, identity), now,
                                   limits.window_seconds, limits.max_requests),
                    timeout=self.timeout,
                )
                return self._result(limits, state, degraded=False)
            except STORE_FAILURES as e:
                self.degraded_hits += 1
                degraded = StoreDegraded(f"{self.store.name} store failed: {e!r}")
                logger.warning(
                    f"[admission] {degraded.message} - falling back to local "
                    f"'{DEGRADED_TIER}' limits (tier={limits.name})"
                )
                # Degraded windows stay per tier so one cheap tier cannot
                # drain the budget of another
                key = window_key(f"{DEGRADED_TIER}:{limits.name}", identity)
                limits = self._degraded_tier(limits)
                state = await self.fallback.hit(key, now, limits.window_seconds, limits.max_requests)
                return self._result(limits, state, degraded=True)

        state = await self.store.hit(window_key(limits.name, identity), now,
                                     limits.window_seconds, limits.max_requests)
        return self._result(limits, state, degraded=False)

    async def enforce(self, identity: str, tier: str, now: Optional[float] = None) -> AdmissionResult:
        """check_and_increment, raising RateLimited when denied"""
        result = await self.check_and_increment(identity, tier, now=now)
        if not result.allowed:
            logger.info(
                f"[admission] Denied {result.tier} for {identity[:12]}… "
                f"until {result.reset_at.isoformat()} (degraded={result.degraded})"
            )
            raise RateLimited(
                reset_at=result.reset_at,
                tier=result.tier,
                limit=result.limit,
                degraded=result.degraded,
            )
        return result

    @staticmethod
    def _degraded_tier(requested: RateLimitTier) -> RateLimitTier:
        """The degraded tier, unless the requested one is already stricter"""
        degraded = get_tier(DEGRADED_TIER)
        if requested.max_requests / requested.window_seconds < degraded.max_requests / degraded.window_seconds:
            return requested
        return degraded

    @staticmethod
    def _result(limits: RateLimitTier, state, degraded: bool) -> AdmissionResult:
        reset_at = datetime.fromtimestamp(state.oldest + limits.window_seconds, tz=timezone.utc)
        remaining = limits.max_requests - state.count - 1 if state.allowed else 0
        return AdmissionResult(
            allowed=state.allowed,
            remaining=max(0, remaining),
            reset_at=reset_at,
            limit=limits.max_requests,
            tier=limits.name,
            degraded=degraded,
        )

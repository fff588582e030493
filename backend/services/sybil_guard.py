"""
Sybil Guard - one verification per identity per provider-plan pair per window

An identity is checked on two independent axes:
- network identity (always present, derived from the client address)
- contact identity (optional, derived from e.g. an email)

A match on either axis within the window is a duplicate. A pair that has no
claims at all is never a duplicate, so the very first verification of a pair
always goes through.
"""
import logging
from datetime import datetime, timedelta
from typing import Optional

from config.policy import SYBIL_WINDOW_DAYS
from services.errors import DuplicateSubmission
from utils.datetime_utils import ensure_utc, utc_now

logger = logging.getLogger(__name__)


class SybilGuard:

    def __init__(self, claims, window_days: int = SYBIL_WINDOW_DAYS):
        """
        Args:
            claims: ClaimRepository (or anything with has_any_for_pair /
                get_latest_from)
            window_days: Default duplicate window
        """
        self.claims = claims
        self.window_days = window_days

    async def find_duplicate_axis(
        self,
        identity: str,
        provider_key: str,
        plan_key: str,
        window_days: Optional[int] = None,
        *,
        contact_identity: Optional[str] = None,
        now: Optional[datetime] = None,
        conn=None,
    ) -> Optional[str]:
        """
        Return 'network' or 'contact' for the first axis with a recent claim,
        or None when the submission is new.

        Pass `conn` from the pair transaction when the result gates an insert
        (see ConsensusEngine.pair_guard).
        """
        if not await self.claims.has_any_for_pair(provider_key, plan_key, conn=conn):
            return None

        now = ensure_utc(now) if now is not None else utc_now()
        cutoff = now - timedelta(days=window_days if window_days is not None else self.window_days)

        latest = await self.claims.get_latest_from(provider_key, plan_key, identity=identity, conn=conn)
        if latest and ensure_utc(latest.submitted_at) >= cutoff:
            return 'network'

        if contact_identity:
            latest = await self.claims.get_latest_from(
                provider_key, plan_key, contact_identity=contact_identity, conn=conn
            )
            if latest and ensure_utc(latest.submitted_at) >= cutoff:
                return 'contact'

        return None

    async def is_duplicate(
        self,
        identity: str,
        provider_key: str,
        plan_key: str,
        window_days: Optional[int] = None,
        *,
        contact_identity: Optional[str] = None,
        now: Optional[datetime] = None,
        conn=None,
    ) -> bool:
        axis = await self.find_duplicate_axis(
            identity, provider_key, plan_key, window_days,
            contact_identity=contact_identity, now=now, conn=conn,
        )
        return axis is not None

    async def ensure_unique(
        self,
        identity: str,
        provider_key: str,
        plan_key: str,
        window_days: Optional[int] = None,
        *,
        contact_identity: Optional[str] = None,
        now: Optional[datetime] = None,
        conn=None,
    ):
        """Raise DuplicateSubmission if this identity verified the pair recently"""
        axis = await self.find_duplicate_axis(
            identity, provider_key, plan_key, window_days,
            contact_identity=contact_identity, now=now, conn=conn,
        )
        if axis is not None:
            logger.warning(
                f"[sybil] Duplicate submission for {provider_key}/{plan_key} "
                f"matched on {axis} identity"
            )
            raise DuplicateSubmission(axis=axis)

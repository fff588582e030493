"""
Verification domain models

Storage: PostgreSQL (verification_claims, verification_votes,
acceptance_aggregates tables)

A VerificationClaim is one client's binary statement "provider X accepts
plan Y". Votes from other clients attach to claims. The AcceptanceAggregate
is the derived per-(provider, plan) status, recomputed from the live claim
set and never edited by hand.
"""
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

from config.policy import VERIFICATION_TTL_DAYS
from utils.datetime_utils import utc_now
from utils.id_generator import generate_claim_id, validate_id


class Provenance(str, Enum):
    """Declared origin / trust tier of a claim"""
    GOVERNMENT = "GOVERNMENT"
    CARRIER = "CARRIER"
    COMMUNITY = "COMMUNITY"
    UNKNOWN = "UNKNOWN"


class ClaimStatus(str, Enum):
    """Consensus status of a claim and of its (provider, plan) aggregate"""
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    REJECTED = "REJECTED"
    CONFLICTING = "CONFLICTING"


class VoteDirection(str, Enum):
    UP = "UP"
    DOWN = "DOWN"


class ConfidenceLevel(str, Enum):
    VERY_LOW = "VERY_LOW"
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    VERY_HIGH = "VERY_HIGH"


@dataclass
class VerificationClaim:
    """
    Claim domain model - storage-agnostic representation

    identity / contact_identity are opaque, already-derived strings (hashes of
    network address and optional contact). Raw values are never stored.

    ID format: vc_xxxxxxxx (11 chars)
    """
    id: str
    identity: str
    provider_key: str
    plan_key: str
    accepted: bool

    provenance: Provenance = Provenance.COMMUNITY
    contact_identity: Optional[str] = None
    notes: Optional[str] = None

    status: ClaimStatus = ClaimStatus.PENDING

    # Denormalised vote tallies (maintained by the vote ledger)
    upvotes: int = 0
    downvotes: int = 0

    submitted_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None

    def __post_init__(self):
        """Generate ID if missing, coerce enums from raw column values"""
        if not self.id or not validate_id(self.id):
            self.id = generate_claim_id()
        if not self.identity:
            raise ValueError("VerificationClaim requires an identity")
        self.provenance = Provenance(self.provenance or Provenance.UNKNOWN)
        self.status = ClaimStatus(self.status)

    @classmethod
    def new(
        cls,
        identity: str,
        provider_key: str,
        plan_key: str,
        accepted: bool,
        provenance: Provenance = Provenance.COMMUNITY,
        contact_identity: Optional[str] = None,
        notes: Optional[str] = None,
        ttl_days: int = VERIFICATION_TTL_DAYS,
        now: Optional[datetime] = None,
    ) -> 'VerificationClaim':
        """Build a fresh PENDING claim with submitted_at/expires_at set"""
        now = now or utc_now()
        return cls(
            id='',
            identity=identity,
            provider_key=provider_key,
            plan_key=plan_key,
            accepted=accepted,
            provenance=provenance,
            contact_identity=contact_identity,
            notes=notes,
            submitted_at=now,
            expires_at=now + timedelta(days=ttl_days),
        )

    @property
    def pair(self) -> tuple:
        return (self.provider_key, self.plan_key)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """Expiry is checked at read time; removal is the retention job's job"""
        if self.expires_at is None:
            return False
        return self.expires_at <= (now or utc_now())


@dataclass
class VoteRecord:
    """
    One voter's vote on one claim. Unique per (claim_id, voter_identity).
    """
    claim_id: str
    voter_identity: str
    direction: VoteDirection
    cast_at: Optional[datetime] = None

    def __post_init__(self):
        self.direction = VoteDirection(self.direction)


@dataclass
class AcceptanceAggregate:
    """
    Derived acceptance status for one (provider, plan) pair.

    A pair nobody has verified yet is represented by AcceptanceAggregate.neutral().
    """
    provider_key: str
    plan_key: str
    status: ClaimStatus = ClaimStatus.PENDING
    confidence_score: int = 0
    confidence_level: ConfidenceLevel = ConfidenceLevel.VERY_LOW
    verification_count: int = 0
    agreement_ratio: float = 0.0
    accepted_count: int = 0
    rejected_count: int = 0
    last_verified_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    metadata: dict = field(default_factory=dict)

    def __post_init__(self):
        self.status = ClaimStatus(self.status)
        self.confidence_level = ConfidenceLevel(self.confidence_level)

    @classmethod
    def neutral(cls, provider_key: str, plan_key: str) -> 'AcceptanceAggregate':
        """Default aggregate for a pair with no live claims"""
        return cls(provider_key=provider_key, plan_key=plan_key)

    @property
    def is_known(self) -> bool:
        return self.verification_count > 0

    def same_outcome(self, other: 'AcceptanceAggregate') -> bool:
        """Compare everything recompute derives, ignoring bookkeeping timestamps"""
        return (
            self.status == other.status
            and self.confidence_score == other.confidence_score
            and self.confidence_level == other.confidence_level
            and self.verification_count == other.verification_count
            and abs(self.agreement_ratio - other.agreement_ratio) < 1e-9
            and self.accepted_count == other.accepted_count
            and self.rejected_count == other.rejected_count
            and self.last_verified_at == other.last_verified_at
            and self.expires_at == other.expires_at
        )

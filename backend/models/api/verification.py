"""
Verification API Models (Pydantic schemas)

Request/Response models for the provider-plan acceptance verification API.
"""
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from models.domain.verification import AcceptanceAggregate, VerificationClaim


# =============================================================================
# ENUMS FOR VALIDATION
# =============================================================================

class VoteEnum(str, Enum):
    UP = "up"
    DOWN = "down"


# =============================================================================
# REQUEST MODELS
# =============================================================================

class SubmitVerificationInput(BaseModel):
    """
    Input for submitting a verification.

    Unknown fields are kept so the configured honeypot field can be read even
    when it is not 'website'.
    """
    provider_key: str = Field(..., min_length=1, max_length=64, description="Provider identifier (e.g. NPI)")
    plan_key: str = Field(..., min_length=1, max_length=64, description="Insurance plan identifier")
    accepts_insurance: bool = Field(..., description="Does the provider accept this plan?")
    notes: Optional[str] = Field(None, max_length=1000, description="Free-text details")
    submitter_email: Optional[str] = Field(None, max_length=254, description="Optional contact address")
    captcha_token: Optional[str] = Field(None, max_length=4096, description="Bot-score token")
    website: Optional[str] = Field(None, max_length=1000, description="Leave empty")

    model_config = {"extra": "allow"}


class VoteInput(BaseModel):
    """Input for voting on a verification."""
    vote: VoteEnum


# =============================================================================
# RESPONSE MODELS
# =============================================================================

class AcceptanceResponse(BaseModel):
    """Current acceptance status of a provider-plan pair."""
    provider_key: str
    plan_key: str
    status: str
    confidence_score: int
    confidence_level: str
    verification_count: int
    agreement_ratio: float
    accepted_count: int
    rejected_count: int
    last_verified_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    description: Optional[str] = None
    is_stale: Optional[bool] = None
    recommend_reverification: Optional[bool] = None

    @classmethod
    def from_aggregate(cls, aggregate: AcceptanceAggregate) -> 'AcceptanceResponse':
        metadata = aggregate.metadata or {}
        return cls(
            provider_key=aggregate.provider_key,
            plan_key=aggregate.plan_key,
            status=aggregate.status.value,
            confidence_score=aggregate.confidence_score,
            confidence_level=aggregate.confidence_level.value,
            verification_count=aggregate.verification_count,
            agreement_ratio=aggregate.agreement_ratio,
            accepted_count=aggregate.accepted_count,
            rejected_count=aggregate.rejected_count,
            last_verified_at=aggregate.last_verified_at,
            expires_at=aggregate.expires_at,
            description=metadata.get('description'),
            is_stale=metadata.get('is_stale'),
            recommend_reverification=metadata.get('recommend_reverification'),
        )


class ClaimView(BaseModel):
    """Public view of one verification. Identity hashes are never exposed."""
    id: str
    provider_key: str
    plan_key: str
    accepts_insurance: bool
    provenance: str
    status: str
    notes: Optional[str] = None
    upvotes: int = 0
    downvotes: int = 0
    submitted_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None

    @classmethod
    def from_claim(cls, claim: VerificationClaim) -> 'ClaimView':
        return cls(
            id=claim.id,
            provider_key=claim.provider_key,
            plan_key=claim.plan_key,
            accepts_insurance=claim.accepted,
            provenance=claim.provenance.value,
            status=claim.status.value,
            notes=claim.notes,
            upvotes=claim.upvotes,
            downvotes=claim.downvotes,
            submitted_at=claim.submitted_at,
            expires_at=claim.expires_at,
        )


class PairSummary(BaseModel):
    total_verifications: int
    total_upvotes: int
    total_downvotes: int


class PairAcceptanceResponse(AcceptanceResponse):
    """Acceptance status plus the live verifications behind it (newest first)."""
    verifications: List[ClaimView] = []
    summary: PairSummary


class RecentVerificationsResponse(BaseModel):
    success: bool = True
    count: int
    verifications: List[ClaimView]


class VerificationStats(BaseModel):
    total: int
    live: int
    accepted: int
    rejected: int
    recent_24h: int
    by_status: Dict[str, int]
    by_provenance: Dict[str, int]


class VerificationStatsResponse(BaseModel):
    success: bool = True
    data: VerificationStats


class VerificationSummary(BaseModel):
    id: str
    status: str


class SubmitVerificationResponse(BaseModel):
    """Response for a submitted verification."""
    success: bool = True
    verification: VerificationSummary
    acceptance: Optional[AcceptanceResponse] = None
    message: str = "Verification submitted successfully"


class VoteResponse(BaseModel):
    """Response for a vote."""
    success: bool = True
    verification_id: str
    vote: VoteEnum
    vote_changed: bool
    upvotes: int
    downvotes: int
    agreement_ratio: float
    acceptance: Optional[AcceptanceResponse] = None
    message: str

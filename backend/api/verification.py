"""
Verification API Endpoints
==========================

Endpoints:
- POST /api/verify - Submit a provider-plan acceptance verification
- POST /api/verify/{claim_id}/vote - Vote on a verification
- GET /api/verify/stats - Public verification counts
- GET /api/verify/recent - Most recent live verifications
- GET /api/verify/{provider_key}/{plan_key} - Current acceptance status with
  the live verifications behind it

Every response carries X-RateLimit-* headers for the admission tier that was
charged. X-Security-Degraded is set when a decision was made while the
shared admission store or the bot-score provider was unavailable.
"""
import logging
import math
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, Response

from api.dependencies import AppServices, get_services
from config import Settings, get_settings
from middleware.identity import client_address, contact_identity, network_identity
from models.api.verification import (
    AcceptanceResponse,
    ClaimView,
    PairAcceptanceResponse,
    PairSummary,
    RecentVerificationsResponse,
    SubmitVerificationInput,
    SubmitVerificationResponse,
    VerificationStats,
    VerificationStatsResponse,
    VerificationSummary,
    VoteInput,
    VoteResponse,
)
from services.admission import AdmissionResult
from services.errors import (
    AbuseRejected,
    ClaimNotFound,
    DuplicateSubmission,
    DuplicateVote,
    PersistenceUnavailable,
    RateLimited,
    VerificationError,
)
from utils.datetime_utils import utc_now

logger = logging.getLogger(__name__)

router = APIRouter()

ERROR_STATUS = {
    RateLimited: 429,
    AbuseRejected: 403,
    DuplicateSubmission: 409,
    DuplicateVote: 409,
    ClaimNotFound: 404,
    PersistenceUnavailable: 503,
}


def _status_for(error: VerificationError) -> int:
    for error_type, status in ERROR_STATUS.items():
        if isinstance(error, error_type):
            return status
    return 400


def _http_error(error: VerificationError) -> HTTPException:
    """Map a pipeline error to an HTTPException with a generic message"""
    headers = {}
    if isinstance(error, RateLimited):
        retry_after = max(1, math.ceil((error.reset_at - utc_now()).total_seconds()))
        headers = {
            "Retry-After": str(retry_after),
            "X-RateLimit-Limit": str(error.limit),
            "X-RateLimit-Remaining": "0",
            "X-RateLimit-Reset": str(int(error.reset_at.timestamp())),
        }
        if error.degraded:
            headers["X-Security-Degraded"] = "admission-store"

    return HTTPException(
        status_code=_status_for(error),
        detail=error.public_message,
        headers=headers or None,
    )


def _apply_admission_headers(response: Response, admission: Optional[AdmissionResult], degraded: bool = False):
    if admission is not None:
        response.headers["X-RateLimit-Limit"] = str(admission.limit)
        response.headers["X-RateLimit-Remaining"] = str(admission.remaining)
        response.headers["X-RateLimit-Reset"] = str(int(admission.reset_at.timestamp()))
        if admission.degraded:
            response.headers["X-Security-Degraded"] = "admission-store"
    if degraded and "X-Security-Degraded" not in response.headers:
        response.headers["X-Security-Degraded"] = "captcha-unavailable"


# =============================================================================
# ENDPOINTS
# =============================================================================

@router.post("/verify", response_model=SubmitVerificationResponse, status_code=201)
async def submit_verification(
    body: SubmitVerificationInput,
    request: Request,
    response: Response,
    x_captcha_token: Optional[str] = Header(None),
    services: AppServices = Depends(get_services),
    settings: Settings = Depends(get_settings),
):
    """Submit a verification that a provider does or does not accept a plan."""
    identity = network_identity(request, settings.identity_salt, settings.trust_forwarded_for)

    try:
        result = await services.verification.submit_claim(
            identity,
            body.provider_key.strip(),
            body.plan_key.strip(),
            body.accepts_insurance,
            contact_identity=contact_identity(body.submitter_email, settings.identity_salt),
            notes=body.notes,
            captcha_token=body.captcha_token or x_captcha_token,
            honeypot_value=getattr(body, settings.honeypot_field, None),
            remote_ip=client_address(request, settings.trust_forwarded_for),
        )
    except VerificationError as e:
        raise _http_error(e)

    _apply_admission_headers(response, result.admission, result.security_degraded)

    return SubmitVerificationResponse(
        verification=VerificationSummary(id=result.claim_id, status=result.status.value),
        acceptance=AcceptanceResponse.from_aggregate(result.aggregate) if result.aggregate else None,
    )


@router.post("/verify/{claim_id}/vote", response_model=VoteResponse)
async def vote_on_verification(
    claim_id: str,
    body: VoteInput,
    request: Request,
    response: Response,
    services: AppServices = Depends(get_services),
    settings: Settings = Depends(get_settings),
):
    """Up- or down-vote a verification. Voting again the other way changes the vote."""
    identity = network_identity(request, settings.identity_salt, settings.trust_forwarded_for)

    try:
        result = await services.verification.vote(claim_id, identity, body.vote.value.upper())
    except VerificationError as e:
        raise _http_error(e)

    _apply_admission_headers(response, result.admission)
    outcome = result.outcome

    return VoteResponse(
        verification_id=claim_id,
        vote=body.vote,
        vote_changed=outcome.changed,
        upvotes=outcome.upvotes,
        downvotes=outcome.downvotes,
        agreement_ratio=outcome.agreement_ratio,
        acceptance=AcceptanceResponse.from_aggregate(result.aggregate) if result.aggregate else None,
        message="Vote changed successfully" if outcome.changed else "Vote recorded successfully",
    )


@router.get("/verify/stats", response_model=VerificationStatsResponse)
async def get_verification_stats(
    request: Request,
    response: Response,
    services: AppServices = Depends(get_services),
    settings: Settings = Depends(get_settings),
):
    """Totals, last-24h count and live verifications by status and provenance."""
    identity = network_identity(request, settings.identity_salt, settings.trust_forwarded_for)

    try:
        stats, admission = await services.verification.stats(identity)
    except VerificationError as e:
        raise _http_error(e)

    _apply_admission_headers(response, admission)
    return VerificationStatsResponse(data=VerificationStats(**stats))


@router.get("/verify/recent", response_model=RecentVerificationsResponse)
async def get_recent_verifications(
    request: Request,
    response: Response,
    limit: int = Query(20, ge=1, le=100),
    provider_key: Optional[str] = Query(None, min_length=1, max_length=64),
    plan_key: Optional[str] = Query(None, min_length=1, max_length=64),
    services: AppServices = Depends(get_services),
    settings: Settings = Depends(get_settings),
):
    """Most recent live verifications, optionally for one provider and/or plan."""
    identity = network_identity(request, settings.identity_salt, settings.trust_forwarded_for)

    try:
        claims, admission = await services.verification.recent(
            identity, limit=limit, provider_key=provider_key, plan_key=plan_key,
        )
    except VerificationError as e:
        raise _http_error(e)

    _apply_admission_headers(response, admission)
    return RecentVerificationsResponse(
        count=len(claims),
        verifications=[ClaimView.from_claim(c) for c in claims],
    )


@router.get("/verify/{provider_key}/{plan_key}", response_model=PairAcceptanceResponse)
async def get_acceptance(
    provider_key: str,
    plan_key: str,
    request: Request,
    response: Response,
    services: AppServices = Depends(get_services),
    settings: Settings = Depends(get_settings),
):
    """Current acceptance status (neutral PENDING/0 for pairs nobody has verified) and its live verifications."""
    identity = network_identity(request, settings.identity_salt, settings.trust_forwarded_for)

    try:
        result = await services.verification.lookup(identity, provider_key, plan_key)
    except VerificationError as e:
        raise _http_error(e)

    _apply_admission_headers(response, result.admission)
    acceptance = AcceptanceResponse.from_aggregate(result.aggregate)
    return PairAcceptanceResponse(
        **acceptance.model_dump(),
        verifications=[ClaimView.from_claim(c) for c in result.claims],
        summary=PairSummary(**result.summary),
    )

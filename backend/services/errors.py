"""
Verification pipeline errors

Everything a caller can see is a VerificationError subclass. RateLimited,
AbuseRejected, DuplicateSubmission and DuplicateVote are expected,
retry-later conditions. PersistenceUnavailable is the only fatal one.
"""
from datetime import datetime
from typing import Optional


class VerificationError(Exception):
    """Base class for trust pipeline errors"""

    # Generic message safe to show to the submitting client
    public_message = "Request could not be processed"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.public_message)
        self.message = message or self.public_message


class RateLimited(VerificationError):
    """Admission denied for this identity/tier until reset_at"""

    public_message = "Too many requests. Please try again later."

    def __init__(
        self,
        reset_at: datetime,
        tier: str,
        limit: int = 0,
        degraded: bool = False,
        message: Optional[str] = None,
    ):
        super().__init__(message)
        self.reset_at = reset_at
        self.tier = tier
        self.limit = limit
        self.degraded = degraded


class AbuseRejected(VerificationError):
    """Bot score too low, token missing or verification unavailable in closed mode"""

    public_message = "Request blocked due to suspicious activity"


class DuplicateSubmission(VerificationError):
    """Same identity already verified this provider-plan pair within the window"""

    public_message = (
        "You have already submitted a verification for this provider-plan pair recently."
    )

    def __init__(self, axis: str = "network", message: Optional[str] = None):
        super().__init__(message)
        self.axis = axis


class DuplicateVote(VerificationError):
    """Voter already cast this exact vote on this claim"""

    public_message = "You have already voted on this verification"


class ClaimNotFound(VerificationError):
    """Claim does not exist or has expired"""

    public_message = "Verification not found"


class StoreDegraded(VerificationError):
    """
    Shared admission store unreachable.

    Never raised to callers: the admission counter logs it and answers from
    the local fallback with degraded=True.
    """

    public_message = "Admission store unavailable"


class PersistenceUnavailable(VerificationError):
    """Claim could not be written. Fatal for the request."""

    public_message = "Verification storage temporarily unavailable"

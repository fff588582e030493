"""
Policy Configuration - Single source of truth for admission tiers and trust thresholds

Everything here is static and immutable: tables are loaded once at import and
referenced by key. Tunables that differ per deployment live in settings.py.
"""
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType

SECONDS_PER_HOUR = 60 * 60
SECONDS_PER_DAY = 24 * SECONDS_PER_HOUR


# =============================================================================
# ADMISSION TIERS
# =============================================================================

@dataclass(frozen=True)
class RateLimitTier:
    """A named sliding-window limit: at most max_requests per window_seconds."""
    name: str
    window_seconds: int
    max_requests: int


def _tiers(*tiers: RateLimitTier) -> MappingProxyType:
    return MappingProxyType({tier.name: tier for tier in tiers})


RATE_LIMIT_TIERS = _tiers(
    RateLimitTier('submit', SECONDS_PER_HOUR, 10),
    RateLimitTier('vote', SECONDS_PER_HOUR, 10),
    RateLimitTier('search', SECONDS_PER_HOUR, 100),
    RateLimitTier('default', SECONDS_PER_HOUR, 200),
    # Used while the bot-score provider is unreachable
    RateLimitTier('captcha_fallback', SECONDS_PER_HOUR, 3),
    # Used while the shared admission store is unreachable
    RateLimitTier('degraded', SECONDS_PER_HOUR, 5),
)

DEFAULT_TIER = 'default'
DEGRADED_TIER = 'degraded'


def get_tier(name: str) -> RateLimitTier:
    """Resolve a tier by name, unknown names fall back to 'default'."""
    return RATE_LIMIT_TIERS.get(name) or RATE_LIMIT_TIERS[DEFAULT_TIER]


# =============================================================================
# SPECIALTY FRESHNESS
# =============================================================================
# Provider network churn differs by specialty. Mental health networks turn
# over fastest, hospital-based positions are the most stable.

class SpecialtyCategory(str, Enum):
    MENTAL_HEALTH = "MENTAL_HEALTH"
    PRIMARY_CARE = "PRIMARY_CARE"
    SPECIALIST = "SPECIALIST"
    HOSPITAL_BASED = "HOSPITAL_BASED"
    OTHER = "OTHER"


SPECIALTY_FRESHNESS_DAYS = MappingProxyType({
    SpecialtyCategory.MENTAL_HEALTH: 30,
    SpecialtyCategory.PRIMARY_CARE: 60,
    SpecialtyCategory.SPECIALIST: 60,
    SpecialtyCategory.HOSPITAL_BASED: 90,
    SpecialtyCategory.OTHER: 60,
})

# Keyword fragments matched against lowercased specialty / taxonomy text,
# checked in this order
SPECIALTY_KEYWORDS = (
    (SpecialtyCategory.MENTAL_HEALTH, (
        'psychiatr', 'psycholog', 'mental health', 'behavioral health',
        'counselor', 'therapist',
    )),
    (SpecialtyCategory.PRIMARY_CARE, (
        'family medicine', 'family practice', 'internal medicine',
        'general practice', 'primary care',
    )),
    (SpecialtyCategory.HOSPITAL_BASED, (
        'hospital', 'radiology', 'anesthesiology', 'pathology',
        'emergency medicine',
    )),
)


# =============================================================================
# CONSENSUS + LIFECYCLE
# =============================================================================

# Three independent verifications reach expert-level agreement; more do not help
MIN_VERIFICATIONS_FOR_CONSENSUS = 3
MIN_CONFIDENCE_FOR_STATUS_CHANGE = 60
MIN_MAJORITY_RATIO = 2.0

VERIFICATION_TTL_DAYS = 180
SYBIL_WINDOW_DAYS = 30

CAPTCHA_MIN_SCORE = 0.5

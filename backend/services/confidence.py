"""
Confidence Scorer - deterministic 0-100 trust score for an acceptance claim set

score = min(100, source + recency + verification + agreement)

    source        0-25   how authoritative the best provenance is
    recency       0-30   age relative to the specialty's freshness threshold
    verification  0-25   saturates at 3 independent verifications
    agreement     0-20   upvote share across live claims

The level is bucketed from the score but capped at MEDIUM below 3
verifications: one authoritative source alone never reads as "highly
verified".

Pure: no clock, no I/O. Callers pass age_in_days computed from their `now`.
"""
import math
from dataclasses import dataclass, field
from typing import Optional, Union

from config.policy import (
    MIN_VERIFICATIONS_FOR_CONSENSUS,
    SPECIALTY_FRESHNESS_DAYS,
    SPECIALTY_KEYWORDS,
    SpecialtyCategory,
)
from models.domain.verification import ConfidenceLevel, Provenance

SOURCE_SCORES = {
    Provenance.GOVERNMENT: 25,
    Provenance.CARRIER: 20,
    Provenance.COMMUNITY: 15,
    Provenance.UNKNOWN: 10,
}
UNSET_SOURCE_SCORE = 10

# (upper bound of age / threshold, points)
RECENCY_BANDS = (
    (0.5, 30),
    (1.0, 20),
    (1.5, 10),
    (1.8, 5),
)

# (minimum agreement ratio, points), checked after the exact-100% case
AGREEMENT_BANDS = (
    (0.8, 15),
    (0.6, 10),
    (0.4, 5),
)

# (minimum score, level), highest first
LEVEL_BANDS = (
    (91, ConfidenceLevel.VERY_HIGH),
    (76, ConfidenceLevel.HIGH),
    (51, ConfidenceLevel.MEDIUM),
    (26, ConfidenceLevel.LOW),
    (0, ConfidenceLevel.VERY_LOW),
)

LEVEL_DESCRIPTIONS = {
    ConfidenceLevel.VERY_HIGH: "Verified through multiple authoritative sources with expert-level accuracy.",
    ConfidenceLevel.HIGH: "Verified through authoritative sources or multiple community verifications.",
    ConfidenceLevel.MEDIUM: "Some verification exists, but may need confirmation.",
    ConfidenceLevel.LOW: "Limited verification data. Call provider to confirm before visiting.",
    ConfidenceLevel.VERY_LOW: "Unverified or potentially inaccurate. Always call to confirm.",
}

# Past this share of the freshness threshold we suggest re-verifying
REVERIFY_AT = 0.8

SpecialtyInput = Union[SpecialtyCategory, str, None]


@dataclass(frozen=True)
class ConfidenceFactors:
    source_score: int
    recency_score: int
    verification_score: int
    agreement_score: int

    @property
    def total(self) -> int:
        return (self.source_score + self.recency_score
                + self.verification_score + self.agreement_score)

    def as_dict(self) -> dict:
        return {
            'source_score': self.source_score,
            'recency_score': self.recency_score,
            'verification_score': self.verification_score,
            'agreement_score': self.agreement_score,
        }


@dataclass(frozen=True)
class ConfidenceResult:
    score: int
    level: ConfidenceLevel
    factors: ConfidenceFactors
    specialty: SpecialtyCategory
    freshness_threshold: int
    metadata: dict = field(default_factory=dict)

    @property
    def description(self) -> str:
        return describe_level(self.level, self.metadata.get('verification_count', 0))


# =============================================================================
# SPECIALTY
# =============================================================================

def classify_specialty(specialty: SpecialtyInput, taxonomy: Optional[str] = None) -> SpecialtyCategory:
    """
    Map a specialty category, specialty text or taxonomy description to a
    freshness category. None and blank text map to OTHER.
    """
    if isinstance(specialty, SpecialtyCategory):
        return specialty

    text = f"{specialty or ''} {taxonomy or ''}".strip().lower()
    if not text:
        return SpecialtyCategory.OTHER

    try:
        return SpecialtyCategory(text.upper())
    except ValueError:
        pass

    for category, keywords in SPECIALTY_KEYWORDS:
        if any(keyword in text for keyword in keywords):
            return category
    return SpecialtyCategory.SPECIALIST


def freshness_threshold(specialty: SpecialtyInput) -> int:
    """Days after which a verification for this specialty counts as stale"""
    return SPECIALTY_FRESHNESS_DAYS[classify_specialty(specialty)]


# =============================================================================
# FACTORS
# =============================================================================

def source_score(provenance: Optional[Provenance]) -> int:
    if provenance is None:
        return UNSET_SOURCE_SCORE
    return SOURCE_SCORES.get(Provenance(provenance), UNSET_SOURCE_SCORE)


def recency_score(age_in_days: Optional[float], threshold_days: int) -> int:
    """Band age / threshold; None means never verified"""
    if age_in_days is None:
        return 0
    ratio = age_in_days / threshold_days
    for upper, points in RECENCY_BANDS:
        if ratio <= upper:
            return points
    return 0


def verification_score(verification_count: int) -> int:
    if verification_count <= 0:
        return 0
    if verification_count == 1:
        return 10
    if verification_count == 2:
        return 15
    return 25


def agreement_ratio(upvotes: int, downvotes: int) -> float:
    """upvotes / (upvotes + downvotes), 0.0 with no votes"""
    total = upvotes + downvotes
    if total <= 0:
        return 0.0
    return upvotes / total


def agreement_score(upvotes: int, downvotes: int) -> int:
    if upvotes + downvotes <= 0:
        return 0
    ratio = agreement_ratio(upvotes, downvotes)
    if ratio >= 1.0:
        return 20
    for minimum, points in AGREEMENT_BANDS:
        if ratio >= minimum:
            return points
    return 0


def confidence_level(score: int, verification_count: int) -> ConfidenceLevel:
    """Bucket the score, capped at MEDIUM below the verification minimum"""
    level = next(lvl for minimum, lvl in LEVEL_BANDS if score >= minimum)
    if verification_count < MIN_VERIFICATIONS_FOR_CONSENSUS and level in (
        ConfidenceLevel.HIGH, ConfidenceLevel.VERY_HIGH
    ):
        return ConfidenceLevel.MEDIUM
    return level


def describe_level(level: ConfidenceLevel, verification_count: int) -> str:
    description = LEVEL_DESCRIPTIONS[ConfidenceLevel(level)]
    if verification_count < MIN_VERIFICATIONS_FOR_CONSENSUS:
        description += " Three independent verifications are needed for high confidence."
    return description


def freshness(age_in_days: Optional[float], threshold: int) -> dict:
    """Staleness flags for data last verified `age_in_days` ago (None = never)"""
    return {
        'is_stale': age_in_days is not None and age_in_days > threshold,
        'days_until_stale': threshold if age_in_days is None else max(0, int(threshold - age_in_days)),
        'recommend_reverification': age_in_days is None or age_in_days > threshold * REVERIFY_AT,
    }


# =============================================================================
# SCORE
# =============================================================================

def score(
    provenance: Optional[Provenance],
    age_in_days: Optional[float],
    specialty: SpecialtyInput,
    verification_count: int,
    upvotes: int,
    downvotes: int,
) -> ConfidenceResult:
    """
    Compute the confidence score and level for one (provider, plan) pair.

    Args:
        provenance: Most authoritative provenance among the live claims
        age_in_days: Days since the newest live claim (None = never verified)
        specialty: SpecialtyCategory, free-text specialty, or None
        verification_count: Number of live claims
        upvotes / downvotes: Vote totals across live claims

    Raises:
        ValueError: on negative counts or age
    """
    if verification_count < 0 or upvotes < 0 or downvotes < 0:
        raise ValueError("verification_count and vote counts must be non-negative")
    if age_in_days is not None and (age_in_days < 0 or math.isnan(age_in_days)):
        raise ValueError(f"age_in_days must be non-negative, got {age_in_days}")

    category = classify_specialty(specialty)
    threshold = SPECIALTY_FRESHNESS_DAYS[category]

    factors = ConfidenceFactors(
        source_score=source_score(provenance),
        recency_score=recency_score(age_in_days, threshold),
        verification_score=verification_score(verification_count),
        agreement_score=agreement_score(upvotes, downvotes),
    )
    total = min(100, factors.total)
    level = confidence_level(total, verification_count)

    stale = freshness(age_in_days, threshold)

    return ConfidenceResult(
        score=total,
        level=level,
        factors=factors,
        specialty=category,
        freshness_threshold=threshold,
        metadata={
            'verification_count': verification_count,
            'age_in_days': age_in_days,
            **stale,
            'agreement_ratio': agreement_ratio(upvotes, downvotes),
            'explanation': explain(total, factors, verification_count, age_in_days),
        },
    )


def explain(
    total: int,
    factors: ConfidenceFactors,
    verification_count: int,
    age_in_days: Optional[float],
) -> str:
    """Human-readable sentence describing where the score came from"""
    parts = []

    if factors.source_score >= 25:
        parts.append("verified through official government data")
    elif factors.source_score >= 20:
        parts.append("verified through insurance carrier data")
    elif factors.source_score >= 15:
        parts.append("verified through community submissions")
    else:
        parts.append("limited authoritative data")

    if age_in_days is None:
        parts.append("never verified")
    elif factors.recency_score == 30:
        parts.append("very recent verification")
    elif factors.recency_score == 20:
        parts.append(f"recent verification ({int(age_in_days)} days ago)")
    elif factors.recency_score == 10:
        parts.append(f"aging data ({int(age_in_days)} days old)")
    elif factors.recency_score == 5:
        parts.append(f"stale data ({int(age_in_days)} days old)")
    else:
        parts.append(f"very stale data ({int(age_in_days)} days old), needs re-verification")

    if verification_count == 0:
        parts.append("no verifications yet")
    elif verification_count < MIN_VERIFICATIONS_FOR_CONSENSUS:
        missing = MIN_VERIFICATIONS_FOR_CONSENSUS - verification_count
        parts.append(f"{verification_count} verification(s), {missing} more needed")
    else:
        parts.append(f"{verification_count} verifications")

    if factors.agreement_score == 20:
        parts.append("complete community agreement")
    elif factors.agreement_score >= 10:
        parts.append("community mostly agrees")
    elif factors.agreement_score == 5:
        parts.append("weak community agreement")

    return f"This {total}% confidence score is based on: {', '.join(parts)}."

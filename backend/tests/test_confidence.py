"""
Tests for the confidence scorer.

Covers:
1. Factor tables (source, recency bands, verification, agreement)
2. Level buckets and the MEDIUM cap below three verifications
3. The three reference scenarios end to end with the status decision
"""
import itertools

import pytest

from config.policy import SpecialtyCategory
from models.domain.verification import ClaimStatus, ConfidenceLevel, Provenance
from services import confidence
from services.consensus import decide_status


# =============================================================================
# Factor Tests
# =============================================================================

def test_source_scores():
    assert confidence.source_score(Provenance.GOVERNMENT) == 25
    assert confidence.source_score(Provenance.CARRIER) == 20
    assert confidence.source_score(Provenance.COMMUNITY) == 15
    assert confidence.source_score(Provenance.UNKNOWN) == 10
    assert confidence.source_score(None) == 10


@pytest.mark.parametrize("age, expected", [
    (0, 30),
    (30, 30),     # exactly 50% of 60
    (31, 20),
    (60, 20),     # exactly the threshold
    (90, 10),     # 150%
    (108, 5),     # 180%
    (109, 0),
    (None, 0),    # never verified
])
def test_recency_bands_for_sixty_day_threshold(age, expected):
    assert confidence.recency_score(age, 60) == expected


def test_mental_health_decays_faster_than_hospital_based():
    assert confidence.recency_score(40, confidence.freshness_threshold(SpecialtyCategory.MENTAL_HEALTH)) == 10
    assert confidence.recency_score(40, confidence.freshness_threshold(SpecialtyCategory.HOSPITAL_BASED)) == 30


@pytest.mark.parametrize("count, expected", [(0, 0), (1, 10), (2, 15), (3, 25), (12, 25)])
def test_verification_score(count, expected):
    assert confidence.verification_score(count) == expected


@pytest.mark.parametrize("up, down, expected", [
    (0, 0, 0),
    (5, 0, 20),
    (4, 1, 15),
    (3, 2, 10),
    (1, 1, 5),
    (1, 4, 0),
])
def test_agreement_score(up, down, expected):
    assert confidence.agreement_score(up, down) == expected


def test_agreement_ratio_without_votes_is_zero():
    assert confidence.agreement_ratio(0, 0) == 0.0
    assert confidence.agreement_ratio(3, 1) == 0.75


@pytest.mark.parametrize("text, expected", [
    ("Psychiatry & Neurology", SpecialtyCategory.MENTAL_HEALTH),
    ("Licensed Professional Counselor", SpecialtyCategory.MENTAL_HEALTH),
    ("Family Medicine", SpecialtyCategory.PRIMARY_CARE),
    ("Internal Medicine", SpecialtyCategory.PRIMARY_CARE),
    ("Diagnostic Radiology", SpecialtyCategory.HOSPITAL_BASED),
    ("Cardiology", SpecialtyCategory.SPECIALIST),
    ("hospital_based", SpecialtyCategory.HOSPITAL_BASED),
    (None, SpecialtyCategory.OTHER),
    ("   ", SpecialtyCategory.OTHER),
])
def test_classify_specialty(text, expected):
    assert confidence.classify_specialty(text) == expected


# =============================================================================
# Score / Level Tests
# =============================================================================

def test_score_is_bounded():
    for provenance, age, count, up, down in itertools.product(
        list(Provenance) + [None],
        [None, 0, 29, 61, 500],
        [0, 1, 3, 50],
        [0, 1, 40],
        [0, 3],
    ):
        result = confidence.score(provenance, age, None, count, up, down)
        assert 0 <= result.score <= 100


def test_level_capped_at_medium_below_three_verifications():
    # 25 + 30 + 15 + 20 = 90 would be HIGH
    result = confidence.score(Provenance.GOVERNMENT, 0, None, 2, 10, 0)
    assert result.score == 90
    assert result.level == ConfidenceLevel.MEDIUM


def test_level_not_capped_at_three_verifications():
    assert confidence.confidence_level(90, 3) == ConfidenceLevel.HIGH
    assert confidence.confidence_level(91, 3) == ConfidenceLevel.VERY_HIGH


@pytest.mark.parametrize("score, expected", [
    (0, ConfidenceLevel.VERY_LOW),
    (25, ConfidenceLevel.VERY_LOW),
    (26, ConfidenceLevel.LOW),
    (50, ConfidenceLevel.LOW),
    (51, ConfidenceLevel.MEDIUM),
    (75, ConfidenceLevel.MEDIUM),
    (76, ConfidenceLevel.HIGH),
])
def test_level_buckets(score, expected):
    assert confidence.confidence_level(score, 5) == expected


def test_negative_inputs_rejected():
    with pytest.raises(ValueError):
        confidence.score(Provenance.COMMUNITY, -1, None, 1, 0, 0)
    with pytest.raises(ValueError):
        confidence.score(Provenance.COMMUNITY, 1, None, -1, 0, 0)
    with pytest.raises(ValueError):
        confidence.score(Provenance.COMMUNITY, 1, None, 1, 0, -2)


def test_metadata_flags_reverification():
    fresh = confidence.score(Provenance.COMMUNITY, 10, None, 1, 0, 0)
    aging = confidence.score(Provenance.COMMUNITY, 50, None, 1, 0, 0)
    stale = confidence.score(Provenance.COMMUNITY, 70, None, 1, 0, 0)

    assert fresh.metadata['recommend_reverification'] is False
    assert aging.metadata['recommend_reverification'] is True
    assert aging.metadata['is_stale'] is False
    assert stale.metadata['is_stale'] is True
    assert stale.metadata['days_until_stale'] == 0
    assert "needs re-verification" not in fresh.metadata['explanation']


# =============================================================================
# Reference Scenarios
# =============================================================================

def test_scenario_a_government_fresh_unanimous():
    result = confidence.score(Provenance.GOVERNMENT, 5, SpecialtyCategory.PRIMARY_CARE, 3, 5, 0)

    assert result.factors.as_dict() == {
        'source_score': 25,
        'recency_score': 30,
        'verification_score': 25,
        'agreement_score': 20,
    }
    assert result.score == 100
    assert result.level == ConfidenceLevel.VERY_HIGH
    assert decide_status(None, 3, 0, 3, result.score) == ClaimStatus.CONFIRMED


def test_scenario_b_government_without_verifications():
    result = confidence.score(Provenance.GOVERNMENT, 10, None, 0, 0, 0)

    assert result.score == 55
    assert result.level == ConfidenceLevel.MEDIUM
    assert decide_status(None, 0, 0, 0, result.score) == ClaimStatus.PENDING


def test_scenario_c_stale_community_split_vote():
    result = confidence.score(Provenance.COMMUNITY, 200, None, 2, 1, 1)

    assert result.factors.source_score == 15
    assert result.factors.recency_score == 0
    assert result.factors.verification_score == 15
    assert result.factors.agreement_score == 5
    assert result.score == 35
    assert result.level == ConfidenceLevel.LOW
    assert decide_status(None, 1, 1, 2, result.score) == ClaimStatus.PENDING

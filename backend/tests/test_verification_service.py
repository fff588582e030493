"""
Tests for the submission pipeline.

Covers:
1. Happy path: claim stored, aggregate recomputed, first claim PENDING
2. Honeypot returns a synthetic success without storing anything
3. Abuse gate: low score, missing token, unavailable (open / closed)
4. Sybil duplicate, including concurrent submissions from one identity
5. Persistence failure
6. Vote via the service
7. Pair lookup listing, recent claims and public stats
"""
import asyncio
from datetime import timedelta

import pytest

from models.domain.verification import ClaimStatus
from services.errors import (
    AbuseRejected,
    DuplicateSubmission,
    PersistenceUnavailable,
    RateLimited,
)
from tests.fakes import FakeAbuseGate, build_services


class TestSubmitClaim:

    @pytest.mark.asyncio
    async def test_first_submission_is_pending(self, services, store, t0):
        result = await services.verification.submit_claim(
            "ident-a", "P", "Q", True, captcha_token="tok", now=t0,
        )

        assert result.status == ClaimStatus.PENDING
        assert result.claim_id in store.claims
        assert result.aggregate.verification_count == 1
        assert result.admission.remaining == 9
        assert result.security_degraded is False

    @pytest.mark.asyncio
    async def test_three_agreeing_submissions_confirm(self, services, t0):
        for i in range(3):
            result = await services.verification.submit_claim(
                f"ident-{i}", "P", "Q", True, captcha_token="tok", now=t0 + timedelta(minutes=i),
            )
        assert result.status == ClaimStatus.CONFIRMED

    @pytest.mark.asyncio
    async def test_honeypot_returns_synthetic_success(self, services, store, t0):
        result = await services.verification.submit_claim(
            "ident-a", "P", "Q", True,
            captcha_token="tok", honeypot_value="http://spam.example", now=t0,
        )

        assert result.claim_id == "submitted"
        assert result.synthetic
        assert result.status == ClaimStatus.PENDING
        assert store.claims == {}

    @pytest.mark.asyncio
    async def test_duplicate_submission_rejected(self, services, t0):
        await services.verification.submit_claim("ident-a", "P", "Q", True, captcha_token="tok", now=t0)

        with pytest.raises(DuplicateSubmission):
            await services.verification.submit_claim(
                "ident-a", "P", "Q", False, captcha_token="tok", now=t0 + timedelta(days=10),
            )

    @pytest.mark.asyncio
    async def test_concurrent_submissions_store_one_claim(self, services, store, t0):
        store.add_claim("ident-z", "P", "Q", submitted_at=t0 - timedelta(days=1))
        claims = services.verification.claims
        read_latest = claims.get_latest_from
        read_any = claims.has_any_for_pair

        async def latest_then_yield(*args, **kwargs):
            found = await read_latest(*args, **kwargs)
            await asyncio.sleep(0)
            return found

        async def any_then_yield(*args, **kwargs):
            found = await read_any(*args, **kwargs)
            await asyncio.sleep(0)
            return found

        claims.get_latest_from = latest_then_yield
        claims.has_any_for_pair = any_then_yield

        results = await asyncio.gather(*[
            services.verification.submit_claim("ident-a", "P", "Q", True, captcha_token="tok", now=t0)
            for _ in range(5)
        ], return_exceptions=True)

        stored = [c for c in store.claims.values() if c.identity == "ident-a"]
        assert len(stored) == 1
        assert sum(isinstance(r, DuplicateSubmission) for r in results) == 4
        assert [r.claim_id for r in results if not isinstance(r, Exception)] == [stored[0].id]

    @pytest.mark.asyncio
    async def test_persistence_failure(self, services, store, t0):
        services.verification.claims.fail_create = OSError("connection refused")

        with pytest.raises(PersistenceUnavailable):
            await services.verification.submit_claim("ident-a", "P", "Q", True, captcha_token="tok", now=t0)
        assert store.claims == {}

    @pytest.mark.asyncio
    async def test_submit_rate_limit(self, services, t0):
        for i in range(10):
            await services.verification.submit_claim(
                "ident-a", f"P{i}", "Q", True, captcha_token="tok", now=t0 + timedelta(seconds=i),
            )

        with pytest.raises(RateLimited) as exc_info:
            await services.verification.submit_claim(
                "ident-a", "P99", "Q", True, captcha_token="tok", now=t0 + timedelta(seconds=30),
            )
        assert exc_info.value.tier == "submit"


class TestAbuseGate:

    @pytest.mark.asyncio
    async def test_low_score_rejected(self, store, t0):
        services = build_services(store, abuse_gate=FakeAbuseGate(score=0.2))

        with pytest.raises(AbuseRejected):
            await services.verification.submit_claim("ident-a", "P", "Q", True, captcha_token="tok", now=t0)
        assert store.claims == {}

    @pytest.mark.asyncio
    async def test_missing_token_rejected_when_enforcing(self, services, t0):
        with pytest.raises(AbuseRejected):
            await services.verification.submit_claim("ident-a", "P", "Q", True, now=t0)

    @pytest.mark.asyncio
    async def test_missing_token_allowed_without_real_gate(self, store, t0):
        services = build_services(store, abuse_gate=FakeAbuseGate(score=1.0, enforcing=False))

        result = await services.verification.submit_claim("ident-a", "P", "Q", True, now=t0)
        assert result.claim_id in store.claims

    @pytest.mark.asyncio
    async def test_unavailable_gate_applies_fallback_tier(self, store, t0):
        services = build_services(store, abuse_gate=FakeAbuseGate(score=None))

        for i in range(3):
            result = await services.verification.submit_claim(
                "ident-a", f"P{i}", "Q", True, captcha_token="tok", now=t0 + timedelta(seconds=i),
            )
            assert result.security_degraded

        with pytest.raises(RateLimited) as exc_info:
            await services.verification.submit_claim(
                "ident-a", "P9", "Q", True, captcha_token="tok", now=t0 + timedelta(seconds=10),
            )
        assert exc_info.value.tier == "captcha_fallback"

    @pytest.mark.asyncio
    async def test_unavailable_gate_fails_closed(self, store, t0):
        services = build_services(store, abuse_gate=FakeAbuseGate(score=None), captcha_fail_mode="closed")

        with pytest.raises(AbuseRejected):
            await services.verification.submit_claim("ident-a", "P", "Q", True, captcha_token="tok", now=t0)


class TestVote:

    @pytest.mark.asyncio
    async def test_vote_through_service(self, services, t0):
        submitted = await services.verification.submit_claim(
            "ident-a", "P", "Q", True, captcha_token="tok", now=t0,
        )

        result = await services.verification.vote(submitted.claim_id, "voter-1", "UP", now=t0)

        assert result.outcome.upvotes == 1
        assert result.aggregate.agreement_ratio == 1.0
        assert result.admission.tier == "vote"

    @pytest.mark.asyncio
    async def test_lookup_unknown_pair(self, services, t0):
        result = await services.verification.lookup("ident-a", "NOPE", "NONE", now=t0)

        assert result.aggregate.status == ClaimStatus.PENDING
        assert result.aggregate.confidence_score == 0
        assert result.admission.tier == "search"


class TestListings:

    @pytest.mark.asyncio
    async def test_lookup_lists_live_claims_newest_first(self, services, store, t0):
        old = store.add_claim("ident-a", "P", "Q", submitted_at=t0 - timedelta(days=2))
        new = store.add_claim("ident-b", "P", "Q", accepted=False, submitted_at=t0 - timedelta(days=1))
        store.add_claim("ident-c", "P", "Q", submitted_at=t0 - timedelta(days=400))
        store.add_claim("ident-d", "P", "OTHER", submitted_at=t0)
        store.claims[old.id].upvotes = 2
        store.claims[new.id].downvotes = 1

        result = await services.verification.lookup("reader", "P", "Q", now=t0)

        assert [c.id for c in result.claims] == [new.id, old.id]
        assert result.summary == {
            'total_verifications': 2,
            'total_upvotes': 2,
            'total_downvotes': 1,
        }

    @pytest.mark.asyncio
    async def test_recent_filters_and_caps_limit(self, services, store, t0):
        for i in range(3):
            store.add_claim(f"ident-{i}", "P", f"Q{i}", submitted_at=t0 - timedelta(hours=i))
        store.add_claim("ident-x", "OTHER", "Q0", submitted_at=t0)

        claims, admission = await services.verification.recent("reader", limit=2, provider_key="P", now=t0)

        assert [c.plan_key for c in claims] == ["Q0", "Q1"]
        assert admission.tier == "search"

        everything, _ = await services.verification.recent("reader", limit=500, now=t0)
        assert len(everything) == 4

    @pytest.mark.asyncio
    async def test_stats_counts_live_claims(self, services, store, t0):
        store.add_claim("ident-a", "P", "Q", submitted_at=t0 - timedelta(hours=1))
        store.add_claim("ident-b", "P", "Q", accepted=False, submitted_at=t0 - timedelta(days=3))
        store.add_claim("ident-c", "P", "Q", submitted_at=t0 - timedelta(days=400))

        stats, admission = await services.verification.stats("reader", now=t0)

        assert stats['total'] == 3
        assert stats['live'] == 2
        assert stats['accepted'] == 1
        assert stats['rejected'] == 1
        assert stats['recent_24h'] == 1
        assert stats['by_status'][ClaimStatus.PENDING.value] == 2
        assert sum(stats['by_provenance'].values()) == 2
        assert admission.tier == "search"

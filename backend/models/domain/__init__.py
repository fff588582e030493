"""
Domain Models - Storage-agnostic data structures

Architecture:
- Domain models are pure Python objects (dataclasses)
- Storage details (PostgreSQL) are abstracted via repositories
- Business logic operates on these models, not database rows
"""

from .verification import (
    Provenance,
    ClaimStatus,
    VoteDirection,
    ConfidenceLevel,
    VerificationClaim,
    VoteRecord,
    AcceptanceAggregate,
)

__all__ = [
    'Provenance',
    'ClaimStatus',
    'VoteDirection',
    'ConfidenceLevel',
    'VerificationClaim',
    'VoteRecord',
    'AcceptanceAggregate',
]

"""
Repository Pattern - Storage abstraction layer

Repositories hide storage details (PostgreSQL via asyncpg) from the trust
pipeline. Services work with domain models, not rows.

Storage Split:
- ClaimRepository: verification_claims
- VoteRepository: verification_votes (+ tallies on the claim)
- AcceptanceRepository: acceptance_aggregates (+ per-pair advisory lock)

Every method takes an optional `conn` so several calls can share one
transaction (see connection.use_connection).
"""
from .claim_repository import ClaimRepository
from .vote_repository import VoteRepository
from .acceptance_repository import AcceptanceRepository

__all__ = [
    'ClaimRepository',
    'VoteRepository',
    'AcceptanceRepository',
]

"""
Utility functions
"""
from .datetime_utils import utc_now, ensure_utc, days_between
from .id_generator import generate_claim_id, validate_id

__all__ = [
    'utc_now',
    'ensure_utc',
    'days_between',
    'generate_claim_id',
    'validate_id',
]

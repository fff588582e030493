"""
Short prefixed IDs for verification claims: vc_ + 8 base36 chars.

36^8 (~2.8e12) ids per prefix, so collisions are left to the primary key.
"""
import re
import secrets
from typing import Optional

ALPHABET = "0123456789abcdefghijklmnopqrstuvwxyz"
ID_LENGTH = 8

PREFIXES = {
    'claim': 'vc',
}
PREFIX_TO_TYPE = {v: k for k, v in PREFIXES.items()}

ID_PATTERN = re.compile(r'^(vc)_[0-9a-z]{8}$')


def generate_id(entity_type: str) -> str:
    """
    Raises:
        ValueError: entity_type has no registered prefix
    """
    prefix = PREFIXES.get(entity_type)
    if prefix is None:
        raise ValueError(f"Invalid entity type: {entity_type}. Must be one of: {list(PREFIXES)}")
    suffix = ''.join(secrets.choice(ALPHABET) for _ in range(ID_LENGTH))
    return f"{prefix}_{suffix}"


def validate_id(id_str) -> bool:
    return isinstance(id_str, str) and bool(ID_PATTERN.match(id_str))


def get_id_type(id_str) -> Optional[str]:
    """'claim' for a valid claim id, None otherwise"""
    if not validate_id(id_str):
        return None
    return PREFIX_TO_TYPE.get(id_str.split('_', 1)[0])


def generate_claim_id() -> str:
    return generate_id('claim')

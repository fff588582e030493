"""
Client identity derivation

The trust pipeline only ever sees opaque identity strings. Raw addresses and
emails are hashed here, at the edge, and never stored.
"""
import hashlib
from typing import Optional

from fastapi import Request


def derive_identity(value: str, salt: str = "", kind: str = "net") -> str:
    """Salted SHA-256 of a raw identifier, prefixed with its axis"""
    digest = hashlib.sha256(f"{salt}:{kind}:{value}".encode("utf-8")).hexdigest()
    return f"{kind}_{digest[:32]}"


def client_address(request: Request, trust_forwarded_for: bool = True) -> str:
    """
    Client IP for the request.

    Behind a proxy the first X-Forwarded-For hop is the client.
    """
    if trust_forwarded_for:
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            first = forwarded.split(",")[0].strip()
            if first:
                return first
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def network_identity(request: Request, salt: str = "", trust_forwarded_for: bool = True) -> str:
    return derive_identity(client_address(request, trust_forwarded_for), salt, kind="net")


def contact_identity(email: Optional[str], salt: str = "") -> Optional[str]:
    """Identity for an optional contact address (case/whitespace-insensitive)"""
    if not email or not email.strip():
        return None
    return derive_identity(email.strip().lower(), salt, kind="contact")

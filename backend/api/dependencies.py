"""
Shared API dependencies

The application wires its services once at startup (see main.py) and stores
them on app.state; routers pull them from there.
"""
from dataclasses import dataclass

from fastapi import HTTPException, Request

from services.abuse_gate import AbuseGate
from services.admission import AdmissionCounter
from services.retention import RetentionService
from services.verification_service import VerificationService


@dataclass
class AppServices:
    verification: VerificationService
    retention: RetentionService
    admission: AdmissionCounter
    abuse_gate: AbuseGate


def get_services(request: Request) -> AppServices:
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(status_code=503, detail="Service not initialized")
    return services

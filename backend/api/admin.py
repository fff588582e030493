"""
Admin API Endpoints
===================

Maintenance operations for the verification store. All routes require the
X-Admin-Secret header.

Endpoints:
- POST /api/admin/cleanup-expired - Delete expired claims (dry_run supported)
- POST /api/admin/recalculate-confidence - Re-score aggregates (dry_run supported)
- GET /api/admin/expiration-stats - Expired / expiring counts
- GET /api/admin/retention/stats - Retention overview for claims, aggregates, votes
- GET /api/admin/health - Admission store / bot-score gate status
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query

from api.dependencies import AppServices, get_services
from config import Settings, get_settings
from middleware.admin import require_admin

logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(require_admin)])


@router.post("/cleanup-expired")
async def cleanup_expired(
    dry_run: bool = Query(False, description="Only count expired claims"),
    batch_size: Optional[int] = Query(None, ge=1, le=10000),
    services: AppServices = Depends(get_services),
    settings: Settings = Depends(get_settings),
):
    logger.info(f"[admin] Cleanup requested (dry_run={dry_run})")
    result = await services.retention.cleanup_expired(
        dry_run=dry_run,
        batch_size=batch_size or settings.retention_batch_size,
    )
    message = (
        f"Dry run complete. {result.expired_found} expired claims would be deleted."
        if dry_run else
        f"Cleanup complete. {result.claims_deleted} claims and {result.votes_deleted} votes deleted."
    )
    return {"success": True, "data": result.to_dict(), "message": message}


@router.post("/recalculate-confidence")
async def recalculate_confidence(
    dry_run: bool = Query(False, description="Score without writing"),
    limit: Optional[int] = Query(None, ge=1),
    services: AppServices = Depends(get_services),
):
    logger.info(f"[admin] Confidence recalculation requested (dry_run={dry_run}, limit={limit})")
    result = await services.retention.recalculate_confidence(dry_run=dry_run, limit=limit)
    message = (
        f"Dry run complete. {result.updated} of {result.processed} aggregates would change."
        if dry_run else
        f"Recalculation complete. {result.updated} of {result.processed} aggregates updated."
    )
    return {"success": True, "data": result.to_dict(), "message": message}


@router.get("/expiration-stats")
async def expiration_stats(services: AppServices = Depends(get_services)):
    return {"success": True, "data": await services.retention.expiration_stats()}


@router.get("/retention/stats")
async def retention_stats(services: AppServices = Depends(get_services)):
    return {"success": True, "data": await services.retention.retention_stats()}


@router.get("/health")
async def admin_health(services: AppServices = Depends(get_services)):
    admission = services.admission
    return {
        "success": True,
        "data": {
            "admission_store": admission.store.name,
            "admission_shared": admission.is_shared,
            "admission_degraded_hits": admission.degraded_hits,
            "abuse_gate": services.abuse_gate.__class__.__name__,
            "abuse_gate_enforcing": services.abuse_gate.enforcing,
        },
    }

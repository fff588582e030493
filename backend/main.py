"""
Provider Acceptance Verification - FastAPI Backend
"""
import asyncio
import logging
import sys
from contextlib import asynccontextmanager, suppress
from pathlib import Path
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

# Add backend to path for API imports
sys.path.insert(0, str(Path(__file__).parent))

from api import admin, verification
from api.dependencies import AppServices
from config import Settings, create_postgres_pool, create_redis_client, get_settings
from repositories import AcceptanceRepository, ClaimRepository, VoteRepository
from services.abuse_gate import PassthroughAbuseGate, RecaptchaAbuseGate
from services.admission import AdmissionCounter
from services.admission_store import LocalAdmissionStore, RedisAdmissionStore
from services.consensus import ConsensusEngine
from services.keyed_lock import KeyedLock
from services.retention import RetentionService
from services.sybil_guard import SybilGuard
from services.verification_service import VerificationService
from services.vote_ledger import VoteLedger

logger = logging.getLogger(__name__)

LOCAL_STORE_CLEANUP_SECONDS = 300


def build_services(settings: Settings, pool, redis_client=None) -> AppServices:
    """Wire repositories and services for one process"""
    claims = ClaimRepository(pool)
    votes = VoteRepository(pool)
    aggregates = AcceptanceRepository(pool)

    local_store = LocalAdmissionStore()
    primary = RedisAdmissionStore(redis_client) if redis_client is not None else local_store
    admission = AdmissionCounter(
        primary,
        fallback=local_store,
        timeout_ms=settings.admission_store_timeout_ms,
    )

    if settings.recaptcha_secret_key:
        abuse_gate = RecaptchaAbuseGate(
            settings.recaptcha_secret_key,
            timeout_seconds=settings.captcha_api_timeout_seconds,
        )
    else:
        if settings.is_production:
            logger.error("RECAPTCHA_SECRET_KEY not set in production - bot scoring disabled")
        abuse_gate = PassthroughAbuseGate()

    consensus = ConsensusEngine(claims, aggregates, locks=KeyedLock())
    sybil = SybilGuard(claims, window_days=settings.sybil_window_days)
    ledger = VoteLedger(claims, votes, consensus)

    return AppServices(
        verification=VerificationService.from_settings(
            settings, claims, admission, abuse_gate, sybil, consensus, ledger
        ),
        retention=RetentionService(
            claims, votes, aggregates, consensus,
            ttl_days=settings.verification_ttl_days,
        ),
        admission=admission,
        abuse_gate=abuse_gate,
    )


async def _sweep_local_store(store: LocalAdmissionStore, interval: int = LOCAL_STORE_CLEANUP_SECONDS):
    while True:
        await asyncio.sleep(interval)
        removed = store.cleanup_expired()
        if removed:
            logger.debug(f"[admission] Swept {removed} idle local windows")


def create_app(services: Optional[AppServices] = None) -> FastAPI:
    """
    Build the application.

    With `services` given (tests), nothing is connected at startup.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if services is not None:
            app.state.services = services
            yield
            return

        settings = get_settings()
        pool = await create_postgres_pool(settings)
        redis_client = create_redis_client(settings)
        app.state.services = build_services(settings, pool, redis_client)
        logger.info(
            f"Services ready (admission store={app.state.services.admission.store.name}, "
            f"abuse gate={app.state.services.abuse_gate.__class__.__name__})"
        )
        sweeper = asyncio.create_task(_sweep_local_store(app.state.services.admission.fallback))

        try:
            yield
        finally:
            sweeper.cancel()
            with suppress(asyncio.CancelledError):
                await sweeper
            await app.state.services.abuse_gate.close()
            await app.state.services.admission.store.close()
            await pool.close()
            logger.info("Connections closed")

    app = FastAPI(
        title="Provider Acceptance Verification",
        description="Crowdsourced provider-plan acceptance with confidence scoring",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # API endpoints - all under /api/*
    app.include_router(verification.router, prefix="/api", tags=["Verification"])
    app.include_router(admin.router, prefix="/api/admin", tags=["Admin"])

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    @app.get("/api/health")
    async def api_health():
        return {"status": "ok", "service": "acceptance_verification"}

    return app


app = create_app()

if __name__ == "__main__":
    import uvicorn
    from dotenv import load_dotenv

    load_dotenv(Path(__file__).parent.parent / '.env')
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s [api] %(levelname)s: %(message)s'
    )
    uvicorn.run(app, host="0.0.0.0", port=8000)

#!/usr/bin/env python3
"""
Retention Worker
================

Deletes expired verification claims and re-scores acceptance aggregates on
a fixed interval.

Architecture:
- Claims/votes/aggregates: PostgreSQL
- Pair serialization across processes: PostgreSQL advisory locks

Usage:
    python run_retention_worker.py            # loop forever
    python run_retention_worker.py --once     # single pass, then exit
    python run_retention_worker.py --dry-run  # report only
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

# Add parent to path for imports
sys.path.insert(0, str(Path(__file__).parent))

from dotenv import load_dotenv
load_dotenv(Path(__file__).parent.parent / '.env')

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s [retention-worker] %(levelname)s: %(message)s'
)
log = logging.getLogger('retention-worker')

from config import create_postgres_pool, get_settings
from repositories import AcceptanceRepository, ClaimRepository, VoteRepository
from services.consensus import ConsensusEngine
from services.retention import RetentionService
from workers.retention_worker import RetentionWorker


async def main(once: bool = False, dry_run: bool = False):
    settings = get_settings()
    pool = await create_postgres_pool(min_size=1, max_size=4)
    log.info("Connected to PostgreSQL")

    try:
        claims = ClaimRepository(pool)
        votes = VoteRepository(pool)
        aggregates = AcceptanceRepository(pool)
        consensus = ConsensusEngine(claims, aggregates)
        retention = RetentionService(
            claims, votes, aggregates, consensus,
            ttl_days=settings.verification_ttl_days,
        )

        if dry_run:
            cleanup = await retention.cleanup_expired(dry_run=True)
            recalculation = await retention.recalculate_confidence(dry_run=True)
            print(json.dumps({
                'cleanup': cleanup.to_dict(),
                'recalculation': recalculation.to_dict(),
            }, indent=2))
            return

        worker = RetentionWorker(
            retention,
            interval_seconds=settings.retention_interval_seconds,
            batch_size=settings.retention_batch_size,
        )
        if once:
            summary = await worker.run_once()
            log.info(f"Single pass complete: {summary}")
        else:
            await worker.start()
    finally:
        await pool.close()
        log.info("Connections closed")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Verification retention worker")
    parser.add_argument('--once', action='store_true', help="Run one pass and exit")
    parser.add_argument('--dry-run', action='store_true', help="Report without writing")
    args = parser.parse_args()

    asyncio.run(main(once=args.once, dry_run=args.dry_run))

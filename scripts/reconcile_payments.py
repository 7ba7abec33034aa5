#!/usr/bin/env python3
"""
Re-query the payment processor for every unsettled payment.

Run it periodically (cron, Kubernetes CronJob) so payments whose local write
failed, or whose webhook never arrived, still reach a final state.

Usage:
    python scripts/reconcile_payments.py [--limit 100]
"""

import argparse
import asyncio

import structlog

from app.core.payment_gateway import get_payment_gateway
from app.core.redis_client import close_redis_connection, get_redis_client
from app.database import AsyncSessionLocal, engine
from app.middleware.logging import configure_logging
from app.services.payment_service import PaymentService

logger = structlog.get_logger(__name__)


async def reconcile(limit: int) -> int:
    """Run one reconciliation sweep; returns the number of lookup errors."""
    async with AsyncSessionLocal() as db:
        service = PaymentService(db, get_payment_gateway(), get_redis_client())
        report = await service.reconcile_pending_payments(limit=limit)

    await engine.dispose()
    close_redis_connection()

    print(
        f"checked={report.checked} confirmed={report.confirmed} failed={report.failed} "
        f"still_processing={report.still_processing} errors={report.errors}"
    )
    return report.errors


def main() -> int:
    """Parse arguments and run."""
    parser = argparse.ArgumentParser(description="Reconcile unsettled appointment payments")
    parser.add_argument("--limit", type=int, default=100)
    args = parser.parse_args()

    configure_logging()
    errors = asyncio.run(reconcile(args.limit))
    return 1 if errors else 0


if __name__ == "__main__":
    raise SystemExit(main())

"""
ARQ Background Worker for Async Jobs
Handles legacy charge mirroring, QuickBooks payment sync and daily payment maintenance
"""

import logging
import os

from arq import Retry
from arq.cron import cron
from sqlalchemy.exc import SQLAlchemyError

# Import all model files to ensure all models are registered
from . import models  # noqa: F401 - Main models
from . import models_payments  # noqa: F401 - Payment models
from . import models_quickbooks  # noqa: F401 - QuickBooks models
from .config import FEATURE_QUICKBOOKS
from .database import SessionLocal
from .task_queue import get_redis_settings

logger = logging.getLogger(__name__)

RETRY_DELAY_SECONDS = 30


def _session(ctx):
    """Open a session from the worker's session factory (tests inject their own)"""
    factory = ctx.get("session_factory") or SessionLocal
    return factory()


async def record_legacy_charge_task(ctx, payment_id: int, payment_intent_id: str):
    """
    Mirror a succeeded contract payment into the legacy charges table, then sync it to QuickBooks.

    Args:
        ctx: ARQ context
        payment_id: Contract payment ID
        payment_intent_id: Stripe payment intent ID

    Returns:
        dict with charge_id and QuickBooks sync outcome
    """
    from .domain.integrations.quickbooks.sync import QuickBooksSyncService
    from .domain.payments.reconciliation import record_legacy_charge
    from .models_payments import ContractPayment

    job_try = ctx.get("job_try", 1)
    logger.info(f"🚀 ARQ Worker: Recording charge for payment {payment_id} ({payment_intent_id}), try {job_try}")

    db = _session(ctx)
    try:
        payment = db.query(ContractPayment).filter(ContractPayment.id == payment_id).first()
        if not payment:
            logger.error(f"❌ Payment not found: {payment_id}")
            return {"status": "missing", "payment_id": payment_id}

        try:
            charge = record_legacy_charge(db, payment, payment_intent_id)
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"❌ Failed to record charge for {payment_intent_id}: {str(e)}")
            raise Retry(defer=job_try * RETRY_DELAY_SECONDS) from e

        synced = False
        if FEATURE_QUICKBOOKS:
            service = QuickBooksSyncService(db, transport=ctx.get("quickbooks_transport"))
            synced = await service.sync_charge(charge)

        return {"status": "recorded", "charge_id": charge.id, "quickbooks_synced": synced}
    finally:
        db.close()


async def sync_quickbooks_charges_task(ctx):
    """Retry QuickBooks sync for charges still pending or failed"""
    from .domain.integrations.quickbooks.sync import QuickBooksSyncService

    if not FEATURE_QUICKBOOKS:
        return {"attempted": 0, "synced": 0, "failed": 0}

    db = _session(ctx)
    try:
        result = await QuickBooksSyncService(db, transport=ctx.get("quickbooks_transport")).sync_unsynced_charges()
        logger.info(f"📒 QuickBooks charge sync: {result}")
        return result
    finally:
        db.close()


async def daily_payment_maintenance_task(ctx):
    """Cron task: refresh overdue flags and complete finished schedules, then retry QuickBooks sync"""
    from .domain.payments.service import PaymentService

    logger.info("🔄 Starting daily payment maintenance task")

    db = _session(ctx)
    try:
        summary = PaymentService(db).run_daily_maintenance()
    except Exception as e:
        logger.error(f"❌ Daily payment maintenance failed: {str(e)}")
        raise
    finally:
        db.close()

    summary["quickbooks"] = await sync_quickbooks_charges_task(ctx)
    return summary


async def startup(ctx):
    logger.info("🔧 ARQ worker starting")


async def shutdown(ctx):
    logger.info("🛑 ARQ worker shutting down")


class WorkerSettings:
    """ARQ Worker Settings"""

    functions = [
        record_legacy_charge_task,
        sync_quickbooks_charges_task,
        daily_payment_maintenance_task,
    ]
    redis_settings = get_redis_settings()
    on_startup = startup
    on_shutdown = shutdown

    max_jobs = int(os.getenv("ARQ_MAX_JOBS", "10"))
    job_timeout = int(os.getenv("ARQ_JOB_TIMEOUT", "300"))
    keep_result = int(os.getenv("ARQ_KEEP_RESULT", "3600"))  # Keep job results for 1 hour

    health_check_interval = 60

    # Retry settings for failed jobs
    max_tries = 3

    cron_jobs = [
        cron(daily_payment_maintenance_task, hour=0, minute=15),  # 12:15 AM UTC
    ]

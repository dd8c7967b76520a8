"""Periodic maintenance tasks (scheduled by celery beat)."""

import asyncio
import logging

from copytrade.database import AsyncSessionLocal
from copytrade.services.intake_service import expire_stale_intents as expire_stale
from copytrade.services.wallet_service import reconcile_all
from copytrade.workers.celery_app import celery_app

logger = logging.getLogger(__name__)


async def _expire_stale_intents() -> int:
    async with AsyncSessionLocal() as db:
        try:
            expired = await expire_stale(db)
            await db.commit()
        except Exception:
            await db.rollback()
            raise
    return len(expired)


async def _reconcile_wallets() -> int:
    async with AsyncSessionLocal() as db:
        try:
            repaired = await reconcile_all(db)
            await db.commit()
        except Exception:
            await db.rollback()
            raise
    if repaired:
        logger.warning("Repaired %d wallet balances from the ledger", repaired)
    return repaired


@celery_app.task(name="copytrade.workers.tasks_maintenance.expire_stale_intents")
def expire_stale_intents() -> int:
    return asyncio.run(_expire_stale_intents())


@celery_app.task(name="copytrade.workers.tasks_maintenance.reconcile_wallets")
def reconcile_wallets() -> int:
    return asyncio.run(_reconcile_wallets())

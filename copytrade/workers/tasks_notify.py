"""Celery task for transactional email delivery."""

import asyncio
import logging

import httpx
from celery import Task

from copytrade.config import get_settings
from copytrade.services.notification_service import EmailDeliveryError, TransientEmailError, deliver_email
from copytrade.workers.celery_app import celery_app

logger = logging.getLogger(__name__)
settings = get_settings()


class BaseEmailTask(Task):
    autoretry_for = (httpx.TransportError, TransientEmailError)
    retry_backoff = True
    retry_backoff_max = 60
    retry_jitter = True
    max_retries = 3


@celery_app.task(bind=True, base=BaseEmailTask, name="copytrade.workers.tasks_notify.send_email")
def send_email(self, to: str, subject: str, html: str) -> bool:
    try:
        asyncio.run(deliver_email(to, subject, html))
    except (httpx.TransportError, TransientEmailError) as exc:
        logger.warning("Email '%s' to %s failed (attempt %d): %s", subject, to, self.request.retries + 1, exc)
        raise
    except EmailDeliveryError as exc:
        # non-critical to the payment state machine
        logger.error("Email '%s' to %s not delivered: %s", subject, to, exc)
        return False
    logger.info("Email '%s' sent to %s", subject, to)
    return True


def queue_email(to: str, subject: str, html: str) -> bool:
    """Fire-and-forget dispatch; broker errors are logged, never raised to the caller."""
    if not settings.NOTIFICATIONS_ENABLED or not to:
        return False
    try:
        send_email.delay(to, subject, html)
    except Exception:
        logger.exception("Could not queue email '%s' to %s", subject, to)
        return False
    return True

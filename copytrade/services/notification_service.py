"""Transactional email templates and delivery through the Resend HTTP API."""

import logging
from decimal import Decimal
from html import escape
from typing import Optional, Tuple

import httpx

from copytrade.config import get_settings
from copytrade.services.status import OutcomeKind

logger = logging.getLogger(__name__)
settings = get_settings()

_WRAPPER = (
    '<div style="font-family: system-ui, -apple-system, Segoe UI, Roboto, sans-serif; color:#1f2937;">'
    "{body}"
    "</div>"
)


class EmailDeliveryError(Exception):
    pass


class TransientEmailError(EmailDeliveryError):
    """Rate limited or provider-side failure; worth retrying."""


def build_payment_completed_template(name: str, amount: Decimal, tx_id: str) -> str:
    return _WRAPPER.format(
        body=(
            '<h2 style="color:#111827;">Payment Completed</h2>'
            f"<p>Hi {escape(name)},</p>"
            "<p>Your payment has been successfully processed.</p>"
            "<ul>"
            f"<li><strong>Amount:</strong> ${Decimal(amount):.2f}</li>"
            f"<li><strong>Transaction ID:</strong> {escape(tx_id)}</li>"
            "</ul>"
        )
    )


def build_payment_rejected_template(name: str, amount: Decimal, reason: str) -> str:
    return _WRAPPER.format(
        body=(
            '<h2 style="color:#111827;">Payment Rejected</h2>'
            f"<p>Hi {escape(name)},</p>"
            f"<p>Your payment of ${Decimal(amount):.2f} could not be verified.</p>"
            f"<p><strong>Reason:</strong> {escape(reason)}</p>"
            "<p>You can start a new payment from the checkout page.</p>"
        )
    )


def build_otp_template(name: str, otp: str) -> str:
    return _WRAPPER.format(
        body=(
            '<h2 style="color:#111827;">Your One-Time Password</h2>'
            f"<p>Hi {escape(name)},</p>"
            f"<p>Your OTP is <strong>{escape(otp)}</strong>. It expires in 10 minutes.</p>"
            "<p>If you did not request this code, please ignore this email.</p>"
        )
    )


def payment_email(intent, user) -> Optional[Tuple[str, str]]:
    """Subject and html for a verified intent, or None when nothing should be sent."""
    name = user.name or user.email
    if intent.outcome == OutcomeKind.SUCCESS.value:
        subject = "Renewal Approved" if intent.is_renewal else "Payment Completed"
        return subject, build_payment_completed_template(name, intent.payable, intent.external_tx_id or intent.id)
    if intent.outcome == OutcomeKind.REJECTED.value and intent.rejection_reason:
        return "Payment Rejected", build_payment_rejected_template(name, intent.payable, intent.rejection_reason)
    return None


async def deliver_email(
    to: str,
    subject: str,
    html: str,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> dict:
    if not settings.RESEND_API_KEY:
        raise EmailDeliveryError("RESEND_API_KEY is missing")

    async with httpx.AsyncClient(timeout=10.0, transport=transport) as client:
        response = await client.post(
            settings.RESEND_API_URL,
            json={"from": settings.RESEND_FROM_EMAIL, "to": to, "subject": subject, "html": html},
            headers={"Authorization": f"Bearer {settings.RESEND_API_KEY}"},
        )
    if response.status_code == 429 or response.status_code >= 500:
        raise TransientEmailError(f"Resend error: {response.status_code} {response.text}")
    if response.status_code >= 400:
        raise EmailDeliveryError(f"Resend error: {response.status_code} {response.text}")
    return response.json()

import json
from decimal import Decimal
from types import SimpleNamespace

import httpx
import pytest

from copytrade.services import notification_service
from copytrade.services.notification_service import (
    EmailDeliveryError,
    TransientEmailError,
    deliver_email,
    payment_email,
)
from copytrade.workers import tasks_notify


def _intent(**overrides):
    values = dict(
        id="p1",
        outcome="success",
        is_renewal=False,
        payable=Decimal("255.00"),
        external_tx_id="UTR-1",
        rejection_reason=None,
    )
    values.update(overrides)
    return SimpleNamespace(**values)


def test_payment_email_per_outcome():
    user = SimpleNamespace(name="Asha <script>", email="asha@example.com")

    subject, html = payment_email(_intent(), user)
    assert subject == "Payment Completed"
    assert "$255.00" in html
    assert "&lt;script&gt;" in html

    subject, _ = payment_email(_intent(is_renewal=True), user)
    assert subject == "Renewal Approved"

    subject, html = payment_email(_intent(outcome="rejected", rejection_reason="Wrong amount"), user)
    assert subject == "Payment Rejected"
    assert "Wrong amount" in html

    assert payment_email(_intent(outcome="rejected", failure_kind="expired"), user) is None
    assert payment_email(_intent(outcome="in_process"), user) is None


async def test_deliver_email_posts_to_resend(monkeypatch):
    monkeypatch.setattr(notification_service.settings, "RESEND_API_KEY", "re_test")
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"id": "email-1"})

    result = await deliver_email("a@example.com", "Hi", "<p>x</p>", transport=httpx.MockTransport(handler))

    assert result == {"id": "email-1"}
    assert seen[0].headers["Authorization"] == "Bearer re_test"
    assert json.loads(seen[0].content)["to"] == "a@example.com"


async def test_deliver_email_errors(monkeypatch):
    monkeypatch.setattr(notification_service.settings, "RESEND_API_KEY", "")
    with pytest.raises(EmailDeliveryError):
        await deliver_email("a@example.com", "Hi", "<p>x</p>")

    monkeypatch.setattr(notification_service.settings, "RESEND_API_KEY", "re_test")
    transport = httpx.MockTransport(lambda request: httpx.Response(422, json={"message": "bad"}))
    with pytest.raises(EmailDeliveryError):
        await deliver_email("a@example.com", "Hi", "<p>x</p>", transport=transport)


def test_otp_template_escapes_values():
    html = notification_service.build_otp_template("Ravi", "<123456>")
    assert "Your One-Time Password" in html
    assert "&lt;123456&gt;" in html


async def test_provider_outage_is_transient(monkeypatch):
    monkeypatch.setattr(notification_service.settings, "RESEND_API_KEY", "re_test")
    for code in (429, 503):
        transport = httpx.MockTransport(lambda request, code=code: httpx.Response(code, json={"message": "later"}))
        with pytest.raises(TransientEmailError):
            await deliver_email("a@example.com", "Hi", "<p>x</p>", transport=transport)


def test_send_email_reraises_transient_errors_for_retry(monkeypatch):
    async def unreachable(to, subject, html):
        raise httpx.ConnectError("resend unreachable")

    monkeypatch.setattr(tasks_notify, "deliver_email", unreachable)

    with pytest.raises(httpx.ConnectError):
        tasks_notify.send_email("a@example.com", "Hi", "<p>x</p>")
    assert issubclass(httpx.ConnectError, tasks_notify.BaseEmailTask.autoretry_for)


def test_send_email_gives_up_on_permanent_errors(monkeypatch):
    async def rejected(to, subject, html):
        raise EmailDeliveryError("Resend error: 422")

    monkeypatch.setattr(tasks_notify, "deliver_email", rejected)

    assert tasks_notify.send_email("a@example.com", "Hi", "<p>x</p>") is False

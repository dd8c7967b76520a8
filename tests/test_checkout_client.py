import pytest

from copytrade.checkout.client import PaymentsApiError, PaymentsClient, poll_admin_notifications
from copytrade.checkout.session import (
    CheckoutSession,
    confirm_review,
    enter_broker_details,
    enter_capital,
    new_draft,
    select_method,
)
from copytrade.checkout.timer import CheckoutTimer
from copytrade.core.security import create_access_token


def _draft(strategy):
    draft = select_method(new_draft(strategy.id, "Pro"), "UPI")
    draft = enter_capital(draft, "1500", 83)
    draft = enter_broker_details(draft, "MT5", "5001", "pw", "Broker-Live")
    return confirm_review(draft, True)


def _api(http, user):
    return PaymentsClient(http, token=create_access_token(str(user.id)))


async def test_checkout_session_submits_against_api(client, user, admin, strategy):
    session = CheckoutSession(_draft(strategy), _api(client, user))

    payment = await session.submit_final_payment("UTR-42", b"receipt-bytes", "image/png")

    assert payment["status"] == "in_process"
    assert payment["txId"] == "UTR-42"
    assert payment["payable"] == "255.00"
    assert payment["mtAccountId"] == "5001"

    batches = []

    async def on_batch(payments):
        batches.append(payments)

    cursor = await poll_admin_notifications(_api(client, admin), on_batch, max_polls=1)

    assert [p["id"] for p in batches[0]] == [payment["id"]]
    assert cursor is not None


async def test_expired_session_marks_intent_on_server(client, user, strategy):
    now = [0.0]
    api = _api(client, user)
    session = CheckoutSession(
        _draft(strategy), api, timer=CheckoutTimer(duration_seconds=900, clock=lambda: now[0])
    )
    created = await session.open_final_payment()
    assert created["payable"] == "255.00"

    now[0] = 900.0
    assert await session.tick() is True

    payment = await api.get_payment(created["transactionId"])
    assert payment["status"] == "failed"
    assert payment["failureKind"] == "expired"


async def test_poll_reraises_unauthorized(client):
    api = PaymentsClient(client, token="not-a-token")

    async def on_batch(payments):
        raise AssertionError("no batches expected")

    with pytest.raises(PaymentsApiError) as exc:
        await poll_admin_notifications(api, on_batch, max_polls=3)
    assert exc.value.status_code == 401


async def test_poll_survives_transient_errors():
    class FlakyClient:
        def __init__(self):
            self.calls = 0

        async def admin_notifications(self, since=None):
            self.calls += 1
            if self.calls == 1:
                raise PaymentsApiError(503, "busy")
            return {"payments": [{"id": "p1"}], "serverTime": "2026-01-01T00:00:00"}

    batches = []
    sleeps = []

    async def on_batch(payments):
        batches.append(payments)

    async def fake_sleep(seconds):
        sleeps.append(seconds)

    cursor = await poll_admin_notifications(FlakyClient(), on_batch, interval=10.0, max_polls=2, sleep=fake_sleep)

    assert batches == [[{"id": "p1"}]]
    assert cursor == "2026-01-01T00:00:00"
    assert sleeps == [10.0]

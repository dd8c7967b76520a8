import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from copytrade.services import storage_service


def _create_body(strategy, **overrides):
    body = {
        "strategyId": strategy.id,
        "plan": "Pro",
        "capital": "1500",
        "payable": "255.00",
        "method": "USDT_TRC20",
        "usdToInrRate": "83",
        "mt4mt5": {"type": "MT4", "id": "778899", "password": "pw", "server": "Broker-Demo"},
    }
    body.update(overrides)
    return body


async def _create(client, headers, strategy, **overrides):
    response = await client.post("/v1/payments", json=_create_body(strategy, **overrides), headers=headers)
    assert response.status_code == 200, response.text
    return response.json()


async def _submit(client, headers, payment_id, tx_id="0xabc"):
    upload = await client.post(
        "/v1/upload-url",
        json={"fileType": "image/png", "transactionId": payment_id},
        headers=headers,
    )
    assert upload.status_code == 200, upload.text
    signed = upload.json()
    assert signed["useLocalFallback"] is False

    stored = await client.put(signed["signedUrl"], content=b"\x89PNG-receipt", headers={"Content-Type": "image/png"})
    assert stored.status_code == 200, stored.text
    assert stored.json()["size"] == 12

    attached = await client.put(
        f"/v1/payments/{payment_id}",
        json={"txId": tx_id, "proofUrl": signed["proofUrl"]},
        headers=headers,
    )
    assert attached.status_code == 200, attached.text
    return attached.json()


async def test_requests_without_token_are_unauthorized(client):
    response = await client.get("/v1/payments")
    assert response.status_code == 401

    response = await client.get("/v1/payments", headers={"Authorization": "Bearer not-a-token"})
    assert response.status_code == 401


async def test_capital_outside_plan_band_is_rejected(client, user, strategy, auth_headers):
    response = await client.post(
        "/v1/payments", json=_create_body(strategy, capital="999", payable=None), headers=auth_headers(user)
    )

    assert response.status_code == 400
    assert response.json()["detail"] == "Please enter the amount between $1000-$2999"


async def test_missing_fields_are_bad_requests(client, user, strategy, auth_headers):
    body = _create_body(strategy)
    del body["method"]
    response = await client.post("/v1/payments", json=body, headers=auth_headers(user))

    assert response.status_code == 400
    assert response.json()["detail"].startswith("method")


async def test_checkout_to_approval_flow(client, user, other_user, admin, strategy, auth_headers):
    headers = auth_headers(user)
    created = await _create(client, headers, strategy)
    payment_id = created["transactionId"]
    assert created["status"] == "pending"
    assert created["payable"] == "255.00"
    assert created["secondaryAmount"] == "21165.00"
    assert created["cryptoNetwork"] == "TRC20"
    assert created["expiresInSeconds"] == 900

    payment = await _submit(client, headers, payment_id)
    assert payment["status"] == "in_process"
    assert payment["txId"] == "0xabc"
    assert payment["proofUrl"].startswith(f"/v1/files/proofs/{user.id}/{payment_id}/")

    other = await client.get(f"/v1/payments/{payment_id}", headers=auth_headers(other_user))
    assert other.status_code == 404

    forbidden = await client.patch(f"/v1/payments/{payment_id}", json={"status": "completed"}, headers=headers)
    assert forbidden.status_code == 401

    approved = await client.post(f"/v1/admin/payments/{payment_id}/approve", headers=auth_headers(admin))
    assert approved.status_code == 200, approved.text
    assert approved.json()["status"] == "completed"
    assert approved.json()["validity"] == "Active"

    again = await client.post(f"/v1/admin/payments/{payment_id}/approve", headers=auth_headers(admin))
    assert again.status_code == 409
    assert again.json()["detail"] == "Payment already processed"

    wallet = await client.get("/v1/wallet/ledger", headers=headers)
    assert wallet.json()["balance"] == "255.00"
    assert len(wallet.json()["entries"]) == 1
    assert wallet.json()["entries"][0]["referenceId"] == payment_id

    proof = await client.get(payment["proofUrl"], headers=auth_headers(admin))
    assert proof.status_code == 200
    assert proof.content == b"\x89PNG-receipt"

    history = await client.get(f"/v1/payments/{payment_id}/history", headers=headers)
    assert [h["action"] for h in history.json()] == [
        "payment.created",
        "payment.proof_attached",
        "payment.approved",
    ]

    feed = await client.get("/v1/admin/payments/notifications", headers=auth_headers(admin))
    assert payment_id in [p["id"] for p in feed.json()["payments"]]
    assert "serverTime" in feed.json()


async def test_admin_status_form_rejects_with_reason(client, user, admin, strategy, auth_headers):
    created = await _create(client, auth_headers(user), strategy)
    payment_id = created["transactionId"]

    response = await client.patch(
        "/v1/payments",
        json={"paymentId": payment_id, "status": "failed", "message": "No matching transfer"},
        headers=auth_headers(admin),
    )
    assert response.status_code == 200, response.text
    assert response.json()["status"] == "failed"
    assert response.json()["rejectionReason"] == "No matching transfer"

    bad = await client.patch(
        f"/v1/payments/{payment_id}", json={"status": "shipped"}, headers=auth_headers(admin)
    )
    assert bad.status_code == 400

    listed = await client.get("/v1/payments?status=failed", headers=auth_headers(user))
    assert [p["id"] for p in listed.json()["payments"]] == [payment_id]


async def test_client_termination_via_api(client, user, strategy, auth_headers):
    headers = auth_headers(user)
    payment_id = (await _create(client, headers, strategy))["transactionId"]

    expired = await client.patch(f"/v1/payments/{payment_id}", json={"status": "EXPIRED"}, headers=headers)
    assert expired.status_code == 200
    assert expired.json()["failureKind"] == "expired"

    cancelled = await client.patch(f"/v1/payments/{payment_id}", json={"status": "CANCELLED"}, headers=headers)
    assert cancelled.status_code == 200
    assert cancelled.json()["failureKind"] == "expired"

    upload = await client.post(
        "/v1/upload-url",
        json={"fileType": "image/png", "transactionId": payment_id},
        headers=headers,
    )
    assert upload.status_code == 409


async def test_upload_url_falls_back_when_storage_disabled(client, user, strategy, auth_headers, monkeypatch):
    headers = auth_headers(user)
    payment_id = (await _create(client, headers, strategy))["transactionId"]
    monkeypatch.setattr(storage_service.settings, "STORAGE_ENABLED", False)

    response = await client.post(
        "/v1/upload-url",
        json={"fileType": "image/jpeg", "transactionId": payment_id},
        headers=headers,
    )

    assert response.status_code == 200
    assert response.json()["useLocalFallback"] is True
    assert response.json()["signedUrl"] is None


async def test_tampered_upload_signature_is_refused(client, user, strategy, auth_headers):
    headers = auth_headers(user)
    payment_id = (await _create(client, headers, strategy))["transactionId"]
    upload = await client.post(
        "/v1/upload-url",
        json={"fileType": "image/png", "transactionId": payment_id},
        headers=headers,
    )
    tampered = upload.json()["signedUrl"].replace("sig=", "sig=0")

    response = await client.put(tampered, content=b"data", headers={"Content-Type": "image/png"})
    assert response.status_code == 401


async def test_running_strategy_status_and_modification(client, user, admin, strategy, auth_headers):
    headers = auth_headers(user)
    admin_headers = auth_headers(admin)
    payment_id = (await _create(client, headers, strategy))["transactionId"]
    await _submit(client, headers, payment_id)
    await client.post(f"/v1/admin/payments/{payment_id}/approve", headers=admin_headers)

    running = (await client.get("/v1/running-strategies", headers=headers)).json()
    assert len(running) == 1
    running_id = running[0]["id"]
    assert running[0]["executionStatus"] == "in-process"
    assert running[0]["strategyName"] == "Trend Rider"
    assert "mtAccountPassword" not in running[0]

    response = await client.patch(
        f"/v1/admin/running-strategies/{running_id}/status",
        json={"status": "wrong-account-id"},
        headers=admin_headers,
    )
    assert response.status_code == 200

    response = await client.post(
        f"/v1/running-strategies/{running_id}/modification",
        json={"mtAccountId": "112233"},
        headers=headers,
    )
    assert response.status_code == 200

    pending = await client.get(
        "/v1/admin/running-strategies/modifications?status=in-process", headers=admin_headers
    )
    assert len(pending.json()) == 1

    await client.patch(
        f"/v1/admin/running-strategies/{running_id}/status",
        json={"status": "running"},
        headers=admin_headers,
    )
    admin_view = (await client.get("/v1/admin/running-strategies", headers=admin_headers)).json()
    assert admin_view[0]["executionStatus"] == "running"
    assert admin_view[0]["mtAccountId"] == "112233"
    assert admin_view[0]["pendingModifications"] == 0

    bad = await client.patch(
        f"/v1/admin/running-strategies/{running_id}/status",
        json={"status": "paused"},
        headers=admin_headers,
    )
    assert bad.status_code == 400


async def test_writes_commit_before_response_starts(db_engine, user, strategy, auth_headers, monkeypatch):
    from copytrade.main import app

    events = []
    original_commit = AsyncSession.commit

    async def commit(self):
        events.append("commit")
        await original_commit(self)

    monkeypatch.setattr(AsyncSession, "commit", commit)

    async def recording_app(scope, receive, send):
        async def recording_send(message):
            if message["type"] == "http.response.start":
                events.append("response")
            await send(message)

        await app(scope, receive, recording_send)

    headers = auth_headers(user)
    transport = httpx.ASGITransport(app=recording_app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http:
        created = await http.post("/v1/payments", json=_create_body(strategy), headers=headers)
        assert created.status_code == 200, created.text
        assert events.index("commit") < events.index("response")

        events.clear()
        payment_id = created.json()["transactionId"]
        expired = await http.patch(f"/v1/payments/{payment_id}", json={"status": "EXPIRED"}, headers=headers)
        assert expired.status_code == 200, expired.text
        assert events.index("commit") < events.index("response")


async def test_admin_status_by_id_fails_users_payment(client, user, admin, strategy, auth_headers):
    headers = auth_headers(user)
    payment_id = (await _create(client, headers, strategy))["transactionId"]
    await _submit(client, headers, payment_id)

    response = await client.patch(
        f"/v1/payments/{payment_id}",
        json={"status": "failed", "message": "No such UTR"},
        headers=auth_headers(admin),
    )

    assert response.status_code == 200, response.text
    assert response.json()["status"] == "failed"
    assert response.json()["rejectionReason"] == "No such UTR"

    own = await client.get(f"/v1/payments/{payment_id}", headers=headers)
    assert own.json()["status"] == "failed"


async def test_wallet_topups_skip_plan_band(client, user, admin, strategy, auth_headers):
    headers = auth_headers(user)
    admin_headers = auth_headers(admin)
    topup = {"method": "UPI", "usdToInrRate": "83"}

    deposit = await client.post("/v1/wallet/topups", json={**topup, "amount": "40"}, headers=headers)
    assert deposit.status_code == 200, deposit.text
    assert deposit.json()["payable"] == "40.00"
    assert deposit.json()["secondaryAmount"] == "3320.00"
    deposit_id = deposit.json()["transactionId"]

    await _submit(client, headers, deposit_id, tx_id="UTR-TOPUP")
    approved = await client.post(f"/v1/admin/payments/{deposit_id}/approve", headers=admin_headers)
    assert approved.status_code == 200, approved.text
    assert approved.json()["plan"] == "Wallet"

    wallet = await client.get("/v1/wallet", headers=headers)
    assert wallet.json()["balance"] == "40.00"
    running = await client.get("/v1/running-strategies", headers=headers)
    assert running.json() == []

    charge = await client.post(
        "/v1/wallet/topups", json={**topup, "amount": "15", "kind": "charge"}, headers=headers
    )
    assert charge.status_code == 200, charge.text
    charge_id = charge.json()["transactionId"]
    approved = await client.post(f"/v1/admin/payments/{charge_id}/approve", headers=admin_headers)
    assert approved.status_code == 200, approved.text

    ledger = (await client.get("/v1/wallet/ledger", headers=headers)).json()
    assert ledger["balance"] == "25.00"
    debits = [e for e in ledger["entries"] if e["direction"] == "debit"]
    assert [(e["referenceId"], e["delta"]) for e in debits] == [(charge_id, "15.00")]

    zero = await client.post("/v1/wallet/topups", json={**topup, "amount": "0"}, headers=headers)
    assert zero.status_code == 400


async def test_notifications_page_through_full_batches(client, user, admin, strategy, auth_headers):
    headers = auth_headers(user)
    admin_headers = auth_headers(admin)
    created = [(await _create(client, headers, strategy))["transactionId"] for _ in range(3)]

    first = await client.get("/v1/admin/payments/notifications", params={"limit": 2}, headers=admin_headers)
    assert first.status_code == 200, first.text
    assert [p["id"] for p in first.json()["payments"]] == created[:2]
    assert first.json()["hasMore"] is True

    second = await client.get(
        "/v1/admin/payments/notifications",
        params={"limit": 2, "since": first.json()["serverTime"]},
        headers=admin_headers,
    )
    assert [p["id"] for p in second.json()["payments"]] == created[2:]
    assert second.json()["hasMore"] is False

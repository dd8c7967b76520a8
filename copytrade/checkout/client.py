"""HTTP client for the payments API used by the checkout wizard and admin console."""

import asyncio
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx

logger = logging.getLogger(__name__)


class PaymentsApiError(Exception):
    def __init__(self, status_code: int, detail: str):
        self.status_code = status_code
        self.detail = detail
        super().__init__(f"{status_code}: {detail}")


class PaymentsClient:
    def __init__(self, http: httpx.AsyncClient, token: Optional[str] = None):
        self.http = http
        self.token = token

    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.token}"} if self.token else {}

    async def _request(self, method: str, url: str, **kwargs) -> Any:
        headers = {**self._headers(), **kwargs.pop("headers", {})}
        response = await self.http.request(method, url, headers=headers, **kwargs)
        if response.status_code >= 400:
            try:
                detail = response.json().get("detail", response.text)
            except ValueError:
                detail = response.text
            raise PaymentsApiError(response.status_code, str(detail))
        if not response.content:
            return {}
        return response.json()

    async def get_rate(self, base: str = "USD", symbol: str = "INR") -> Dict[str, Any]:
        return await self._request("GET", "/v1/rate", params={"base": base, "symbol": symbol})

    async def create_payment(self, body: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request("POST", "/v1/payments", json=body)

    async def request_upload_url(self, payment_id: str, file_type: str) -> Dict[str, Any]:
        return await self._request(
            "POST", "/v1/upload-url", json={"fileType": file_type, "transactionId": payment_id}
        )

    async def upload_proof(self, signed_url: str, content: bytes, content_type: str) -> Dict[str, Any]:
        # signed URL authorizes the upload by itself
        response = await self.http.put(signed_url, content=content, headers={"Content-Type": content_type})
        if response.status_code >= 400:
            raise PaymentsApiError(response.status_code, response.text)
        return response.json()

    async def attach_proof(self, payment_id: str, tx_id: str, proof_url: Optional[str]) -> Dict[str, Any]:
        return await self._request(
            "PUT", f"/v1/payments/{payment_id}", json={"txId": tx_id, "proofUrl": proof_url}
        )

    async def mark_terminal(self, payment_id: str, status: str) -> Dict[str, Any]:
        return await self._request("PATCH", f"/v1/payments/{payment_id}", json={"status": status})

    async def get_payment(self, payment_id: str) -> Dict[str, Any]:
        return await self._request("GET", f"/v1/payments/{payment_id}")

    async def admin_notifications(self, since: Optional[str] = None) -> Dict[str, Any]:
        params = {"since": since} if since else None
        return await self._request("GET", "/v1/admin/payments/notifications", params=params)


async def poll_admin_notifications(
    client: PaymentsClient,
    on_batch: Callable[[List[Dict[str, Any]]], Awaitable[None]],
    interval: float = 10.0,
    since: Optional[datetime] = None,
    max_polls: Optional[int] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> Optional[str]:
    """Admin polling loop. Transient errors are logged and the next poll retries."""
    cursor = since.isoformat() if since else None
    polls = 0
    while max_polls is None or polls < max_polls:
        polls += 1
        try:
            data = await client.admin_notifications(cursor)
        except (PaymentsApiError, httpx.HTTPError) as exc:
            if isinstance(exc, PaymentsApiError) and exc.status_code == 401:
                raise
            logger.warning("Admin notification poll failed: %s", exc)
        else:
            cursor = data.get("serverTime", cursor)
            payments = data.get("payments") or []
            if payments:
                await on_batch(payments)
        if max_polls is not None and polls >= max_polls:
            break
        await sleep(interval)
    return cursor

"""Checkout wizard state machine.

The draft is an immutable value; every stage transition is a pure function
that returns a new draft or raises ``StageValidationError`` and leaves the
caller's draft untouched. ``CheckoutSession`` adds the time box and the
backend calls on top.
"""

import inspect
import logging
from dataclasses import dataclass, replace
from decimal import Decimal
from enum import IntEnum
from typing import Any, Callable, Dict, Optional

import httpx

from copytrade.checkout.client import PaymentsApiError, PaymentsClient
from copytrade.checkout.timer import CheckoutTimer
from copytrade.core.exceptions import PaymentValidationError
from copytrade.services.pricing_service import PaymentMethod, Plan, convert, parse_plan, quote_payable
from copytrade.services.status import ClientTerminalStatus

logger = logging.getLogger(__name__)

GENERIC_SUBMIT_ERROR = "We could not submit your payment. Please try again."


class Stage(IntEnum):
    METHOD_SELECTION = 1
    CAPITAL_INPUT = 2
    BROKER_DETAILS = 3
    REVIEW = 4
    FINAL_PAYMENT = 5


EDITABLE_FROM_REVIEW = (Stage.CAPITAL_INPUT, Stage.BROKER_DETAILS)


class StageValidationError(ValueError):
    pass


class CheckoutSubmitError(Exception):
    pass


class SessionClosedError(CheckoutSubmitError):
    pass


@dataclass(frozen=True)
class BrokerAccount:
    platform: str
    account_id: str
    account_password: str
    server: str


@dataclass(frozen=True)
class CheckoutDraft:
    strategy_id: int
    plan: Plan
    is_renewal: bool = False
    renewal_of_id: Optional[str] = None
    stage: Stage = Stage.METHOD_SELECTION
    method: Optional[PaymentMethod] = None
    capital: Optional[Decimal] = None
    payable: Optional[Decimal] = None
    fx_rate: Optional[Decimal] = None
    secondary_amount: Optional[Decimal] = None
    broker: Optional[BrokerAccount] = None
    confirmed: bool = False
    intent_id: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "strategyId": self.strategy_id,
            "plan": self.plan.value,
            "capital": str(self.capital),
            "payable": str(self.payable),
            "method": self.method.value if self.method else None,
            "isRenewal": self.is_renewal,
        }
        if self.renewal_of_id:
            body["renewalOfId"] = self.renewal_of_id
        if self.fx_rate is not None:
            body["usdToInrRate"] = str(self.fx_rate)
        if self.broker:
            body["mt4mt5"] = {
                "type": self.broker.platform,
                "id": self.broker.account_id,
                "password": self.broker.account_password,
                "server": self.broker.server,
            }
        return body


def new_draft(
    strategy_id: int,
    plan,
    is_renewal: bool = False,
    renewal_of_id: Optional[str] = None,
) -> CheckoutDraft:
    try:
        parsed = parse_plan(plan)
    except PaymentValidationError as exc:
        raise StageValidationError(exc.detail) from None
    return CheckoutDraft(strategy_id=strategy_id, plan=parsed, is_renewal=is_renewal, renewal_of_id=renewal_of_id)


def _expect(draft: CheckoutDraft, stage: Stage) -> None:
    if draft.stage is not stage:
        raise StageValidationError(f"Expected stage {stage.name}, checkout is at {draft.stage.name}")


def select_method(draft: CheckoutDraft, method) -> CheckoutDraft:
    _expect(draft, Stage.METHOD_SELECTION)
    try:
        chosen = PaymentMethod(method)
    except ValueError:
        raise StageValidationError("Please choose a payment method") from None
    return replace(draft, method=chosen, stage=Stage.CAPITAL_INPUT)


def enter_capital(draft: CheckoutDraft, capital, rate) -> CheckoutDraft:
    _expect(draft, Stage.CAPITAL_INPUT)
    try:
        quote = quote_payable(draft.plan, capital)
        secondary = convert(quote.payable, rate)
    except PaymentValidationError as exc:
        raise StageValidationError(exc.detail) from None
    return replace(
        draft,
        capital=quote.capital,
        payable=quote.payable,
        fx_rate=Decimal(str(rate)),
        secondary_amount=secondary,
        stage=Stage.BROKER_DETAILS,
    )


def enter_broker_details(
    draft: CheckoutDraft,
    platform: str,
    account_id: str,
    account_password: str,
    server: str,
) -> CheckoutDraft:
    _expect(draft, Stage.BROKER_DETAILS)
    values = {
        "platform": (platform or "").strip().upper(),
        "account_id": (account_id or "").strip(),
        "account_password": (account_password or "").strip(),
        "server": (server or "").strip(),
    }
    missing = [name for name, value in values.items() if not value]
    if missing:
        raise StageValidationError(f"Required: {', '.join(missing)}")
    if values["platform"] not in ("MT4", "MT5"):
        raise StageValidationError("Platform must be MT4 or MT5")
    return replace(draft, broker=BrokerAccount(**values), stage=Stage.REVIEW)


def confirm_review(draft: CheckoutDraft, accepted: bool) -> CheckoutDraft:
    _expect(draft, Stage.REVIEW)
    if not accepted:
        raise StageValidationError("Please confirm the details before continuing")
    return replace(draft, confirmed=True, stage=Stage.FINAL_PAYMENT)


def edit(draft: CheckoutDraft, stage: Stage) -> CheckoutDraft:
    _expect(draft, Stage.REVIEW)
    if stage not in EDITABLE_FROM_REVIEW:
        raise StageValidationError("Only capital or broker details can be edited from review")
    return replace(draft, stage=stage, confirmed=False)


def back(draft: CheckoutDraft) -> CheckoutDraft:
    if draft.stage is Stage.METHOD_SELECTION:
        raise StageValidationError("Already at the first step")
    if draft.intent_id is not None:
        raise StageValidationError("Payment already started; cancel to leave checkout")
    return replace(draft, stage=Stage(draft.stage - 1), confirmed=False)


class CheckoutSession:
    """A time-boxed checkout bound to one user's API client."""

    def __init__(
        self,
        draft: CheckoutDraft,
        client: PaymentsClient,
        timer: Optional[CheckoutTimer] = None,
        on_exit: Optional[Callable[[ClientTerminalStatus], Any]] = None,
    ):
        self.draft = draft
        self.client = client
        self.timer = timer or CheckoutTimer()
        self.on_exit = on_exit
        self.ended_status: Optional[ClientTerminalStatus] = None
        self.submitted = False

    @property
    def closed(self) -> bool:
        return self.ended_status is not None or self.submitted

    def apply(self, transition: Callable[..., CheckoutDraft], *args, **kwargs) -> CheckoutDraft:
        if self.closed:
            raise SessionClosedError("Checkout session has ended")
        self.draft = transition(self.draft, *args, **kwargs)
        return self.draft

    async def tick(self, now: Optional[float] = None) -> bool:
        """Returns True once the session is over (expired, cancelled or submitted)."""
        if self.closed:
            return True
        if self.timer.expired(now):
            await self._end(ClientTerminalStatus.EXPIRED)
            return True
        return False

    async def cancel(self) -> None:
        if not self.closed:
            await self._end(ClientTerminalStatus.CANCELLED)

    async def _end(self, status: ClientTerminalStatus) -> None:
        if self.ended_status is not None:
            return
        # set before awaiting so a concurrent tick/cancel cannot end twice
        self.ended_status = status
        if self.draft.intent_id:
            try:
                await self.client.mark_terminal(self.draft.intent_id, status.value)
            except (PaymentsApiError, httpx.HTTPError) as exc:
                logger.warning("Could not mark payment %s %s: %s", self.draft.intent_id, status.value, exc)
        logger.info("Checkout ended: %s", status.value)
        if self.on_exit is not None:
            result = self.on_exit(status)
            if inspect.isawaitable(result):
                await result

    async def open_final_payment(self) -> Dict[str, Any]:
        """Create the intent so the final stage can show the destination and amount."""
        if self.closed:
            raise SessionClosedError("Checkout session has ended")
        _expect(self.draft, Stage.FINAL_PAYMENT)
        if not self.draft.confirmed:
            raise StageValidationError("Review must be confirmed first")
        try:
            created = await self.client.create_payment(self.draft.to_payload())
        except (PaymentsApiError, httpx.HTTPError) as exc:
            logger.warning("Payment creation failed: %s", exc)
            raise CheckoutSubmitError(GENERIC_SUBMIT_ERROR) from exc
        self.draft = replace(self.draft, intent_id=created["transactionId"])
        return created

    async def submit_final_payment(self, tx_id: str, proof: bytes, content_type: str) -> Dict[str, Any]:
        """Upload the receipt and attach it with the transaction reference.

        Any failure after the intent exists marks it FAILED and drops it from
        the draft so a retry starts a fresh intent.
        """
        if self.closed:
            raise SessionClosedError("Checkout session has ended")
        if not (tx_id or "").strip():
            raise StageValidationError("Transaction ID is required")
        if not proof:
            raise StageValidationError("Proof of payment is required")

        if self.draft.intent_id is None:
            await self.open_final_payment()
        payment_id = self.draft.intent_id

        try:
            upload = await self.client.request_upload_url(payment_id, content_type)
            proof_url = None
            if upload.get("useLocalFallback"):
                logger.warning("Proof storage unavailable; submitting payment %s without upload", payment_id)
            else:
                await self.client.upload_proof(upload["signedUrl"], proof, content_type)
                proof_url = upload["proofUrl"]
            payment = await self.client.attach_proof(payment_id, tx_id.strip(), proof_url)
        except (PaymentsApiError, httpx.HTTPError, KeyError) as exc:
            logger.warning("Submitting payment %s failed: %s", payment_id, exc)
            await self._mark_failed(payment_id)
            raise CheckoutSubmitError(GENERIC_SUBMIT_ERROR) from exc

        self.submitted = True
        return payment

    async def _mark_failed(self, payment_id: str) -> None:
        try:
            await self.client.mark_terminal(payment_id, ClientTerminalStatus.FAILED.value)
        except (PaymentsApiError, httpx.HTTPError) as exc:
            logger.warning("Could not mark payment %s FAILED: %s", payment_id, exc)
        self.draft = replace(self.draft, intent_id=None)

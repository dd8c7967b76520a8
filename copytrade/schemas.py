"""Pydantic schemas for the v1 payments API (camelCase on the wire)."""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from copytrade.services.pricing_service import PaymentMethod, Plan


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class MessageResponse(ApiModel):
    message: str


class SuccessResponse(ApiModel):
    success: bool = True
    message: Optional[str] = None


def _required_text(value: Optional[str]) -> str:
    stripped = (value or "").strip()
    if not stripped:
        raise ValueError("must not be empty")
    return stripped


# Broker account


class BrokerAccountIn(ApiModel):
    """``mt4mt5`` body: {type, id, password, server}."""

    type: Literal["MT4", "MT5"]
    id: str = Field(..., max_length=100)
    password: str = Field(..., max_length=255)
    server: str = Field(..., max_length=255)

    @field_validator("id", "password", "server")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        return _required_text(value)


class BrokerAccountUpdate(ApiModel):
    platform: Optional[Literal["MT4", "MT5"]] = None
    mt_account_id: Optional[str] = Field(default=None, max_length=100)
    mt_account_password: Optional[str] = Field(default=None, max_length=255)
    mt_account_server: Optional[str] = Field(default=None, max_length=255)

    @model_validator(mode="after")
    def _at_least_one(self):
        if not any(
            v is not None and str(v).strip()
            for v in (self.platform, self.mt_account_id, self.mt_account_password, self.mt_account_server)
        ):
            raise ValueError("At least one broker field is required")
        return self


# Payments


class PaymentCreateRequest(ApiModel):
    strategy_id: int
    plan: Plan
    capital: Decimal = Field(..., gt=0)
    payable: Optional[Decimal] = None
    method: PaymentMethod
    mt4mt5: Optional[BrokerAccountIn] = None
    usd_to_inr_rate: Optional[Decimal] = None
    is_renewal: bool = False
    renewal_of_id: Optional[str] = None
    kind: Literal["deposit", "charge"] = "deposit"


class WalletTopupRequest(ApiModel):
    """Standalone wallet transaction; no plan band applies."""

    amount: Decimal = Field(..., gt=0, max_digits=14, decimal_places=2)
    method: PaymentMethod
    kind: Literal["deposit", "charge"] = "deposit"
    strategy_id: Optional[int] = None
    inr_amount: Optional[Decimal] = Field(default=None, gt=0)
    usd_to_inr_rate: Optional[Decimal] = None


class PaymentCreateResponse(ApiModel):
    transaction_id: str
    status: str
    payable: Decimal
    secondary_amount: Optional[Decimal] = None
    secondary_currency: Optional[str] = None
    crypto_network: Optional[str] = None
    pay_to_address: Optional[str] = None
    wallet_app_link: Optional[str] = None
    expires_in_seconds: int


class ProofAttachRequest(ApiModel):
    tx_id: str = Field(..., max_length=255)
    proof_url: Optional[str] = Field(default=None, max_length=1000)
    # accepted for compatibility; the target state is always in_process
    status: Optional[str] = None

    @field_validator("tx_id")
    @classmethod
    def _tx_not_blank(cls, value: str) -> str:
        return _required_text(value)


class PaymentStatusUpdateRequest(ApiModel):
    status: str
    message: Optional[str] = None


class AdminPaymentUpdateRequest(ApiModel):
    payment_id: str
    status: str
    message: Optional[str] = None


class RejectRequest(ApiModel):
    reason: str = Field(default="", max_length=2000)


class AdminMessageRequest(ApiModel):
    message: str = Field(..., max_length=2000)

    @field_validator("message")
    @classmethod
    def _message_not_blank(cls, value: str) -> str:
        return _required_text(value)


class PaymentResponse(ApiModel):
    id: str
    user_id: int
    strategy_id: Optional[int] = None
    plan: str
    capital: Decimal
    payable: Decimal
    currency: str
    method: str
    kind: str
    is_renewal: bool
    renewal_of_id: Optional[str] = None
    status: str
    failure_kind: Optional[str] = None
    platform: Optional[str] = None
    mt_account_id: Optional[str] = None
    mt_account_server: Optional[str] = None
    tx_id: Optional[str] = None
    proof_url: Optional[str] = None
    proof_degraded: bool = False
    fx_rate: Optional[Decimal] = None
    secondary_amount: Optional[Decimal] = None
    secondary_currency: Optional[str] = None
    crypto_network: Optional[str] = None
    pay_to_address: Optional[str] = None
    rejection_reason: Optional[str] = None
    admin_message: Optional[str] = None
    admin_message_status: Optional[str] = None
    verified_by: Optional[int] = None
    approved_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    validity: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None


class PaymentListResponse(ApiModel):
    payments: List[PaymentResponse]


class PaymentHistoryEntry(ApiModel):
    id: int
    action: str
    actor_user_id: Optional[int] = None
    metadata: Optional[Dict[str, Any]] = None
    created_at: datetime


class AdminNotificationsResponse(ApiModel):
    payments: List[PaymentResponse]
    server_time: datetime
    has_more: bool = False


# Uploads


class UploadUrlRequest(ApiModel):
    file_type: str = Field(..., max_length=100)
    transaction_id: str = Field(..., max_length=36)


class UploadUrlResponse(ApiModel):
    signed_url: Optional[str] = None
    key: Optional[str] = None
    proof_url: Optional[str] = None
    expires_at: Optional[int] = None
    use_local_fallback: bool = False
    message: Optional[str] = None


class UploadResponse(ApiModel):
    key: str
    sha256: str
    size: int


# Rate


class RateResponse(BaseModel):
    base: str
    symbol: str
    rate: float


# Wallet


class WalletResponse(ApiModel):
    balance: Decimal


class WalletLedgerEntryResponse(ApiModel):
    id: int
    direction: str
    reason: str
    reference_type: str
    reference_id: str
    delta: Decimal
    before_balance: Decimal
    after_balance: Decimal
    created_at: datetime


class WalletLedgerListResponse(ApiModel):
    balance: Decimal
    entries: List[WalletLedgerEntryResponse]


# Strategies


class StrategyResponse(ApiModel):
    id: int
    name: str
    description: Optional[str] = None
    is_enabled: bool


class StrategyCreateRequest(ApiModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None


class StrategyUpdateRequest(ApiModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    is_enabled: Optional[bool] = None


# Running strategies


class RunningStrategyResponse(ApiModel):
    id: int
    user_id: int
    strategy_id: int
    strategy_name: Optional[str] = None
    payment_id: Optional[str] = None
    plan: Optional[str] = None
    capital: Optional[Decimal] = None
    execution_status: str
    platform: Optional[str] = None
    mt_account_id: Optional[str] = None
    mt_account_server: Optional[str] = None
    activated_at: Optional[datetime] = None
    last_approved_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    validity: str


class AdminRunningStrategyResponse(RunningStrategyResponse):
    user_email: Optional[str] = None
    mt_account_password: Optional[str] = None
    pending_modifications: int = 0


class ExecutionStatusUpdateRequest(ApiModel):
    status: str


class ModificationResponse(ApiModel):
    id: int
    running_strategy_id: int
    user_id: int
    platform: Optional[str] = None
    mt_account_id: Optional[str] = None
    mt_account_server: Optional[str] = None
    status: str
    resolved_by: Optional[int] = None
    resolved_at: Optional[datetime] = None
    created_at: datetime

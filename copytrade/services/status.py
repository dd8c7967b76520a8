"""Shared payment status vocabulary.

Storage keeps the outcome of an intent (``pending``, ``in_process``, ``success``,
``rejected``) separately from the ``is_renewal`` flag. The wire status strings
used by clients (``completed``, ``renewal_approved``...) are derived from the
pair and parsed back through one allow-list.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional, Union

from copytrade.config import get_settings
from copytrade.core.exceptions import PaymentValidationError

RENEWAL_PERIOD = timedelta(days=get_settings().RENEWAL_PERIOD_DAYS)


class OutcomeKind(str, Enum):
    PENDING = "pending"
    IN_PROCESS = "in_process"
    SUCCESS = "success"
    REJECTED = "rejected"


OPEN_OUTCOMES = (OutcomeKind.PENDING.value, OutcomeKind.IN_PROCESS.value)


class FailureKind(str, Enum):
    REJECTED = "rejected"
    EXPIRED = "expired"
    CANCELLED = "cancelled"
    SUBMISSION_FAILED = "submission_failed"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    IN_PROCESS = "in_process"
    COMPLETED = "completed"
    FAILED = "failed"
    RENEWAL_PENDING = "renewal_pending"
    RENEWAL_APPROVED = "renewal_approved"
    REJECTED = "rejected"


TERMINAL_STATUSES = frozenset(
    {PaymentStatus.COMPLETED, PaymentStatus.FAILED, PaymentStatus.RENEWAL_APPROVED, PaymentStatus.REJECTED}
)

_STATUS_ALIASES = {
    "approved": PaymentStatus.COMPLETED,
    "in-process": PaymentStatus.IN_PROCESS,
}


class ClientTerminalStatus(str, Enum):
    EXPIRED = "EXPIRED"
    CANCELLED = "CANCELLED"
    FAILED = "FAILED"


CLIENT_FAILURE_KINDS = {
    ClientTerminalStatus.EXPIRED: FailureKind.EXPIRED,
    ClientTerminalStatus.CANCELLED: FailureKind.CANCELLED,
    ClientTerminalStatus.FAILED: FailureKind.SUBMISSION_FAILED,
}


class ExecutionStatus(str, Enum):
    IN_PROCESS = "in-process"
    RUNNING = "running"
    WRONG_ACCOUNT_PASSWORD = "wrong-account-password"
    WRONG_ACCOUNT_ID = "wrong-account-id"
    WRONG_ACCOUNT_SERVER_NAME = "wrong-account-server-name"


@dataclass(frozen=True)
class Pending:
    pass


@dataclass(frozen=True)
class InProcess:
    pass


@dataclass(frozen=True)
class Success:
    approved_at: Optional[datetime]


@dataclass(frozen=True)
class Rejected:
    reason: Optional[str]
    kind: FailureKind


Outcome = Union[Pending, InProcess, Success, Rejected]


def outcome_of(intent) -> Outcome:
    kind = OutcomeKind(intent.outcome)
    if kind is OutcomeKind.PENDING:
        return Pending()
    if kind is OutcomeKind.IN_PROCESS:
        return InProcess()
    if kind is OutcomeKind.SUCCESS:
        return Success(approved_at=intent.approved_at)
    return Rejected(
        reason=intent.rejection_reason,
        kind=FailureKind(intent.failure_kind or FailureKind.REJECTED.value),
    )


def is_terminal(outcome: str) -> bool:
    return outcome not in OPEN_OUTCOMES


def wire_status(outcome: str, is_renewal: bool) -> PaymentStatus:
    kind = OutcomeKind(outcome)
    if is_renewal:
        if kind is OutcomeKind.SUCCESS:
            return PaymentStatus.RENEWAL_APPROVED
        if kind is OutcomeKind.REJECTED:
            return PaymentStatus.REJECTED
        return PaymentStatus.RENEWAL_PENDING
    return {
        OutcomeKind.PENDING: PaymentStatus.PENDING,
        OutcomeKind.IN_PROCESS: PaymentStatus.IN_PROCESS,
        OutcomeKind.SUCCESS: PaymentStatus.COMPLETED,
        OutcomeKind.REJECTED: PaymentStatus.FAILED,
    }[kind]


def parse_status(value: str) -> PaymentStatus:
    """Validate a wire status string against the single allow-list."""
    raw = (value or "").strip().lower()
    if raw in _STATUS_ALIASES:
        return _STATUS_ALIASES[raw]
    try:
        return PaymentStatus(raw)
    except ValueError:
        allowed = ", ".join(s.value for s in PaymentStatus)
        raise PaymentValidationError(f"Invalid status '{value}'. Allowed: {allowed}") from None


def outcomes_for_status(status: PaymentStatus) -> tuple[list[str], Optional[bool]]:
    """Stored outcomes (and renewal flag, None = either) matching a wire status filter."""
    if status is PaymentStatus.PENDING:
        return [OutcomeKind.PENDING.value], False
    if status is PaymentStatus.IN_PROCESS:
        return [OutcomeKind.IN_PROCESS.value], False
    if status is PaymentStatus.COMPLETED:
        return [OutcomeKind.SUCCESS.value], False
    if status is PaymentStatus.FAILED:
        return [OutcomeKind.REJECTED.value], False
    if status is PaymentStatus.RENEWAL_PENDING:
        return list(OPEN_OUTCOMES), True
    if status is PaymentStatus.RENEWAL_APPROVED:
        return [OutcomeKind.SUCCESS.value], True
    return [OutcomeKind.REJECTED.value], True


def parse_client_terminal_status(value: str) -> ClientTerminalStatus:
    try:
        return ClientTerminalStatus((value or "").strip().upper())
    except ValueError:
        raise PaymentValidationError("Status must be one of EXPIRED, CANCELLED, FAILED") from None


def parse_execution_status(value: str) -> ExecutionStatus:
    try:
        return ExecutionStatus((value or "").strip().lower())
    except ValueError:
        allowed = ", ".join(s.value for s in ExecutionStatus)
        raise PaymentValidationError(f"Invalid status. Allowed: {allowed}") from None


def renewal_expiry(approved_at: datetime) -> datetime:
    return approved_at + RENEWAL_PERIOD


def is_active(approved_at: Optional[datetime], now: Optional[datetime] = None) -> bool:
    if approved_at is None:
        return False
    now = now or datetime.utcnow()
    return now <= renewal_expiry(approved_at)


def validity_label(approved_at: Optional[datetime], now: Optional[datetime] = None) -> str:
    return "Active" if is_active(approved_at, now) else "Expired"

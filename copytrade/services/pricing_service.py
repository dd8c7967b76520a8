"""Plan capital bands and payable computation."""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from enum import Enum
from typing import Optional, Union

from copytrade.core.exceptions import PaymentValidationError

CENTS = Decimal("0.01")
Number = Union[Decimal, int, float, str]


class Plan(str, Enum):
    PRO = "Pro"
    EXPERT = "Expert"
    PREMIUM = "Premium"


class PaymentMethod(str, Enum):
    USDT_ERC20 = "USDT_ERC20"
    USDT_TRC20 = "USDT_TRC20"
    UPI = "UPI"


@dataclass(frozen=True)
class PlanBand:
    plan: Plan
    minimum: Decimal
    # exclusive; None means unbounded
    ceiling: Optional[Decimal]
    fee_percent: Decimal

    def contains(self, capital: Decimal) -> bool:
        if capital < self.minimum:
            return False
        return self.ceiling is None or capital < self.ceiling

    def describe(self) -> str:
        if self.ceiling is None:
            return f"${self.minimum:.0f} or more"
        return f"${self.minimum:.0f}-${self.ceiling - 1:.0f}"


PLAN_BANDS = {
    Plan.PRO: PlanBand(Plan.PRO, Decimal("1000"), Decimal("3000"), Decimal("17")),
    Plan.EXPERT: PlanBand(Plan.EXPERT, Decimal("3000"), Decimal("6000"), Decimal("15")),
    Plan.PREMIUM: PlanBand(Plan.PREMIUM, Decimal("6000"), None, Decimal("12")),
}


class PlanBandError(PaymentValidationError):
    def __init__(self, band: PlanBand):
        self.band = band
        if band.ceiling is None:
            super().__init__(f"Please enter an amount of {band.describe()}")
        else:
            super().__init__(f"Please enter the amount between {band.describe()}")


@dataclass(frozen=True)
class PriceQuote:
    plan: Plan
    capital: Decimal
    fee_percent: Decimal
    payable: Decimal


def to_decimal(value: Number, field: str = "amount") -> Decimal:
    try:
        # str() first so floats like 5999.99 keep their printed value
        result = Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        raise PaymentValidationError(f"{field} must be a number") from None
    if not result.is_finite():
        raise PaymentValidationError(f"{field} must be a number")
    return result


def parse_plan(value: Union[Plan, str]) -> Plan:
    if isinstance(value, Plan):
        return value
    for plan in Plan:
        if plan.value.lower() == str(value).strip().lower():
            return plan
    raise PaymentValidationError("plan must be one of Pro, Expert, Premium")


def quote_payable(plan: Union[Plan, str], capital: Number) -> PriceQuote:
    """Validate capital against the plan band and return the fee-derived payable."""
    plan = parse_plan(plan)
    amount = to_decimal(capital, "capital")
    band = PLAN_BANDS[plan]
    if not band.contains(amount):
        raise PlanBandError(band)
    payable = (amount * band.fee_percent / Decimal(100)).quantize(CENTS, rounding=ROUND_HALF_UP)
    return PriceQuote(plan=plan, capital=amount, fee_percent=band.fee_percent, payable=payable)


def plan_for_capital(capital: Number) -> Plan:
    amount = to_decimal(capital, "capital")
    for band in PLAN_BANDS.values():
        if band.contains(amount):
            return band.plan
    raise PlanBandError(PLAN_BANDS[Plan.PRO])


def convert(amount: Number, rate: Number) -> Decimal:
    return (to_decimal(amount) * to_decimal(rate, "rate")).quantize(CENTS, rounding=ROUND_HALF_UP)

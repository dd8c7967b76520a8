"""Currency conversion rate with live fetch and static fallback."""

import logging
from decimal import Decimal, InvalidOperation
from typing import Dict, Optional, Tuple

import httpx

from copytrade.config import get_settings
from copytrade.core.exceptions import PaymentValidationError

logger = logging.getLogger(__name__)
settings = get_settings()

# last good value per (base, quote) in this process
_last_good: Dict[Tuple[str, str], Decimal] = {}


def supported_pair() -> Tuple[str, str]:
    return settings.RATE_BASE.upper(), settings.RATE_QUOTE.upper()


def _static_rate() -> Decimal:
    rate = Decimal(str(settings.USD_TO_INR_RATE))
    return rate if rate > 0 else Decimal("83")


def _parse_rate(payload: object, quote: str) -> Optional[Decimal]:
    if not isinstance(payload, dict):
        return None
    rates = payload.get("rates")
    if not isinstance(rates, dict):
        return None
    value = rates.get(quote)
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        return None
    try:
        rate = Decimal(str(value))
    except InvalidOperation:
        return None
    if not rate.is_finite() or rate <= 0:
        return None
    return rate


async def get_rate(
    base: Optional[str] = None,
    quote: Optional[str] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Decimal:
    """Return a positive rate for the configured pair.

    Fetch failures never raise; only asking for a pair other than the
    configured one does, since the static fallback only holds for that pair.
    """
    base = (base or settings.RATE_BASE).upper()
    quote = (quote or settings.RATE_QUOTE).upper()
    key = (base, quote)
    if key != supported_pair():
        raise PaymentValidationError("Only %s/%s is supported" % supported_pair())

    try:
        async with httpx.AsyncClient(timeout=settings.RATE_FETCH_TIMEOUT_SECONDS, transport=transport) as client:
            response = await client.get(
                settings.EXCHANGE_RATE_API_URL,
                params={"base": base, "symbols": quote},
            )
        if response.status_code == 200:
            rate = _parse_rate(response.json(), quote)
            if rate is not None:
                _last_good[key] = rate
                return rate
            logger.warning("Malformed rate payload for %s/%s", base, quote)
        else:
            logger.warning("Rate fetch for %s/%s returned HTTP %s", base, quote, response.status_code)
    except (httpx.HTTPError, httpx.InvalidURL, ValueError) as exc:
        logger.warning("Rate fetch for %s/%s failed: %s", base, quote, exc)

    if key in _last_good:
        return _last_good[key]
    return _static_rate()


def reset_cache() -> None:
    _last_good.clear()

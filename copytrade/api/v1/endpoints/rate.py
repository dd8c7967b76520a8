"""v1 currency rate endpoint."""

from typing import Optional

from fastapi import APIRouter, Query

from copytrade.config import get_settings
from copytrade.schemas import RateResponse
from copytrade.services.rate_service import get_rate

router = APIRouter()
settings = get_settings()


@router.get("", response_model=RateResponse)
async def current_rate(
    base: Optional[str] = Query(default=None, max_length=3),
    symbol: Optional[str] = Query(default=None, max_length=3),
):
    base = (base or settings.RATE_BASE).upper()
    symbol = (symbol or settings.RATE_QUOTE).upper()
    rate = await get_rate(base, symbol)
    return RateResponse(base=base, symbol=symbol, rate=float(rate))

"""v1 strategy catalog endpoints."""

from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from copytrade.core.dependencies import get_current_user, require_admin
from copytrade.core.exceptions import PaymentNotFoundError
from copytrade.database import get_db
from copytrade.models import Strategy, User
from copytrade.schemas import StrategyCreateRequest, StrategyResponse, StrategyUpdateRequest

router = APIRouter()


DEFAULT_STRATEGIES = [
    {"name": "Trend Rider", "description": "Swing trend-following on major FX pairs."},
    {"name": "Gold Scalper", "description": "Intraday XAUUSD scalping with tight stops."},
    {"name": "Index Momentum", "description": "Momentum entries on US index CFDs."},
]


async def _seed_default_strategies_if_needed(db: AsyncSession) -> None:
    result = await db.execute(select(Strategy.id))
    if result.first() is not None:
        return

    for item in DEFAULT_STRATEGIES:
        db.add(Strategy(**item, is_enabled=True))
    await db.flush()


def _strategy_response(s: Strategy) -> StrategyResponse:
    return StrategyResponse(id=s.id, name=s.name, description=s.description, is_enabled=bool(s.is_enabled))


@router.get("", response_model=list[StrategyResponse])
async def list_strategies(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await _seed_default_strategies_if_needed(db)
    await db.commit()
    stmt = select(Strategy).order_by(Strategy.id.asc())
    if (current_user.role or "").upper() != "ADMIN":
        stmt = stmt.where(Strategy.is_enabled == True)
    result = await db.execute(stmt)
    return [_strategy_response(s) for s in result.scalars().all()]


@router.post("", response_model=StrategyResponse)
async def create_strategy(
    req: StrategyCreateRequest,
    _: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    strategy = Strategy(name=req.name.strip(), description=req.description, is_enabled=True)
    db.add(strategy)
    await db.commit()
    await db.refresh(strategy)
    return _strategy_response(strategy)


@router.put("/{strategy_id}", response_model=StrategyResponse)
async def update_strategy(
    strategy_id: int,
    req: StrategyUpdateRequest,
    _: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    strategy = await db.get(Strategy, strategy_id)
    if strategy is None:
        raise PaymentNotFoundError("Strategy not found")

    if req.name is not None:
        strategy.name = req.name.strip()
    if req.description is not None:
        strategy.description = req.description
    if req.is_enabled is not None:
        strategy.is_enabled = req.is_enabled

    await db.commit()
    await db.refresh(strategy)
    return _strategy_response(strategy)

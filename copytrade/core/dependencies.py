"""Dependencies for v1 API routes."""

from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from copytrade.config import get_settings
from copytrade.core.exceptions import AuthorizationError
from copytrade.core.rate_limit import enforce_rate_limit
from copytrade.core.security import decode_access_token
from copytrade.database import get_db
from copytrade.models import User

settings = get_settings()

# auto_error=False so a missing header is a 401 like any other auth failure
security = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: AsyncSession = Depends(get_db),
) -> User:
    if credentials is None or not credentials.credentials:
        raise AuthorizationError("Not authenticated")

    payload = decode_access_token(credentials.credentials)
    if not payload:
        raise AuthorizationError("Invalid or expired token")

    sub = payload.get("sub")
    try:
        user_id = int(sub)
    except (TypeError, ValueError):
        raise AuthorizationError("Invalid token payload")

    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if user is None or not user.is_active:
        raise AuthorizationError("User not found")
    return user


async def require_admin(
    current_user: User = Depends(get_current_user),
) -> User:
    if (current_user.role or "").upper() != "ADMIN":
        raise AuthorizationError("Admin access required")
    return current_user


def rate_limited(scope: str, per_minute_setting: str):
    """Per-user fixed-window limit keyed by ``scope``."""

    async def _dependency(
        current_user: User = Depends(get_current_user),
    ) -> User:
        limit = int(getattr(settings, per_minute_setting))
        await enforce_rate_limit(f"{scope}:{current_user.id}", limit, 60)
        return current_user

    return _dependency

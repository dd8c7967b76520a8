"""Bearer token helpers. Tokens carry the user id in ``sub``."""

from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import JWTError, jwt

from copytrade.config import get_settings

settings = get_settings()


def create_access_token(subject: str, expires_minutes: Optional[int] = None) -> str:
    expire_delta = timedelta(minutes=expires_minutes or settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    exp = datetime.now(timezone.utc) + expire_delta
    payload = {"sub": str(subject), "exp": exp}
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_access_token(token: str) -> Optional[dict]:
    try:
        return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError:
        return None

import os
import tempfile

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("SECRET_KEY", "test-secret")
os.environ.setdefault("SIGNED_URL_SECRET", "test-signing-secret")
os.environ.setdefault("STORAGE_ROOT", tempfile.mkdtemp(prefix="copytrade-proofs-"))
os.environ.setdefault("NOTIFICATIONS_ENABLED", "false")
os.environ.setdefault("RATE_LIMIT_PAYMENTS_PER_MINUTE", "0")
os.environ.setdefault("RATE_LIMIT_UPLOADS_PER_MINUTE", "0")
os.environ.setdefault("USD_TO_INR_RATE", "83")

import httpx
import pytest

from copytrade.core.security import create_access_token
from copytrade.database import AsyncSessionLocal, Base, engine
from copytrade.models import Strategy, User


@pytest.fixture
async def db_engine():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
async def db(db_engine):
    async with AsyncSessionLocal() as session:
        yield session


async def _add_user(db, email, role="USER"):
    user = User(email=email, name=email.split("@")[0], role=role, is_active=True)
    db.add(user)
    await db.commit()
    await db.refresh(user)
    return user


@pytest.fixture
async def user(db):
    return await _add_user(db, "trader@example.com")


@pytest.fixture
async def other_user(db):
    return await _add_user(db, "someone@example.com")


@pytest.fixture
async def admin(db):
    return await _add_user(db, "admin@example.com", role="ADMIN")


@pytest.fixture
async def strategy(db):
    item = Strategy(name="Trend Rider", description="FX swing", is_enabled=True)
    db.add(item)
    await db.commit()
    await db.refresh(item)
    return item


def _auth_headers(user):
    return {"Authorization": f"Bearer {create_access_token(str(user.id))}"}


@pytest.fixture
def auth_headers():
    return _auth_headers


@pytest.fixture
async def client(db_engine):
    from copytrade.main import app

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http:
        yield http

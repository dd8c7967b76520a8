#!/usr/bin/env python3
"""
Create or promote an admin user and print a bearer token for the admin console.
Usage:
    python scripts/create_admin.py admin@example.com
    python scripts/create_admin.py  # ADMIN_EMAIL from env, else interactive
"""

import asyncio
import sys
from pathlib import Path

# Add backend to path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from sqlalchemy import select
from copytrade.config import get_settings
from copytrade.database import AsyncSessionLocal, Base, engine
from copytrade.models import User
from copytrade.core.security import create_access_token


async def create_admin(email: str) -> str:
    """Create or update user to ADMIN role. Returns an access token."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with AsyncSessionLocal() as db:
        result = await db.execute(select(User).where(User.email == email))
        user = result.scalar_one_or_none()
        if user:
            user.role = "ADMIN"
            user.is_active = True
            await db.commit()
            print(f"Updated existing user '{email}' to ADMIN role")
        else:
            user = User(email=email, role="ADMIN", is_active=True)
            db.add(user)
            await db.commit()
            await db.refresh(user)
            print(f"Created new admin user: {email}")
        return create_access_token(str(user.id))


async def _main():
    try:
        if len(sys.argv) >= 2:
            email = sys.argv[1].strip()
        else:
            email = get_settings().ADMIN_EMAIL.strip() or input("Admin email: ").strip()
        if not email:
            print("Error: email required")
            sys.exit(1)
        token = await create_admin(email)
        print(f"Bearer token: {token}")
    finally:
        await engine.dispose()


def main():
    asyncio.run(_main())


if __name__ == "__main__":
    main()

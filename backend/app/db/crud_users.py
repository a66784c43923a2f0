# app/db/crud_users.py

from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models import User


async def get_user(db: AsyncSession, user_id: int) -> Optional[User]:
    res = await db.execute(select(User).where(User.id == user_id))
    return res.scalar_one_or_none()


async def get_user_by_email(db: AsyncSession, email: str) -> Optional[User]:
    res = await db.execute(select(User).where(User.email == email))
    return res.scalar_one_or_none()


async def create_user(
    db: AsyncSession,
    name: str,
    email: str,
    phone: Optional[str] = None,
    role: str = "user",
) -> User:
    """
    Users are provisioned by the identity service; this is used by the seed
    script and tests.
    """
    user = User(name=name, email=email, phone=phone, role=role)
    db.add(user)
    await db.commit()
    await db.refresh(user)
    return user


async def set_stripe_customer_id(db: AsyncSession, user: User, customer_id: str) -> User:
    user.stripe_customer_id = customer_id
    db.add(user)
    await db.commit()
    await db.refresh(user)
    return user

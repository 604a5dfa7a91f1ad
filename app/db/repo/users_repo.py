from __future__ import annotations

from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models.users import User


class UsersRepo:
    @staticmethod
    async def get_by_id(session: AsyncSession, user_id: int) -> User | None:
        return await session.get(User, user_id)

    @staticmethod
    async def get_by_id_for_update(session: AsyncSession, user_id: int) -> User | None:
        stmt = select(User).where(User.id == user_id).with_for_update()
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def get_by_email(session: AsyncSession, email: str) -> User | None:
        stmt = select(User).where(User.email == email.strip().lower())
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def get_by_stripe_customer_id(session: AsyncSession, stripe_customer_id: str) -> User | None:
        stmt = select(User).where(User.stripe_customer_id == stripe_customer_id)
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def create(
        session: AsyncSession,
        *,
        email: str,
        name: str | None = None,
        role: str = "USER",
        created_at: datetime | None = None,
    ) -> User:
        user = User(
            email=email.strip().lower(),
            name=name,
            role=role,
        )
        if created_at is not None:
            user.created_at = created_at
        session.add(user)
        await session.flush()
        return user

    @staticmethod
    async def set_stripe_customer_id(
        session: AsyncSession,
        *,
        user_id: int,
        stripe_customer_id: str,
    ) -> bool:
        stmt = (
            update(User)
            .where(User.id == user_id, User.stripe_customer_id.is_(None))
            .values(stripe_customer_id=stripe_customer_id)
            .returning(User.id)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none() is not None

"""User and subscription repositories (PostgreSQL-backed)."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog
from sqlmodel import col, select
from sqlmodel.ext.asyncio.session import AsyncSession

from craftmeter.models.database import Subscription, User
from craftmeter.types import PlanName, SubscriptionStatus

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine

logger = structlog.get_logger(__name__)


class DatabaseUserRepository:
    """PostgreSQL-backed user store."""

    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine

    async def create(self, email: str, name: str = "") -> User:
        """Create a user together with the default hobby subscription."""
        async with AsyncSession(self._engine) as session:
            user = User(email=email, name=name or email)
            session.add(user)
            await session.flush()  # populate user.id without committing

            session.add(
                Subscription(
                    user_id=user.id,
                    plan=PlanName.HOBBY,
                    status=SubscriptionStatus.ACTIVE,
                )
            )
            await session.commit()
            await session.refresh(user)

            logger.info("user_created", user_id=user.id, email=email)
            return user

    async def get_by_id(self, user_id: str) -> User | None:
        async with AsyncSession(self._engine) as session:
            result = await session.execute(select(User).where(col(User.id) == user_id))
            return result.scalars().first()

    async def get_by_email(self, email: str) -> User | None:
        async with AsyncSession(self._engine) as session:
            result = await session.execute(select(User).where(col(User.email) == email))
            return result.scalars().first()


class SubscriptionRepository:
    """Read access to the single subscription row each user owns."""

    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine

    async def get_for_user(self, user_id: str) -> Subscription | None:
        async with AsyncSession(self._engine) as session:
            stmt = select(Subscription).where(col(Subscription.user_id) == user_id)
            result = await session.execute(stmt)
            return result.scalars().first()

    async def get_by_provider_id(self, provider_subscription_id: str) -> Subscription | None:
        async with AsyncSession(self._engine) as session:
            stmt = select(Subscription).where(
                col(Subscription.provider_subscription_id) == provider_subscription_id
            )
            result = await session.execute(stmt)
            return result.scalars().first()

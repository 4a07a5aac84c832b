"""Purchased-credit pool: FIFO token blocks bought on top of a plan."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

import structlog
from sqlalchemy import ColumnElement, func, update
from sqlmodel import col, select
from sqlmodel.ext.asyncio.session import AsyncSession

from craftmeter.billing.periods import to_naive_utc, utc_now
from craftmeter.exceptions import ValidationError
from craftmeter.models.database import TokenPurchase
from craftmeter.types import PurchaseStatus

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine

logger = structlog.get_logger(__name__)

# Re-reads per block before giving up on it when concurrent deductions keep winning
_MAX_BLOCK_ATTEMPTS = 5


@dataclass(frozen=True, slots=True)
class TokenBalance:
    total_purchased: int
    total_used: int
    remaining: int


@dataclass(frozen=True, slots=True)
class DeductionResult:
    success: bool
    deducted: int
    remaining: int


class CreditPool:
    """Token blocks consumed oldest-first once the plan allotment runs out."""

    def __init__(self, engine: AsyncEngine, expiry_days: int | None = None) -> None:
        self._engine = engine
        self._expiry_days = expiry_days

    def new_purchase(
        self,
        user_id: str,
        token_amount: int,
        price_usd: float,
        provider: str | None = None,
        checkout_id: str | None = None,
        payment_id: str | None = None,
    ) -> TokenPurchase:
        """Build an unsaved block so callers can persist it in their own transaction."""
        if token_amount <= 0:
            msg = f"Token amount must be positive, got {token_amount}"
            raise ValidationError(msg)
        purchased_at = utc_now()
        expires_at = (
            purchased_at + timedelta(days=self._expiry_days) if self._expiry_days else None
        )
        return TokenPurchase(
            user_id=user_id,
            token_amount=token_amount,
            tokens_remaining=token_amount,
            price_usd=price_usd,
            status=PurchaseStatus.COMPLETED,
            provider=provider,
            checkout_id=checkout_id,
            payment_id=payment_id,
            purchased_at=purchased_at,
            expires_at=expires_at,
        )

    async def record_purchase(
        self,
        user_id: str,
        token_amount: int,
        price_usd: float,
        provider: str | None = None,
        checkout_id: str | None = None,
        payment_id: str | None = None,
    ) -> TokenPurchase:
        purchase = self.new_purchase(
            user_id, token_amount, price_usd, provider, checkout_id, payment_id
        )
        async with AsyncSession(self._engine) as session:
            session.add(purchase)
            await session.commit()
            await session.refresh(purchase)

        logger.info(
            "token_purchase_recorded",
            user_id=user_id,
            purchase_id=purchase.id,
            tokens=token_amount,
            price_usd=price_usd,
        )
        return purchase

    async def balance(self, user_id: str) -> TokenBalance:
        """Sum the active blocks; refunded and expired blocks do not count."""
        stmt = select(
            func.coalesce(func.sum(TokenPurchase.token_amount), 0),
            func.coalesce(func.sum(TokenPurchase.tokens_remaining), 0),
        ).where(*_active_blocks(user_id))
        async with AsyncSession(self._engine) as session:
            purchased, remaining = (await session.execute(stmt)).one()
        purchased, remaining = int(purchased), int(remaining)
        return TokenBalance(
            total_purchased=purchased,
            total_used=purchased - remaining,
            remaining=remaining,
        )

    async def deduct(self, user_id: str, amount: int) -> DeductionResult:
        """Take ``amount`` tokens from the oldest blocks first.

        Each block is decremented with a conditional UPDATE, so a block can
        never go below zero even when several deductions run at once. A block
        that lost a race is re-read and retried with what is left in it.
        """
        if amount < 0:
            msg = f"Deduction amount must be non-negative, got {amount}"
            raise ValidationError(msg)
        if amount == 0:
            balance = await self.balance(user_id)
            return DeductionResult(success=True, deducted=0, remaining=balance.remaining)

        stmt = (
            select(TokenPurchase.id, TokenPurchase.tokens_remaining)
            .where(*_active_blocks(user_id), col(TokenPurchase.tokens_remaining) > 0)
            .order_by(col(TokenPurchase.purchased_at).asc(), col(TokenPurchase.id).asc())
        )

        outstanding = amount
        async with AsyncSession(self._engine) as session:
            blocks = (await session.execute(stmt)).all()
            for block_id, available in blocks:
                if outstanding == 0:
                    break
                for _ in range(_MAX_BLOCK_ATTEMPTS):
                    if available <= 0:
                        break
                    take = min(available, outstanding)
                    result = await session.execute(
                        update(TokenPurchase)
                        .where(
                            col(TokenPurchase.id) == block_id,
                            col(TokenPurchase.status) == PurchaseStatus.COMPLETED,
                            col(TokenPurchase.tokens_remaining) >= take,
                        )
                        .values(tokens_remaining=col(TokenPurchase.tokens_remaining) - take)
                        .execution_options(synchronize_session=False)
                    )
                    if result.rowcount == 1:
                        outstanding -= take
                        break
                    # Lost the race: see what the block holds now
                    available = (
                        await session.execute(
                            select(TokenPurchase.tokens_remaining).where(
                                col(TokenPurchase.id) == block_id,
                                col(TokenPurchase.status) == PurchaseStatus.COMPLETED,
                            )
                        )
                    ).scalar_one_or_none() or 0
            balance_after = await _remaining_in(session, user_id)
            await session.commit()

        deducted = amount - outstanding
        if outstanding:
            logger.warning(
                "token_pool_exhausted",
                user_id=user_id,
                requested=amount,
                deducted=deducted,
                shortfall=outstanding,
            )
        else:
            logger.debug("tokens_deducted", user_id=user_id, deducted=deducted)
        return DeductionResult(
            success=outstanding == 0, deducted=deducted, remaining=balance_after
        )

    async def purchases(self, user_id: str) -> list[TokenPurchase]:
        stmt = (
            select(TokenPurchase)
            .where(col(TokenPurchase.user_id) == user_id)
            .order_by(col(TokenPurchase.purchased_at).desc())
        )
        async with AsyncSession(self._engine) as session:
            return list((await session.execute(stmt)).scalars().all())

    async def expire_purchases(self, now: datetime | None = None) -> int:
        """Mark completed blocks past their expiry as expired. Returns the count.

        Remaining tokens are left on the row as a record of what went unused.
        """
        now = to_naive_utc(now) if now else utc_now()
        async with AsyncSession(self._engine) as session:
            result = await session.execute(
                update(TokenPurchase)
                .where(
                    col(TokenPurchase.status) == PurchaseStatus.COMPLETED,
                    col(TokenPurchase.expires_at).is_not(None),
                    col(TokenPurchase.expires_at) <= now,
                )
                .values(status=PurchaseStatus.EXPIRED)
                .execution_options(synchronize_session=False)
            )
            await session.commit()

        expired = result.rowcount or 0
        if expired:
            logger.info("token_purchases_expired", count=expired)
        return expired


def _active_blocks(user_id: str) -> tuple[ColumnElement[bool], ...]:
    return (
        col(TokenPurchase.user_id) == user_id,
        col(TokenPurchase.status) == PurchaseStatus.COMPLETED,
    )


async def _remaining_in(session: AsyncSession, user_id: str) -> int:
    stmt = select(func.coalesce(func.sum(TokenPurchase.tokens_remaining), 0)).where(
        *_active_blocks(user_id)
    )
    return int((await session.execute(stmt)).scalar_one())

"""Usage ledger: per-call AI token events plus per-period cost records."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING

import structlog
from sqlalchemy import func, update
from sqlmodel import col, select
from sqlmodel.ext.asyncio.session import AsyncSession

from craftmeter.billing.catalog import estimate_cost
from craftmeter.billing.infrastructure import calculate_infrastructure_costs
from craftmeter.billing.periods import resolve_period, to_naive_utc, utc_now
from craftmeter.exceptions import ValidationError
from craftmeter.models.database import AITokenUsage, Subscription, UsageRecord

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine

    from craftmeter.billing.infrastructure import InfrastructureUsage

logger = structlog.get_logger(__name__)


@dataclass(frozen=True, slots=True)
class RecordedUsage:
    id: str
    cost_usd: float
    total_tokens: int


@dataclass(slots=True)
class ModelUsage:
    tokens: int = 0
    cost_usd: float = 0.0


@dataclass(slots=True)
class PeriodUsage:
    """Aggregated consumption over a half-open [start, end) window."""

    start: datetime
    end: datetime
    total_tokens: int = 0
    total_cost_usd: float = 0.0
    by_model: dict[str, ModelUsage] = field(default_factory=dict)


class UsageLedger:
    """Append-only AI usage events and lazily created period usage records.

    Database errors propagate to the caller; nothing here retries.
    """

    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine

    async def record_ai_usage(
        self,
        user_id: str,
        project_id: str,
        model: str,
        input_tokens: int,
        output_tokens: int,
        endpoint: str | None = None,
    ) -> RecordedUsage:
        """Append a usage event and fold it into the period usage record."""
        cost_usd = estimate_cost(model, input_tokens, output_tokens)
        total_tokens = input_tokens + output_tokens

        async with AsyncSession(self._engine) as session:
            event = AITokenUsage(
                user_id=user_id,
                project_id=project_id,
                model=model,
                input_tokens=input_tokens,
                output_tokens=output_tokens,
                total_tokens=total_tokens,
                cost_usd=cost_usd,
                endpoint=endpoint,
            )
            session.add(event)

            start, end = await self._period_for(session, user_id)
            updated = await session.execute(
                update(UsageRecord)
                .where(
                    col(UsageRecord.user_id) == user_id,
                    col(UsageRecord.billing_period_start) == start,
                )
                .values(
                    ai_tokens_used=col(UsageRecord.ai_tokens_used) + total_tokens,
                    ai_cost_usd=col(UsageRecord.ai_cost_usd) + cost_usd,
                    total_cost_usd=col(UsageRecord.total_cost_usd) + cost_usd,
                    updated_at=utc_now(),
                )
                .execution_options(synchronize_session=False)
            )
            if updated.rowcount == 0:
                session.add(
                    UsageRecord(
                        user_id=user_id,
                        billing_period_start=start,
                        billing_period_end=end,
                        ai_tokens_used=total_tokens,
                        ai_cost_usd=cost_usd,
                        total_cost_usd=cost_usd,
                    )
                )
            event_id = event.id
            await session.commit()

        logger.debug(
            "ai_usage_recorded",
            user_id=user_id,
            project_id=project_id,
            model=model,
            tokens=total_tokens,
            cost_usd=cost_usd,
        )
        return RecordedUsage(id=event_id, cost_usd=cost_usd, total_tokens=total_tokens)

    async def period_usage(self, user_id: str, start: datetime, end: datetime) -> PeriodUsage:
        """Aggregate all usage events in [start, end), grouped by model."""
        start, end = to_naive_utc(start), to_naive_utc(end)
        if end <= start:
            msg = "Period end must be after period start"
            raise ValidationError(msg)

        stmt = (
            select(
                AITokenUsage.model,
                func.coalesce(func.sum(AITokenUsage.total_tokens), 0),
                func.coalesce(func.sum(AITokenUsage.cost_usd), 0.0),
            )
            .where(
                col(AITokenUsage.user_id) == user_id,
                col(AITokenUsage.created_at) >= start,
                col(AITokenUsage.created_at) < end,
            )
            .group_by(AITokenUsage.model)
        )
        async with AsyncSession(self._engine) as session:
            rows = (await session.execute(stmt)).all()

        usage = PeriodUsage(start=start, end=end)
        for model, tokens, cost in rows:
            usage.by_model[model] = ModelUsage(tokens=int(tokens), cost_usd=float(cost))
            usage.total_tokens += int(tokens)
            usage.total_cost_usd += float(cost)
        return usage

    async def current_period_usage(self, user_id: str, now: datetime | None = None) -> PeriodUsage:
        """Usage within the subscription's period, or the calendar month without one."""
        async with AsyncSession(self._engine) as session:
            start, end = await self._period_for(session, user_id, now)
        return await self.period_usage(user_id, start, end)

    async def project_usage(
        self, project_id: str, start: datetime, end: datetime
    ) -> tuple[int, float]:
        """Return (total tokens, total cost) for one project in [start, end)."""
        stmt = select(
            func.coalesce(func.sum(AITokenUsage.total_tokens), 0),
            func.coalesce(func.sum(AITokenUsage.cost_usd), 0.0),
        ).where(
            col(AITokenUsage.project_id) == project_id,
            col(AITokenUsage.created_at) >= to_naive_utc(start),
            col(AITokenUsage.created_at) < to_naive_utc(end),
        )
        async with AsyncSession(self._engine) as session:
            tokens, cost = (await session.execute(stmt)).one()
        return int(tokens), float(cost)

    async def record_infrastructure_usage(
        self, user_id: str, usage: InfrastructureUsage, plan: str | None = None
    ) -> UsageRecord:
        """Store a resource snapshot in the current period's usage record.

        Snapshot values replace the previous ones; overage costs are
        recomputed for the plan. The total is derived in SQL from the stored
        AI cost, so AI usage committed concurrently is never dropped from it.
        """
        async with AsyncSession(self._engine) as session:
            subscription = await self._subscription(session, user_id)
            start, end = resolve_period(subscription)
            plan = plan or (subscription.plan if subscription else None)
            costs = calculate_infrastructure_costs(plan, usage)
            snapshot = {
                "database_size_gb": usage.database_size_gb,
                "database_cost_usd": costs.database_cost,
                "storage_size_gb": usage.storage_size_gb,
                "storage_cost_usd": costs.storage_cost,
                "bandwidth_gb": usage.bandwidth_gb,
                "bandwidth_cost_usd": costs.bandwidth_cost,
                "auth_mau": usage.auth_mau,
                "auth_cost_usd": costs.auth_cost,
                "edge_function_invocations": usage.edge_function_invocations,
                "edge_function_cost_usd": costs.edge_function_cost,
            }

            period_filter = (
                col(UsageRecord.user_id) == user_id,
                col(UsageRecord.billing_period_start) == start,
            )
            updated = await session.execute(
                update(UsageRecord)
                .where(*period_filter)
                .values(
                    **snapshot,
                    total_cost_usd=col(UsageRecord.ai_cost_usd) + costs.total,
                    updated_at=utc_now(),
                )
                .execution_options(synchronize_session=False)
            )
            if updated.rowcount == 0:
                fresh = UsageRecord(
                    user_id=user_id, billing_period_start=start, billing_period_end=end, **snapshot
                )
                fresh.recompute_total()
                session.add(fresh)
            await session.commit()

            stmt = select(UsageRecord).where(*period_filter)
            record = (await session.execute(stmt)).scalars().one()

        logger.info(
            "infrastructure_usage_recorded",
            user_id=user_id,
            infrastructure_cost_usd=costs.total,
            total_cost_usd=record.total_cost_usd,
        )
        return record

    async def get_usage_record(self, user_id: str, period_start: datetime) -> UsageRecord | None:
        async with AsyncSession(self._engine) as session:
            stmt = select(UsageRecord).where(
                col(UsageRecord.user_id) == user_id,
                col(UsageRecord.billing_period_start) == to_naive_utc(period_start),
            )
            return (await session.execute(stmt)).scalars().first()

    async def _period_for(
        self, session: AsyncSession, user_id: str, now: datetime | None = None
    ) -> tuple[datetime, datetime]:
        return resolve_period(await self._subscription(session, user_id), now)

    @staticmethod
    async def _subscription(session: AsyncSession, user_id: str) -> Subscription | None:
        stmt = select(Subscription).where(col(Subscription.user_id) == user_id)
        return (await session.execute(stmt)).scalars().first()

"""Billing period resolution."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING

from dateutil.relativedelta import relativedelta

from craftmeter.types import SubscriptionStatus

if TYPE_CHECKING:
    from craftmeter.models.database import Subscription


def to_naive_utc(value: datetime) -> datetime:
    """Normalize to the naive-UTC form stored in TIMESTAMP columns."""
    if value.tzinfo is not None:
        value = value.astimezone(UTC)
    return value.replace(tzinfo=None)


def utc_now() -> datetime:
    return datetime.now(UTC).replace(tzinfo=None)


def calendar_month_bounds(now: datetime) -> tuple[datetime, datetime]:
    """Return the half-open [first of month, first of next month) window."""
    start = to_naive_utc(now).replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    return start, start + relativedelta(months=1)


def one_month_from(start: datetime) -> datetime:
    return start + relativedelta(months=1)


def resolve_period(
    subscription: Subscription | None, now: datetime | None = None
) -> tuple[datetime, datetime]:
    """Pick the window usage is measured over.

    An active subscription whose stored period contains ``now`` uses those
    bounds; everything else (no subscription, cancelled, or a stale period
    whose renewal event has not arrived yet) falls back to the calendar month.
    """
    now = to_naive_utc(now) if now else utc_now()
    if (
        subscription is not None
        and subscription.status == SubscriptionStatus.ACTIVE
        and subscription.current_period_start is not None
        and subscription.current_period_end is not None
        and subscription.current_period_start <= now < subscription.current_period_end
    ):
        return subscription.current_period_start, subscription.current_period_end
    return calendar_month_bounds(now)

"""Apply normalized billing events to subscriptions, payments and purchased tokens.

Every handler is idempotent: provider payment ids and checkout ids are unique
columns, so a redelivered event either finds its row already written or loses
the insert race and is treated as a duplicate. Conflicts on any other unique
column propagate.
"""

from __future__ import annotations

import json
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

import structlog
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlmodel import col, select
from sqlmodel.ext.asyncio.session import AsyncSession

from craftmeter.billing.events import (
    BillingEvent,
    CustomerRef,
    OrderPaid,
    OrderRefunded,
    PaymentFailed,
    SubscriptionChanged,
)
from craftmeter.billing.periods import one_month_from, to_naive_utc, utc_now
from craftmeter.exceptions import NotFoundError, UnknownMappingError
from craftmeter.models.database import PaymentTransaction, Subscription, TokenPurchase, User
from craftmeter.storage.repositories.credits import CreditPool
from craftmeter.types import (
    BillingReason,
    PaymentProvider,
    PaymentStatus,
    PlanName,
    PurchaseStatus,
    SubscriptionChange,
    SubscriptionStatus,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine

logger = structlog.get_logger(__name__)

SUBSCRIPTION_REASONS = frozenset(
    {
        BillingReason.SUBSCRIPTION_CREATE,
        BillingReason.SUBSCRIPTION_CYCLE,
        BillingReason.SUBSCRIPTION_UPDATE,
    }
)

# User column holding each provider's customer id
_CUSTOMER_ID_FIELDS: dict[PaymentProvider, str] = {
    PaymentProvider.POLAR: "polar_customer_id",
    PaymentProvider.RAZORPAY: "razorpay_customer_id",
}


class BillingEventSync:
    """State transitions driven by payment provider events."""

    def __init__(
        self,
        engine: AsyncEngine,
        token_products: dict[str, int] | None = None,
        expiry_days: int | None = None,
    ) -> None:
        self._engine = engine
        self._token_products = token_products or {}
        self._pool = CreditPool(engine, expiry_days=expiry_days)
        self._handlers: dict[type, Callable[[Any], Awaitable[None]]] = {
            OrderPaid: self.order_paid,
            SubscriptionChanged: self.subscription_changed,
            OrderRefunded: self.order_refunded,
            PaymentFailed: self.payment_failed,
        }

    async def apply(self, event: BillingEvent) -> None:
        handler = self._handlers.get(type(event))
        if handler is None:
            msg = f"No handler for {type(event).__name__}"
            raise UnknownMappingError(msg)
        await handler(event)

    # --- Orders ---

    async def order_paid(self, event: OrderPaid) -> None:
        if event.billing_reason in SUBSCRIPTION_REASONS:
            await self._subscription_paid(event)
        elif event.billing_reason == BillingReason.PURCHASE:
            await self._tokens_purchased(event)
        else:
            msg = f"Unknown billing reason: {event.billing_reason!r}"
            raise UnknownMappingError(msg)

    async def _subscription_paid(self, event: OrderPaid) -> None:
        async with AsyncSession(self._engine) as session:
            if await _payment_exists(session, event.payment_id):
                logger.info("order_paid_duplicate", payment_id=event.payment_id)
                return

            user = await _resolve_user(session, event.provider, event.customer)
            subscription = await _subscription_for(session, user.id, event.subscription_id)

            start = to_naive_utc(event.period_start) if event.period_start else utc_now()
            end = to_naive_utc(event.period_end) if event.period_end else one_month_from(start)
            subscription.plan = PlanName.PRO
            subscription.status = SubscriptionStatus.ACTIVE
            subscription.provider = event.provider
            if event.subscription_id:
                subscription.provider_subscription_id = event.subscription_id
            subscription.provider_customer_id = (
                event.customer.provider_customer_id or subscription.provider_customer_id
            )
            subscription.current_period_start = start
            subscription.current_period_end = end
            subscription.cancel_at_period_end = False
            subscription.cancelled_at = None
            subscription.updated_at = utc_now()
            user_id = user.id
            session.add(subscription)
            session.add(_transaction(event, user_id, PaymentStatus.COMPLETED))

            if not await _commit_once(session, "order_paid_duplicate", event.payment_id):
                return

        logger.info(
            "subscription_payment_applied",
            user_id=user_id,
            payment_id=event.payment_id,
            billing_reason=str(event.billing_reason),
            period_end=end.isoformat(),
        )

    async def _tokens_purchased(self, event: OrderPaid) -> None:
        tokens = self._token_products.get(event.product_id or "")
        if tokens is None:
            msg = f"Unknown token product: {event.product_id!r}"
            raise UnknownMappingError(msg)

        async with AsyncSession(self._engine) as session:
            if await _payment_exists(session, event.payment_id) or await _purchase_for(
                session, event.payment_id, event.checkout_id
            ):
                logger.info(
                    "token_purchase_duplicate",
                    payment_id=event.payment_id,
                    checkout_id=event.checkout_id,
                )
                return

            user = await _resolve_user(session, event.provider, event.customer)
            user_id = user.id
            purchase = self._pool.new_purchase(
                user_id=user_id,
                token_amount=tokens,
                price_usd=event.amount_minor / 100,
                provider=event.provider,
                checkout_id=event.checkout_id,
                payment_id=event.payment_id,
            )
            session.add(purchase)
            session.add(_transaction(event, user_id, PaymentStatus.COMPLETED))

            if not await _commit_once(
                session, "token_purchase_duplicate", event.payment_id, event.checkout_id
            ):
                return

        logger.info(
            "token_purchase_recorded",
            user_id=user_id,
            tokens=tokens,
            payment_id=event.payment_id,
            checkout_id=event.checkout_id,
        )

    # --- Subscriptions ---

    async def subscription_changed(self, event: SubscriptionChanged) -> None:
        async with AsyncSession(self._engine) as session:
            user = await _resolve_user(session, event.provider, event.customer)
            subscription = await _subscription_for(session, user.id, event.subscription_id)
            now = utc_now()

            subscription.provider = event.provider
            subscription.provider_subscription_id = event.subscription_id
            if event.customer.provider_customer_id:
                subscription.provider_customer_id = event.customer.provider_customer_id

            if event.change == SubscriptionChange.ACTIVE:
                subscription.plan = PlanName.PRO
                subscription.status = SubscriptionStatus.ACTIVE
                if event.period_start:
                    subscription.current_period_start = to_naive_utc(event.period_start)
                if event.period_end:
                    subscription.current_period_end = to_naive_utc(event.period_end)
                if subscription.current_period_start is None:
                    subscription.current_period_start = now
                if subscription.current_period_end is None:
                    subscription.current_period_end = one_month_from(
                        subscription.current_period_start
                    )
                subscription.cancel_at_period_end = False
                subscription.cancelled_at = None
            elif event.change == SubscriptionChange.CANCELED:
                # Stays usable until the period ends; revocation follows from the provider
                subscription.cancel_at_period_end = True
                subscription.cancelled_at = now
            elif event.change == SubscriptionChange.UNCANCELED:
                subscription.status = SubscriptionStatus.ACTIVE
                subscription.cancel_at_period_end = False
                subscription.cancelled_at = None
            elif event.change == SubscriptionChange.REVOKED:
                subscription.plan = PlanName.HOBBY
                subscription.status = SubscriptionStatus.CANCELLED
                subscription.cancel_at_period_end = False
                subscription.cancelled_at = subscription.cancelled_at or now
            else:
                msg = f"Unknown subscription change: {event.change!r}"
                raise UnknownMappingError(msg)

            subscription.updated_at = now
            user_id, plan = user.id, subscription.plan
            session.add(subscription)
            await session.commit()

        logger.info(
            "subscription_changed",
            user_id=user_id,
            change=str(event.change),
            subscription_id=event.subscription_id,
            plan=plan,
        )

    # --- Refunds and failures ---

    async def order_refunded(self, event: OrderRefunded) -> None:
        async with AsyncSession(self._engine) as session:
            transaction = None
            if event.payment_id:
                stmt = select(PaymentTransaction).where(
                    col(PaymentTransaction.provider_payment_id) == event.payment_id
                )
                transaction = (await session.execute(stmt)).scalars().first()
            purchase = await _purchase_for(session, event.payment_id, event.checkout_id)

            if transaction is None and purchase is None:
                msg = (
                    f"No payment or purchase for refund "
                    f"(payment_id={event.payment_id!r}, checkout_id={event.checkout_id!r})"
                )
                raise NotFoundError(msg)

            now = utc_now()
            changed = False
            if transaction is not None and transaction.status != PaymentStatus.REFUNDED:
                transaction.status = PaymentStatus.REFUNDED
                transaction.updated_at = now
                session.add(transaction)
                changed = True
            if purchase is not None and purchase.status != PurchaseStatus.REFUNDED:
                purchase.tokens_remaining = 0
                purchase.status = PurchaseStatus.REFUNDED
                purchase.refunded_at = now
                session.add(purchase)
                changed = True

            purchase_id = purchase.id if purchase else None
            if not changed:
                logger.info("order_refunded_duplicate", payment_id=event.payment_id)
                return
            await session.commit()

        logger.info(
            "order_refunded",
            payment_id=event.payment_id,
            checkout_id=event.checkout_id,
            purchase_id=purchase_id,
        )

    async def payment_failed(self, event: PaymentFailed) -> None:
        async with AsyncSession(self._engine) as session:
            if await _payment_exists(session, event.payment_id):
                logger.info("payment_failed_duplicate", payment_id=event.payment_id)
                return

            user = await _resolve_user(session, event.provider, event.customer)
            user_id = user.id
            session.add(
                PaymentTransaction(
                    user_id=user_id,
                    amount=event.amount_minor / 100,
                    currency=event.currency,
                    status=PaymentStatus.FAILED,
                    provider=event.provider,
                    provider_payment_id=event.payment_id,
                    failure_reason=event.reason,
                )
            )
            if not await _commit_once(session, "payment_failed_duplicate", event.payment_id):
                return

        logger.warning(
            "payment_failed", user_id=user_id, payment_id=event.payment_id, reason=event.reason
        )


# --- Helpers ---


async def _resolve_user(
    session: AsyncSession, provider: PaymentProvider, customer: CustomerRef
) -> User:
    """Find the paying user by id, then provider customer id, then email.

    The provider customer id is remembered on the user so later events that
    carry only the customer id still resolve.
    """
    field = _CUSTOMER_ID_FIELDS[provider]
    user: User | None = None

    if customer.user_id:
        user = await session.get(User, customer.user_id)
    if user is None and customer.provider_customer_id:
        stmt = select(User).where(getattr(User, field) == customer.provider_customer_id)
        user = (await session.execute(stmt)).scalars().first()
    if user is None and customer.email:
        stmt = select(User).where(col(User.email) == customer.email)
        user = (await session.execute(stmt)).scalars().first()

    if user is None:
        msg = (
            f"No user for {provider} customer "
            f"(user_id={customer.user_id!r}, customer_id={customer.provider_customer_id!r})"
        )
        raise NotFoundError(msg)

    if customer.provider_customer_id and getattr(user, field) is None:
        setattr(user, field, customer.provider_customer_id)
        user.updated_at = utc_now()
        session.add(user)
    return user


async def _subscription_for(
    session: AsyncSession, user_id: str, provider_subscription_id: str | None
) -> Subscription:
    """Load the user's single subscription row, creating it when missing."""
    subscription: Subscription | None = None
    if provider_subscription_id:
        stmt = select(Subscription).where(
            col(Subscription.provider_subscription_id) == provider_subscription_id
        )
        subscription = (await session.execute(stmt)).scalars().first()
        if subscription is not None and subscription.user_id != user_id:
            logger.warning(
                "subscription_owner_mismatch",
                subscription_id=provider_subscription_id,
                stored_user_id=subscription.user_id,
                user_id=user_id,
            )
            subscription = None
    if subscription is None:
        stmt = select(Subscription).where(col(Subscription.user_id) == user_id)
        subscription = (await session.execute(stmt)).scalars().first()
    if subscription is None:
        subscription = Subscription(user_id=user_id)
    return subscription


async def _payment_exists(session: AsyncSession, payment_id: str | None) -> bool:
    if not payment_id:
        return False
    stmt = select(PaymentTransaction.id).where(
        col(PaymentTransaction.provider_payment_id) == payment_id
    )
    return (await session.execute(stmt)).first() is not None


async def _purchase_for(
    session: AsyncSession, payment_id: str | None, checkout_id: str | None
) -> TokenPurchase | None:
    clauses = []
    if payment_id:
        clauses.append(col(TokenPurchase.payment_id) == payment_id)
    if checkout_id:
        clauses.append(col(TokenPurchase.checkout_id) == checkout_id)
    if not clauses:
        return None
    stmt = select(TokenPurchase).where(or_(*clauses))
    return (await session.execute(stmt)).scalars().first()


async def _commit_once(
    session: AsyncSession,
    duplicate_event: str,
    payment_id: str,
    checkout_id: str | None = None,
) -> bool:
    """Commit, treating a lost insert race on this payment as an already-applied event.

    Any other unique-key violation is re-raised so the delivery is recorded as failed.
    """
    try:
        await session.commit()
    except IntegrityError:
        await session.rollback()
        if await _payment_exists(session, payment_id) or (
            checkout_id and await _purchase_for(session, None, checkout_id)
        ):
            logger.info(duplicate_event, payment_id=payment_id, reason="unique_conflict")
            return False
        logger.error("billing_write_conflict", payment_id=payment_id, checkout_id=checkout_id)
        raise
    return True


def _transaction(event: OrderPaid, user_id: str, status: PaymentStatus) -> PaymentTransaction:
    metadata = {
        key: value
        for key, value in (
            ("product_id", event.product_id),
            ("subscription_id", event.subscription_id),
        )
        if value
    }
    return PaymentTransaction(
        user_id=user_id,
        amount=event.amount_minor / 100,
        currency=event.currency,
        status=status,
        provider=event.provider,
        provider_payment_id=event.payment_id,
        checkout_id=event.checkout_id,
        billing_reason=str(event.billing_reason),
        metadata_json=json.dumps(metadata) if metadata else None,
    )

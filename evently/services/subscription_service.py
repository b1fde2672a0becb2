"""Subscription service: store operations for subscriptions and users."""

import logging
import uuid
from collections.abc import Mapping
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from evently.billing.events import BillingMetadata, SubscriptionSnapshot
from evently.billing.plans import FREE_PLAN_ID, get_plan, resolve_plan_id
from evently.billing.stripe_client import StripeGateway
from evently.database import utcnow
from evently.models.subscription import BILLING_INTERVALS, Subscription
from evently.models.user import User

logger = logging.getLogger(__name__)


def parse_user_id(raw: str | None) -> uuid.UUID | None:
    """Parse a user ID from Stripe metadata. Returns None if absent or malformed."""
    if not raw:
        return None
    try:
        return uuid.UUID(str(raw))
    except ValueError:
        return None


async def lock_user(db: AsyncSession, user_id: uuid.UUID) -> User | None:
    """Load the user row with ``FOR UPDATE``, serializing plan transitions per user."""
    result = await db.execute(select(User).where(User.id == user_id).with_for_update())
    return result.scalar_one_or_none()


async def get_active_subscriptions(db: AsyncSession, user_id: uuid.UUID) -> list[Subscription]:
    """All active rows for a user, newest first."""
    result = await db.execute(
        select(Subscription)
        .where(Subscription.user_id == user_id, Subscription.status == "active")
        .order_by(Subscription.created_at.desc())
    )
    return list(result.scalars().all())


async def get_active_subscription(db: AsyncSession, user_id: uuid.UUID) -> Subscription | None:
    """The authoritative current row: the most recently created active one."""
    active = await get_active_subscriptions(db, user_id)
    return active[0] if active else None


async def get_subscription_by_external_id(
    db: AsyncSession, external_subscription_id: str
) -> Subscription | None:
    """Look up subscription by Stripe subscription ID (used by webhooks)."""
    result = await db.execute(
        select(Subscription).where(
            Subscription.external_subscription_id == external_subscription_id
        )
    )
    return result.scalar_one_or_none()


async def expire_active_subscriptions(
    db: AsyncSession,
    user_id: uuid.UUID,
    ended_at: datetime | None = None,
    keep: Subscription | None = None,
) -> list[Subscription]:
    """Mark the user's active rows ``expired`` (except ``keep``).

    A row that already ended earlier than ``ended_at`` keeps its end date.
    """
    ended_at = ended_at or utcnow()
    expired = []
    for subscription in await get_active_subscriptions(db, user_id):
        if keep is not None and subscription.id == keep.id:
            continue
        subscription.status = "expired"
        if subscription.end_date is None or subscription.end_date > ended_at:
            subscription.end_date = ended_at
        expired.append(subscription)
    if expired:
        await db.flush()
        logger.info(
            "Expired %d active subscription(s) for user %s",
            len(expired),
            user_id,
        )
    return expired


async def settle_active_subscriptions(db: AsyncSession, user_id: uuid.UUID) -> Subscription | None:
    """Collapse the user to a single active row: the newest one wins."""
    current = await get_active_subscription(db, user_id)
    if current is not None:
        await expire_active_subscriptions(db, user_id, keep=current)
    return current


async def create_subscription(
    db: AsyncSession,
    user_id: uuid.UUID,
    plan_id: str,
    status: str = "active",
    billing_interval: str = "monthly",
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    next_billing_date: datetime | None = None,
    auto_renew: bool = True,
    external_subscription_id: str | None = None,
    external_customer_id: str | None = None,
    external_price_id: str | None = None,
) -> Subscription:
    """Insert a subscription row. Callers expire the previous active row first."""
    subscription = Subscription(
        user_id=user_id,
        plan_id=plan_id,
        status=status,
        billing_interval=billing_interval,
        start_date=start_date or utcnow(),
        end_date=end_date,
        next_billing_date=next_billing_date,
        auto_renew=auto_renew,
        external_subscription_id=external_subscription_id,
        external_customer_id=external_customer_id,
        external_price_id=external_price_id,
    )
    db.add(subscription)
    await db.flush()
    logger.info(
        "Created subscription %s for user %s: plan=%s (%s), status=%s",
        subscription.id,
        user_id,
        plan_id,
        get_plan(plan_id).display_name,
        status,
    )
    return subscription


async def create_free_subscription(db: AsyncSession, user_id: uuid.UUID) -> Subscription:
    """Insert an active free row (no Stripe subscription behind it)."""
    return await create_subscription(db, user_id=user_id, plan_id=FREE_PLAN_ID)


def normalize_status(provider_status: str | None) -> str:
    """Map a Stripe subscription status onto the local lifecycle.

    Statuses without a local counterpart (incomplete, unpaid, paused, ...) become ``expired``.
    """
    if provider_status in ("active", "past_due", "canceled", "trialing"):
        return provider_status
    return "expired"


async def open_subscription_from_stripe(
    db: AsyncSession,
    user_id: uuid.UUID,
    snapshot: SubscriptionSnapshot,
    metadata: BillingMetadata,
    price_map: Mapping[str, str],
    status: str = "active",
    external_customer_id: str | None = None,
) -> Subscription:
    """Expire the user's current plan and insert the row for a Stripe subscription.

    Both writes run in the caller's transaction with the user row locked.
    Prior active rows are only superseded when the new row is itself active.
    """
    if status == "active":
        await expire_active_subscriptions(db, user_id)

    interval = metadata.billing_interval if metadata.billing_interval in BILLING_INTERVALS else "monthly"
    return await create_subscription(
        db,
        user_id=user_id,
        plan_id=resolve_plan_id(price_map, metadata.plan_id, snapshot.price_id),
        status=status,
        billing_interval=interval,
        start_date=snapshot.current_period_start,
        end_date=snapshot.current_period_end,
        next_billing_date=snapshot.current_period_end,
        auto_renew=not snapshot.cancel_at_period_end,
        external_subscription_id=snapshot.id,
        external_customer_id=external_customer_id or snapshot.customer_id,
        external_price_id=snapshot.price_id,
    )


async def get_or_create_current_subscription(db: AsyncSession, user: User) -> Subscription:
    """Get the user's current subscription, creating a free one if they have none."""
    subscription = await get_active_subscription(db, user.id)
    if subscription is not None:
        return subscription

    logger.info("Creating free-tier subscription for user %s", user.id)
    return await create_free_subscription(db, user.id)


async def ensure_stripe_customer(db: AsyncSession, gateway: StripeGateway, user: User) -> str:
    """Ensure the user has a Stripe customer ID. Create one if missing."""
    if user.stripe_customer_id:
        return user.stripe_customer_id

    customer = await gateway.create_customer(
        email=user.email,
        name=user.name or user.email,
        user_id=str(user.id),
    )
    user.stripe_customer_id = customer.id
    await db.flush()
    logger.info("Linked Stripe customer %s to user %s", customer.id, user.id)
    return customer.id


async def mark_cancel_requested(db: AsyncSession, subscription: Subscription) -> Subscription:
    """Record a cancel-at-period-end request locally."""
    subscription.auto_renew = False
    subscription.canceled_at = utcnow()
    await db.flush()
    logger.info(
        "Subscription %s (user %s) set to cancel at period end",
        subscription.id,
        subscription.user_id,
    )
    return subscription

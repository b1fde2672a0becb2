"""Subscription reconciliation: converge local subscriptions to Stripe's state.

Deliveries are at-least-once and unordered, so every handler:

* looks the subscription up by its Stripe ID and tolerates it being missing,
* checks for an existing row or ledger entry before inserting (replays no-op),
* writes only inside the caller's transaction, one transaction per delivery.
"""

import enum
import logging
from collections.abc import Mapping

from sqlalchemy.ext.asyncio import AsyncSession

from evently.billing.events import (
    BillingEvent,
    CheckoutCompleted,
    InvoicePaid,
    InvoicePaymentFailed,
    SubscriptionDeleted,
    SubscriptionSnapshot,
    SubscriptionUpdated,
)
from evently.billing.fallback import FallbackResolver
from evently.billing.ledger import get_invoice_by_external_id, record_invoice_payment
from evently.billing.plans import FREE_PLAN_ID, get_plan_id_by_price_id
from evently.billing.stripe_client import StripeGateway
from evently.database import utcnow
from evently.models.subscription import Subscription
from evently.services.subscription_service import (
    create_free_subscription,
    get_active_subscriptions,
    get_subscription_by_external_id,
    lock_user,
    normalize_status,
    open_subscription_from_stripe,
    parse_user_id,
    settle_active_subscriptions,
)

logger = logging.getLogger(__name__)


class Outcome(str, enum.Enum):
    """What a delivery did to local state."""

    APPLIED = "applied"
    DUPLICATE = "duplicate"  # already reflected locally
    SKIPPED = "skipped"  # nothing to do for this payload
    UNRESOLVED = "unresolved"  # could not be attributed to a user or subscription


class SubscriptionReconciler:
    """Applies classified Stripe events to the subscription and invoice tables."""

    def __init__(self, gateway: StripeGateway, price_map: Mapping[str, str]) -> None:
        self.gateway = gateway
        self.price_map = price_map
        self.fallback = FallbackResolver(gateway, price_map)
        self._handlers = {
            CheckoutCompleted: self.handle_checkout_completed,
            InvoicePaid: self.handle_invoice_paid,
            InvoicePaymentFailed: self.handle_invoice_payment_failed,
            SubscriptionUpdated: self.handle_subscription_updated,
            SubscriptionDeleted: self.handle_subscription_deleted,
        }

    async def apply(self, db: AsyncSession, event: BillingEvent) -> Outcome:
        """Dispatch a classified event to its handler."""
        handler = self._handlers[type(event)]
        return await handler(db, event)

    async def handle_checkout_completed(self, db: AsyncSession, event: CheckoutCompleted) -> Outcome:
        """checkout.session.completed: supersede the user's plan with the new subscription."""
        subscription_id = event.external_subscription_id
        if not subscription_id:
            logger.info("Checkout session %s has no subscription (one-time?), skipping", event.session_id)
            return Outcome.SKIPPED

        if await get_subscription_by_external_id(db, subscription_id) is not None:
            logger.info(
                "Subscription %s already stored (checkout %s), nothing to do",
                subscription_id,
                event.session_id,
            )
            return Outcome.DUPLICATE

        snapshot = await self.fallback.fetch(subscription_id)
        if snapshot is None:
            return Outcome.UNRESOLVED

        metadata = event.metadata.merged_with(snapshot.metadata)
        user_id = parse_user_id(metadata.user_id)
        user = await lock_user(db, user_id) if user_id is not None else None
        if user is None:
            logger.warning(
                "Checkout %s for subscription %s has no resolvable user (%r), dropping",
                event.session_id,
                subscription_id,
                metadata.user_id,
            )
            return Outcome.UNRESOLVED

        # Re-check under the user lock: a concurrent delivery may have inserted it
        if await get_subscription_by_external_id(db, subscription_id) is not None:
            return Outcome.DUPLICATE

        # A subscription Stripe already ended must not supersede the current plan
        row_status = "active" if snapshot.status in ("active", "trialing") else normalize_status(snapshot.status)
        subscription = await open_subscription_from_stripe(
            db,
            user_id=user.id,
            snapshot=snapshot,
            metadata=metadata,
            price_map=self.price_map,
            status=row_status,
            external_customer_id=event.external_customer_id,
        )
        await settle_active_subscriptions(db, user.id)
        logger.info(
            "Checkout completed: subscription %s stored on plan %s for user %s (status=%s)",
            subscription_id,
            subscription.plan_id,
            user.id,
            subscription.status,
        )
        return Outcome.APPLIED

    async def handle_invoice_paid(self, db: AsyncSession, event: InvoicePaid) -> Outcome:
        """invoice.paid: confirm the subscription active and append the invoice to the ledger."""
        invoice = event.invoice
        subscription_id = invoice.subscription_id
        if not subscription_id:
            logger.info("Invoice %s has no subscription (one-time), skipping", invoice.id)
            return Outcome.SKIPPED

        subscription = await get_subscription_by_external_id(db, subscription_id)
        if subscription is None:
            logger.info(
                "Invoice %s paid for unknown subscription %s, reconstructing from Stripe",
                invoice.id,
                subscription_id,
            )
            subscription = await self.fallback.resolve(db, subscription_id)
        if subscription is None:
            logger.warning(
                "No subscription could be resolved for %s (invoice %s), dropping",
                subscription_id,
                invoice.id,
            )
            return Outcome.UNRESOLVED

        if await get_invoice_by_external_id(db, invoice.id) is not None:
            logger.info("Invoice %s already applied, nothing to do", invoice.id)
            return Outcome.DUPLICATE

        if subscription.status != "active":
            await lock_user(db, subscription.user_id)
            subscription.status = "active"
        subscription.last_payment_date = invoice.paid_at or utcnow()
        if invoice.period_end is not None:
            subscription.next_billing_date = invoice.period_end
        await db.flush()
        await settle_active_subscriptions(db, subscription.user_id)

        entry = await record_invoice_payment(db, subscription, invoice)
        logger.info("Invoice paid: subscription %s confirmed active", subscription_id)
        return Outcome.APPLIED if entry is not None else Outcome.DUPLICATE

    async def handle_invoice_payment_failed(self, db: AsyncSession, event: InvoicePaymentFailed) -> Outcome:
        """invoice.payment_failed: mark past_due. Never reconstructs, never writes the ledger."""
        subscription_id = event.external_subscription_id
        if not subscription_id:
            logger.info(
                "Invoice %s has no subscription (one-time), skipping payment failure",
                event.invoice_id,
            )
            return Outcome.SKIPPED

        subscription = await get_subscription_by_external_id(db, subscription_id)
        if subscription is None:
            logger.warning(
                "No local subscription found for Stripe subscription %s (payment failed)",
                subscription_id,
            )
            return Outcome.SKIPPED

        if subscription.status == "past_due":
            return Outcome.DUPLICATE

        subscription.status = "past_due"
        await db.flush()
        logger.info("Payment failed: subscription %s marked as past_due", subscription_id)
        return Outcome.APPLIED

    async def handle_subscription_updated(self, db: AsyncSession, event: SubscriptionUpdated) -> Outcome:
        """customer.subscription.updated: sync status, plan, period and renewal flag."""
        stripe_sub = event.subscription
        subscription = await get_subscription_by_external_id(db, stripe_sub.id)
        if subscription is None:
            logger.info("Update for unknown subscription %s, reconstructing from Stripe", stripe_sub.id)
            created = await self.fallback.resolve(db, stripe_sub.id)
            if created is None:
                return Outcome.UNRESOLVED
            await settle_active_subscriptions(db, created.user_id)
            return Outcome.APPLIED

        await lock_user(db, subscription.user_id)
        self._apply_snapshot(subscription, stripe_sub)
        await db.flush()
        await settle_active_subscriptions(db, subscription.user_id)
        logger.info(
            "Subscription updated: %s -> plan=%s, status=%s, auto_renew=%s",
            stripe_sub.id,
            subscription.plan_id,
            subscription.status,
            subscription.auto_renew,
        )
        return Outcome.APPLIED

    def _apply_snapshot(self, subscription: Subscription, stripe_sub: SubscriptionSnapshot) -> None:
        subscription.status = normalize_status(stripe_sub.status)
        if stripe_sub.current_period_end is not None:
            subscription.end_date = stripe_sub.current_period_end
            subscription.next_billing_date = stripe_sub.current_period_end
        subscription.auto_renew = not stripe_sub.cancel_at_period_end
        # Payloads without items keep the current plan
        if stripe_sub.price_id:
            subscription.external_price_id = stripe_sub.price_id
            subscription.plan_id = get_plan_id_by_price_id(self.price_map, stripe_sub.price_id)

    async def handle_subscription_deleted(self, db: AsyncSession, event: SubscriptionDeleted) -> Outcome:
        """customer.subscription.deleted: expire the row and fall back to the free plan."""
        stripe_sub = event.subscription
        subscription = await get_subscription_by_external_id(db, stripe_sub.id)

        user_id = subscription.user_id if subscription is not None else parse_user_id(stripe_sub.metadata.user_id)
        user = await lock_user(db, user_id) if user_id is not None else None
        if user is None:
            logger.warning(
                "Deleted subscription %s cannot be attributed to a user, dropping",
                stripe_sub.id,
            )
            return Outcome.UNRESOLVED

        changed = False
        if subscription is not None and subscription.status != "expired":
            subscription.status = "expired"
            subscription.end_date = utcnow()
            subscription.auto_renew = False
            await db.flush()
            changed = True
            logger.info("Subscription deleted: %s expired", stripe_sub.id)

        # Every user keeps a resolvable current plan. A different paid
        # subscription that is still active already is one.
        active = await get_active_subscriptions(db, user.id)
        has_free = any(s.plan_id == FREE_PLAN_ID for s in active)
        has_other_paid = any(s.external_subscription_id not in (None, stripe_sub.id) for s in active)
        if not has_free and not has_other_paid:
            await create_free_subscription(db, user.id)
            changed = True
            logger.info("User %s downgraded to free tier", user.id)

        await settle_active_subscriptions(db, user.id)
        return Outcome.APPLIED if changed else Outcome.DUPLICATE

"""Fallback reconstruction of subscriptions that webhooks reference but we never stored.

Stripe does not order deliveries across event types, so an invoice or
subscription update can arrive before the checkout that creates the row.
Instead of failing, rebuild the row from Stripe's own subscription, using
the metadata attached at checkout to find the owning user.
"""

import logging
from collections.abc import Mapping

import stripe
from sqlalchemy.ext.asyncio import AsyncSession

from evently.billing.events import SubscriptionSnapshot
from evently.billing.stripe_client import StripeGateway
from evently.models.subscription import Subscription
from evently.services.subscription_service import (
    get_subscription_by_external_id,
    lock_user,
    normalize_status,
    open_subscription_from_stripe,
    parse_user_id,
)

logger = logging.getLogger(__name__)


class FallbackResolver:
    """Rebuilds a missing local subscription from authoritative Stripe state."""

    def __init__(self, gateway: StripeGateway, price_map: Mapping[str, str]) -> None:
        self.gateway = gateway
        self.price_map = price_map

    async def fetch(self, external_subscription_id: str) -> SubscriptionSnapshot | None:
        """Retrieve the subscription from Stripe. None if Stripe does not know it.

        Raises:
            ProviderUnavailableError: Stripe timed out or was unreachable.
        """
        try:
            stripe_sub = await self.gateway.get_subscription(external_subscription_id)
        except stripe.InvalidRequestError as e:
            logger.warning(
                "Stripe has no subscription %s, cannot reconstruct: %s",
                external_subscription_id,
                e,
            )
            return None
        return SubscriptionSnapshot.from_stripe(stripe_sub)

    async def resolve(self, db: AsyncSession, external_subscription_id: str) -> Subscription | None:
        """Create the local row for ``external_subscription_id`` from Stripe.

        Returns the new row, or None (with nothing written) when the
        subscription cannot be attributed to a known user.
        """
        snapshot = await self.fetch(external_subscription_id)
        if snapshot is None:
            return None

        user_id = parse_user_id(snapshot.metadata.user_id)
        if user_id is None:
            logger.warning(
                "Stripe subscription %s carries no usable user_id metadata (%r), skipping reconstruction",
                external_subscription_id,
                snapshot.metadata.user_id,
            )
            return None

        user = await lock_user(db, user_id)
        if user is None:
            logger.warning(
                "Stripe subscription %s references unknown user %s, skipping reconstruction",
                external_subscription_id,
                user_id,
            )
            return None

        # Another delivery may have created it while we were talking to Stripe
        existing = await get_subscription_by_external_id(db, external_subscription_id)
        if existing is not None:
            return existing

        subscription = await open_subscription_from_stripe(
            db,
            user_id=user.id,
            snapshot=snapshot,
            metadata=snapshot.metadata,
            price_map=self.price_map,
            status=normalize_status(snapshot.status),
        )
        logger.info(
            "Reconstructed subscription %s for user %s from Stripe (status=%s)",
            external_subscription_id,
            user.id,
            subscription.status,
        )
        return subscription

"""Async Stripe API wrapper for Evently."""

import asyncio
import logging
from collections.abc import Awaitable, Mapping
from datetime import datetime, timezone
from typing import TypeVar

import stripe
from stripe import StripeClient

from evently.billing.exceptions import ProviderUnavailableError
from evently.config import Settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Errors worth a redelivery: nothing about the request itself was wrong
_TRANSIENT_ERRORS = (stripe.APIConnectionError, stripe.RateLimitError, stripe.APIError)


class StripeGateway:
    """Outbound calls to Stripe plus webhook signature verification.

    Built from explicit keys so the webhook pipeline never reaches for
    module-level Stripe configuration.
    """

    def __init__(
        self,
        secret_key: str,
        webhook_secret: str,
        timeout_seconds: float = 10.0,
        max_network_retries: int = 1,
    ) -> None:
        self.webhook_secret = webhook_secret
        self.timeout_seconds = timeout_seconds
        self._client = StripeClient(
            secret_key,
            http_client=stripe.HTTPXClient(timeout=timeout_seconds),
            max_network_retries=max_network_retries,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "StripeGateway":
        return cls(
            secret_key=settings.stripe_secret_key,
            webhook_secret=settings.stripe_webhook_secret,
            timeout_seconds=settings.stripe_timeout_seconds,
            max_network_retries=settings.stripe_max_network_retries,
        )

    async def _call(self, operation: str, awaitable: Awaitable[T]) -> T:
        """Await a Stripe call under a hard deadline, translating transient failures."""
        try:
            return await asyncio.wait_for(awaitable, timeout=self.timeout_seconds)
        except asyncio.TimeoutError as e:
            logger.warning("Stripe %s timed out after %.1fs", operation, self.timeout_seconds)
            raise ProviderUnavailableError(f"Stripe {operation} timed out") from e
        except _TRANSIENT_ERRORS as e:
            logger.warning("Stripe %s failed transiently: %s", operation, e)
            raise ProviderUnavailableError(f"Stripe {operation} failed: {e}") from e

    def construct_event(self, payload: bytes, sig_header: str) -> stripe.Event:
        """Verify and construct a Stripe webhook event (synchronous).

        Raises:
            stripe.SignatureVerificationError: signature does not match the secret.
            ValueError: payload is not valid JSON.
        """
        return self._client.construct_event(payload, sig_header, self.webhook_secret)

    async def get_subscription(self, subscription_id: str) -> stripe.Subscription:
        """Retrieve a Stripe subscription by ID."""
        return await self._call(
            "subscription retrieve",
            self._client.v1.subscriptions.retrieve_async(subscription_id),
        )

    async def create_customer(self, email: str, name: str, user_id: str) -> stripe.Customer:
        """Create a Stripe customer linked to an Evently user."""
        logger.info("Creating Stripe customer for user %s (%s)", user_id, email)
        customer = await self._call(
            "customer create",
            self._client.v1.customers.create_async(
                params={
                    "email": email,
                    "name": name,
                    "metadata": {"user_id": user_id},
                }
            ),
        )
        logger.info("Created Stripe customer %s for user %s", customer.id, user_id)
        return customer

    async def create_checkout_session(
        self,
        customer_id: str,
        price_id: str,
        success_url: str,
        cancel_url: str,
        metadata: Mapping[str, str],
    ) -> stripe.checkout.Session:
        """Create a Stripe Checkout Session for a plan subscription.

        The metadata goes on both the session and the subscription it creates,
        so later subscription and invoice webhooks can be attributed to the
        user even when the checkout webhook never arrives.
        """
        logger.info(
            "Creating checkout session for customer %s, price %s",
            customer_id,
            price_id,
        )
        return await self._call(
            "checkout session create",
            self._client.v1.checkout.sessions.create_async(
                params={
                    "mode": "subscription",
                    "customer": customer_id,
                    "line_items": [{"price": price_id, "quantity": 1}],
                    "success_url": success_url,
                    "cancel_url": cancel_url,
                    "metadata": dict(metadata),
                    "subscription_data": {"metadata": dict(metadata)},
                    "allow_promotion_codes": True,
                    "client_reference_id": metadata.get("user_id"),
                }
            ),
        )

    async def create_portal_session(
        self, customer_id: str, return_url: str
    ) -> stripe.billing_portal.Session:
        """Create a Stripe Customer Portal session for subscription management."""
        logger.info("Creating portal session for customer %s", customer_id)
        return await self._call(
            "portal session create",
            self._client.v1.billing_portal.sessions.create_async(
                params={
                    "customer": customer_id,
                    "return_url": return_url,
                }
            ),
        )

    async def cancel_at_period_end(self, subscription_id: str, user_id: str) -> stripe.Subscription:
        """Schedule cancellation at the end of the current period (not immediately)."""
        logger.info("Scheduling cancellation of Stripe subscription %s", subscription_id)
        return await self._call(
            "subscription update",
            self._client.v1.subscriptions.update_async(
                subscription_id,
                params={
                    "cancel_at_period_end": True,
                    "metadata": {
                        "canceled_by": user_id,
                        "canceled_at": datetime.now(timezone.utc).isoformat(),
                    },
                },
            ),
        )

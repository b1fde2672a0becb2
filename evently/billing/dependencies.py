"""Billing dependencies: Stripe gateway and reconciler built from settings.

Routers receive these through ``Depends`` so tests can override them.
"""

from functools import lru_cache

from fastapi import Depends

from evently.billing.plans import build_price_map
from evently.billing.reconciler import SubscriptionReconciler
from evently.billing.stripe_client import StripeGateway
from evently.config import settings


@lru_cache
def get_stripe_gateway() -> StripeGateway:
    """One gateway (and HTTP connection pool) per process."""
    return StripeGateway.from_settings(settings)


def get_price_map() -> dict[str, str]:
    """Stripe price ID -> plan ID, from the configured price IDs."""
    return build_price_map(settings.stripe_price_ids)


def get_reconciler(
    gateway: StripeGateway = Depends(get_stripe_gateway),
    price_map: dict[str, str] = Depends(get_price_map),
) -> SubscriptionReconciler:
    return SubscriptionReconciler(gateway, price_map)


def get_retry_on_transient() -> bool:
    """Whether a rolled-back transient failure asks Stripe to redeliver (503)."""
    return settings.webhook_retry_on_transient

"""Create Stripe products and prices for the paid plans in test mode.

Run once:
    python -m evently.billing.scripts.create_stripe_products

Outputs price IDs to set in .env:
    STRIPE_PRICE_STARTER_MONTHLY=price_xxx
    STRIPE_PRICE_STARTER_YEARLY=price_xxx
    ...
"""

import asyncio

import stripe
from stripe import StripeClient

from evently.billing.plans import PLANS
from evently.config import settings

_INTERVALS = {"monthly": "month", "yearly": "year"}


async def main() -> None:
    if not settings.stripe_secret_key:
        print("ERROR: STRIPE_SECRET_KEY is not set in .env")
        return

    client = StripeClient(
        settings.stripe_secret_key,
        http_client=stripe.HTTPXClient(),
    )

    env_lines = []
    for plan in PLANS.values():
        if not plan.is_paid:
            continue

        product = await client.v1.products.create_async(
            params={
                "name": f"Evently {plan.display_name}",
                "description": (
                    f"{plan.max_events or 'Unlimited'} events, "
                    f"{plan.max_attendees_per_event or 'unlimited'} attendees/event, "
                    f"{plan.max_team_members} team members, {plan.support_level} support"
                ),
                "metadata": {"plan_id": plan.plan_id},
            }
        )
        print(f"Created product: {product.name} ({product.id})")

        for interval, stripe_interval in _INTERVALS.items():
            amount = plan.price_monthly_cents if interval == "monthly" else plan.price_yearly_cents
            price = await client.v1.prices.create_async(
                params={
                    "product": product.id,
                    "unit_amount": amount,
                    "currency": "eur",
                    "recurring": {"interval": stripe_interval},
                    "metadata": {"plan_id": plan.plan_id, "billing_interval": interval},
                }
            )
            print(f"  Price: €{amount / 100:.2f}/{stripe_interval} ({price.id})")
            env_lines.append(f"STRIPE_PRICE_{plan.plan_id.upper()}_{interval.upper()}={price.id}")

    print("\n--- Add these to your .env ---")
    for line in env_lines:
        print(line)


if __name__ == "__main__":
    asyncio.run(main())

"""Test helpers: users, auth headers and Stripe webhook payloads."""

import hashlib
import hmac
import json
import time
import uuid
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from evently.auth.jwt import create_access_token
from evently.models.invoice import Invoice
from evently.models.subscription import Subscription
from evently.models.user import User

WEBHOOK_SECRET = "whsec_test_secret"

PRICE_MAP = {
    "price_starter_monthly": "starter",
    "price_pro_monthly": "pro",
    "price_pro_yearly": "pro",
    "price_business_monthly": "business",
}

# 2024-02-01 / 2024-03-01 UTC
PERIOD_START = 1706745600
PERIOD_END = 1709251200


def naive(ts: int) -> datetime:
    return datetime.fromtimestamp(ts, tz=timezone.utc).replace(tzinfo=None)


async def create_user(
    db_session: AsyncSession,
    plan_id: str | None = "free",
    stripe_customer_id: str | None = None,
    is_active: bool = True,
) -> User:
    """Create and commit a user, with an active row on ``plan_id`` unless it is None."""
    unique = uuid.uuid4().hex[:8]
    user = User(
        email=f"organizer-{unique}@test.com",
        name="Test Organizer",
        is_active=is_active,
        stripe_customer_id=stripe_customer_id,
    )
    db_session.add(user)
    await db_session.flush()

    if plan_id is not None:
        db_session.add(Subscription(user_id=user.id, plan_id=plan_id, status="active", start_date=datetime(2024, 1, 1)))
    await db_session.commit()
    return user


def auth_headers_for(user: User) -> dict[str, str]:
    token = create_access_token({"sub": str(user.id)})
    return {"Authorization": f"Bearer {token}"}


# ---------------------------------------------------------------------------
# Stripe payloads (plain dicts, shaped like the API objects)
# ---------------------------------------------------------------------------


def make_stripe_subscription(
    sub_id: str = "sub_test_123",
    price_id: str | None = "price_pro_monthly",
    status: str = "active",
    period_start: int = PERIOD_START,
    period_end: int = PERIOD_END,
    cancel_at_period_end: bool = False,
    customer: str = "cus_test_123",
    metadata: dict | None = None,
) -> dict:
    """A Stripe Subscription; the period sits on the item (API 2025-08-27 basil)."""
    items = []
    if price_id is not None:
        items.append(
            {
                "id": f"si_{uuid.uuid4().hex[:8]}",
                "price": {"id": price_id},
                "current_period_start": period_start,
                "current_period_end": period_end,
            }
        )
    return {
        "id": sub_id,
        "object": "subscription",
        "customer": customer,
        "status": status,
        "cancel_at_period_end": cancel_at_period_end,
        "items": {"object": "list", "data": items},
        "metadata": metadata or {},
    }


def make_checkout_session(
    subscription: str | None = "sub_test_123",
    customer: str = "cus_test_123",
    metadata: dict | None = None,
) -> dict:
    return {
        "id": f"cs_test_{uuid.uuid4().hex[:8]}",
        "object": "checkout.session",
        "mode": "subscription",
        "customer": customer,
        "subscription": subscription,
        "metadata": metadata or {},
    }


def make_invoice(
    invoice_id: str = "in_test_123",
    subscription: str | None = "sub_test_123",
    amount_paid: int = 4900,
    period_start: int = PERIOD_START,
    period_end: int = PERIOD_END,
    paid_at: int | None = PERIOD_START + 60,
) -> dict:
    """A paid Stripe Invoice. The subscription ID lives under ``parent`` in newer API versions."""
    return {
        "id": invoice_id,
        "object": "invoice",
        "customer": "cus_test_123",
        "amount_paid": amount_paid,
        "currency": "EUR",
        "billing_reason": "subscription_cycle",
        "status": "paid",
        "parent": {"subscription_details": {"subscription": subscription}},
        "lines": {"data": [{"period": {"start": period_start, "end": period_end}}]},
        "period_start": period_start,
        "period_end": period_start,
        "status_transitions": {"paid_at": paid_at},
        "invoice_pdf": f"https://pay.stripe.com/invoice/{invoice_id}/pdf",
    }


def make_event(event_type: str, data_object: dict) -> dict:
    return {
        "id": f"evt_test_{uuid.uuid4().hex[:8]}",
        "object": "event",
        "type": event_type,
        "data": {"object": data_object},
    }


def sign_payload(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp: int | None = None) -> str:
    """Build a ``Stripe-Signature`` header for ``payload``."""
    timestamp = int(time.time()) if timestamp is None else timestamp
    signed = f"{timestamp}.{payload.decode('utf-8')}".encode("utf-8")
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def signed_request(event: dict, secret: str = WEBHOOK_SECRET) -> tuple[bytes, dict[str, str]]:
    """Body and headers for a webhook POST."""
    body = json.dumps(event).encode("utf-8")
    return body, {"stripe-signature": sign_payload(body, secret), "content-type": "application/json"}


# ---------------------------------------------------------------------------
# Reading committed state (a fresh session bypasses the identity map)
# ---------------------------------------------------------------------------


async def fetch_subscriptions(
    session_factory: async_sessionmaker[AsyncSession], user_id: uuid.UUID | None = None
) -> list[Subscription]:
    """Committed subscription rows, oldest first."""
    query = select(Subscription).order_by(Subscription.created_at)
    if user_id is not None:
        query = query.where(Subscription.user_id == user_id)
    async with session_factory() as session:
        result = await session.execute(query)
        return list(result.scalars().all())


async def fetch_invoices(session_factory: async_sessionmaker[AsyncSession]) -> list[Invoice]:
    async with session_factory() as session:
        result = await session.execute(select(Invoice).order_by(Invoice.paid_at))
        return list(result.scalars().all())


def active_rows(subscriptions: list[Subscription]) -> list[Subscription]:
    return [s for s in subscriptions if s.status == "active"]

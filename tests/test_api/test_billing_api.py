"""Tests for billing API endpoints with mocked Stripe calls."""

from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest
import stripe
from httpx import AsyncClient
from sqlalchemy import select

from evently.billing.events import InvoiceSnapshot
from evently.billing.exceptions import ProviderUnavailableError
from evently.billing.ledger import record_invoice_payment
from evently.config import settings
from evently.models.user import User
from evently.services.subscription_service import create_subscription
from tests.helpers import PERIOD_END, PERIOD_START, auth_headers_for, create_user, fetch_subscriptions, make_invoice, naive


@pytest.fixture
def configured_prices(monkeypatch):
    monkeypatch.setattr(settings, "stripe_price_pro_monthly", "price_pro_monthly")
    monkeypatch.setattr(settings, "stripe_price_pro_yearly", "price_pro_yearly")


async def _subscribed_user(db_session, sub_id: str = "sub_api"):
    user = await create_user(db_session, plan_id=None, stripe_customer_id="cus_api")
    subscription = await create_subscription(
        db_session,
        user_id=user.id,
        plan_id="pro",
        start_date=naive(PERIOD_START),
        end_date=naive(PERIOD_END),
        next_billing_date=naive(PERIOD_END),
        external_subscription_id=sub_id,
    )
    await db_session.commit()
    return user, subscription


class TestListPlans:
    """Test GET /api/v1/billing/plans."""

    @pytest.mark.asyncio
    async def test_list_plans(self, client: AsyncClient):
        """Plans endpoint is public and lists the whole catalog."""
        response = await client.get("/api/v1/billing/plans")
        assert response.status_code == 200
        plans = response.json()["plans"]
        assert {p["plan_id"] for p in plans} == {"free", "starter", "pro", "business"}

    @pytest.mark.asyncio
    async def test_plan_details_structure(self, client: AsyncClient):
        response = await client.get("/api/v1/billing/plans")
        for plan in response.json()["plans"]:
            assert "display_name" in plan
            assert "price_monthly_cents" in plan
            assert "max_events" in plan
            assert "allow_qr_codes" in plan


class TestGetSubscription:
    """Test GET /api/v1/billing/subscription."""

    @pytest.mark.asyncio
    async def test_requires_auth(self, client: AsyncClient):
        response = await client.get("/api/v1/billing/subscription")
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_invalid_token(self, client: AsyncClient):
        response = await client.get(
            "/api/v1/billing/subscription", headers={"Authorization": "Bearer not-a-jwt"}
        )
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_inactive_user(self, client: AsyncClient, db_session):
        user = await create_user(db_session, is_active=False)
        response = await client.get("/api/v1/billing/subscription", headers=auth_headers_for(user))
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_user_without_rows_gets_free(self, client: AsyncClient, db_session, session_factory):
        user = await create_user(db_session, plan_id=None)

        response = await client.get("/api/v1/billing/subscription", headers=auth_headers_for(user))

        assert response.status_code == 200
        data = response.json()
        assert data["plan"]["plan_id"] == "free"
        assert data["status"] == "active"
        assert data["external_subscription_id"] is None
        assert len(await fetch_subscriptions(session_factory, user.id)) == 1

    @pytest.mark.asyncio
    async def test_paid_subscription(self, client: AsyncClient, db_session):
        user, _ = await _subscribed_user(db_session)

        response = await client.get("/api/v1/billing/subscription", headers=auth_headers_for(user))

        data = response.json()
        assert data["plan"]["plan_id"] == "pro"
        assert data["external_subscription_id"] == "sub_api"
        assert data["auto_renew"] is True
        assert data["start_date"].startswith("2024-02-01")


class TestListInvoices:
    @pytest.mark.asyncio
    async def test_lists_own_invoices(self, client: AsyncClient, db_session):
        user, subscription = await _subscribed_user(db_session)
        await record_invoice_payment(
            db_session, subscription, InvoiceSnapshot.from_stripe(make_invoice(invoice_id="in_api", amount_paid=4900))
        )
        await db_session.commit()

        response = await client.get("/api/v1/billing/invoices", headers=auth_headers_for(user))

        assert response.status_code == 200
        invoices = response.json()["invoices"]
        assert len(invoices) == 1
        assert invoices[0]["external_invoice_id"] == "in_api"
        assert invoices[0]["amount_paid"] == 4900
        assert invoices[0]["currency"] == "eur"

    @pytest.mark.asyncio
    async def test_empty(self, client: AsyncClient, test_user):
        response = await client.get("/api/v1/billing/invoices", headers=auth_headers_for(test_user))
        assert response.json() == {"invoices": []}


class TestCheckout:
    """Test POST /api/v1/billing/checkout."""

    @pytest.mark.asyncio
    async def test_creates_customer_and_session(self, client: AsyncClient, gateway, test_user, session_factory, configured_prices):
        gateway.create_customer = AsyncMock(return_value=SimpleNamespace(id="cus_checkout"))
        gateway.create_checkout_session = AsyncMock(
            return_value=SimpleNamespace(id="cs_test_1", url="https://checkout.stripe.com/c/cs_test_1")
        )

        response = await client.post(
            "/api/v1/billing/checkout",
            json={"plan_id": "pro", "billing_interval": "yearly"},
            headers=auth_headers_for(test_user),
        )

        assert response.status_code == 200
        assert response.json() == {
            "checkout_url": "https://checkout.stripe.com/c/cs_test_1",
            "session_id": "cs_test_1",
        }
        kwargs = gateway.create_checkout_session.await_args.kwargs
        assert kwargs["customer_id"] == "cus_checkout"
        assert kwargs["price_id"] == "price_pro_yearly"
        assert kwargs["metadata"] == {
            "user_id": str(test_user.id),
            "plan_id": "pro",
            "billing_interval": "yearly",
        }
        async with session_factory() as session:
            stored = (await session.execute(select(User).where(User.id == test_user.id))).scalar_one()
        assert stored.stripe_customer_id == "cus_checkout"

    @pytest.mark.asyncio
    async def test_reuses_customer(self, client: AsyncClient, gateway, db_session, configured_prices):
        user = await create_user(db_session, stripe_customer_id="cus_known")
        gateway.create_customer = AsyncMock()
        gateway.create_checkout_session = AsyncMock(return_value=SimpleNamespace(id="cs_2", url="https://c.test/2"))

        response = await client.post(
            "/api/v1/billing/checkout", json={"plan_id": "pro"}, headers=auth_headers_for(user)
        )

        assert response.status_code == 200
        gateway.create_customer.assert_not_awaited()
        assert gateway.create_checkout_session.await_args.kwargs["price_id"] == "price_pro_monthly"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("plan_id", ["free", "platinum"])
    async def test_rejects_non_paid_plan(self, client: AsyncClient, test_user, plan_id):
        response = await client.post(
            "/api/v1/billing/checkout", json={"plan_id": plan_id}, headers=auth_headers_for(test_user)
        )
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_rejects_unknown_interval(self, client: AsyncClient, test_user):
        response = await client.post(
            "/api/v1/billing/checkout",
            json={"plan_id": "pro", "billing_interval": "weekly"},
            headers=auth_headers_for(test_user),
        )
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_price_not_configured(self, client: AsyncClient, test_user, configured_prices):
        response = await client.post(
            "/api/v1/billing/checkout", json={"plan_id": "business"}, headers=auth_headers_for(test_user)
        )
        assert response.status_code == 500

    @pytest.mark.asyncio
    async def test_stripe_failure(self, client: AsyncClient, gateway, test_user, configured_prices):
        gateway.create_customer = AsyncMock(side_effect=stripe.AuthenticationError("Invalid API key"))

        response = await client.post(
            "/api/v1/billing/checkout", json={"plan_id": "pro"}, headers=auth_headers_for(test_user)
        )

        assert response.status_code == 502


class TestPortal:
    @pytest.mark.asyncio
    async def test_requires_customer(self, client: AsyncClient, test_user):
        response = await client.post("/api/v1/billing/portal", json={}, headers=auth_headers_for(test_user))
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_returns_portal_url(self, client: AsyncClient, gateway, db_session):
        user = await create_user(db_session, stripe_customer_id="cus_portal")
        gateway.create_portal_session = AsyncMock(return_value=SimpleNamespace(url="https://billing.stripe.com/p/1"))

        response = await client.post(
            "/api/v1/billing/portal",
            json={"return_url": "https://app.test/settings"},
            headers=auth_headers_for(user),
        )

        assert response.status_code == 200
        assert response.json() == {"portal_url": "https://billing.stripe.com/p/1"}
        gateway.create_portal_session.assert_awaited_once_with(
            customer_id="cus_portal", return_url="https://app.test/settings"
        )


class TestCancel:
    """Test POST /api/v1/billing/cancel."""

    @pytest.mark.asyncio
    async def test_cancel_at_period_end(self, client: AsyncClient, gateway, db_session, session_factory):
        user, subscription = await _subscribed_user(db_session)
        gateway.cancel_at_period_end = AsyncMock()

        response = await client.post("/api/v1/billing/cancel", headers=auth_headers_for(user))

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["end_date"].startswith("2024-03-01")
        gateway.cancel_at_period_end.assert_awaited_once_with("sub_api", str(user.id))
        rows = await fetch_subscriptions(session_factory, user.id)
        assert rows[0].auto_renew is False
        assert rows[0].canceled_at is not None
        assert rows[0].status == "active"

    @pytest.mark.asyncio
    async def test_free_plan_cannot_cancel(self, client: AsyncClient, test_user):
        response = await client.post("/api/v1/billing/cancel", headers=auth_headers_for(test_user))
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_stripe_unavailable_leaves_row_untouched(self, client: AsyncClient, gateway, db_session, session_factory):
        user, _ = await _subscribed_user(db_session)
        gateway.cancel_at_period_end = AsyncMock(side_effect=ProviderUnavailableError("timed out"))

        response = await client.post("/api/v1/billing/cancel", headers=auth_headers_for(user))

        assert response.status_code == 502
        rows = await fetch_subscriptions(session_factory, user.id)
        assert rows[0].auto_renew is True


class TestHealth:
    @pytest.mark.asyncio
    async def test_health(self, client: AsyncClient):
        response = await client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

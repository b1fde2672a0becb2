"""Billing API endpoints: plans, current subscription, invoices, Checkout, Portal, cancel."""

import logging

import stripe
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from evently.api.deps import get_current_active_user, get_db, get_stripe_gateway
from evently.billing.exceptions import ProviderUnavailableError
from evently.billing.ledger import list_invoices_for_user
from evently.billing.plans import PAID_PLAN_IDS, PLANS, Plan, get_plan, get_price_id
from evently.billing.stripe_client import StripeGateway
from evently.config import settings
from evently.models.user import User
from evently.schemas.billing import (
    CancelResponse,
    CheckoutRequest,
    CheckoutResponse,
    InvoiceListResponse,
    InvoiceResponse,
    PlanResponse,
    PlansListResponse,
    PortalRequest,
    PortalResponse,
    SubscriptionResponse,
)
from evently.services.subscription_service import (
    ensure_stripe_customer,
    get_active_subscription,
    get_or_create_current_subscription,
    mark_cancel_requested,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/billing", tags=["billing"])


def _plan_response(plan: Plan) -> PlanResponse:
    return PlanResponse(
        plan_id=plan.plan_id,
        display_name=plan.display_name,
        max_events=plan.max_events,
        max_attendees_per_event=plan.max_attendees_per_event,
        max_team_members=plan.max_team_members,
        allow_qr_codes=plan.allow_qr_codes,
        support_level=plan.support_level,
        price_monthly_cents=plan.price_monthly_cents,
        price_yearly_cents=plan.price_yearly_cents,
    )


def _stripe_failure(operation: str, e: Exception) -> HTTPException:
    logger.error("Stripe %s error: %s", operation, e)
    return HTTPException(
        status_code=status.HTTP_502_BAD_GATEWAY,
        detail=str(e),
    )


@router.get("/plans", response_model=PlansListResponse)
async def list_plans() -> PlansListResponse:
    """List available plans (public, no auth required)."""
    return PlansListResponse(plans=[_plan_response(p) for p in PLANS.values()])


@router.get("/subscription", response_model=SubscriptionResponse)
async def get_subscription(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
) -> SubscriptionResponse:
    """Get the current subscription (free if the user never subscribed)."""
    subscription = await get_or_create_current_subscription(db, current_user)
    return SubscriptionResponse(
        id=subscription.id,
        plan=_plan_response(get_plan(subscription.plan_id)),
        status=subscription.status,
        billing_interval=subscription.billing_interval,
        start_date=subscription.start_date,
        end_date=subscription.end_date,
        next_billing_date=subscription.next_billing_date,
        last_payment_date=subscription.last_payment_date,
        auto_renew=subscription.auto_renew,
        external_subscription_id=subscription.external_subscription_id,
    )


@router.get("/invoices", response_model=InvoiceListResponse)
async def list_invoices(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
) -> InvoiceListResponse:
    """List the user's paid invoices, newest first."""
    invoices = await list_invoices_for_user(db, current_user.id)
    return InvoiceListResponse(invoices=[InvoiceResponse.model_validate(i) for i in invoices])


@router.post("/checkout", response_model=CheckoutResponse)
async def create_checkout(
    body: CheckoutRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
    gateway: StripeGateway = Depends(get_stripe_gateway),
) -> CheckoutResponse:
    """Create a Stripe Checkout session for a paid plan."""
    if body.plan_id not in PAID_PLAN_IDS:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid plan. Choose one of: {', '.join(sorted(PAID_PLAN_IDS))}.",
        )

    price_id = get_price_id(settings.stripe_price_ids, body.plan_id, body.billing_interval)
    if not price_id:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Stripe price ID not configured for plan.",
        )

    success_url = (
        body.success_url
        or f"{settings.frontend_url}/dashboard?session_id={{CHECKOUT_SESSION_ID}}"
    )
    cancel_url = body.cancel_url or f"{settings.frontend_url}/dashboard?canceled=true"

    try:
        customer_id = await ensure_stripe_customer(db, gateway, current_user)
        session = await gateway.create_checkout_session(
            customer_id=customer_id,
            price_id=price_id,
            success_url=success_url,
            cancel_url=cancel_url,
            metadata={
                "user_id": str(current_user.id),
                "plan_id": body.plan_id,
                "billing_interval": body.billing_interval,
            },
        )
    except (stripe.StripeError, ProviderUnavailableError) as e:
        raise _stripe_failure("checkout", e) from e

    await db.commit()

    return CheckoutResponse(
        checkout_url=session.url,
        session_id=session.id,
    )


@router.post("/portal", response_model=PortalResponse)
async def create_portal(
    body: PortalRequest,
    current_user: User = Depends(get_current_active_user),
    gateway: StripeGateway = Depends(get_stripe_gateway),
) -> PortalResponse:
    """Create a Stripe Customer Portal session for subscription management."""
    if not current_user.stripe_customer_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No Stripe customer found. Subscribe first.",
        )

    return_url = body.return_url or f"{settings.frontend_url}/dashboard"

    try:
        session = await gateway.create_portal_session(
            customer_id=current_user.stripe_customer_id,
            return_url=return_url,
        )
    except (stripe.StripeError, ProviderUnavailableError) as e:
        raise _stripe_failure("portal", e) from e

    return PortalResponse(portal_url=session.url)


@router.post("/cancel", response_model=CancelResponse)
async def cancel_subscription(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
    gateway: StripeGateway = Depends(get_stripe_gateway),
) -> CancelResponse:
    """Cancel the current paid subscription at the end of its billing period.

    Stripe is updated first. If the local write fails afterwards, the
    ``customer.subscription.updated`` webhook Stripe sends for the change
    brings ``auto_renew`` in line.
    """
    subscription = await get_active_subscription(db, current_user.id)
    if subscription is None or not subscription.external_subscription_id:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No active subscription found",
        )

    try:
        await gateway.cancel_at_period_end(subscription.external_subscription_id, str(current_user.id))
    except (stripe.StripeError, ProviderUnavailableError) as e:
        raise _stripe_failure("cancel", e) from e

    await mark_cancel_requested(db, subscription)

    return CancelResponse(
        success=True,
        message="Subscription will be canceled at period end",
        end_date=subscription.end_date,
    )

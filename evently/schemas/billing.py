"""Pydantic v2 request/response schemas for billing endpoints."""

import uuid
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict

# --- Request schemas ---


class CheckoutRequest(BaseModel):
    """Request to create a Stripe Checkout session."""

    plan_id: str  # "starter", "pro" or "business"
    billing_interval: Literal["monthly", "yearly"] = "monthly"
    success_url: str | None = None
    cancel_url: str | None = None


class PortalRequest(BaseModel):
    """Request to create a Stripe Customer Portal session."""

    return_url: str | None = None


# --- Response schemas ---


class PlanResponse(BaseModel):
    """Plan details for display."""

    plan_id: str
    display_name: str
    max_events: int | None
    max_attendees_per_event: int | None
    max_team_members: int
    allow_qr_codes: bool
    support_level: str
    price_monthly_cents: int
    price_yearly_cents: int


class PlansListResponse(BaseModel):
    """All available plans."""

    plans: list[PlanResponse]


class SubscriptionResponse(BaseModel):
    """The authenticated user's current subscription."""

    id: uuid.UUID
    plan: PlanResponse
    status: str
    billing_interval: str
    start_date: datetime
    end_date: datetime | None
    next_billing_date: datetime | None
    last_payment_date: datetime | None
    auto_renew: bool
    external_subscription_id: str | None


class InvoiceResponse(BaseModel):
    """One ledger entry."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    external_invoice_id: str
    amount_paid: int
    currency: str
    status: str
    billing_reason: str | None
    period_start: datetime | None
    period_end: datetime | None
    paid_at: datetime
    invoice_pdf: str | None


class InvoiceListResponse(BaseModel):
    invoices: list[InvoiceResponse]


class CheckoutResponse(BaseModel):
    """Stripe Checkout session URL returned to frontend."""

    checkout_url: str
    session_id: str


class PortalResponse(BaseModel):
    """Stripe Customer Portal URL returned to frontend."""

    portal_url: str


class CancelResponse(BaseModel):
    """Result of a cancel-at-period-end request."""

    success: bool
    message: str
    end_date: datetime | None

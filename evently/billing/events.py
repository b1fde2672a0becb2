"""Stripe event classification: loosely typed payloads -> closed set of typed records.

Stripe objects are converted to plain dicts here, and only the fields the
reconciler consumes survive. Unknown event types classify to ``None``.
"""

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Union

logger = logging.getLogger(__name__)


def ts_to_naive(ts: int | None) -> datetime | None:
    """Convert Stripe Unix timestamp to naive UTC datetime."""
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc).replace(tzinfo=None)


def as_dict(obj: Any) -> dict[str, Any]:
    """Recursively convert a Stripe object (or plain mapping) to a dict."""
    if obj is None:
        return {}
    for attr in ("to_dict_recursive", "to_dict"):
        convert = getattr(obj, attr, None)
        if callable(convert):
            return convert()
    if isinstance(obj, Mapping):
        return dict(obj)
    raise TypeError(f"Cannot convert {type(obj).__name__} to dict")


def _first_item(subscription: Mapping[str, Any]) -> Mapping[str, Any]:
    items = subscription.get("items") or {}
    data = items.get("data") or []
    return data[0] if data else {}


@dataclass(frozen=True)
class BillingMetadata:
    """The ``{user_id, plan_id, billing_interval}`` bag attached at checkout."""

    user_id: str | None = None
    plan_id: str | None = None
    billing_interval: str | None = None

    @classmethod
    def from_stripe(cls, metadata: Mapping[str, Any] | None) -> "BillingMetadata":
        metadata = metadata or {}
        return cls(
            user_id=metadata.get("user_id") or metadata.get("userId"),
            plan_id=metadata.get("plan_id") or metadata.get("planId"),
            billing_interval=metadata.get("billing_interval") or metadata.get("interval"),
        )

    def merged_with(self, fallback: "BillingMetadata") -> "BillingMetadata":
        """Fill missing fields from ``fallback``."""
        return BillingMetadata(
            user_id=self.user_id or fallback.user_id,
            plan_id=self.plan_id or fallback.plan_id,
            billing_interval=self.billing_interval or fallback.billing_interval,
        )


@dataclass(frozen=True)
class SubscriptionSnapshot:
    """Provider-side state of one subscription."""

    id: str
    customer_id: str | None
    status: str
    price_id: str | None
    current_period_start: datetime | None
    current_period_end: datetime | None
    cancel_at_period_end: bool
    metadata: BillingMetadata = field(default_factory=BillingMetadata)

    @classmethod
    def from_stripe(cls, obj: Any) -> "SubscriptionSnapshot":
        sub = as_dict(obj)
        item = _first_item(sub)
        price = item.get("price") or {}
        # Since API 2025-08-27 (basil) the period lives on the subscription item
        period_start = item.get("current_period_start", sub.get("current_period_start"))
        period_end = item.get("current_period_end", sub.get("current_period_end"))
        return cls(
            id=sub["id"],
            customer_id=sub.get("customer"),
            status=sub.get("status") or "active",
            price_id=price.get("id"),
            current_period_start=ts_to_naive(period_start),
            current_period_end=ts_to_naive(period_end),
            cancel_at_period_end=bool(sub.get("cancel_at_period_end")),
            metadata=BillingMetadata.from_stripe(sub.get("metadata")),
        )


def _invoice_subscription_id(invoice: Mapping[str, Any]) -> str | None:
    subscription = invoice.get("subscription")
    if subscription is None:
        # Newer API versions nest it under parent.subscription_details
        details = (invoice.get("parent") or {}).get("subscription_details") or {}
        subscription = details.get("subscription")
    if isinstance(subscription, Mapping):
        return subscription.get("id")
    return subscription


def _invoice_period(invoice: Mapping[str, Any]) -> tuple[datetime | None, datetime | None]:
    """Coverage window: the widest line-item period, else the invoice's own period."""
    starts = []
    ends = []
    for line in (invoice.get("lines") or {}).get("data") or []:
        period = line.get("period") or {}
        if period.get("start") is not None:
            starts.append(period["start"])
        if period.get("end") is not None:
            ends.append(period["end"])
    start = min(starts) if starts else invoice.get("period_start")
    end = max(ends) if ends else invoice.get("period_end")
    return ts_to_naive(start), ts_to_naive(end)


@dataclass(frozen=True)
class InvoiceSnapshot:
    """The parts of a Stripe invoice the ledger keeps."""

    id: str
    subscription_id: str | None
    customer_id: str | None
    amount_paid: int
    currency: str
    billing_reason: str | None
    period_start: datetime | None
    period_end: datetime | None
    paid_at: datetime | None
    invoice_pdf: str | None

    @classmethod
    def from_stripe(cls, obj: Any) -> "InvoiceSnapshot":
        invoice = as_dict(obj)
        period_start, period_end = _invoice_period(invoice)
        transitions = invoice.get("status_transitions") or {}
        return cls(
            id=invoice["id"],
            subscription_id=_invoice_subscription_id(invoice),
            customer_id=invoice.get("customer"),
            amount_paid=int(invoice.get("amount_paid") or 0),
            currency=(invoice.get("currency") or "eur").lower(),
            billing_reason=invoice.get("billing_reason"),
            period_start=period_start,
            period_end=period_end,
            paid_at=ts_to_naive(transitions.get("paid_at")),
            invoice_pdf=invoice.get("invoice_pdf"),
        )


@dataclass(frozen=True)
class CheckoutCompleted:
    session_id: str
    external_subscription_id: str | None
    external_customer_id: str | None
    metadata: BillingMetadata


@dataclass(frozen=True)
class InvoicePaid:
    invoice: InvoiceSnapshot


@dataclass(frozen=True)
class InvoicePaymentFailed:
    invoice_id: str
    external_subscription_id: str | None


@dataclass(frozen=True)
class SubscriptionUpdated:
    subscription: SubscriptionSnapshot


@dataclass(frozen=True)
class SubscriptionDeleted:
    subscription: SubscriptionSnapshot


BillingEvent = Union[
    CheckoutCompleted,
    InvoicePaid,
    InvoicePaymentFailed,
    SubscriptionUpdated,
    SubscriptionDeleted,
]


def _checkout_completed(obj: Mapping[str, Any]) -> CheckoutCompleted:
    return CheckoutCompleted(
        session_id=obj["id"],
        external_subscription_id=obj.get("subscription"),
        external_customer_id=obj.get("customer"),
        metadata=BillingMetadata.from_stripe(obj.get("metadata")),
    )


def _invoice_payment_failed(obj: Mapping[str, Any]) -> InvoicePaymentFailed:
    return InvoicePaymentFailed(
        invoice_id=obj["id"],
        external_subscription_id=_invoice_subscription_id(obj),
    )


# Map event types to payload decoders
EVENT_DECODERS: dict[str, Callable[[Mapping[str, Any]], BillingEvent]] = {
    "checkout.session.completed": _checkout_completed,
    "invoice.paid": lambda obj: InvoicePaid(InvoiceSnapshot.from_stripe(obj)),
    "invoice.payment_succeeded": lambda obj: InvoicePaid(InvoiceSnapshot.from_stripe(obj)),
    "invoice.payment_failed": _invoice_payment_failed,
    "customer.subscription.updated": lambda obj: SubscriptionUpdated(SubscriptionSnapshot.from_stripe(obj)),
    "customer.subscription.deleted": lambda obj: SubscriptionDeleted(SubscriptionSnapshot.from_stripe(obj)),
}


def classify_event(event: Any) -> BillingEvent | None:
    """Decode a verified Stripe event into its typed record, or None if unhandled.

    Raises:
        KeyError: a handled event type is missing a required field.
    """
    payload = as_dict(event)
    decoder = EVENT_DECODERS.get(payload.get("type", ""))
    if decoder is None:
        return None
    data_object = (payload.get("data") or {}).get("object") or {}
    return decoder(data_object)

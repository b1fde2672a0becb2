"""Billing ledger: append-only invoice records for successful payments."""

import logging
import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from evently.billing.events import InvoiceSnapshot
from evently.database import utcnow
from evently.models.invoice import Invoice
from evently.models.subscription import Subscription

logger = logging.getLogger(__name__)


async def get_invoice_by_external_id(db: AsyncSession, external_invoice_id: str) -> Invoice | None:
    """Look up a ledger entry by Stripe invoice ID."""
    result = await db.execute(
        select(Invoice).where(Invoice.external_invoice_id == external_invoice_id)
    )
    return result.scalar_one_or_none()


async def record_invoice_payment(
    db: AsyncSession, subscription: Subscription, invoice: InvoiceSnapshot
) -> Invoice | None:
    """Append a paid invoice to the ledger.

    Returns the new entry, or None if this invoice was already recorded.
    Only call this after the owning subscription has been resolved and updated.
    """
    if await get_invoice_by_external_id(db, invoice.id) is not None:
        logger.info("Invoice %s already recorded, skipping ledger entry", invoice.id)
        return None

    entry = Invoice(
        external_invoice_id=invoice.id,
        subscription_id=subscription.id,
        user_id=subscription.user_id,
        amount_paid=invoice.amount_paid,
        currency=invoice.currency,
        status="paid",
        billing_reason=invoice.billing_reason,
        period_start=invoice.period_start,
        period_end=invoice.period_end,
        paid_at=invoice.paid_at or utcnow(),
        invoice_pdf=invoice.invoice_pdf,
    )
    db.add(entry)
    await db.flush()
    logger.info(
        "Recorded invoice %s: %d %s for subscription %s",
        invoice.id,
        invoice.amount_paid,
        invoice.currency,
        subscription.id,
    )
    return entry


async def list_invoices_for_user(db: AsyncSession, user_id: uuid.UUID) -> list[Invoice]:
    """The user's ledger, newest first."""
    result = await db.execute(
        select(Invoice).where(Invoice.user_id == user_id).order_by(Invoice.paid_at.desc())
    )
    return list(result.scalars().all())

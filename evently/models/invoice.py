"""Invoice model: append-only ledger of paid Stripe invoices."""

import uuid
from datetime import datetime

from sqlalchemy import ForeignKey, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from evently.database import Base, UUIDPrimaryKeyMixin, utcnow


class Invoice(UUIDPrimaryKeyMixin, Base):
    """One paid Stripe invoice. Written once, never updated."""

    __tablename__ = "invoices"

    # Stripe invoice ID is the natural idempotency key
    external_invoice_id: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)

    subscription_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("subscriptions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    amount_paid: Mapped[int] = mapped_column(Integer, nullable=False)  # minor units (cents)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    status: Mapped[str] = mapped_column(String(50), nullable=False, server_default="paid")
    billing_reason: Mapped[str | None] = mapped_column(String(100), nullable=True)
    period_start: Mapped[datetime | None] = mapped_column(nullable=True)
    period_end: Mapped[datetime | None] = mapped_column(nullable=True)
    paid_at: Mapped[datetime] = mapped_column(nullable=False)
    invoice_pdf: Mapped[str | None] = mapped_column(String(1024), nullable=True)

    created_at: Mapped[datetime] = mapped_column(default=utcnow, server_default=func.now())

    def __repr__(self) -> str:
        return (
            f"<Invoice(id={self.id}, external_invoice_id={self.external_invoice_id!r}, "
            f"amount_paid={self.amount_paid} {self.currency})>"
        )

"""Subscription model: one row per billing relationship instance."""

import uuid
from datetime import datetime

from sqlalchemy import Boolean, ForeignKey, String, true
from sqlalchemy.orm import Mapped, mapped_column

from evently.database import Base, TimestampMixin, UUIDPrimaryKeyMixin

SUBSCRIPTION_STATUSES = ("active", "past_due", "canceled", "trialing", "expired")
BILLING_INTERVALS = ("monthly", "yearly")


class Subscription(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """A user's plan over time.

    A user accumulates rows as they change plans; superseded rows are
    ``expired``, never deleted. At most one row per user is ``active``
    once reconciliation settles, and readers take the newest active row.
    """

    __tablename__ = "subscriptions"

    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # Plan & status
    plan_id: Mapped[str] = mapped_column(String(50), nullable=False, server_default="free")
    status: Mapped[str] = mapped_column(String(50), nullable=False, server_default="active", index=True)
    billing_interval: Mapped[str] = mapped_column(String(20), nullable=False, server_default="monthly")

    # Dates (naive UTC)
    start_date: Mapped[datetime] = mapped_column(nullable=False)
    end_date: Mapped[datetime | None] = mapped_column(nullable=True)
    next_billing_date: Mapped[datetime | None] = mapped_column(nullable=True)
    last_payment_date: Mapped[datetime | None] = mapped_column(nullable=True)
    canceled_at: Mapped[datetime | None] = mapped_column(nullable=True)
    auto_renew: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=true())

    # Stripe identifiers (UNIQUE backs the duplicate check on webhook inserts)
    external_subscription_id: Mapped[str | None] = mapped_column(String(255), unique=True, nullable=True)
    external_customer_id: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    external_price_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    @property
    def is_free(self) -> bool:
        return self.plan_id == "free"

    def __repr__(self) -> str:
        return (
            f"<Subscription(id={self.id}, user_id={self.user_id}, plan_id={self.plan_id}, "
            f"status={self.status})>"
        )

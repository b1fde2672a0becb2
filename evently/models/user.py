"""User model: account identity and Stripe customer link."""

from sqlalchemy import Boolean, String
from sqlalchemy.orm import Mapped, mapped_column

from evently.database import Base, TimestampMixin, UUIDPrimaryKeyMixin


class User(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """Event organizer account.

    Rows are created by the auth service; billing only reads them and
    attaches the Stripe customer on first checkout.
    """

    __tablename__ = "users"

    email: Mapped[str] = mapped_column(String(255), unique=True, index=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # One Stripe customer per user, shared by all of the user's subscriptions
    stripe_customer_id: Mapped[str | None] = mapped_column(String(255), unique=True, nullable=True)

    def __repr__(self) -> str:
        return f"<User id={self.id} email={self.email!r}>"

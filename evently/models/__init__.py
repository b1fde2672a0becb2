"""SQLAlchemy models for Evently billing.

All models are imported here so that Alembic's autogenerate can discover
them via Base.metadata. If you add a new model, import it in this file.
"""

from evently.models.invoice import Invoice
from evently.models.subscription import Subscription
from evently.models.user import User

__all__ = [
    "Invoice",
    "Subscription",
    "User",
]

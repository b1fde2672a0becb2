"""Shared API dependencies: single import point for all routers.

Re-exports database session, authentication and billing dependencies so that
router modules can import everything they need from one place::

    from evently.api.deps import get_db, get_current_active_user
"""

from evently.auth.dependencies import (
    get_current_active_user,
    get_current_user,
)
from evently.billing.dependencies import (
    get_price_map,
    get_reconciler,
    get_stripe_gateway,
)
from evently.database import get_db, get_session_factory

__all__ = [
    "get_db",
    "get_session_factory",
    "get_current_user",
    "get_current_active_user",
    "get_stripe_gateway",
    "get_price_map",
    "get_reconciler",
]

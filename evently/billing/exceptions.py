"""Billing error types."""


class BillingError(Exception):
    """Base class for billing failures."""


class ProviderUnavailableError(BillingError):
    """Stripe could not be reached in time (timeout, connection, rate limit, 5xx).

    Transient: nothing has been committed, so the webhook may be redelivered.
    """

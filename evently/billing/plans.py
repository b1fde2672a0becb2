"""Plan definitions: pricing tiers, limits and the Stripe price map."""

import logging
from collections.abc import Mapping
from dataclasses import dataclass

logger = logging.getLogger(__name__)

FREE_PLAN_ID = "free"


@dataclass(frozen=True)
class Plan:
    """A catalog plan and its event limits."""

    plan_id: str
    display_name: str
    max_events: int | None  # None = unlimited
    max_attendees_per_event: int | None  # None = unlimited
    max_team_members: int
    allow_qr_codes: bool
    support_level: str  # email, priority, dedicated
    price_monthly_cents: int  # in cents (e.g., 1900 = €19.00)
    price_yearly_cents: int

    @property
    def is_paid(self) -> bool:
        return self.plan_id != FREE_PLAN_ID


PLANS: dict[str, Plan] = {
    "free": Plan(
        plan_id="free",
        display_name="Free",
        max_events=3,
        max_attendees_per_event=50,
        max_team_members=1,
        allow_qr_codes=False,
        support_level="email",
        price_monthly_cents=0,
        price_yearly_cents=0,
    ),
    "starter": Plan(
        plan_id="starter",
        display_name="Starter",
        max_events=10,
        max_attendees_per_event=200,
        max_team_members=3,
        allow_qr_codes=True,
        support_level="email",
        price_monthly_cents=1900,
        price_yearly_cents=19000,
    ),
    "pro": Plan(
        plan_id="pro",
        display_name="Pro",
        max_events=50,
        max_attendees_per_event=1000,
        max_team_members=10,
        allow_qr_codes=True,
        support_level="priority",
        price_monthly_cents=4900,
        price_yearly_cents=49000,
    ),
    "business": Plan(
        plan_id="business",
        display_name="Business",
        max_events=None,
        max_attendees_per_event=None,
        max_team_members=50,
        allow_qr_codes=True,
        support_level="dedicated",
        price_monthly_cents=9900,
        price_yearly_cents=99000,
    ),
}

VALID_PLAN_IDS: set[str] = set(PLANS.keys())
PAID_PLAN_IDS: set[str] = {p.plan_id for p in PLANS.values() if p.is_paid}


def get_plan(plan_id: str) -> Plan:
    """Get a plan by ID. Defaults to free if unknown."""
    return PLANS.get(plan_id, PLANS[FREE_PLAN_ID])


def build_price_map(price_ids: Mapping[tuple[str, str], str]) -> dict[str, str]:
    """Invert configured ``(plan_id, interval) -> price_id`` into ``price_id -> plan_id``.

    Unset (empty) price IDs are skipped.
    """
    return {price_id: plan_id for (plan_id, _interval), price_id in price_ids.items() if price_id}


def get_plan_id_by_price_id(price_map: Mapping[str, str], price_id: str | None) -> str:
    """Reverse lookup: Stripe price ID -> plan ID.

    Unknown prices map to ``free`` so catalog drift never fails a webhook.
    """
    if price_id and price_id in price_map:
        return price_map[price_id]
    if price_id:
        logger.warning("Unmapped Stripe price %s, falling back to free plan", price_id)
    return FREE_PLAN_ID


def resolve_plan_id(
    price_map: Mapping[str, str], metadata_plan_id: str | None, price_id: str | None
) -> str:
    """Plan for a new paid row: checkout metadata if it names a catalog plan, else the price map."""
    if metadata_plan_id in VALID_PLAN_IDS:
        return metadata_plan_id
    return get_plan_id_by_price_id(price_map, price_id)


def get_price_id(price_ids: Mapping[tuple[str, str], str], plan_id: str, interval: str) -> str | None:
    """Forward lookup used by checkout. Returns None if not configured."""
    return price_ids.get((plan_id, interval)) or None

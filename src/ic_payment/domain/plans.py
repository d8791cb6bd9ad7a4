"""Pricing plans. Prices are in minor currency units (paise)."""

from dataclasses import dataclass

from src.ic_common.errors import UnknownPlanError


@dataclass(frozen=True)
class PricingPlan:
    id: str
    name: str
    credits: int
    price: int            # paise
    currency: str
    interviews: str       # marketing label, e.g. "2×8min"
    duration_minutes: int

    @property
    def purchasable(self) -> bool:
        return self.price > 0


PRICING_PLANS: dict[str, PricingPlan] = {
    "free": PricingPlan("free", "Free", 50, 0, "INR", "1×5min", 5),
    "starter": PricingPlan("starter", "Starter Pack", 160, 14900, "INR", "2×8min", 8),
}

DEFAULT_PLAN_ID = "starter"


def get_plan(plan_id: str) -> PricingPlan:
    plan = PRICING_PLANS.get(plan_id)
    if plan is None:
        raise UnknownPlanError(plan_id)
    return plan


def credits_for_plan(plan_id: str) -> int:
    return get_plan(plan_id).credits

# core/plans.py
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from app.models.plan_model import Plan

# Pricing (KES)
PLANS: Dict[str, List[Plan]] = {
    "gaming": [
        Plan(category="gaming", plan="Hourly Pass", amount=50, duration_hours=1,
             description="Play games for 1 hour"),
        Plan(category="gaming", plan="Daily Pass", amount=300, duration_days=1,
             description="Unlimited gaming for 24 hours"),
        Plan(category="gaming", plan="Weekly Pass", amount=1500, duration_days=7,
             description="Unlimited gaming for 1 week"),
        Plan(category="gaming", plan="Monthly Pass", amount=5000, duration_days=30,
             description="Unlimited gaming for 1 month"),
    ],
    "gym": [
        Plan(category="gym", plan="Daily Workout", amount=200, duration_days=1,
             description="Access to gym for 1 day"),
        Plan(category="gym", plan="Weekly Membership", amount=1000, duration_days=7,
             description="Full gym access for 1 week"),
        Plan(category="gym", plan="Monthly Membership", amount=3500, duration_days=30,
             description="Full gym access for 1 month"),
        Plan(category="gym", plan="Annual Membership", amount=30000, duration_days=365,
             description="Full gym access for 1 year"),
    ],
    "movies": [
        Plan(category="movies", plan="Basic", amount=100, duration_days=1,
             description="Access to standard movies for 1 day"),
        Plan(category="movies", plan="Premium", amount=300, duration_days=7,
             description="Access to all movies for 1 week"),
    ],
    "sports": [
        Plan(category="sports", plan="Daily Pass", amount=50, duration_hours=24,
             description="Access to sports facilities for 24 hours"),
        Plan(category="sports", plan="Monthly Pass", amount=1000, duration_days=30,
             description="Access to sports facilities for 1 month"),
    ],
}


def plans_for(category: str) -> List[Plan]:
    return PLANS.get(category, [])


def get_plan(category: str, plan_name: str) -> Optional[Plan]:
    for plan in plans_for(category):
        if plan.plan == plan_name:
            return plan
    return None


def compute_end_date(plan: Plan, start: datetime) -> datetime:
    """Hours win over days when a plan (wrongly) carries both."""
    if plan.duration_hours:
        return start + timedelta(hours=plan.duration_hours)
    if plan.duration_days:
        return start + timedelta(days=plan.duration_days)
    raise ValueError(f"Plan {plan.category}/{plan.plan} has no duration")

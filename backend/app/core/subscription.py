# core/subscription.py
import logging
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from app.core.plans import compute_end_date
from app.core.store import SubscriptionStore
from app.models.plan_model import Plan
from app.models.subscription_model import Subscription, utcnow

logger = logging.getLogger("tikiti")

# --- STATE TABLE ---
# failed / expired / cancelled are terminal
TRANSITIONS = {
    "pending": ("active", "failed", "cancelled"),
    "active": ("expired", "cancelled"),
    "failed": (),
    "expired": (),
    "cancelled": (),
}


def can_transition(source: str, target: str) -> bool:
    return target in TRANSITIONS.get(source, ())


class SubscriptionStateMachine:
    """
    Every status change goes through here, and every change is a guarded
    write: it names the state it expects to move *from*, and silently does
    nothing if the record has already moved on. That is what lets the webhook,
    the status poller and the expiry sweep race each other safely.

    Transition methods return the updated Subscription, or None when the write
    was dropped.
    """

    def __init__(self, store: SubscriptionStore, clock: Callable[[], datetime] = utcnow):
        self.store = store
        self.clock = clock

    async def _transition(
        self,
        subscription_id: str,
        source: str,
        target: str,
        patch: Optional[Dict[str, Any]] = None,
        guard: Optional[Dict[str, Any]] = None,
    ) -> Optional[Subscription]:
        if not can_transition(source, target):
            raise ValueError(f"Illegal subscription transition {source} → {target}")

        changes = {**(patch or {}), "status": target, "updated_at": self.clock()}
        updated = await self.store.update_if_state_matches(subscription_id, source, changes, guard)

        if updated is None:
            logger.info(f"↩️ Subscription {subscription_id}: {source} → {target} dropped, state already moved on")
        else:
            logger.info(f"🔁 Subscription {subscription_id}: {source} → {target}")
        return updated

    async def create_pending(self, owner_id: str, plan: Plan) -> Subscription:
        now = self.clock()
        subscription = Subscription(
            owner_id=owner_id,
            category=plan.category,
            plan_name=plan.plan,
            amount=plan.amount,
            status="pending",
            end_date=compute_end_date(plan, now),
            created_at=now,
            updated_at=now,
        )
        await self.store.create(subscription)
        logger.info(f"🆕 Pending subscription {subscription.id} for {owner_id} ({plan.category}/{plan.plan})")
        return subscription

    async def attach_checkout(
        self,
        subscription_id: str,
        checkout_request_id: str,
        merchant_request_id: Optional[str] = None,
    ) -> Optional[Subscription]:
        """Record Daraja's correlation ids. Only ever once, only while pending."""
        updated = await self.store.update_if_state_matches(
            subscription_id,
            "pending",
            {
                "checkout_request_id": checkout_request_id,
                "merchant_request_id": merchant_request_id,
                "updated_at": self.clock(),
            },
            guard={"checkout_request_id": None},
        )
        if updated is None:
            logger.warning(f"Could not attach checkout {checkout_request_id} to {subscription_id}")
        return updated

    async def activate(
        self,
        subscription: Subscription,
        receipt_number: Optional[str] = None,
        paid_amount: Optional[float] = None,
        payer_phone: Optional[str] = None,
    ) -> Optional[Subscription]:
        patch: Dict[str, Any] = {"result_code": 0}
        if subscription.start_date is None:
            patch["start_date"] = self.clock()
        if receipt_number is not None:
            patch["receipt_number"] = receipt_number
        if paid_amount is not None:
            patch["paid_amount"] = paid_amount
        if payer_phone is not None:
            patch["payer_phone"] = payer_phone

        return await self._transition(subscription.id, "pending", "active", patch)

    async def fail(
        self,
        subscription: Subscription,
        reason: str,
        result_code: Optional[int] = None,
    ) -> Optional[Subscription]:
        return await self._transition(
            subscription.id,
            "pending",
            "failed",
            {"failure_reason": reason, "result_code": result_code},
        )

    async def cancel(self, subscription: Subscription) -> Optional[Subscription]:
        """Administrative cancel, from whatever (non-terminal) state we last saw."""
        return await self._transition(subscription.id, subscription.status, "cancelled")

    async def expire(self, subscription_id: str) -> Optional[Subscription]:
        return await self._transition(subscription_id, "active", "expired")

    async def sweep_expired(self, now: Optional[datetime] = None) -> int:
        """
        Move every active subscription whose end_date has passed to expired.
        Returns how many this run actually moved; records a concurrent run got
        to first are not counted.
        """
        now = now or self.clock()
        due = await self.store.find([
            ("status", "==", "active"),
            ("end_date", "<=", now),
        ])

        count = 0
        for subscription in due:
            if await self.expire(subscription.id):
                count += 1

        if count:
            logger.info(f"✅ Expired {count} subscriptions")
        else:
            logger.info("✅ No expired subscriptions found")
        return count

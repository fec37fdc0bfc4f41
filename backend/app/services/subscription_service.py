# app/services/subscription_service.py
import logging
from typing import List, Optional, Tuple

from app.core.config import settings
from app.core.errors import ConflictError, NotFoundError, PaymentError, ValidationError
from app.core.plans import get_plan
from app.core.store import SubscriptionStore
from app.core.subscription import SubscriptionStateMachine
from app.models.mpesa_model import GatewayStatus, PushResult
from app.models.subscription_model import Subscription
from app.services.mpesa_service import PushInitiator, StatusPoller
from app.utils.phone import normalize_phone

logger = logging.getLogger("tikiti")


class SubscriptionService:
    """The caller-facing flow: buy a pass, list passes, check on a pending one."""

    def __init__(
        self,
        store: SubscriptionStore,
        state_machine: SubscriptionStateMachine,
        initiator: PushInitiator,
        poller: StatusPoller,
    ):
        self.store = store
        self.state_machine = state_machine
        self.initiator = initiator
        self.poller = poller

    async def subscribe(
        self,
        owner_id: str,
        category: str,
        plan_name: str,
        phone: str,
    ) -> Tuple[Subscription, PushResult]:
        if not category or not plan_name or not phone:
            raise ValidationError("Missing required fields: category, plan, or phone")

        plan = get_plan(category, plan_name)
        if plan is None:
            raise ValidationError("Invalid category or plan")

        # Reject a typo before it becomes a failed record
        normalize_phone(phone, self.initiator.country_code)

        now = self.state_machine.clock()
        active = await self.store.find([
            ("owner_id", "==", owner_id),
            ("category", "==", category),
            ("status", "==", "active"),
        ])
        if any(sub.end_date > now for sub in active):
            raise ConflictError(f"You already have an active {category} subscription")

        subscription = await self.state_machine.create_pending(owner_id, plan)

        try:
            result = await self.initiator.initiate(
                phone, plan.amount, subscription.id, settings.MPESA_TRANSACTION_DESC
            )
        except PaymentError as e:
            # No checkout id means nothing can ever reconcile this record
            await self.state_machine.fail(subscription, e.user_message)
            raise

        # Must land before we hand control back: it is the only link the
        # callback and the poller have to this record.
        attached = await self.state_machine.attach_checkout(
            subscription.id, result.checkout_request_id, result.merchant_request_id
        )
        if attached is None:
            attached = await self.store.find_by_id(subscription.id) or subscription

        return attached, result

    async def list_for_owner(self, owner_id: str) -> List[Subscription]:
        subs = await self.store.find([("owner_id", "==", owner_id)])
        return sorted(subs, key=lambda s: s.created_at, reverse=True)

    async def get_for_owner(self, owner_id: str, subscription_id: str) -> Subscription:
        subscription = await self.store.find_by_id(subscription_id)
        if subscription is None or subscription.owner_id != owner_id:
            raise NotFoundError("Subscription not found")
        return subscription

    async def refresh_status(
        self,
        owner_id: str,
        subscription_id: str,
    ) -> Tuple[Subscription, Optional[GatewayStatus]]:
        """Poll M-Pesa for a pending subscription; anything else is returned as is."""
        subscription = await self.get_for_owner(owner_id, subscription_id)
        if subscription.status != "pending" or not subscription.checkout_request_id:
            return subscription, None

        status = await self.poller.query(subscription.checkout_request_id)
        refreshed = await self.store.find_by_id(subscription_id)
        return refreshed or subscription, status

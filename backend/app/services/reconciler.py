# app/services/reconciler.py
import logging
from typing import Any, Optional

from app.core.errors import ValidationError
from app.core.store import SubscriptionStore
from app.core.subscription import SubscriptionStateMachine
from app.models.mpesa_model import OutcomeNotification
from app.models.subscription_model import Subscription
from app.utils.phone import mask_phone

logger = logging.getLogger("tikiti.reconcile")

# What Safaricom must always get back, whatever happened on our side.
# Anything else makes it redeliver the same callback again and again.
ACK = {"ResultCode": 0, "ResultDesc": "Accepted"}

REQUIRED_SUCCESS_ITEMS = ("MpesaReceiptNumber", "Amount", "AccountReference")


def parse_notification(body: Any) -> OutcomeNotification:
    """Flatten `{Body: {stkCallback: {...}}}` into an OutcomeNotification."""
    try:
        callback = body["Body"]["stkCallback"]
    except (KeyError, TypeError):
        raise ValidationError("Invalid callback format")

    if not isinstance(callback, dict) or not callback.get("CheckoutRequestID"):
        raise ValidationError("Callback missing CheckoutRequestID")

    try:
        result_code = int(callback["ResultCode"])
    except (KeyError, TypeError, ValueError):
        raise ValidationError("Callback missing a numeric ResultCode")

    items = (callback.get("CallbackMetadata") or {}).get("Item") or []
    metadata = {
        item["Name"]: item.get("Value")
        for item in items
        if isinstance(item, dict) and item.get("Name")
    }

    return OutcomeNotification(
        checkout_request_id=str(callback["CheckoutRequestID"]),
        merchant_request_id=callback.get("MerchantRequestID"),
        result_code=result_code,
        result_desc=callback.get("ResultDesc") or "",
        metadata=metadata,
        raw=body,
    )


class CallbackReconciler:
    """
    Applies M-Pesa's STK callbacks to subscriptions.

    Safaricom delivers at least once, so the same callback can arrive twice,
    late, or after the status poller already settled the record. Only a
    `pending` record is ever changed, and every change is a guarded write.
    """

    def __init__(self, store: SubscriptionStore, state_machine: SubscriptionStateMachine):
        self.store = store
        self.state_machine = state_machine

    async def locate(self, checkout_request_id: str) -> Optional[Subscription]:
        subscription = await self.store.find_by_checkout_id(checkout_request_id)
        if subscription is not None:
            return subscription

        # Legacy path: some older records were correlated by their own id
        subscription = await self.store.find_by_id(checkout_request_id)
        if subscription is not None:
            logger.warning(f"Callback {checkout_request_id} matched by subscription id, not checkout id")
        return subscription

    async def reconcile(self, notification: OutcomeNotification) -> dict:
        try:
            await self._apply(notification)
        except Exception:
            logger.exception(f"💥 Failed to reconcile callback {notification.checkout_request_id}")
        return dict(ACK)

    async def reconcile_payload(self, body: Any) -> dict:
        """Webhook entry point: parse, apply, and acknowledge no matter what."""
        try:
            notification = parse_notification(body)
        except ValidationError as e:
            logger.error(f"[M-Pesa Callback] {e.message}: {body!r}")
            return dict(ACK)
        return await self.reconcile(notification)

    async def _apply(self, notification: OutcomeNotification):
        checkout_id = notification.checkout_request_id
        subscription = await self.locate(checkout_id)

        if subscription is None:
            logger.warning(f"[M-Pesa Callback] No subscription for checkout {checkout_id}")
            return

        if subscription.status != "pending":
            logger.info(f"♻️ Callback for {subscription.id} ignored, already {subscription.status}")
            return

        if not notification.succeeded:
            reason = notification.result_desc or f"M-Pesa result code {notification.result_code}"
            await self.state_machine.fail(subscription, reason, result_code=notification.result_code)
            logger.info(f"❌ Payment failed for {subscription.id}: {reason}")
            return

        metadata = notification.metadata
        missing = [name for name in REQUIRED_SUCCESS_ITEMS if metadata.get(name) in (None, "")]
        if missing:
            # Unreconciled, not failed: the poller can still settle it
            logger.error(f"[M-Pesa Callback] Success for {subscription.id} missing metadata {missing}")
            return

        payer_phone = metadata.get("PhoneNumber")
        activated = await self.state_machine.activate(
            subscription,
            receipt_number=str(metadata["MpesaReceiptNumber"]),
            paid_amount=float(metadata["Amount"]),
            payer_phone=str(payer_phone) if payer_phone is not None else None,
        )
        if activated:
            logger.info(
                f"✅ Subscription {subscription.id} activated | receipt={activated.receipt_number} "
                f"phone={mask_phone(activated.payer_phone)}"
            )

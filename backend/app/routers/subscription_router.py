# routers/subscription_router.py
import logging
from fastapi import APIRouter, Depends, HTTPException, status

from app.core.auth import get_current_user
from app.core.config import settings
from app.core.dependencies import get_subscription_service
from app.core.errors import PaymentError
from app.core.mpesa import describe_result
from app.core.plans import PLANS, plans_for
from app.models.subscription_model import SubscribeRequest, Subscription
from app.models.user_model import AuthUser
from app.services.subscription_service import SubscriptionService
from app.utils.phone import mask_phone

router = APIRouter(prefix="/subscriptions", tags=["Subscription"])
logger = logging.getLogger("tikiti")


def _http_error(e: PaymentError) -> HTTPException:
    return HTTPException(status_code=e.status_code, detail=e.user_message)


def _present(subscription: Subscription) -> dict:
    data = subscription.model_dump()
    if subscription.status == "failed":
        data["failure_message"] = describe_result(
            subscription.result_code,
            subscription.failure_reason,
            settings.MPESA_RESULT_MESSAGES,
        )
    return data


# ------------------------------------------------------------
# PLANS (public)
# ------------------------------------------------------------
@router.get("/plans")
async def get_plans():
    return {
        "success": True,
        "data": [plan.model_dump() for plans in PLANS.values() for plan in plans],
    }


@router.get("/plans/{category}")
async def get_plans_by_category(category: str):
    plans = plans_for(category)
    if not plans:
        raise HTTPException(status_code=404, detail=f"No {category} plans found")
    return {"success": True, "data": [plan.model_dump() for plan in plans]}


# ------------------------------------------------------------
# SUBSCRIBE + PAY WITH M-PESA
# ------------------------------------------------------------
@router.post("/subscribe", status_code=status.HTTP_201_CREATED)
async def subscribe(
    payload: SubscribeRequest,
    user: AuthUser = Depends(get_current_user),
    service: SubscriptionService = Depends(get_subscription_service),
):
    logger.info(f"[Subscription] {user.uid} → {payload.category}/{payload.plan} phone={mask_phone(payload.phone)}")
    try:
        subscription, push = await service.subscribe(
            user.uid, payload.category, payload.plan, payload.phone
        )
    except PaymentError as e:
        logger.warning(f"[Subscription] {user.uid} subscribe failed: {e.message}")
        raise _http_error(e)

    return {
        "success": True,
        "message": "STK Push initiated. Enter M-Pesa PIN to complete.",
        "data": {
            "subscription": _present(subscription),
            "mpesa": {
                "checkout_request_id": push.checkout_request_id,
                "merchant_request_id": push.merchant_request_id,
                "customer_message": push.raw.get("CustomerMessage"),
            },
        },
    }


# ------------------------------------------------------------
# MY SUBSCRIPTIONS
# ------------------------------------------------------------
@router.get("/")
async def list_subscriptions(
    user: AuthUser = Depends(get_current_user),
    service: SubscriptionService = Depends(get_subscription_service),
):
    subs = await service.list_for_owner(user.uid)
    return {"success": True, "data": [_present(s) for s in subs]}


@router.get("/{subscription_id}")
async def get_subscription(
    subscription_id: str,
    user: AuthUser = Depends(get_current_user),
    service: SubscriptionService = Depends(get_subscription_service),
):
    try:
        subscription = await service.get_for_owner(user.uid, subscription_id)
    except PaymentError as e:
        raise _http_error(e)
    return {"success": True, "data": _present(subscription)}


@router.post("/{subscription_id}/refresh")
async def refresh_subscription(
    subscription_id: str,
    user: AuthUser = Depends(get_current_user),
    service: SubscriptionService = Depends(get_subscription_service),
):
    """Ask M-Pesa directly, for when the user is staring at a pending payment."""
    try:
        subscription, gateway_status = await service.refresh_status(user.uid, subscription_id)
    except PaymentError as e:
        logger.warning(f"[Subscription] Status check for {subscription_id} failed: {e.message}")
        raise _http_error(e)

    return {
        "success": True,
        "data": _present(subscription),
        "gateway": None if gateway_status is None else {
            "result_code": gateway_status.result_code,
            "result_desc": gateway_status.result_desc,
            "in_progress": gateway_status.in_progress,
        },
    }

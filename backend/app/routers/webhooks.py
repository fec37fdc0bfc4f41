# routers/webhooks.py
from fastapi import APIRouter, Depends, Request
import json
import logging

from app.core.dependencies import get_reconciler
from app.services.reconciler import ACK, CallbackReconciler

router = APIRouter(prefix="/subscriptions/mpesa", tags=["Webhooks"])
logger = logging.getLogger("tikiti.reconcile")


@router.post("/callback")
async def mpesa_callback(
    request: Request,
    reconciler: CallbackReconciler = Depends(get_reconciler),
):
    """
    Safaricom POSTs the STK outcome here. Always answer "Accepted": a
    non-zero answer only makes it redeliver, it never helps us.
    """
    body = await request.body()
    try:
        payload = json.loads(body)
    except ValueError:  # JSONDecodeError and UnicodeDecodeError
        logger.error(f"[M-Pesa Callback] Invalid JSON: {body[:500]!r}")
        return dict(ACK)

    logger.info(f"[M-Pesa Callback] Data received: {json.dumps(payload)[:2000]}")
    return await reconciler.reconcile_payload(payload)

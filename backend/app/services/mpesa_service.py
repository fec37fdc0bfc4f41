# app/services/mpesa_service.py
import logging
import math
from typing import Dict, Optional

import httpx

from app.core.config import settings
from app.core.errors import GatewayError, ValidationError
from app.core.mpesa import STK_PUSH_PATH, STK_QUERY_PATH, MpesaGateway, describe_result
from app.core.store import SubscriptionStore
from app.core.subscription import SubscriptionStateMachine
from app.models.mpesa_model import GatewayStatus, PushRequest, PushResult
from app.utils.phone import mask_phone, normalize_phone

logger = logging.getLogger("tikiti.mpesa")

# Daraja's answer to a status query while the user is still at the PIN prompt
STILL_PROCESSING_CODE = "500.001.1001"
QUERY_FAILED_MESSAGE = "Could not check the payment status. Please try again"


def _json(response: httpx.Response) -> dict:
    try:
        data = response.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


class PushInitiator:
    """Sends the STK push that makes the payer's phone ask for their PIN."""

    def __init__(
        self,
        gateway: MpesaGateway,
        callback_url: str = None,
        result_messages: Optional[Dict[str, str]] = None,
        country_code: str = None,
        transaction_type: str = None,
    ):
        self.gateway = gateway
        self.callback_url = callback_url or settings.MPESA_CALLBACK_URL
        self.result_messages = result_messages if result_messages is not None else settings.MPESA_RESULT_MESSAGES
        self.country_code = country_code or settings.MPESA_COUNTRY_CODE
        self.transaction_type = transaction_type or settings.MPESA_TRANSACTION_TYPE

    def build_request(self, phone: str, amount, account_reference, description: str) -> PushRequest:
        canonical = normalize_phone(phone, self.country_code)

        try:
            positive = amount is not None and math.isfinite(float(amount)) and float(amount) > 0
        except (TypeError, ValueError):
            positive = False
        if not positive:
            raise ValidationError(f"Amount must be a positive number, got {amount!r}")

        request = PushRequest.build(
            phone=canonical,
            amount=amount,
            account_reference=account_reference,
            description=description,
            callback_url=self.callback_url,
        )
        if request.amount < 1:
            raise ValidationError(f"Amount {amount!r} rounds to less than 1")
        if not request.account_reference:
            raise ValidationError("Account reference is required")
        return request

    async def initiate(
        self,
        phone: str,
        amount,
        account_reference,
        description: str = None,
    ) -> PushResult:
        """
        Raises ValidationError, AuthError, GatewayError or NetworkError.
        Never retried here: a second submission is a second PIN prompt.
        """
        request = self.build_request(
            phone, amount, account_reference, description or settings.MPESA_TRANSACTION_DESC
        )
        logger.info(
            f"[M-Pesa] Initiating STK Push | phone={mask_phone(request.phone)} "
            f"amount={request.amount} ref={request.account_reference}"
        )

        payload = {
            **self.gateway.signed_envelope(),
            "TransactionType": self.transaction_type,
            "Amount": request.amount,
            "PartyA": request.phone,
            "PartyB": self.gateway.shortcode,
            "PhoneNumber": request.phone,
            "CallBackURL": request.callback_url,
            "AccountReference": request.account_reference,
            "TransactionDesc": request.description,
        }

        response = await self.gateway.post(STK_PUSH_PATH, payload)
        data = _json(response)

        if response.is_success and str(data.get("ResponseCode")) == "0" and data.get("CheckoutRequestID"):
            logger.info(f"[M-Pesa] STK Push accepted | checkout={data['CheckoutRequestID']}")
            return PushResult(
                merchant_request_id=data.get("MerchantRequestID", ""),
                checkout_request_id=data["CheckoutRequestID"],
                raw=data,
            )

        code = data.get("ResponseCode", data.get("errorCode"))
        description_text = (
            data.get("ResponseDescription")
            or data.get("errorMessage")
            or response.text
            or f"HTTP {response.status_code}"
        )
        logger.error(
            f"[M-Pesa] STK Push rejected | status={response.status_code} code={code} "
            f"desc={description_text} ref={request.account_reference}"
        )
        raise GatewayError(
            f"M-Pesa API error: {description_text}",
            result_code=str(code) if code is not None else None,
            user_message=describe_result(code, description_text, self.result_messages),
        )


class StatusPoller:
    """
    Asks Daraja directly how an STK push ended, for when the callback is slow
    or lost. A success is applied through the same state-machine entry point
    the webhook uses, so whichever lands first wins and the other is a no-op.
    """

    def __init__(self, gateway: MpesaGateway, store: SubscriptionStore, state_machine: SubscriptionStateMachine):
        self.gateway = gateway
        self.store = store
        self.state_machine = state_machine

    async def query(self, checkout_request_id: str) -> GatewayStatus:
        if not checkout_request_id:
            raise ValidationError("CheckoutRequestID is required")

        payload = {
            **self.gateway.signed_envelope(),
            "CheckoutRequestID": checkout_request_id,
        }
        response = await self.gateway.post(STK_QUERY_PATH, payload)
        data = _json(response)

        if "ResultCode" in data:
            try:
                result_code = int(data["ResultCode"])
            except (TypeError, ValueError):
                logger.error(f"[M-Pesa] Non-numeric ResultCode for {checkout_request_id}: {data['ResultCode']!r}")
                raise GatewayError(
                    f"Unexpected ResultCode in status query response: {data['ResultCode']!r}",
                    user_message=QUERY_FAILED_MESSAGE,
                )
            status = GatewayStatus(
                checkout_request_id=checkout_request_id,
                result_code=result_code,
                result_desc=data.get("ResultDesc", ""),
                raw=data,
            )
        elif data.get("errorCode") == STILL_PROCESSING_CODE:
            status = GatewayStatus(
                checkout_request_id=checkout_request_id,
                result_desc=data.get("errorMessage", "The transaction is being processed"),
                raw=data,
            )
        else:
            logger.error(f"[M-Pesa] Status query failed | checkout={checkout_request_id} status={response.status_code} body={response.text}")
            raise GatewayError(
                f"Unexpected status query response ({response.status_code}): {response.text}",
                result_code=data.get("errorCode"),
                user_message=QUERY_FAILED_MESSAGE,
            )

        logger.info(f"[M-Pesa] Status {checkout_request_id}: code={status.result_code} desc={status.result_desc}")

        if status.succeeded:
            subscription = await self.store.find_by_checkout_id(checkout_request_id)
            if subscription is None:
                logger.warning(f"[M-Pesa] Status success for unknown checkout {checkout_request_id}")
            else:
                await self.state_machine.activate(subscription)

        return status

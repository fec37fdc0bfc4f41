# core/errors.py
from typing import Optional


class PaymentError(Exception):
    """Base for every failure the payment flow reports to a caller.

    `status_code` is what a router answers with; `user_message` is safe to
    show to the payer (never a stack trace or raw gateway payload).
    """

    status_code = 500
    default_message: Optional[str] = "Payment request failed"

    def __init__(self, message: str, *, user_message: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.user_message = user_message or self.default_message or message


class ValidationError(PaymentError):
    """Bad phone, amount, plan or reference. The caller's fault."""

    status_code = 400
    default_message = None


class InvalidPhoneFormat(ValidationError):
    def __init__(self, raw):
        super().__init__(f"Invalid phone number format: {raw}")
        self.raw = raw


class AuthError(PaymentError):
    """Credential misconfiguration or exhausted token refresh. The operator's fault."""

    status_code = 503
    default_message = "Payments are temporarily unavailable. Please try again later"


class GatewayError(PaymentError):
    """M-Pesa rejected the request or reported a failure."""

    status_code = 402
    default_message = "Payment initiation failed"

    def __init__(
        self,
        message: str,
        *,
        result_code: Optional[str] = None,
        user_message: Optional[str] = None,
    ):
        super().__init__(message, user_message=user_message)
        self.result_code = result_code


class NetworkError(PaymentError):
    """No response from M-Pesa. Transient, safe to ask the user to retry."""

    status_code = 504
    default_message = "Could not reach M-Pesa. Please try again"


class NotFoundError(PaymentError):
    status_code = 404
    default_message = None


class ConflictError(PaymentError):
    status_code = 409
    default_message = None

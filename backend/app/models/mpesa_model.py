# models/mpesa_model.py
from pydantic import BaseModel, Field
from typing import Any, Dict, Optional
from datetime import datetime, timedelta

# Daraja limits on the text shown in the STK prompt
ACCOUNT_REFERENCE_MAX = 12
DESCRIPTION_MAX = 13


class AccessToken(BaseModel):
    """OAuth bearer token. Lives in memory only."""
    value: str
    issued_at: datetime
    expires_at: datetime

    class Config:
        frozen = True

    def is_fresh(self, now: datetime, safety_margin: float) -> bool:
        return now + timedelta(seconds=safety_margin) < self.expires_at


class PushRequest(BaseModel):
    phone: str
    amount: int
    account_reference: str
    description: str
    callback_url: str

    class Config:
        frozen = True

    @classmethod
    def build(cls, phone: str, amount, account_reference, description: str, callback_url: str) -> "PushRequest":
        return cls(
            phone=phone,
            amount=int(float(amount) + 0.5),
            account_reference=str(account_reference)[:ACCOUNT_REFERENCE_MAX],
            description=description[:DESCRIPTION_MAX],
            callback_url=callback_url,
        )


class PushResult(BaseModel):
    merchant_request_id: str
    checkout_request_id: str
    raw: Dict[str, Any] = Field(default_factory=dict)

    class Config:
        frozen = True


class OutcomeNotification(BaseModel):
    """One stkCallback, flattened. `metadata` maps Item Name -> Value."""
    checkout_request_id: str
    merchant_request_id: Optional[str] = None
    result_code: int
    result_desc: str = ""
    metadata: Dict[str, Any] = Field(default_factory=dict)
    raw: Dict[str, Any] = Field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return self.result_code == 0


class GatewayStatus(BaseModel):
    """Answer to an STK status query. `result_code` is None while M-Pesa is still processing."""
    checkout_request_id: str
    result_code: Optional[int] = None
    result_desc: str = ""
    raw: Dict[str, Any] = Field(default_factory=dict)

    @property
    def in_progress(self) -> bool:
        return self.result_code is None

    @property
    def succeeded(self) -> bool:
        return self.result_code == 0

# models/subscription_model.py
import uuid
from pydantic import BaseModel, Field
from typing import Literal, Optional
from datetime import datetime, timezone

SubscriptionStatus = Literal["pending", "active", "failed", "expired", "cancelled"]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_subscription_id() -> str:
    # 12 hex chars: the whole id fits Daraja's AccountReference limit
    return uuid.uuid4().hex[:12]


class Subscription(BaseModel):
    """One purchased pass, stored in the `subscriptions` collection."""
    id: str = Field(default_factory=new_subscription_id)
    owner_id: str
    category: str
    plan_name: str
    amount: int

    status: SubscriptionStatus = "pending"
    start_date: Optional[datetime] = None   # set on activation only
    end_date: datetime

    # Daraja correlation
    checkout_request_id: Optional[str] = None
    merchant_request_id: Optional[str] = None

    # Outcome
    receipt_number: Optional[str] = None
    paid_amount: Optional[float] = None
    payer_phone: Optional[str] = None
    result_code: Optional[int] = None
    failure_reason: Optional[str] = None

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def to_document(self) -> dict:
        return self.model_dump()


class SubscribeRequest(BaseModel):
    category: str
    plan: str
    phone: str

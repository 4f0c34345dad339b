"""
Payment Pydantic schemas.

Defines request and response models for checkout and payment confirmation.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from decimal import Decimal
from typing import Optional, List


class CheckoutSessionRequest(BaseModel):
    """Schema for starting checkout."""
    parcel_id: int = Field(..., ge=1, description="Parcel to pay for")


class CheckoutSessionResponse(BaseModel):
    """Gateway redirect for the hosted checkout page."""
    url: str


class PaymentConfirmationResponse(BaseModel):
    """Schema for a reconciled payment."""
    tracking_id: str
    transaction_id: str
    parcel_id: int


class PaymentRecordResponse(BaseModel):
    """Schema for a payment ledger entry."""
    id: int
    idempotency_key: str
    parcel_id: int
    amount: Decimal
    currency: str
    customer_email: Optional[str]
    parcel_name: Optional[str]
    tracking_id: str
    paid_at: datetime

    class Config:
        from_attributes = True


class PaymentListResponse(BaseModel):
    """Schema for payment history."""
    payments: List[PaymentRecordResponse]
    total: int

"""
Checkout & Payment API Endpoints.

- POST  /payments/checkout-session  start hosted checkout for a parcel
- PATCH /payments/confirm           apply a gateway confirmation (idempotent)
- GET   /payments                   payment history
"""

from typing import Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from backend.app.db.session import get_db
from backend.app.core.dependencies import get_gateway
from backend.app.domain.payments import ledger
from backend.app.domain.payments.checkout import initiate_checkout
from backend.app.domain.payments.reconciliation import confirm_payment
from backend.app.integrations.payment_gateway import PaymentGateway
from backend.app.schemas.payment import (
    CheckoutSessionRequest,
    CheckoutSessionResponse,
    PaymentConfirmationResponse,
    PaymentRecordResponse,
    PaymentListResponse,
)

router = APIRouter(prefix="/payments", tags=["Payments"])


@router.post("/checkout-session", response_model=CheckoutSessionResponse)
async def create_checkout_session(
    payload: CheckoutSessionRequest,
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(get_gateway)
):
    """
    Create a gateway checkout session for a pending parcel.

    Errors: 400 invalid cost or parcel already paid, 404 unknown parcel,
    502 gateway unavailable (retry is up to the user).
    """
    url = await initiate_checkout(db, gateway, payload.parcel_id)
    return CheckoutSessionResponse(url=url)


@router.patch("/confirm", response_model=PaymentConfirmationResponse)
async def confirm_checkout_payment(
    session_id: str = Query(..., min_length=1, description="Gateway checkout session ID"),
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(get_gateway)
):
    """
    Confirm payment for a checkout session.

    Safe to call any number of times for the same session: the same
    tracking ID is returned and the payment is recorded once.
    """
    return PaymentConfirmationResponse(**await confirm_payment(db, gateway, session_id))


@router.get("", response_model=PaymentListResponse)
async def list_payment_history(
    customer_email: Optional[str] = Query(None, description="Only payments by this customer"),
    limit: int = Query(100, ge=1, le=500),
    db: AsyncSession = Depends(get_db)
):
    """Payment history, most recent first."""
    payments = await ledger.list_payments(db, customer_email=customer_email, limit=limit)
    return PaymentListResponse(
        payments=[PaymentRecordResponse.model_validate(p) for p in payments],
        total=len(payments)
    )

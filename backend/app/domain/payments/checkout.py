"""
Checkout Session Initiation.

Creates a hosted checkout session for a pending parcel. The parcel ID and
name travel to the gateway as session metadata, which is how a later
confirmation is correlated back to the parcel.
"""

import logging
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.config import settings
from backend.app.core.exceptions import InvalidInputError, ParcelNotFoundError
from backend.app.domain.parcels.state_machine import get_parcel
from backend.app.integrations.payment_gateway import CheckoutSessionHandle, PaymentGateway
from backend.app.models.parcel import Parcel
from backend.app.models.parcel_enums import ParcelStatus
from backend.app.services.audit import log_event, AuditAction

logger = logging.getLogger("zapshift.checkout")

METADATA_PARCEL_ID = "parcel_id"
METADATA_PARCEL_NAME = "parcel_name"


def to_minor_units(cost: Any) -> int:
    """
    Convert a cost in major units (e.g. dollars) to minor units (cents).

    Raises:
        InvalidInputError: cost is not numeric, not finite, or not positive
    """
    if isinstance(cost, bool):
        raise InvalidInputError("Cost must be numeric", details={"cost": str(cost)})
    try:
        value = Decimal(str(cost))
    except (InvalidOperation, ValueError, TypeError):
        raise InvalidInputError("Cost must be numeric", details={"cost": str(cost)})

    if not value.is_finite():
        raise InvalidInputError("Cost must be numeric", details={"cost": str(cost)})

    minor = int((value * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    if minor <= 0:
        raise InvalidInputError("Cost must be positive", details={"cost": str(cost)})
    return minor


async def create_checkout_session(
    gateway: PaymentGateway,
    parcel: Parcel,
    cost_minor_units: Optional[int] = None,
) -> CheckoutSessionHandle:
    """
    Create a gateway checkout session for a pending parcel.

    Args:
        gateway: Payment gateway
        parcel: Parcel to be paid (must be PENDING)
        cost_minor_units: Amount to charge; derived from parcel.cost when omitted

    Returns:
        CheckoutSessionHandle with the redirect URL

    Raises:
        InvalidInputError: parcel not pending, or cost invalid
        GatewayUnavailableError: gateway call failed (not retried)
    """
    if parcel.status != ParcelStatus.PENDING:
        raise InvalidInputError(
            "Parcel is already paid",
            details={"parcel_id": parcel.id, "status": parcel.status.value}
        )

    if cost_minor_units is None:
        amount = to_minor_units(parcel.cost)
    elif isinstance(cost_minor_units, int) and not isinstance(cost_minor_units, bool) and cost_minor_units > 0:
        amount = cost_minor_units
    else:
        raise InvalidInputError(
            "Cost must be a positive integer amount of minor units",
            details={"cost": str(cost_minor_units)}
        )

    handle = await gateway.create_checkout_session(
        metadata={
            METADATA_PARCEL_ID: str(parcel.id),
            METADATA_PARCEL_NAME: parcel.parcel_name,
        },
        amount=amount,
        currency=settings.payment_currency,
        product_name=parcel.parcel_name,
        customer_email=parcel.sender_email,
    )

    logger.info(
        "Checkout session created",
        extra={"parcel_id": parcel.id, "session_id": handle.id, "amount": amount}
    )
    return handle


async def initiate_checkout(db: AsyncSession, gateway: PaymentGateway, parcel_id: int) -> str:
    """
    Start checkout for a parcel and return the gateway redirect URL.

    Raises:
        ParcelNotFoundError: no such parcel
        InvalidInputError: parcel not pending or cost invalid
        GatewayUnavailableError: gateway call failed
    """
    parcel = await get_parcel(db, parcel_id)
    if parcel is None:
        raise ParcelNotFoundError(parcel_id)

    handle = await create_checkout_session(gateway, parcel)

    await log_event(
        db=db,
        action=AuditAction.CHECKOUT_SESSION_CREATED,
        actor=parcel.sender_email,
        parcel_id=parcel.id,
        metadata={"session_id": handle.id}
    )
    return handle.redirect_url

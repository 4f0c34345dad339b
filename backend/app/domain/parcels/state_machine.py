"""
Parcel lifecycle.

PENDING → PAID is the only transition. It is applied with a guarded
UPDATE (compare-and-swap on status) so two racing reconciliations can
never both win, and a paid parcel is never overwritten.
"""

import enum
import logging
from typing import Optional

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.exceptions import ParcelHasPaymentError
from backend.app.domain.payments import ledger
from backend.app.models.parcel import Parcel
from backend.app.models.parcel_enums import ParcelStatus

logger = logging.getLogger("zapshift.parcels")


class TransitionOutcome(str, enum.Enum):
    TRANSITIONED = "TRANSITIONED"  # This call moved the parcel to PAID
    ALREADY_PAID_SAME = "ALREADY_PAID_SAME"  # Already PAID with the same tracking ID
    ALREADY_PAID_OTHER = "ALREADY_PAID_OTHER"  # Already PAID with a different tracking ID
    NOT_FOUND = "NOT_FOUND"


async def get_parcel(db: AsyncSession, parcel_id: int, refresh: bool = False) -> Optional[Parcel]:
    """Point lookup; `refresh` bypasses the session identity map."""
    return await db.get(Parcel, parcel_id, populate_existing=refresh)


async def mark_paid(db: AsyncSession, parcel_id: int, tracking_id: str) -> TransitionOutcome:
    """
    Move a parcel from PENDING to PAID and assign its tracking ID.

    Args:
        db: Database session
        parcel_id: Parcel to transition
        tracking_id: Tracking ID recorded in the parcel's ledger entry

    Returns:
        TransitionOutcome
    """
    result = await db.execute(
        update(Parcel)
        .where(Parcel.id == parcel_id, Parcel.status == ParcelStatus.PENDING)
        .values(status=ParcelStatus.PAID, tracking_id=tracking_id)
        .execution_options(synchronize_session=False)
    )
    await db.commit()

    if result.rowcount == 1:
        return TransitionOutcome.TRANSITIONED

    parcel = await get_parcel(db, parcel_id, refresh=True)
    if parcel is None:
        return TransitionOutcome.NOT_FOUND
    if parcel.tracking_id == tracking_id:
        return TransitionOutcome.ALREADY_PAID_SAME

    logger.error(
        "Parcel already paid with a different tracking ID",
        extra={
            "parcel_id": parcel_id,
            "tracking_id": tracking_id,
            "existing_tracking_id": parcel.tracking_id,
        }
    )
    return TransitionOutcome.ALREADY_PAID_OTHER


async def ensure_deletable(db: AsyncSession, parcel: Parcel) -> None:
    """
    Reject deletion of a parcel referenced by the payment ledger.

    Raises:
        ParcelHasPaymentError: a payment record exists for the parcel
    """
    if parcel.status == ParcelStatus.PAID or await ledger.count_for_parcel(db, parcel.id):
        raise ParcelHasPaymentError(parcel.id)

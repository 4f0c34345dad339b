"""
Payment Ledger.

Append-only store of confirmed payments. The single insert performed by
`reserve_payment` is both the idempotency reservation and the ledger append:
it succeeds for exactly one caller per idempotency key, per parcel and per
tracking ID, no matter how many service instances race on it.
"""

import enum
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from sqlalchemy import select, func, desc
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.models.parcel import Parcel
from backend.app.models.parcel_enums import ParcelStatus
from backend.app.models.payment_record import PaymentRecord

logger = logging.getLogger("zapshift.ledger")


class LedgerConflict(str, enum.Enum):
    """Which uniqueness rule rejected a reservation."""
    DUPLICATE_KEY = "DUPLICATE_KEY"  # Same transaction seen before
    PARCEL_ALREADY_PAID = "PARCEL_ALREADY_PAID"  # Another transaction owns the parcel
    TRACKING_COLLISION = "TRACKING_COLLISION"  # Generated tracking ID already taken
    PARCEL_MISSING = "PARCEL_MISSING"  # Parcel deleted before the insert


@dataclass(frozen=True)
class LedgerEntry:
    """Snapshot of a confirmed transaction, ready to be appended."""
    idempotency_key: str
    parcel_id: int
    amount: Decimal
    currency: str
    customer_email: Optional[str]
    parcel_name: Optional[str]
    tracking_id: str


@dataclass
class Reservation:
    """Outcome of a reservation attempt."""
    record: Optional[PaymentRecord]
    conflict: Optional[LedgerConflict] = None

    @property
    def created(self) -> bool:
        return self.conflict is None


async def reserve_payment(db: AsyncSession, entry: LedgerEntry) -> Reservation:
    """
    Append a payment record, or report why it could not be appended.

    Commits on success. On an integrity violation the session is rolled
    back and the violated rule is identified by re-reading the ledger:
    - DUPLICATE_KEY carries the existing record for the same key
    - PARCEL_ALREADY_PAID carries the record already owning the parcel
    - PARCEL_MISSING carries no record (foreign key to a deleted parcel)
    - TRACKING_COLLISION carries no record

    Args:
        db: Database session
        entry: Snapshot to persist

    Returns:
        Reservation

    Raises:
        IntegrityError: the violation matches none of the rules above
    """
    record = PaymentRecord(
        idempotency_key=entry.idempotency_key,
        parcel_id=entry.parcel_id,
        amount=entry.amount,
        currency=entry.currency,
        customer_email=entry.customer_email,
        parcel_name=entry.parcel_name,
        tracking_id=entry.tracking_id,
    )
    db.add(record)
    try:
        await db.commit()
    except IntegrityError as e:
        await db.rollback()
        violation = e
    else:
        await db.refresh(record)
        return Reservation(record=record)

    existing = await get_by_idempotency_key(db, entry.idempotency_key)
    if existing is not None:
        return Reservation(record=existing, conflict=LedgerConflict.DUPLICATE_KEY)

    owner = await get_by_parcel_id(db, entry.parcel_id)
    if owner is not None:
        return Reservation(record=owner, conflict=LedgerConflict.PARCEL_ALREADY_PAID)

    if not await parcel_exists(db, entry.parcel_id):
        logger.info("Parcel missing at reservation", extra={"parcel_id": entry.parcel_id})
        return Reservation(record=None, conflict=LedgerConflict.PARCEL_MISSING)

    if await get_by_tracking_id(db, entry.tracking_id) is not None:
        logger.warning(
            "Tracking ID collision",
            extra={"tracking_id": entry.tracking_id, "parcel_id": entry.parcel_id}
        )
        return Reservation(record=None, conflict=LedgerConflict.TRACKING_COLLISION)

    raise violation


async def get_by_idempotency_key(db: AsyncSession, idempotency_key: str) -> Optional[PaymentRecord]:
    result = await db.execute(
        select(PaymentRecord).where(PaymentRecord.idempotency_key == idempotency_key)
    )
    return result.scalar_one_or_none()


async def get_by_parcel_id(db: AsyncSession, parcel_id: int) -> Optional[PaymentRecord]:
    result = await db.execute(
        select(PaymentRecord).where(PaymentRecord.parcel_id == parcel_id)
    )
    return result.scalar_one_or_none()


async def get_by_tracking_id(db: AsyncSession, tracking_id: str) -> Optional[PaymentRecord]:
    result = await db.execute(
        select(PaymentRecord).where(PaymentRecord.tracking_id == tracking_id)
    )
    return result.scalar_one_or_none()


async def parcel_exists(db: AsyncSession, parcel_id: int) -> bool:
    result = await db.execute(select(Parcel.id).where(Parcel.id == parcel_id))
    return result.scalar_one_or_none() is not None


async def count_for_parcel(db: AsyncSession, parcel_id: int) -> int:
    result = await db.execute(
        select(func.count(PaymentRecord.id)).where(PaymentRecord.parcel_id == parcel_id)
    )
    return result.scalar()


async def list_payments(
    db: AsyncSession,
    customer_email: Optional[str] = None,
    limit: int = 100
) -> list[PaymentRecord]:
    """
    List payment history, most recent first.

    Args:
        db: Database session
        customer_email: Only payments made by this customer
        limit: Maximum number of records
    """
    query = select(PaymentRecord).order_by(desc(PaymentRecord.paid_at), desc(PaymentRecord.id))
    if customer_email:
        query = query.where(PaymentRecord.customer_email == customer_email)
    result = await db.execute(query.limit(limit))
    return result.scalars().all()


async def find_unsettled(db: AsyncSession) -> list[PaymentRecord]:
    """
    Ledger rows whose parcel was never moved to PAID.

    Only a crash between reservation and the parcel update leaves such rows.
    """
    result = await db.execute(
        select(PaymentRecord)
        .join(Parcel, Parcel.id == PaymentRecord.parcel_id)
        .where(Parcel.status == ParcelStatus.PENDING)
        .order_by(PaymentRecord.id)
    )
    return result.scalars().all()

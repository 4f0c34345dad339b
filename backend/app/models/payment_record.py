"""
Payment Record database model (the payment ledger).

Immutable record of a confirmed gateway transaction.
"""

from sqlalchemy import Column, Integer, String, Numeric, ForeignKey, DateTime
from sqlalchemy.sql import func
from backend.app.db.session import Base


class PaymentRecord(Base):
    """
    Payment Record model.

    One row per gateway transaction, one row per parcel at most.
    The unique constraints are the reservation point for reconciliation:
    - idempotency_key: collapses duplicate delivery of the same confirmation
    - parcel_id: a parcel is paid by one transaction only
    - tracking_id: tracking IDs are never reused
    NO updates or deletions allowed.
    """
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Gateway transaction identifier
    idempotency_key = Column(String(255), unique=True, nullable=False, index=True)

    # Linkage
    parcel_id = Column(Integer, ForeignKey('parcels.id', ondelete="RESTRICT"), unique=True, nullable=False, index=True)

    # Snapshot taken at confirmation time
    amount = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(3), nullable=False)
    customer_email = Column(String(255), nullable=True, index=True)
    parcel_name = Column(String(200), nullable=True)
    tracking_id = Column(String(64), unique=True, nullable=False)

    # Timestamps (Immutable - no updated_at)
    paid_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<PaymentRecord(id={self.id}, key='{self.idempotency_key}', parcel_id={self.parcel_id})>"

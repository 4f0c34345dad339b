"""
Parcel database model.

A parcel is a shipment request created by a sender and paid for through checkout.
"""

from sqlalchemy import Column, Integer, String, Numeric, DateTime, Enum
from sqlalchemy.sql import func
from backend.app.db.session import Base
from backend.app.models.parcel_enums import ParcelStatus


class Parcel(Base):
    """
    Parcel model for the shipping platform.

    Descriptive fields are immutable after creation.
    `status` and `tracking_id` are written together, exactly once,
    by payment reconciliation.
    """
    __tablename__ = "parcels"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Parcel identification
    parcel_name = Column(String(200), nullable=False)
    sender_email = Column(String(255), nullable=False, index=True)

    # Financials
    cost = Column(Numeric(10, 2), nullable=False)

    # Status
    status = Column(
        Enum(ParcelStatus, name="parcel_status", values_callable=lambda e: [m.value for m in e]),
        default=ParcelStatus.PENDING,
        nullable=False,
        index=True,
    )
    tracking_id = Column(String(64), unique=True, nullable=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def __repr__(self):
        return f"<Parcel(id={self.id}, name='{self.parcel_name}', status='{self.status.value}')>"

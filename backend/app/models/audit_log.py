"""
Audit Log Database Model.

Tracks parcel and payment events for operator review.
"""

from sqlalchemy import Column, Integer, String, DateTime, JSON
from sqlalchemy.sql import func
from backend.app.db.session import Base


class AuditLog(Base):
    """
    Audit log model for tracking parcel and payment events.

    Events logged:
    - PARCEL_CREATED / PARCEL_DELETED / PARCEL_DELETE_REJECTED
    - CHECKOUT_SESSION_CREATED
    - PAYMENT_RECONCILED / PAYMENT_RECOVERED
    - PAYMENT_CONFLICT (integrity alarm)
    """
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Who performed the action ("system" for gateway-driven actions)
    actor = Column(String(255), nullable=True)

    # What action was performed
    action = Column(String(100), nullable=False, index=True)

    # Parcel the action concerns (no FK: audit rows outlive parcels)
    parcel_id = Column(Integer, index=True, nullable=True)

    # Additional context (JSON for flexibility)
    meta_data = Column(JSON, nullable=True)

    ip_address = Column(String(50), nullable=True)

    # Timestamp
    timestamp = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)

    def __repr__(self):
        return f"<AuditLog(id={self.id}, action='{self.action}', parcel_id={self.parcel_id})>"

"""
Audit logging service for tracking parcel and payment events.

Provides centralized logging for operator review and compliance.
"""

from typing import Optional, Dict, Any
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, desc
from backend.app.models.audit_log import AuditLog

SYSTEM_ACTOR = "system"


# Audit event constants
class AuditAction:
    """Standardized audit action constants."""

    # Parcel Management
    PARCEL_CREATED = "PARCEL_CREATED"
    PARCEL_DELETED = "PARCEL_DELETED"
    PARCEL_DELETE_REJECTED = "PARCEL_DELETE_REJECTED"

    # Checkout & Payments
    CHECKOUT_SESSION_CREATED = "CHECKOUT_SESSION_CREATED"
    PAYMENT_RECONCILED = "PAYMENT_RECONCILED"
    PAYMENT_RECOVERED = "PAYMENT_RECOVERED"
    PAYMENT_CONFLICT = "PAYMENT_CONFLICT"


async def log_event(
    db: AsyncSession,
    action: str,
    actor: Optional[str] = SYSTEM_ACTOR,
    parcel_id: Optional[int] = None,
    metadata: Optional[Dict[str, Any]] = None,
    ip_address: Optional[str] = None
) -> AuditLog:
    """
    Log a parcel or payment event to the audit log.

    Args:
        db: Database session
        action: Action being performed (use AuditAction constants)
        actor: Who performed the action (email, or "system")
        parcel_id: Parcel the event concerns
        metadata: Additional context as JSON
        ip_address: IP address of the request

    Returns:
        Created AuditLog instance
    """
    audit_log = AuditLog(
        actor=actor,
        action=action,
        parcel_id=parcel_id,
        meta_data=metadata,
        ip_address=ip_address
    )

    db.add(audit_log)
    await db.commit()
    await db.refresh(audit_log)

    return audit_log


async def get_audit_trail(
    db: AsyncSession,
    parcel_id: Optional[int] = None,
    action: Optional[str] = None,
    limit: int = 100
) -> list[AuditLog]:
    """
    Retrieve audit trail with optional filtering.

    Args:
        db: Database session
        parcel_id: Filter by parcel ID
        action: Filter by action type
        limit: Maximum number of records to return

    Returns:
        List of AuditLog instances, most recent first
    """
    query = select(AuditLog).order_by(desc(AuditLog.timestamp), desc(AuditLog.id))

    if parcel_id:
        query = query.where(AuditLog.parcel_id == parcel_id)

    if action:
        query = query.where(AuditLog.action == action)

    query = query.limit(limit)

    result = await db.execute(query)
    return result.scalars().all()

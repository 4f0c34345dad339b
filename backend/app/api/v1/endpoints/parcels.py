"""
Parcel Management API Endpoints.

Create, list, fetch and delete parcels. Deletion is refused once a
payment has been recorded for the parcel.
"""

from typing import Optional
from fastapi import APIRouter, Depends, Request, status, Query, Path
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import IntegrityError
from sqlalchemy import select, func
from backend.app.db.session import get_db
from backend.app.models.parcel import Parcel
from backend.app.models.parcel_enums import ParcelStatus
from backend.app.schemas.parcel import ParcelCreate, ParcelResponse, ParcelListResponse
from backend.app.core.exceptions import ParcelNotFoundError, ParcelHasPaymentError
from backend.app.domain.parcels.state_machine import ensure_deletable, get_parcel
from backend.app.services.audit import log_event, AuditAction

router = APIRouter(prefix="/parcels", tags=["Parcels"])


@router.post("", response_model=ParcelResponse, status_code=status.HTTP_201_CREATED)
async def create_parcel(
    request: Request,
    parcel_data: ParcelCreate,
    db: AsyncSession = Depends(get_db)
):
    """
    Create a new parcel.

    Parcels always start PENDING without a tracking ID.
    """
    new_parcel = Parcel(
        parcel_name=parcel_data.parcel_name,
        sender_email=parcel_data.sender_email,
        cost=parcel_data.cost,
        status=ParcelStatus.PENDING,
    )

    db.add(new_parcel)
    await db.commit()
    await db.refresh(new_parcel)

    # Audit log
    await log_event(
        db=db,
        action=AuditAction.PARCEL_CREATED,
        actor=new_parcel.sender_email,
        parcel_id=new_parcel.id,
        metadata={"parcel_name": new_parcel.parcel_name, "cost": str(new_parcel.cost)},
        ip_address=request.client.host if request.client else None
    )

    return ParcelResponse.model_validate(new_parcel)


@router.get("", response_model=ParcelListResponse)
async def list_parcels(
    sender_email: Optional[str] = Query(None, description="Only parcels sent by this email"),
    limit: int = Query(50, ge=1, le=100, description="Maximum number of parcels"),
    db: AsyncSession = Depends(get_db)
):
    """List parcels, newest first."""
    count_query = select(func.count(Parcel.id))
    query = select(Parcel).order_by(Parcel.created_at.desc(), Parcel.id.desc()).limit(limit)
    if sender_email:
        count_query = count_query.where(Parcel.sender_email == sender_email)
        query = query.where(Parcel.sender_email == sender_email)

    total = (await db.execute(count_query)).scalar()
    parcels = (await db.execute(query)).scalars().all()

    return ParcelListResponse(
        parcels=[ParcelResponse.model_validate(p) for p in parcels],
        total=total
    )


@router.get("/{parcel_id}", response_model=ParcelResponse)
async def get_parcel_details(
    parcel_id: int = Path(..., description="Parcel ID"),
    db: AsyncSession = Depends(get_db)
):
    """Get details of a specific parcel."""
    parcel = await get_parcel(db, parcel_id)
    if parcel is None:
        raise ParcelNotFoundError(parcel_id)

    return ParcelResponse.model_validate(parcel)


@router.delete("/{parcel_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_parcel(
    request: Request,
    parcel_id: int = Path(..., description="Parcel ID"),
    db: AsyncSession = Depends(get_db)
):
    """
    Delete a parcel.

    Refused with 409 when a payment record references the parcel.
    """
    parcel = await get_parcel(db, parcel_id)
    if parcel is None:
        raise ParcelNotFoundError(parcel_id)

    try:
        await ensure_deletable(db, parcel)
        await db.delete(parcel)
        await db.commit()
    except (ParcelHasPaymentError, IntegrityError):
        # IntegrityError: a payment was recorded between the check and the delete
        await db.rollback()
        await log_event(
            db=db,
            action=AuditAction.PARCEL_DELETE_REJECTED,
            actor=None,
            parcel_id=parcel_id,
            ip_address=request.client.host if request.client else None
        )
        raise ParcelHasPaymentError(parcel_id)

    await log_event(
        db=db,
        action=AuditAction.PARCEL_DELETED,
        actor=None,
        parcel_id=parcel_id,
        ip_address=request.client.host if request.client else None
    )

"""
Parcel Pydantic schemas.

Defines request and response models for parcel management.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from decimal import Decimal
from typing import Optional, List
from backend.app.models.parcel_enums import ParcelStatus


class ParcelCreate(BaseModel):
    """Schema for creating a new parcel."""
    parcel_name: str = Field(..., min_length=1, max_length=200, description="Display name of the parcel")
    sender_email: str = Field(..., min_length=3, max_length=255, pattern=r"^[^@\s]+@[^@\s]+$", description="Sender email")
    cost: Decimal = Field(..., gt=0, max_digits=10, decimal_places=2, description="Shipping cost in major units")


class ParcelResponse(BaseModel):
    """Schema for parcel response."""
    id: int
    parcel_name: str
    sender_email: str
    cost: Decimal
    status: ParcelStatus
    tracking_id: Optional[str]
    created_at: datetime

    class Config:
        from_attributes = True


class ParcelListResponse(BaseModel):
    """Schema for parcel list."""
    parcels: List[ParcelResponse]
    total: int

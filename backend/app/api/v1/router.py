"""
API v1 Router.

Aggregates all v1 API endpoints.
"""

from fastapi import APIRouter
from backend.app.api.v1.endpoints import parcels, payments

router = APIRouter()

# Parcel endpoints
router.include_router(parcels.router)

# Checkout & payment endpoints
router.include_router(payments.router)

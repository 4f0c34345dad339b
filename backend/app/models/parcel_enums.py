"""
Parcel Status Enumeration.
"""

import enum


class ParcelStatus(str, enum.Enum):
    """
    Parcel status enumeration.

    Status flow:
        PENDING → PAID (once, via payment reconciliation only)
    """
    PENDING = "pending"
    PAID = "paid"

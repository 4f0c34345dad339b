"""
Tracking ID generation.

Format: <PREFIX>-<YYYYMMDD>-<8 hex chars>, e.g. PRCL-20250114-9F3A01BC.
The date is the UTC date of generation. Uniqueness is enforced by the
payment ledger, which retries generation on collision.
"""

import re
import secrets
from datetime import datetime, timezone
from typing import Optional

from backend.app.core.config import settings

TRACKING_ID_PATTERN = re.compile(r"^[A-Z0-9]+-\d{8}-[0-9A-F]{8}$")


def generate_tracking_id(prefix: Optional[str] = None, now: Optional[datetime] = None) -> str:
    """
    Generate a human-readable tracking ID.

    Reads only the clock and the OS random source; never touches storage.

    Args:
        prefix: Carrier prefix (defaults to settings.tracking_id_prefix)
        now: Override for the current time (naive values are treated as UTC)

    Returns:
        Tracking ID string
    """
    prefix = (prefix or settings.tracking_id_prefix).upper()
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is not None:
        now = now.astimezone(timezone.utc)
    suffix = secrets.token_hex(4).upper()
    return f"{prefix}-{now:%Y%m%d}-{suffix}"

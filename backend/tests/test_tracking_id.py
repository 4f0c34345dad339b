"""
Unit tests for tracking ID generation.
"""

from datetime import datetime, timedelta, timezone

from backend.app.core.config import settings
from backend.app.domain.parcels.tracking import TRACKING_ID_PATTERN, generate_tracking_id


def test_tracking_id_format():
    tracking_id = generate_tracking_id()

    assert TRACKING_ID_PATTERN.match(tracking_id)
    assert tracking_id.startswith(f"{settings.tracking_id_prefix}-")
    assert len(tracking_id.rsplit("-", 1)[1]) == 8


def test_tracking_id_uses_utc_date():
    now = datetime(2025, 1, 15, 1, 30, tzinfo=timezone(timedelta(hours=5)))

    tracking_id = generate_tracking_id(now=now)

    assert tracking_id.startswith("PRCL-20250114-")


def test_tracking_id_custom_prefix_is_upper_cased():
    tracking_id = generate_tracking_id(prefix="zs", now=datetime(2024, 2, 29))

    assert tracking_id.startswith("ZS-20240229-")
    assert TRACKING_ID_PATTERN.match(tracking_id)


def test_tracking_ids_are_random():
    ids = {generate_tracking_id() for _ in range(200)}

    assert len(ids) == 200

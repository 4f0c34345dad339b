"""
Payment recovery pass.

Settles payments whose ledger entry was written but whose parcel is still
PENDING (process died between the two steps). Safe to run at any time and
any number of times, including while the API is serving traffic.

Usage:
    python -m scripts.recover_payments
"""

import asyncio
import logging
import sys

from backend.app.core.config import settings
from backend.app.core.observability import configure_logging
from backend.app.db.session import create_engine, create_session_factory
from backend.app.domain.payments.reconciliation import ReconciliationCoordinator, ReconciliationState
from backend.app.integrations.stripe_gateway import StripeGateway

logger = logging.getLogger("zapshift.recovery")


async def recover_payments() -> int:
    """Run one recovery pass; returns the number of entries that could not be settled."""
    engine = create_engine(settings)
    session_factory = create_session_factory(engine)
    coordinator = ReconciliationCoordinator(StripeGateway.from_settings(settings))

    try:
        async with session_factory() as db:
            results = await coordinator.recover_unsettled(db)
    finally:
        await engine.dispose()

    failed = [r for r in results if r.state == ReconciliationState.FAILED]
    for result in results:
        logger.info(
            "Recovered entry",
            extra={
                "parcel_id": result.parcel_id,
                "transaction_id": result.transaction_id,
                "state": result.state.value,
                "error_code": result.error_code,
            }
        )
    logger.info("Recovery finished", extra={"settled": len(results) - len(failed), "failed": len(failed)})
    return len(failed)


if __name__ == "__main__":
    configure_logging(settings.log_level)
    sys.exit(1 if asyncio.run(recover_payments()) else 0)

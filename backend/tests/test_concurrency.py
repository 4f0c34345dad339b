"""
Concurrency Tests.

Validates that racing reconciliations are resolved by the ledger's
unique constraints and the guarded parcel update. Each racer gets its
own session (and connection) on a file-backed database.
"""

import asyncio

import pytest
from sqlalchemy import select, func

from backend.app.domain.parcels.state_machine import TransitionOutcome, get_parcel, mark_paid
from backend.app.domain.payments.reconciliation import ReconciliationCoordinator, ReconciliationState
from backend.app.models.parcel_enums import ParcelStatus
from backend.app.models.payment_record import PaymentRecord
from backend.app.services.audit import AuditAction
from conftest import assert_ledger_consistent, count_audit


async def reconcile_in_own_session(session_factory, gateway, token):
    async with session_factory() as db:
        return await ReconciliationCoordinator(gateway).reconcile(db, token)


@pytest.mark.asyncio
async def test_concurrent_duplicate_deliveries(file_session_factory, gateway, create_parcel):
    """Five simultaneous deliveries of one confirmation record one payment."""
    async with file_session_factory() as db:
        parcel_id = await create_parcel(db)
    gateway.add_session("cs_1", parcel_id, "pi_T1")

    results = await asyncio.gather(*[
        reconcile_in_own_session(file_session_factory, gateway, "cs_1") for _ in range(5)
    ])

    assert all(r.state == ReconciliationState.RECONCILED for r in results)
    assert len({r.tracking_id for r in results}) == 1
    assert sum(1 for r in results if not r.duplicate) == 1

    async with file_session_factory() as db:
        count = (await db.execute(
            select(func.count(PaymentRecord.id)).where(PaymentRecord.parcel_id == parcel_id)
        )).scalar()
        assert count == 1
        parcel = await get_parcel(db, parcel_id, refresh=True)
        assert parcel.status == ParcelStatus.PAID
        assert parcel.tracking_id == results[0].tracking_id
        assert await count_audit(db, AuditAction.PAYMENT_RECONCILED) == 1
        await assert_ledger_consistent(db)


@pytest.mark.asyncio
async def test_concurrent_distinct_parcels(file_session_factory, gateway, create_parcel):
    """Two parcels confirmed at the same time do not interfere."""
    async with file_session_factory() as db:
        p2 = await create_parcel(db, parcel_name="Parcel 2", sender_email="p2@test.com")
        p3 = await create_parcel(db, parcel_name="Parcel 3", sender_email="p3@test.com")
    gateway.add_session("cs_2", p2, "pi_T2", amount_total=1000, customer_email="p2@test.com")
    gateway.add_session("cs_3", p3, "pi_T3", amount_total=3000, customer_email="p3@test.com")

    r2, r3 = await asyncio.gather(
        reconcile_in_own_session(file_session_factory, gateway, "cs_2"),
        reconcile_in_own_session(file_session_factory, gateway, "cs_3"),
    )

    assert r2.parcel_id == p2 and r2.transaction_id == "pi_T2"
    assert r3.parcel_id == p3 and r3.transaction_id == "pi_T3"
    assert r2.tracking_id != r3.tracking_id

    async with file_session_factory() as db:
        records = {
            r.idempotency_key: r
            for r in (await db.execute(select(PaymentRecord))).scalars().all()
        }
        assert records["pi_T2"].parcel_id == p2
        assert records["pi_T2"].customer_email == "p2@test.com"
        assert records["pi_T3"].parcel_id == p3
        assert records["pi_T3"].customer_email == "p3@test.com"
        await assert_ledger_consistent(db)


@pytest.mark.asyncio
async def test_competing_transactions_for_one_parcel(file_session_factory, gateway, create_parcel):
    """Two different transactions racing on one parcel: one wins, one is flagged."""
    async with file_session_factory() as db:
        parcel_id = await create_parcel(db)
    gateway.add_session("cs_a", parcel_id, "pi_A")
    gateway.add_session("cs_b", parcel_id, "pi_B")

    results = await asyncio.gather(
        reconcile_in_own_session(file_session_factory, gateway, "cs_a"),
        reconcile_in_own_session(file_session_factory, gateway, "cs_b"),
        return_exceptions=True,
    )

    succeeded = [r for r in results if not isinstance(r, Exception)]
    failed = [r for r in results if isinstance(r, Exception)]
    assert len(succeeded) == 1
    assert len(failed) == 1
    assert failed[0].error_code == "ERR_PAY_002"

    async with file_session_factory() as db:
        await assert_ledger_consistent(db)
        parcel = await get_parcel(db, parcel_id, refresh=True)
        assert parcel.tracking_id == succeeded[0].tracking_id


@pytest.mark.asyncio
async def test_guarded_update_only_transitions_once(db_session, create_parcel):
    """The parcel update is a compare-and-swap on PENDING."""
    parcel_id = await create_parcel(db_session)

    first = await mark_paid(db_session, parcel_id, "PRCL-20250101-11111111")
    again = await mark_paid(db_session, parcel_id, "PRCL-20250101-11111111")
    other = await mark_paid(db_session, parcel_id, "PRCL-20250101-22222222")
    missing = await mark_paid(db_session, 9999, "PRCL-20250101-33333333")

    assert first == TransitionOutcome.TRANSITIONED
    assert again == TransitionOutcome.ALREADY_PAID_SAME
    assert other == TransitionOutcome.ALREADY_PAID_OTHER
    assert missing == TransitionOutcome.NOT_FOUND

    parcel = await get_parcel(db_session, parcel_id, refresh=True)
    assert parcel.tracking_id == "PRCL-20250101-11111111"

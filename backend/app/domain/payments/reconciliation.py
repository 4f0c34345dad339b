"""
Payment Reconciliation (Domain Logic).

Applies a gateway payment confirmation to local state exactly once.

Flow for one confirmation:
1. Verify: fetch the authoritative session from the gateway (no storage touched)
   - not paid → REJECTED, nothing written
2. Correlate: parcel ID from session metadata, transaction ID as idempotency key
3. Reserve: append the ledger entry with a freshly generated tracking ID.
   The ledger's unique constraints make this the only mutual-exclusion point:
   - same key seen before → reuse that entry (duplicate delivery)
   - parcel owned by another key → ConflictingPaymentError
   - tracking ID taken → regenerate, bounded attempts
4. Settle: compare-and-swap the parcel PENDING → PAID with the entry's tracking ID
5. RECONCILED

A crash between 3 and 4 leaves a ledger entry with a PENDING parcel;
`recover_unsettled` re-drives step 4 for those entries.
"""

import enum
import logging
from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.config import settings
from backend.app.core.exceptions import (
    AppException,
    ConflictingPaymentError,
    InvalidInputError,
    NotPaidError,
    ParcelNotFoundError,
    TrackingAssignmentExhaustedError,
)
from backend.app.domain.parcels.state_machine import TransitionOutcome, get_parcel, mark_paid
from backend.app.domain.parcels.tracking import generate_tracking_id
from backend.app.domain.payments import ledger
from backend.app.domain.payments.checkout import METADATA_PARCEL_ID, METADATA_PARCEL_NAME
from backend.app.integrations.payment_gateway import GatewaySession, PaymentGateway
from backend.app.models.parcel import Parcel
from backend.app.models.payment_record import PaymentRecord
from backend.app.services.audit import log_event, AuditAction

logger = logging.getLogger("zapshift.reconciliation")


class ReconciliationState(str, enum.Enum):
    RECEIVED = "RECEIVED"
    VERIFIED = "VERIFIED"
    RECONCILED = "RECONCILED"  # Terminal: parcel PAID, ledger entry present
    REJECTED = "REJECTED"  # Terminal: gateway reports no payment
    FAILED = "FAILED"  # Terminal: error, retry with the same token


@dataclass
class ReconciliationResult:
    state: ReconciliationState
    parcel_id: Optional[int] = None
    tracking_id: Optional[str] = None
    transaction_id: Optional[str] = None
    session_id: Optional[str] = None
    payment_status: Optional[str] = None
    duplicate: bool = False
    error_code: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.state == ReconciliationState.RECONCILED

    def as_response(self) -> dict:
        return {
            "tracking_id": self.tracking_id,
            "transaction_id": self.transaction_id,
            "parcel_id": self.parcel_id,
        }


class ReconciliationCoordinator:
    """
    Stateless coordinator; all state lives in the parcel and payment tables.

    Args:
        gateway: Payment gateway used to verify confirmations
        generate: Tracking ID generator
        max_tracking_attempts: Attempts before TrackingAssignmentExhaustedError
    """

    def __init__(
        self,
        gateway: PaymentGateway,
        generate: Callable[[], str] = generate_tracking_id,
        max_tracking_attempts: Optional[int] = None,
    ):
        self.gateway = gateway
        self.generate = generate
        self.max_tracking_attempts = max_tracking_attempts or settings.tracking_id_max_attempts

    async def reconcile(self, db: AsyncSession, token: str) -> ReconciliationResult:
        """
        Apply the confirmation identified by `token` (a checkout session ID).

        Returns:
            RECONCILED result, or REJECTED result when the session is unpaid

        Raises:
            GatewayUnavailableError, InvalidInputError: verification failed, nothing written
            ParcelNotFoundError: metadata names an unknown or deleted parcel
            ConflictingPaymentError: parcel already paid by another transaction
            TrackingAssignmentExhaustedError: every tracking ID attempt collided

        Every failure, including storage errors, is logged with state FAILED
        before it propagates.
        """
        try:
            session = await self.gateway.retrieve_session(token)
        except Exception as e:
            self._log_failure(token, e)
            raise

        if not session.is_paid:
            logger.info(
                "Confirmation rejected: session not paid",
                extra={"session_id": token, "payment_status": session.payment_status,
                       "state": ReconciliationState.REJECTED.value}
            )
            return ReconciliationResult(
                state=ReconciliationState.REJECTED,
                session_id=token,
                payment_status=session.payment_status,
            )

        try:
            parcel, transaction_id = await self._correlate(db, session)
            record, duplicate = await self._reserve(db, session, parcel, transaction_id)
            result = await self._settle(db, record, AuditAction.PAYMENT_RECONCILED)
        except Exception as e:
            self._log_failure(token, e)
            raise

        result.session_id = token
        result.duplicate = duplicate
        return result

    async def recover_unsettled(self, db: AsyncSession) -> list[ReconciliationResult]:
        """
        Finish reconciliations interrupted after the ledger entry was written.

        Each entry is settled with the tracking ID it already carries.
        Integrity alarms are reported per entry and do not stop the pass.
        """
        results = []
        for record in await ledger.find_unsettled(db):
            try:
                result = await self._settle(db, record, AuditAction.PAYMENT_RECOVERED)
            except AppException as e:
                results.append(ReconciliationResult(
                    state=ReconciliationState.FAILED,
                    parcel_id=record.parcel_id,
                    tracking_id=record.tracking_id,
                    transaction_id=record.idempotency_key,
                    error_code=e.error_code,
                ))
                continue
            result.duplicate = True
            results.append(result)

        if results:
            logger.info("Recovery pass finished", extra={"entries": len(results)})
        return results

    async def _correlate(self, db: AsyncSession, session: GatewaySession) -> tuple[Parcel, str]:
        raw_parcel_id = session.metadata.get(METADATA_PARCEL_ID)
        try:
            parcel_id = int(raw_parcel_id)
        except (TypeError, ValueError):
            raise InvalidInputError(
                "Checkout session carries no parcel reference",
                details={"session_id": session.id}
            )

        if not session.transaction_id:
            raise InvalidInputError(
                "Checkout session carries no transaction ID",
                details={"session_id": session.id}
            )

        parcel = await get_parcel(db, parcel_id)
        if parcel is None:
            raise ParcelNotFoundError(parcel_id)
        return parcel, session.transaction_id

    async def _reserve(
        self,
        db: AsyncSession,
        session: GatewaySession,
        parcel: Parcel,
        transaction_id: str,
    ) -> tuple[PaymentRecord, bool]:
        """Append the ledger entry; returns (record, duplicate)."""
        if session.amount_total is not None:
            amount = (Decimal(session.amount_total) / 100).quantize(Decimal("0.01"))
        else:
            amount = Decimal(parcel.cost)

        # A failed insert rolls the session back and expires `parcel`;
        # everything needed from it is copied here first.
        parcel_id = parcel.id
        snapshot = ledger.LedgerEntry(
            idempotency_key=transaction_id,
            parcel_id=parcel_id,
            amount=amount,
            currency=(session.currency or settings.payment_currency).lower(),
            customer_email=session.customer_email or parcel.sender_email,
            parcel_name=session.metadata.get(METADATA_PARCEL_NAME) or parcel.parcel_name,
            tracking_id="",
        )

        for attempt in range(1, self.max_tracking_attempts + 1):
            entry = replace(snapshot, tracking_id=self.generate())
            reservation = await ledger.reserve_payment(db, entry)

            if reservation.created:
                return reservation.record, False

            if reservation.conflict == ledger.LedgerConflict.DUPLICATE_KEY:
                if reservation.record.parcel_id != parcel_id:
                    await self._raise_conflict(
                        db, parcel_id, transaction_id, reservation.record.idempotency_key,
                        reason="transaction already applied to another parcel",
                    )
                logger.info(
                    "Duplicate confirmation",
                    extra={"parcel_id": parcel_id, "transaction_id": transaction_id}
                )
                return reservation.record, True

            if reservation.conflict == ledger.LedgerConflict.PARCEL_ALREADY_PAID:
                await self._raise_conflict(
                    db, parcel_id, transaction_id, reservation.record.idempotency_key,
                    reason="parcel already paid by another transaction",
                )

            if reservation.conflict == ledger.LedgerConflict.PARCEL_MISSING:
                raise ParcelNotFoundError(parcel_id)

            logger.warning(
                "Retrying tracking ID assignment",
                extra={"parcel_id": parcel_id, "attempt": attempt}
            )

        raise TrackingAssignmentExhaustedError(parcel_id, self.max_tracking_attempts)

    async def _settle(self, db: AsyncSession, record: PaymentRecord, action: str) -> ReconciliationResult:
        outcome = await mark_paid(db, record.parcel_id, record.tracking_id)

        if outcome == TransitionOutcome.NOT_FOUND:
            raise ParcelNotFoundError(record.parcel_id)

        if outcome == TransitionOutcome.ALREADY_PAID_OTHER:
            await self._raise_conflict(
                db, record.parcel_id, record.idempotency_key, None,
                reason="parcel tracking ID differs from ledger entry",
            )

        if outcome == TransitionOutcome.TRANSITIONED:
            await log_event(
                db=db,
                action=action,
                parcel_id=record.parcel_id,
                metadata={
                    "transaction_id": record.idempotency_key,
                    "tracking_id": record.tracking_id,
                    "amount": str(record.amount),
                    "currency": record.currency,
                }
            )

        logger.info(
            "Payment reconciled",
            extra={
                "parcel_id": record.parcel_id,
                "transaction_id": record.idempotency_key,
                "tracking_id": record.tracking_id,
                "outcome": outcome.value,
                "state": ReconciliationState.RECONCILED.value,
            }
        )
        return ReconciliationResult(
            state=ReconciliationState.RECONCILED,
            parcel_id=record.parcel_id,
            tracking_id=record.tracking_id,
            transaction_id=record.idempotency_key,
        )

    async def _raise_conflict(
        self,
        db: AsyncSession,
        parcel_id: int,
        transaction_id: str,
        existing_transaction_id: Optional[str],
        reason: str,
    ) -> None:
        logger.error(
            "Conflicting payment detected",
            extra={
                "parcel_id": parcel_id,
                "transaction_id": transaction_id,
                "existing_transaction_id": existing_transaction_id,
                "reason": reason,
            }
        )
        await log_event(
            db=db,
            action=AuditAction.PAYMENT_CONFLICT,
            parcel_id=parcel_id,
            metadata={
                "transaction_id": transaction_id,
                "existing_transaction_id": existing_transaction_id,
                "reason": reason,
            }
        )
        raise ConflictingPaymentError(parcel_id, transaction_id, existing_transaction_id)

    @staticmethod
    def _log_failure(token: str, error: Exception) -> None:
        if isinstance(error, AppException) and not isinstance(error, ConflictingPaymentError):
            level = logging.WARNING
        else:
            level = logging.ERROR
        logger.log(
            level,
            "Reconciliation failed",
            extra={"session_id": token,
                   "error_code": getattr(error, "error_code", "ERR_INTERNAL_SERVER"),
                   "error_type": type(error).__name__,
                   "state": ReconciliationState.FAILED.value},
            exc_info=not isinstance(error, AppException),
        )


async def confirm_payment(db: AsyncSession, gateway: PaymentGateway, token: str) -> dict:
    """
    Routing-facing confirmation.

    Returns:
        {"tracking_id", "transaction_id", "parcel_id"}

    Raises:
        NotPaidError: gateway reports the session unpaid
        (plus everything ReconciliationCoordinator.reconcile raises)
    """
    result = await ReconciliationCoordinator(gateway).reconcile(db, token)
    if result.state == ReconciliationState.REJECTED:
        raise NotPaidError(token, result.payment_status)
    return result.as_response()

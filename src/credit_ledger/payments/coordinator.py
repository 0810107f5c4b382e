"""Atomic verification: the one place a payment turns into credits.

The pending → terminal transition of a payment record is a conditional UPDATE;
whichever caller's statement changes the row owns the credit mutation, which
happens in the same database transaction. Every other caller ends up on the
idempotent ``already_processed`` path.
"""

import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from credit_ledger.common.config import LedgerSettings
from credit_ledger.common.database import DatabaseManager
from credit_ledger.common.exceptions import StorageError
from credit_ledger.common.logging import mask_nonce
from credit_ledger.common.models import utcnow
from credit_ledger.common.retry import RetryPolicy
from credit_ledger.credits.service import CreditStore
from credit_ledger.payments.models import (
    STATUS_CONFIRMED,
    STATUS_FAILED,
    PaymentRecordModel,
)
from credit_ledger.payments.nonces import NonceRegistry
from credit_ledger.payments.records import PaymentRecordStore
from credit_ledger.payments.verifier import TransactionVerifier

logger = logging.getLogger(__name__)


@dataclass
class AtomicVerificationResult:
    success: bool
    already_processed: bool = False
    user_id: Optional[str] = None
    credits_added: int = 0
    code: str = ""
    error: str = ""
    retryable: bool = False
    pending: bool = False


def _settled(record: PaymentRecordModel) -> AtomicVerificationResult | None:
    """Result for a record that already left ``pending``, else None."""
    if record.status == STATUS_CONFIRMED:
        return AtomicVerificationResult(
            success=True, already_processed=True, user_id=record.user_id,
        )
    if record.status == STATUS_FAILED:
        return AtomicVerificationResult(
            success=False, user_id=record.user_id,
            code="PAYMENT_FAILED", error="Payment verification previously failed",
        )
    return None


class AtomicVerificationCoordinator:
    def __init__(
        self,
        settings: LedgerSettings,
        db: DatabaseManager,
        credits: CreditStore,
        nonces: NonceRegistry,
        records: PaymentRecordStore,
        verifier: TransactionVerifier,
        retry_policy: RetryPolicy | None = None,
    ):
        self.settings = settings
        self.db = db
        self.credits = credits
        self.nonces = nonces
        self.records = records
        self.verifier = verifier
        self.retry_policy = retry_policy or RetryPolicy(
            max_attempts=settings.db_max_attempts,
            base_delay=settings.db_backoff_base,
            retry_on=(StorageError,),
        )

    def credits_for(self, amount: Decimal) -> int:
        """Credits bought by ``amount`` currency units, rounded half up."""
        credits = Decimal(str(amount)) * self.settings.credits_per_unit
        return int(credits.quantize(Decimal(1), rounding=ROUND_HALF_UP))

    async def verify_transaction_atomic(
        self, transaction_id: str, nonce: str, verification_succeeded: bool,
    ) -> AtomicVerificationResult:
        """Apply an explicit verification outcome to a pending payment.

        Datastore failures are retried with backoff; once retries run out the
        record is still ``pending`` and a retryable STORAGE_ERROR is returned.
        """
        try:
            return await self.retry_policy.run(
                lambda: self._apply(transaction_id, nonce, verification_succeeded)
            )
        except StorageError as exc:
            logger.error(
                "Verification aborted, datastore unavailable",
                extra={"context": {"transaction_id": transaction_id, "error": exc.message}},
            )
            return AtomicVerificationResult(
                success=False, code=exc.code, error=exc.message, retryable=True,
            )

    async def _apply(
        self, transaction_id: str, nonce: str, verification_succeeded: bool,
    ) -> AtomicVerificationResult:
        async with self.db.get_session() as session:
            record = await self.records.get_payment_record_by_transaction_id(
                session, transaction_id, refresh=True,
            )
            if record is None:
                return AtomicVerificationResult(
                    success=False, code="RECORD_NOT_FOUND", error="Payment record not found",
                )

            usage = await self.nonces.check_nonce_usage(session, nonce)
            if (
                not usage.used
                or usage.record.transaction_id != transaction_id
                or record.nonce != nonce
            ):
                logger.warning(
                    "Nonce does not match payment record",
                    extra={"context": {
                        "code": "NONCE_MISMATCH",
                        "transaction_id": transaction_id,
                        "nonce": mask_nonce(nonce),
                    }},
                )
                return AtomicVerificationResult(
                    success=False, user_id=record.user_id,
                    code="NONCE_MISMATCH", error="Invalid payment nonce",
                )

            settled = _settled(record)
            if settled is not None:
                return settled

            if not verification_succeeded:
                if await self.records.update_payment_record_status(
                    session, transaction_id, STATUS_FAILED,
                ):
                    logger.warning(
                        "Payment marked failed",
                        extra={"context": {
                            "code": "VERIFICATION_FAILED",
                            "transaction_id": transaction_id,
                            "user_id": record.user_id,
                        }},
                    )
                    return AtomicVerificationResult(
                        success=False, user_id=record.user_id,
                        code="VERIFICATION_FAILED", error="Payment verification failed",
                    )
                return await self._after_lost_race(session, transaction_id)

            credits = self.credits_for(record.expected_amount)
            won = await self.records.transition_status(
                session, transaction_id, STATUS_CONFIRMED,
                verified_at=utcnow(), credits_added=credits,
            )
            if not won:
                return await self._after_lost_race(session, transaction_id)

            if credits > 0:
                await self.credits.add_credits(session, record.user_id, credits)
            logger.info(
                "Payment confirmed",
                extra={"context": {
                    "transaction_id": transaction_id,
                    "user_id": record.user_id,
                    "credits_added": credits,
                }},
            )
            return AtomicVerificationResult(
                success=True, user_id=record.user_id, credits_added=credits,
            )

    async def _after_lost_race(self, session, transaction_id: str) -> AtomicVerificationResult:
        logger.warning(
            "Concurrent verification already settled payment",
            extra={"context": {"code": "LOST_RACE", "transaction_id": transaction_id}},
        )
        record = await self.records.get_payment_record_by_transaction_id(
            session, transaction_id, refresh=True,
        )
        settled = _settled(record) if record is not None else None
        if settled is None:
            raise StorageError("Payment record changed during verification")
        return settled

    async def _load(self, transaction_id: str) -> PaymentRecordModel | None:
        async def load():
            async with self.db.get_session() as session:
                return await self.records.get_payment_record_by_transaction_id(
                    session, transaction_id,
                )
        return await self.retry_policy.run(load)

    async def settle_transaction(
        self, transaction_id: str, nonce: str | None = None,
    ) -> AtomicVerificationResult:
        """Verify a recorded payment on chain and apply the outcome.

        Outcomes that may still change (not yet visible, not finalized, RPC
        down) leave the record ``pending`` and come back with ``pending=True``.
        """
        try:
            record = await self._load(transaction_id)
        except StorageError as exc:
            return AtomicVerificationResult(
                success=False, code=exc.code, error=exc.message, retryable=True,
            )
        if record is None:
            return AtomicVerificationResult(
                success=False, code="RECORD_NOT_FOUND", error="Payment record not found",
            )
        settled = _settled(record)
        if settled is not None:
            return settled
        if nonce is not None and nonce != record.nonce:
            return AtomicVerificationResult(
                success=False, user_id=record.user_id,
                code="NONCE_MISMATCH", error="Invalid payment nonce",
            )

        verification = await self.verifier.verify_payment(
            transaction_id,
            record.user_id,
            record.expected_amount,
            record.token,
            record.recipient,
        )
        if not verification.success and verification.retryable:
            return AtomicVerificationResult(
                success=False, user_id=record.user_id, pending=True, retryable=True,
                code=verification.code, error=verification.error,
            )

        result = await self.verify_transaction_atomic(
            transaction_id, record.nonce, verification.success,
        )
        if not verification.success and not result.already_processed and not result.retryable:
            result.code = verification.code
            result.error = verification.error
        return result

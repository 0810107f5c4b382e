"""Payment record store: pending/confirmed/failed lifecycle per on-chain transaction."""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from credit_ledger.common.exceptions import DuplicateError, NotFoundError, ValidationError
from credit_ledger.common.logging import mask_nonce
from credit_ledger.common.models import utcnow
from credit_ledger.payments.models import (
    STATUS_PENDING,
    SUPPORTED_TOKENS,
    TERMINAL_STATUSES,
    PaymentRecordModel,
)
from credit_ledger.payments.nonces import NonceRegistry

logger = logging.getLogger(__name__)

AMOUNT_QUANTUM = Decimal("0.000001")

TRANSACTION_REPLAY = "TRANSACTION_REPLAY"
NONCE_REUSED = "NONCE_REUSED"


@dataclass
class CreateResult:
    """Tagged result: either ``created`` with a record, or refused with a reason."""

    created: bool
    record: Optional[PaymentRecordModel] = None
    reason: str = ""
    error: str = ""

    @property
    def success(self) -> bool:
        return self.created

    @property
    def already_exists(self) -> bool:
        return self.reason in (TRANSACTION_REPLAY, NONCE_REUSED)


def to_amount(value: Any) -> Decimal:
    """Parse a positive currency amount, rounded to token precision."""
    try:
        amount = Decimal(str(value)).quantize(AMOUNT_QUANTUM)
    except (InvalidOperation, ValueError, TypeError):
        raise ValidationError("amount must be a number")
    if not amount.is_finite() or amount <= 0:
        raise ValidationError("amount must be greater than zero")
    return amount


class PaymentRecordStore:
    """Payment attempts keyed by on-chain transaction signature."""

    def __init__(self, nonces: NonceRegistry):
        self.nonces = nonces

    async def create_secure_payment_record(
        self,
        session: AsyncSession,
        user_id: str,
        transaction_id: str,
        amount: Any,
        token: str,
        recipient: str,
        nonce: str,
        timeout_seconds: int,
    ) -> CreateResult:
        """Create a pending record and spend its nonce in one transaction.

        The nonce row is inserted first, so a constraint violation there means
        nonce reuse and one on the payment row means transaction replay. Both
        roll back the session and refuse creation.
        """
        if not user_id:
            raise ValidationError("user_id is required")
        if not transaction_id:
            raise ValidationError("transaction_id is required")
        if token not in SUPPORTED_TOKENS:
            raise ValidationError(f"token must be one of {sorted(SUPPORTED_TOKENS)}")
        if not recipient:
            raise ValidationError("recipient is required")
        if timeout_seconds <= 0:
            raise ValidationError("timeout_seconds must be positive")
        expected_amount = to_amount(amount)

        try:
            await self.nonces.consume_nonce(session, nonce, transaction_id)
        except DuplicateError as exc:
            return CreateResult(created=False, reason=NONCE_REUSED, error=exc.message)

        record = PaymentRecordModel(
            user_id=user_id,
            transaction_id=transaction_id,
            expected_amount=expected_amount,
            token=token,
            recipient=recipient,
            nonce=nonce,
            status=STATUS_PENDING,
            expires_at=utcnow() + timedelta(seconds=timeout_seconds),
        )
        session.add(record)
        try:
            await session.flush()
        except IntegrityError:
            await session.rollback()
            logger.warning(
                "Transaction replay rejected",
                extra={"context": {
                    "code": TRANSACTION_REPLAY,
                    "transaction_id": transaction_id,
                    "user_id": user_id,
                }},
            )
            return CreateResult(
                created=False, reason=TRANSACTION_REPLAY,
                error="Transaction already exists",
            )

        logger.info(
            "Pending payment record created",
            extra={"context": {
                "transaction_id": transaction_id,
                "user_id": user_id,
                "amount": str(expected_amount),
                "token": token,
                "nonce": mask_nonce(nonce),
            }},
        )
        return CreateResult(created=True, record=record)

    async def get_payment_record_by_transaction_id(
        self, session: AsyncSession, transaction_id: str, refresh: bool = False,
    ) -> Optional[PaymentRecordModel]:
        query = select(PaymentRecordModel).where(
            PaymentRecordModel.transaction_id == transaction_id,
        )
        if refresh:
            query = query.execution_options(populate_existing=True)
        result = await session.execute(query)
        return result.scalar_one_or_none()

    async def get_payment_record(
        self, session: AsyncSession, transaction_id: str,
    ) -> PaymentRecordModel:
        record = await self.get_payment_record_by_transaction_id(session, transaction_id)
        if record is None:
            raise NotFoundError("Payment record not found")
        return record

    async def transition_status(
        self,
        session: AsyncSession,
        transaction_id: str,
        status: str,
        verified_at: datetime | None = None,
        credits_added: int | None = None,
    ) -> bool:
        """Move a pending record to ``status``.

        A single conditional UPDATE; True only for the caller whose statement
        changed the row, which makes it the serialization point for racing
        verifications.
        """
        if status not in TERMINAL_STATUSES:
            raise ValidationError("status must be 'confirmed' or 'failed'")
        values: dict[str, Any] = {"status": status, "updated_at": utcnow()}
        if verified_at is not None:
            values["verified_at"] = verified_at
        if credits_added is not None:
            values["credits_added"] = credits_added
        result = await session.execute(
            update(PaymentRecordModel)
            .where(
                PaymentRecordModel.transaction_id == transaction_id,
                PaymentRecordModel.status == STATUS_PENDING,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def update_payment_record_status(
        self, session: AsyncSession, transaction_id: str, status: str,
    ) -> bool:
        """One-way status update.

        Repeating the transition a record already made returns True without
        touching it; attempting the opposite terminal state returns False.
        """
        if await self.transition_status(session, transaction_id, status):
            logger.info(
                "Payment record status updated",
                extra={"context": {"transaction_id": transaction_id, "status": status}},
            )
            return True

        record = await self.get_payment_record_by_transaction_id(
            session, transaction_id, refresh=True,
        )
        if record is None:
            return False
        if record.status == status:
            return True
        logger.warning(
            "Refused status change on terminal payment record",
            extra={"context": {
                "transaction_id": transaction_id,
                "current": record.status,
                "requested": status,
            }},
        )
        return False

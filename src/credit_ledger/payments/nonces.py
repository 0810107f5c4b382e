"""Nonce registry: single-use tokens that bind a payment proof to one transaction."""

import logging
import re
import secrets
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from credit_ledger.common.exceptions import DuplicateError, ValidationError
from credit_ledger.common.logging import mask_nonce
from credit_ledger.payments.models import NonceRecordModel

logger = logging.getLogger(__name__)

NONCE_BYTES = 16  # 128 bits
NONCE_PATTERN = re.compile(r"^[a-f0-9]{32}$")


def generate_nonce() -> str:
    """Return a 32-char lowercase hex nonce from the OS CSPRNG."""
    return secrets.token_hex(NONCE_BYTES)


def is_valid_nonce(nonce: str) -> bool:
    return isinstance(nonce, str) and bool(NONCE_PATTERN.match(nonce))


@dataclass
class NonceUsage:
    used: bool
    record: Optional[NonceRecordModel] = None


class NonceRegistry:
    """Durable set of spent nonces; uniqueness is enforced by the primary key."""

    generate_nonce = staticmethod(generate_nonce)

    async def check_nonce_usage(self, session: AsyncSession, nonce: str) -> NonceUsage:
        """Pure lookup."""
        result = await session.execute(
            select(NonceRecordModel).where(NonceRecordModel.nonce == nonce)
        )
        record = result.scalar_one_or_none()
        return NonceUsage(used=record is not None, record=record)

    async def consume_nonce(
        self, session: AsyncSession, nonce: str, transaction_id: str,
    ) -> NonceRecordModel:
        """Insert the nonce row, binding it to ``transaction_id``.

        A second insert of the same nonce raises DuplicateError. On that path
        the session has been rolled back, so anything else the caller had
        pending in it is discarded too.
        """
        if not is_valid_nonce(nonce):
            raise ValidationError("nonce must be 32 lowercase hex characters")
        if not transaction_id:
            raise ValidationError("transaction_id is required")

        record = NonceRecordModel(nonce=nonce, transaction_id=transaction_id)
        session.add(record)
        try:
            await session.flush()
        except IntegrityError as exc:
            await session.rollback()
            logger.warning(
                "Nonce reuse rejected",
                extra={"context": {
                    "code": "NONCE_REUSED",
                    "nonce": mask_nonce(nonce),
                    "transaction_id": transaction_id,
                }},
            )
            raise DuplicateError("Nonce already exists", reason="NONCE_REUSED") from exc
        return record

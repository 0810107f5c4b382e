"""Credit store: the only writer of user credit balances.

Every mutation is a single-row conditional UPDATE evaluated by the database,
so concurrent top-ups and spends for one user never lose an update and never
drive a balance negative.
"""

import logging
from dataclasses import dataclass
from datetime import date

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from credit_ledger.common.config import LedgerSettings
from credit_ledger.common.database import dialect_insert
from credit_ledger.common.exceptions import DuplicateError, ValidationError
from credit_ledger.common.models import generate_uuid, utcnow
from credit_ledger.credits.models import DailyCreditClaimModel, UserCreditsModel

logger = logging.getLogger(__name__)


@dataclass
class ChargeResult:
    """Outcome of a spend. ``insufficient`` is a normal result, not an error."""

    success: bool
    credits: int
    cost: int
    insufficient: bool = False


@dataclass
class DailyClaim:
    claim_date: date
    credits_claimed: int
    credits: int


def _check_user(user_id: str) -> None:
    if not user_id or not isinstance(user_id, str):
        raise ValidationError("user_id is required")


def _check_amount(amount: int) -> None:
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise ValidationError("amount must be a positive integer")


class CreditStore:
    """Durable user → credit balance mapping."""

    def __init__(self, settings: LedgerSettings):
        self.settings = settings

    async def _ensure_row(self, session: AsyncSession, user_id: str) -> None:
        """Create the balance row with the starting balance unless it exists."""
        now = utcnow()
        stmt = (
            dialect_insert(session, UserCreditsModel)
            .values(
                id=generate_uuid(),
                user_id=user_id,
                credits=self.settings.starting_credits,
                created_at=now,
                updated_at=now,
            )
            .on_conflict_do_nothing(index_elements=["user_id"])
        )
        result = await session.execute(stmt)
        if result.rowcount:
            logger.info(
                "Created credit balance",
                extra={"context": {"user_id": user_id, "credits": self.settings.starting_credits}},
            )

    async def _read(self, session: AsyncSession, user_id: str) -> int:
        result = await session.execute(
            select(UserCreditsModel.credits)
            .where(UserCreditsModel.user_id == user_id)
        )
        return int(result.scalar_one())

    async def get_credits(self, session: AsyncSession, user_id: str) -> int:
        """Current balance, creating the row with the starting balance on first read."""
        _check_user(user_id)
        await self._ensure_row(session, user_id)
        return await self._read(session, user_id)

    async def add_credits(self, session: AsyncSession, user_id: str, amount: int) -> bool:
        """Atomically increment the balance."""
        _check_user(user_id)
        _check_amount(amount)
        await self._ensure_row(session, user_id)
        result = await session.execute(
            update(UserCreditsModel)
            .where(UserCreditsModel.user_id == user_id)
            .values(credits=UserCreditsModel.credits + amount, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        added = result.rowcount == 1
        if added:
            logger.info("Added credits", extra={"context": {"user_id": user_id, "amount": amount}})
        return added

    async def deduct_credits(self, session: AsyncSession, user_id: str, amount: int) -> bool:
        """Atomically decrement the balance only if it covers ``amount``.

        Returns False and leaves the balance untouched otherwise.
        """
        _check_user(user_id)
        _check_amount(amount)
        await self._ensure_row(session, user_id)
        result = await session.execute(
            update(UserCreditsModel)
            .where(
                UserCreditsModel.user_id == user_id,
                UserCreditsModel.credits >= amount,
            )
            .values(credits=UserCreditsModel.credits - amount, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        deducted = result.rowcount == 1
        if not deducted:
            logger.info(
                "Insufficient credits",
                extra={"context": {"user_id": user_id, "amount": amount}},
            )
        return deducted

    async def charge(self, session: AsyncSession, user_id: str, cost: int) -> ChargeResult:
        """Spend ``cost`` credits and report the resulting balance."""
        deducted = await self.deduct_credits(session, user_id, cost)
        balance = await self._read(session, user_id)
        return ChargeResult(
            success=deducted,
            credits=balance,
            cost=cost,
            insufficient=not deducted,
        )

    async def has_claimed_daily(self, session: AsyncSession, user_id: str, claim_date: date) -> bool:
        _check_user(user_id)
        result = await session.execute(
            select(DailyCreditClaimModel.id).where(
                DailyCreditClaimModel.user_id == user_id,
                DailyCreditClaimModel.claim_date == claim_date,
            )
        )
        return result.first() is not None

    async def claim_daily_credits(
        self, session: AsyncSession, user_id: str, claim_date: date,
    ) -> DailyClaim:
        """Grant the daily free credits once per user per ``claim_date``.

        The claim row and the balance increment share the caller's
        transaction. A second claim for the same day hits the unique
        ``(user_id, claim_date)`` constraint and raises DuplicateError after
        rolling the session back.
        """
        _check_user(user_id)
        amount = self.settings.daily_claim_credits
        _check_amount(amount)

        session.add(DailyCreditClaimModel(
            user_id=user_id, claim_date=claim_date, credits_claimed=amount,
        ))
        try:
            await session.flush()
        except IntegrityError as exc:
            await session.rollback()
            logger.info(
                "Daily credits already claimed",
                extra={"context": {"user_id": user_id, "claim_date": claim_date.isoformat()}},
            )
            raise DuplicateError(
                "Credits already claimed today", reason="ALREADY_CLAIMED",
            ) from exc

        await self.add_credits(session, user_id, amount)
        return DailyClaim(
            claim_date=claim_date,
            credits_claimed=amount,
            credits=await self._read(session, user_id),
        )

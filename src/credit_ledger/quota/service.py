"""Usage quota tracker: free interview entitlement and daily free allowance.

Advisory only: answers "may this user proceed without paying?" and never
touches credit balances. All state lives in the usage_records table; the day
boundary is computed at one fixed UTC offset for the whole service.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Callable

from sqlalchemy import case, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from credit_ledger.common.config import LedgerSettings
from credit_ledger.common.database import dialect_insert
from credit_ledger.common.exceptions import ValidationError
from credit_ledger.common.models import generate_uuid, utcnow
from credit_ledger.quota.models import UsageRecordModel

logger = logging.getLogger(__name__)


@dataclass
class UsageCheck:
    allowed: bool
    cost: int
    remaining: int
    free_interview_used: bool


class UsageQuotaTracker:
    """Per-user quota state machine persisted in the datastore."""

    def __init__(
        self,
        settings: LedgerSettings,
        clock: Callable[[], datetime] | None = None,
    ):
        self.settings = settings
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._offset = timezone(timedelta(hours=settings.quota_utc_offset_hours))

    def today(self) -> date:
        """Current calendar day at the service's reference offset."""
        return self._clock().astimezone(self._offset).date()

    def _cost(self, action: str, cost: int | None) -> int:
        if not action:
            raise ValidationError("action is required")
        if cost is None:
            cost = self.settings.cost_for(action)
        if isinstance(cost, bool) or not isinstance(cost, int) or cost <= 0:
            raise ValidationError("cost must be a positive integer")
        return cost

    async def _ensure_row(self, session: AsyncSession, user_id: str, today: date) -> None:
        now = utcnow()
        await session.execute(
            dialect_insert(session, UsageRecordModel)
            .values(
                id=generate_uuid(),
                user_id=user_id,
                day=today,
                daily_count=0,
                free_interview_used=self.settings.free_interview_count <= 0,
                interviews_completed=0,
                created_at=now,
                updated_at=now,
            )
            .on_conflict_do_nothing(index_elements=["user_id"])
        )

    async def _roll_over(self, session: AsyncSession, user_id: str, today: date) -> None:
        """Reset the daily counter when the stored day is stale.

        Never touches free_interview_used.
        """
        result = await session.execute(
            update(UsageRecordModel)
            .where(
                UsageRecordModel.user_id == user_id,
                UsageRecordModel.day != today,
            )
            .values(day=today, daily_count=0, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount:
            logger.debug("Daily usage reset for %s (%s)", user_id, today)

    async def get_usage(self, session: AsyncSession, user_id: str) -> UsageRecordModel:
        """Return the user's usage row for the current day, creating or resetting it."""
        if not user_id:
            raise ValidationError("user_id is required")
        today = self.today()
        await self._ensure_row(session, user_id, today)
        await self._roll_over(session, user_id, today)
        result = await session.execute(
            select(UsageRecordModel)
            .where(UsageRecordModel.user_id == user_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one()

    async def check_usage(
        self,
        session: AsyncSession,
        user_id: str,
        action: str,
        cost: int | None = None,
    ) -> UsageCheck:
        """May ``user_id`` perform ``action`` for free right now?"""
        cost = self._cost(action, cost)
        record = await self.get_usage(session, user_id)
        limit = self.settings.free_daily_limit
        remaining = max(0, limit - record.daily_count)

        if not record.free_interview_used:
            # The free interview covers the action regardless of balance.
            return UsageCheck(
                allowed=True, cost=cost, remaining=remaining,
                free_interview_used=False,
            )

        return UsageCheck(
            allowed=record.daily_count + cost <= limit,
            cost=cost,
            remaining=remaining,
            free_interview_used=True,
        )

    async def record_usage(
        self,
        session: AsyncSession,
        user_id: str,
        action: str,
        cost: int | None = None,
        free_interview_already_used: bool = True,
    ) -> UsageRecordModel | None:
        """Consume quota for a completed action.

        Spends the free interview when the caller saw it unused; otherwise
        (or if a concurrent request spent it first) adds ``cost`` to the
        daily count. Returns None, changing nothing, when the daily allowance
        no longer covers ``cost``.
        """
        cost = self._cost(action, cost)
        await self.get_usage(session, user_id)

        if not free_interview_already_used:
            completed = UsageRecordModel.interviews_completed + 1
            result = await session.execute(
                update(UsageRecordModel)
                .where(
                    UsageRecordModel.user_id == user_id,
                    UsageRecordModel.free_interview_used.is_(False),
                )
                .values(
                    interviews_completed=completed,
                    free_interview_used=case(
                        (completed >= self.settings.free_interview_count, True),
                        else_=False,
                    ),
                    updated_at=utcnow(),
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                logger.info(
                    "Free interview consumed",
                    extra={"context": {"user_id": user_id, "action": action}},
                )
                return await self.get_usage(session, user_id)

        result = await session.execute(
            update(UsageRecordModel)
            .where(
                UsageRecordModel.user_id == user_id,
                UsageRecordModel.daily_count + cost <= self.settings.free_daily_limit,
            )
            .values(
                daily_count=UsageRecordModel.daily_count + cost,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.info(
                "Daily allowance exhausted",
                extra={"context": {"user_id": user_id, "action": action, "cost": cost}},
            )
            return None
        return await self.get_usage(session, user_id)

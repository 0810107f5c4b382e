"""SQLAlchemy models for credit balances and daily free-credit claims."""

from datetime import date

from sqlalchemy import CheckConstraint, Date, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from credit_ledger.common.models import Base, TimestampMixin, generate_uuid


class UserCreditsModel(Base, TimestampMixin):
    __tablename__ = "user_credits"
    __table_args__ = (
        CheckConstraint("credits >= 0", name="ck_user_credits_non_negative"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    user_id: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    credits: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class DailyCreditClaimModel(Base, TimestampMixin):
    __tablename__ = "daily_credit_claims"
    __table_args__ = (
        UniqueConstraint("user_id", "claim_date", name="uq_daily_credit_claims_user_day"),
        CheckConstraint("credits_claimed > 0", name="ck_daily_credit_claims_positive"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    claim_date: Mapped[date] = mapped_column(Date, nullable=False)
    credits_claimed: Mapped[int] = mapped_column(Integer, nullable=False)

"""SQLAlchemy models for free-usage quota tracking."""

from datetime import date

from sqlalchemy import Boolean, Date, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from credit_ledger.common.models import Base, TimestampMixin, generate_uuid


class UsageRecordModel(Base, TimestampMixin):
    __tablename__ = "usage_records"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    user_id: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    day: Mapped[date] = mapped_column(Date, nullable=False)
    daily_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    free_interview_used: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    interviews_completed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

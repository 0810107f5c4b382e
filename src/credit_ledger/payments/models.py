"""SQLAlchemy models for payment records and single-use nonces."""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
)
from sqlalchemy.orm import Mapped, mapped_column

from credit_ledger.common.models import Base, TimestampMixin, generate_uuid, utcnow

SUPPORTED_TOKENS: frozenset[str] = frozenset({"USDC", "USDT", "CASH"})

STATUS_PENDING = "pending"
STATUS_CONFIRMED = "confirmed"
STATUS_FAILED = "failed"
TERMINAL_STATUSES: frozenset[str] = frozenset({STATUS_CONFIRMED, STATUS_FAILED})


class NonceRecordModel(Base):
    """A nonce row exists iff the nonce has been spent on a transaction."""

    __tablename__ = "nonce_records"

    nonce: Mapped[str] = mapped_column(String(32), primary_key=True)
    transaction_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )


class PaymentRecordModel(Base, TimestampMixin):
    __tablename__ = "payment_records"
    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'confirmed', 'failed')",
            name="ck_payment_records_status",
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    transaction_id: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)
    expected_amount: Mapped[Decimal] = mapped_column(Numeric(18, 6), nullable=False)
    token: Mapped[str] = mapped_column(String(10), nullable=False)
    recipient: Mapped[str] = mapped_column(String(64), nullable=False)
    nonce: Mapped[str] = mapped_column(
        String(32), ForeignKey("nonce_records.nonce"), unique=True, nullable=False
    )
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=STATUS_PENDING, index=True)
    credits_added: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    verified_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
